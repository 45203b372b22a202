"""Tests for the /api/v1 HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient

from readreceipts.core import events
from readreceipts.core.clock import now_ms
from readreceipts.tests.conftest import auth_headers

PUSH_HEADERS = {"X-Config-Push-Token": "test-push-token"}


@pytest.fixture()
def headers():
    return auth_headers("u1")


@pytest.fixture()
def post(lookup):
    return lookup.add_post("m1", "c1", user_id="author", create_at=now_ms() - 60_000)


def _read(client: TestClient, user_id: str, message_id: str = "m1", **extra):
    return client.post("/api/v1/read", json={"message_id": message_id, **extra}, headers=auth_headers(user_id))


class TestMarkRead:
    def test_read_success(self, client: TestClient, headers, post, store):
        resp = client.post("/api/v1/read", json={"message_id": "m1"}, headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["message_id"] == "m1"
        assert data["channel_id"] == "c1"
        assert data["readers"] == ["u1"]

        [event] = store.get_by_channel("c1")
        assert (event.message_id, event.user_id, event.channel_id) == ("m1", "u1", "c1")
        assert event.timestamp > 0

    def test_repeat_with_earlier_timestamp_keeps_stored_value(self, client: TestClient, headers, post, store):
        assert client.post("/api/v1/read", json={"message_id": "m1"}, headers=headers).status_code == 200
        stored = store.get_by_channel("c1")[0].timestamp

        resp = client.post(
            "/api/v1/read",
            json={"message_id": "m1", "timestamp": stored - 5_000},
            headers=headers,
        )
        assert resp.status_code == 200
        assert store.get_by_channel("c1")[0].timestamp == stored

    def test_post_channel_wins_over_body(self, client: TestClient, headers, post, store):
        resp = client.post("/api/v1/read", json={"message_id": "m1", "channel_id": "other"}, headers=headers)
        assert resp.json()["channel_id"] == "c1"
        assert store.get_by_channel("other") == []

    def test_unknown_post_falls_back_to_body_channel(self, client: TestClient, headers, store):
        resp = client.post("/api/v1/read", json={"message_id": "ghost", "channel_id": "c7"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["channel_id"] == "c7"
        assert store.get_by_channel("c7")[0].message_id == "ghost"

    def test_readers_accumulate(self, client: TestClient, post):
        for uid in ("u1", "u2", "u3"):
            resp = _read(client, uid)
        assert sorted(resp.json()["readers"]) == ["u1", "u2", "u3"]

    def test_read_broadcasts_update_and_receipt(self, client: TestClient, headers, post, plugin):
        client.post("/api/v1/read", json={"message_id": "m1"}, headers=headers)
        names = [event for event, _, _ in plugin.broadcaster.published]
        # Channel-wide receipt, then the author's own copy
        assert names == [events.CHANNEL_READERS_UPDATE, events.READ_RECEIPT, events.READ_RECEIPT]

    def test_missing_message_id(self, client: TestClient, headers, store):
        resp = client.post("/api/v1/read", json={"channel_id": "c1"}, headers=headers)
        assert resp.status_code == 400
        assert store.ping() == 0

    def test_malformed_body(self, client: TestClient, headers):
        resp = client.post(
            "/api/v1/read",
            content="{not json",
            headers={**headers, "Content-Type": "application/json"},
        )
        assert resp.status_code == 400

    def test_wrong_timestamp_type(self, client: TestClient, headers, post):
        resp = client.post("/api/v1/read", json={"message_id": "m1", "timestamp": "yesterday"}, headers=headers)
        assert resp.status_code == 400

    def test_requires_identity(self, client: TestClient, post, store):
        resp = client.post("/api/v1/read", json={"message_id": "m1"})
        assert resp.status_code == 401
        assert store.ping() == 0

    def test_storage_error_is_opaque(self, client: TestClient, headers, post, store, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def broken(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store.__class__, "upsert_tx", broken)
        resp = client.post("/api/v1/read", json={"message_id": "m1"}, headers=headers)
        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal server error"}


class TestReceipts:
    def test_list_for_channel(self, client: TestClient, headers, post):
        _read(client, "u1")
        _read(client, "u2")
        resp = client.get("/api/v1/receipts", params={"channel_id": "c1"}, headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert sorted(e["user_id"] for e in data) == ["u1", "u2"]
        assert set(data[0]) == {"message_id", "user_id", "channel_id", "timestamp"}

    def test_filter_by_message(self, client: TestClient, headers, post, lookup):
        lookup.add_post("m2", "c1")
        _read(client, "u1", "m1")
        _read(client, "u1", "m2")
        resp = client.get("/api/v1/receipts", params={"channel_id": "c1", "message_id": "m2"}, headers=headers)
        assert [e["message_id"] for e in resp.json()] == ["m2"]

    def test_since_in_future_is_empty(self, client: TestClient, headers, post):
        _read(client, "u1")
        resp = client.get(
            "/api/v1/receipts",
            params={"channel_id": "c1", "since": now_ms() + 60_000},
            headers=headers,
        )
        assert resp.json() == []

    def test_missing_channel_id(self, client: TestClient, headers):
        resp = client.get("/api/v1/receipts", headers=headers)
        assert resp.status_code == 400

    def test_requires_identity(self, client: TestClient):
        resp = client.get("/api/v1/receipts", params={"channel_id": "c1"})
        assert resp.status_code == 401


class TestChannelReaders:
    def test_readers_exclude_requester(self, client: TestClient, headers, post):
        _read(client, "u1")
        _read(client, "u2")
        resp = client.get("/api/v1/channel/c1/readers", params={"since": 0}, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"user_ids": ["u2"]}

    def test_future_since_is_empty(self, client: TestClient, headers, post):
        _read(client, "u2")
        resp = client.get("/api/v1/channel/c1/readers", params={"since": now_ms() + 60_000}, headers=headers)
        assert resp.json() == {"user_ids": []}

    def test_readers_since_post(self, client: TestClient, headers, post):
        _read(client, "u2")
        resp = client.get("/api/v1/channel/c1/readers", params={"postID": "m1"}, headers=headers)
        assert resp.json() == {"user_ids": ["u2"]}

    def test_unknown_post(self, client: TestClient, headers):
        resp = client.get("/api/v1/channel/c1/readers", params={"postID": "ghost"}, headers=headers)
        assert resp.status_code == 404

    def test_post_from_other_channel(self, client: TestClient, headers, post):
        resp = client.get("/api/v1/channel/c2/readers", params={"postID": "m1"}, headers=headers)
        assert resp.status_code == 400

    def test_negative_since(self, client: TestClient, headers):
        resp = client.get("/api/v1/channel/c1/readers", params={"since": -1}, headers=headers)
        assert resp.status_code == 400

    def test_requires_identity(self, client: TestClient):
        resp = client.get("/api/v1/channel/c1/readers")
        assert resp.status_code == 401


class TestChannelReads:
    def test_full_read_state(self, client: TestClient, headers, post):
        _read(client, "u1")
        _read(client, "u2")
        resp = client.get("/api/v1/channel/c1/reads", headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert sorted(r["user_id"] for r in data) == ["u1", "u2"]
        assert all(r["last_post_id"] == "m1" for r in data)
        assert all(r["channel_id"] == "c1" for r in data)

    def test_empty_channel(self, client: TestClient, headers):
        resp = client.get("/api/v1/channel/nobody/reads", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == []

    def test_requires_identity(self, client: TestClient):
        assert client.get("/api/v1/channel/c1/reads").status_code == 401


class TestMessageReaders:
    def test_seen_by(self, client: TestClient, headers, post):
        _read(client, "u2")
        _read(client, "u3")
        resp = client.get("/api/v1/message/m1/readers", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"message_id": "m1", "seen_by": ["u2", "u3"]}

    def test_unread_message(self, client: TestClient, headers):
        resp = client.get("/api/v1/message/nothing/readers", headers=headers)
        assert resp.json() == {"message_id": "nothing", "seen_by": []}


class TestConfig:
    def test_get_config(self, client: TestClient, headers):
        resp = client.get("/api/v1/config", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {
            "enable": True,
            "visibility_threshold_ms": 2000,
            "retention_days": 30,
            "log_level": "info",
        }

    def test_get_config_requires_identity(self, client: TestClient):
        assert client.get("/api/v1/config").status_code == 401

    def test_push_config(self, client: TestClient, headers):
        resp = client.put(
            "/api/v1/config",
            json={"retention_days": 7, "log_level": "DEBUG"},
            headers=PUSH_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["log_level"] == "debug"

        data = client.get("/api/v1/config", headers=headers).json()
        assert data["retention_days"] == 7
        assert data["visibility_threshold_ms"] == 2000

    def test_push_requires_token(self, client: TestClient):
        resp = client.put("/api/v1/config", json={"retention_days": 7})
        assert resp.status_code == 403

    def test_push_rejects_wrong_token(self, client: TestClient):
        resp = client.put("/api/v1/config", json={"retention_days": 7}, headers={"X-Config-Push-Token": "nope"})
        assert resp.status_code == 403

    @pytest.mark.parametrize(
        "body",
        [{"log_level": "verbose"}, {"retention_days": -1}, {"visibility_threshold_ms": -5}],
    )
    def test_push_invalid_keeps_previous(self, client: TestClient, headers, body):
        resp = client.put("/api/v1/config", json=body, headers=PUSH_HEADERS)
        assert resp.status_code == 400
        data = client.get("/api/v1/config", headers=headers).json()
        assert data["log_level"] == "info"
        assert data["retention_days"] == 30

    def test_disabled_plugin_rejects_service_calls(self, client: TestClient, headers, post):
        client.put("/api/v1/config", json={"enable": False}, headers=PUSH_HEADERS)

        assert client.post("/api/v1/read", json={"message_id": "m1"}, headers=headers).status_code == 503
        assert client.get("/api/v1/receipts", params={"channel_id": "c1"}, headers=headers).status_code == 503
        # Still reachable so the webapp can see it is disabled
        assert client.get("/api/v1/config", headers=headers).json()["enable"] is False

        client.put("/api/v1/config", json={"enable": True}, headers=PUSH_HEADERS)
        assert client.post("/api/v1/read", json={"message_id": "m1"}, headers=headers).status_code == 200


class TestDebug:
    def test_ping_without_identity(self, client: TestClient):
        resp = client.get("/api/v1/debug/ping")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "time" in data

    def test_db_check(self, client: TestClient, headers, post):
        _read(client, "u1")
        resp = client.get("/api/v1/debug/db", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["read_events_rows"] == 1

    def test_db_check_requires_identity(self, client: TestClient):
        assert client.get("/api/v1/debug/db").status_code == 401

    def test_db_check_failure(self, client: TestClient, headers, store, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def broken(self):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(store.__class__, "ping", broken)
        resp = client.get("/api/v1/debug/db", headers=headers)
        assert resp.status_code == 500
