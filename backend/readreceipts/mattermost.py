"""Post/channel lookups against the Mattermost v4 REST API."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

DIRECT_CHANNEL = "D"


class LookupFailed(Exception):
    """The post or channel could not be resolved."""


@dataclass(frozen=True)
class Post:
    id: str
    channel_id: str
    user_id: str
    create_at: int = 0


@dataclass(frozen=True)
class Channel:
    id: str
    type: str
    name: str = ""

    @property
    def is_direct(self) -> bool:
        return self.type == DIRECT_CHANNEL

    def dm_participants(self) -> tuple[str, ...]:
        """Both user ids of a direct channel (named ``<uid1>__<uid2>``)."""
        if not self.is_direct:
            return ()
        return tuple(uid for uid in self.name.split("__") if uid)


class PostLookup(Protocol):
    def get_post(self, post_id: str) -> Post: ...

    def get_channel(self, channel_id: str) -> Channel: ...


class MattermostClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _get(self, path: str) -> dict:
        url = f"{self.base_url}/api/v4/{path}"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.get(url, headers=headers)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            raise LookupFailed(f"Mattermost API error: {exc.response.status_code} for {path}") from exc
        except httpx.RequestError as exc:
            raise LookupFailed(f"Mattermost API error: {exc}") from exc
        except ValueError as exc:
            raise LookupFailed(f"Mattermost API returned invalid JSON for {path}") from exc

    def get_post(self, post_id: str) -> Post:
        data = self._get(f"posts/{post_id}")
        return Post(
            id=data.get("id", post_id),
            channel_id=data.get("channel_id", ""),
            user_id=data.get("user_id", ""),
            create_at=int(data.get("create_at") or 0),
        )

    def get_channel(self, channel_id: str) -> Channel:
        data = self._get(f"channels/{channel_id}")
        return Channel(
            id=data.get("id", channel_id),
            type=data.get("type", ""),
            name=data.get("name", ""),
        )
