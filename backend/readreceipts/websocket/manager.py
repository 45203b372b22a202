import json
import logging
from collections import defaultdict
from dataclasses import dataclass

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastScope:
    """Who receives an event.

    ``user_id`` targets every socket of that user (``channel_id`` is then
    informational), ``channel_id`` alone targets sockets subscribed to the
    channel, and an empty scope reaches everyone.  Users in
    ``omit_user_ids`` are skipped in every case.
    """

    channel_id: str | None = None
    user_id: str | None = None
    omit_user_ids: tuple[str, ...] = ()

    def as_dict(self) -> dict:
        return {
            "channel_id": self.channel_id or "",
            "user_id": self.user_id or "",
            "omit_user_ids": list(self.omit_user_ids),
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "BroadcastScope":
        data = data or {}
        return cls(
            channel_id=data.get("channel_id") or None,
            user_id=data.get("user_id") or None,
            omit_user_ids=tuple(data.get("omit_user_ids") or ()),
        )


class ConnectionManager:
    """Manages active WebSocket connections and their channel subscriptions.

    A user may hold several sockets (tabs, devices).  Each socket subscribes
    to the channels it is currently displaying and only receives
    channel-scoped events for those.
    """

    def __init__(self) -> None:
        # user_id -> {WebSocket}
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        # WebSocket -> {channel_id}
        self._subscriptions: dict[WebSocket, set[str]] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        """Register an already-accepted WebSocket connection."""
        self._connections[user_id].add(websocket)
        self._subscriptions[websocket] = set()
        logger.info("WebSocket connected (user %s)", user_id)

    def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        sockets = self._connections.get(user_id)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                self._connections.pop(user_id, None)
        self._subscriptions.pop(websocket, None)
        logger.info("WebSocket disconnected (user %s)", user_id)

    def subscribe(self, websocket: WebSocket, channel_id: str) -> None:
        self._subscriptions.setdefault(websocket, set()).add(channel_id)

    def unsubscribe(self, websocket: WebSocket, channel_id: str) -> None:
        self._subscriptions.get(websocket, set()).discard(channel_id)

    def connected_users(self) -> list[str]:
        return list(self._connections.keys())

    def _targets(self, scope: BroadcastScope) -> list[tuple[str, WebSocket]]:
        targets = []
        for uid, sockets in list(self._connections.items()):
            if scope.user_id and uid != scope.user_id:
                continue
            if uid in scope.omit_user_ids:
                continue
            for ws in list(sockets):
                if not scope.user_id and scope.channel_id and scope.channel_id not in self._subscriptions.get(ws, ()):
                    continue
                targets.append((uid, ws))
        return targets

    async def deliver(self, envelope: dict) -> int:
        """Send *envelope* to every socket in its broadcast scope.

        Returns the number of sockets that received it.  Sockets that fail
        are dropped.
        """
        scope = BroadcastScope.from_dict(envelope.get("broadcast"))
        text = json.dumps(envelope)
        delivered = 0
        dead: list[tuple[str, WebSocket]] = []
        for uid, ws in self._targets(scope):
            try:
                await ws.send_text(text)
                delivered += 1
            except Exception:
                dead.append((uid, ws))
        for uid, ws in dead:
            self.disconnect(ws, uid)
        return delivered
