"""
Event fan-out to connected clients.

``publish`` is fire-and-forget: delivery problems are logged and never
reach the caller, so a failed broadcast cannot undo a committed write.

With Redis available every event goes through the ``readreceipts:events``
pub/sub channel and each process relays it to its own sockets.  Without
Redis the event is delivered to this process's sockets directly.
"""

import asyncio
import json
import logging
from collections.abc import Callable

from readreceipts.redis.client import get_redis
from readreceipts.websocket.manager import BroadcastScope, ConnectionManager

logger = logging.getLogger(__name__)

PUBSUB_CHANNEL = "readreceipts:events"


class Broadcaster:
    def __init__(self, manager: ConnectionManager, redis_getter: Callable = get_redis) -> None:
        self.manager = manager
        self._redis = redis_getter
        self._relay_task: asyncio.Task | None = None

    async def publish(self, event: str, data: dict, scope: BroadcastScope | None = None) -> None:
        envelope = {
            "event": event,
            "data": data,
            "broadcast": (scope or BroadcastScope()).as_dict(),
        }
        r = self._redis()
        if r is not None:
            try:
                await r.publish(PUBSUB_CHANNEL, json.dumps(envelope))
                return
            except Exception as exc:
                logger.warning("broadcast publish via Redis failed (%s), delivering locally", exc)
        try:
            await self.manager.deliver(envelope)
        except Exception as exc:
            logger.warning("broadcast of %s failed: %s", event, exc)

    # ------------------------------------------------------------------
    # Redis relay
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._relay_task is None and self._redis() is not None:
            self._relay_task = asyncio.create_task(self._relay(), name="readreceipts-relay")

    async def stop(self) -> None:
        task, self._relay_task = self._relay_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _relay(self) -> None:
        r = self._redis()
        if r is None:
            return
        pubsub = r.pubsub()
        await pubsub.subscribe(PUBSUB_CHANNEL)
        logger.info("Relaying broadcast events from Redis channel %s", PUBSUB_CHANNEL)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("Ignoring malformed broadcast payload: %r", message.get("data"))
                    continue
                await self.relay_one(envelope)
        finally:
            await pubsub.unsubscribe(PUBSUB_CHANNEL)
            await pubsub.aclose()

    async def relay_one(self, envelope: dict) -> None:
        try:
            await self.manager.deliver(envelope)
        except Exception as exc:
            logger.warning("relay delivery failed: %s", exc)
