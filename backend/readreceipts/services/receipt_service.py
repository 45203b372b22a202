"""
Receipt service: one "mark as read" request end to end.

    validate → resolve channel → persist (one transaction) → reader set →
    broadcast

Nothing is broadcast unless the transaction committed.  Mattermost lookups
run in a worker thread so the event loop keeps serving sockets.  Lookup
failures are soft: the request proceeds with whatever channel id is known and an
unscoped broadcast when none is.  Reader-set query failures after a
successful write are logged and do not fail the request.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from readreceipts.core import events
from readreceipts.core.clock import now_ms
from readreceipts.mattermost import Channel, LookupFailed, Post, PostLookup
from readreceipts.models import ChannelReadData, ReadEventData
from readreceipts.store import ReceiptStore, is_unique_violation
from readreceipts.websocket.broadcaster import Broadcaster
from readreceipts.websocket.manager import BroadcastScope

logger = logging.getLogger(__name__)


class ReceiptError(Exception):
    pass


class InvalidReadRequest(ReceiptError, ValueError):
    """Rejected before any persistence attempt."""


class PostNotFound(ReceiptError):
    pass


class StorageError(ReceiptError):
    """The store failed; the message is safe to show to clients."""


@dataclass(frozen=True)
class MarkReadResult:
    channel_id: str
    readers: list[str] = field(default_factory=list)


class ReceiptService:
    def __init__(
        self,
        store: ReceiptStore,
        lookup: PostLookup,
        broadcaster: Broadcaster,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.lookup = lookup
        self.broadcaster = broadcaster
        self._clock = clock

    # ------------------------------------------------------------------
    # Mark as read
    # ------------------------------------------------------------------

    async def mark_read(
        self,
        message_id: str,
        user_id: str,
        channel_id: str = "",
        timestamp: int | None = None,
    ) -> MarkReadResult:
        """Record that *user_id* read *message_id* and notify peers.

        *channel_id* is only used when the post lookup fails.  A client
        *timestamp* (epoch ms) is honoured but never placed in the future.
        Returns the resolved channel id and the message's reader set.
        """
        if not message_id:
            raise InvalidReadRequest("Missing message_id")
        if not user_id:
            raise InvalidReadRequest("Missing user id")

        now = self._clock()
        ts = min(timestamp, now) if timestamp and timestamp > 0 else now

        post, channel = await asyncio.to_thread(self._resolve, message_id)
        if post is not None and post.channel_id:
            channel_id = post.channel_id

        event = ReadEventData(message_id=message_id, user_id=user_id, channel_id=channel_id, timestamp=ts)
        self._persist(event, now)

        readers: list[str] = []
        if channel_id:
            reader_set = self._reader_set(channel_id, message_id)
            if reader_set is not None:
                readers = reader_set
                await self.broadcaster.publish(
                    events.CHANNEL_READERS_UPDATE,
                    {"channel_id": channel_id, "last_post_id": message_id, "user_ids": readers},
                    BroadcastScope(channel_id=channel_id),
                )

        await self._publish_receipt(event, post, channel)
        return MarkReadResult(channel_id=channel_id, readers=readers)

    def _resolve(self, message_id: str) -> tuple[Post | None, Channel | None]:
        try:
            post = self.lookup.get_post(message_id)
        except LookupFailed as exc:
            logger.warning("Post lookup failed for message_id=%s, continuing unscoped: %s", message_id, exc)
            return None, None
        if not post.channel_id:
            return post, None
        try:
            channel = self.lookup.get_channel(post.channel_id)
        except LookupFailed as exc:
            logger.warning("Channel lookup failed for channel_id=%s: %s", post.channel_id, exc)
            channel = None
        return post, channel

    def _write(self, event: ReadEventData, seen_at: int) -> None:
        with self.store.begin_tx() as tx:
            self.store.upsert_tx(tx, event)
            if event.channel_id:
                self.store.upsert_channel_read_tx(
                    tx,
                    ChannelReadData(
                        channel_id=event.channel_id,
                        user_id=event.user_id,
                        last_post_id=event.message_id,
                        last_seen_at=seen_at,
                    ),
                )

    def _persist(self, event: ReadEventData, seen_at: int) -> None:
        """Run both upserts in one transaction.

        A unique violation means a concurrent request inserted the same key
        first and rolled this transaction back; it is retried once, where the
        upserts take their conflict path.
        """
        for attempt in (1, 2):
            try:
                self._write(event, seen_at)
                break
            except SQLAlchemyError as exc:
                if attempt == 1 and is_unique_violation(exc):
                    logger.info(
                        "Concurrent read receipt for message_id=%s user_id=%s, retrying",
                        event.message_id,
                        event.user_id,
                    )
                    continue
                logger.error(
                    "Failed to store read event message_id=%s user_id=%s channel_id=%s: %s",
                    event.message_id,
                    event.user_id,
                    event.channel_id,
                    exc,
                )
                raise StorageError("Failed to store read receipt") from exc

        logger.info(
            "Read receipt stored message_id=%s user_id=%s channel_id=%s",
            event.message_id,
            event.user_id,
            event.channel_id,
        )

    def _reader_set(self, channel_id: str, message_id: str) -> list[str] | None:
        try:
            return self.store.get_message_readers(message_id)
        except SQLAlchemyError as exc:
            logger.warning("Reader set query failed for channel_id=%s message_id=%s: %s", channel_id, message_id, exc)
            return None

    def _receipt_targets(self, event: ReadEventData, post: Post | None, channel: Channel | None) -> list[BroadcastScope]:
        if not event.channel_id:
            return [BroadcastScope()]
        author = post.user_id if post is not None and post.user_id != event.user_id else ""
        if channel is None or not channel.is_direct or not channel.dm_participants():
            if not author:
                return [BroadcastScope(channel_id=event.channel_id)]
            # The author gets exactly one copy, whether or not they watch the channel.
            return [
                BroadcastScope(channel_id=event.channel_id, omit_user_ids=(author,)),
                BroadcastScope(channel_id=event.channel_id, user_id=author),
            ]

        # Direct channel: only the counterpart and, if someone else, the author.
        targets = [uid for uid in channel.dm_participants() if uid != event.user_id]
        if author and author not in targets:
            targets.append(author)
        return [BroadcastScope(channel_id=event.channel_id, user_id=uid) for uid in dict.fromkeys(targets)]

    async def _publish_receipt(self, event: ReadEventData, post: Post | None, channel: Channel | None) -> None:
        payload = event.as_dict()
        for scope in self._receipt_targets(event, post, channel):
            await self.broadcaster.publish(events.READ_RECEIPT, payload, scope)
        logger.debug("Read receipt broadcast message_id=%s user_id=%s", event.message_id, event.user_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _query(self, what: str, fn, *args):
        try:
            return fn(*args)
        except SQLAlchemyError as exc:
            logger.error("Failed to %s %s: %s", what, args, exc)
            raise StorageError(f"Failed to {what}") from exc

    def channel_receipts(self, channel_id: str, since: int = 0, message_id: str = "") -> list[ReadEventData]:
        if not channel_id:
            raise InvalidReadRequest("Missing channel_id parameter")
        result = self._query("load channel receipts", self.store.get_by_channel, channel_id, "", since)
        if message_id:
            result = [ev for ev in result if ev.message_id == message_id]
        return result

    def readers_since(self, channel_id: str, since_ms: int, exclude_user_id: str) -> list[str]:
        return self._query("load channel readers", self.store.get_readers_since, channel_id, since_ms, exclude_user_id)

    def readers_since_post(self, channel_id: str, post_id: str, exclude_user_id: str) -> list[str]:
        """Readers caught up to the creation time of *post_id*."""
        try:
            post = self.lookup.get_post(post_id)
        except LookupFailed as exc:
            raise PostNotFound(f"Post {post_id} not found") from exc
        if post.channel_id and post.channel_id != channel_id:
            raise InvalidReadRequest("Post does not belong to this channel")
        return self.readers_since(channel_id, post.create_at, exclude_user_id)

    def channel_reads(self, channel_id: str) -> list[ChannelReadData]:
        return self._query("load channel reads", self.store.get_channel_reads, channel_id)

    def message_readers(self, message_id: str, exclude_user_id: str = "") -> list[str]:
        return self._query("load message readers", self.store.get_message_readers, message_id, exclude_user_id)

    def cleanup(self, days: int) -> int:
        return self._query("clean up old receipts", self.store.cleanup_older_than, days)
