from sqlalchemy import func
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.sql import Executable

from readreceipts.models import ChannelRead, ChannelReadData, ReadEvent, ReadEventData
from readreceipts.store.base import ReceiptStore


class SQLiteStore(ReceiptStore):
    """SQLite backend (requires SQLite >= 3.24 for ON CONFLICT ... DO UPDATE)."""

    dialect = "sqlite"

    def _read_event_upsert(self, event: ReadEventData) -> Executable:
        stmt = insert(ReadEvent).values(
            message_id=event.message_id,
            user_id=event.user_id,
            channel_id=event.channel_id,
            timestamp=event.timestamp,
        )
        return stmt.on_conflict_do_update(
            index_elements=["message_id", "user_id"],
            set_={
                "timestamp": stmt.excluded.timestamp,
                "channel_id": func.coalesce(func.nullif(stmt.excluded.channel_id, ""), ReadEvent.channel_id),
            },
            where=ReadEvent.timestamp < stmt.excluded.timestamp,
        )

    def _channel_read_upsert(self, read: ChannelReadData) -> Executable:
        stmt = insert(ChannelRead).values(
            channel_id=read.channel_id,
            user_id=read.user_id,
            last_post_id=read.last_post_id,
            last_seen_at=read.last_seen_at,
        )
        return stmt.on_conflict_do_update(
            index_elements=["channel_id", "user_id"],
            set_={
                "last_post_id": stmt.excluded.last_post_id,
                "last_seen_at": stmt.excluded.last_seen_at,
            },
            where=ChannelRead.last_seen_at < stmt.excluded.last_seen_at,
        )
