from sqlalchemy import and_, case, func
from sqlalchemy.dialects.mysql import insert
from sqlalchemy.sql import Executable

from readreceipts.models import ChannelRead, ChannelReadData, ReadEvent, ReadEventData
from readreceipts.store.base import ReceiptStore


class MySQLStore(ReceiptStore):
    """MySQL/MariaDB backend.

    ON DUPLICATE KEY UPDATE has no WHERE clause, so every column is guarded
    individually.  Assignments run left to right and later ones see earlier
    results: the guarded columns must be assigned before the timestamp.
    """

    dialect = "mysql"

    def _read_event_upsert(self, event: ReadEventData) -> Executable:
        stmt = insert(ReadEvent).values(
            message_id=event.message_id,
            user_id=event.user_id,
            channel_id=event.channel_id,
            timestamp=event.timestamp,
        )
        newer = stmt.inserted.timestamp > ReadEvent.timestamp
        return stmt.on_duplicate_key_update(
            [
                (
                    "channel_id",
                    case(
                        (and_(newer, stmt.inserted.channel_id != ""), stmt.inserted.channel_id),
                        else_=ReadEvent.channel_id,
                    ),
                ),
                ("timestamp", func.greatest(ReadEvent.timestamp, stmt.inserted.timestamp)),
            ]
        )

    def _channel_read_upsert(self, read: ChannelReadData) -> Executable:
        stmt = insert(ChannelRead).values(
            channel_id=read.channel_id,
            user_id=read.user_id,
            last_post_id=read.last_post_id,
            last_seen_at=read.last_seen_at,
        )
        newer = stmt.inserted.last_seen_at > ChannelRead.last_seen_at
        return stmt.on_duplicate_key_update(
            [
                ("last_post_id", case((newer, stmt.inserted.last_post_id), else_=ChannelRead.last_post_id)),
                ("last_seen_at", func.greatest(ChannelRead.last_seen_at, stmt.inserted.last_seen_at)),
            ]
        )
