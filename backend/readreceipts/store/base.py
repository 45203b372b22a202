"""
Receipt store: durable, idempotent persistence of read state.

Both tables use a monotonic merge: a write only replaces the stored row when
it carries a strictly newer timestamp, so retries and out-of-order arrivals
are harmless.  Dialect-specific upsert syntax lives in the backend
subclasses; everything else is shared here.

The store never retries.  SQLAlchemy errors propagate to the caller.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import delete, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import Executable

from readreceipts.core.clock import cutoff_ms
from readreceipts.models import ChannelRead, ChannelReadData, ReadEvent, ReadEventData

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION_MARKERS = (
    # PostgreSQL: duplicate key value violates unique constraint "..."
    "duplicate key value",
    "violates unique constraint",
    # MySQL: (1062, "Duplicate entry '...' for key '...'")
    "1062",
    "duplicate entry",
    # SQLite: UNIQUE constraint failed: table.column
    "unique constraint failed",
)


def is_unique_violation(exc: BaseException | None) -> bool:
    """Return True if *exc* looks like a duplicate-key error from any driver."""
    if exc is None:
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _UNIQUE_VIOLATION_MARKERS)


def validate_read_event(event: ReadEventData) -> None:
    if not event.message_id or not event.user_id:
        raise ValueError("invalid read event: message_id and user_id are required")
    if event.timestamp <= 0:
        raise ValueError("invalid read event: timestamp must be positive")


def validate_channel_read(read: ChannelReadData) -> None:
    if not read.channel_id or not read.user_id:
        raise ValueError("invalid channel read: channel_id and user_id are required")
    if read.last_seen_at <= 0:
        raise ValueError("invalid channel read: last_seen_at must be positive")


class ReceiptStore(ABC):
    """Storage contract shared by every SQL backend."""

    dialect: str = ""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    # ------------------------------------------------------------------
    # Dialect hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _read_event_upsert(self, event: ReadEventData) -> Executable:
        """Single-statement insert-or-advance for ``read_events``."""

    @abstractmethod
    def _channel_read_upsert(self, read: ChannelReadData) -> Executable:
        """Single-statement insert-or-advance for ``channel_reads``."""

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _ensure_table(self, table) -> None:
        table.create(self.engine, checkfirst=True)
        for index in table.indexes:
            index.create(self.engine, checkfirst=True)

    def initialize(self) -> None:
        """Create ``read_events`` and its indexes if missing.  Safe on every startup."""
        self._ensure_table(ReadEvent.__table__)
        logger.debug("read_events schema ready (%s)", self.dialect)

    def initialize_channel_reads(self) -> None:
        """Create ``channel_reads`` and its indexes if missing."""
        self._ensure_table(ChannelRead.__table__)
        logger.debug("channel_reads schema ready (%s)", self.dialect)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def begin_tx(self) -> Iterator[Session]:
        """Yield a session inside a transaction.

        Commits when the block exits normally and rolls back if it raises.
        """
        with self._sessions.begin() as session:
            yield session

    def upsert_tx(self, tx: Session, event: ReadEventData) -> None:
        validate_read_event(event)
        tx.execute(self._read_event_upsert(event))
        logger.debug(
            "Upserted read event message_id=%s user_id=%s channel_id=%s timestamp=%s",
            event.message_id,
            event.user_id,
            event.channel_id,
            event.timestamp,
        )

    def upsert_channel_read_tx(self, tx: Session, read: ChannelReadData) -> None:
        validate_channel_read(read)
        tx.execute(self._channel_read_upsert(read))
        logger.debug(
            "Upserted channel read channel_id=%s user_id=%s last_post_id=%s last_seen_at=%s",
            read.channel_id,
            read.user_id,
            read.last_post_id,
            read.last_seen_at,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, event: ReadEventData) -> None:
        with self.begin_tx() as tx:
            self.upsert_tx(tx, event)

    def upsert_channel_read(self, channel_id: str, user_id: str, last_post_id: str, last_seen_at: int) -> None:
        read = ChannelReadData(
            channel_id=channel_id,
            user_id=user_id,
            last_post_id=last_post_id,
            last_seen_at=last_seen_at,
        )
        with self.begin_tx() as tx:
            self.upsert_channel_read_tx(tx, read)

    def cleanup_older_than(self, days: int) -> int:
        """Delete read events and channel reads older than *days*.

        Returns the number of rows removed from both tables.
        """
        if days < 0:
            raise ValueError("days must be non-negative")
        cutoff = cutoff_ms(days)
        with self.begin_tx() as tx:
            events = tx.execute(delete(ReadEvent).where(ReadEvent.timestamp < cutoff)).rowcount or 0
            reads = tx.execute(delete(ChannelRead).where(ChannelRead.last_seen_at < cutoff)).rowcount or 0
        logger.info("Retention cleanup removed %d read events and %d channel reads", events, reads)
        return events + reads

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_channel(self, channel_id: str, exclude_user_id: str = "", since: int = 0) -> list[ReadEventData]:
        """Return read events in a channel, most recent first."""
        stmt = select(ReadEvent).where(ReadEvent.channel_id == channel_id)
        if exclude_user_id:
            stmt = stmt.where(ReadEvent.user_id != exclude_user_id)
        if since:
            stmt = stmt.where(ReadEvent.timestamp >= since)
        stmt = stmt.order_by(ReadEvent.timestamp.desc(), ReadEvent.user_id)
        with self._sessions() as session:
            return [ReadEventData.from_row(row) for row in session.scalars(stmt)]

    def get_message_readers(self, message_id: str, exclude_user_id: str = "") -> list[str]:
        """Return the distinct users who have read *message_id*."""
        stmt = select(ReadEvent.user_id).where(ReadEvent.message_id == message_id)
        if exclude_user_id:
            stmt = stmt.where(ReadEvent.user_id != exclude_user_id)
        stmt = stmt.distinct().order_by(ReadEvent.user_id)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def get_readers_since(self, channel_id: str, since_ms: int, exclude_user_id: str = "") -> list[str]:
        """Return distinct users whose read position in the channel is at or after *since_ms*."""
        stmt = select(ChannelRead.user_id).where(
            ChannelRead.channel_id == channel_id,
            ChannelRead.last_seen_at >= since_ms,
        )
        if exclude_user_id:
            stmt = stmt.where(ChannelRead.user_id != exclude_user_id)
        stmt = stmt.distinct().order_by(ChannelRead.user_id)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def get_channel_reads(self, channel_id: str) -> list[ChannelReadData]:
        stmt = (
            select(ChannelRead)
            .where(ChannelRead.channel_id == channel_id)
            .order_by(ChannelRead.last_seen_at.desc(), ChannelRead.user_id)
        )
        with self._sessions() as session:
            return [ChannelReadData.from_row(row) for row in session.scalars(stmt)]

    def ping(self) -> int:
        """Check connectivity and schema; returns the ``read_events`` row count."""
        with self._sessions() as session:
            session.execute(text("SELECT 1"))
            return session.scalar(select(func.count()).select_from(ReadEvent)) or 0
