from dataclasses import dataclass

from sqlalchemy import BigInteger, Column, String

from readreceipts.database import Base


class ReadEvent(Base):
    """One row per (message, user): the latest time the user saw the message.

    ``timestamp`` is epoch milliseconds and never moves backwards.
    """

    __tablename__ = "read_events"

    message_id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), primary_key=True, index=True)
    # Resolved from the post at write time; empty when the lookup failed.
    channel_id = Column(String(255), nullable=False, default="", index=True)
    timestamp = Column(BigInteger, nullable=False, index=True)


@dataclass(frozen=True)
class ReadEventData:
    message_id: str
    user_id: str
    channel_id: str
    timestamp: int

    @classmethod
    def from_row(cls, row) -> "ReadEventData":
        return cls(
            message_id=row.message_id,
            user_id=row.user_id,
            channel_id=row.channel_id or "",
            timestamp=row.timestamp,
        )

    def as_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "user_id": self.user_id,
            "channel_id": self.channel_id,
            "timestamp": self.timestamp,
        }
