from dataclasses import dataclass

from sqlalchemy import BigInteger, Column, String

from readreceipts.database import Base


class ChannelRead(Base):
    """Tracks the latest read position per (channel, user) pair."""

    __tablename__ = "channel_reads"

    channel_id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), primary_key=True, index=True)
    # Only advances together with a strictly newer last_seen_at.
    last_post_id = Column(String(255), nullable=False)
    last_seen_at = Column(BigInteger, nullable=False, index=True)


@dataclass(frozen=True)
class ChannelReadData:
    channel_id: str
    user_id: str
    last_post_id: str
    last_seen_at: int

    @classmethod
    def from_row(cls, row) -> "ChannelReadData":
        return cls(
            channel_id=row.channel_id,
            user_id=row.user_id,
            last_post_id=row.last_post_id,
            last_seen_at=row.last_seen_at,
        )

    def as_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "user_id": self.user_id,
            "last_post_id": self.last_post_id,
            "last_seen_at": self.last_seen_at,
        }
