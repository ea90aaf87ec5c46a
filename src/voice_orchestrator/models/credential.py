"""Channel credential value object."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class ChannelRole(str, Enum):
    """Role a credential grants inside a channel."""

    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


@dataclass(frozen=True)
class Credential:
    """Short-lived signed grant for one identity in one channel.

    Credentials are regenerated, never mutated in place, and never persisted
    beyond process memory.
    """

    token: str
    channel: str
    uid: int
    role: ChannelRole
    issued_at: datetime
    expires_at: datetime

    @property
    def ttl_seconds(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at
