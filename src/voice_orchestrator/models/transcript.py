"""Transcript events and the per-session ordered event log."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class Speaker(str, Enum):
    USER = "user"
    AGENT = "agent"


class EventSource(str, Enum):
    """Where an event came from."""

    LOCAL = "local"  # produced by the text bridge
    WEBHOOK = "webhook"
    POLL = "poll"


class DeliveryStatus(str, Enum):
    """Spoken delivery of an agent reply into the live channel."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    TEXT_ONLY = "text_only"


@dataclass
class TranscriptEvent:
    """One utterance from either the human or the agent.

    ``seq`` is the session-wide position assigned when the event is stored.
    Events pushed or polled from the agent provider also carry the provider's
    own turn number in ``origin_seq``; local events leave it unset.
    """

    speaker: Speaker
    text: str
    source: EventSource
    seq: int = 0
    origin_seq: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    delivery_status: DeliveryStatus | None = None
    delivery_error: str | None = None

    @property
    def origin_key(self) -> tuple[Speaker, int] | None:
        if self.origin_seq is None:
            return None
        return (self.speaker, self.origin_seq)


class TranscriptLog:
    """Ordered, deduplicated store of a session's transcript.

    Every stored event gets the next session ``seq``, so sequence numbers are
    unique and increase in arrival order. Provider events are deduplicated on
    ``(speaker, origin_seq)``: the first arrival wins and later ones are
    dropped. Local events are never deduplicated.
    """

    def __init__(self):
        self._events: dict[int, TranscriptEvent] = {}
        self._origins: dict[tuple[Speaker, int], int] = {}
        self._next_seq = 1
        self.last_webhook_at: datetime | None = None
        self.last_poll_at: datetime | None = None
        self.last_polled_seq = 0

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, origin_key: tuple[Speaker, int]) -> bool:
        return origin_key in self._origins

    @property
    def high_water_mark(self) -> int:
        return self._next_seq - 1

    def allocate_seq(self) -> int:
        seq = self._next_seq
        self._next_seq += 1
        return seq

    def append_local(self, speaker: Speaker, text: str) -> TranscriptEvent:
        """Store a locally produced utterance under a freshly allocated seq."""
        event = TranscriptEvent(
            speaker=speaker,
            text=text,
            source=EventSource.LOCAL,
            seq=self.allocate_seq(),
        )
        self._events[event.seq] = event
        return event

    def add(self, event: TranscriptEvent) -> bool:
        """Store a provider event. Returns False if its origin key was already seen."""
        key = event.origin_key
        if key is None:
            raise ValueError("provider events must carry origin_seq")
        if key in self._origins:
            existing = self._events[self._origins[key]]
            logger.debug(
                f"Dropping duplicate {event.speaker.value} origin_seq={event.origin_seq} "
                f"from {event.source.value} (kept {existing.source.value})"
            )
            return False
        event.seq = self.allocate_seq()
        self._events[event.seq] = event
        self._origins[key] = event.seq
        return True

    def since(self, since_seq: int = 0) -> list[TranscriptEvent]:
        return [self._events[seq] for seq in sorted(self._events) if seq > since_seq]

    def recent(self, limit: int, before_seq: int | None = None) -> list[TranscriptEvent]:
        events = self.since(0)
        if before_seq is not None:
            events = [e for e in events if e.seq < before_seq]
        return events[-limit:] if limit else []
