"""Data models for the voice orchestrator."""

from .agent import AgentConfig
from .credential import ChannelRole, Credential
from .session import ACTIVE_STATES, TERMINAL_STATES, Session, SessionState
from .transcript import (
    DeliveryStatus,
    EventSource,
    Speaker,
    TranscriptEvent,
    TranscriptLog,
)

__all__ = [
    "ACTIVE_STATES",
    "TERMINAL_STATES",
    "AgentConfig",
    "ChannelRole",
    "Credential",
    "DeliveryStatus",
    "EventSource",
    "Session",
    "SessionState",
    "Speaker",
    "TranscriptEvent",
    "TranscriptLog",
]
