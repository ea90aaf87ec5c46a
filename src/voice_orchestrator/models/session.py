"""Session lifecycle model."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..errors import InvalidStateError, OrchestratorError, ReconciliationWarning
from .agent import AgentConfig
from .credential import Credential
from .transcript import TranscriptLog

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle state of a voice-agent session."""

    IDLE = "idle"
    TOKEN_ISSUED = "tokenIssued"
    JOINED = "joined"
    STARTING = "starting"
    AGENT_ACTIVE = "agentActive"
    SPEAKING = "speaking"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"
    EXPIRED = "expired"


ACTIVE_STATES = frozenset({SessionState.AGENT_ACTIVE, SessionState.SPEAKING})
TERMINAL_STATES = frozenset(
    {SessionState.STOPPED, SessionState.ERROR, SessionState.EXPIRED}
)
EXPIRABLE_STATES = frozenset({SessionState.TOKEN_ISSUED, SessionState.JOINED})

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.TOKEN_ISSUED, SessionState.STOPPING}),
    SessionState.TOKEN_ISSUED: frozenset(
        {SessionState.JOINED, SessionState.EXPIRED, SessionState.STOPPING}
    ),
    SessionState.JOINED: frozenset(
        {SessionState.STARTING, SessionState.EXPIRED, SessionState.STOPPING}
    ),
    SessionState.STARTING: frozenset({SessionState.AGENT_ACTIVE, SessionState.STOPPING}),
    SessionState.AGENT_ACTIVE: frozenset({SessionState.SPEAKING, SessionState.STOPPING}),
    SessionState.SPEAKING: frozenset({SessionState.AGENT_ACTIVE, SessionState.STOPPING}),
    SessionState.STOPPING: frozenset({SessionState.STOPPED}),
    SessionState.STOPPED: frozenset(),
    SessionState.ERROR: frozenset(),
    SessionState.EXPIRED: frozenset({SessionState.STOPPED}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """One logical voice-agent conversation bound to one channel.

    ``agent_id`` is set if and only if ``state`` is in ``ACTIVE_STATES``;
    the helpers below are the only places that change either field.
    """

    channel: str
    local_uid: int
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    credential: Credential | None = None
    agent_id: str | None = None
    agent_config: AgentConfig | None = None
    state: SessionState = SessionState.IDLE
    last_error: OrchestratorError | None = None
    warnings: list[ReconciliationWarning] = field(default_factory=list)
    transcript: TranscriptLog = field(default_factory=TranscriptLog)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    activated_at: datetime | None = None
    stop_requested: bool = False
    pending_speech: set[asyncio.Task] = field(default_factory=set)

    @property
    def token(self) -> str | None:
        return self.credential.token if self.credential else None

    @property
    def token_expiry(self) -> datetime | None:
        return self.credential.expires_at if self.credential else None

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``, rejecting transitions the lifecycle forbids."""
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateError(
                f"Session {self.session_id} cannot move from "
                f"{self.state.value} to {new_state.value}"
            )
        logger.info(
            f"Session {self.session_id}: {self.state.value} -> {new_state.value}"
        )
        self.state = new_state
        self.updated_at = _utcnow()

    def issue(self, credential: Credential) -> None:
        self.credential = credential
        if self.state is SessionState.IDLE:
            self.transition(SessionState.TOKEN_ISSUED)
        else:
            self.updated_at = _utcnow()

    def activate(self, agent_id: str) -> None:
        self.transition(SessionState.AGENT_ACTIVE)
        self.agent_id = agent_id
        self.activated_at = self.updated_at

    def begin_stop(self) -> str | None:
        """Enter ``stopping`` and hand back the agent id the caller must release."""
        agent_id = self.agent_id
        self.agent_id = None
        self.transition(SessionState.STOPPING)
        return agent_id

    def fail(self, error: OrchestratorError) -> None:
        """Move to the terminal ``error`` state, keeping ``error`` for diagnostics."""
        if self.is_terminal:
            return
        logger.error(f"Session {self.session_id}: {self.state.value} -> error ({error!r})")
        self.last_error = error
        self.agent_id = None
        self.state = SessionState.ERROR
        self.updated_at = _utcnow()
