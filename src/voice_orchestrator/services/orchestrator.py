"""Per-session state machine tying tokens, agent lifecycle and transcripts together."""

import asyncio
import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable

from ..config import Settings
from ..errors import (
    InvalidStateError,
    OrchestratorError,
    SessionNotFoundError,
    ValidationError,
)
from ..models.agent import AgentConfig
from ..models.credential import ChannelRole, Credential
from ..models.session import (
    ACTIVE_STATES,
    EXPIRABLE_STATES,
    TERMINAL_STATES,
    Session,
    SessionState,
)
from ..models.transcript import TranscriptEvent
from .agent_lifecycle import AgentLifecycleManager
from .agent_provider import AgentProviderClient
from .providers import AudioTransport, ConnectionState
from .reasoning import ReasoningClient
from .retry import RetryController, RetryPolicy
from .text_bridge import TextBridge
from .token_service import TokenService, validate_channel, validate_uid
from .transcript import TranscriptAggregator

logger = logging.getLogger(__name__)


class SessionOrchestrator:
    """Coordinates one voice-agent conversation per session.

    Lifecycle requests on the same session (start, stop, renew, connection
    events) are serialized by a per-session lock, so a stop issued while a
    start is in flight applies after the start resolves. Text submissions do
    not take the lock: several reasoning calls may run concurrently, and
    sequence numbers are allocated synchronously between suspension points.
    Different sessions share nothing but the store itself.
    """

    def __init__(
        self,
        settings: Settings,
        tokens: TokenService,
        lifecycle: AgentLifecycleManager,
        bridge: TextBridge,
        aggregator: TranscriptAggregator,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.tokens = tokens
        self.lifecycle = lifecycle
        self.bridge = bridge
        self.aggregator = aggregator
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._archive: OrderedDict[str, Session] = OrderedDict()

    # -- store ---------------------------------------------------------------

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            # unknown ids raise here, so they never get a lock
            self.get_session(session_id)
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _archive_session(self, session: Session) -> None:
        """Move a finished session out of the live store into the bounded archive."""
        if self._sessions.pop(session.session_id, None) is None:
            return
        self._archive[session.session_id] = session
        while len(self._archive) > self.settings.session_archive_size:
            evicted, _ = self._archive.popitem(last=False)
            self._locks.pop(evicted, None)
        logger.info(f"Session {session.session_id} archived in state {session.state.value}")

    def _check_expiry(self, session: Session) -> None:
        if (
            session.state in EXPIRABLE_STATES
            and session.credential is not None
            and session.credential.is_expired(self._now())
        ):
            session.transition(SessionState.EXPIRED)
            logger.info(f"Session {session.session_id} expired before the agent started")
            self._archive_session(session)

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id) or self._archive.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        self._check_expiry(session)
        return session

    def find_by_channel(self, channel: str) -> Session:
        """Return the newest non-terminal session on ``channel``."""
        candidates = [
            s for s in self._sessions.values()
            if s.channel == channel and s.state not in TERMINAL_STATES
        ]
        if not candidates:
            raise SessionNotFoundError(f"No live session on channel {channel}")
        return max(candidates, key=lambda s: s.created_at)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    # -- credentials ---------------------------------------------------------

    def issue_token(
        self,
        channel: str,
        uid: int,
        role: ChannelRole = ChannelRole.PUBLISHER,
        ttl_seconds: int | None = None,
    ) -> Credential:
        return self.tokens.issue_token(channel, uid, role, ttl_seconds)

    async def start_session(self, channel: str, uid: int) -> Session:
        """Create a session and issue its participant credential."""
        validate_channel(channel)
        validate_uid(uid)
        if uid == self.settings.agent_uid:
            raise ValidationError(f"uid {uid} is reserved for the agent")

        session = Session(channel=channel, local_uid=uid)
        session.issue(self.tokens.issue_token(channel, uid, ChannelRole.PUBLISHER))
        self._sessions[session.session_id] = session
        logger.info(
            f"Created session {session.session_id} for channel {channel} uid {uid}"
        )
        return session

    async def renew_token(self, session_id: str) -> Credential:
        """Replace the session's credential with a freshly issued one."""
        async with self._lock(session_id):
            session = self.get_session(session_id)
            if session.state in TERMINAL_STATES or session.state is SessionState.STOPPING:
                raise InvalidStateError(
                    f"Cannot renew token for session in {session.state.value}"
                )
            credential = self.tokens.issue_token(
                session.channel, session.local_uid, ChannelRole.PUBLISHER
            )
            session.issue(credential)
            return credential

    # -- transport events ----------------------------------------------------

    def bind_transport(self, transport: AudioTransport) -> None:
        transport.add_listener(self.handle_connection_event)

    async def handle_connection_event(self, session_id: str, state: ConnectionState) -> Session:
        """Apply a connection state change reported by the audio transport."""
        state = ConnectionState(state)
        async with self._lock(session_id):
            session = self.get_session(session_id)
            if state is ConnectionState.CONNECTED:
                if session.state is SessionState.TOKEN_ISSUED:
                    session.transition(SessionState.JOINED)
                else:
                    logger.debug(
                        f"Session {session_id}: CONNECTED in {session.state.value} ignored"
                    )
            elif state is ConnectionState.FAILED:
                error = OrchestratorError(
                    f"Audio transport failed for channel {session.channel}"
                )
                if session.state in ACTIVE_STATES:
                    # the remote agent must still be released
                    await self.lifecycle.stop_agent(session)
                    session.last_error = error
                else:
                    session.fail(error)
            else:
                logger.info(f"Session {session_id}: transport {state.value}")
            if session.is_terminal:
                self._archive_session(session)
            return session

    # -- agent ---------------------------------------------------------------

    async def start_agent(self, session_id: str, config: AgentConfig | None = None) -> str:
        async with self._lock(session_id):
            session = self.get_session(session_id)
            config = config or AgentConfig.from_settings(self.settings)
            try:
                return await self.lifecycle.start_agent(session, config)
            finally:
                if session.is_terminal:
                    self._archive_session(session)

    async def submit_text(
        self, session_id: str, text: str
    ) -> tuple[TranscriptEvent, TranscriptEvent]:
        session = self.get_session(session_id)
        return await self.bridge.submit_text(session, text)

    async def drain_speech(self, session_id: str, timeout: float | None = None) -> None:
        """Wait for outstanding speak calls; cancel whatever is left after ``timeout``."""
        session = self.get_session(session_id)
        pending = set(session.pending_speech)
        if not pending:
            return
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning(
                f"Session {session_id}: cancelled {len(still_pending)} in-flight speech calls"
            )
            await asyncio.gather(*still_pending, return_exceptions=True)

    async def stop_agent(self, session_id: str) -> Session:
        """Stop the session's agent and archive the session. Calling it again is a no-op."""
        session = self.get_session(session_id)
        if session.state is SessionState.STARTING:
            session.stop_requested = True
        async with self._lock(session_id):
            if session.state in ACTIVE_STATES:
                await self.drain_speech(session_id, self.settings.stop_speech_grace_seconds)
            await self.lifecycle.stop_agent(session)
            self._archive_session(session)
            return session

    async def stop_session(self, session_id: str) -> Session:
        """Close the session. Archived sessions stay readable until evicted."""
        return await self.stop_agent(session_id)

    # -- transcripts ---------------------------------------------------------

    def list_transcript(self, session_id: str, since_seq: int = 0) -> list[TranscriptEvent]:
        session = self.get_session(session_id)
        return self.aggregator.list_transcript(session, since_seq)

    async def ingest_webhook(self, body: bytes, signature_header: str | None) -> bool:
        """Verify and store a pushed transcript event. Returns False for duplicates."""
        payload = self.aggregator.parse_webhook(body, signature_header)
        if payload.session_id:
            session = self.get_session(payload.session_id)
        else:
            session = self.find_by_channel(payload.channel)
        return self.aggregator.ingest_webhook(session, payload)

    async def poll_transcript(self, session_id: str) -> int:
        session = self.get_session(session_id)
        return await self.aggregator.poll(session)

    async def poll_stale_sessions(self) -> int:
        """Archive lapsed sessions, then poll active sessions whose webhooks went quiet."""
        now = self._now()
        for session in self.sessions():
            self._check_expiry(session)
        stale = [s for s in self.sessions() if self.aggregator.needs_poll(s, now)]
        stored = 0
        for session in stale:
            try:
                stored += await self.aggregator.poll(session)
            except Exception as e:
                logger.warning(f"Transcript poll failed for session {session.session_id}: {e}")
        return stored

    async def run_poller(self, stop: asyncio.Event) -> None:
        """Background loop driving the pull path until ``stop`` is set."""
        interval = self.settings.poll_interval_seconds
        logger.info(f"Transcript poller started (interval {interval}s)")
        while not stop.is_set():
            await self.poll_stale_sessions()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Transcript poller stopped")

    async def shutdown(self) -> None:
        for session_id in list(self._sessions):
            await self.stop_agent(session_id)


def build_orchestrator(settings: Settings) -> SessionOrchestrator:
    """Wire the orchestrator against the real provider clients."""
    retry = RetryController(RetryPolicy.from_settings(settings))
    tokens = TokenService(settings)
    agent_provider = AgentProviderClient(settings)
    return SessionOrchestrator(
        settings=settings,
        tokens=tokens,
        lifecycle=AgentLifecycleManager(settings, agent_provider, tokens, retry),
        bridge=TextBridge(settings, ReasoningClient(settings), agent_provider, retry),
        aggregator=TranscriptAggregator(settings, agent_provider, retry),
    )
