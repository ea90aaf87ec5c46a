"""Starting and stopping the remote conversational agent for a session."""

import logging

from ..config import Settings
from ..errors import InvalidStateError, OrchestratorError, ReconciliationWarning
from ..models.agent import AgentConfig
from ..models.credential import ChannelRole
from ..models.session import ACTIVE_STATES, Session, SessionState
from .providers import AgentProvider
from .retry import RetryController
from .token_service import TokenService

logger = logging.getLogger(__name__)


class AgentLifecycleManager:
    """Owns the remote agent identifier for each session."""

    def __init__(
        self,
        settings: Settings,
        provider: AgentProvider,
        tokens: TokenService,
        retry: RetryController,
    ):
        self.agent_uid = settings.agent_uid
        self._provider = provider
        self._tokens = tokens
        self._retry = retry

    async def start_agent(self, session: Session, config: AgentConfig) -> str:
        """Start an agent in the session's channel and return its id.

        Requires ``joined`` and no current agent. A terminal provider failure
        moves the session to ``error`` and is re-raised with the provider's
        status and body intact.
        """
        if session.agent_id is not None or session.state in ACTIVE_STATES:
            raise InvalidStateError(
                f"Session {session.session_id} already has an active agent"
            )
        if session.state is not SessionState.JOINED:
            raise InvalidStateError(
                f"Cannot start an agent while session is {session.state.value}; "
                f"the audio channel must be joined first"
            )

        # issued before leaving ``joined`` so a signing failure leaves the session untouched
        agent_credential = self._tokens.issue_token(
            session.channel, self.agent_uid, ChannelRole.PUBLISHER
        )
        session.agent_config = config
        session.transition(SessionState.STARTING)

        try:
            agent_id = await self._retry.call(
                f"join:{session.session_id}",
                self._provider.join_agent,
                session.channel,
                config,
                agent_credential.token,
                self.agent_uid,
                session.local_uid,
            )
        except OrchestratorError as e:
            session.fail(e)
            raise
        except Exception as e:
            session.fail(OrchestratorError(f"Agent start failed: {e}"))
            raise

        if session.stop_requested:
            # stop arrived while the join was in flight: release the agent
            # instead of advancing to agentActive
            session.transition(SessionState.STOPPING)
            await self._leave(session, agent_id)
            session.transition(SessionState.STOPPED)
            raise InvalidStateError(
                f"Session {session.session_id} was stopped while the agent was starting"
            )

        session.activate(agent_id)
        logger.info(f"Agent {agent_id} active for session {session.session_id}")
        return agent_id

    async def stop_agent(self, session: Session) -> None:
        """Stop the session's agent. Idempotent; never raises for remote failures.

        The local session always ends in ``stopped`` with no agent id, whether
        or not the provider acknowledged the leave.
        """
        if session.state is SessionState.EXPIRED:
            # no agent was ever started; the lapsed session is simply closed
            session.transition(SessionState.STOPPED)
            return
        if session.is_terminal or session.state is SessionState.STOPPING:
            logger.debug(f"Stop on session {session.session_id} in {session.state.value}: no-op")
            return
        if session.state is SessionState.STARTING:
            # the in-flight start performs the cleanup when it resolves
            session.stop_requested = True
            return

        agent_id = session.begin_stop()
        if agent_id is not None:
            await self._leave(session, agent_id)
        session.transition(SessionState.STOPPED)

    async def _leave(self, session: Session, agent_id: str) -> None:
        try:
            await self._retry.call(f"leave:{agent_id}", self._provider.leave_agent, agent_id)
        except OrchestratorError as e:
            if e.status == 404:
                logger.info(f"Agent {agent_id} already gone at provider")
                return
            self._record_reconciliation(session, agent_id, e)
        except Exception as e:
            self._record_reconciliation(session, agent_id, e)

    def _record_reconciliation(self, session: Session, agent_id: str, error: Exception) -> None:
        warning = ReconciliationWarning(
            f"Remote leave failed for agent {agent_id}: {error}",
            status=getattr(error, "status", None),
            body=getattr(error, "body", None),
        )
        session.warnings.append(warning)
        logger.warning(f"Session {session.session_id}: {warning.message}")
