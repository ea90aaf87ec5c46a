"""Turns typed user messages into agent replies, optionally spoken in-channel."""

import asyncio
import logging

from ..config import Settings
from ..errors import InvalidStateError, ValidationError
from ..models.session import ACTIVE_STATES, Session, SessionState
from ..models.transcript import DeliveryStatus, Speaker, TranscriptEvent
from .providers import AgentProvider, ReasoningProvider
from .retry import RetryController

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 4000
HISTORY_LIMIT = 20


class TextBridge:
    """Routes a text message through the reasoning provider and back into the agent."""

    def __init__(
        self,
        settings: Settings,
        reasoning: ReasoningProvider,
        agent_provider: AgentProvider,
        retry: RetryController,
    ):
        self.default_system_prompt = settings.default_system_prompt
        self._reasoning = reasoning
        self._agent_provider = agent_provider
        self._retry = retry

    async def submit_text(
        self, session: Session, text: str
    ) -> tuple[TranscriptEvent, TranscriptEvent]:
        """Record ``text``, reason a reply and return ``(user_event, agent_event)``.

        The spoken rendition is scheduled in the background; its outcome is
        written to the agent event's ``delivery_status`` and never fails this
        call.
        """
        if session.state not in ACTIVE_STATES:
            raise InvalidStateError(
                f"Cannot submit text while session is {session.state.value}"
            )
        text = (text or "").strip()
        if not text:
            raise ValidationError("text must not be empty")
        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationError(f"text must be at most {MAX_TEXT_LENGTH} characters")

        config = session.agent_config
        system_prompt = config.system_prompt if config else self.default_system_prompt

        user_event = session.transcript.append_local(Speaker.USER, text)
        history = [
            {
                "role": "user" if e.speaker is Speaker.USER else "assistant",
                "content": e.text,
            }
            for e in session.transcript.recent(HISTORY_LIMIT, before_seq=user_event.seq)
        ]

        reply = await self._retry.call(
            f"reason:{session.session_id}:{user_event.seq}",
            self._reasoning.reason,
            text,
            system_prompt,
            history,
        )

        agent_event = session.transcript.append_local(Speaker.AGENT, reply)
        tts_enabled = config.tts_enabled if config else True
        if tts_enabled and session.state in ACTIVE_STATES and session.agent_id:
            self._schedule_speech(session, agent_event)
        else:
            agent_event.delivery_status = DeliveryStatus.TEXT_ONLY

        return user_event, agent_event

    def _schedule_speech(self, session: Session, event: TranscriptEvent) -> None:
        event.delivery_status = DeliveryStatus.PENDING
        task = asyncio.create_task(
            self._speak(session, session.agent_id, event),
            name=f"speak:{session.session_id}:{event.seq}",
        )
        session.pending_speech.add(task)
        if session.state is SessionState.AGENT_ACTIVE:
            session.transition(SessionState.SPEAKING)

        def _done(finished: asyncio.Task) -> None:
            session.pending_speech.discard(finished)
            if finished.cancelled() and event.delivery_status is DeliveryStatus.PENDING:
                event.delivery_status = DeliveryStatus.FAILED
                event.delivery_error = "cancelled"
            if not session.pending_speech and session.state is SessionState.SPEAKING:
                session.transition(SessionState.AGENT_ACTIVE)

        task.add_done_callback(_done)

    async def _speak(self, session: Session, agent_id: str, event: TranscriptEvent) -> None:
        try:
            await self._retry.call(
                f"speak:{agent_id}:{event.seq}",
                self._agent_provider.speak,
                agent_id,
                event.text,
            )
        except Exception as e:
            event.delivery_status = DeliveryStatus.FAILED
            event.delivery_error = str(e)
            logger.warning(
                f"Session {session.session_id}: speech for seq={event.seq} failed, "
                f"reply delivered as text only: {e}"
            )
        else:
            event.delivery_status = DeliveryStatus.DELIVERED
