"""Contracts for the external collaborators the orchestrator drives."""

from enum import Enum
from typing import Awaitable, Callable, Protocol

from ..models.agent import AgentConfig
from ..models.credential import Credential
from ..models.transcript import TranscriptEvent


class ConnectionState(str, Enum):
    """Connection states emitted by the audio transport."""

    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    DISCONNECTED = "DISCONNECTED"
    FAILED = "FAILED"


ConnectionListener = Callable[[str, ConnectionState], Awaitable[None]]


class AudioTransport(Protocol):
    """Real-time audio transport used by the human participant."""

    async def join(self, channel: str, credential: Credential, uid: int) -> None: ...

    async def leave(self) -> None: ...

    def add_listener(self, listener: ConnectionListener) -> None:
        """Register a callback receiving ``(session_id, state)`` events."""
        ...


class AgentProvider(Protocol):
    """Server-hosted conversational agent bound to a channel."""

    async def join_agent(
        self,
        channel: str,
        config: AgentConfig,
        token: str,
        agent_uid: int,
        remote_uid: int,
    ) -> str: ...

    async def leave_agent(self, agent_id: str) -> None: ...

    async def speak(self, agent_id: str, text: str) -> None: ...

    async def fetch_history(self, channel: str, since_seq: int) -> list[TranscriptEvent]: ...


class ReasoningProvider(Protocol):
    """Turns user text into a reply."""

    async def reason(
        self,
        text: str,
        system_prompt: str | None,
        history: list[dict[str, str]] | None = None,
    ) -> str: ...
