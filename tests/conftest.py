import asyncio
import dataclasses

import pytest

from voice_orchestrator.config import Settings
from voice_orchestrator.errors import OrchestratorError
from voice_orchestrator.models.transcript import TranscriptEvent
from voice_orchestrator.services.agent_lifecycle import AgentLifecycleManager
from voice_orchestrator.services.orchestrator import SessionOrchestrator
from voice_orchestrator.services.providers import ConnectionState
from voice_orchestrator.services.retry import RetryController, RetryPolicy
from voice_orchestrator.services.text_bridge import TextBridge
from voice_orchestrator.services.token_service import TokenService
from voice_orchestrator.services.transcript import TranscriptAggregator, WebhookVerifier

START_TIME = 1_760_000_000.0


class FakeClock:
    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAgentProvider:
    def __init__(self) -> None:
        self.joined: list[dict] = []
        self.left: list[str] = []
        self.spoken: list[tuple[str, str]] = []
        self.history: list[TranscriptEvent] = []
        self.join_errors: list[Exception] = []
        self.leave_errors: list[Exception] = []
        self.speak_error: Exception | None = None
        self.join_gate: asyncio.Event | None = None
        self.speak_gate: asyncio.Event | None = None
        self.history_calls: list[int] = []
        self._counter = 0

    async def join_agent(self, channel, config, token, agent_uid, remote_uid) -> str:
        self.joined.append(
            {"channel": channel, "config": config, "token": token, "remote_uid": remote_uid}
        )
        if self.join_gate is not None:
            await self.join_gate.wait()
        if self.join_errors:
            raise self.join_errors.pop(0)
        self._counter += 1
        return f"agent-{self._counter}"

    async def leave_agent(self, agent_id: str) -> None:
        self.left.append(agent_id)
        if self.leave_errors:
            raise self.leave_errors.pop(0)

    async def speak(self, agent_id: str, text: str) -> None:
        if self.speak_gate is not None:
            await self.speak_gate.wait()
        if self.speak_error is not None:
            raise self.speak_error
        self.spoken.append((agent_id, text))

    async def fetch_history(self, channel: str, since_seq: int) -> list[TranscriptEvent]:
        self.history_calls.append(since_seq)
        return [dataclasses.replace(e) for e in self.history if e.origin_seq > since_seq]


class FakeReasoning:
    def __init__(self, reply: str = "Sure thing.") -> None:
        self.reply = reply
        self.calls: list[tuple[str, str | None, list]] = []
        self.errors: list[Exception] = []
        self.gate: asyncio.Event | None = None

    async def reason(self, text, system_prompt, history=None) -> str:
        self.calls.append((text, system_prompt, list(history or [])))
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        return self.reply if self.reply is not None else f"echo: {text}"


class FakeTransport:
    def __init__(self) -> None:
        self.listeners = []

    async def join(self, channel, credential, uid) -> None:
        return None

    async def leave(self) -> None:
        return None

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    async def emit(self, session_id: str, state: ConnectionState) -> None:
        for listener in self.listeners:
            await listener(session_id, state)


async def no_sleep(delay: float) -> None:
    return None


def make_settings(**overrides) -> Settings:
    values = dict(
        app_id="test-app",
        app_certificate="test-certificate",
        agent_api_key="key",
        agent_api_secret="secret",
        groq_api_key="gsk_test",
        webhook_secret="whsec_test",
        retry_base_delay_seconds=0.0,
        provider_timeout_seconds=5.0,
        stop_speech_grace_seconds=1.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class Harness:
    """Orchestrator wired to fakes, with direct access to each collaborator."""

    def __init__(self, **setting_overrides) -> None:
        self.settings = make_settings(**setting_overrides)
        self.clock = FakeClock()
        self.agent = FakeAgentProvider()
        self.reasoning = FakeReasoning()
        self.retry = RetryController(RetryPolicy.from_settings(self.settings), sleep=no_sleep)
        self.tokens = TokenService(self.settings, clock=self.clock)
        self.verifier = WebhookVerifier(
            self.settings.webhook_secret, self.settings.webhook_tolerance_seconds
        )
        self.lifecycle = AgentLifecycleManager(
            self.settings, self.agent, self.tokens, self.retry
        )
        self.bridge = TextBridge(self.settings, self.reasoning, self.agent, self.retry)
        self.aggregator = TranscriptAggregator(
            self.settings, self.agent, self.retry, verifier=self.verifier
        )
        self.orchestrator = SessionOrchestrator(
            settings=self.settings,
            tokens=self.tokens,
            lifecycle=self.lifecycle,
            bridge=self.bridge,
            aggregator=self.aggregator,
            clock=self.clock,
        )

    async def joined_session(self, channel: str = "demo", uid: int = 42):
        session = await self.orchestrator.start_session(channel, uid)
        await self.orchestrator.handle_connection_event(
            session.session_id, ConnectionState.CONNECTED
        )
        return session

    async def active_session(self, channel: str = "demo", uid: int = 42):
        session = await self.joined_session(channel, uid)
        await self.orchestrator.start_agent(session.session_id)
        return session


def provider_error(status: int, cls=OrchestratorError, **kwargs) -> Exception:
    return cls(f"HTTP {status}", status=status, body={"detail": "boom"}, **kwargs)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def harness() -> Harness:
    return Harness()
