"""HTTP client for the conversational agent provider."""

import logging
import uuid
from datetime import datetime, timezone

import httpx

from ..config import Settings
from ..errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderError,
    RetryableProviderError,
)
from ..models.agent import AgentConfig
from ..models.transcript import EventSource, Speaker, TranscriptEvent

logger = logging.getLogger(__name__)

_ROLE_TO_SPEAKER = {
    "user": Speaker.USER,
    "assistant": Speaker.AGENT,
    "agent": Speaker.AGENT,
}


def raise_for_provider_status(response: httpx.Response) -> None:
    """Translate a provider HTTP response into the orchestrator's error taxonomy."""
    if response.is_success:
        return

    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = response.text[:5000]
    message = f"Agent provider returned HTTP {status}"

    if status == 429:
        retry_after = response.headers.get("Retry-After")
        raise RetryableProviderError(
            message,
            status=status,
            body=body,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if status == 408 or status >= 500:
        raise RetryableProviderError(message, status=status, body=body)
    if status in (401, 403):
        raise AuthenticationError(message, status=status, body=body)
    raise ProviderError(message, status=status, body=body)


class AgentProviderClient:
    """Service for managing remote conversational agents."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = settings.agent_api_base_url.rstrip("/")
        self.app_id = settings.app_id
        self.idle_timeout = settings.agent_idle_timeout_seconds
        self.timeout = settings.provider_timeout_seconds
        self._auth = (settings.agent_api_key, settings.agent_api_secret)
        self._transport = transport
        self.headers = {"Content-Type": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        if not all(self._auth) or not self.app_id:
            raise ConfigurationError(
                "Agent provider requires app_id, agent_api_key and agent_api_secret"
            )
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/projects/{self.app_id}",
            auth=self._auth,
            headers=self.headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def join_agent(
        self,
        channel: str,
        config: AgentConfig,
        token: str,
        agent_uid: int,
        remote_uid: int,
    ) -> str:
        """Start an agent in ``channel`` and return its identifier."""
        system_messages = []
        if config.system_prompt:
            system_messages.append({"role": "system", "content": config.system_prompt})

        payload = {
            "name": f"{channel}-{uuid.uuid4().hex[:8]}",
            "properties": {
                "channel": channel,
                "token": token,
                "agent_rtc_uid": str(agent_uid),
                "remote_rtc_uids": [str(remote_uid)],
                "idle_timeout": self.idle_timeout,
                "llm": {
                    "vendor": config.llm_provider,
                    "system_messages": system_messages,
                    "params": {"model": config.llm_model},
                },
                "tts": {
                    "vendor": config.tts_vendor,
                    "params": {
                        "model_id": config.tts_model,
                        "voice_id": config.tts_voice_id,
                    },
                },
            },
        }

        async with self._client() as client:
            response = await client.post("/join", json=payload)
            raise_for_provider_status(response)
            data = response.json()

        agent_id = data.get("agent_id")
        if not agent_id:
            raise ProviderError(
                "Agent provider response did not include agent_id",
                status=response.status_code,
                body=data,
            )
        logger.info(f"Agent {agent_id} joined channel {channel}")
        return agent_id

    async def leave_agent(self, agent_id: str) -> None:
        """Stop a running agent."""
        async with self._client() as client:
            response = await client.post(f"/agents/{agent_id}/leave")
            raise_for_provider_status(response)

    async def speak(self, agent_id: str, text: str, priority: str = "INTERRUPT") -> None:
        """Have the agent vocalize ``text`` into its channel."""
        async with self._client() as client:
            response = await client.post(
                f"/agents/{agent_id}/speak",
                json={"text": text, "priority": priority},
            )
            raise_for_provider_status(response)

    async def fetch_history(self, channel: str, since_seq: int) -> list[TranscriptEvent]:
        """Fetch transcript turns numbered above ``since_seq`` for a channel."""
        async with self._client() as client:
            response = await client.get(
                f"/channels/{channel}/history",
                params={"since_seq": since_seq},
            )
            raise_for_provider_status(response)
            data = response.json()

        events = []
        for item in data.get("contents", []):
            try:
                event = _parse_history_item(item)
            except (KeyError, TypeError, ValueError) as e:
                raise ProviderError(
                    f"Malformed history item from agent provider: {e}", body=item
                )
            if event is not None and event.origin_seq > since_seq:
                events.append(event)
        return events


def _parse_history_item(item: dict) -> TranscriptEvent | None:
    speaker = _ROLE_TO_SPEAKER.get(item["role"])
    if speaker is None:
        # system or tool messages are not part of the spoken transcript
        return None

    timestamp = item.get("timestamp")
    if timestamp is None:
        origin = datetime.now(timezone.utc)
    else:
        # provider reports milliseconds
        origin = datetime.fromtimestamp(float(timestamp) / 1000, tz=timezone.utc)

    return TranscriptEvent(
        speaker=speaker,
        text=str(item["content"]),
        source=EventSource.POLL,
        origin_seq=int(item["turn_id"]),
        timestamp=origin,
    )
