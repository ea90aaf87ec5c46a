"""Reasoning provider backed by Groq chat completions."""

import logging

import groq
from groq import AsyncGroq

from ..config import Settings
from ..errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderError,
    RetryableProviderError,
)

logger = logging.getLogger(__name__)

MAX_HISTORY_MESSAGES = 20


class ReasoningClient:
    """Turns user text into a reply using a Groq-hosted LLM."""

    def __init__(self, settings: Settings, client: AsyncGroq | None = None):
        self.model = settings.llm_model
        self.max_tokens = settings.llm_max_tokens
        self.temperature = settings.llm_temperature
        self._api_key = settings.groq_api_key
        self._client = client

    def _groq(self) -> AsyncGroq:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("Groq API key not configured")
            self._client = AsyncGroq(api_key=self._api_key, max_retries=0)
        return self._client

    async def reason(
        self,
        text: str,
        system_prompt: str | None,
        history: list[dict[str, str]] | None = None,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend((history or [])[-MAX_HISTORY_MESSAGES:])
        messages.append({"role": "user", "content": text})

        try:
            response = await self._groq().chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=False,
            )
        except (groq.APITimeoutError, groq.APIConnectionError) as e:
            raise RetryableProviderError(f"Reasoning provider unreachable: {e}")
        except groq.RateLimitError as e:
            raise RetryableProviderError(
                "Reasoning provider rate limited",
                status=e.status_code,
                body=e.body,
                retry_after=_retry_after(e.response),
            )
        except groq.InternalServerError as e:
            raise RetryableProviderError(
                "Reasoning provider error", status=e.status_code, body=e.body
            )
        except (groq.AuthenticationError, groq.PermissionDeniedError) as e:
            raise AuthenticationError(
                "Reasoning provider rejected credentials", status=e.status_code, body=e.body
            )
        except groq.APIStatusError as e:
            raise ProviderError(
                "Reasoning provider rejected request", status=e.status_code, body=e.body
            )

        reply = (response.choices[0].message.content or "").strip()
        if not reply:
            raise ProviderError("Reasoning provider returned an empty reply")
        return reply


def _retry_after(response) -> float | None:
    value = response.headers.get("retry-after") if response is not None else None
    try:
        return float(value) if value else None
    except ValueError:
        return None
