from types import SimpleNamespace

import groq
import httpx
import pytest

from conftest import make_settings
from voice_orchestrator.errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderError,
    RetryableProviderError,
)
from voice_orchestrator.services.reasoning import MAX_HISTORY_MESSAGES, ReasoningClient

REQUEST = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


class FakeCompletions:
    def __init__(self, reply="Hello!", error=None):
        self.reply = reply
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_client(**kwargs):
    completions = FakeCompletions(**kwargs)
    fake_groq = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return ReasoningClient(make_settings(), client=fake_groq), completions


def status_error(cls, status, headers=None):
    response = httpx.Response(status, headers=headers, json={"error": "x"}, request=REQUEST)
    return cls("failed", response=response, body={"error": "x"})


@pytest.mark.asyncio
async def test_reason_sends_system_prompt_history_and_user_text():
    client, completions = make_client(reply="  Why did the chicken cross the road?  ")
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hey"}]

    reply = await client.reason("Tell me a joke", "Be funny.", history)

    assert reply == "Why did the chicken cross the road?"
    assert completions.kwargs["model"] == "llama-3.1-8b-instant"
    assert completions.kwargs["messages"] == [
        {"role": "system", "content": "Be funny."},
        *history,
        {"role": "user", "content": "Tell me a joke"},
    ]


@pytest.mark.asyncio
async def test_history_is_truncated_to_most_recent_messages():
    client, completions = make_client()
    history = [{"role": "user", "content": str(i)} for i in range(50)]

    await client.reason("latest", None, history)

    messages = completions.kwargs["messages"]
    assert len(messages) == MAX_HISTORY_MESSAGES + 1
    assert messages[0]["content"] == "30"


@pytest.mark.asyncio
async def test_empty_reply_is_a_provider_error():
    client, _ = make_client(reply="   ")

    with pytest.raises(ProviderError, match="empty"):
        await client.reason("hi", None)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,expected",
    [
        (groq.APITimeoutError(request=REQUEST), RetryableProviderError),
        (groq.APIConnectionError(request=REQUEST), RetryableProviderError),
        (status_error(groq.InternalServerError, 500), RetryableProviderError),
        (status_error(groq.AuthenticationError, 401), AuthenticationError),
        (status_error(groq.PermissionDeniedError, 403), AuthenticationError),
        (status_error(groq.BadRequestError, 400), ProviderError),
    ],
)
async def test_groq_errors_are_mapped(error, expected):
    client, _ = make_client(error=error)

    with pytest.raises(expected) as excinfo:
        await client.reason("hi", None)

    assert type(excinfo.value) is expected


@pytest.mark.asyncio
async def test_rate_limit_keeps_status_and_retry_after():
    client, _ = make_client(
        error=status_error(groq.RateLimitError, 429, headers={"retry-after": "2"})
    )

    with pytest.raises(RetryableProviderError) as excinfo:
        await client.reason("hi", None)

    assert excinfo.value.status == 429
    assert excinfo.value.retry_after == 2.0


@pytest.mark.asyncio
async def test_missing_api_key_is_a_configuration_error():
    client = ReasoningClient(make_settings(groq_api_key=""))

    with pytest.raises(ConfigurationError):
        await client.reason("hi", None)
