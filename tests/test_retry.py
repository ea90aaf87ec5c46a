import asyncio
import random

import httpx
import pytest

from voice_orchestrator.errors import (
    AuthenticationError,
    ProviderError,
    RetryableProviderError,
)
from voice_orchestrator.services.retry import RetryController, RetryPolicy


class Recorder:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_controller(**policy):
    delays = []

    async def sleep(delay):
        delays.append(delay)

    controller = RetryController(RetryPolicy(**policy), sleep=sleep, rng=random.Random(7))
    return controller, delays


@pytest.mark.asyncio
async def test_retryable_errors_are_retried_until_success():
    controller, delays = make_controller(max_retries=3, base_delay=0.5, jitter=0.0)
    call = Recorder(
        [
            RetryableProviderError("503", status=503),
            httpx.ConnectTimeout("slow"),
            "ok",
        ]
    )

    assert await controller.call("join:demo", call) == "ok"
    assert call.calls == 3
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_budget_is_bounded():
    controller, delays = make_controller(max_retries=3, base_delay=0.1)
    failure = RetryableProviderError("503", status=503)
    call = Recorder([failure] * 10)

    with pytest.raises(RetryableProviderError) as excinfo:
        await controller.call("speak:a:1", call)

    assert excinfo.value is failure
    assert call.calls == 4
    assert len(delays) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        AuthenticationError("bad key", status=401),
        ProviderError("bad request", status=400, body={"detail": "x"}),
        ValueError("bug"),
    ],
)
async def test_terminal_errors_propagate_unchanged(error):
    controller, delays = make_controller()
    call = Recorder([error, "never"])

    with pytest.raises(type(error)) as excinfo:
        await controller.call("join:demo", call)

    assert excinfo.value is error
    assert call.calls == 1
    assert delays == []


@pytest.mark.asyncio
async def test_rate_limit_retry_after_is_honoured_within_max_delay():
    controller, delays = make_controller(base_delay=0.1, max_delay=5.0, jitter=0.0)
    call = Recorder(
        [
            RetryableProviderError("429", status=429, retry_after=3),
            RetryableProviderError("429", status=429, retry_after=60),
            "ok",
        ]
    )

    assert await controller.call("reason:s:1", call) == "ok"
    assert delays == [3, 5.0]


@pytest.mark.asyncio
async def test_timeout_is_retried_once_then_final():
    controller, _ = make_controller(max_retries=5, timeout=0.01)
    calls = 0

    async def hang():
        nonlocal calls
        calls += 1
        await asyncio.sleep(1)

    with pytest.raises(RetryableProviderError, match="timed out"):
        await controller.call("leave:agent-1", hang)

    assert calls == 2


def test_backoff_is_exponential_with_bounded_jitter():
    controller, _ = make_controller(base_delay=1.0, max_delay=8.0, jitter=0.1)

    for attempt, base in [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0), (6, 8.0)]:
        delay = controller.compute_delay(attempt)
        assert base <= delay <= base * 1.1


@pytest.mark.asyncio
async def test_concurrent_calls_with_same_key_are_coalesced():
    controller, _ = make_controller()
    gate = asyncio.Event()
    calls = 0

    async def join():
        nonlocal calls
        calls += 1
        await gate.wait()
        return "agent-1"

    first = asyncio.create_task(controller.call("join:demo", join))
    await asyncio.sleep(0)
    second = asyncio.create_task(controller.call("join:demo", join))
    await asyncio.sleep(0)
    assert controller.in_flight("join:demo")

    gate.set()
    assert await asyncio.gather(first, second) == ["agent-1", "agent-1"]
    assert calls == 1
    assert not controller.in_flight("join:demo")

    # a later call with the same key issues a fresh request
    assert await controller.call("join:demo", join) == "agent-1"
    assert calls == 2


@pytest.mark.asyncio
async def test_different_keys_are_not_coalesced():
    controller, _ = make_controller()
    calls = []

    async def speak(text):
        calls.append(text)
        return text

    results = await asyncio.gather(
        controller.call("speak:a:1", speak, "one"),
        controller.call("speak:a:2", speak, "two"),
    )

    assert results == ["one", "two"]
    assert sorted(calls) == ["one", "two"]
