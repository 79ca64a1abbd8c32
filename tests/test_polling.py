"""Tests for the bounded polling helper."""

import pytest

from phishguard.intel.polling import PollPolicy, poll_until


@pytest.mark.asyncio
async def test_returns_first_ready_value(no_sleep):
    answers = iter([None, {"done": True}, {"never": True}])

    async def fetch():
        return next(answers)

    outcome = await poll_until(fetch, PollPolicy(max_attempts=3, interval=5), sleep=no_sleep)

    assert outcome.value == {"done": True}
    assert outcome.attempts == 2
    assert not outcome.exhausted
    # Waits before every attempt
    assert no_sleep.delays == [5, 5]


@pytest.mark.asyncio
async def test_exhausts_after_max_attempts(no_sleep):
    calls = []

    async def fetch():
        calls.append(1)
        return None

    outcome = await poll_until(fetch, PollPolicy(max_attempts=3, interval=5), sleep=no_sleep)

    assert outcome.exhausted
    assert outcome.attempts == 3
    assert len(calls) == 3
    assert no_sleep.delays == [5, 5, 5]


@pytest.mark.asyncio
async def test_retryable_errors_count_as_pending(no_sleep):
    answers = iter([ConnectionError("reset"), "ready"])

    async def fetch():
        answer = next(answers)
        if isinstance(answer, Exception):
            raise answer
        return answer

    outcome = await poll_until(fetch, PollPolicy(max_attempts=3, interval=0), sleep=no_sleep, retry_on=(ConnectionError,))
    assert outcome.value == "ready"
    assert outcome.attempts == 2


@pytest.mark.asyncio
async def test_exhaustion_keeps_last_error(no_sleep):
    async def fetch():
        raise ConnectionError("down")

    outcome = await poll_until(fetch, PollPolicy(max_attempts=2, interval=0), sleep=no_sleep, retry_on=(ConnectionError,))
    assert outcome.exhausted
    assert isinstance(outcome.last_error, ConnectionError)


@pytest.mark.asyncio
async def test_other_errors_propagate(no_sleep):
    async def fetch():
        raise KeyError("boom")

    with pytest.raises(KeyError):
        await poll_until(fetch, PollPolicy(max_attempts=3, interval=0), sleep=no_sleep, retry_on=(ConnectionError,))


def test_policy_validation():
    assert PollPolicy().budget == 15
    with pytest.raises(ValueError):
        PollPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        PollPolicy(interval=-1)
