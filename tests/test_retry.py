# tests/test_retry.py
import pytest

from liveness.errors import TransientError
from liveness.retry import Confirmed, DefinitiveFailure, NotPresent, RetryPolicy


class Scripted:
    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = 0

    async def __call__(self):
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return step


def make_policy(max_attempts=3, delay=1.0):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return RetryPolicy(max_attempts=max_attempts, delay=delay, sleep=fake_sleep), sleeps


@pytest.mark.asyncio
async def test_success_on_first_attempt():
    policy, sleeps = make_policy()
    op = Scripted("page")
    result = await policy.attempt(op, key="A")
    assert result == Confirmed(key="A", value="page", attempts=1)
    assert sleeps == []


@pytest.mark.asyncio
async def test_success_on_last_attempt_is_not_a_failure():
    policy, sleeps = make_policy()
    op = Scripted(TransientError("timeout"), NotPresent("empty page"), "page")
    result = await policy.attempt(op, key="A")
    assert isinstance(result, Confirmed)
    assert result.attempts == 3
    assert sleeps == [1.0, 1.0]


@pytest.mark.asyncio
async def test_exhaustion_yields_exactly_one_definitive_failure():
    policy, sleeps = make_policy()
    op = Scripted(TransientError("503"), TransientError("timeout"), NotPresent("404"))
    result = await policy.attempt(op, key="B")
    assert isinstance(result, DefinitiveFailure)
    assert result.key == "B"
    assert result.attempts == 3
    assert op.calls == 3
    assert result.not_present_attempts == 1
    assert result.last_error == "not present: 404"
    assert sleeps == [1.0, 1.0]


@pytest.mark.asyncio
async def test_not_present_is_retried_not_short_circuited():
    policy, _ = make_policy(max_attempts=2)
    op = Scripted(NotPresent("gone"), "page")
    result = await policy.attempt(op, key="C")
    assert isinstance(result, Confirmed)
    assert op.calls == 2


@pytest.mark.asyncio
async def test_unexpected_errors_propagate_without_retry():
    policy, sleeps = make_policy()
    op = Scripted(KeyError("bug"))
    with pytest.raises(KeyError):
        await policy.attempt(op, key="D")
    assert op.calls == 1
    assert sleeps == []


def test_invalid_parameters():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(delay=-1)
