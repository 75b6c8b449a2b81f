import pytest

from warm_recs.utils import BackoffPolicy, retry_transient


class Flaky(Exception):
    pass


@pytest.mark.asyncio
async def test_retry_transient_waits_per_policy_then_succeeds(no_sleep):
    calls = []

    @retry_transient(BackoffPolicy(max_attempts=3, initial_delay=1.0, backoff_factor=2.0, max_delay=10.0), (Flaky,), sleep=no_sleep)
    async def fetch():
        calls.append(1)
        if len(calls) < 3:
            raise Flaky("dropped")
        return "ok"

    assert await fetch() == "ok"
    assert len(calls) == 3
    assert no_sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_transient_reraises_after_last_attempt(no_sleep):
    @retry_transient(BackoffPolicy(max_attempts=2, initial_delay=0.5), (Flaky,), sleep=no_sleep)
    async def fetch():
        raise Flaky("still down")

    with pytest.raises(Flaky):
        await fetch()
    assert no_sleep.calls == [0.5]


@pytest.mark.asyncio
async def test_retry_transient_ignores_other_errors(no_sleep):
    @retry_transient(BackoffPolicy(max_attempts=3), (Flaky,), sleep=no_sleep)
    async def fetch():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await fetch()
    assert no_sleep.calls == []
