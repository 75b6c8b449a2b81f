import random

import pytest

from conftest import FakeGraph, make_user
from warm_recs.discovery import (
    CandidateDiscoveryEngine,
    following_limit_for,
    select_accounts,
)
from warm_recs.engine_config import DiscoveryConfig, ModeSettings
from warm_recs.errors import FirstDegreeFetchError, GraphAPIError, RateLimitError
from warm_recs.metrics import RecommendationMetrics
from warm_recs.models import Mode
from warm_recs.utils import BackoffPolicy

SEED = 1


def _config(**kwargs):
    kwargs.setdefault("account_pause", 0.3)
    kwargs.setdefault("batch_pause", 0.5)
    return DiscoveryConfig(**kwargs)


def _engine(graph, sleep, config=None, metrics=None):
    return CandidateDiscoveryEngine(graph, config=config or _config(), metrics=metrics, sleep=sleep)


@pytest.mark.asyncio
async def test_shared_followee_gets_two_mutuals(no_sleep):
    a = make_user(10, followers=500)
    b = make_user(11, followers=15000)
    c = make_user(100, followers=800)
    graph = FakeGraph(following={SEED: [a, b], 10: [c], 11: [c]})

    result = await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert set(result.pool) == {100}
    assert result.pool[100].mutual_count == 2
    assert result.stats.total_following == 2
    assert result.stats.processed_accounts == 2


@pytest.mark.asyncio
async def test_already_followed_account_never_enters_pool(no_sleep):
    a = make_user(10)
    b = make_user(11)
    d = make_user(12)
    seed_user = make_user(SEED)
    graph = FakeGraph(following={SEED: [a, b, d], 10: [d, seed_user], 11: [d, make_user(0, handle="ghost")]})

    result = await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert result.pool == {}


@pytest.mark.asyncio
async def test_failed_account_does_not_abort_batch(no_sleep):
    first_degree = [make_user(10), make_user(11), make_user(12)]
    graph = FakeGraph(following={
        SEED: first_degree,
        10: [make_user(100)],
        11: [make_user(101)],
        12: [make_user(102), make_user(100)],
    })
    graph.fail(11, GraphAPIError("boom", status_code=500))
    metrics = RecommendationMetrics()

    result = await _engine(graph, no_sleep, metrics=metrics).discover(SEED, Mode.STANDARD)

    assert set(result.pool) == {100, 102}
    assert result.pool[100].mutual_count == 2
    assert result.stats.failed_accounts == 1
    assert result.stats.processed_accounts == 3
    assert metrics.value("account_failures") == 1


@pytest.mark.asyncio
async def test_failure_in_one_batch_keeps_later_batches(no_sleep):
    first_degree = [make_user(10 + i) for i in range(6)]
    following = {SEED: first_degree}
    for account in first_degree:
        following[account.id] = [make_user(1000 + account.id)]
    graph = FakeGraph(following=following)
    graph.fail(11, GraphAPIError("boom"))

    result = await _engine(graph, no_sleep, config=_config(batch_size=2)).discover(SEED, Mode.STANDARD)

    assert set(result.pool) == {1010, 1012, 1013, 1014, 1015}


@pytest.mark.asyncio
async def test_rate_limited_request_is_retried_with_backoff(no_sleep):
    graph = FakeGraph(following={SEED: [make_user(10)], 10: [make_user(100)]})
    graph.fail(10, RateLimitError("429"), RateLimitError("429", retry_after=2.0))
    config = _config(backoff=BackoffPolicy(max_attempts=3, initial_delay=5.0, max_delay=30.0))
    metrics = RecommendationMetrics()

    result = await _engine(graph, no_sleep, config=config, metrics=metrics).discover(SEED, Mode.STANDARD)

    assert set(result.pool) == {100}
    assert result.stats.rate_limit_hits == 2
    assert result.stats.failed_accounts == 0
    assert no_sleep.calls[:2] == [5.0, 2.0]
    assert metrics.value("rate_limit_hits") == 2


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_max_attempts(no_sleep):
    graph = FakeGraph(following={SEED: [make_user(10), make_user(11)], 10: [make_user(100)], 11: [make_user(101)]})
    graph.fail(10, RateLimitError("429"))
    config = _config(backoff=BackoffPolicy(max_attempts=1, initial_delay=5.0))

    result = await _engine(graph, no_sleep, config=config).discover(SEED, Mode.STANDARD)

    assert set(result.pool) == {101}
    assert result.stats.rate_limit_hits == 1
    assert result.stats.failed_accounts == 1
    assert 5.0 in no_sleep.calls


@pytest.mark.asyncio
async def test_first_degree_pagination_follows_cursor(no_sleep):
    first_degree = [make_user(10 + i) for i in range(120)]
    graph = FakeGraph(following={SEED: first_degree})

    result = await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    seed_calls = [call for call in graph.following_calls if call[0] == SEED]
    assert seed_calls == [(SEED, 50, None), (SEED, 50, "50"), (SEED, 50, "100")]
    assert result.stats.total_following == 120
    assert result.stats.pages_fetched == 3
    assert result.stats.first_degree_complete is True


@pytest.mark.asyncio
async def test_first_degree_stops_at_page_cap(no_sleep):
    graph = FakeGraph(following={SEED: [make_user(10 + i) for i in range(200)]})
    modes = {
        Mode.STANDARD: ModeSettings(max_pages=2, selection_cap=300, min_mutuals=1, early_termination=True),
        Mode.DEEP: ModeSettings(max_pages=50, selection_cap=None, min_mutuals=2, early_termination=False),
    }

    result = await _engine(graph, no_sleep, config=_config(modes=modes)).discover(SEED, Mode.STANDARD)

    assert result.stats.total_following == 100
    assert result.stats.first_degree_complete is False


@pytest.mark.asyncio
async def test_first_page_failure_is_total_failure(no_sleep):
    graph = FakeGraph(following={SEED: [make_user(10)]})
    graph.fail(SEED, GraphAPIError("down", status_code=503))

    with pytest.raises(FirstDegreeFetchError):
        await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)


@pytest.mark.asyncio
async def test_later_page_failure_keeps_gathered_accounts(no_sleep):
    first_degree = [make_user(10 + i) for i in range(80)]
    graph = FakeGraph(following={SEED: first_degree})
    graph.page_errors[(SEED, "50")] = GraphAPIError("flaky")

    result = await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert result.stats.total_following == 50
    assert result.stats.first_degree_complete is False


@pytest.mark.asyncio
async def test_no_following_yields_empty_pool(no_sleep):
    graph = FakeGraph(following={SEED: []})

    result = await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert result.pool == {}
    assert result.stats.total_following == 0
    assert len(graph.following_calls) == 1


def test_select_accounts_filters_bots_and_prefers_sweet_spot():
    config = _config()
    accounts = [
        make_user(1, followers=15000),
        make_user(2, followers=50000),
        make_user(3, followers=1000),
        make_user(4, followers=25000),
        make_user(5, followers=900),
        make_user(6, followers=99),
    ]

    selected = select_accounts(accounts, config.settings_for(Mode.STANDARD), config)

    assert [a.id for a in selected] == [2, 1, 4, 3, 5]


def test_select_accounts_caps_standard_but_not_deep():
    config = _config()
    accounts = [make_user(i, followers=1000 + i) for i in range(1, 351)]

    assert len(select_accounts(accounts, config.settings_for(Mode.STANDARD), config)) == 300
    assert len(select_accounts(accounts, config.settings_for(Mode.DEEP), config)) == 350


@pytest.mark.parametrize(
    "followers, expected",
    [(60000, 40), (50001, 40), (50000, 35), (20000, 35), (10000, 30), (6000, 30), (5000, 30), (150, 30)],
)
def test_following_limit_tiers(followers, expected):
    assert following_limit_for(followers, _config()) == expected


@pytest.mark.asyncio
async def test_traversal_uses_tiered_limits(no_sleep):
    big = make_user(10, followers=70000)
    small = make_user(11, followers=2000)
    graph = FakeGraph(following={SEED: [big, small]})

    await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert (10, 40, None) in graph.following_calls
    assert (11, 30, None) in graph.following_calls


@pytest.mark.asyncio
async def test_duplicate_items_from_one_account_count_once(no_sleep):
    c = make_user(100)
    graph = FakeGraph(following={SEED: [make_user(10)], 10: [c, c]})

    result = await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert result.pool[100].mutual_count == 1


@pytest.mark.asyncio
async def test_pauses_between_accounts_and_batches(no_sleep):
    graph = FakeGraph(following={SEED: [make_user(10 + i) for i in range(30)]})

    await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert no_sleep.calls == [0.3, 0.3, 0.5, 0.3]


@pytest.mark.asyncio
async def test_failed_tenth_account_still_triggers_pause(no_sleep):
    first_degree = [make_user(10 + i) for i in range(10)]
    graph = FakeGraph(following={SEED: first_degree})
    graph.fail(first_degree[9].id, GraphAPIError("boom"))

    result = await _engine(graph, no_sleep).discover(SEED, Mode.STANDARD)

    assert result.stats.failed_accounts == 1
    assert no_sleep.calls == [0.3]


@pytest.mark.asyncio
async def test_rate_limited_tenth_account_still_triggers_pause(no_sleep):
    first_degree = [make_user(10 + i) for i in range(10)]
    graph = FakeGraph(following={SEED: first_degree})
    graph.fail(first_degree[9].id, RateLimitError("slow down"))
    config = _config(backoff=BackoffPolicy(max_attempts=1))

    await _engine(graph, no_sleep, config=config).discover(SEED, Mode.STANDARD)

    # One backoff sleep for the 429, then the regular account pause
    assert no_sleep.calls == [5.0, 0.3]


def _early_stop_graph():
    first_degree = [make_user(10 + i) for i in range(6)]
    following = {SEED: first_degree}
    for account in first_degree:
        following[account.id] = [make_user(100)]
    return FakeGraph(following=following)


def _early_stop_config(**kwargs):
    return _config(
        batch_size=2,
        early_stop_min_processed=4,
        early_stop_limit_multiplier=1,
        early_stop_min_mutuals=2,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_standard_mode_stops_early(no_sleep):
    result = await _engine(_early_stop_graph(), no_sleep, config=_early_stop_config()).discover(
        SEED, Mode.STANDARD, limit=1
    )

    assert result.stats.stopped_early is True
    assert result.stats.processed_accounts == 4
    assert result.pool[100].mutual_count == 4


@pytest.mark.asyncio
async def test_deep_mode_never_stops_early(no_sleep):
    result = await _engine(_early_stop_graph(), no_sleep, config=_early_stop_config()).discover(
        SEED, Mode.DEEP, limit=1
    )

    assert result.stats.stopped_early is False
    assert result.stats.processed_accounts == 6
    assert result.pool[100].mutual_count == 6


@pytest.mark.asyncio
async def test_early_termination_can_be_disabled(no_sleep):
    config = _early_stop_config(early_termination=False)

    result = await _engine(_early_stop_graph(), no_sleep, config=config).discover(SEED, Mode.STANDARD, limit=1)

    assert result.stats.processed_accounts == 6


def _random_graph(seed: int = 7):
    rng = random.Random(seed)
    first_degree = [make_user(10 + i, followers=rng.randint(50, 80000)) for i in range(60)]
    first_ids = [u.id for u in first_degree]
    following = {SEED: first_degree}
    for account in first_degree:
        picks = rng.sample(range(200, 260), 15) + rng.sample(first_ids, 5) + [SEED]
        following[account.id] = [make_user(uid) for uid in picks]
    return FakeGraph(following=following), set(first_ids)


@pytest.mark.asyncio
async def test_pool_excludes_seed_and_first_degree(no_sleep):
    graph, first_ids = _random_graph()

    result = await _engine(graph, no_sleep).discover(SEED, Mode.DEEP)

    assert result.pool
    assert SEED not in result.pool
    assert not (set(result.pool) & first_ids)
    assert all(c.mutual_count >= 1 for c in result.pool.values())


@pytest.mark.asyncio
async def test_discover_is_idempotent(no_sleep):
    graph, _ = _random_graph()
    engine = _engine(graph, no_sleep, config=_config(early_termination=False))

    first = await engine.discover(SEED, Mode.STANDARD)
    second = await engine.discover(SEED, Mode.STANDARD)

    assert {k: v.mutual_count for k, v in first.pool.items()} == {k: v.mutual_count for k, v in second.pool.items()}


@pytest.mark.asyncio
async def test_mutual_count_matches_distinct_selected_accounts(no_sleep):
    graph, _ = _random_graph(seed=11)
    config = _config()
    engine = _engine(graph, no_sleep, config=config)

    result = await engine.discover(SEED, Mode.DEEP)

    selected = select_accounts(graph.following[SEED], config.settings_for(Mode.DEEP), config)
    for candidate_id, candidate in result.pool.items():
        expected = sum(
            1 for account in selected
            if any(u.id == candidate_id for u in graph.following[account.id][:following_limit_for(account.follower_count, config)])
        )
        assert candidate.mutual_count == expected


@pytest.mark.asyncio
async def test_pages_fetched_metric(no_sleep):
    graph = FakeGraph(following={SEED: [make_user(10 + i) for i in range(75)]})
    metrics = RecommendationMetrics()

    await _engine(graph, no_sleep, metrics=metrics).discover(SEED, Mode.STANDARD)

    assert metrics.value("pages_fetched") == 2
    assert metrics.value("accounts_processed") == 75
