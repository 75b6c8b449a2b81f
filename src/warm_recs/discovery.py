from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Awaitable, Callable

from tqdm import tqdm

from .config import DEFAULT_LIMIT
from .engine_config import DiscoveryConfig, ModeSettings
from .errors import FirstDegreeFetchError, GraphAPIError, RateLimitError
from .graph_client import GraphBinding
from .metrics import RecommendationMetrics
from .models import CandidateRecord, FollowingPage, Mode, UserRecord

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class DiscoveryStats:
    total_following: int = 0
    pages_fetched: int = 0
    first_degree_complete: bool = True
    selected_accounts: int = 0
    processed_accounts: int = 0
    failed_accounts: int = 0
    rate_limit_hits: int = 0
    candidates_found: int = 0
    stopped_early: bool = False
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["elapsed_seconds"] = round(self.elapsed_seconds, 3)
        return data


@dataclass
class DiscoveryResult:
    pool: dict[int, CandidateRecord] = field(default_factory=dict)
    stats: DiscoveryStats = field(default_factory=DiscoveryStats)


def selection_weight(account: UserRecord, config: DiscoveryConfig) -> float:
    followers = account.follower_count
    if config.sweet_spot_min <= followers <= config.sweet_spot_max:
        return float(followers)
    return followers * config.off_sweet_spot_weight


def select_accounts(
    first_degree: list[UserRecord],
    settings: ModeSettings,
    config: DiscoveryConfig,
) -> list[UserRecord]:
    """
    Smart selection: drop likely bots, then favor accounts in the follower
    sweet spot where mutual discovery works best.
    """
    eligible = [a for a in first_degree if a.follower_count >= config.min_follower_count]
    # sorted() is stable, so equal weights keep pagination order
    ranked = sorted(eligible, key=lambda a: selection_weight(a, config), reverse=True)
    if settings.selection_cap is not None:
        ranked = ranked[:settings.selection_cap]
    return ranked


def following_limit_for(follower_count: int, config: DiscoveryConfig) -> int:
    for threshold, limit in config.following_limit_tiers:
        if follower_count > threshold:
            return limit
    return config.default_following_limit


class CandidateDiscoveryEngine:
    """
    Finds second-degree accounts reachable through the seed's follows.

    The traversal is sequential: one request at a time, in selection order,
    with pauses between accounts and batches and bounded backoff on rate
    limits. Per-account failures never abort the run.
    """

    def __init__(
        self,
        client: GraphBinding,
        config: DiscoveryConfig | None = None,
        metrics: RecommendationMetrics | None = None,
        sleep: SleepFn = asyncio.sleep,
        progress: bool = False,
    ):
        self.client = client
        self.config = config or DiscoveryConfig()
        self.metrics = metrics
        self._sleep = sleep
        self.progress = progress

    def _count(self, counter_name: str, amount: int = 1) -> None:
        if self.metrics is not None:
            getattr(self.metrics, counter_name).inc(amount)

    async def _fetch_with_backoff(self, user_id: int, limit: int, cursor: str | None, stats: DiscoveryStats) -> FollowingPage:
        """
        fetch_following with the rate-limit policy applied. Re-raises the last
        RateLimitError once attempts are exhausted.
        """
        policy = self.config.backoff
        for attempt in range(policy.max_attempts):
            try:
                return await self.client.fetch_following(user_id, limit, cursor)
            except RateLimitError as exc:
                stats.rate_limit_hits += 1
                self._count("rate_limit_hits")
                delay = policy.delay_for(attempt, exc.retry_after)
                logger.warning(
                    f"Rate limit hit fetching following of {user_id}, backing off {delay:.1f}s "
                    f"(attempt {attempt + 1}/{policy.max_attempts})"
                )
                await self._sleep(delay)
                if attempt == policy.max_attempts - 1:
                    raise

    async def fetch_first_degree(self, seed_id: int, settings: ModeSettings, stats: DiscoveryStats) -> list[UserRecord]:
        """Page through everything the seed follows, up to the mode's page cap."""
        accounts: dict[int, UserRecord] = {}
        cursor = None

        while stats.pages_fetched < settings.max_pages:
            try:
                page = await self._fetch_with_backoff(seed_id, self.config.page_size, cursor, stats)
            except GraphAPIError as exc:
                if stats.pages_fetched == 0:
                    raise FirstDegreeFetchError(f"Could not fetch following for {seed_id}: {exc}") from exc
                logger.warning(f"Failed to fetch page {stats.pages_fetched + 1} for {seed_id}, keeping {len(accounts)} accounts: {exc}")
                stats.first_degree_complete = False
                break

            stats.pages_fetched += 1
            self._count("pages_fetched")
            for user in page.items:
                accounts.setdefault(user.id, user)
            logger.debug(f"Page {stats.pages_fetched}: +{len(page.items)} users (total: {len(accounts)})")

            cursor = page.next_cursor
            if not page.has_more or not cursor:
                break
        else:
            logger.info(f"Reached max pages ({settings.max_pages}), stopping pagination")
            stats.first_degree_complete = False

        stats.total_following = len(accounts)
        return list(accounts.values())

    def _should_stop_early(self, settings: ModeSettings, stats: DiscoveryStats, high_quality: int, limit: int) -> bool:
        if not (self.config.early_termination and settings.early_termination):
            return False
        if stats.processed_accounts < self.config.early_stop_min_processed:
            return False
        return high_quality >= self.config.early_stop_limit_multiplier * limit

    def _aggregate(self, page: FollowingPage, pool: dict[int, CandidateRecord], excluded: set[int]) -> int:
        """
        Fold one account's following list into the pool. Returns how many
        candidates just reached the early-stop mutual threshold.
        """
        reached_threshold = 0
        seen_via_account: set[int] = set()
        for user in page.items:
            if user.id <= 0 or user.id in excluded or user.id in seen_via_account:
                continue
            seen_via_account.add(user.id)

            candidate = pool.get(user.id)
            if candidate is None:
                candidate = CandidateRecord.from_user(user)
                pool[user.id] = candidate
            else:
                candidate.mutual_count += 1
            if candidate.mutual_count == self.config.early_stop_min_mutuals:
                reached_threshold += 1
        return reached_threshold

    async def discover(self, seed_id: int, mode: Mode = Mode.STANDARD, limit: int = DEFAULT_LIMIT) -> DiscoveryResult:
        """
        Build the candidate pool for ``seed_id``.

        Raises FirstDegreeFetchError when not even the first page of the
        seed's following list can be fetched.
        """
        started = time.monotonic()
        settings = self.config.settings_for(mode)
        stats = DiscoveryStats()
        result = DiscoveryResult(stats=stats)

        first_degree = await self.fetch_first_degree(seed_id, settings, stats)
        if not first_degree:
            logger.info(f"{seed_id} follows nobody; nothing to build recommendations on")
            stats.elapsed_seconds = time.monotonic() - started
            return result

        excluded = {account.id for account in first_degree}
        excluded.add(seed_id)

        selection = select_accounts(first_degree, settings, self.config)
        stats.selected_accounts = len(selection)
        logger.info(
            f"Smart selection ({mode.value}): {len(selection)} accounts "
            f"(filtered from {len(first_degree)})"
        )

        pool = result.pool
        high_quality = 0
        batch_size = self.config.batch_size
        progress_bar = tqdm(total=len(selection), desc="Traversing", unit="acct", disable=not self.progress)

        try:
            for batch_start in range(0, len(selection), batch_size):
                batch = selection[batch_start:batch_start + batch_size]

                for account in batch:
                    stats.processed_accounts += 1
                    self._count("accounts_processed")
                    progress_bar.update(1)

                    limit_for_account = following_limit_for(account.follower_count, self.config)
                    page = None
                    try:
                        page = await self._fetch_with_backoff(account.id, limit_for_account, None, stats)
                    except RateLimitError:
                        stats.failed_accounts += 1
                        self._count("account_failures")
                        logger.warning(f"Giving up on {account.handle} ({account.id}) after repeated rate limits")
                    except GraphAPIError as exc:
                        stats.failed_accounts += 1
                        self._count("account_failures")
                        logger.warning(f"Failed to process {account.handle} ({account.id}): {exc}")

                    if page is not None:
                        high_quality += self._aggregate(page, pool, excluded)

                    # Failed accounts count toward the pause cadence too
                    if stats.processed_accounts % self.config.pause_every == 0:
                        await self._sleep(self.config.account_pause)

                if self._should_stop_early(settings, stats, high_quality, limit):
                    logger.info(
                        f"Stopping early after {stats.processed_accounts} accounts: "
                        f"{high_quality} candidates with {self.config.early_stop_min_mutuals}+ mutuals"
                    )
                    stats.stopped_early = True
                    break

                if batch_start + batch_size < len(selection):
                    await self._sleep(self.config.batch_pause)
        finally:
            progress_bar.close()

        stats.candidates_found = len(pool)
        stats.elapsed_seconds = time.monotonic() - started
        logger.info(
            f"Found {len(pool)} potential recommendations from {stats.processed_accounts} accounts "
            f"({stats.failed_accounts} failed, {stats.rate_limit_hits} rate limits)"
        )
        return result
