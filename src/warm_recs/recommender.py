"""Top-level recommend(): discovery, ranking, truncation and profile enrichment."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any

from .config import DEFAULT_LIMIT, MAX_LIMIT
from .discovery import CandidateDiscoveryEngine, DiscoveryStats, SleepFn
from .engine_config import DiscoveryConfig
from .errors import GraphAPIError, InvalidRequestError
from .graph_client import GraphBinding
from .metrics import RecommendationMetrics
from .models import CandidateRecord, Mode
from .profile_cache import ProfileEnrichmentCache
from .ranking import rank_candidates

logger = logging.getLogger(__name__)


def validate_seed_id(value: Any) -> int:
    """Accept a positive integer (or its decimal string form) as a seed id."""
    if value is None or value == "":
        raise InvalidRequestError("Missing required parameter: seed id")
    if isinstance(value, bool):
        raise InvalidRequestError(f"Invalid seed id: {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise InvalidRequestError(f"Invalid seed id: {value!r} (must be a positive integer)")
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise InvalidRequestError(f"Invalid seed id: {value!r} (must be a positive integer)")
    return value


def validate_limit(value: Any) -> int:
    if value is None:
        return DEFAULT_LIMIT
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidRequestError(f"Invalid limit: {value!r} (must be an integer)")
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"Invalid limit: {value!r}") from None
    if not (1 <= limit <= MAX_LIMIT):
        raise InvalidRequestError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")
    return limit


@dataclass
class RecommendationResponse:
    seed_id: int
    recommendations: list[CandidateRecord]
    debug_stats: dict | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {
            "success": True,
            "seed_id": self.seed_id,
            "recommendations": [rec.to_dict() for rec in self.recommendations],
        }
        if self.message:
            payload["message"] = self.message
        if self.debug_stats is not None:
            payload["debug"] = self.debug_stats
        return payload


class WarmRecommender:
    """
    Wires the discovery engine, ranking and the shared profile cache.

    The cache is passed in, not created here, so one cache can serve every
    recommender in the process.
    """

    def __init__(
        self,
        client: GraphBinding,
        cache: ProfileEnrichmentCache,
        config: DiscoveryConfig | None = None,
        metrics: RecommendationMetrics | None = None,
        sleep: SleepFn = asyncio.sleep,
        progress: bool = False,
    ):
        self.config = config or DiscoveryConfig()
        self.cache = cache
        self.metrics = metrics
        self.engine = CandidateDiscoveryEngine(
            client,
            config=self.config,
            metrics=metrics,
            sleep=sleep,
            progress=progress,
        )

    async def enrich(self, candidates: list[CandidateRecord]) -> list[CandidateRecord]:
        """
        Refresh avatar and bio from the profile cache. A candidate whose
        profile can't be fetched keeps the data it was discovered with.
        """
        profiles = await self.cache.get_many(c.id for c in candidates)

        enriched = []
        for candidate in candidates:
            profile = profiles.get(candidate.id)
            if profile is None:
                enriched.append(candidate)
                continue
            enriched.append(replace(
                candidate,
                avatar_url=profile.avatar_url or candidate.avatar_url,
                bio=profile.bio or candidate.bio,
            ))
        return enriched

    async def recommend(
        self,
        seed_id: Any,
        limit: Any = DEFAULT_LIMIT,
        deep: bool = False,
        debug: bool = False,
    ) -> RecommendationResponse:
        """
        Generate warm recommendations for ``seed_id``.

        Raises InvalidRequestError for bad input and FirstDegreeFetchError
        when the seed's following list is unavailable.
        """
        seed_id = validate_seed_id(seed_id)
        limit = validate_limit(limit)
        mode = Mode.from_flag(deep)
        started = time.monotonic()

        logger.info(f"Generating {mode.value} recommendations for {seed_id} (limit: {limit})")

        discovery = await self.engine.discover(seed_id, mode, limit=limit)
        stats = discovery.stats

        if stats.total_following == 0:
            self._observe_latency(mode, time.monotonic() - started)
            return RecommendationResponse(
                seed_id=seed_id,
                recommendations=[],
                debug_stats=self._debug_stats(seed_id, mode, stats, 0, started) if debug else None,
                message="User has no following connections to base recommendations on",
            )

        ranked = rank_candidates(discovery.pool, mode, self.config)
        top = await self.enrich(ranked[:limit])

        elapsed = time.monotonic() - started
        self._observe_latency(mode, elapsed)

        for i, rec in enumerate(top[:5], 1):
            logger.debug(f"  {i}. {rec.handle} - {rec.mutual_count} mutuals (score: {rec.score:.1f})")
        logger.info(f"Generated {len(top)} recommendations in {elapsed:.1f}s")

        return RecommendationResponse(
            seed_id=seed_id,
            recommendations=top,
            debug_stats=self._debug_stats(seed_id, mode, stats, len(ranked), started) if debug else None,
        )

    def _observe_latency(self, mode: Mode, elapsed: float) -> None:
        if self.metrics is not None:
            self.metrics.recommend_latency.labels(mode=mode.value).observe(elapsed)

    def _debug_stats(self, seed_id: int, mode: Mode, stats: DiscoveryStats, filtered: int, started: float) -> dict:
        debug = {
            "seed_id": seed_id,
            "mode": mode.value,
            "total_following": stats.total_following,
            "pages_fetched": stats.pages_fetched,
            "first_degree_complete": stats.first_degree_complete,
            "selected_accounts": stats.selected_accounts,
            "analyzed_accounts": stats.processed_accounts,
            "failed_accounts": stats.failed_accounts,
            "rate_limit_hits": stats.rate_limit_hits,
            "total_candidates": stats.candidates_found,
            "filtered_candidates": filtered,
            "min_mutuals": self.config.settings_for(mode).min_mutuals,
            "stopped_early": stats.stopped_early,
            "processing_time_ms": round((time.monotonic() - started) * 1000),
            "cache_stats": self.cache.stats(),
        }
        if self.metrics is not None:
            debug["metrics"] = self.metrics.snapshot()
        return debug


async def recommend_response(
    recommender: WarmRecommender,
    seed_id: Any,
    limit: Any = DEFAULT_LIMIT,
    deep: bool = False,
    debug: bool = False,
) -> dict:
    """
    Run ``recommend`` and always return a payload with an explicit
    ``success`` flag, turning known failures into error payloads.
    """
    started = time.monotonic()
    try:
        response = await recommender.recommend(seed_id, limit=limit, deep=deep, debug=debug)
    except InvalidRequestError as exc:
        return {"success": False, "error": "invalid_request", "message": str(exc)}
    except GraphAPIError as exc:
        logger.error(f"Recommendation failed for {seed_id}: {exc}")
        return {
            "success": False,
            "error": "graph_api_error",
            "message": str(exc),
            "processing_time_ms": round((time.monotonic() - started) * 1000),
        }
    return response.to_dict()
