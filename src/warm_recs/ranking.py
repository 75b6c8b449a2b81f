"""Scoring and ordering of the candidate pool."""

import logging
import math
from typing import Iterable, Mapping

from .engine_config import DiscoveryConfig
from .models import CandidateRecord, Mode

logger = logging.getLogger(__name__)


def score_candidate(candidate: CandidateRecord, config: DiscoveryConfig | None = None) -> float:
    """
    Composite score: mutual overlap dominates, follower count is a log-damped
    tiebreak so raw popularity cannot outweigh network overlap.
    """
    config = config or DiscoveryConfig()
    mutual_score = candidate.mutual_count * config.mutual_weight
    follower_score = math.log10(candidate.follower_count) * config.follower_weight if candidate.follower_count > 0 else 0.0
    return mutual_score + follower_score


def sort_key(candidate: CandidateRecord) -> tuple:
    # id last so equal handles still order deterministically
    return (-candidate.mutual_count, -candidate.follower_count, candidate.handle.casefold(), candidate.id)


def rank_candidates(
    pool: Mapping[int, CandidateRecord] | Iterable[CandidateRecord],
    mode: Mode = Mode.STANDARD,
    config: DiscoveryConfig | None = None,
) -> list[CandidateRecord]:
    """
    Filter by the mode's mutual threshold, attach scores and return the
    candidates in recommendation order. No I/O; the only mutation is the
    ``score`` attribute.
    """
    config = config or DiscoveryConfig()
    min_mutuals = config.settings_for(mode).min_mutuals
    candidates = pool.values() if isinstance(pool, Mapping) else pool

    kept = []
    for candidate in candidates:
        if candidate.mutual_count < min_mutuals:
            continue
        if candidate.following_count < config.min_candidate_following:
            continue
        candidate.score = score_candidate(candidate, config)
        kept.append(candidate)

    kept.sort(key=sort_key)
    logger.info(f"{len(kept)} candidates meet the {min_mutuals}+ mutual requirement ({mode.value})")
    return kept
