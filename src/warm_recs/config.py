"""
Configuration constants for the warm recommendation engine.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging

logger = logging.getLogger(__name__)


def _env_number(key: str, default, cast, min_val):
    """
    Read a numeric setting from ``key``. Unset or blank falls back to
    ``default``; unparseable values log a warning and fall back too; values
    under ``min_val`` are clamped up to it.
    """
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        val = cast(raw)
    except ValueError:
        logger.warning(f"Ignoring {key}={raw!r}: not a valid {cast.__name__}, using {default}")
        return default
    if val < min_val:
        logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
        return min_val
    return val


# Graph API
NEYNAR_API_KEY = os.environ.get("NEYNAR_API_KEY")
API_BASE_URL = os.environ.get("WARM_RECS_API_BASE", "https://api.neynar.com/v2/farcaster").rstrip("/")
HTTP_TIMEOUT = _env_number("WARM_RECS_HTTP_TIMEOUT", 30.0, float, min_val=1.0)
MAX_HTTP_RETRIES = 3
API_MAX_PAGE_SIZE = 100  # Neynar rejects larger follow-list pages

# Profile cache
PROFILE_CACHE_TTL_SECONDS = _env_number("WARM_RECS_CACHE_TTL", 300.0, float, min_val=1.0)
PROFILE_CACHE_MAX_SIZE = _env_number("WARM_RECS_CACHE_SIZE", 1000, int, min_val=1)
PROFILE_CACHE_EVICT_FRACTION = 0.1

# Request limits
DEFAULT_LIMIT = 50
MAX_LIMIT = 100

# First-degree pagination
FIRST_DEGREE_PAGE_SIZE = 50
STANDARD_MAX_PAGES = 15   # 750 accounts
DEEP_MAX_PAGES = 50       # 2500 accounts

# Smart selection
MIN_FOLLOWER_COUNT = 100  # Below this, accounts are mostly bots or inactive
SWEET_SPOT_MIN_FOLLOWERS = 1000
SWEET_SPOT_MAX_FOLLOWERS = 20000
OFF_SWEET_SPOT_WEIGHT = 0.5
STANDARD_SELECTION_CAP = 300

# Second-degree traversal
TRAVERSAL_BATCH_SIZE = 25
PAUSE_EVERY_N_ACCOUNTS = 10
ACCOUNT_PAUSE_SECONDS = _env_number("WARM_RECS_ACCOUNT_PAUSE", 0.3, float, min_val=0.0)
BATCH_PAUSE_SECONDS = _env_number("WARM_RECS_BATCH_PAUSE", 0.5, float, min_val=0.0)

# (follower threshold, following limit), checked in order; strictly greater than
FOLLOWING_LIMIT_TIERS = (
    (50000, 40),
    (10000, 35),
    (5000, 30),
)
DEFAULT_FOLLOWING_LIMIT = 30

# Rate limit backoff
RATE_LIMIT_MAX_ATTEMPTS = 3
RATE_LIMIT_INITIAL_DELAY = 5.0
RATE_LIMIT_BACKOFF_FACTOR = 2.0
RATE_LIMIT_MAX_DELAY = 30.0

# Early termination (standard mode only)
EARLY_STOP_MIN_PROCESSED = 400
EARLY_STOP_LIMIT_MULTIPLIER = 5
EARLY_STOP_MIN_MUTUALS = 10

# Ranking
STANDARD_MIN_MUTUALS = 1
DEEP_MIN_MUTUALS = 2
MUTUAL_SCORE_WEIGHT = 100
FOLLOWER_SCORE_WEIGHT = 10

# One-way relationship analysis
RELATIONSHIP_PAGE_SIZE = 100
RELATIONSHIP_MAX_PAGES = 200
RELATIONSHIP_PAGE_PAUSE_SECONDS = 0.1
