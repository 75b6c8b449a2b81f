from dataclasses import dataclass, field

from .config import (
    FIRST_DEGREE_PAGE_SIZE,
    STANDARD_MAX_PAGES,
    DEEP_MAX_PAGES,
    MIN_FOLLOWER_COUNT,
    SWEET_SPOT_MIN_FOLLOWERS,
    SWEET_SPOT_MAX_FOLLOWERS,
    OFF_SWEET_SPOT_WEIGHT,
    STANDARD_SELECTION_CAP,
    TRAVERSAL_BATCH_SIZE,
    PAUSE_EVERY_N_ACCOUNTS,
    ACCOUNT_PAUSE_SECONDS,
    BATCH_PAUSE_SECONDS,
    FOLLOWING_LIMIT_TIERS,
    DEFAULT_FOLLOWING_LIMIT,
    EARLY_STOP_MIN_PROCESSED,
    EARLY_STOP_LIMIT_MULTIPLIER,
    EARLY_STOP_MIN_MUTUALS,
    STANDARD_MIN_MUTUALS,
    DEEP_MIN_MUTUALS,
    MUTUAL_SCORE_WEIGHT,
    FOLLOWER_SCORE_WEIGHT,
)
from .models import Mode
from .utils import BackoffPolicy


@dataclass(frozen=True)
class ModeSettings:
    """Knobs that differ between standard and deep traversal."""

    max_pages: int
    selection_cap: int | None  # None keeps the whole selection
    min_mutuals: int
    early_termination: bool


@dataclass
class DiscoveryConfig:
    """
    Tunables for candidate discovery and ranking.

    Defaults reproduce the production heuristics. Thresholds such as the
    early-termination numbers are empirical; override them here rather than
    at call sites.
    """

    page_size: int = FIRST_DEGREE_PAGE_SIZE

    # Smart selection
    min_follower_count: int = MIN_FOLLOWER_COUNT
    sweet_spot_min: int = SWEET_SPOT_MIN_FOLLOWERS
    sweet_spot_max: int = SWEET_SPOT_MAX_FOLLOWERS
    off_sweet_spot_weight: float = OFF_SWEET_SPOT_WEIGHT

    # Traversal pacing
    batch_size: int = TRAVERSAL_BATCH_SIZE
    pause_every: int = PAUSE_EVERY_N_ACCOUNTS
    account_pause: float = ACCOUNT_PAUSE_SECONDS
    batch_pause: float = BATCH_PAUSE_SECONDS
    following_limit_tiers: tuple[tuple[int, int], ...] = FOLLOWING_LIMIT_TIERS
    default_following_limit: int = DEFAULT_FOLLOWING_LIMIT
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    # Early termination (standard mode only)
    early_termination: bool = True
    early_stop_min_processed: int = EARLY_STOP_MIN_PROCESSED
    early_stop_limit_multiplier: int = EARLY_STOP_LIMIT_MULTIPLIER
    early_stop_min_mutuals: int = EARLY_STOP_MIN_MUTUALS

    # Ranking
    mutual_weight: float = MUTUAL_SCORE_WEIGHT
    follower_weight: float = FOLLOWER_SCORE_WEIGHT
    # Drops candidates following fewer accounts than this (0 disables)
    min_candidate_following: int = 0

    modes: dict[Mode, ModeSettings] = field(
        default_factory=lambda: {
            Mode.STANDARD: ModeSettings(
                max_pages=STANDARD_MAX_PAGES,
                selection_cap=STANDARD_SELECTION_CAP,
                min_mutuals=STANDARD_MIN_MUTUALS,
                early_termination=True,
            ),
            Mode.DEEP: ModeSettings(
                max_pages=DEEP_MAX_PAGES,
                selection_cap=None,
                min_mutuals=DEEP_MIN_MUTUALS,
                early_termination=False,
            ),
        }
    )

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")
        if self.min_follower_count < 0:
            raise ValueError("min_follower_count must be non-negative")
        if not (0 <= self.sweet_spot_min <= self.sweet_spot_max):
            raise ValueError("sweet spot bounds must satisfy 0 <= min <= max")
        if not (0.0 <= self.off_sweet_spot_weight <= 1.0):
            raise ValueError("off_sweet_spot_weight must be in [0, 1]")
        if self.batch_size <= 0 or self.pause_every <= 0:
            raise ValueError("batch_size and pause_every must be positive")
        if self.account_pause < 0 or self.batch_pause < 0:
            raise ValueError("pauses must be non-negative")
        if self.default_following_limit <= 0 or any(limit <= 0 for _, limit in self.following_limit_tiers):
            raise ValueError("following limits must be positive")
        if self.early_stop_min_processed < 0 or self.early_stop_limit_multiplier <= 0 or self.early_stop_min_mutuals <= 0:
            raise ValueError("early termination thresholds out of range")
        if self.mutual_weight < 0 or self.follower_weight < 0:
            raise ValueError("score weights must be non-negative")
        if self.min_candidate_following < 0:
            raise ValueError("min_candidate_following must be non-negative")

        for mode in Mode:
            settings = self.modes.get(mode)
            if settings is None:
                raise ValueError(f"missing settings for mode '{mode.value}'")
            if settings.max_pages <= 0:
                raise ValueError(f"{mode.value}: max_pages must be positive")
            if settings.selection_cap is not None and settings.selection_cap <= 0:
                raise ValueError(f"{mode.value}: selection_cap must be positive or None")
            if settings.min_mutuals < 1:
                raise ValueError(f"{mode.value}: min_mutuals must be at least 1")

    def settings_for(self, mode: Mode) -> ModeSettings:
        return self.modes[mode]
