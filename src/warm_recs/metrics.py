"""Counters observed by whoever runs the engine (CLI, service wrapper, tests)."""

from prometheus_client import CollectorRegistry, Counter, Histogram


class RecommendationMetrics:
    """
    Prometheus counters for discovery, traversal and the profile cache.

    Each instance owns its own registry so separate engines (and tests) never
    share counts. Expose ``registry`` to a scrape endpoint or pushgateway if
    the surrounding process wants them.
    """

    def __init__(self, namespace: str = "warm_recs"):
        self.namespace = namespace
        self.registry = CollectorRegistry()

        self.pages_fetched = self._counter("pages_fetched", "First-degree pages fetched")
        self.accounts_processed = self._counter("accounts_processed", "First-degree accounts traversed")
        self.account_failures = self._counter("account_failures", "Accounts skipped after a fetch failure")
        self.rate_limit_hits = self._counter("rate_limit_hits", "Rate limit responses observed")
        self.cache_hits = self._counter("cache_hits", "Profile cache hits")
        self.cache_misses = self._counter("cache_misses", "Profile cache misses")
        self.cache_stale_fallbacks = self._counter("cache_stale_fallbacks", "Expired profiles served after a failed refresh")
        self.cache_evictions = self._counter("cache_evictions", "Profile cache entries evicted")

        self.recommend_latency = Histogram(
            f"{namespace}_recommend_seconds",
            "End-to-end recommend latency in seconds",
            ["mode"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self.registry,
        )

    def _counter(self, name: str, documentation: str) -> Counter:
        return Counter(f"{self.namespace}_{name}", documentation, registry=self.registry)

    def value(self, name: str) -> float:
        """Current value of a counter declared above, by short name."""
        sample = self.registry.get_sample_value(f"{self.namespace}_{name}_total")
        return sample or 0.0

    def cache_hit_ratio(self) -> float:
        hits = self.value("cache_hits")
        total = hits + self.value("cache_misses")
        return hits / total if total else 0.0

    def snapshot(self) -> dict:
        names = (
            "pages_fetched",
            "accounts_processed",
            "account_failures",
            "rate_limit_hits",
            "cache_hits",
            "cache_misses",
            "cache_stale_fallbacks",
            "cache_evictions",
        )
        data = {name: int(self.value(name)) for name in names}
        data["cache_hit_ratio"] = round(self.cache_hit_ratio(), 3)
        return data
