"""
BitHedge — Price Cache Layer
In-memory TTL cache of raw per-source samples plus a bounded history of
recent aggregates, served by /api/v1/price and /metrics. Never an input
to pricing.
"""
from typing import Any, Dict, List, Optional

from cachetools import TTLCache

from bithedge.config.settings import get_settings
from bithedge.oracle.models import AggregatedPrice, PriceSample
from bithedge.utils.logger import get_logger

logger = get_logger("price_cache")


class PriceCache:
    """Raw samples expire after the TTL; aggregate history is bounded by count."""

    def __init__(self, ttl_seconds: Optional[int] = None, max_history: int = 1000):
        ttl = ttl_seconds if ttl_seconds is not None else get_settings().data.cache_ttl_seconds
        self._sample_cache: TTLCache = TTLCache(maxsize=2000, ttl=ttl)
        self._history: Dict[str, List[AggregatedPrice]] = {}
        self._max_history = max_history

    def put_sample(self, asset: str, sample: PriceSample) -> None:
        self._sample_cache[f"{asset}:{sample.source_id}"] = sample

    def get_all_samples(self, asset: str) -> Dict[str, PriceSample]:
        """Latest unexpired sample per source for an asset."""
        prefix = f"{asset}:"
        return {
            key[len(prefix):]: sample
            for key, sample in list(self._sample_cache.items())
            if key.startswith(prefix)
        }

    def put_aggregate(self, asset: str, aggregated: AggregatedPrice) -> None:
        history = self._history.setdefault(asset, [])
        history.append(aggregated)
        if len(history) > self._max_history:
            self._history[asset] = history[-self._max_history:]
            logger.debug("aggregate_history_trimmed", asset=asset, kept=self._max_history)

    def get_history(self, asset: str, limit: int = 100) -> List[AggregatedPrice]:
        """Most recent aggregates for an asset, oldest first."""
        if limit <= 0:
            return []
        return self._history.get(asset, [])[-limit:]

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "sample_entries": len(self._sample_cache),
            "history_assets": len(self._history),
            "total_history_points": sum(len(v) for v in self._history.values()),
        }


# Singleton instance
_cache: Optional[PriceCache] = None


def get_cache() -> PriceCache:
    global _cache
    if _cache is None:
        _cache = PriceCache()
    return _cache
