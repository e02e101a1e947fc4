"""
BitHedge — Oracle Service
Runs the price pipeline end to end: poll every adapter concurrently,
aggregate, update source reliability, cache, notify subscribers and hand
the result to the publish coordinator. Cycles for one asset are
serialized; a slow or failing source simply drops out of that cycle.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from bithedge.config.settings import AppSettings, get_settings
from bithedge.data.adapters.base import BasePriceAdapter
from bithedge.data.adapters.exchange_adapters import build_default_adapters
from bithedge.data.cache.price_cache import PriceCache, get_cache
from bithedge.oracle.aggregator import PriceAggregator, SourceReliabilityTracker
from bithedge.oracle.errors import AggregationError, StaleAggregateError
from bithedge.oracle.models import AggregatedPrice, PriceSample, PublishedPrice
from bithedge.oracle.publisher import (
    DryRunLedgerClient,
    LedgerClient,
    LedgerPricePublisher,
    PublishCoordinator,
)
from bithedge.utils.helpers import ensure_utc, utc_now
from bithedge.utils.logger import bind_cycle, clear_cycle, get_logger

logger = get_logger("oracle_service")

Subscriber = Callable[[AggregatedPrice], Any]


class OracleService:
    """Owns the aggregators, the publish coordinator and the adapter set."""

    def __init__(
        self,
        adapters: Optional[Sequence[BasePriceAdapter]] = None,
        ledger: Optional[LedgerClient] = None,
        cache: Optional[PriceCache] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._settings = settings
        self._adapters: Optional[List[BasePriceAdapter]] = list(adapters) if adapters is not None else None
        self.cache = cache or get_cache()
        self.coordinator = PublishCoordinator(
            ledger or DryRunLedgerClient(),
            LedgerPricePublisher(settings.publisher if settings else None),
        )
        self.reliability = SourceReliabilityTracker(priors=self.settings.data.weights)
        self._aggregators: Dict[str, PriceAggregator] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._subscribers: List[Subscriber] = []
        self._initialized = False
        self.cycles = 0
        self.failed_cycles = 0
        self.last_published: Optional[PublishedPrice] = None

    @property
    def settings(self) -> AppSettings:
        return self._settings or get_settings()

    @property
    def adapters(self) -> List[BasePriceAdapter]:
        if self._adapters is None:
            self._adapters = build_default_adapters()
        return self._adapters

    def aggregator(self, asset: Optional[str] = None) -> PriceAggregator:
        asset = asset or self.settings.asset
        if asset not in self._aggregators:
            self._aggregators[asset] = PriceAggregator(
                asset, self._settings.aggregator if self._settings else None
            )
        return self._aggregators[asset]

    def _lock_for(self, asset: str) -> asyncio.Lock:
        if asset not in self._locks:
            self._locks[asset] = asyncio.Lock()
        return self._locks[asset]

    # ─── Lifecycle ──────────────────────────────────────────────

    async def initialize(self) -> None:
        """Connect adapters, adopt the ledger baseline and seed volatility history."""
        if self._initialized:
            return
        for adapter in self.adapters:
            try:
                await adapter.connect()
            except Exception as e:
                logger.warning("adapter_connect_failed", source=adapter.source_id, error=str(e))

        self.last_published = await self.coordinator.sync_from_ledger()
        await self.seed_history()
        self._initialized = True
        logger.info("oracle_service_initialized", adapters=len(self.adapters), asset=self.settings.asset)

    async def shutdown(self) -> None:
        for adapter in self.adapters:
            try:
                await adapter.disconnect()
            except Exception as e:
                logger.warning("adapter_disconnect_failed", source=adapter.source_id, error=str(e))
        self._initialized = False
        logger.info("oracle_service_shutdown")

    async def seed_history(self, asset: Optional[str] = None) -> int:
        """Pre-fill the volatility window with daily closes from history-capable sources."""
        asset = asset or self.settings.asset
        days = self.settings.data.history_seed_days
        closes: Dict = {}
        for adapter in self.adapters:
            try:
                closes.update(await adapter.fetch_daily_closes(asset, days))
            except Exception as e:
                logger.warning("history_seed_failed", source=adapter.source_id, error=str(e))
        if not closes:
            return len(self.aggregator(asset).daily_closes)
        return self.aggregator(asset).seed_daily_closes(closes)

    # ─── Pipeline ───────────────────────────────────────────────

    async def _fetch_one(self, adapter: BasePriceAdapter, asset: str) -> Optional[PriceSample]:
        window = self.settings.data.collection_window_seconds
        return await asyncio.wait_for(adapter.fetch_sample(asset), timeout=window)

    async def collect_samples(self, asset: Optional[str] = None) -> List[PriceSample]:
        """Poll every adapter concurrently; failures and timeouts are absent sources."""
        asset = asset or self.settings.asset
        adapters = self.adapters
        results = await asyncio.gather(
            *(self._fetch_one(adapter, asset) for adapter in adapters),
            return_exceptions=True,
        )

        samples: List[PriceSample] = []
        for adapter, result in zip(adapters, results):
            if isinstance(result, asyncio.TimeoutError):
                logger.warning("source_timeout", source=adapter.source_id, asset=asset)
            elif isinstance(result, Exception):
                logger.warning("source_failed", source=adapter.source_id, asset=asset, error=str(result))
            elif isinstance(result, PriceSample):
                sample = result.model_copy(update={"weight": self.reliability.weight_for(result.source_id)})
                samples.append(sample)
                self.cache.put_sample(asset, sample)
        return samples

    def aggregate_once(
        self,
        samples: Sequence[PriceSample],
        now,
        asset: Optional[str] = None,
    ) -> AggregatedPrice:
        """Aggregate pre-collected samples and fan the result out (no publishing)."""
        aggregator = self.aggregator(asset)
        try:
            aggregated = aggregator.aggregate(samples, ensure_utc(now))
        except AggregationError:
            self.failed_cycles += 1
            raise
        self.cycles += 1

        rejected = aggregator.last_report.outliers if aggregator.last_report else []
        self.reliability.update(samples, aggregated, rejected)
        self.cache.put_aggregate(aggregator.asset, aggregated)
        self._notify(aggregated)
        return aggregated

    async def run_cycle(self, asset: Optional[str] = None, now=None) -> AggregatedPrice:
        """One full cycle: collect, aggregate, publish if the policy says so.

        Raises the aggregator's data-quality errors; the previous aggregate
        stays available through latest().
        """
        asset = asset or self.settings.asset
        async with self._lock_for(asset):
            bind_cycle(asset, self.cycles + self.failed_cycles + 1)
            try:
                samples = await self.collect_samples(asset)
                cycle_time = ensure_utc(now) if now is not None else utc_now()
                aggregated = self.aggregate_once(samples, cycle_time, asset)
                published = await self.coordinator.maybe_publish(aggregated, cycle_time)
                if published is not None:
                    self.last_published = published
                return aggregated
            finally:
                clear_cycle()

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        """Run cycles every cycle_interval_seconds until `stop` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.run_cycle()
            except AggregationError as e:
                logger.warning("oracle_cycle_failed", code=e.code, error=str(e))
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.cycle_interval_seconds)
            except asyncio.TimeoutError:
                pass

    # ─── Read side ──────────────────────────────────────────────

    def latest(self, asset: Optional[str] = None) -> Optional[AggregatedPrice]:
        return self.aggregator(asset).latest

    def require_fresh(self, asset: Optional[str] = None, now=None) -> AggregatedPrice:
        """Latest aggregate, or StaleAggregateError if missing or too old."""
        max_age = self.settings.aggregator.max_aggregate_age_seconds
        latest = self.latest(asset)
        if latest is None:
            raise StaleAggregateError(None, None, max_age)
        now = ensure_utc(now) if now is not None else utc_now()
        age = (now - latest.computed_at).total_seconds()
        if age > max_age:
            raise StaleAggregateError(latest.computed_at, age, max_age)
        return latest

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a read-only listener; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, aggregated: AggregatedPrice) -> None:
        for callback in list(self._subscribers):
            try:
                callback(aggregated)
            except Exception as e:
                logger.error("subscriber_failed", callback=getattr(callback, "__name__", repr(callback)), error=str(e))

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "cycles": self.cycles,
            "failed_cycles": self.failed_cycles,
            "publish_sequence": self.coordinator.sequence,
            "subscribers": len(self._subscribers),
            "source_weights": self.reliability.snapshot(),
        }


# Singleton
_service: Optional[OracleService] = None


def get_oracle_service() -> OracleService:
    global _service
    if _service is None:
        _service = OracleService()
    return _service
