"""
BitHedge — Price Aggregator
Turns samples from many sources into one AggregatedPrice:
freshness filter -> median/MAD outlier rejection -> reliability-weighted
mean, plus trailing daily-close volatility estimates (the primary window and
one per standard timeframe) and a 24h range.

The aggregator owns its trailing window exclusively; cycles are serialized
with a lock so two triggers can never interleave updates.
"""
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from bithedge.config.settings import AggregatorSettings, get_settings
from bithedge.oracle.errors import InsufficientSourcesError, OutOfOrderCycleError
from bithedge.oracle.models import AggregatedPrice, PriceSample
from bithedge.utils.helpers import DAYS_PER_YEAR, clamp, ensure_utc
from bithedge.utils.logger import get_logger

logger = get_logger("aggregator")

MAX_CONFIDENCE = 0.95


@dataclass
class FilterReport:
    """Which samples a cycle dropped, and why."""
    offered: int = 0
    stale: List[str] = field(default_factory=list)
    outliers: List[str] = field(default_factory=list)
    survivors: List[str] = field(default_factory=list)

    @property
    def rejected(self) -> List[str]:
        return self.stale + self.outliers


# ─── Pure building blocks ───────────────────────────────────────

def filter_fresh(
    samples: Sequence[PriceSample],
    now: datetime,
    max_age_seconds: float,
    max_skew_seconds: float = 0.0,
) -> Tuple[List[PriceSample], List[PriceSample]]:
    """Split samples into (fresh, stale). Future-dated beyond the skew counts as stale."""
    fresh, stale = [], []
    for sample in samples:
        age = (now - sample.observed_at).total_seconds()
        if age > max_age_seconds or age < -max_skew_seconds:
            stale.append(sample)
        else:
            fresh.append(sample)
    return fresh, stale


def reject_outliers(
    samples: Sequence[PriceSample],
    multiplier: float,
    mad_floor_fraction: float = 0.0,
) -> Tuple[List[PriceSample], List[PriceSample]]:
    """Median absolute deviation filter. Returns (kept, rejected)."""
    if not samples:
        return [], []
    prices = np.array([s.price for s in samples], dtype=float)
    center = float(np.median(prices))
    mad = float(np.median(np.abs(prices - center)))
    mad = max(mad, center * mad_floor_fraction)

    kept, rejected = [], []
    for sample in samples:
        if abs(sample.price - center) > multiplier * mad:
            rejected.append(sample)
        else:
            kept.append(sample)
    return kept, rejected


def weighted_price(samples: Sequence[PriceSample]) -> Optional[float]:
    """Reliability-weighted mean, or None when the total weight is zero."""
    total_weight = sum(s.weight for s in samples)
    if total_weight <= 0:
        return None
    return sum(s.price * s.weight for s in samples) / total_weight


def annualized_volatility(closes: Sequence[float]) -> Optional[float]:
    """Annualized sample std-dev of daily log returns; None with < 2 returns."""
    series = pd.Series(list(closes), dtype=float)
    log_returns = np.log(series).diff().dropna()
    if len(log_returns) < 2:
        return None
    return float(log_returns.std(ddof=1) * np.sqrt(DAYS_PER_YEAR))


def aggregation_confidence(survivors: Sequence[PriceSample], offered: int, price: float) -> float:
    """Share of sources surviving, discounted by their dispersion around the result."""
    if offered == 0 or not survivors:
        return 0.0
    mean_dev = sum(abs(s.price - price) / price for s in survivors) / len(survivors)
    return clamp((len(survivors) / offered) * (1 - mean_dev * 5), 0.0, MAX_CONFIDENCE)


# ─── Stateful aggregator ────────────────────────────────────────

class PriceAggregator:
    """Serialized, single-asset aggregator with a bounded trailing window."""

    def __init__(self, asset: str = "BTC/USD", settings: Optional[AggregatorSettings] = None):
        self.asset = asset
        self._settings = settings
        self._lock = threading.Lock()
        self._history: Deque[Tuple[datetime, float]] = deque()
        self._daily_closes: "OrderedDict[date, float]" = OrderedDict()
        self._latest: Optional[AggregatedPrice] = None
        self.last_report: Optional[FilterReport] = None

    @property
    def settings(self) -> AggregatorSettings:
        # Read live so a settings reload applies on the next cycle
        return self._settings or get_settings().aggregator

    @property
    def latest(self) -> Optional[AggregatedPrice]:
        return self._latest

    @property
    def daily_closes(self) -> Dict[date, float]:
        return dict(self._daily_closes)

    def aggregate(
        self,
        samples: Sequence[PriceSample],
        now: datetime,
        previous: Optional[AggregatedPrice] = None,
    ) -> AggregatedPrice:
        """Run one aggregation cycle over the samples gathered for `now`.

        Raises:
            InsufficientSourcesError: fewer than min_sources survive filtering.
            OutOfOrderCycleError: `now` is not after the previous aggregate.
        """
        now = ensure_utc(now)
        with self._lock:
            cfg = self.settings
            prev = previous if previous is not None else self._latest
            if prev is not None and now <= prev.computed_at:
                raise OutOfOrderCycleError(now, prev.computed_at)

            report = FilterReport(offered=len(samples))
            self.last_report = report

            fresh, stale = filter_fresh(
                samples, now, cfg.max_sample_age_seconds, cfg.max_clock_skew_seconds
            )
            for s in stale:
                report.stale.append(s.source_id)
                logger.warning(
                    "sample_rejected_stale",
                    asset=self.asset,
                    source=s.source_id,
                    observed_at=s.observed_at.isoformat(),
                )

            kept, outliers = reject_outliers(fresh, cfg.outlier_mad_multiplier, cfg.mad_floor_fraction)
            for s in outliers:
                report.outliers.append(s.source_id)
                logger.warning(
                    "sample_rejected_outlier",
                    asset=self.asset,
                    source=s.source_id,
                    price=s.price,
                )
            report.survivors = [s.source_id for s in kept]

            if len(kept) < cfg.min_sources:
                logger.error(
                    "insufficient_sources",
                    asset=self.asset,
                    survived=len(kept),
                    required=cfg.min_sources,
                    offered=len(samples),
                )
                raise InsufficientSourcesError(len(kept), cfg.min_sources, len(samples))

            price = weighted_price(kept)
            if price is None:
                logger.error("zero_total_weight", asset=self.asset, survived=len(kept))
                raise InsufficientSourcesError(0, cfg.min_sources, len(samples))

            self._record(now, price, cfg)
            volatility, reliable = self._volatility(cfg)
            by_days = self._volatility_by_days(cfg)
            range_low, range_high = self._range(now, cfg)

            aggregated = AggregatedPrice(
                price=price,
                volatility=volatility,
                volatility_reliable=reliable,
                volatility_by_days=by_days,
                range_low=range_low,
                range_high=range_high,
                source_count=len(kept),
                total_sources=len(samples),
                confidence=aggregation_confidence(kept, len(samples), price),
                sources=report.survivors,
                computed_at=now,
            )
            self._latest = aggregated

        logger.info(
            "aggregation_completed",
            asset=self.asset,
            price=round(price, 2),
            sources=aggregated.source_count,
            offered=aggregated.total_sources,
            confidence=round(aggregated.confidence, 4),
            volatility=round(volatility, 4),
            volatility_reliable=reliable,
            volatility_timeframes=sorted(by_days),
        )
        return aggregated

    def seed_daily_closes(self, closes: Mapping[date, float]) -> int:
        """Pre-fill the volatility window from historical daily closes.

        Days already observed live are not overwritten. Returns the number
        of closes in the window afterwards.
        """
        with self._lock:
            merged = dict(closes)
            merged.update(self._daily_closes)
            self._daily_closes = OrderedDict(sorted(merged.items()))
            self._trim_closes(self.settings)
            count = len(self._daily_closes)
        logger.info("volatility_window_seeded", asset=self.asset, closes=count)
        return count

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._daily_closes.clear()
            self._latest = None
            self.last_report = None

    # ─── internals (call with the lock held) ───────────────────

    def _record(self, now: datetime, price: float, cfg: AggregatorSettings) -> None:
        self._history.append((now, price))
        while len(self._history) > cfg.max_history_points:
            self._history.popleft()

        day = now.date()
        self._daily_closes[day] = price
        self._daily_closes.move_to_end(day)
        self._trim_closes(cfg)

    def _trim_closes(self, cfg: AggregatorSettings) -> None:
        while len(self._daily_closes) > cfg.close_window_days:
            self._daily_closes.popitem(last=False)

    def _volatility(self, cfg: AggregatorSettings) -> Tuple[float, bool]:
        closes = list(self._daily_closes.values())[-cfg.volatility_window_days:]
        volatility = annualized_volatility(closes)
        if volatility is None:
            logger.warning(
                "volatility_bootstrapped",
                asset=self.asset,
                closes=len(closes),
                bootstrap=cfg.bootstrap_volatility,
            )
            return cfg.bootstrap_volatility, False
        return volatility, len(closes) >= cfg.min_volatility_points

    def _volatility_by_days(self, cfg: AggregatorSettings) -> Dict[int, float]:
        """Volatility per timeframe, only for windows the close history fills."""
        closes = list(self._daily_closes.values())
        by_days: Dict[int, float] = {}
        for days in sorted(cfg.volatility_timeframes):
            if len(closes) < days:
                continue
            volatility = annualized_volatility(closes[-days:])
            if volatility is not None:
                by_days[days] = volatility
        return by_days

    def _range(self, now: datetime, cfg: AggregatorSettings) -> Tuple[float, float]:
        cutoff = now - timedelta(hours=cfg.range_window_hours)
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()
        window = [p for _, p in self._history]
        return min(window), max(window)


class SourceReliabilityTracker:
    """Nudges per-source weights toward sources that track the aggregate."""

    def __init__(
        self,
        priors: Optional[Mapping[str, float]] = None,
        default_weight: float = 0.95,
        floor: float = 0.5,
        cap: float = 0.99,
        reward: float = 0.001,
        penalty: float = 0.002,
    ):
        self._scores: Dict[str, float] = dict(priors or {})
        self.default_weight = default_weight
        self.floor = floor
        self.cap = cap
        self.reward = reward
        self.penalty = penalty

    def weight_for(self, source_id: str) -> float:
        return self._scores.get(source_id, self.default_weight)

    def update(
        self,
        samples: Iterable[PriceSample],
        aggregated: AggregatedPrice,
        rejected: Iterable[str] = (),
    ) -> Dict[str, float]:
        """Apply one cycle's feedback and return the new weights."""
        if not aggregated.has_data:
            return self.snapshot()
        rejected_ids = set(rejected)
        for sample in samples:
            current = self.weight_for(sample.source_id)
            deviation = abs(sample.price - aggregated.price) / aggregated.price
            if sample.source_id in rejected_ids or deviation > 0.01:
                self._scores[sample.source_id] = max(self.floor, current - self.penalty)
            elif deviation < 0.001:
                self._scores[sample.source_id] = min(self.cap, current + self.reward)
            else:
                self._scores[sample.source_id] = current
        return self.snapshot()

    def snapshot(self) -> Dict[str, float]:
        return dict(self._scores)
