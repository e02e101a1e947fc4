"""
BitHedge — Test Configuration & Fixtures
Shared fixtures for all test modules.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from bithedge.config.settings import AppSettings, reload_settings
from bithedge.oracle.models import AggregatedPrice, PriceSample

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Every test starts from default settings."""
    settings = reload_settings(AppSettings())
    yield settings
    reload_settings(AppSettings())


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_sample():
    def _make(source_id: str, price: float, observed_at: datetime = NOW, weight: float = 1.0) -> PriceSample:
        return PriceSample(source_id=source_id, price=price, observed_at=observed_at, weight=weight)
    return _make


@pytest.fixture
def make_market():
    """AggregatedPrice factory; defaults match the reference BTC quote."""
    def _make(
        price: float = 94260.0,
        volatility: float = 0.425,
        reliable: bool = True,
        computed_at: datetime = NOW,
        source_count: int = 3,
        range_low: Optional[float] = None,
        range_high: Optional[float] = None,
        volatility_by_days: Optional[Dict[int, float]] = None,
    ) -> AggregatedPrice:
        return AggregatedPrice(
            price=price,
            volatility=volatility,
            volatility_reliable=reliable,
            volatility_by_days=volatility_by_days or {},
            range_low=range_low if range_low is not None else price * 0.98,
            range_high=range_high if range_high is not None else price * 1.02,
            source_count=source_count,
            total_sources=source_count,
            confidence=0.9,
            sources=[f"s{i}" for i in range(source_count)],
            computed_at=computed_at,
        )
    return _make


@pytest.fixture
def market(make_market) -> AggregatedPrice:
    return make_market()


@pytest.fixture
def as_of() -> datetime:
    """One minute after the market snapshot: well inside the freshness window."""
    return NOW + timedelta(seconds=60)
