"""
BitHedge — Oracle Data Models
Canonical, immutable value types flowing from adapters through the
aggregator to the publisher and pricing engines.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum

from bithedge.utils.helpers import ensure_utc

# On-ledger prices carry 8 implied decimal places (1 USD = 100_000_000 units)
PRICE_DECIMALS = 8


class PriceSource(str, Enum):
    BINANCE = "binance"
    COINBASE = "coinbase"
    KRAKEN = "kraken"
    COINGECKO = "coingecko"


class PriceSample(BaseModel):
    """One observation from one source."""
    model_config = ConfigDict(frozen=True)

    source_id: str
    price: float = Field(gt=0)
    observed_at: datetime
    weight: float = Field(default=1.0, ge=0, le=1)

    @field_validator("observed_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class AggregatedPrice(BaseModel):
    """The system's single trusted price and volatility signal.

    source_count == 0 is the "no data" state: price and range are None,
    never zero.
    """
    model_config = ConfigDict(frozen=True)

    price: Optional[float] = None
    volatility: float = Field(ge=0)
    volatility_reliable: bool = False
    # Annualized volatility keyed by window length in days
    volatility_by_days: Dict[int, float] = Field(default_factory=dict)
    range_low: Optional[float] = None
    range_high: Optional[float] = None
    source_count: int = Field(ge=0)
    total_sources: int = Field(default=0, ge=0)
    confidence: float = Field(default=0.0, ge=0, le=1)
    sources: List[str] = Field(default_factory=list)
    computed_at: datetime

    @field_validator("computed_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def _check_range(self) -> "AggregatedPrice":
        if self.source_count == 0:
            if self.price is not None or self.range_low is not None or self.range_high is not None:
                raise ValueError("no-data aggregate must not carry a price or range")
            return self
        if self.price is None or self.range_low is None or self.range_high is None:
            raise ValueError("aggregate with sources must carry price and range")
        if self.price <= 0:
            raise ValueError(f"aggregate price must be positive, got {self.price}")
        if not (self.range_low <= self.price <= self.range_high):
            raise ValueError(
                f"range invariant violated: {self.range_low} <= {self.price} <= {self.range_high}"
            )
        return self

    @property
    def has_data(self) -> bool:
        return self.source_count > 0

    def volatility_for(self, duration_days: int) -> float:
        """Volatility of the window closest to `duration_days`.

        Ties go to the shorter window; falls back to the primary estimate
        when no timeframe window is filled yet.
        """
        if not self.volatility_by_days:
            return self.volatility
        days = min(self.volatility_by_days, key=lambda d: (abs(d - duration_days), d))
        return self.volatility_by_days[days]

    @classmethod
    def no_data(cls, computed_at: datetime, volatility: float = 0.0) -> "AggregatedPrice":
        return cls(volatility=volatility, source_count=0, computed_at=computed_at)


class PublishedPrice(BaseModel):
    """A price as recorded on the ledger."""
    model_config = ConfigDict(frozen=True)

    price: float = Field(gt=0)
    published_at: datetime
    sequence: int = 0
    tx_id: Optional[str] = None

    @field_validator("published_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class PublishPayload(BaseModel):
    """Ledger write body: the price as a fixed-point integer, nothing else.

    The recorded timestamp is assigned by the ledger at inclusion time.
    """
    model_config = ConfigDict(frozen=True)

    price: int = Field(gt=0, description=f"USD price scaled by 10**{PRICE_DECIMALS}")


class PublishReceipt(BaseModel):
    """What the ledger reports back after accepting a payload."""
    model_config = ConfigDict(frozen=True)

    tx_id: str
    ledger_timestamp: datetime
    payload: PublishPayload

    @field_validator("ledger_timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class PublishDecision(BaseModel):
    """Outcome of the publish policy with the reason behind it."""
    model_config = ConfigDict(frozen=True)

    should_publish: bool
    reason: str
    change_pct: Optional[float] = None
    seconds_since_last: Optional[float] = None
