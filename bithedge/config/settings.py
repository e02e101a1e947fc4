"""
BitHedge — Central Configuration
All thresholds, bands and tables are data loaded from environment variables
(or a .env file) with sensible defaults. Call reload_settings() to swap the
live configuration without restarting the process.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, model_validator
from typing import Dict, List, Optional


class RiskTierPolicy(BaseModel):
    """Fixed strike offset and rate multiplier for one provider risk tier."""
    strike_offset_percent: float
    rate_multiplier: float = Field(gt=0)


DEFAULT_RISK_TIERS: Dict[str, RiskTierPolicy] = {
    "conservative": RiskTierPolicy(strike_offset_percent=-20.0, rate_multiplier=0.85),
    "balanced": RiskTierPolicy(strike_offset_percent=-10.0, rate_multiplier=1.00),
    "aggressive": RiskTierPolicy(strike_offset_percent=0.0, rate_multiplier=1.15),
}


class DataSourceSettings(BaseSettings):
    """Exchange endpoints, source weights and the collection window."""
    model_config = SettingsConfigDict(env_prefix="SOURCE_", env_file=".env", extra="ignore")

    binance_base_url: str = "https://api.binance.com/api/v3"
    coinbase_base_url: str = "https://api.coinbase.com/v2"
    kraken_base_url: str = "https://api.kraken.com/0/public"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"

    # Reliability priors, adjusted at runtime by the reliability tracker
    weights: Dict[str, float] = {
        "binance": 0.95,
        "coinbase": 0.95,
        "kraken": 0.90,
        "coingecko": 0.85,
    }

    collection_window_seconds: float = 5.0
    cache_ttl_seconds: int = 300
    history_seed_days: int = 365


class AggregatorSettings(BaseSettings):
    """Price aggregation: freshness, outlier filter, volatility window."""
    model_config = SettingsConfigDict(env_prefix="AGG_", env_file=".env", extra="ignore")

    max_sample_age_seconds: float = 300.0
    max_clock_skew_seconds: float = 5.0
    outlier_mad_multiplier: float = Field(default=3.0, gt=0)
    mad_floor_fraction: float = Field(default=0.0005, ge=0)
    min_sources: int = Field(default=2, ge=1)

    volatility_window_days: int = Field(default=30, ge=3)
    min_volatility_points: int = Field(default=20, ge=3)
    # Extra windows quoted by duration; the close history keeps the longest
    volatility_timeframes: List[int] = [30, 60, 90, 180, 360]
    bootstrap_volatility: float = Field(default=0.5, gt=0)
    range_window_hours: float = 24.0
    max_history_points: int = 10_000

    # Callers treat the latest aggregate as stale past this age
    max_aggregate_age_seconds: float = 900.0

    @model_validator(mode="after")
    def _check_windows(self) -> "AggregatorSettings":
        if self.min_volatility_points > self.volatility_window_days:
            raise ValueError(
                f"min_volatility_points ({self.min_volatility_points}) exceeds "
                f"volatility_window_days ({self.volatility_window_days}); volatility could never be reliable"
            )
        if any(days < 3 for days in self.volatility_timeframes):
            raise ValueError(f"volatility timeframes need at least 3 days, got {self.volatility_timeframes}")
        return self

    @property
    def close_window_days(self) -> int:
        return max([self.volatility_window_days, *self.volatility_timeframes])


class PublisherSettings(BaseSettings):
    """On-ledger publication thresholds."""
    model_config = SettingsConfigDict(env_prefix="PUBLISH_", env_file=".env", extra="ignore")

    deviation_threshold: float = Field(default=0.01, gt=0)  # 1%
    max_staleness_seconds: float = 24 * 60 * 60.0  # heartbeat
    min_publish_interval_seconds: float = 0.0
    min_publish_sources: int = Field(default=2, ge=1)


class PricingSettings(BaseSettings):
    """Premium / yield engine parameters."""
    model_config = SettingsConfigDict(env_prefix="PRICING_", env_file=".env", extra="ignore")

    strike_band_min_percent: float = 50.0
    strike_band_max_percent: float = 150.0
    allowed_durations: List[int] = [30, 90, 180, 360]
    max_market_age_seconds: float = 600.0
    require_reliable_volatility: bool = False

    scenario_band: float = Field(default=0.5, gt=0, lt=1)
    scenario_steps: int = Field(default=21, ge=2)

    risk_tiers: Dict[str, RiskTierPolicy] = DEFAULT_RISK_TIERS

    onchain_tolerance: float = Field(default=0.02, gt=0)
    onchain_dust_fraction: float = Field(default=1e-5, ge=0)
    # Dust applies only to off-ledger premiums below this many USD
    onchain_dust_premium_floor: float = Field(default=1.0, ge=0)
    verify_onchain: bool = True


class AppSettings(BaseSettings):
    """Top-level application settings."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "BitHedge Core"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    asset: str = "BTC/USD"
    cycle_interval_seconds: float = 60.0
    oracle_loop_enabled: bool = True

    data: DataSourceSettings = Field(default_factory=DataSourceSettings)
    aggregator: AggregatorSettings = Field(default_factory=AggregatorSettings)
    publisher: PublisherSettings = Field(default_factory=PublisherSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)


# Singleton
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings(settings: Optional[AppSettings] = None) -> AppSettings:
    """Replace the live settings (re-read from the environment when None)."""
    global _settings
    _settings = settings if settings is not None else AppSettings()
    return _settings
