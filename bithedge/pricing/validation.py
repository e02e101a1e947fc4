"""
BitHedge — Pricing Input Validation
Checks requests against the live configuration (band, allow-list, tiers)
and refuses to price on missing, stale, or (optionally) provisional data.
"""
import math
from datetime import datetime
from typing import List

from bithedge.config.settings import PricingSettings
from bithedge.oracle.models import AggregatedPrice
from bithedge.pricing.errors import (
    InvalidParametersError,
    MarketDataUnavailableError,
    StaleMarketDataError,
    UnreliableVolatilityError,
)
from bithedge.pricing.models import PolicyType, ProtectionParameters, YieldParameters
from bithedge.utils.helpers import ensure_utc
from bithedge.utils.logger import get_logger

logger = get_logger("pricing_validation")


def _amount_violations(name: str, value: float) -> List[str]:
    if not (math.isfinite(value) and value > 0):
        return [f"{name} must be a finite number > 0 (got {value})"]
    return []


def _duration_violations(duration_days: int, cfg: PricingSettings) -> List[str]:
    if duration_days not in cfg.allowed_durations:
        return [f"duration_days {duration_days} not in allowed durations {sorted(cfg.allowed_durations)}"]
    return []


def validate_protection(params: ProtectionParameters, cfg: PricingSettings) -> None:
    """Raise InvalidParametersError listing every violation."""
    violations: List[str] = []
    pct = params.strike_selection_percent
    if not (cfg.strike_band_min_percent <= pct <= cfg.strike_band_max_percent):
        violations.append(
            f"strike_selection_percent {pct} outside "
            f"[{cfg.strike_band_min_percent}, {cfg.strike_band_max_percent}]"
        )
    violations += _amount_violations("protection_amount", params.protection_amount)
    violations += _duration_violations(params.duration_days, cfg)
    if params.policy_type != PolicyType.PUT:
        violations.append(f"policy_type {params.policy_type.value} not supported (PUT only)")

    if violations:
        logger.info("protection_parameters_rejected", violations=violations)
        raise InvalidParametersError(violations)


def validate_yield(params: YieldParameters, cfg: PricingSettings) -> None:
    violations: List[str] = []
    if params.risk_tier.value not in cfg.risk_tiers:
        violations.append(f"risk_tier {params.risk_tier.value} has no configured policy")
    violations += _amount_violations("commitment_amount", params.commitment_amount)
    violations += _duration_violations(params.duration_days, cfg)

    if violations:
        logger.info("yield_parameters_rejected", violations=violations)
        raise InvalidParametersError(violations)


def validate_market(market: AggregatedPrice, as_of: datetime, cfg: PricingSettings) -> None:
    """Refuse to price on no-data, stale, or (if configured) provisional input."""
    if not market.has_data:
        raise MarketDataUnavailableError("Aggregated price has no data (source_count == 0)")

    age = (ensure_utc(as_of) - market.computed_at).total_seconds()
    if age > cfg.max_market_age_seconds:
        logger.warning(
            "stale_market_data",
            computed_at=market.computed_at.isoformat(),
            age_seconds=round(age, 1),
            max_age_seconds=cfg.max_market_age_seconds,
        )
        raise StaleMarketDataError(market.computed_at, age, cfg.max_market_age_seconds)

    if not market.volatility_reliable:
        if cfg.require_reliable_volatility:
            raise UnreliableVolatilityError(
                f"Volatility {market.volatility:.4f} is provisional (trailing window not yet filled)"
            )
        logger.warning("pricing_with_provisional_volatility", volatility=market.volatility)
