"""
BitHedge — Yield Calculation Engine
Provider-side mirror of the premium engine. A risk tier maps to a fixed
strike offset and rate multiplier from configuration; the provider earns
the kernel premium at the derived strike, scaled by the multiplier.
"""
from datetime import datetime
from typing import Optional

from bithedge.config.settings import PricingSettings, RiskTierPolicy, get_settings
from bithedge.oracle.models import AggregatedPrice
from bithedge.pricing.kernel import MODEL_NAME, put_premium_per_unit, scenario_prices
from bithedge.pricing.models import (
    ComponentBreakdown,
    Greeks,
    PriceScenario,
    RiskTier,
    YieldParameters,
    YieldResult,
)
from bithedge.pricing.validation import validate_market, validate_yield
from bithedge.utils.helpers import DAYS_PER_YEAR, safe_divide
from bithedge.utils.logger import get_logger

logger = get_logger("yield_engine")


class YieldCalculationEngine:
    """Prices provider yield from an AggregatedPrice."""

    def __init__(self, settings: Optional[PricingSettings] = None):
        self._settings = settings

    @property
    def settings(self) -> PricingSettings:
        return self._settings or get_settings().pricing

    def tier_policy(self, tier: RiskTier) -> RiskTierPolicy:
        return self.settings.risk_tiers[tier.value]

    def price_yield(
        self,
        params: YieldParameters,
        market: AggregatedPrice,
        as_of: datetime,
    ) -> YieldResult:
        """Quote the expected yield for committing capital at `params.risk_tier`."""
        cfg = self.settings
        validate_yield(params, cfg)
        validate_market(market, as_of, cfg)

        policy = cfg.risk_tiers[params.risk_tier.value]
        spot = market.price
        commitment = params.commitment_amount
        strike = spot * (100.0 + policy.strike_offset_percent) / 100.0
        scale = commitment * policy.rate_multiplier
        volatility = market.volatility_for(params.duration_days)

        unit = put_premium_per_unit(spot, strike, volatility, params.duration_days)
        estimated_yield = unit.premium * scale
        capital_efficiency = estimated_yield / commitment
        collateral_yield_ratio = estimated_yield / (commitment * strike)
        annualized = safe_divide(collateral_yield_ratio * DAYS_PER_YEAR, params.duration_days) * 100.0
        break_even = strike - estimated_yield / commitment

        # Provider is short the put: keeps the yield, pays the shortfall
        scenarios = [
            PriceScenario(price=p, payoff=estimated_yield - max(0.0, strike - p) * commitment)
            for p in scenario_prices(spot, strike, cfg.scenario_band, cfg.scenario_steps)
        ]

        result = YieldResult(
            premium=estimated_yield,
            premium_percentage=collateral_yield_ratio * 100.0,
            annualized_premium_percentage=annualized,
            break_even_price=break_even,
            max_benefit=estimated_yield,
            scenarios=scenarios,
            component_breakdown=ComponentBreakdown(
                intrinsic_value=unit.intrinsic * scale,
                time_value=unit.time_value * scale,
                volatility_component=unit.vega * volatility * scale,
            ),
            greeks=Greeks(
                delta=-unit.delta,
                gamma=-unit.gamma,
                vega=-unit.vega,
                theta=-unit.theta,
            ),
            strike_price=strike,
            market_price=spot,
            volatility=volatility,
            volatility_reliable=market.volatility_reliable,
            duration_days=params.duration_days,
            amount=commitment,
            market_computed_at=market.computed_at,
            model=MODEL_NAME,
            risk_tier=params.risk_tier,
            strike_offset_percent=policy.strike_offset_percent,
            rate_multiplier=policy.rate_multiplier,
            estimated_yield=estimated_yield,
            break_even_acquisition_price=break_even,
            capital_efficiency=capital_efficiency,
            collateral_yield_ratio=collateral_yield_ratio,
            annualized_yield_percentage=annualized,
        )

        logger.info(
            "yield_priced",
            tier=params.risk_tier.value,
            strike=round(strike, 2),
            commitment=commitment,
            duration_days=params.duration_days,
            estimated_yield=round(estimated_yield, 2),
        )
        return result


def price_yield(
    params: YieldParameters,
    market: AggregatedPrice,
    as_of: datetime,
    settings: Optional[PricingSettings] = None,
) -> YieldResult:
    """Functional entry point over YieldCalculationEngine."""
    return YieldCalculationEngine(settings).price_yield(params, market, as_of)
