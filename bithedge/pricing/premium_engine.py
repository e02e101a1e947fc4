"""
BitHedge — Premium Calculation Engine
Buyer-side PUT quote: premium, break-even, maximum benefit, payoff
scenarios, component breakdown and Greeks.

Pure: no shared state, no implicit clock. `as_of` is the explicit instant
against which market freshness is judged.
"""
from datetime import datetime
from typing import Optional

from bithedge.config.settings import PricingSettings, get_settings
from bithedge.oracle.models import AggregatedPrice
from bithedge.pricing.kernel import MODEL_NAME, put_premium_per_unit, scenario_prices
from bithedge.pricing.models import (
    ComponentBreakdown,
    Greeks,
    PriceScenario,
    PricingResult,
    ProtectionParameters,
)
from bithedge.pricing.validation import validate_market, validate_protection
from bithedge.utils.helpers import DAYS_PER_YEAR, safe_divide
from bithedge.utils.logger import get_logger

logger = get_logger("premium_engine")


class PremiumCalculationEngine:
    """Prices buyer protection from an AggregatedPrice."""

    def __init__(self, settings: Optional[PricingSettings] = None):
        self._settings = settings

    @property
    def settings(self) -> PricingSettings:
        return self._settings or get_settings().pricing

    def price_protection(
        self,
        params: ProtectionParameters,
        market: AggregatedPrice,
        as_of: datetime,
    ) -> PricingResult:
        """Quote a PUT for `params` against `market`.

        Raises:
            InvalidParametersError: strike outside band, amount <= 0,
                duration not allow-listed, or non-PUT policy.
            MarketDataUnavailableError / StaleMarketDataError /
            UnreliableVolatilityError: the market input cannot be trusted.
        """
        cfg = self.settings
        validate_protection(params, cfg)
        validate_market(market, as_of, cfg)

        spot = market.price
        amount = params.protection_amount
        strike = spot * params.strike_selection_percent / 100.0
        volatility = market.volatility_for(params.duration_days)

        unit = put_premium_per_unit(spot, strike, volatility, params.duration_days)
        premium = unit.premium * amount
        notional = strike * amount
        premium_percentage = premium / notional * 100.0

        scenarios = [
            PriceScenario(price=p, payoff=max(0.0, strike - p) * amount - premium)
            for p in scenario_prices(spot, strike, cfg.scenario_band, cfg.scenario_steps)
        ]

        result = PricingResult(
            premium=premium,
            premium_percentage=premium_percentage,
            annualized_premium_percentage=safe_divide(premium_percentage * DAYS_PER_YEAR, params.duration_days),
            break_even_price=strike - premium / amount,
            max_benefit=notional,
            scenarios=scenarios,
            component_breakdown=ComponentBreakdown(
                intrinsic_value=unit.intrinsic * amount,
                time_value=unit.time_value * amount,
                volatility_component=unit.vega * volatility * amount,
            ),
            greeks=Greeks(delta=unit.delta, gamma=unit.gamma, vega=unit.vega, theta=unit.theta),
            strike_price=strike,
            market_price=spot,
            volatility=volatility,
            volatility_reliable=market.volatility_reliable,
            duration_days=params.duration_days,
            amount=amount,
            market_computed_at=market.computed_at,
            model=MODEL_NAME,
        )

        logger.info(
            "protection_priced",
            strike=round(strike, 2),
            amount=amount,
            duration_days=params.duration_days,
            volatility=round(volatility, 4),
            premium=round(premium, 2),
        )
        return result


def price_protection(
    params: ProtectionParameters,
    market: AggregatedPrice,
    as_of: datetime,
    settings: Optional[PricingSettings] = None,
) -> PricingResult:
    """Functional entry point over PremiumCalculationEngine."""
    return PremiumCalculationEngine(settings).price_protection(params, market, as_of)
