"""
BitHedge — Cross-Formula Consistency
Re-prices every off-ledger quote with the fixed-point on-ledger formula and
flags divergence beyond tolerance. A divergence means a buyer could be
charged (or a provider credited) something other than what was quoted.
"""
from dataclasses import dataclass
from typing import Optional

from bithedge.config.settings import PricingSettings, get_settings
from bithedge.oracle.models import PRICE_DECIMALS, AggregatedPrice
from bithedge.pricing.errors import FormulaDivergenceError
from bithedge.pricing.models import PricingResult, ProtectionParameters, YieldParameters, YieldResult
from bithedge.pricing.onchain import calculate_percentage, mul, put_premium_fixed
from bithedge.utils.helpers import from_fixed_point, safe_divide, to_fixed_point
from bithedge.utils.logger import get_logger

logger = get_logger("formula_consistency")

# Strike percent travels on-ledger in basis points (2 implied decimals)
PERCENT_DECIMALS = 2


@dataclass
class ConsistencyReport:
    offchain_premium: float
    onchain_premium: float
    onchain_fixed: int
    absolute_diff: float
    allowed_diff: float
    relative_diff: float
    within_tolerance: bool

    def to_dict(self) -> dict:
        return {
            "offchain_premium": round(self.offchain_premium, 8),
            "onchain_premium": round(self.onchain_premium, 8),
            "absolute_diff": round(self.absolute_diff, 8),
            "allowed_diff": round(self.allowed_diff, 8),
            "relative_diff": round(self.relative_diff, 6),
            "within_tolerance": self.within_tolerance,
        }


class FormulaConsistencyChecker:
    """Compares off-ledger quotes against the on-ledger formula.

    Passes when |off - on| <= tolerance * off. Below
    onchain_dust_premium_floor USD the bound widens by dust_fraction *
    notional, which absorbs the CDF approximation's absolute error on deep
    out-of-the-money quotes worth a few cents.
    """

    def __init__(self, settings: Optional[PricingSettings] = None):
        self._settings = settings
        self.checks = 0
        self.divergences = 0

    @property
    def settings(self) -> PricingSettings:
        return self._settings or get_settings().pricing

    def compare(self, offchain: float, onchain_fixed: int, notional: float) -> ConsistencyReport:
        cfg = self.settings
        onchain = from_fixed_point(onchain_fixed, PRICE_DECIMALS)
        diff = abs(offchain - onchain)
        allowed = cfg.onchain_tolerance * abs(offchain)
        if abs(offchain) < cfg.onchain_dust_premium_floor:
            allowed += cfg.onchain_dust_fraction * notional
        self.checks += 1
        report = ConsistencyReport(
            offchain_premium=offchain,
            onchain_premium=onchain,
            onchain_fixed=onchain_fixed,
            absolute_diff=diff,
            allowed_diff=allowed,
            relative_diff=safe_divide(diff, abs(offchain)),
            within_tolerance=diff <= allowed,
        )
        if not report.within_tolerance:
            self.divergences += 1
            logger.critical("formula_divergence", **report.to_dict())
        return report

    def _onchain_unit_inputs(self, market: AggregatedPrice, result: PricingResult):
        # The quote records which timeframe volatility it was priced with
        return (
            to_fixed_point(market.price, PRICE_DECIMALS),
            to_fixed_point(result.volatility, PRICE_DECIMALS),
        )

    def check_protection(
        self,
        params: ProtectionParameters,
        market: AggregatedPrice,
        result: PricingResult,
    ) -> ConsistencyReport:
        """Re-price a buyer quote from the same inputs the ledger would see."""
        price, vol = self._onchain_unit_inputs(market, result)
        strike = calculate_percentage(
            price, to_fixed_point(params.strike_selection_percent, PERCENT_DECIMALS)
        )
        amount = to_fixed_point(params.protection_amount, PRICE_DECIMALS)
        onchain = put_premium_fixed(price, strike, amount, vol, params.duration_days)
        return self.compare(result.premium, onchain, result.strike_price * result.amount)

    def check_yield(
        self,
        params: YieldParameters,
        market: AggregatedPrice,
        result: YieldResult,
    ) -> ConsistencyReport:
        """Re-price a provider quote; the tier multiplier is applied on-ledger too."""
        price, vol = self._onchain_unit_inputs(market, result)
        strike = calculate_percentage(
            price, to_fixed_point(100.0 + result.strike_offset_percent, PERCENT_DECIMALS)
        )
        commitment = to_fixed_point(params.commitment_amount, PRICE_DECIMALS)
        base = put_premium_fixed(price, strike, commitment, vol, params.duration_days)
        onchain = mul(base, to_fixed_point(result.rate_multiplier, PRICE_DECIMALS))
        return self.compare(result.estimated_yield, onchain, result.strike_price * result.amount)

    def verify(self, report: ConsistencyReport) -> ConsistencyReport:
        """Raise FormulaDivergenceError unless the report is within tolerance."""
        if not report.within_tolerance:
            raise FormulaDivergenceError(
                report.offchain_premium, report.onchain_premium, report.allowed_diff
            )
        return report
