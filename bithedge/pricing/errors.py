"""
BitHedge — Pricing Errors
Input validation errors are reported immediately and never retried;
data-quality errors are surfaced so the caller can retry or show
"pricing unavailable"; divergence is a correctness alarm.
"""
from datetime import datetime
from typing import List


class PricingError(Exception):
    """Base class for pricing failures."""
    code = "pricing_error"


class InvalidParametersError(PricingError):
    code = "invalid_parameters"

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__("Invalid pricing parameters: " + "; ".join(self.violations))


class StaleMarketDataError(PricingError):
    code = "stale_market_data"

    def __init__(self, computed_at: datetime, age_seconds: float, max_age_seconds: float):
        self.computed_at = computed_at
        self.age_seconds = age_seconds
        self.max_age_seconds = max_age_seconds
        super().__init__(
            f"Market data from {computed_at.isoformat()} is {age_seconds:.0f}s old "
            f"(max {max_age_seconds:.0f}s)"
        )


class MarketDataUnavailableError(PricingError):
    code = "market_data_unavailable"


class UnreliableVolatilityError(PricingError):
    code = "unreliable_volatility"


class FormulaDivergenceError(PricingError):
    code = "formula_divergence"

    def __init__(self, offchain: float, onchain: float, allowed: float):
        self.offchain = offchain
        self.onchain = onchain
        self.allowed = allowed
        super().__init__(
            f"On-ledger premium {onchain:.8f} diverges from off-ledger {offchain:.8f} "
            f"by {abs(offchain - onchain):.8f} (allowed {allowed:.8f})"
        )
