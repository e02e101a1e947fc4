"""
BitHedge — Pricing Data Models
Request and result value types for the premium and yield engines.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List
from datetime import datetime
from enum import Enum


class PolicyType(str, Enum):
    PUT = "PUT"
    CALL = "CALL"


class RiskTier(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class ProtectionParameters(BaseModel):
    """Buyer-side request. Ranges are checked by the engine against live config."""
    model_config = ConfigDict(frozen=True)

    strike_selection_percent: float = Field(description="Strike as % of current price")
    protection_amount: float = Field(description="BTC amount protected")
    duration_days: int
    policy_type: PolicyType = PolicyType.PUT


class YieldParameters(BaseModel):
    """Provider-side request."""
    model_config = ConfigDict(frozen=True)

    risk_tier: RiskTier
    commitment_amount: float = Field(description="BTC-equivalent exposure committed")
    duration_days: int


class PriceScenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float
    payoff: float


class ComponentBreakdown(BaseModel):
    """Premium split, all totals for the full amount."""
    model_config = ConfigDict(frozen=True)

    intrinsic_value: float
    time_value: float
    volatility_component: float


class Greeks(BaseModel):
    """Per-unit sensitivities. Vega per 1.00 of vol, theta per calendar day."""
    model_config = ConfigDict(frozen=True)

    delta: float
    gamma: float
    vega: float
    theta: float


class PricingResult(BaseModel):
    """Kernel output plus the inputs that produced it."""
    model_config = ConfigDict(frozen=True)

    premium: float
    premium_percentage: float
    annualized_premium_percentage: float
    break_even_price: float
    max_benefit: float
    scenarios: List[PriceScenario]
    component_breakdown: ComponentBreakdown
    greeks: Greeks

    strike_price: float
    market_price: float
    volatility: float
    volatility_reliable: bool
    duration_days: int
    amount: float
    market_computed_at: datetime
    model: str = "black_scholes_put_zero_carry"


class YieldResult(PricingResult):
    """Provider quote. `premium` holds the estimated yield for the period.

    capital_efficiency is yield per unit committed; collateral_yield_ratio
    is yield over the collateral value (commitment * strike).
    """
    risk_tier: RiskTier
    strike_offset_percent: float
    rate_multiplier: float
    estimated_yield: float
    break_even_acquisition_price: float
    capital_efficiency: float
    collateral_yield_ratio: float
    annualized_yield_percentage: float
