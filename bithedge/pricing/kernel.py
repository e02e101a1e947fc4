"""
BitHedge — Off-Ledger Pricing Kernel
Black-Scholes European PUT with zero cost of carry, shared by the premium
(buyer) and yield (provider) engines.

With r = 0 the put value is increasing in both volatility and time, tends to
intrinsic value as time tends to zero, and never falls below intrinsic.
"""
import math
from dataclasses import dataclass
from typing import List

import numpy as np
from scipy.stats import norm

from bithedge.oracle.models import PRICE_DECIMALS
from bithedge.utils.helpers import DAYS_PER_YEAR

MODEL_NAME = "black_scholes_put_zero_carry"

# Smallest per-unit premium while time and volatility remain: one ledger unit
MIN_PREMIUM_PER_UNIT = 1.0 / 10 ** PRICE_DECIMALS


@dataclass(frozen=True)
class KernelOutput:
    """Per-unit put value and sensitivities."""
    premium: float
    intrinsic: float
    time_value: float
    delta: float
    gamma: float
    vega: float
    theta: float


def put_premium_per_unit(
    spot: float,
    strike: float,
    volatility: float,
    duration_days: float,
) -> KernelOutput:
    """Price one unit of a PUT.

    Args:
        spot: Current asset price (> 0).
        strike: Strike price (> 0).
        volatility: Annualized volatility as a decimal (>= 0).
        duration_days: Calendar days to expiry (>= 0).

    Returns:
        KernelOutput with premium >= intrinsic, and premium >=
        MIN_PREMIUM_PER_UNIT whenever volatility and duration are both
        positive (deep out-of-the-money values underflow to zero). Vega is per 1.00 of
        volatility, theta per calendar day.
    """
    if spot <= 0 or strike <= 0:
        raise ValueError(f"spot and strike must be positive (spot={spot}, strike={strike})")
    if volatility < 0 or duration_days < 0:
        raise ValueError(f"volatility and duration must be non-negative ({volatility}, {duration_days})")

    t = duration_days / DAYS_PER_YEAR
    intrinsic = max(0.0, strike - spot)
    sqrt_t = math.sqrt(t)
    sig_sqrt_t = volatility * sqrt_t

    # Degenerate: no time or no uncertainty left, only intrinsic value
    if sig_sqrt_t <= 0:
        return KernelOutput(
            premium=intrinsic,
            intrinsic=intrinsic,
            time_value=0.0,
            delta=-1.0 if strike > spot else 0.0,
            gamma=0.0,
            vega=0.0,
            theta=0.0,
        )

    d1 = (math.log(spot / strike) + 0.5 * volatility ** 2 * t) / sig_sqrt_t
    d2 = d1 - sig_sqrt_t

    value = strike * float(norm.cdf(-d2)) - spot * float(norm.cdf(-d1))
    premium = max(value, intrinsic, MIN_PREMIUM_PER_UNIT)

    pdf_d1 = float(norm.pdf(d1))
    return KernelOutput(
        premium=premium,
        intrinsic=intrinsic,
        time_value=premium - intrinsic,
        delta=float(norm.cdf(d1)) - 1.0,
        gamma=pdf_d1 / (spot * sig_sqrt_t),
        vega=spot * pdf_d1 * sqrt_t,
        theta=-(spot * pdf_d1 * volatility) / (2.0 * sqrt_t) / DAYS_PER_YEAR,
    )


def scenario_prices(market_price: float, strike: float, band: float, steps: int) -> List[float]:
    """Evenly spaced prices over market_price * (1 ± band), plus the strike.

    Ascending, with any grid point numerically equal to the strike replaced
    by the exact strike.
    """
    grid = np.linspace(1.0 - band, 1.0 + band, steps) * market_price
    points = [float(p) for p in grid if not math.isclose(p, strike, rel_tol=1e-9)]
    points.append(strike)
    return sorted(points)
