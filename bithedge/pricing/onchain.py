"""
BitHedge — On-Ledger Verification Formula
Reduced-precision re-implementation of the pricing kernel as it runs
inside the ledger: integers with 8 implied decimals, truncating division,
integer square root, truncated series for exp and ln, and the five-term
Abramowitz & Stegun (26.2.17) polynomial for the normal CDF. No Greeks,
no scenarios, premium only.

Every value below is an int scaled by ONE unless noted.
"""
import math

from bithedge.utils.helpers import DAYS_PER_YEAR

ONE = 10 ** 8
BASIS_POINTS = 10_000

# One ledger unit; the premium floor while time and volatility remain
MIN_PREMIUM = 1

LN2 = 69_314_718
INV_SQRT_2PI = 39_894_228

# A&S 26.2.17, |error| < 7.5e-8
CDF_P = 23_164_190
CDF_COEFFICIENTS = (31_938_153, -35_656_378, 178_147_794, -182_125_598, 133_027_443)
CDF_CUTOFF = 10 * ONE

EXP_TERMS = 14
EXP_FLOOR = -20 * ONE
LN_TERMS = 12


def _tdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero, as the ledger does."""
    if b == 0:
        raise ZeroDivisionError("fixed-point division by zero")
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def mul(a: int, b: int) -> int:
    return _tdiv(a * b, ONE)


def div(a: int, b: int) -> int:
    return _tdiv(a * ONE, b)


def calculate_percentage(value: int, basis_points: int) -> int:
    """value * bps / 10000, truncated."""
    return _tdiv(value * basis_points, BASIS_POINTS)


def sqrt_fixed(x: int) -> int:
    if x < 0:
        raise ValueError("sqrt of negative fixed-point value")
    return math.isqrt(x * ONE)


def exp_fixed(x: int) -> int:
    """e**x via exp(x) = 2**k * exp(r), 0 <= r < ln 2, Taylor on r."""
    if x < EXP_FLOOR:
        return 0
    k = x // LN2
    r = x - k * LN2
    term = ONE
    total = ONE
    for n in range(1, EXP_TERMS + 1):
        term = term * r // (n * ONE)
        total += term
    if k >= 0:
        return total << k
    return total >> -k


def ln_fixed(x: int) -> int:
    """Natural log via x = m * 2**k, 1 <= m < 2, ln m = 2 atanh((m-1)/(m+1))."""
    if x <= 0:
        raise ValueError("ln of non-positive fixed-point value")
    k = 0
    m = x
    while m >= 2 * ONE:
        m >>= 1
        k += 1
    while m < ONE:
        m <<= 1
        k -= 1
    z = div(m - ONE, m + ONE)
    z2 = mul(z, z)
    total = 0
    term = z
    for i in range(LN_TERMS):
        total += term // (2 * i + 1)
        term = mul(term, z2)
    return 2 * total + k * LN2


def cdf_fixed(x: int) -> int:
    """Standard normal CDF."""
    if x < 0:
        return ONE - cdf_fixed(-x)
    if x >= CDF_CUTOFF:
        return ONE
    t = div(ONE, ONE + mul(CDF_P, x))
    poly = 0
    for coefficient in reversed(CDF_COEFFICIENTS):
        poly = mul(poly + coefficient, t)
    pdf = mul(INV_SQRT_2PI, exp_fixed(-(mul(x, x) // 2)))
    return max(0, min(ONE, ONE - mul(pdf, poly)))


def put_premium_fixed(
    price: int,
    strike: int,
    amount: int,
    volatility: int,
    duration_days: int,
) -> int:
    """Total PUT premium for `amount` units, floored at intrinsic value.

    With positive volatility and duration both the per-unit and the total
    premium are at least MIN_PREMIUM.

    Args:
        price, strike: USD prices scaled by ONE.
        amount: Asset units scaled by ONE.
        volatility: Annualized volatility scaled by ONE (0.425 -> 42_500_000).
        duration_days: Plain integer day count.
    """
    if price <= 0 or strike <= 0 or amount <= 0:
        raise ValueError("price, strike and amount must be positive")
    if volatility < 0 or duration_days < 0:
        raise ValueError("volatility and duration must be non-negative")

    intrinsic = max(0, strike - price)
    t = duration_days * ONE // DAYS_PER_YEAR
    sig_sqrt_t = mul(volatility, sqrt_fixed(t))

    if sig_sqrt_t == 0:
        return mul(intrinsic, amount)

    ln_sk = ln_fixed(div(price, strike))
    half_var_t = mul(mul(volatility, volatility), t) // 2
    d1 = div(ln_sk + half_var_t, sig_sqrt_t)
    d2 = d1 - sig_sqrt_t
    per_unit = mul(strike, cdf_fixed(-d2)) - mul(price, cdf_fixed(-d1))
    per_unit = max(per_unit, intrinsic, MIN_PREMIUM)
    return max(mul(per_unit, amount), MIN_PREMIUM)
