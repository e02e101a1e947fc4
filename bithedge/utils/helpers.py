"""
BitHedge — Common Utility Functions
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

# Calendar-day annualization used by volatility, pricing and the ledger formula
DAYS_PER_YEAR = 365


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return current UTC timestamp as ISO string."""
    return utc_now().isoformat()


def ensure_utc(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safe division avoiding ZeroDivisionError."""
    if denominator == 0:
        return default
    return numerator / denominator


def clamp(value: float, min_val: float = 0.0, max_val: float = 100.0) -> float:
    """Clamp a value between min and max."""
    return max(min_val, min(max_val, value))


def to_fixed_point(value: float, decimals: int) -> int:
    """Scale a decimal value to an integer with `decimals` implied places.

    Goes through Decimal(repr(value)) so 94260.12 becomes 9426012000000
    rather than the binary-float neighbour.
    """
    scaled = Decimal(repr(value)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


def from_fixed_point(value: int, decimals: int) -> float:
    """Inverse of to_fixed_point (for display only)."""
    return float(Decimal(value) / (Decimal(10) ** decimals))
