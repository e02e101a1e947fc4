"""
BitHedge — Oracle Data-Quality Errors
Surfaced to callers, who decide whether to retry later or serve a
"pricing unavailable" state. Never replaced with a default price.
"""
from datetime import datetime
from typing import Optional


class AggregationError(Exception):
    """Base class for aggregation failures."""
    code = "aggregation_error"


class InsufficientSourcesError(AggregationError):
    """Fewer than the configured minimum of sources survived filtering."""
    code = "insufficient_sources"

    def __init__(self, survived: int, required: int, offered: int):
        self.survived = survived
        self.required = required
        self.offered = offered
        super().__init__(
            f"Insufficient price sources: {survived} survived of {offered} offered "
            f"(minimum {required})"
        )


class StaleAggregateError(AggregationError):
    """Last successful aggregation is older than the caller's threshold."""
    code = "stale_aggregate"

    def __init__(self, computed_at: Optional[datetime], age_seconds: Optional[float], max_age_seconds: float):
        self.computed_at = computed_at
        self.age_seconds = age_seconds
        self.max_age_seconds = max_age_seconds
        if computed_at is None:
            msg = "No successful aggregation available"
        else:
            msg = (
                f"Latest aggregate from {computed_at.isoformat()} is {age_seconds:.0f}s old "
                f"(max {max_age_seconds:.0f}s)"
            )
        super().__init__(msg)


class OutOfOrderCycleError(AggregationError):
    """An aggregation cycle was stamped at or before the previous one."""
    code = "out_of_order_cycle"

    def __init__(self, now: datetime, previous: datetime):
        self.now = now
        self.previous = previous
        super().__init__(
            f"Cycle time {now.isoformat()} is not after previous aggregate {previous.isoformat()}"
        )
