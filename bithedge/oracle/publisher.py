"""
BitHedge — Ledger Price Publisher
Decides when the aggregated price has moved (or aged) enough to justify an
on-ledger write, packages the write as a fixed-point integer, and guards
submission so concurrent callers produce at most one transaction per
decision.
"""
import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from bithedge.config.settings import PublisherSettings, get_settings
from bithedge.oracle.models import (
    PRICE_DECIMALS,
    AggregatedPrice,
    PublishDecision,
    PublishedPrice,
    PublishPayload,
    PublishReceipt,
)
from bithedge.utils.helpers import ensure_utc, to_fixed_point, utc_now
from bithedge.utils.logger import get_logger

logger = get_logger("publisher")


class LedgerPricePublisher:
    """Stateless publish policy: deviation threshold OR heartbeat staleness."""

    def __init__(self, settings: Optional[PublisherSettings] = None):
        self._settings = settings

    @property
    def settings(self) -> PublisherSettings:
        return self._settings or get_settings().publisher

    def evaluate(
        self,
        current: AggregatedPrice,
        last_published: Optional[PublishedPrice],
        now: datetime,
    ) -> PublishDecision:
        """Apply the publish policy and explain the outcome."""
        cfg = self.settings
        now = ensure_utc(now)

        if not current.has_data:
            return PublishDecision(should_publish=False, reason="no_data")
        if current.source_count < cfg.min_publish_sources:
            return PublishDecision(
                should_publish=False,
                reason=f"insufficient_sources ({current.source_count} < {cfg.min_publish_sources})",
            )
        if last_published is None:
            return PublishDecision(should_publish=True, reason="no_prior_publication")

        change = abs(current.price - last_published.price) / last_published.price
        elapsed = (now - last_published.published_at).total_seconds()

        if elapsed < cfg.min_publish_interval_seconds:
            return PublishDecision(
                should_publish=False,
                reason="min_interval_not_elapsed",
                change_pct=change * 100,
                seconds_since_last=elapsed,
            )
        if change >= cfg.deviation_threshold:
            return PublishDecision(
                should_publish=True,
                reason="deviation_threshold_exceeded",
                change_pct=change * 100,
                seconds_since_last=elapsed,
            )
        if elapsed >= cfg.max_staleness_seconds:
            return PublishDecision(
                should_publish=True,
                reason="heartbeat",
                change_pct=change * 100,
                seconds_since_last=elapsed,
            )
        return PublishDecision(
            should_publish=False,
            reason="within_thresholds",
            change_pct=change * 100,
            seconds_since_last=elapsed,
        )

    def should_publish(
        self,
        current: AggregatedPrice,
        last_published: Optional[PublishedPrice],
        now: datetime,
    ) -> bool:
        return self.evaluate(current, last_published, now).should_publish

    def build_publish_payload(self, current: AggregatedPrice) -> PublishPayload:
        """Scale the aggregate price to an integer with PRICE_DECIMALS places."""
        if not current.has_data:
            raise ValueError("Cannot build a publish payload from a no-data aggregate")
        return PublishPayload(price=to_fixed_point(current.price, PRICE_DECIMALS))


# ─── Ledger boundary ────────────────────────────────────────────

class LedgerClient(ABC):
    """Transport to the on-ledger price oracle (signing lives elsewhere)."""

    @abstractmethod
    async def submit_price(self, payload: PublishPayload) -> PublishReceipt:
        """Submit a price write; the ledger stamps the inclusion time."""
        pass

    @abstractmethod
    async def read_latest(self) -> Optional[PublishedPrice]:
        """Read the latest recorded on-ledger price, if any."""
        pass


class DryRunLedgerClient(LedgerClient):
    """Records submissions locally instead of broadcasting them."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._latest: Optional[PublishedPrice] = None
        self.submissions = 0

    async def submit_price(self, payload: PublishPayload) -> PublishReceipt:
        self.submissions += 1
        receipt = PublishReceipt(
            tx_id=f"dryrun-{uuid.uuid4().hex[:12]}",
            ledger_timestamp=self._clock(),
            payload=payload,
        )
        self._latest = PublishedPrice(
            price=payload.price / 10 ** PRICE_DECIMALS,
            published_at=receipt.ledger_timestamp,
            sequence=self.submissions,
            tx_id=receipt.tx_id,
        )
        logger.info("dry_run_submission", tx_id=receipt.tx_id, price_fixed=payload.price)
        return receipt

    async def read_latest(self) -> Optional[PublishedPrice]:
        return self._latest


class PublishCoordinator:
    """Single-flight guard around publish decisions.

    Decisions and submissions run under one lock; the sequence number is
    monotonic and an aggregate is never submitted twice.
    """

    def __init__(self, ledger: LedgerClient, publisher: Optional[LedgerPricePublisher] = None):
        self.ledger = ledger
        self.publisher = publisher or LedgerPricePublisher()
        self._lock = asyncio.Lock()
        self._sequence = 0
        self._last_published: Optional[PublishedPrice] = None
        self._last_submitted_at: Optional[datetime] = None

    @property
    def last_published(self) -> Optional[PublishedPrice]:
        return self._last_published

    @property
    def sequence(self) -> int:
        return self._sequence

    async def sync_from_ledger(self) -> Optional[PublishedPrice]:
        """Adopt the ledger's latest recorded price as the publish baseline."""
        async with self._lock:
            latest = await self.ledger.read_latest()
            if latest is not None:
                self._last_published = latest
                self._sequence = max(self._sequence, latest.sequence)
            return latest

    async def maybe_publish(self, current: AggregatedPrice, now: datetime) -> Optional[PublishedPrice]:
        """Publish `current` if the policy says so. Returns the new PublishedPrice or None."""
        async with self._lock:
            if self._last_submitted_at is not None and current.computed_at <= self._last_submitted_at:
                logger.debug(
                    "publish_deduplicated",
                    computed_at=current.computed_at.isoformat(),
                    sequence=self._sequence,
                )
                return None

            decision = self.publisher.evaluate(current, self._last_published, now)
            if not decision.should_publish:
                logger.debug("publish_skipped", reason=decision.reason, change_pct=decision.change_pct)
                return None

            payload = self.publisher.build_publish_payload(current)
            sequence = self._sequence + 1
            logger.info(
                "publish_submitting",
                sequence=sequence,
                reason=decision.reason,
                price_fixed=payload.price,
            )
            receipt = await self.ledger.submit_price(payload)

            self._sequence = sequence
            self._last_submitted_at = current.computed_at
            self._last_published = PublishedPrice(
                price=current.price,
                published_at=receipt.ledger_timestamp,
                sequence=sequence,
                tx_id=receipt.tx_id,
            )
            logger.info("publish_submitted", sequence=sequence, tx_id=receipt.tx_id)
            return self._last_published
