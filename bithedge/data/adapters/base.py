"""
BitHedge — Base Price Adapter Interface
All exchange / market-data sources implement this interface and emit
PriceSample values the aggregator can consume.
"""
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Optional

import aiohttp

from bithedge.config.settings import get_settings
from bithedge.oracle.models import PriceSample, PriceSource
from bithedge.utils.logger import get_logger

logger = get_logger("price_adapter")


class BasePriceAdapter(ABC):
    """Abstract base class for all price adapters."""

    def __init__(self, source: PriceSource):
        self.source = source
        self.settings = get_settings().data
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def source_id(self) -> str:
        return self.source.value

    @property
    def weight(self) -> float:
        return self.settings.weights.get(self.source_id, 0.9)

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        timeout = aiohttp.ClientTimeout(total=self.settings.collection_window_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)
        logger.info("adapter_connected", source=self.source_id)

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
        logger.info("adapter_disconnected", source=self.source_id)

    async def _get_json(self, url: str, params: Optional[dict] = None) -> Optional[dict]:
        if not self._session:
            await self.connect()
        async with self._session.get(url, params=params) as resp:
            if resp.status != 200:
                logger.warning("adapter_http_error", source=self.source_id, status=resp.status, url=url)
                return None
            return await resp.json()

    @abstractmethod
    async def fetch_sample(self, asset: str) -> Optional[PriceSample]:
        """Fetch the latest price for `asset` (e.g. BTC/USD), or None."""
        pass

    async def fetch_daily_closes(self, asset: str, days: int) -> Dict[date, float]:
        """Historical daily closes; sources without history return nothing."""
        return {}
