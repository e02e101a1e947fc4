"""
BitHedge — Exchange Price Adapters
Binance, Coinbase, Kraken and CoinGecko spot feeds. Response parsing is
kept in plain functions so it can be exercised without the network.
CoinGecko additionally supplies daily closes to seed the volatility window.
"""
import asyncio
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import aiohttp
import pandas as pd

from bithedge.data.adapters.base import BasePriceAdapter
from bithedge.oracle.models import PriceSample, PriceSource
from bithedge.utils.helpers import utc_now
from bithedge.utils.logger import get_logger

logger = get_logger("exchange_adapters")

FETCH_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, KeyError, ValueError, TypeError)

BINANCE_SYMBOLS: Dict[str, str] = {"BTC/USD": "BTCUSDT"}
COINBASE_PRODUCTS: Dict[str, str] = {"BTC/USD": "BTC-USD"}
KRAKEN_PAIRS: Dict[str, str] = {"BTC/USD": "XBTUSD"}
COINGECKO_IDS: Dict[str, str] = {"BTC": "bitcoin"}


def _base(asset: str) -> str:
    """BTC/USD -> BTC."""
    return asset.upper().replace("-", "/").split("/")[0]


# ─── Response parsers ───────────────────────────────────────────

def parse_binance_ticker(data: dict) -> Optional[float]:
    """{"symbol": "BTCUSDT", "price": "94260.12"}"""
    price = data.get("price")
    return float(price) if price is not None else None


def parse_coinbase_spot(data: dict) -> Optional[float]:
    """{"data": {"base": "BTC", "currency": "USD", "amount": "94260.12"}}"""
    amount = (data.get("data") or {}).get("amount")
    return float(amount) if amount is not None else None


def parse_kraken_ticker(data: dict) -> Optional[float]:
    """{"error": [], "result": {"XXBTZUSD": {"c": ["94260.1", "0.01"], ...}}}

    Kraken renames pairs in the result (XBTUSD -> XXBTZUSD); take the
    single entry's last-trade price.
    """
    if data.get("error"):
        logger.warning("kraken_api_error", errors=data["error"])
        return None
    result = data.get("result") or {}
    for ticker in result.values():
        return float(ticker["c"][0])
    return None


def parse_coingecko_simple(data: dict, coin_id: str) -> Optional[Dict[str, float]]:
    """{"bitcoin": {"usd": 94260.12, "last_updated_at": 1700000000}}"""
    coin = data.get(coin_id) or {}
    if coin.get("usd") is None:
        return None
    return {"price": float(coin["usd"]), "last_updated_at": coin.get("last_updated_at")}


def parse_coingecko_daily_closes(data: dict) -> Dict[date, float]:
    """Reduce a market_chart "prices" series to one close per UTC day."""
    points: List[List[float]] = data.get("prices") or []
    if not points:
        return {}
    df = pd.DataFrame(points, columns=["timestamp", "price"])
    df["timestamp"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
    daily = df.set_index("timestamp")["price"].resample("1D").last().dropna()
    return {ts.date(): float(price) for ts, price in daily.items() if price > 0}


# ─── Adapters ───────────────────────────────────────────────────

class BinanceAdapter(BasePriceAdapter):
    def __init__(self):
        super().__init__(source=PriceSource.BINANCE)

    async def fetch_sample(self, asset: str) -> Optional[PriceSample]:
        symbol = BINANCE_SYMBOLS.get(asset)
        if not symbol:
            return None
        try:
            data = await self._get_json(
                f"{self.settings.binance_base_url}/ticker/price", params={"symbol": symbol}
            )
            price = parse_binance_ticker(data) if data else None
        except FETCH_ERRORS as e:
            logger.error("binance_price_exception", asset=asset, error=str(e))
            return None
        if price is None or price <= 0:
            return None
        return PriceSample(source_id=self.source_id, price=price, observed_at=utc_now(), weight=self.weight)


class CoinbaseAdapter(BasePriceAdapter):
    def __init__(self):
        super().__init__(source=PriceSource.COINBASE)

    async def fetch_sample(self, asset: str) -> Optional[PriceSample]:
        product = COINBASE_PRODUCTS.get(asset)
        if not product:
            return None
        try:
            data = await self._get_json(f"{self.settings.coinbase_base_url}/prices/{product}/spot")
            price = parse_coinbase_spot(data) if data else None
        except FETCH_ERRORS as e:
            logger.error("coinbase_price_exception", asset=asset, error=str(e))
            return None
        if price is None or price <= 0:
            return None
        return PriceSample(source_id=self.source_id, price=price, observed_at=utc_now(), weight=self.weight)


class KrakenAdapter(BasePriceAdapter):
    def __init__(self):
        super().__init__(source=PriceSource.KRAKEN)

    async def fetch_sample(self, asset: str) -> Optional[PriceSample]:
        pair = KRAKEN_PAIRS.get(asset)
        if not pair:
            return None
        try:
            data = await self._get_json(f"{self.settings.kraken_base_url}/Ticker", params={"pair": pair})
            price = parse_kraken_ticker(data) if data else None
        except FETCH_ERRORS as e:
            logger.error("kraken_price_exception", asset=asset, error=str(e))
            return None
        if price is None or price <= 0:
            return None
        return PriceSample(source_id=self.source_id, price=price, observed_at=utc_now(), weight=self.weight)


class CoinGeckoAdapter(BasePriceAdapter):
    """Aggregator-of-exchanges feed; also the history source."""

    def __init__(self):
        super().__init__(source=PriceSource.COINGECKO)

    async def fetch_sample(self, asset: str) -> Optional[PriceSample]:
        coin_id = COINGECKO_IDS.get(_base(asset))
        if not coin_id:
            logger.warning("coingecko_unknown_asset", asset=asset)
            return None
        try:
            data = await self._get_json(
                f"{self.settings.coingecko_base_url}/simple/price",
                params={"ids": coin_id, "vs_currencies": "usd", "include_last_updated_at": "true"},
            )
            parsed = parse_coingecko_simple(data, coin_id) if data else None
        except FETCH_ERRORS as e:
            logger.error("coingecko_price_exception", asset=asset, error=str(e))
            return None
        if parsed is None or parsed["price"] <= 0:
            return None

        # CoinGecko reports when its own figure was last refreshed
        observed_at = utc_now()
        if parsed["last_updated_at"]:
            observed_at = datetime.fromtimestamp(int(parsed["last_updated_at"]), tz=timezone.utc)
        return PriceSample(
            source_id=self.source_id, price=parsed["price"], observed_at=observed_at, weight=self.weight
        )

    async def fetch_daily_closes(self, asset: str, days: int) -> Dict[date, float]:
        coin_id = COINGECKO_IDS.get(_base(asset))
        if not coin_id:
            return {}
        try:
            data = await self._get_json(
                f"{self.settings.coingecko_base_url}/coins/{coin_id}/market_chart",
                params={"vs_currency": "usd", "days": days, "interval": "daily"},
            )
        except FETCH_ERRORS as e:
            logger.error("coingecko_history_exception", asset=asset, error=str(e))
            return {}
        closes = parse_coingecko_daily_closes(data) if data else {}
        logger.info("coingecko_history_fetched", asset=asset, closes=len(closes))
        return closes


def build_default_adapters() -> List[BasePriceAdapter]:
    return [BinanceAdapter(), CoinbaseAdapter(), KrakenAdapter(), CoinGeckoAdapter()]
