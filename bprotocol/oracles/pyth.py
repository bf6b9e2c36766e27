"""Pyth Network price feed for the reference market's oracle."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import PythConfig

logger = logging.getLogger(__name__)


def parse_price_updates(
    parsed: list[dict[str, Any]], feeds: dict[str, str]
) -> dict[str, float]:
    """Map Hermes ``parsed`` price updates back to underlying symbols.

    Each update carries an integer ``price`` and a base-10 ``expo``; one feed
    id may serve several symbols (e.g. ETH and WETH).
    """
    id_to_symbols: dict[str, list[str]] = {}
    for symbol, feed_id in feeds.items():
        id_to_symbols.setdefault(feed_id.lower().removeprefix("0x"), []).append(symbol)

    prices: dict[str, float] = {}
    for item in parsed:
        feed_id = str(item.get("id", "")).lower().removeprefix("0x")
        price_data = item.get("price", {})
        price = int(price_data.get("price", 0)) * (10 ** int(price_data.get("expo", 0)))
        for symbol in id_to_symbols.get(feed_id, []):
            prices[symbol] = price
    return prices


class PythOracle:
    """Fetch underlying USD prices from a Pyth Hermes endpoint."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]:
        """Fetch current prices; returns only the symbols that resolved.

        Args:
            symbols: Optional list of underlying symbols. If None, fetches all
                     configured feeds.
        """
        feeds = self.price_feeds
        if symbols is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in symbols}

        feed_ids = sorted(set(feeds.values()))
        if not feed_ids:
            return {}

        query_params = "&".join(f"ids[]={fid}" for fid in feed_ids)
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return {}
                    data = await response.json()
        except (aiohttp.ClientError, ConnectionError, TimeoutError) as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        prices = parse_price_updates(data.get("parsed", []), feeds)
        for symbol, price in sorted(prices.items()):
            logger.info("  %s: $%.4f", symbol, price)
        return prices
