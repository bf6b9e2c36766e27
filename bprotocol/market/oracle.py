"""Settable price oracle for the reference market."""
from __future__ import annotations

import logging

from ..addresses import derive_address, short

logger = logging.getLogger(__name__)


class SimplePriceOracle:
    """Underlying prices keyed by market address.

    Prices are mantissas scaled by ``1e(36 - underlying decimals)``; see
    :func:`bprotocol.market.exponential.price_mantissa`.
    """

    def __init__(self) -> None:
        self.address = derive_address("price-oracle")
        self._prices: dict[str, int] = {}

    def set_underlying_price(self, market: str, price: int) -> None:
        if price < 0:
            raise ValueError("price must be non-negative")
        self._prices[market] = price
        logger.debug("Price for %s set to %d", short(market), price)

    def get_underlying_price(self, market: str) -> int:
        """Return the price mantissa, 0 when the market has no price."""
        return self._prices.get(market, 0)
