"""Price feed protocol — external USD prices for listed assets."""
from typing import Protocol


class PriceFeed(Protocol):
    """Abstract interface for fetching asset prices."""

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]: ...
