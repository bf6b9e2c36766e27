"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MarketSnapshot:
    """State of one wrapped market."""

    symbol: str
    btoken: str
    market: str
    underlying: str
    decimals: int
    exchange_rate: int
    total_supply: int
    cash: int
    collateral_factor: float


@dataclass(frozen=True)
class PositionSnapshot:
    """A user's position in one market, as seen through the wrapper."""

    user: str
    avatar: str
    symbol: str
    shares: int
    underlying: int
    borrowed: int
    delegatee: str = ""

    @property
    def is_empty(self) -> bool:
        return self.shares == 0 and self.borrowed == 0
