"""Wrapper for markets whose underlying is a fungible token."""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..avatar import Avatar
from ..interfaces.market import MoneyMarket
from .base import BToken

if TYPE_CHECKING:
    from ..registry import Registry


class BErc20(BToken):
    """Underlying is pulled from the caller through an allowance.

    Callers approve the wrapper's address on the underlying token before
    minting or repaying.
    """

    def __init__(self, market: MoneyMarket, registry: Registry) -> None:
        super().__init__(market, registry)
        if market.underlying is None:
            raise ValueError(f"{market.symbol} has no fungible underlying")
        self.underlying = market.underlying

    def _held(self, avatar: Avatar) -> int:
        return self.underlying.balance_of(avatar.address)

    def _pull_in(self, avatar: Avatar, caller: str, amount: int) -> None:
        avatar.pull(self.address, self.underlying, caller, amount)

    def _push_out(self, avatar: Avatar, to: str, amount: int) -> None:
        avatar.push(self.address, self.underlying, to, amount)
