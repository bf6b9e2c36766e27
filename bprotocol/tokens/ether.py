"""Wrapper for the market whose underlying is the native asset."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..addresses import short
from ..avatar import Avatar
from ..interfaces.market import MoneyMarket
from .base import BToken

if TYPE_CHECKING:
    from ..registry import Registry

logger = logging.getLogger(__name__)


class BEther(BToken):
    """Underlying is value attached to the call.

    ``amount`` on ``mint`` and ``repay_borrow`` is the attached value; it
    leaves the caller's native balance for the avatar.
    """

    def __init__(self, market: MoneyMarket, registry: Registry) -> None:
        super().__init__(market, registry)
        self.native = market.native

    def _held(self, avatar: Avatar) -> int:
        return self.native.balance_of(avatar.address)

    def _pull_in(self, avatar: Avatar, caller: str, amount: int) -> None:
        avatar.pull_native(self.address, self.native, caller, amount)

    def _push_out(self, avatar: Avatar, to: str, amount: int) -> None:
        avatar.push_native(self.address, self.native, to, amount)

    def _collect_repayment(
        self, avatar: Avatar, caller: str, amount: int, owed: int
    ) -> int:
        # The whole value arrives with the call; anything above the debt goes back.
        self._pull_in(avatar, caller, amount)
        repay = min(amount, owed)
        if amount > repay:
            self._push_out(avatar, caller, amount - repay)
            logger.info(
                "%s: refunded %d excess repayment to %s",
                self.symbol, amount - repay, short(caller),
            )
        return repay
