"""Avatar — a user's proxy account inside the money market."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from .addresses import short
from .errors import AuthorizationError, BProtocolError
from .interfaces.asset import FungibleAsset, NativeAsset
from .interfaces.market import MoneyMarket

if TYPE_CHECKING:
    from .registry import Registry

logger = logging.getLogger(__name__)


class Avatar:
    """Holds one user's collateral and debt under its own address.

    The avatar keeps no authorization state of its own: its owner and
    delegatee live in the registry and are read there at call time. Only
    wrappers registered with the registry's BComptroller may instruct it,
    and market result codes are handed back untouched.
    """

    def __init__(self, address: str, owner: str, registry: Registry) -> None:
        self.address = address
        self.owner = owner
        self._registry = registry

    def __repr__(self) -> str:
        return f"Avatar({short(self.address)}, owner={short(self.owner)})"

    @property
    def delegatee(self) -> str:
        return self._registry.delegate_of(self.address)

    def _only_btoken(self, btoken: str) -> None:
        if not self._registry.bcomptroller.is_btoken(btoken):
            raise AuthorizationError("Avatar: only-btoken")

    # -- asset legs --------------------------------------------------------

    def pull(self, btoken: str, token: FungibleAsset, from_: str, amount: int) -> None:
        """Move ``amount`` from ``from_`` into the avatar.

        Uses the allowance ``from_`` granted to the calling wrapper.
        """
        self._only_btoken(btoken)
        token.transfer_from(btoken, from_, self.address, amount)

    def pull_native(
        self, btoken: str, native: NativeAsset, from_: str, amount: int
    ) -> None:
        self._only_btoken(btoken)
        native.transfer(from_, self.address, amount)

    def push(self, btoken: str, token: FungibleAsset, to: str, amount: int) -> None:
        self._only_btoken(btoken)
        token.transfer(self.address, to, amount)

    def push_native(self, btoken: str, native: NativeAsset, to: str, amount: int) -> None:
        self._only_btoken(btoken)
        native.transfer(self.address, to, amount)

    # -- market calls ------------------------------------------------------

    async def mint(self, btoken: str, market: MoneyMarket, amount: int) -> int:
        self._only_btoken(btoken)
        comptroller = self._registry.comptroller
        if not comptroller.check_membership(self.address, market.address):
            comptroller.enter_markets(self.address, [market])
        if market.underlying is not None:
            market.underlying.approve(self.address, market.address, amount)
        logger.debug("%r mint %d on %s", self, amount, market.symbol)
        return await self._approved_call(market, market.mint, amount)

    async def redeem(self, btoken: str, market: MoneyMarket, shares: int) -> int:
        self._only_btoken(btoken)
        logger.debug("%r redeem %d shares on %s", self, shares, market.symbol)
        return await market.redeem(self.address, shares)

    async def redeem_underlying(
        self, btoken: str, market: MoneyMarket, amount: int
    ) -> int:
        self._only_btoken(btoken)
        logger.debug("%r redeem %d underlying on %s", self, amount, market.symbol)
        return await market.redeem_underlying(self.address, amount)

    async def borrow(self, btoken: str, market: MoneyMarket, amount: int) -> int:
        self._only_btoken(btoken)
        logger.debug("%r borrow %d on %s", self, amount, market.symbol)
        return await market.borrow(self.address, amount)

    async def repay_borrow(self, btoken: str, market: MoneyMarket, amount: int) -> int:
        self._only_btoken(btoken)
        if market.underlying is not None:
            market.underlying.approve(self.address, market.address, amount)
        logger.debug("%r repay %d on %s", self, amount, market.symbol)
        return await self._approved_call(market, market.repay_borrow, amount)

    async def _approved_call(
        self, market: MoneyMarket, call: Callable[[str, int], Awaitable[int]], amount: int
    ) -> int:
        """Run a call that spends the market's allowance; drop it if the call fails."""
        try:
            code = await call(self.address, amount)
        except BProtocolError:
            self._reset_approval(market)
            raise
        if code:
            self._reset_approval(market)
        return code

    def _reset_approval(self, market: MoneyMarket) -> None:
        if market.underlying is not None:
            market.underlying.approve(self.address, market.address, 0)

    # -- share movements ---------------------------------------------------

    async def transfer(
        self, btoken: str, market: MoneyMarket, dst: str, shares: int
    ) -> int:
        self._only_btoken(btoken)
        return await market.transfer(self.address, dst, shares)

    async def transfer_from(
        self, btoken: str, market: MoneyMarket, src: str, dst: str, shares: int
    ) -> int:
        self._only_btoken(btoken)
        return await market.transfer_from(self.address, src, dst, shares)

    async def approve(
        self, btoken: str, market: MoneyMarket, spender: str, amount: int
    ) -> int:
        self._only_btoken(btoken)
        return await market.approve(self.address, spender, amount)
