"""Shared wrapper logic — identity resolution, authorization and dispatch.

Every state-changing operation runs the same three phases inside one
registry transaction:

1. resolve the avatar whose position changes (lazily creating it),
2. authorize the caller (the owner itself, or the avatar's delegatee),
3. forward through the avatar to the market and translate the result code.

Each operation has a self-service entry point (``mint``) and an on-behalf
entry point (``mint_on_avatar``); both call the same core.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, NoReturn, TypeVar

from ..addresses import ZERO_ADDRESS, derive_address, short
from ..avatar import Avatar
from ..errors import (
    AuthorizationError,
    BProtocolError,
    InvalidAmountError,
    MarketOperationFailed,
    SelfTransferError,
)
from ..interfaces.market import MoneyMarket

if TYPE_CHECKING:
    from ..registry import Registry

logger = logging.getLogger(__name__)

NOT_AUTHORIZED = "BToken: delegatee-not-authorized"

T = TypeVar("T")


class BToken:
    """ERC-20-like view of the market positions held by users' avatars.

    Balances, total supply and allowances are read through to the market
    for the corresponding avatars; the wrapper keeps no ledger of its own.
    Subclasses implement the asset leg (how underlying enters and leaves an
    avatar).
    """

    def __init__(self, market: MoneyMarket, registry: Registry) -> None:
        self.market = market
        self.registry = registry
        self.address = derive_address("btoken", market.address, registry.address)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.symbol}, {short(self.address)})"

    @property
    def name(self) -> str:
        return self.market.name

    @property
    def symbol(self) -> str:
        return self.market.symbol

    @property
    def decimals(self) -> int:
        return self.market.decimals

    # -- asset leg ---------------------------------------------------------

    def _held(self, avatar: Avatar) -> int:
        """Underlying currently sitting in the avatar outside the market."""
        raise NotImplementedError

    def _pull_in(self, avatar: Avatar, caller: str, amount: int) -> None:
        raise NotImplementedError

    def _push_out(self, avatar: Avatar, to: str, amount: int) -> None:
        raise NotImplementedError

    def _collect_repayment(
        self, avatar: Avatar, caller: str, amount: int, owed: int
    ) -> int:
        """Bring the repayment into the avatar; return the amount to repay."""
        repay = min(amount, owed)
        self._pull_in(avatar, caller, repay)
        return repay

    # -- identity and authorization ----------------------------------------

    def _own_avatar(self, caller: str) -> Avatar:
        return self.registry.get_avatar(self.registry.get_or_create_avatar(caller))

    def _delegated_avatar(self, avatar: str, caller: str) -> Avatar:
        if not self.registry.delegate(avatar, caller):
            logger.warning(
                "%s: %s is not authorized on avatar %s",
                self.symbol, short(caller), short(avatar),
            )
            raise AuthorizationError(NOT_AUTHORIZED)
        return self.registry.get_avatar(avatar)

    def _counterparty_avatar(self, user: str) -> str:
        """Resolve a destination user, refusing avatar addresses."""
        self.registry.require_user(user)
        return self.registry.get_or_create_avatar(user)

    def _require_amount(self, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            logger.warning("%s: rejected amount %r", self.symbol, amount)
            raise InvalidAmountError(f"BToken: invalid-amount {amount!r}")

    # Every core takes its amount or share count as the last argument.
    async def _as_self(
        self, core: Callable[..., Awaitable[T]], caller: str, *args: Any
    ) -> T:
        self._require_amount(args[-1])
        async with self.registry.transaction():
            return await core(self._own_avatar(caller), caller, *args)

    async def _on_avatar(
        self, core: Callable[..., Awaitable[T]], caller: str, avatar: str, *args: Any
    ) -> T:
        self._require_amount(args[-1])
        async with self.registry.transaction():
            return await core(self._delegated_avatar(avatar, caller), caller, *args)

    def _refund(self, avatar: Avatar, to: str, held: int) -> None:
        """Return whatever this operation left in the avatar beyond ``held``."""
        excess = self._held(avatar) - held
        if excess > 0:
            self._push_out(avatar, to, excess)
            logger.info("%s: refunded %d to %s", self.symbol, excess, short(to))

    def _fail(self, operation: str, code: int) -> NoReturn:
        logger.warning("%s: %s failed with market code %d", self.symbol, operation, code)
        raise MarketOperationFailed(f"BToken: {operation}-failed", code)

    # -- mint --------------------------------------------------------------

    async def mint(self, caller: str, amount: int) -> int:
        """Deposit ``amount`` of underlying; return the shares minted."""
        return await self._as_self(self._mint, caller, amount)

    async def mint_on_avatar(self, caller: str, avatar: str, amount: int) -> int:
        return await self._on_avatar(self._mint, caller, avatar, amount)

    async def _mint(self, avatar: Avatar, caller: str, amount: int) -> int:
        held = self._held(avatar)
        self._pull_in(avatar, caller, amount)
        before = await self.market.balance_of(avatar.address)
        try:
            code = await avatar.mint(self.address, self.market, amount)
        except BProtocolError:
            self._refund(avatar, caller, held)
            raise
        if code:
            self._refund(avatar, caller, held)
            self._fail("mint", code)
        minted = await self.market.balance_of(avatar.address) - before
        logger.info(
            "%s: minted %d shares for %s on %r", self.symbol, minted, short(caller), avatar
        )
        return minted

    # -- redeem ------------------------------------------------------------

    async def redeem(self, caller: str, shares: int) -> int:
        """Redeem ``shares``; return the underlying delivered to the caller."""
        return await self._as_self(self._redeem, caller, shares)

    async def redeem_on_avatar(self, caller: str, avatar: str, shares: int) -> int:
        return await self._on_avatar(self._redeem, caller, avatar, shares)

    async def redeem_underlying(self, caller: str, amount: int) -> int:
        """Redeem an exact underlying ``amount`` at the live exchange rate."""
        return await self._as_self(self._redeem_underlying, caller, amount)

    async def redeem_underlying_on_avatar(
        self, caller: str, avatar: str, amount: int
    ) -> int:
        return await self._on_avatar(self._redeem_underlying, caller, avatar, amount)

    async def _redeem(self, avatar: Avatar, caller: str, shares: int) -> int:
        before = self._held(avatar)
        code = await avatar.redeem(self.address, self.market, shares)
        if code:
            self._fail("redeem", code)
        return self._deliver(avatar, caller, before, "redeemed")

    async def _redeem_underlying(self, avatar: Avatar, caller: str, amount: int) -> int:
        before = self._held(avatar)
        code = await avatar.redeem_underlying(self.address, self.market, amount)
        if code:
            self._fail("redeemUnderlying", code)
        return self._deliver(avatar, caller, before, "redeemed")

    def _deliver(self, avatar: Avatar, to: str, before: int, verb: str) -> int:
        received = self._held(avatar) - before
        self._push_out(avatar, to, received)
        logger.info("%s: %s %d underlying to %s", self.symbol, verb, received, short(to))
        return received

    # -- borrow ------------------------------------------------------------

    async def borrow(self, caller: str, amount: int) -> int:
        """Borrow ``amount`` against the avatar's collateral; proceeds go to caller."""
        return await self._as_self(self._borrow, caller, amount)

    async def borrow_on_avatar(self, caller: str, avatar: str, amount: int) -> int:
        return await self._on_avatar(self._borrow, caller, avatar, amount)

    async def _borrow(self, avatar: Avatar, caller: str, amount: int) -> int:
        before = self._held(avatar)
        code = await avatar.borrow(self.address, self.market, amount)
        if code:
            self._fail("borrow", code)
        return self._deliver(avatar, caller, before, "borrowed")

    # -- repay -------------------------------------------------------------

    async def repay_borrow(self, caller: str, amount: int) -> int:
        """Repay up to ``amount`` of the avatar's debt; return the amount repaid.

        Repayment is capped at the outstanding debt.
        """
        return await self._as_self(self._repay_borrow, caller, amount)

    async def repay_borrow_on_avatar(self, caller: str, avatar: str, amount: int) -> int:
        return await self._on_avatar(self._repay_borrow, caller, avatar, amount)

    async def _repay_borrow(self, avatar: Avatar, caller: str, amount: int) -> int:
        owed = await self.market.borrow_balance_current(avatar.address)
        held = self._held(avatar)
        repay = self._collect_repayment(avatar, caller, amount, owed)
        try:
            code = await avatar.repay_borrow(self.address, self.market, repay)
        except BProtocolError:
            self._refund(avatar, caller, held)
            raise
        if code:
            self._refund(avatar, caller, held)
            self._fail("repayBorrow", code)
        logger.info(
            "%s: %s repaid %d of %d owed by %r",
            self.symbol, short(caller), repay, owed, avatar,
        )
        return repay

    # -- transfer ----------------------------------------------------------

    async def transfer(self, caller: str, to: str, shares: int) -> bool:
        """Move ``shares`` from the caller's avatar to the avatar of ``to``."""
        return await self._as_self(self._transfer, caller, to, shares)

    async def transfer_on_avatar(
        self, caller: str, avatar: str, to: str, shares: int
    ) -> bool:
        return await self._on_avatar(self._transfer, caller, avatar, to, shares)

    async def _transfer(self, avatar: Avatar, caller: str, to: str, shares: int) -> bool:
        dst = self._counterparty_avatar(to)
        if dst == avatar.address:
            raise SelfTransferError("BToken: transfer-failed")
        code = await avatar.transfer(self.address, self.market, dst, shares)
        if code:
            self._fail("transfer", code)
        logger.info(
            "%s: %r transferred %d shares to %s", self.symbol, avatar, shares, short(to)
        )
        return True

    async def transfer_from(
        self, caller: str, src: str, to: str, shares: int
    ) -> bool:
        """Spend the caller's allowance on ``src`` to move shares to ``to``."""
        return await self._as_self(self._transfer_from, caller, src, to, shares)

    async def transfer_from_on_avatar(
        self, caller: str, avatar: str, src: str, to: str, shares: int
    ) -> bool:
        return await self._on_avatar(self._transfer_from, caller, avatar, src, to, shares)

    async def _transfer_from(
        self, avatar: Avatar, caller: str, src: str, to: str, shares: int
    ) -> bool:
        src_avatar = self._counterparty_avatar(src)
        dst = self._counterparty_avatar(to)
        if src_avatar == dst:
            raise SelfTransferError("BToken: transferFrom-failed")
        code = await avatar.transfer_from(self.address, self.market, src_avatar, dst, shares)
        if code:
            self._fail("transferFrom", code)
        logger.info(
            "%s: %r moved %d shares %s -> %s",
            self.symbol, avatar, shares, short(src), short(to),
        )
        return True

    # -- approve -----------------------------------------------------------

    async def approve(self, caller: str, spender: str, amount: int) -> bool:
        """Let ``spender`` move up to ``amount`` shares from the caller's avatar."""
        return await self._as_self(self._approve, caller, spender, amount)

    async def approve_on_avatar(
        self, caller: str, avatar: str, spender: str, amount: int
    ) -> bool:
        return await self._on_avatar(self._approve, caller, avatar, spender, amount)

    async def _approve(self, avatar: Avatar, caller: str, spender: str, amount: int) -> bool:
        spender_avatar = self._counterparty_avatar(spender)
        if spender_avatar == avatar.address:
            raise SelfTransferError("BToken: approve-failed")
        code = await avatar.approve(self.address, self.market, spender_avatar, amount)
        if code:
            self._fail("approve", code)
        logger.info(
            "%s: %r approved %s for %d shares", self.symbol, avatar, short(spender), amount
        )
        return True

    # -- read-through queries ----------------------------------------------

    async def balance_of(self, user: str) -> int:
        avatar = self.registry.avatar_of(user)
        if avatar == ZERO_ADDRESS:
            return 0
        return await self.market.balance_of(avatar)

    async def balance_of_underlying(self, user: str) -> int:
        avatar = self.registry.avatar_of(user)
        if avatar == ZERO_ADDRESS:
            return 0
        return await self.market.balance_of_underlying(avatar)

    async def borrow_balance_current(self, user: str) -> int:
        avatar = self.registry.avatar_of(user)
        if avatar == ZERO_ADDRESS:
            return 0
        return await self.market.borrow_balance_current(avatar)

    async def allowance(self, owner: str, spender: str) -> int:
        owner_avatar = self.registry.avatar_of(owner)
        spender_avatar = self.registry.avatar_of(spender)
        if ZERO_ADDRESS in (owner_avatar, spender_avatar):
            return 0
        return await self.market.allowance(owner_avatar, spender_avatar)

    async def total_supply(self) -> int:
        return self.market.total_supply

    async def exchange_rate_current(self) -> int:
        return await self.market.exchange_rate_current()

    async def exchange_rate_stored(self) -> int:
        return await self.market.exchange_rate_stored()
