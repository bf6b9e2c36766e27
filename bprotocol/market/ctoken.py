"""Interest-free Compound-style markets holding deposits and debt.

Every mutating call returns a :class:`MarketError` code instead of raising;
zero means success. Callers are responsible for interpreting the codes.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from ..addresses import derive_address, short
from .assets import Erc20Token, NativeLedger
from .codes import MarketError
from .exponential import (
    SHARE_DECIMALS,
    exchange_rate,
    shares_for_underlying,
    underlying_for_shares,
)

if TYPE_CHECKING:
    from .comptroller import Comptroller

logger = logging.getLogger(__name__)


class CToken:
    """Shared market accounting; subclasses supply the asset leg."""

    underlying: Erc20Token | None = None

    def __init__(self, symbol: str, initial_exchange_rate: int, name: str = "") -> None:
        if initial_exchange_rate <= 0:
            raise ValueError("initial exchange rate must be positive")
        self.symbol = symbol
        self.name = name or symbol
        self.decimals = SHARE_DECIMALS
        self.address = derive_address("ctoken", symbol)
        self.initial_exchange_rate = initial_exchange_rate
        self.comptroller: Comptroller | None = None
        self.total_supply = 0
        self.total_borrows = 0
        self._balances: dict[str, int] = defaultdict(int)
        self._borrows: dict[str, int] = defaultdict(int)
        self._allowances: dict[tuple[str, str], int] = defaultdict(int)

    # -- asset leg ---------------------------------------------------------

    def _get_cash_prior(self) -> int:
        raise NotImplementedError

    def _check_transfer_in(self, sender: str, amount: int) -> int:
        raise NotImplementedError

    def _do_transfer_in(self, sender: str, amount: int) -> None:
        raise NotImplementedError

    def _do_transfer_out(self, to: str, amount: int) -> None:
        raise NotImplementedError

    # -- queries -----------------------------------------------------------

    async def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    async def balance_of_underlying(self, account: str) -> int:
        rate = await self.exchange_rate_current()
        return underlying_for_shares(self._balances.get(account, 0), rate)

    async def borrow_balance_current(self, account: str) -> int:
        return self._borrows.get(account, 0)

    async def borrow_balance_stored(self, account: str) -> int:
        return self._borrows.get(account, 0)

    async def exchange_rate_current(self) -> int:
        return self._exchange_rate()

    async def exchange_rate_stored(self) -> int:
        return self._exchange_rate()

    async def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    async def get_cash(self) -> int:
        return self._get_cash_prior()

    async def get_account_snapshot(self, account: str) -> tuple[int, int, int]:
        """Return ``(shares, borrow balance, exchange rate)``."""
        return (
            self._balances.get(account, 0),
            self._borrows.get(account, 0),
            self._exchange_rate(),
        )

    def _exchange_rate(self) -> int:
        return exchange_rate(
            self._get_cash_prior(),
            self.total_borrows,
            self.total_supply,
            self.initial_exchange_rate,
        )

    # -- supply side -------------------------------------------------------

    async def mint(self, minter: str, amount: int) -> int:
        if amount < 0:
            return MarketError.BAD_INPUT
        allowed = await self._comptroller().mint_allowed(self, minter, amount)
        if allowed:
            return MarketError.COMPTROLLER_REJECTION
        err = self._check_transfer_in(minter, amount)
        if err:
            return err

        rate = self._exchange_rate()
        self._do_transfer_in(minter, amount)
        minted = shares_for_underlying(amount, rate)
        self.total_supply += minted
        self._balances[minter] += minted
        logger.debug("%s mint: %s +%d shares", self.symbol, short(minter), minted)
        return MarketError.NO_ERROR

    async def redeem(self, redeemer: str, shares: int) -> int:
        rate = self._exchange_rate()
        return await self._redeem_fresh(
            redeemer, shares, underlying_for_shares(shares, rate)
        )

    async def redeem_underlying(self, redeemer: str, amount: int) -> int:
        rate = self._exchange_rate()
        return await self._redeem_fresh(
            redeemer, shares_for_underlying(amount, rate), amount
        )

    async def _redeem_fresh(self, redeemer: str, shares: int, amount: int) -> int:
        if shares < 0 or amount < 0:
            return MarketError.BAD_INPUT
        allowed = await self._comptroller().redeem_allowed(self, redeemer, shares)
        if allowed:
            return MarketError.COMPTROLLER_REJECTION
        if self._balances.get(redeemer, 0) < shares:
            return MarketError.TOKEN_INSUFFICIENT_BALANCE
        if self._get_cash_prior() < amount:
            return MarketError.TOKEN_INSUFFICIENT_CASH

        self.total_supply -= shares
        self._balances[redeemer] -= shares
        self._do_transfer_out(redeemer, amount)
        logger.debug(
            "%s redeem: %s -%d shares, %d underlying out",
            self.symbol, short(redeemer), shares, amount,
        )
        return MarketError.NO_ERROR

    # -- borrow side -------------------------------------------------------

    async def borrow(self, borrower: str, amount: int) -> int:
        if amount < 0:
            return MarketError.BAD_INPUT
        allowed = await self._comptroller().borrow_allowed(self, borrower, amount)
        if allowed:
            return MarketError.COMPTROLLER_REJECTION
        if self._get_cash_prior() < amount:
            return MarketError.TOKEN_INSUFFICIENT_CASH

        self._borrows[borrower] += amount
        self.total_borrows += amount
        self._do_transfer_out(borrower, amount)
        logger.debug("%s borrow: %s +%d", self.symbol, short(borrower), amount)
        return MarketError.NO_ERROR

    async def repay_borrow(self, payer: str, amount: int) -> int:
        """Repay the payer's own debt."""
        if amount < 0:
            return MarketError.BAD_INPUT
        allowed = await self._comptroller().repay_borrow_allowed(
            self, payer, payer, amount
        )
        if allowed:
            return MarketError.COMPTROLLER_REJECTION
        if amount > self._borrows.get(payer, 0):
            return MarketError.MATH_ERROR
        err = self._check_transfer_in(payer, amount)
        if err:
            return err

        self._do_transfer_in(payer, amount)
        self._borrows[payer] -= amount
        self.total_borrows -= amount
        logger.debug("%s repay: %s -%d", self.symbol, short(payer), amount)
        return MarketError.NO_ERROR

    # -- share movements ---------------------------------------------------

    async def transfer(self, src: str, dst: str, shares: int) -> int:
        return await self._transfer_tokens(src, src, dst, shares)

    async def transfer_from(self, spender: str, src: str, dst: str, shares: int) -> int:
        return await self._transfer_tokens(spender, src, dst, shares)

    async def approve(self, owner: str, spender: str, amount: int) -> int:
        if amount < 0:
            return MarketError.BAD_INPUT
        self._allowances[(owner, spender)] = amount
        return MarketError.NO_ERROR

    async def _transfer_tokens(
        self, spender: str, src: str, dst: str, shares: int
    ) -> int:
        if src == dst or shares < 0:
            return MarketError.BAD_INPUT
        allowed = await self._comptroller().transfer_allowed(self, src, dst, shares)
        if allowed:
            return MarketError.COMPTROLLER_REJECTION

        if spender != src:
            allowance = self._allowances.get((src, spender), 0)
            if allowance < shares:
                return MarketError.TOKEN_INSUFFICIENT_ALLOWANCE
        if self._balances.get(src, 0) < shares:
            return MarketError.TOKEN_INSUFFICIENT_BALANCE

        self._balances[src] -= shares
        self._balances[dst] += shares
        if spender != src:
            self._allowances[(src, spender)] -= shares
        logger.debug(
            "%s transfer: %d shares %s -> %s", self.symbol, shares, short(src), short(dst)
        )
        return MarketError.NO_ERROR

    def _comptroller(self) -> Comptroller:
        if self.comptroller is None:
            raise RuntimeError(f"{self.symbol} is not listed with a comptroller")
        return self.comptroller


class CErc20(CToken):
    """Market whose underlying is a fungible token pulled by allowance."""

    def __init__(
        self,
        symbol: str,
        underlying: Erc20Token,
        initial_exchange_rate: int,
        name: str = "",
    ) -> None:
        super().__init__(symbol, initial_exchange_rate, name)
        self.underlying = underlying

    def _get_cash_prior(self) -> int:
        return self.underlying.balance_of(self.address)

    def _check_transfer_in(self, sender: str, amount: int) -> int:
        if self.underlying.allowance(sender, self.address) < amount:
            return MarketError.TOKEN_INSUFFICIENT_ALLOWANCE
        if self.underlying.balance_of(sender) < amount:
            return MarketError.TOKEN_INSUFFICIENT_BALANCE
        return MarketError.NO_ERROR

    def _do_transfer_in(self, sender: str, amount: int) -> None:
        self.underlying.transfer_from(self.address, sender, self.address, amount)

    def _do_transfer_out(self, to: str, amount: int) -> None:
        self.underlying.transfer(self.address, to, amount)


class CEther(CToken):
    """Market whose underlying is the native asset."""

    def __init__(
        self,
        symbol: str,
        native: NativeLedger,
        initial_exchange_rate: int,
        name: str = "",
    ) -> None:
        super().__init__(symbol, initial_exchange_rate, name)
        self.native = native

    def _get_cash_prior(self) -> int:
        return self.native.balance_of(self.address)

    def _check_transfer_in(self, sender: str, amount: int) -> int:
        if self.native.balance_of(sender) < amount:
            return MarketError.TOKEN_INSUFFICIENT_BALANCE
        return MarketError.NO_ERROR

    def _do_transfer_in(self, sender: str, amount: int) -> None:
        self.native.transfer(sender, self.address, amount)

    def _do_transfer_out(self, to: str, amount: int) -> None:
        self.native.transfer(self.address, to, amount)
