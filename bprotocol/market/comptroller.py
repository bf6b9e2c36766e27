"""Risk manager for the reference market — listings, membership, liquidity."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..addresses import derive_address, short
from .codes import ComptrollerError
from .exponential import EXP_SCALE, mul_scalar_truncate, to_mantissa
from .oracle import SimplePriceOracle

if TYPE_CHECKING:
    from .ctoken import CToken

logger = logging.getLogger(__name__)

# Compound caps collateral factors at 90%.
MAX_COLLATERAL_FACTOR = to_mantissa("0.9")


@dataclass
class _Listing:
    market: CToken
    collateral_factor: int
    members: set[str] = field(default_factory=set)


class Comptroller:
    """Lists markets, tracks entered markets and checks account liquidity."""

    def __init__(self, oracle: SimplePriceOracle) -> None:
        self.address = derive_address("comptroller")
        self.oracle = oracle
        self._listings: dict[str, _Listing] = {}
        self._account_assets: dict[str, list[CToken]] = {}

    # -- administration ----------------------------------------------------

    def support_market(self, market: CToken, collateral_factor: int = 0) -> int:
        if market.address in self._listings:
            return ComptrollerError.MARKET_ALREADY_LISTED
        if not 0 <= collateral_factor <= MAX_COLLATERAL_FACTOR:
            return ComptrollerError.INVALID_COLLATERAL_FACTOR
        self._listings[market.address] = _Listing(market, collateral_factor)
        market.comptroller = self
        logger.info(
            "Listed market %s (collateral factor %.2f)",
            market.symbol,
            collateral_factor / EXP_SCALE,
        )
        return ComptrollerError.NO_ERROR

    def is_listed(self, market: str) -> bool:
        return market in self._listings

    def collateral_factor(self, market: str) -> int:
        listing = self._listings.get(market)
        return listing.collateral_factor if listing else 0

    # -- membership --------------------------------------------------------

    def enter_markets(self, account: str, markets: list[CToken]) -> list[int]:
        results: list[int] = []
        for market in markets:
            listing = self._listings.get(market.address)
            if listing is None:
                results.append(ComptrollerError.MARKET_NOT_LISTED)
                continue
            if account not in listing.members:
                listing.members.add(account)
                self._account_assets.setdefault(account, []).append(market)
                logger.debug("%s entered market %s", short(account), market.symbol)
            results.append(ComptrollerError.NO_ERROR)
        return results

    def check_membership(self, account: str, market: str) -> bool:
        listing = self._listings.get(market)
        return listing is not None and account in listing.members

    def assets_in(self, account: str) -> list[CToken]:
        return list(self._account_assets.get(account, []))

    # -- liquidity ---------------------------------------------------------

    async def get_account_liquidity(self, account: str) -> tuple[int, int, int]:
        """Return ``(error, liquidity, shortfall)`` in 1e18-scaled USD."""
        return await self._hypothetical_liquidity(account, None, 0, 0)

    async def _hypothetical_liquidity(
        self,
        account: str,
        modify: CToken | None,
        redeem_tokens: int,
        borrow_amount: int,
    ) -> tuple[int, int, int]:
        sum_collateral = 0
        sum_borrow_plus_effects = 0

        for market in self._account_assets.get(account, []):
            shares, borrowed, rate = await market.get_account_snapshot(account)
            price = self.oracle.get_underlying_price(market.address)
            if price == 0:
                return ComptrollerError.PRICE_ERROR, 0, 0

            factor = self._listings[market.address].collateral_factor
            tokens_to_denom = mul_scalar_truncate(
                mul_scalar_truncate(factor, rate), price
            )
            sum_collateral += mul_scalar_truncate(tokens_to_denom, shares)
            sum_borrow_plus_effects += mul_scalar_truncate(price, borrowed)

            if market is modify:
                sum_borrow_plus_effects += mul_scalar_truncate(
                    tokens_to_denom, redeem_tokens
                )
                sum_borrow_plus_effects += mul_scalar_truncate(price, borrow_amount)

        if sum_collateral > sum_borrow_plus_effects:
            return ComptrollerError.NO_ERROR, sum_collateral - sum_borrow_plus_effects, 0
        return ComptrollerError.NO_ERROR, 0, sum_borrow_plus_effects - sum_collateral

    # -- policy hooks ------------------------------------------------------

    async def mint_allowed(self, market: CToken, minter: str, amount: int) -> int:
        if not self.is_listed(market.address):
            return ComptrollerError.MARKET_NOT_LISTED
        return ComptrollerError.NO_ERROR

    async def redeem_allowed(self, market: CToken, redeemer: str, shares: int) -> int:
        if not self.is_listed(market.address):
            return ComptrollerError.MARKET_NOT_LISTED
        if not self.check_membership(redeemer, market.address):
            return ComptrollerError.NO_ERROR
        err, _, shortfall = await self._hypothetical_liquidity(
            redeemer, market, shares, 0
        )
        if err:
            return err
        if shortfall > 0:
            return ComptrollerError.INSUFFICIENT_LIQUIDITY
        return ComptrollerError.NO_ERROR

    async def borrow_allowed(self, market: CToken, borrower: str, amount: int) -> int:
        if not self.is_listed(market.address):
            return ComptrollerError.MARKET_NOT_LISTED
        if not self.check_membership(borrower, market.address):
            # Borrowing from a market implicitly enters it.
            self.enter_markets(borrower, [market])
        if self.oracle.get_underlying_price(market.address) == 0:
            return ComptrollerError.PRICE_ERROR
        err, _, shortfall = await self._hypothetical_liquidity(
            borrower, market, 0, amount
        )
        if err:
            return err
        if shortfall > 0:
            return ComptrollerError.INSUFFICIENT_LIQUIDITY
        return ComptrollerError.NO_ERROR

    async def repay_borrow_allowed(
        self, market: CToken, payer: str, borrower: str, amount: int
    ) -> int:
        if not self.is_listed(market.address):
            return ComptrollerError.MARKET_NOT_LISTED
        return ComptrollerError.NO_ERROR

    async def transfer_allowed(
        self, market: CToken, src: str, dst: str, shares: int
    ) -> int:
        return await self.redeem_allowed(market, src, shares)
