"""Money market protocol — the lending market the avatars hold positions in."""
from typing import Protocol

from .asset import FungibleAsset


class MoneyMarket(Protocol):
    """Abstract interface for a Compound-style market.

    Mutating calls return a numeric result code: 0 on success, a
    market-defined failure code otherwise.
    """

    address: str
    name: str
    symbol: str
    decimals: int
    total_supply: int
    underlying: FungibleAsset | None

    async def mint(self, minter: str, amount: int) -> int: ...

    async def redeem(self, redeemer: str, shares: int) -> int: ...

    async def redeem_underlying(self, redeemer: str, amount: int) -> int: ...

    async def borrow(self, borrower: str, amount: int) -> int: ...

    async def repay_borrow(self, payer: str, amount: int) -> int: ...

    async def transfer(self, src: str, dst: str, shares: int) -> int: ...

    async def transfer_from(
        self, spender: str, src: str, dst: str, shares: int
    ) -> int: ...

    async def approve(self, owner: str, spender: str, amount: int) -> int: ...

    async def balance_of(self, account: str) -> int: ...

    async def balance_of_underlying(self, account: str) -> int: ...

    async def borrow_balance_current(self, account: str) -> int: ...

    async def exchange_rate_current(self) -> int: ...

    async def exchange_rate_stored(self) -> int: ...

    async def allowance(self, owner: str, spender: str) -> int: ...

    async def get_cash(self) -> int: ...
