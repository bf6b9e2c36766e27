"""In-memory asset ledgers backing the reference market."""
from __future__ import annotations

import logging
from collections import defaultdict

from ..addresses import derive_address, short
from ..errors import AssetTransferError

logger = logging.getLogger(__name__)


class Erc20Token:
    """Fungible token ledger with balances and allowances."""

    def __init__(self, symbol: str, decimals: int = 18, name: str = "") -> None:
        self.symbol = symbol
        self.name = name or symbol
        self.decimals = decimals
        self.address = derive_address("erc20", symbol)
        self.total_supply = 0
        self._balances: dict[str, int] = defaultdict(int)
        self._allowances: dict[tuple[str, str], int] = defaultdict(int)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            raise AssetTransferError(f"{self.symbol}: negative allowance")
        self._allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._move(sender, to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise AssetTransferError(
                f"{self.symbol}: transfer amount exceeds allowance "
                f"({short(owner)} -> {short(spender)})"
            )
        self._move(owner, to, amount)
        self._allowances[(owner, spender)] = allowed - amount
        return True

    def mint(self, to: str, amount: int) -> None:
        """Create new tokens (account provisioning)."""
        self._balances[to] += amount
        self.total_supply += amount

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise AssetTransferError(f"{self.symbol}: negative amount")
        if self.balance_of(sender) < amount:
            raise AssetTransferError(
                f"{self.symbol}: transfer amount exceeds balance ({short(sender)})"
            )
        self._balances[sender] -= amount
        self._balances[to] += amount
        logger.debug(
            "%s transfer %d %s -> %s", self.symbol, amount, short(sender), short(to)
        )


class NativeLedger:
    """Balances of the chain's native asset (value attached to calls)."""

    def __init__(self, symbol: str = "ETH", decimals: int = 18) -> None:
        self.symbol = symbol
        self.decimals = decimals
        self._balances: dict[str, int] = defaultdict(int)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def transfer(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise AssetTransferError(f"{self.symbol}: negative value")
        if self.balance_of(sender) < amount:
            raise AssetTransferError(
                f"{self.symbol}: insufficient balance ({short(sender)})"
            )
        self._balances[sender] -= amount
        self._balances[to] += amount

    def credit(self, account: str, amount: int) -> None:
        """Provision native balance to an account."""
        self._balances[account] += amount
