"""Asset ledger protocols — fungible tokens and the native asset."""
from typing import Protocol


class FungibleAsset(Protocol):
    """Token moved between accounts by transfer or by allowance."""

    address: str
    symbol: str
    decimals: int

    def balance_of(self, account: str) -> int: ...

    def allowance(self, owner: str, spender: str) -> int: ...

    def approve(self, owner: str, spender: str, amount: int) -> bool: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool: ...

    def transfer_from(
        self, spender: str, owner: str, to: str, amount: int
    ) -> bool: ...


class NativeAsset(Protocol):
    """Chain-native value attached directly to calls."""

    symbol: str
    decimals: int

    def balance_of(self, account: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> None: ...
