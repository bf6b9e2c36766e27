"""Exception hierarchy shared by the registry, avatars and wrappers."""
from __future__ import annotations


class BProtocolError(Exception):
    """Base class for all errors raised by this package."""


class AuthorizationError(BProtocolError):
    """Caller is neither the avatar owner nor its delegatee."""


class IdentityInvariantError(BProtocolError):
    """An avatar or the zero address was used where a user is expected."""


class SelfTransferError(BProtocolError):
    """Source and destination resolve to the same avatar."""


class MarketOperationFailed(BProtocolError):
    """The money market returned a nonzero result code."""

    def __init__(self, message: str, code: int) -> None:
        super().__init__(f"{message} (code {int(code)})")
        self.code = int(code)


class WiringError(BProtocolError):
    """Registry/BComptroller wiring was used out of order or twice."""


class AssetTransferError(BProtocolError):
    """An asset ledger refused a transfer."""


class InvalidAmountError(BProtocolError, ValueError):
    """An amount or share count is negative or not an integer."""
