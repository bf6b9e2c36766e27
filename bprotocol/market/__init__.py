"""Reference Compound-style money market used behind the wrappers."""
from .assets import Erc20Token, NativeLedger
from .codes import ComptrollerError, MarketError
from .comptroller import Comptroller
from .ctoken import CErc20, CEther, CToken
from .oracle import SimplePriceOracle

__all__ = [
    "CErc20",
    "CEther",
    "CToken",
    "Comptroller",
    "ComptrollerError",
    "Erc20Token",
    "MarketError",
    "NativeLedger",
    "SimplePriceOracle",
]
