"""User-facing wrapper tokens."""
from .base import BToken
from .erc20 import BErc20
from .ether import BEther

__all__ = ["BErc20", "BEther", "BToken"]
