"""Protocol interfaces for the collaborators behind the wrappers."""
from .asset import FungibleAsset, NativeAsset
from .market import MoneyMarket
from .price_oracle import PriceFeed

__all__ = ["FungibleAsset", "MoneyMarket", "NativeAsset", "PriceFeed"]
