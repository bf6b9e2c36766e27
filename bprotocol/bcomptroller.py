"""BComptroller — factory and directory of wrapper tokens, one per market."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .addresses import derive_address, short
from .errors import WiringError
from .interfaces.market import MoneyMarket
from .tokens import BErc20, BEther, BToken

if TYPE_CHECKING:
    from .registry import Registry

logger = logging.getLogger(__name__)


class BComptroller:
    """Deploys wrappers bound to a market and to the shared registry."""

    def __init__(self, name: str = "bprotocol") -> None:
        self.address = derive_address("bcomptroller", name)
        self.registry: Registry | None = None
        self._btoken_of: dict[str, BToken] = {}
        self._market_of: dict[str, str] = {}
        self._by_symbol: dict[str, str] = {}

    def set_registry(self, registry: Registry) -> None:
        """Wire the registry once; re-wiring the same registry is a no-op."""
        if self.registry is registry:
            return
        if self.registry is not None:
            raise WiringError("BComptroller: registry-already-set")
        if registry.bcomptroller is not self:
            raise WiringError("BComptroller: registry-bound-elsewhere")
        self.registry = registry
        logger.info("BComptroller %s wired to registry %s", short(self.address), short(registry.address))

    def new_btoken(self, market: MoneyMarket) -> BToken:
        """Deploy the wrapper for ``market``, or return the existing one."""
        if self.registry is None:
            raise WiringError("BComptroller: registry-not-set")

        existing = self._btoken_of.get(market.address)
        if existing is not None:
            return existing

        claimed = self._by_symbol.get(market.symbol)
        if claimed is not None:
            raise WiringError(f"BComptroller: symbol-already-registered ({market.symbol})")

        if market.address == self.registry.cether:
            btoken: BToken = BEther(market, self.registry)
        else:
            btoken = BErc20(market, self.registry)

        self._btoken_of[market.address] = btoken
        self._market_of[btoken.address] = market.address
        self._by_symbol[market.symbol] = market.address
        logger.info(
            "Deployed %s for %s at %s",
            type(btoken).__name__, market.symbol, short(btoken.address),
        )
        return btoken

    def is_btoken(self, address: str) -> bool:
        return address in self._market_of

    def btoken_of(self, market: str) -> BToken | None:
        return self._btoken_of.get(market)

    def market_of(self, btoken: str) -> str | None:
        return self._market_of.get(btoken)

    def btokens(self) -> list[BToken]:
        return list(self._btoken_of.values())
