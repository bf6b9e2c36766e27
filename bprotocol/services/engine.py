"""Deployment engine — wires market, registry, BComptroller and wrappers."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..addresses import ZERO_ADDRESS, derive_address
from ..avatar import Avatar
from ..bcomptroller import BComptroller
from ..config import AppConfig, MarketConfig
from ..interfaces.price_oracle import PriceFeed
from ..market import (
    CErc20,
    CEther,
    Comptroller,
    CToken,
    Erc20Token,
    NativeLedger,
    SimplePriceOracle,
)
from ..market.exponential import EXP_SCALE, price_mantissa, to_mantissa
from ..models import MarketSnapshot, PositionSnapshot
from ..oracles import PythOracle
from ..registry import Registry
from ..tokens import BToken

logger = logging.getLogger(__name__)


@dataclass
class Compound:
    """The deployed reference market."""

    comptroller: Comptroller
    oracle: SimplePriceOracle
    native: NativeLedger
    tokens: dict[str, Erc20Token] = field(default_factory=dict)
    markets: dict[str, CToken] = field(default_factory=dict)


@dataclass
class BProtocol:
    """The deployed wrapper layer."""

    registry: Registry
    bcomptroller: BComptroller
    compound: Compound
    btokens: dict[str, BToken] = field(default_factory=dict)


class BProtocolEngine:
    """Builds a complete system from configuration.

    Markets and wrappers are created synchronously; only price refreshes and
    position queries touch the async market interface.
    """

    def __init__(self, config: AppConfig, price_feed: PriceFeed | None = None) -> None:
        self._config = config
        self._market_configs = {m.symbol: m for m in config.markets}
        self._compound: Compound | None = None
        self._bprotocol: BProtocol | None = None

        if price_feed is None and config.price_oracle.provider == "pyth":
            price_feed = PythOracle(config.price_oracle.pyth)
        self._price_feed = price_feed

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def bprotocol(self) -> BProtocol:
        if self._bprotocol is None:
            raise RuntimeError("BProtocol is not deployed")
        return self._bprotocol

    # -- deployment --------------------------------------------------------

    def deploy_compound(self) -> Compound:
        """Deploy the reference market with every configured listing."""
        if self._compound is not None:
            return self._compound

        native_cfg = next((m for m in self._config.markets if m.native), None)
        native = NativeLedger(native_cfg.underlying if native_cfg else "ETH")
        oracle = SimplePriceOracle()
        compound = Compound(
            comptroller=Comptroller(oracle), oracle=oracle, native=native
        )

        for market_cfg in self._config.markets:
            market = self._build_market(compound, market_cfg)
            err = compound.comptroller.support_market(
                market, to_mantissa(market_cfg.collateral_factor)
            )
            if err:
                raise RuntimeError(f"Could not list {market_cfg.symbol}: error {err}")
            oracle.set_underlying_price(
                market.address,
                price_mantissa(market_cfg.price, market_cfg.underlying_decimals),
            )
            compound.markets[market_cfg.symbol] = market

        self._compound = compound
        logger.info("Deployed market with %d listings", len(compound.markets))
        return compound

    def _build_market(self, compound: Compound, cfg: MarketConfig) -> CToken:
        if cfg.native:
            return CEther(cfg.symbol, compound.native, cfg.initial_exchange_rate)
        token = compound.tokens.get(cfg.underlying)
        if token is None:
            token = Erc20Token(cfg.underlying, cfg.underlying_decimals)
            compound.tokens[cfg.underlying] = token
        return CErc20(cfg.symbol, token, cfg.initial_exchange_rate)

    def deploy_bprotocol(self) -> BProtocol:
        """Deploy BComptroller and Registry and wire them together."""
        if self._bprotocol is not None:
            return self._bprotocol

        compound = self.deploy_compound()
        bcomptroller = BComptroller(self._config.protocol.name)
        cether = next(
            (m.address for m in compound.markets.values() if isinstance(m, CEther)),
            ZERO_ADDRESS,
        )
        pool = self._config.protocol.pool or derive_address("pool", bcomptroller.address)
        registry = Registry(compound.comptroller, cether, pool, bcomptroller)
        bcomptroller.set_registry(registry)

        self._bprotocol = BProtocol(
            registry=registry, bcomptroller=bcomptroller, compound=compound
        )
        return self._bprotocol

    def deploy_new_btoken(self, symbol: str) -> BToken:
        """Deploy (or fetch) the wrapper for the market ``symbol``."""
        bprotocol = self.deploy_bprotocol()
        market = bprotocol.compound.markets.get(symbol)
        if market is None:
            raise KeyError(f"Unknown market '{symbol}'")
        btoken = bprotocol.bcomptroller.new_btoken(market)
        bprotocol.btokens[symbol] = btoken
        return btoken

    def deploy_all(self) -> BProtocol:
        """Deploy the whole stack with one wrapper per configured market."""
        bprotocol = self.deploy_bprotocol()
        for symbol in bprotocol.compound.markets:
            self.deploy_new_btoken(symbol)
        return bprotocol

    def deploy_new_avatar(self, user: str) -> Avatar:
        registry = self.deploy_bprotocol().registry
        return registry.get_avatar(registry.new_avatar(user))

    # -- account provisioning ---------------------------------------------

    def fund(self, user: str, asset: str, amount: int) -> None:
        """Credit ``amount`` of an underlying asset to ``user``."""
        compound = self.deploy_compound()
        if asset == compound.native.symbol:
            compound.native.credit(user, amount)
        elif asset in compound.tokens:
            compound.tokens[asset].mint(user, amount)
        else:
            raise KeyError(f"Unknown asset '{asset}'")
        logger.debug("Funded %s with %d %s", user, amount, asset)

    def balance_of(self, user: str, asset: str) -> int:
        """Wallet balance of an underlying asset."""
        compound = self.deploy_compound()
        if asset == compound.native.symbol:
            return compound.native.balance_of(user)
        return compound.tokens[asset].balance_of(user)

    # -- prices ------------------------------------------------------------

    async def refresh_prices(self) -> dict[str, float]:
        """Pull fresh prices from the feed into the market's oracle.

        Markets the feed does not price keep their configured price.
        """
        if self._price_feed is None:
            return {}
        compound = self.deploy_compound()
        underlyings = sorted({m.underlying for m in self._config.markets})
        prices = await self._price_feed.fetch_prices(underlyings)

        for symbol, market in compound.markets.items():
            cfg = self._market_configs[symbol]
            price = prices.get(cfg.underlying)
            if price is None:
                logger.warning("No feed price for %s, keeping %.4f", cfg.underlying, cfg.price)
                continue
            compound.oracle.set_underlying_price(
                market.address, price_mantissa(price, cfg.underlying_decimals)
            )
        return prices

    # -- reporting ---------------------------------------------------------

    async def market_snapshots(self) -> list[MarketSnapshot]:
        bprotocol = self.bprotocol
        comptroller = bprotocol.compound.comptroller
        snapshots: list[MarketSnapshot] = []
        for symbol, btoken in bprotocol.btokens.items():
            market = btoken.market
            snapshots.append(
                MarketSnapshot(
                    symbol=symbol,
                    btoken=btoken.address,
                    market=market.address,
                    underlying=self._market_configs[symbol].underlying,
                    decimals=btoken.decimals,
                    exchange_rate=await btoken.exchange_rate_current(),
                    total_supply=await btoken.total_supply(),
                    cash=await market.get_cash(),
                    collateral_factor=comptroller.collateral_factor(market.address)
                    / EXP_SCALE,
                )
            )
        return snapshots

    async def position(self, user: str, symbol: str) -> PositionSnapshot:
        bprotocol = self.bprotocol
        btoken = bprotocol.btokens[symbol]
        avatar = bprotocol.registry.avatar_of(user)
        delegatee = bprotocol.registry.delegate_of(avatar)
        return PositionSnapshot(
            user=user,
            avatar=avatar,
            symbol=symbol,
            shares=await btoken.balance_of(user),
            underlying=await btoken.balance_of_underlying(user),
            borrowed=await btoken.borrow_balance_current(user),
            delegatee="" if delegatee == ZERO_ADDRESS else delegatee,
        )

    async def positions(self, user: str) -> list[PositionSnapshot]:
        return [
            await self.position(user, symbol) for symbol in self.bprotocol.btokens
        ]
