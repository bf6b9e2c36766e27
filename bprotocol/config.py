"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PRICE_PROVIDERS = ("static", "pyth")
MAX_COLLATERAL_FACTOR = 0.9


def default_exchange_rate(underlying_decimals: int) -> int:
    """Compound's initial rate: 0.02 underlying per share, as a 1e18 mantissa."""
    return 2 * 10 ** (underlying_decimals + 8)


# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProtocolConfig:
    name: str = "bprotocol"
    pool: str = ""


@dataclass(frozen=True)
class MarketConfig:
    symbol: str = ""
    underlying: str = ""
    underlying_decimals: int = 18
    native: bool = False
    initial_exchange_rate: int = 0
    collateral_factor: float = 0.75
    price: float = 1.0


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "static"
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class AppConfig:
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    markets: tuple[MarketConfig, ...] = ()
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)

    def market(self, symbol: str) -> MarketConfig:
        for market in self.markets:
            if market.symbol == symbol:
                return market
        raise KeyError(f"Unknown market '{symbol}'")


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_protocol(raw: dict[str, Any]) -> ProtocolConfig:
    return ProtocolConfig(
        name=raw.get("name", "bprotocol"),
        pool=raw.get("pool", ""),
    )


def _build_markets(raw: dict[str, Any]) -> tuple[MarketConfig, ...]:
    markets: list[MarketConfig] = []
    for symbol, cfg in raw.items():
        decimals = int(cfg.get("underlying_decimals", 18))
        markets.append(
            MarketConfig(
                symbol=symbol,
                underlying=cfg.get("underlying", symbol.removeprefix("c")),
                underlying_decimals=decimals,
                native=bool(cfg.get("native", False)),
                initial_exchange_rate=int(
                    cfg.get("initial_exchange_rate", default_exchange_rate(decimals))
                ),
                collateral_factor=float(cfg.get("collateral_factor", 0.75)),
                price=float(cfg.get("price", 1.0)),
            )
        )
    return tuple(markets)


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "static"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        protocol=_build_protocol(raw.get("protocol", {})),
        markets=_build_markets(raw.get("markets", {})),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.markets:
        raise ValueError("At least one market must be configured")

    for market in cfg.markets:
        if not 0.0 <= market.collateral_factor <= MAX_COLLATERAL_FACTOR:
            raise ValueError(
                f"Market '{market.symbol}' collateral factor must be within "
                f"[0, {MAX_COLLATERAL_FACTOR}]"
            )
        if market.initial_exchange_rate <= 0:
            raise ValueError(
                f"Market '{market.symbol}' needs a positive initial exchange rate"
            )
        if market.price < 0:
            raise ValueError(f"Market '{market.symbol}' has a negative price")

    if sum(1 for m in cfg.markets if m.native) > 1:
        raise ValueError("At most one native market may be configured")

    oracle = cfg.price_oracle
    if oracle.provider not in PRICE_PROVIDERS:
        raise ValueError(f"Unknown price oracle provider '{oracle.provider}'")
    if oracle.provider == "pyth" and not oracle.pyth.feeds:
        raise ValueError("Pyth price oracle requires at least one feed")

    precisions = {m.underlying_decimals for m in cfg.markets}
    if len(precisions) > 1:
        # Wrapper shares mirror market precision; underlying amounts are not normalized.
        logger.warning(
            "Markets mix underlying precisions %s; share amounts are not comparable "
            "across markets",
            sorted(precisions),
        )
