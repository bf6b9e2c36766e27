"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from bprotocol.config import (
    AppConfig,
    MarketConfig,
    PriceOracleConfig,
    ProtocolConfig,
    PythConfig,
    default_exchange_rate,
)
from bprotocol.services import BProtocol, BProtocolEngine

E18 = 10**18


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@pytest.fixture()
def user1() -> str:
    return "0x" + "11" * 20


@pytest.fixture()
def user2() -> str:
    return "0x" + "22" * 20


@pytest.fixture()
def user3() -> str:
    return "0x" + "33" * 20


@pytest.fixture()
def user4() -> str:
    return "0x" + "44" * 20


@pytest.fixture()
def other() -> str:
    return "0x" + "99" * 20


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


def _market(symbol: str, underlying: str, cf: float, price: float, native: bool = False) -> MarketConfig:
    return MarketConfig(
        symbol=symbol,
        underlying=underlying,
        underlying_decimals=18,
        native=native,
        initial_exchange_rate=default_exchange_rate(18),
        collateral_factor=cf,
        price=price,
    )


@pytest.fixture()
def sample_markets() -> tuple[MarketConfig, ...]:
    return (
        _market("cETH", "ETH", 0.75, 200.0, native=True),
        _market("cZRX", "ZRX", 0.5, 1.0),
        _market("cBAT", "BAT", 0.5, 1.0),
    )


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.pyth.network/v2/updates/price/latest",
        feeds={"ETH": "abc123", "BAT": "def456"},
    )


@pytest.fixture()
def sample_app_config(sample_markets: tuple[MarketConfig, ...]) -> AppConfig:
    return AppConfig(
        protocol=ProtocolConfig(name="bprotocol-test", pool="0x" + "0f" * 20),
        markets=sample_markets,
        price_oracle=PriceOracleConfig(provider="static"),
    )


# ---------------------------------------------------------------------------
# Deployment fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine(sample_app_config: AppConfig) -> BProtocolEngine:
    engine = BProtocolEngine(sample_app_config)
    engine.deploy_all()
    return engine


@pytest.fixture()
def bprotocol(engine: BProtocolEngine) -> BProtocol:
    return engine.bprotocol


@pytest.fixture()
def funded(engine: BProtocolEngine, user1: str, user2: str, user3: str) -> BProtocolEngine:
    """user1 holds 1000 ZRX, user2 1000 BAT and user3 10 ETH."""
    engine.fund(user1, "ZRX", 1000 * E18)
    engine.fund(user2, "BAT", 1000 * E18)
    engine.fund(user3, "ETH", 10 * E18)
    return engine


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    protocol:
      name: bprotocol-test
      pool: "0xPOOL"
    markets:
      cETH:
        underlying: ETH
        native: true
        collateral_factor: 0.75
        price: 200
      cZRX:
        collateral_factor: 0.5
      cBAT:
        underlying: BAT
        collateral_factor: 0.5
        price: 1
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {ETH: "aaa", BAT: "bbb"}
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
