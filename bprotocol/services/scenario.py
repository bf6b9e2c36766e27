"""Scripted scenarios — load a YAML sequence of actions and replay it.

A scenario names its accounts, funds them, and lists steps::

    accounts:
      alice:
        fund: {ZRX: 1000}
      bob: {}
    steps:
      - {action: mint, account: alice, market: cZRX, amount: 1000}
      - {action: delegate, account: alice, delegatee: bob}
      - {action: borrow, account: bob, on_behalf_of: alice, market: cZRX, amount: 10}
      - {action: borrow, account: bob, market: cZRX, amount: 1,
         expect_error: MarketOperationFailed}

Underlying amounts are whole tokens; share amounts (``redeem``, ``transfer``,
``transfer_from``, ``approve``) are whole shares at 8 decimals.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..addresses import ZERO_ADDRESS, derive_address, short
from ..errors import BProtocolError
from ..market.exponential import SHARE_DECIMALS, parse_units
from .engine import BProtocolEngine

logger = logging.getLogger(__name__)

ACTIONS = (
    "fund",
    "new_avatar",
    "delegate",
    "mint",
    "redeem",
    "redeem_underlying",
    "borrow",
    "repay_borrow",
    "transfer",
    "transfer_from",
    "approve",
)

# Actions whose amount is denominated in shares rather than underlying.
_SHARE_ACTIONS = frozenset({"redeem", "transfer", "transfer_from", "approve"})
_MARKET_ACTIONS = frozenset(ACTIONS) - {"fund", "new_avatar", "delegate"}


class ScenarioFailed(Exception):
    """A step's outcome did not match its expectation."""


@dataclass(frozen=True)
class ScenarioStep:
    action: str
    account: str
    market: str = ""
    asset: str = ""
    amount: str = "0"
    to: str = ""
    src: str = ""
    spender: str = ""
    delegatee: str = ""
    on_behalf_of: str = ""
    expect_error: str = ""


@dataclass(frozen=True)
class Scenario:
    name: str
    accounts: dict[str, str] = field(default_factory=dict)
    funding: tuple[tuple[str, str, str], ...] = ()
    steps: tuple[ScenarioStep, ...] = ()


@dataclass(frozen=True)
class StepResult:
    index: int
    action: str
    account: str
    ok: bool
    result: Any = None
    error: str = ""


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _build_step(raw: dict[str, Any]) -> ScenarioStep:
    return ScenarioStep(
        action=raw.get("action", ""),
        account=raw.get("account", ""),
        market=raw.get("market", ""),
        asset=raw.get("asset", ""),
        amount=str(raw.get("amount", 0)),
        to=raw.get("to", ""),
        src=raw.get("src", ""),
        spender=raw.get("spender", ""),
        delegatee=raw.get("delegatee", ""),
        on_behalf_of=raw.get("on_behalf_of", ""),
        expect_error=raw.get("expect_error", ""),
    )


def build_scenario(raw: dict[str, Any], name: str = "scenario") -> Scenario:
    """Build and validate a scenario from its parsed YAML mapping."""
    accounts: dict[str, str] = {}
    funding: list[tuple[str, str, str]] = []
    for account, cfg in (raw.get("accounts") or {}).items():
        cfg = cfg or {}
        accounts[account] = cfg.get("address") or derive_address("account", account)
        for asset, amount in (cfg.get("fund") or {}).items():
            funding.append((account, asset, str(amount)))

    scenario = Scenario(
        name=raw.get("name", name),
        accounts=accounts,
        funding=tuple(funding),
        steps=tuple(_build_step(s) for s in raw.get("steps") or []),
    )
    _validate(scenario)
    return scenario


def load_scenario(path: str | Path) -> Scenario:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scenario file not found: {path}")
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return build_scenario(raw, name=path.stem)


def _validate(scenario: Scenario) -> None:
    for i, step in enumerate(scenario.steps, start=1):
        if step.action not in ACTIONS:
            raise ValueError(f"Step {i}: unknown action '{step.action}'")
        if step.account not in scenario.accounts:
            raise ValueError(f"Step {i}: unknown account '{step.account}'")
        if step.action in _MARKET_ACTIONS and not step.market:
            raise ValueError(f"Step {i}: '{step.action}' needs a market")
        if step.action == "fund" and not step.asset:
            raise ValueError(f"Step {i}: 'fund' needs an asset")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ScenarioRunner:
    """Replays a scenario against a deployed engine."""

    def __init__(self, engine: BProtocolEngine) -> None:
        self._engine = engine
        self._bprotocol = engine.deploy_all()
        self._decimals: dict[str, int] = {}
        for market in engine.config.markets:
            self._decimals[market.symbol] = market.underlying_decimals
            self._decimals[market.underlying] = market.underlying_decimals
        self._accounts: dict[str, str] = {}

    def address(self, name: str) -> str:
        """Resolve an account name; ``zero`` and raw addresses pass through."""
        if name == "zero":
            return ZERO_ADDRESS
        if name in self._accounts:
            return self._accounts[name]
        if name.startswith("0x"):
            return name
        raise KeyError(f"Unknown account '{name}'")

    async def run(self, scenario: Scenario) -> list[StepResult]:
        self._accounts = dict(scenario.accounts)
        for account, asset, amount in scenario.funding:
            self._fund(account, asset, amount)

        results: list[StepResult] = []
        for index, step in enumerate(scenario.steps, start=1):
            results.append(await self._run_step(index, step))
        logger.info("Scenario '%s' finished: %d steps", scenario.name, len(results))
        return results

    async def _run_step(self, index: int, step: ScenarioStep) -> StepResult:
        try:
            result = await self._dispatch(step)
        except BProtocolError as e:
            error = type(e).__name__
            if step.expect_error and step.expect_error in _names(type(e)):
                logger.info("Step %d (%s) failed as expected: %s", index, step.action, e)
                return StepResult(index, step.action, step.account, False, None, error)
            raise ScenarioFailed(f"Step {index} ({step.action}) raised {error}: {e}") from e

        if step.expect_error:
            raise ScenarioFailed(
                f"Step {index} ({step.action}) succeeded, expected {step.expect_error}"
            )
        logger.debug("Step %d (%s) -> %r", index, step.action, result)
        return StepResult(index, step.action, step.account, True, result)

    def _fund(self, account: str, asset: str, amount: str) -> None:
        self._engine.fund(
            self.address(account), asset, parse_units(amount, self._decimals[asset])
        )

    def _amount(self, step: ScenarioStep) -> int:
        if step.action in _SHARE_ACTIONS:
            return parse_units(step.amount, SHARE_DECIMALS)
        return parse_units(step.amount, self._decimals[step.market])

    async def _dispatch(self, step: ScenarioStep) -> Any:
        caller = self.address(step.account)
        registry = self._bprotocol.registry

        if step.action == "fund":
            self._fund(step.account, step.asset, step.amount)
            return None
        if step.action == "new_avatar":
            return registry.new_avatar(caller)
        if step.action == "delegate":
            return registry.delegate_avatar(caller, self.address(step.delegatee or "zero"))

        btoken = self._bprotocol.btokens[step.market]
        amount = self._amount(step)
        if step.action == "mint":
            self._approve_underlying(btoken, caller, amount)

        args: list[Any] = []
        if step.action == "transfer":
            args.append(self.address(step.to))
        elif step.action == "transfer_from":
            args.extend([self.address(step.src), self.address(step.to)])
        elif step.action == "approve":
            args.append(self.address(step.spender))
        elif step.action == "repay_borrow":
            self._approve_underlying(btoken, caller, amount)
        args.append(amount)

        if step.on_behalf_of:
            avatar = registry.avatar_of(self.address(step.on_behalf_of))
            logger.debug("%s acts on avatar %s", short(caller), short(avatar))
            op = getattr(btoken, f"{step.action}_on_avatar")
            return await op(caller, avatar, *args)
        return await getattr(btoken, step.action)(caller, *args)

    @staticmethod
    def _approve_underlying(btoken: Any, caller: str, amount: int) -> None:
        # Fungible underlyings are pulled through an allowance to the wrapper.
        underlying = getattr(btoken, "underlying", None)
        if underlying is not None:
            underlying.approve(caller, btoken.address, amount)


def _names(exc_type: type) -> set[str]:
    return {klass.__name__ for klass in exc_type.__mro__}
