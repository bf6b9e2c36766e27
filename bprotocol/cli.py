"""Command-line interface for the B.Protocol avatar layer."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .addresses import short
from .config import load_config
from .logging_setup import configure_logging
from .market.exponential import SHARE_DECIMALS, format_units
from .services import BProtocolEngine, ScenarioRunner, load_scenario


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="bprotocol",
        description="Avatar and delegation layer over a Compound-style market",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    markets_parser = sub.add_parser("markets", help="Deploy from config and list wrappers")
    markets_parser.add_argument(
        "--refresh-prices",
        action="store_true",
        help="Pull prices from the configured feed before listing",
    )

    run_parser = sub.add_parser("run", help="Replay a scenario file")
    run_parser.add_argument("scenario", help="Path to a scenario YAML file")

    return parser


async def _list_markets(engine: BProtocolEngine, refresh: bool) -> None:
    engine.deploy_all()
    if refresh:
        await engine.refresh_prices()
    for snap in await engine.market_snapshots():
        decimals = engine.config.market(snap.symbol).underlying_decimals
        print(
            f"{snap.symbol:<8} btoken={short(snap.btoken)} "
            f"underlying={snap.underlying} cf={snap.collateral_factor:.2f} "
            f"cash={format_units(snap.cash, decimals)} "
            f"supply={format_units(snap.total_supply, SHARE_DECIMALS)}"
        )


async def _run_scenario(engine: BProtocolEngine, path: str) -> None:
    scenario = load_scenario(path)
    runner = ScenarioRunner(engine)
    for result in await runner.run(scenario):
        status = "ok" if result.ok else f"expected {result.error}"
        print(f"{result.index:>3} {result.action:<18} {result.account:<10} {status}")

    print()
    for account in scenario.accounts:
        for pos in await engine.positions(runner.address(account)):
            if pos.is_empty:
                continue
            decimals = engine.config.market(pos.symbol).underlying_decimals
            print(
                f"{account:<10} {pos.symbol:<8} "
                f"shares={format_units(pos.shares, SHARE_DECIMALS)} "
                f"underlying={format_units(pos.underlying, decimals)} "
                f"borrowed={format_units(pos.borrowed, decimals)}"
            )


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    engine = BProtocolEngine(config)

    if args.command == "markets":
        await _list_markets(engine, args.refresh_prices)
    elif args.command == "run":
        await _run_scenario(engine, args.scenario)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
