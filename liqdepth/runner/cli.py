"""Command-line depth calculation."""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any

import structlog
from pydantic import ValidationError

from ..catalog.jupiter import JupiterTokenCatalog
from ..config.settings import AppSettings, load_settings
from ..core.types import ProbeDirection, TokenPair, TokenRef
from ..obs.logging import configure_logging
from ..persist.storage import SQLiteSnapshotStore, summarize_depth
from ..probe.engine import DepthCalculator

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate Solana token pair liquidity depth via Jupiter quotes"
    )
    parser.add_argument("--input-mint", required=True, help="Base token mint")
    parser.add_argument("--output-mint", required=True, help="Quote token mint")
    parser.add_argument(
        "--direction",
        default="both",
        choices=["buy", "sell", "both"],
        help="Probe direction",
    )
    parser.add_argument("--config", default=None, help="Configuration file path")
    parser.add_argument(
        "--profile", default="dev", choices=["dev", "prod"], help="Configuration profile"
    )
    parser.add_argument(
        "--save", action="store_true", help="Store a summary in the snapshot database"
    )
    parser.add_argument(
        "--budget", type=float, default=None, help="Time budget in seconds"
    )
    return parser


def directions_for(value: str) -> list[ProbeDirection]:
    if value == "both":
        return [ProbeDirection.BUY, ProbeDirection.SELL]
    return [ProbeDirection(value)]


def _settings(args: argparse.Namespace) -> AppSettings:
    if args.config:
        return load_settings(args.profile, args.config)
    return AppSettings(env=args.profile)


async def calculate(
    settings: AppSettings, args: argparse.Namespace, cancel_event: asyncio.Event
) -> dict[str, Any]:
    """Run one calculation per requested direction.

    Returns:
        JSON-ready results keyed by direction
    """
    pair = TokenPair(
        input=TokenRef(mint=args.input_mint), output=TokenRef(mint=args.output_mint)
    )
    output: dict[str, Any] = {}

    async with JupiterTokenCatalog(
        urls=settings.token_list_urls,
        api_key=settings.jupiter_api_key,
        cache_ttl_s=settings.token_cache_ttl_s,
        request_timeout_s=settings.request_timeout_s,
    ) as catalog:
        async with DepthCalculator(settings, catalog=catalog) as calculator:
            for direction in directions_for(args.direction):
                if cancel_event.is_set():
                    break
                result = await calculator.calculate_depth(
                    args.input_mint,
                    args.output_mint,
                    direction,
                    time_budget_s=args.budget,
                    cancel_event=cancel_event,
                )
                output[direction.value] = result.model_dump(mode="json")

                if args.save:
                    async with SQLiteSnapshotStore(
                        settings.database_path, settings.snapshot_retention_hours
                    ) as store:
                        await store.save_snapshot(
                            summarize_depth(result, pair, direction)
                        )

    return output


async def main(argv: list[str] | None = None) -> int:
    """Run depth calculations and print the results as JSON.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    try:
        settings = _settings(args)
    except (ValueError, FileNotFoundError, ValidationError) as e:
        logger.error("Failed to load configuration", error=str(e))
        return 1

    configure_logging(settings.log_level, settings.log_json)

    cancel_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info("Received shutdown signal, stopping after current probe")
        cancel_event.set()

    previous = {
        sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        output = await calculate(settings, args, cancel_event)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(json.dumps(output, indent=2))
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
