#!/usr/bin/env python3
"""
Run the token converter keeper.

MODES:
  1. Dry Run (default): discover, negotiate and estimate gas; nothing is sent
  2. Live: approve and submit conversions (REQUIRES PRIVATE KEY)

Usage:
  # One dry-run cycle over every converter
  python run_keeper.py --config configs/keeper_bscmainnet.yaml

  # Only one converter, releasing reserve funds first
  python run_keeper.py --config configs/keeper_bscmainnet.yaml \\
      --converter 0x... --release-funds

  # Live, polling forever, serving Prometheus metrics
  export PRIVATE_KEY="0x..."
  python run_keeper.py --config configs/keeper_bscmainnet.yaml --live --loop --metrics-port 8000

Environment Variables:
  RPC_<NETWORK>: RPC endpoint, e.g. RPC_BSCMAINNET (or the variable named by rpc_url_env)
  PRIVATE_KEY: Keeper private key (or the variable named by private_key_env)
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import logging_config  # noqa: E402
from converter_keeper.config_loader import load_keeper_config  # noqa: E402
from converter_keeper.events import EventChannel  # noqa: E402
from converter_keeper.exceptions import KeeperError  # noqa: E402
from converter_keeper.keeper import TokenConverterKeeper  # noqa: E402
from converter_keeper.metrics import KeeperMetrics  # noqa: E402
from converter_keeper.status import KeeperStatus  # noqa: E402
from converter_keeper.types import ConversionFilter  # noqa: E402
from converter_keeper.utils import (  # noqa: E402
    get_current_timestamp,
    get_logger,
    safe_json_dump,
    timestamp_to_iso,
)

logger = get_logger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Token Converter Keeper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to keeper config YAML file",
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Submit transactions (default: dry run)",
    )

    # Discovery filter
    parser.add_argument("--converter", type=str, help="Only this token converter")
    parser.add_argument("--asset-in", type=str, help="Only conversions accepting this token")
    parser.add_argument("--asset-out", type=str, help="Only conversions releasing this token")

    # Strategy
    parser.add_argument(
        "--release-funds",
        action="store_true",
        help="Release protocol share reserve funds before converting",
    )
    parser.add_argument(
        "--profitable",
        action="store_true",
        help="Only execute conversions with positive min income",
    )
    parser.add_argument("--min-trade-usd", type=float, help="Skip balances worth less")
    parser.add_argument("--max-trade-usd", type=float, help="Cap conversion size")
    parser.add_argument(
        "--min-income-bp",
        type=int,
        help="Largest subsidy accepted, in basis points of the amount",
    )
    parser.add_argument("--loop", action="store_true", help="Keep polling")
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Opportunities processed at once (token-disjoint)",
    )

    # Observability
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every event")
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    parser.add_argument("--metrics-port", type=int, help="Serve Prometheus metrics on this port")
    parser.add_argument(
        "--events-file",
        type=str,
        help="Write the run's event history to this JSON file on exit",
    )

    return parser.parse_args(argv)


def build_overrides(args) -> dict:
    """Nested config overrides from CLI flags; unset flags leave the file alone."""
    strategy = {}
    if args.release_funds:
        strategy["release_funds"] = True
    if args.profitable:
        strategy["profitable_only"] = True
    if args.loop:
        strategy["loop"] = True
    for flag, key in (
        ("min_trade_usd", "min_trade_usd"),
        ("max_trade_usd", "max_trade_usd"),
        ("min_income_bp", "min_income_bp"),
        ("concurrency", "concurrency"),
    ):
        value = getattr(args, flag)
        if value is not None:
            strategy[key] = value

    overrides = {"execution": {"dry_run": not args.live}}
    if strategy:
        overrides["strategy"] = strategy

    observability = {}
    if args.verbose:
        observability["verbose_events"] = True
    if args.debug:
        observability["log_level"] = "DEBUG"
    if args.metrics_port is not None:
        observability["metrics"] = {"enabled": True, "port": args.metrics_port}
    if observability:
        overrides["observability"] = observability
    return overrides


def write_events(channel: EventChannel, path: str):
    """Dump the channel history as JSON, one record per event."""
    records = [{"kind": event.kind, "event": event} for event in channel.history]
    payload = {
        "generated_at": timestamp_to_iso(get_current_timestamp()),
        "events": records,
    }
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(safe_json_dump(payload))
    logger.info(f"Wrote {len(records)} events to {output}")


async def run(args) -> int:
    config = load_keeper_config(args.config, overrides=build_overrides(args))
    logging_config.setup_logging(
        level=config.observability.log_level, log_file=config.observability.log_file
    )

    mode_name = "DRY RUN" if config.dry_run else "LIVE"
    logger.info(f"Execution Mode: {mode_name} on {config.network.value}")

    channel = EventChannel(verbose=config.observability.verbose_events)
    status = KeeperStatus()
    channel.subscribe(status)

    metrics = None
    if config.observability.metrics_enabled:
        metrics = KeeperMetrics()
        channel.subscribe(metrics)
        await metrics.start_server(
            port=config.observability.metrics_port,
            host=config.observability.metrics_host,
        )

    keeper = TokenConverterKeeper.from_config(config, channel)
    logger.info(f"Keeper wallet: {keeper.gateway.address}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await keeper.sanity_check()
        report = await keeper.run(
            ConversionFilter(
                converter=args.converter,
                asset_in=args.asset_in,
                asset_out=args.asset_out,
            ),
            stop=stop,
        )
    finally:
        for line in status.render_lines():
            logger.info(line)
        logger.info(f"Status: {status.summary()}")
        if args.events_file:
            write_events(channel, args.events_file)
        if metrics is not None:
            await metrics.stop_server()

    return 1 if report.error else 0


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    if args.debug:
        logging_config.setup_debug()
    else:
        logging_config.setup_logging()

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        sys.exit(0)
    except KeeperError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
