#!/usr/bin/env python3
"""
Pull Oracle Prices

This script provides a command-line interface to pull prices from the SEDA
price oracle program. Assets are split into gas-bounded data requests,
submitted one at a time, and resolved concurrently.

Usage:
    # Paper network (default, nothing is posted)
    python scripts/pull_prices.py --assets equity:AAPL fx:EUR

    # Every asset in the default catalog
    python scripts/pull_prices.py --catalog

    # List the default catalog
    python scripts/pull_prices.py --list-assets

    # One request per asset / everything in one request / fixed size
    python scripts/pull_prices.py --assets equity:AAPL fx:EUR --single
    python scripts/pull_prices.py --assets equity:AAPL fx:EUR --bundle
    python scripts/pull_prices.py --catalog --chunk-size 4

    # Resolve requests that were posted earlier (live network)
    python scripts/pull_prices.py --live --resolve <request_id>:<height>

    # JSON output, appended to data/sessions.jsonl
    python scripts/pull_prices.py --catalog --json --save

Environment Variables:
    ORACLE_PROGRAM_ID - Price oracle program id
    SEDA_NETWORK - "testnet" (default) or "mainnet"
    SEDA_REST_URL - REST gateway used for chain queries
    SEDA_EXPLORER_URL - Explorer base URL for request links
    PULL_MODE - "paper" (default) or "live"
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config import (
    LOGS_DIR,
    PULL_MODE,
    SEDA_MNEMONIC,
    SEDA_NETWORK,
    SEDA_REST_URL,
    SESSIONS_LOG_PATH,
)
from src.network import BaseOracleClient, PaperOracleNetwork, SedaChainClient
from src.oracle import Orchestrator, PullConfig, SessionReport, save_report
from src.oracle.symbols import DEFAULT_ASSET_CATALOG, catalog_asset_ids


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the puller."""
    level = logging.DEBUG if verbose else logging.INFO

    # Create formatters
    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    # File handler
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOGS_DIR / f"pull_prices_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    print(f"Logs will be written to: {log_file}")


def list_assets() -> None:
    """Print the default asset catalog."""
    print("\n" + "=" * 70)
    print("Available Assets")
    print("=" * 70)

    for group, assets in DEFAULT_ASSET_CATALOG.items():
        print(f"\n{group}:")
        for asset_id, label in assets:
            print(f"  {asset_id:<16} {label}")

    print("\n" + "=" * 70)


def parse_request_ref(value: str) -> tuple[str, Optional[int]]:
    """Parse ``ID`` or ``ID:HEIGHT`` into a request reference."""
    request_id, _, height = value.partition(":")
    if not request_id:
        raise argparse.ArgumentTypeError(f"Invalid request reference: {value!r}")
    if not height:
        return request_id, None
    try:
        return request_id, int(height)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid height in request reference: {value!r}")


def build_client(paper_mode: bool) -> BaseOracleClient:
    """Create the network client for the selected mode."""
    if paper_mode:
        return PaperOracleNetwork(log_requests=True)
    return SedaChainClient(rest_url=SEDA_REST_URL, network=SEDA_NETWORK)


def print_report(report: SessionReport) -> None:
    """Print a human-readable session summary."""
    print("\n" + "=" * 70)
    print("Session Summary")
    print("=" * 70)

    if report.chunks:
        print(f"\nRequests: {len(report.handles)} ({'split' if len(report.chunks) > 1 else 'single'})")
        print(f"  Estimated gas: {report.total_estimated_gas}")
        print(f"  Estimated cost: {report.total_estimated_cost} SEDA")

    print("\nStatuses:")
    for outcome in report.statuses:
        handle = outcome.handle
        line = f"  [{outcome.phase}] {handle.request_id} ({', '.join(handle.chunk.assets) or 'existing'})"
        if outcome.error:
            line += f" - {outcome.error}"
        print(line)
        if handle.explorer_url:
            print(f"      {handle.explorer_url}")

    print("\nPrices:")
    if not report.results:
        print("  (none)")
    for key, result in sorted(report.results.items()):
        print(f"  {key:<16} {result.price}")

    for raw in report.raw_results:
        print(f"\nRaw result: {raw}")

    if report.missing_assets:
        print(f"\nMissing: {', '.join(report.missing_assets)}")
    if report.timed_out:
        print("\nSession deadline reached before every request resolved.")
    if report.pending_sequences:
        print(f"\nSequences still pending: {report.pending_sequences}")

    print(f"\nDuration: {report.duration_seconds:.1f}s")
    print("=" * 70)


async def run_pull(args: argparse.Namespace, pull_config: PullConfig) -> SessionReport:
    """Run one pull (or resolve) session."""
    paper_mode = not args.live

    async with build_client(paper_mode) as client:
        orchestrator = Orchestrator(client, pull_config)
        if args.resolve:
            return await orchestrator.resolve_existing(args.resolve, known_assets=args.assets or None)
        return await orchestrator.pull_prices(args.assets)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Pull prices from the SEDA price oracle program",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/pull_prices.py --assets equity:AAPL fx:EUR   # Paper network (default)
  python scripts/pull_prices.py --catalog --chunk-size 2      # Whole catalog, 2 per request
  python scripts/pull_prices.py --list-assets                 # Show the catalog
  python scripts/pull_prices.py --live --resolve ID:HEIGHT    # Resolve an existing request
        """,
    )

    # Asset selection
    asset_group = parser.add_mutually_exclusive_group()
    asset_group.add_argument(
        "--assets",
        nargs="+",
        metavar="ASSET",
        help="Asset ids, e.g. equity:AAPL fx:EUR cfd:XAU:USD",
    )
    asset_group.add_argument(
        "--catalog",
        action="store_true",
        help="Pull every asset in the default catalog",
    )
    asset_group.add_argument(
        "--list-assets",
        action="store_true",
        help="List the default catalog and exit",
    )

    # Network mode
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--paper",
        action="store_true",
        help="Use the simulated paper network (default)",
    )
    mode_group.add_argument(
        "--live",
        action="store_true",
        help="Use the live SEDA network",
    )

    # Chunking
    chunk_group = parser.add_mutually_exclusive_group()
    chunk_group.add_argument(
        "--single",
        action="store_true",
        help="One data request per asset",
    )
    chunk_group.add_argument(
        "--bundle",
        action="store_true",
        help="All assets in one data request",
    )
    chunk_group.add_argument(
        "--chunk-size",
        type=int,
        metavar="N",
        help="Fixed number of assets per data request",
    )

    parser.add_argument(
        "--resolve",
        nargs="+",
        type=parse_request_ref,
        metavar="ID[:HEIGHT]",
        help="Resolve previously posted data requests instead of submitting",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        metavar="SECONDS",
        help="Session deadline in seconds",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the session report as JSON",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        help=f"Append the session report to {SESSIONS_LOG_PATH}",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.list_assets:
        list_assets()
        return 0

    if args.catalog:
        args.assets = catalog_asset_ids()

    if not args.assets and not args.resolve:
        parser.error("one of --assets, --catalog, --list-assets or --resolve is required")

    if not args.paper and not args.live:
        args.live = PULL_MODE == "live"

    if args.live and not args.resolve:
        print("Error: Live submission needs a data request signer, which this CLI does not provide.")
        print("Post requests with your signing tool, then resolve them with --live --resolve ID:HEIGHT.")
        if not SEDA_MNEMONIC:
            print("(SEDA_MNEMONIC is not configured either.)")
        return 1

    if args.resolve and not args.live:
        print("Error: --resolve queries the live network; add --live.")
        return 1

    setup_logging(args.verbose)

    pull_config = PullConfig()
    if args.single:
        pull_config.max_assets_per_chunk = 1
    elif args.bundle:
        pull_config.max_assets_per_chunk = max(1, len(args.assets or []))
    elif args.chunk_size is not None:
        pull_config.max_assets_per_chunk = args.chunk_size
    if args.deadline is not None:
        pull_config.session_deadline = args.deadline

    try:
        pull_config.validate()
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    try:
        report = asyncio.run(run_pull(args, pull_config))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        return 130

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)

    if args.save:
        save_report(report, SESSIONS_LOG_PATH)

    failed = report.status_counts().get("error", 0)
    return 0 if report.is_complete and not failed else 2


if __name__ == "__main__":
    sys.exit(main())
