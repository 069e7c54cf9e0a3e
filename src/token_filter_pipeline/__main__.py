"""Command-line entry point.

Usage:
    token-filter run [--continuous] [--dry-run]
    token-filter last-results [--limit N]
    token-filter add-wallet --name NAME --address ADDR [--address ADDR ...] --influence 0.8
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal

from pydantic import ValidationError

from token_filter_pipeline.config import ConfigurationError, Settings, get_settings
from token_filter_pipeline.pipeline import run_pipeline
from token_filter_pipeline.stages.models import PipelineState
from token_filter_pipeline.storage.database import DatabaseManager
from token_filter_pipeline.storage.document_store import (
    DocumentStoreError,
    SQLDocumentStore,
    latest_results,
)
from token_filter_pipeline.storage.repos import TrackedWalletDTO

logger = logging.getLogger(__name__)


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _run(settings: Settings, *, continuous: bool, dry_run: bool | None) -> int:
    while True:
        summary = await run_pipeline(settings, dry_run=dry_run)
        print(json.dumps(summary.to_dict(), indent=2))
        if not continuous:
            return 0 if summary.state == PipelineState.DONE else 1
        logger.info("Next run in %d seconds", settings.run_interval_seconds)
        await asyncio.sleep(settings.run_interval_seconds)


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run the pipeline once, or repeatedly with --continuous."""
    settings.validate_requirements(command="run")
    logger.info("Configuration: %s", settings.redacted_summary())
    dry_run = True if args.dry_run else None
    try:
        return asyncio.run(_run(settings, continuous=args.continuous, dry_run=dry_run))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


async def _last_results(settings: Settings, limit: int) -> list[dict]:
    db = DatabaseManager(settings.database.url)
    try:
        return await latest_results(SQLDocumentStore(db), limit)
    finally:
        await db.dispose_async()


def cmd_last_results(args: argparse.Namespace, settings: Settings) -> int:
    """Print the most recently persisted recommendations."""
    results = asyncio.run(_last_results(settings, args.limit))
    if not results:
        print("No results found.")
        return 0
    for doc in results:
        reasoning = doc.get("final_reasoning") or {}
        print(
            f"{doc.get('symbol', '?'):<12} {doc.get('address')}  "
            f"run={doc.get('run_id')}  "
            f"recommendation={reasoning.get('recommendation', '-')}  "
            f"conviction={reasoning.get('conviction', 0.0):.2f}  "
            f"kols={len(doc.get('ownership_evidence') or [])}"
        )
    return 0


async def _add_wallet(settings: Settings, dto: TrackedWalletDTO) -> TrackedWalletDTO:
    db = DatabaseManager(settings.database.url)
    try:
        store = SQLDocumentStore(db)
        await store.ensure_schema()
        return await store.add_wallet(dto)
    finally:
        await db.dispose_async()


def cmd_add_wallet(args: argparse.Namespace, settings: Settings) -> int:
    """Add or update a tracked KOL wallet group."""
    dto = TrackedWalletDTO(
        name=args.name,
        wallet_addresses=list(args.address),
        influence_score=Decimal(str(args.influence)),
        category=args.category,
        description=args.description,
        twitter_handle=args.twitter,
    )
    saved = asyncio.run(_add_wallet(settings, dto))
    print(
        f"Saved wallet group {saved.name} "
        f"(id={saved.id}, {len(saved.wallet_addresses)} addresses)"
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token-filter",
        description="LLM-gated token screening over BirdEye market data",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the token filter pipeline")
    run_parser.add_argument(
        "--continuous", action="store_true", help="Repeat every RUN_INTERVAL_SECONDS"
    )
    run_parser.add_argument("--dry-run", action="store_true", help="Do not write results")
    run_parser.set_defaults(func=cmd_run)

    last_parser = subparsers.add_parser("last-results", help="Show recent recommendations")
    last_parser.add_argument("--limit", type=int, default=10)
    last_parser.set_defaults(func=cmd_last_results)

    wallet_parser = subparsers.add_parser("add-wallet", help="Track a KOL wallet group")
    wallet_parser.add_argument("--name", required=True)
    wallet_parser.add_argument(
        "--address", action="append", required=True, help="Wallet address (repeatable)"
    )
    wallet_parser.add_argument("--influence", type=float, required=True, help="Score in [0, 1]")
    wallet_parser.add_argument("--category", default="trader")
    wallet_parser.add_argument("--description")
    wallet_parser.add_argument("--twitter")
    wallet_parser.set_defaults(func=cmd_add_wallet)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    _configure_logging(settings)

    try:
        return int(args.func(args, settings))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except DocumentStoreError as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
