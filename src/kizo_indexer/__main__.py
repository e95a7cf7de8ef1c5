"""Command-line entry point.

Usage:
    python -m kizo_indexer init-db
    python -m kizo_indexer replay transactions.jsonl [--batch-size 500] [--dry-run]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from kizo_indexer import __version__
from kizo_indexer.config import ContractSettings, ProcessorSettings, Settings, get_settings, load_section
from kizo_indexer.ingestor.events import EventSignatures
from kizo_indexer.ingestor.fanout import aggregate_batch_sync
from kizo_indexer.ingestor.replay import read_batches
from kizo_indexer.pipeline import Pipeline
from kizo_indexer.storage.database import DatabaseManager, DatabaseUnavailableError
from kizo_indexer.storage.repos import BatchRows

logger = logging.getLogger("kizo_indexer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kizo-indexer", description="Kizo prediction market indexer")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override LOG_LEVEL",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables in DATABASE_URL")

    replay = sub.add_parser("replay", help="Index transactions from a JSON-lines file")
    replay.add_argument("path", type=Path, help="File with one decoded transaction per line")
    replay.add_argument("--batch-size", type=int, default=None, help="Override PROCESSOR_BATCH_SIZE")
    replay.add_argument(
        "--dry-run",
        action="store_true",
        help="Decode and count rows without touching the database",
    )
    return parser


def _configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def _init_db(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url, echo=settings.database.echo)
    try:
        await db.check_connection()
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    return 0


async def _dry_run(contract: ContractSettings, path: Path, *, batch_size: int) -> int:
    signatures = EventSignatures.for_contract(contract.address, contract.module_name)
    totals = BatchRows()
    async for batch in read_batches(path, batch_size=batch_size):
        totals.extend(aggregate_batch_sync(batch.transactions, signatures))
    print(json.dumps(totals.counts(), indent=2))
    return 0


async def _replay(settings: Settings, path: Path, *, batch_size: int) -> int:
    stats = await Pipeline(settings).run(read_batches(path, batch_size=batch_size))
    logger.info(
        "Replay finished: %d batches, %d transactions, %d rows written, %d write failures",
        stats.batches_processed,
        stats.transactions_processed,
        stats.rows_written,
        stats.write_failures,
    )
    return 1 if stats.write_failures else 0


def _run_dry(args: argparse.Namespace) -> int:
    try:
        contract = load_section(ContractSettings)
        processor = load_section(ProcessorSettings)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    _configure_logging(getattr(logging, args.log_level or "INFO"))
    batch_size = args.batch_size or processor.batch_size
    return asyncio.run(_dry_run(contract, args.path, batch_size=batch_size))


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.command == "replay" and args.dry_run:
            return _run_dry(args)

        try:
            settings = get_settings()
        except ValidationError as e:
            print(f"Invalid configuration: {e}", file=sys.stderr)
            return 2

        _configure_logging(getattr(logging, args.log_level) if args.log_level else settings.get_logging_level())
        logger.info("Kizo indexer %s starting: %s", __version__, settings.redacted_summary())

        if args.command == "init-db":
            return asyncio.run(_init_db(settings))
        if args.command == "replay":
            batch_size = args.batch_size or settings.processor.batch_size
            return asyncio.run(_replay(settings, args.path, batch_size=batch_size))
    except DatabaseUnavailableError as e:
        logger.error("%s", e)
        return 1
    except FileNotFoundError as e:
        logger.error("Input not found: %s", e)
        return 1
    except KeyboardInterrupt:
        return 130
    return 2


if __name__ == "__main__":
    sys.exit(main())
