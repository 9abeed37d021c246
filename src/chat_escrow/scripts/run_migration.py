# src/chat_escrow/scripts/run_migration.py
"""Drive the E2EE -> plaintext migration from the command line.

Usage:
  python -m chat_escrow.scripts.run_migration --dry-run
  python -m chat_escrow.scripts.run_migration --batch-size 100 --until-done
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from sqlalchemy.orm import Session

from chat_escrow.core.settings import settings
from chat_escrow.db.session import SessionLocal
from chat_escrow.services.key_envelope import load_key_store
from chat_escrow.services.media_store import build_media_store
from chat_escrow.services.migration import MigrationEngine, MigrationReport

logger = logging.getLogger(__name__)


async def migrate(
    db: Session,
    engine: MigrationEngine,
    *,
    dry_run: bool,
    batch_size: int | None,
    until_done: bool,
) -> list[MigrationReport]:
    """Run one batch, or keep running until nothing migratable remains.

    A pass that migrates nothing stops the loop even if rows remain, since
    every remaining row failed and would fail again.
    """
    reports: list[MigrationReport] = []
    while True:
        report = await engine.run(db, dry_run=dry_run, batch_size=batch_size)
        reports.append(report)
        print(json.dumps(report.as_response()))

        stats = report.stats
        if dry_run or not until_done or not report.needs_another_run:
            break
        if stats.errors >= stats.total:
            logger.warning("Stopping: every message in the last batch failed")
            break
    return reports


async def _main(args: argparse.Namespace) -> int:
    media_store = build_media_store(settings)
    engine = MigrationEngine(
        load_key_store(settings),
        media_store,
        default_batch_size=settings.migration_default_batch_size,
        max_batch_size=settings.migration_max_batch_size,
    )
    db = SessionLocal()
    try:
        reports = await migrate(
            db,
            engine,
            dry_run=args.dry_run,
            batch_size=args.batch_size,
            until_done=args.until_done,
        )
    finally:
        db.close()
        await media_store.close()
    return 1 if any(report.errors for report in reports) else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Migrate encrypted messages to plaintext")
    parser.add_argument("--dry-run", action="store_true", help="Decrypt and report without writing")
    parser.add_argument("--batch-size", type=int, default=None, help="Messages per batch (max 100)")
    parser.add_argument(
        "--until-done",
        action="store_true",
        help="Repeat batches until no encrypted messages remain",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return asyncio.run(_main(args))


if __name__ == "__main__":
    raise SystemExit(main())
