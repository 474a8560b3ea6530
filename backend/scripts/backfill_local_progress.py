"""Push a device's cached progress straight into the progress database.

Used when a learner moves to a new device before the outbound queue drained,
or to seed the database from an exported ``local_progress.json``.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from learnpath.config import get_settings
from learnpath.db.session import create_schema, session_scope
from learnpath.local_cache import LocalProgressCache
from learnpath.repositories.progress_records import progress_records

logger = logging.getLogger("learnpath.backfill")


def backfill_progress(path: Path, user_id: str) -> int:
    if not path.exists():
        logger.info("No local progress cache found at %s", path)
        return 0
    records = LocalProgressCache(path).read_all()
    imported = 0
    with session_scope() as session:
        for record in records:
            try:
                progress_records.upsert(session, user_id, record)
            except ValueError as exc:
                logger.warning("Skipping progress entry %s: %s", record.key, exc)
                continue
            imported += 1
    logger.info("Upserted %d progress records for %s", imported, user_id)
    return imported


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Backfill a local progress cache into the progress database.")
    parser.add_argument("--cache", type=Path, default=settings.local_cache_path)
    parser.add_argument("--user-id", default=settings.user_id)
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables directly instead of relying on migrations.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args(argv)
    if args.create_schema:
        create_schema()
    total = backfill_progress(args.cache, args.user_id)
    logger.info("Backfill completed: %d records", total)


if __name__ == "__main__":
    main()
