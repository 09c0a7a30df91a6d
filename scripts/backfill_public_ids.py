"""
Backfill public ids for sets, flashcards and mind maps created before they existed.

List endpoints assign missing ids lazily; this script does the whole
database in one pass so links can be shared for rows nobody has listed yet.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from nodebook.config import get_settings
from nodebook.db import SqlAlchemyDbClient

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Backfill missing public ids for legacy rows"
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy URL (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=500,
        help="Rows updated per commit",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    database_url = args.database_url or get_settings().database_url
    if not database_url:
        logger.error("No database URL given and DATABASE_URL is not set")
        return 1

    db = SqlAlchemyDbClient(database_url)
    counts = db.backfill_public_ids(batch_size=args.batch_size)
    for name, count in counts.items():
        logger.info("Backfilled %d %s", count, name)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
