from __future__ import annotations

import argparse
import logging

from wastewatch.config import Settings
from wastewatch.db import init_db
from wastewatch.logger import setup_logging
from wastewatch.services.ledger import reconcile_pending_awards, recompute_user_total

logger = logging.getLogger("reconcile_points")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Credit point awards missing from the ledger."
    )
    parser.add_argument(
        "--limit", type=int, default=None, help="Reports to process per run"
    )
    parser.add_argument(
        "--user-id",
        type=int,
        default=None,
        help="Rebuild this user's total from the ledger instead",
    )
    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging()
    init_db(settings)

    if args.user_id is not None:
        total = recompute_user_total(args.user_id)
        logger.info("User %s total is %d", args.user_id, total)
        return 0

    limit = args.limit if args.limit is not None else settings.reconcile_batch_size
    applied = reconcile_pending_awards(limit)
    logger.info("Applied %d pending awards", applied)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
