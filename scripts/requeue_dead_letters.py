#!/usr/bin/env python3
"""Re-drive dead-lettered recomputation entries.

Dead-lettered entries exhausted their retries. Once the underlying problem
is fixed, this script returns them to pending with a fresh attempt budget.

Usage:
    # Inspect dead letters without changing anything
    python scripts/requeue_dead_letters.py --dry-run

    # Re-drive every dead letter
    python scripts/requeue_dead_letters.py

    # Re-drive specific entries
    python scripts/requeue_dead_letters.py --id 12 --id 15
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from talentmatch.config.environment import load_environment_config
from talentmatch.config.exceptions import ConfigurationError
from talentmatch.logging.config import configure_logging
from talentmatch.persistence.database import close_database, get_session, init_database
from talentmatch.persistence.repositories import RecomputationQueueRepository


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Re-drive dead-lettered recomputation entries")
    parser.add_argument(
        "--id",
        dest="entry_ids",
        type=int,
        action="append",
        default=None,
        help="Entry id to re-drive (repeatable; default: all dead letters)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the dead letters and queue counts without changing anything",
    )
    parser.add_argument("--database", help="Database URL (overrides DATABASE_URL)")
    args = parser.parse_args()

    try:
        env_config = load_environment_config()
    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1

    configure_logging(level=env_config.log_level or "INFO", environment=env_config.environment)
    init_database(args.database or env_config.database_url)

    try:
        with get_session() as session:
            queue = RecomputationQueueRepository(session)
            counts = queue.stats()
            print(f"Queue before: {counts}")

            if args.dry_run:
                return 0

            requeued = queue.requeue_dead_letters(entry_ids=args.entry_ids)
            print(f"Re-driven {requeued} dead-lettered entries")

        with get_session() as session:
            print(f"Queue after: {RecomputationQueueRepository(session).stats()}")
        return 0
    finally:
        close_database()


if __name__ == "__main__":
    sys.exit(main())
