"""Command-line trigger for scheduled indexing runs (cron, systemd timers).

Exit codes: 0 success, 1 partial success (some agents failed), 2 failure.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

# Add the parent directory to the path so we can import from recindex
sys.path.insert(0, str(Path(__file__).parent.parent))

from recindex.config.settings import settings
from recindex.db.db import init_db, close_db
from recindex.services.errors import InvalidAgentIdError
from recindex.services.indexer import AGENT_ALL, EXIT_CODES, TRIGGER_FAILURE, run_indexing, validate_agent_id
from recindex.services.retention import prune_soft_deleted


def agent_arg(value: str) -> str:
    try:
        return validate_agent_id(value)
    except InvalidAgentIdError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index call recordings into the structured store")
    parser.add_argument("--agent", type=agent_arg, default=AGENT_ALL, help="Agent id to index, or 'all' (default)")
    parser.add_argument(
        "--since",
        type=datetime.fromisoformat,
        default=None,
        help="Backfill: re-examine files modified at or after this ISO timestamp",
    )
    parser.add_argument("--force-reconcile", action="store_true", help="Run a full deletion reconciliation pass")
    parser.add_argument(
        "--prune-days",
        type=int,
        default=None,
        help="Instead of indexing, hard-delete rows soft-deleted more than N days ago",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    await init_db()
    try:
        if args.prune_days is not None:
            pruned = await prune_soft_deleted(older_than_days=args.prune_days)
            print(json.dumps({"pruned": pruned, "older_than_days": args.prune_days}))
            return 0

        result = await run_indexing(args.agent, since=args.since, force_reconcile=args.force_reconcile)
        print(json.dumps(result.to_dict(), default=str, indent=2))
        return result.exit_code
    except Exception as e:
        print(json.dumps({"outcome": TRIGGER_FAILURE, "error": str(e), "root": settings.RECORDINGS_ROOT}))
        return EXIT_CODES[TRIGGER_FAILURE]
    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
