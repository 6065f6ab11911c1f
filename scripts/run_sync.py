#!/usr/bin/env python3
"""
Run a price-list sync from the command line.

    python scripts/run_sync.py extract.csv --markup 15
    python scripts/run_sync.py --aggregate-only
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pricesync.ingest.extract_parser import decode_extract
from pricesync.logging_config import setup_logging
from pricesync.remote.client import RemoteStoreClient
from pricesync.worker.tasks import (
    EmptyExtractError,
    SyncInProgressError,
    SyncRunError,
    SyncTaskRunner,
)


async def run(args: argparse.Namespace, client) -> tuple[int, dict]:
    """Run the requested sync and return (exit code, JSON body)."""
    runner = SyncTaskRunner(client)
    try:
        if args.aggregate_only:
            report = await runner.run_aggregation()
        else:
            text = decode_extract(Path(args.path).read_bytes())
            report = await runner.run_sync(text, markup=args.markup)
    except SyncRunError as e:
        return 1, e.to_dict()
    except (EmptyExtractError, SyncInProgressError, OSError) as e:
        return 1, SyncRunError(str(e)).to_dict()

    return 0, report.to_dict()


async def main(args: argparse.Namespace) -> int:
    async with RemoteStoreClient() as client:
        code, body = await run(args, client)

    print(json.dumps(body, indent=2))
    return code


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync a price-list extract with the remote store")
    parser.add_argument("path", nargs="?", help="CSV extract to ingest")
    parser.add_argument("--markup", type=float, default=None, help="Flat amount added to each price")
    parser.add_argument(
        "--aggregate-only",
        action="store_true",
        help="Only recompute product aggregates and best-price flags",
    )
    args = parser.parse_args()

    if not args.aggregate_only and not args.path:
        parser.error("path is required unless --aggregate-only is given")

    setup_logging()
    sys.exit(asyncio.run(main(args)))
