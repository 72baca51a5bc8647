#!/usr/bin/env python3
"""
Check that a store's manifest, shards, statistics and URL index agree.

Usage:
    python scripts/validate_store.py --store local:data/store
    python scripts/validate_store.py --store r2
"""

import argparse
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from jobstats.config import Settings
from jobstats.consistency import verify_store
from jobstats.manifest import ManifestManager

from migrate_store import parse_target


def validate(store) -> bool:
    """
    Print a report for the store.

    Returns True if it is consistent, False otherwise.
    """
    if not store.is_available():
        print(f"❌ Store {store!r} is not configured")
        return False

    manifest = ManifestManager(store).load()
    print(f"Manifest: {manifest.total_records_all_time} postings in {len(manifest.available_months)} months")
    for month in manifest.available_months:
        entry = manifest.months[month]
        print(f"  {month}: {entry.total_records} postings over {len(entry.days)} days")

    print("\nValidating shards and statistics...")
    problems = verify_store(store)
    if problems:
        print(f"\n❌ {len(problems)} problems found:")
        for problem in problems[:50]:
            print(f"   - {problem}")
        if len(problems) > 50:
            print(f"   ... and {len(problems) - 50} more")
        print("\nRun `jobstats rebuild` to repair shards, statistics and the URL index.")
        return False

    print("\n✅ Store is consistent")
    return True


def main():
    parser = argparse.ArgumentParser(description="Validate a jobstats store")
    parser.add_argument("--store", default="r2",
                        help="Store: r2, s3, local:<dir> or sqlite:<file> (default: r2)")
    args = parser.parse_args()

    store = parse_target(args.store, Settings.from_env())
    sys.exit(0 if validate(store) else 1)


if __name__ == "__main__":
    main()
