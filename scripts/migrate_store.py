#!/usr/bin/env python3
"""
Copy every object from one store backend to another.

Typical use is moving a local or SQLite store into R2. Targets are
overwritten key by key; nothing is deleted from the source.

Usage:
    python scripts/migrate_store.py --from local:data/store --to r2
    python scripts/migrate_store.py --from sqlite:data/jobstats.db --to local:/tmp/copy --dry-run
"""

import argparse
import dataclasses
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from jobstats.config import Settings
from jobstats.errors import JobStatsError
from jobstats.store import ObjectStore, open_store
from jobstats.store.base import (
    JSON_CACHE_CONTROL,
    JSON_CONTENT_TYPE,
    NDJSON_CONTENT_TYPE,
    SHARD_CACHE_CONTROL,
)


def parse_target(spec: str, settings: Settings) -> ObjectStore:
    """'r2', 's3', 'local:<dir>' or 'sqlite:<file>'."""
    backend, _, location = spec.partition(":")
    if backend == "local":
        settings = dataclasses.replace(settings, backend="local", data_dir=Path(location or settings.data_dir))
    elif backend == "sqlite":
        settings = dataclasses.replace(settings, backend="sqlite", db_path=Path(location or settings.db_path))
    elif backend in ("r2", "s3"):
        settings = dataclasses.replace(settings, backend=backend)
    else:
        raise SystemExit(f"Unknown store spec: {spec}")
    return open_store(settings)


def headers_for(key: str):
    if key.endswith(".ndjson.gz"):
        return NDJSON_CONTENT_TYPE, SHARD_CACHE_CONTROL, "gzip"
    if key.endswith(".json"):
        return JSON_CONTENT_TYPE, JSON_CACHE_CONTROL, None
    return "application/octet-stream", None, None


def migrate(source: ObjectStore, target: ObjectStore, dry_run: bool = False) -> bool:
    """
    Copy all keys from source to target.

    Returns True when every object was copied.
    """
    keys = source.list_keys()
    print(f"Found {len(keys)} objects in {source!r}")

    if dry_run:
        print("\n[DRY RUN] Would copy the following objects:")
        for i, key in enumerate(keys[:10], 1):
            print(f"  {i}. {key}")
        if len(keys) > 10:
            print(f"  ... and {len(keys) - 10} more")
        return True

    if not target.is_available():
        print(f"❌ Target store {target!r} is not configured")
        return False

    copied = 0
    errors = 0
    for key in keys:
        try:
            body = source.get_bytes(key)
            if body is None:
                continue
            content_type, cache_control, encoding = headers_for(key)
            target.put_bytes(key, body, content_type, cache_control, encoding)
            copied += 1
            if copied % 50 == 0:
                print(f"  Copied {copied} objects...")
        except JobStatsError as e:
            print(f"❌ Error copying {key}: {e}")
            errors += 1

    print("\n✅ Migration complete!" if not errors else "\n⚠️  Migration finished with errors")
    print(f"   Copied: {copied}")
    print(f"   Errors: {errors}")
    return errors == 0


def main():
    parser = argparse.ArgumentParser(description="Copy a jobstats store to another backend")
    parser.add_argument("--from", dest="source", required=True,
                        help="Source store: r2, s3, local:<dir> or sqlite:<file>")
    parser.add_argument("--to", dest="target", required=True,
                        help="Target store: r2, s3, local:<dir> or sqlite:<file>")
    parser.add_argument("--dry-run", action="store_true",
                        help="List what would be copied without writing")

    args = parser.parse_args()
    settings = Settings.from_env()

    ok = migrate(parse_target(args.source, settings), parse_target(args.target, settings), dry_run=args.dry_run)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
