"""
Whole-store consistency check.

Reads the manifest, every day shard pair, every monthly statistics file
and the URL index, and reports every invariant that does not hold.
"""

from typing import List

from .aggregates import MonthlyStatistics
from .dedup import DedupIndex
from .manifest import ManifestManager, check_invariants
from .shards import ShardStore
from .store import MANIFEST_KEY, URL_INDEX_KEY, ObjectStore, stats_key


def verify_store(store: ObjectStore, check_index: bool = True) -> List[str]:
    """Return a list of problems; empty means the store is consistent."""
    if not store.exists(MANIFEST_KEY):
        return []

    manifest = ManifestManager(store).load()
    problems = check_invariants(manifest)
    shards = ShardStore(store)
    urls = set()

    for month in manifest.available_months:
        entry = manifest.months[month]
        for day in entry.days:
            records = shards.read_metadata(day)
            descriptions = shards.read_descriptions(day)
            urls.update(r.dedup_key for r in records)
            if len(records) != day.record_count:
                problems.append(f"{day.date}: metadata has {len(records)} records, manifest says {day.record_count}")
            if len(descriptions) != day.record_count:
                problems.append(f"{day.date}: descriptions has {len(descriptions)} records, manifest says {day.record_count}")
            mismatch = shards.check_pairing(day)
            if mismatch is not None:
                problems.append(str(mismatch))

        data = store.get_json(stats_key(month))
        if data is None:
            continue
        stats = MonthlyStatistics.from_dict(data)
        by_date = sum(stats.counters["byDate"].values())
        if stats.total_jobs != by_date:
            problems.append(f"{month}: statistics totalJobs {stats.total_jobs} != sum of byDate {by_date}")
        if stats.total_jobs != entry.total_records:
            problems.append(f"{month}: statistics totalJobs {stats.total_jobs} != manifest {entry.total_records}")

    if check_index:
        index = DedupIndex(store, URL_INDEX_KEY).load()
        missing = [u for u in urls if not index.has(u)]
        if missing:
            problems.append(f"URL index is missing {len(missing)} stored postings")

    return problems
