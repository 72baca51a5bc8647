"""
Rebuild and fix pass over stored months.

For every targeted month: read each day shard, optionally re-derive
salary and role type with the supplied extractors, recompute time
buckets, drop postings whose URL already appeared earlier, rewrite the
shards and recompute the month statistics from scratch. Totals and the
URL index are then rebuilt from what survived.

Running it twice with the same extractors leaves shards and statistics
byte-identical to the first run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .aggregates import rebuild_from_scratch, time_buckets
from .dedup import DedupIndex
from .errors import ArchiveNotFound, StorageUnavailable
from .logger import get_logger
from .manifest import ManifestManager, remove_day, rollover_if_needed, upsert_day
from .models import PostingRecord, SalaryData
from .normalize import utcnow
from .shards import ShardStore
from .store import URL_INDEX_KEY, ObjectStore, stats_key

logger = get_logger()

SalaryExtractor = Callable[[str, str], Optional[SalaryData]]
# (title, keywords, description, industry) -> (roleType, roleCategory)
RoleExtractor = Callable[[str, List[str], str, str], Optional[Tuple[str, str]]]


@dataclass
class Reextractors:
    """Classifier hooks used to re-derive fields; either may be omitted."""
    salary: Optional[SalaryExtractor] = None
    role: Optional[RoleExtractor] = None


@dataclass
class MonthFixCounts:
    records: int = 0
    salary_new: int = 0
    salary_fixed: int = 0
    salary_unchanged: int = 0
    role_type_new: int = 0
    role_type_updated: int = 0
    hours_generated: int = 0
    duplicates_removed: int = 0
    days_rewritten: int = 0
    days_removed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "records": self.records,
            "salaryNew": self.salary_new,
            "salaryFixed": self.salary_fixed,
            "salaryUnchanged": self.salary_unchanged,
            "roleTypeNew": self.role_type_new,
            "roleTypeUpdated": self.role_type_updated,
            "hoursGenerated": self.hours_generated,
            "duplicatesRemoved": self.duplicates_removed,
            "daysRewritten": self.days_rewritten,
            "daysRemoved": self.days_removed,
        }


@dataclass
class RebuildReport:
    months: Dict[str, MonthFixCounts] = field(default_factory=dict)
    total_records_all_time: int = 0
    url_index_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "months": {m: c.to_dict() for m, c in sorted(self.months.items())},
            "totalRecordsAllTime": self.total_records_all_time,
            "urlIndexCount": self.url_index_count,
        }


def fix_record(record: PostingRecord, counts: MonthFixCounts, extractors: Reextractors) -> PostingRecord:
    """Re-derive salary and role type in place and tally what changed."""
    if extractors.salary is not None:
        old = record.salary
        new = extractors.salary(record.title, record.description)
        if new is not None:
            if old is None:
                counts.salary_new += 1
            elif (old.min, old.max) != (new.min, new.max):
                counts.salary_fixed += 1
            else:
                counts.salary_unchanged += 1
            record.salary = new
        elif old is not None:
            counts.salary_unchanged += 1

    if extractors.role is not None:
        match = extractors.role(record.title, list(record.keywords), record.description, record.industry or "")
        if match:
            role_type, category = match
            if not record.role_type:
                counts.role_type_new += 1
            elif record.role_type != role_type:
                counts.role_type_updated += 1
            record.role_type = role_type
            record.role_category = category

    if time_buckets(record.posted_date) is not None:
        counts.hours_generated += 1
    return record


def rebuild(
    store: ObjectStore,
    months: Optional[Iterable[str]] = None,
    extractors: Optional[Reextractors] = None,
    deduplicate: bool = True,
    clock: Callable[[], datetime] = utcnow,
) -> RebuildReport:
    """
    Rewrite shards and statistics for the given months (default: all).

    Raises:
        StorageUnavailable: store not configured
        ArchiveNotFound: a named month is not in the manifest
    """
    if not store.is_available():
        raise StorageUnavailable("Object storage is not configured")

    extractors = extractors or Reextractors()
    manifests = ManifestManager(store, clock)
    manifest = rollover_if_needed(manifests.load(), clock())
    shards = ShardStore(store)

    targets = sorted(set(months)) if months else list(manifest.available_months)
    for month in targets:
        if month not in manifest.months:
            raise ArchiveNotFound(month)

    report = RebuildReport()
    seen: Set[str] = set()

    for month in list(manifest.available_months):
        entry = manifest.months[month]
        if month not in targets:
            for day in entry.days:
                seen.update(r.dedup_key for r in shards.read_metadata(day))
            continue

        counts = MonthFixCounts()
        kept_month: List[PostingRecord] = []
        for day in list(entry.days):
            kept = []
            for record in shards.read_day(day):
                if deduplicate and record.dedup_key in seen:
                    counts.duplicates_removed += 1
                    continue
                seen.add(record.dedup_key)
                kept.append(fix_record(record, counts, extractors))

            if not kept:
                shards.delete_day(day)
                remove_day(manifest, day.date)
                counts.days_removed += 1
                continue
            upsert_day(manifest, shards.write_day(day.date, kept))
            counts.days_rewritten += 1
            kept_month.extend(kept)

        counts.records = len(kept_month)
        store.put_json(stats_key(month), rebuild_from_scratch(kept_month).to_dict())
        report.months[month] = counts
        logger.info(f"Rebuilt {month}", **counts.to_dict())

    manifests.save(manifest)
    report.total_records_all_time = manifest.total_records_all_time

    index = DedupIndex(store, URL_INDEX_KEY, clock)
    index.load()
    index.replace(seen)
    index.save()
    report.url_index_count = len(index)

    logger.info("Rebuild complete", months=len(report.months),
                total=report.total_records_all_time, indexed=report.url_index_count)
    return report
