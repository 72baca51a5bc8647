"""
Statistics cache façade.

One invocation does load() -> add_job()* -> save(). Pending records are
buffered per day; save() writes shards first, then statistics, then the
manifest, then the dedup index, so a crash part-way leaves at worst
records that are stored but still admissible again, never an index entry
for a record that was not written.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .aggregates import MonthlyStatistics, merge_statistics
from .dedup import DedupIndex
from .errors import MalformedRecord, StorageUnavailable
from .logger import get_logger
from .manifest import ManifestManager, rollover_if_needed, upsert_day
from .models import Manifest, PostingRecord
from .normalize import month_key, utcnow
from .shards import ShardStore
from .store import URL_INDEX_KEY, ObjectStore, stats_key

logger = get_logger()

# Rebuild the URL index when it holds fewer identifiers than this share of stored postings
INDEX_RESYNC_RATIO = 0.9


class StatisticsCache:

    def __init__(self, store: ObjectStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.manifests = ManifestManager(store, clock)
        self.shards = ShardStore(store)
        self.index = DedupIndex(store, URL_INDEX_KEY, clock)
        self.manifest: Optional[Manifest] = None
        self.month_stats: Dict[str, MonthlyStatistics] = {}
        self.pending: Dict[str, List[PostingRecord]] = {}
        self._dirty_months = set()

    def _require_store(self):
        if not self.store.is_available():
            raise StorageUnavailable("Object storage is not configured")

    def _require_loaded(self):
        if self.manifest is None:
            self.load()

    @property
    def current_month(self) -> str:
        self._require_loaded()
        return self.manifest.current_month

    def load(self) -> "StatisticsCache":
        """Read manifest, current month statistics and the URL index."""
        self._require_store()
        self.manifest = rollover_if_needed(self.manifests.load(), self.clock())
        self.month_stats = {}
        self.pending = {}
        self._dirty_months = set()
        self._stats_for(self.manifest.current_month)

        self.index.load()
        expected = self.manifest.total_records_all_time
        if expected and len(self.index) < expected * INDEX_RESYNC_RATIO:
            logger.warning("URL index out of sync, rebuilding from shards",
                           indexed=len(self.index), stored=expected)
            self.index.replace(self._all_urls())
            self.index.save()

        logger.info("Statistics cache loaded", current_month=self.manifest.current_month,
                    total=self.manifest.total_records_all_time, indexed=len(self.index))
        return self

    def _stats_for(self, month: str) -> MonthlyStatistics:
        if month not in self.month_stats:
            data = self.store.get_json(stats_key(month))
            stats = MonthlyStatistics.from_dict(data)
            if stats.unsampled_salaries:
                logger.warning("Statistics file has salary totals but no samples; "
                               "the next save drops them, run rebuild to recover",
                               month=month, totalWithSalary=stats.unsampled_salaries)
            self.month_stats[month] = stats
        return self.month_stats[month]

    def _all_urls(self) -> List[str]:
        urls = []
        for month in self.manifest.available_months:
            for entry in self.manifest.months[month].days:
                urls.extend(r.url for r in self.shards.read_metadata(entry))
        return urls

    def is_duplicate(self, url: str) -> bool:
        self._require_loaded()
        return self.index.has(url)

    def add_job(self, record: PostingRecord) -> Dict[str, Any]:
        """
        Buffer a record unless its URL has been seen.

        Raises:
            MalformedRecord: the record has no URL or no usable date
        """
        self._require_loaded()
        if not record.url or not record.url.strip():
            raise MalformedRecord("Posting has no url")
        day = record.day
        if day is None:
            raise MalformedRecord(f"Posting {record.url} has no extracted or posted date")

        if not self.index.add(record.url):
            logger.record_duplicate()
            return {"inserted": False, "status": "duplicate"}

        self.pending.setdefault(day, []).append(record)
        month = month_key(day)
        self._stats_for(month).fold(record)
        self._dirty_months.add(month)
        logger.record_insert()
        return {"inserted": True, "status": "new"}

    @property
    def pending_count(self) -> int:
        return sum(len(v) for v in self.pending.values())

    def save(self) -> Dict[str, Any]:
        """Persist pending records: shards, statistics, manifest, index."""
        self._require_store()
        self._require_loaded()
        if not self.pending:
            logger.info("Nothing to save")
            return {"saved": 0, "days": 0}

        saved = 0
        restat = set()
        for day in sorted(self.pending):
            month = month_key(day)
            month_entry = self.manifest.months.get(month)
            existing = month_entry.day(day) if month_entry else None
            entry, added, current = self.shards.append_day(day, self.pending[day], existing)
            dropped = len(self.pending[day]) - len(added)
            if dropped:
                # already in the shard although the index missed them
                logger.warning("Records already present in day shard", date=day, dropped=dropped)
                restat.add(month)
            known = existing.record_count if existing else 0
            if len(current) != known:
                # shard written by a save that never reached the manifest
                logger.warning("Day shard holds records unknown to the manifest",
                               date=day, manifest_count=known, shard_count=len(current))
                restat.add(month)
            for record in current:
                self.index.add(record.url)
            upsert_day(self.manifest, entry)
            saved += len(added)

        for month in restat:
            self.month_stats[month] = self._restat_month(month)
            self._dirty_months.add(month)

        for month in sorted(self._dirty_months):
            self.store.put_json(stats_key(month), self.month_stats[month].to_dict())

        self.manifests.save(self.manifest)
        self.index.save()

        days = len(self.pending)
        self.pending = {}
        self._dirty_months = set()
        logger.info("Saved postings", saved=saved, days=days,
                    total=self.manifest.total_records_all_time)
        return {"saved": saved, "days": days}

    def _restat_month(self, month: str) -> MonthlyStatistics:
        entry = self.manifest.months.get(month)
        records = []
        for day in (entry.days if entry else []):
            records.extend(self.shards.read_metadata(day))
        return MonthlyStatistics.from_records(records)

    # Reads

    def get_current_statistics(self) -> MonthlyStatistics:
        self._require_loaded()
        return self._stats_for(self.manifest.current_month)

    def get_archived_month(self, month: str) -> Optional[Dict[str, Any]]:
        """
        Statistics and per-day index for a stored month without reading shards.

        Returns None when the month is unknown.
        """
        self._require_loaded()
        entry = self.manifest.months.get(month)
        if entry is None:
            return None
        stats = self._stats_for(month)
        return {
            "month": month,
            "statistics": stats,
            "totalRecords": entry.total_records,
            "dayIndex": [{"date": d.date, "recordCount": d.record_count} for d in entry.days],
        }

    def get_all_archives_aggregated(self) -> Dict[str, Any]:
        """Per-month statistics plus their sum across every stored month."""
        self._require_loaded()
        per_month = []
        for month in self.manifest.available_months:
            per_month.append({
                "month": month,
                "statistics": self._stats_for(month),
                "recordCount": self.manifest.months[month].total_records,
                "isCurrent": month == self.manifest.current_month,
            })
        merged = merge_statistics(m["statistics"] for m in per_month)
        return {
            "perMonth": per_month,
            "mergedStatistics": merged,
            "totalRecords": merged.total_jobs,
        }

    def load_records_for_month(self, month: str, description_days: Optional[int] = 5) -> List[PostingRecord]:
        """
        Every stored record of a month, newest day first.

        Descriptions are joined only for the most recent description_days
        days (None joins all); older records come back with empty text.
        """
        self._require_loaded()
        entry = self.manifest.months.get(month)
        if entry is None:
            return []
        records = []
        days = sorted(entry.days, key=lambda d: d.date, reverse=True)
        for i, day in enumerate(days):
            if description_days is None or i < description_days:
                records.extend(self.shards.read_day(day))
            else:
                records.extend(self.shards.read_metadata(day))
        return records

    def load_records_for_range(self, start: str, end: str) -> List[PostingRecord]:
        """Records filed between two YYYY-MM-DD dates inclusive, metadata only."""
        self._require_loaded()
        records = []
        for month in self.manifest.available_months:
            for day in self.manifest.months[month].days:
                if start <= day.date <= end:
                    records.extend(self.shards.read_metadata(day))
        return records

    def load_job_description(self, record_id: str, date: str) -> Optional[str]:
        self._require_loaded()
        month_entry = self.manifest.months.get(month_key(date))
        day = month_entry.day(date) if month_entry else None
        if day is None:
            return None
        return self.shards.read_descriptions(day).get(record_id)

    def get_summary(self, top_n: int = 10) -> Dict[str, Any]:
        self._require_loaded()
        current = self.get_current_statistics()
        months = self.manifest.available_months
        total = self.manifest.total_records_all_time
        return {
            "totalRecordsAllTime": total,
            "currentMonth": self.manifest.current_month,
            "currentMonthRecords": current.total_jobs,
            "availableMonths": list(months),
            "averagePerMonth": round(total / max(len(months), 1)),
            "topIndustries": current.top("byIndustry", top_n),
            "topCertificates": current.top("byCertificate", top_n),
            "topKeywords": current.top("byKeyword", top_n),
            "indexedUrls": len(self.index),
            "pending": self.pending_count,
        }

