"""
Manifest management.

The manifest is the single source of truth for which day shards exist.
Month rollover and totals recomputation are pure functions of
(manifest, now) so they can be tested without a store.
"""

import copy
from datetime import datetime
from typing import Callable, List

from .errors import MalformedRecord
from .logger import get_logger
from .models import DayEntry, Manifest, MonthEntry
from .normalize import iso_timestamp, month_key, utcnow
from .store import MANIFEST_KEY, ObjectStore, VersionedDocument

logger = get_logger()


def new_manifest(now: datetime) -> Manifest:
    month = month_key(now)
    return Manifest(
        current_month=month,
        updated_at=iso_timestamp(now),
        months={month: MonthEntry()},
        available_months=[month],
    )


def rollover_if_needed(manifest: Manifest, now: datetime) -> Manifest:
    """
    Start a new current month when ``now`` has moved past it.

    The previous month's entry is left exactly as last saved. Returns the
    same manifest object when no rollover is due.
    """
    month = month_key(now)
    if month == manifest.current_month:
        return manifest

    rolled = copy.deepcopy(manifest)
    rolled.months.setdefault(month, MonthEntry())
    if month not in rolled.available_months:
        rolled.available_months = sorted(rolled.available_months + [month])
    rolled.current_month = month
    logger.info("Month rollover", previous=manifest.current_month, current=month)
    return rolled


def recompute_totals(manifest: Manifest) -> Manifest:
    """Derive month and all-time totals from the day entries."""
    total = 0
    for entry in manifest.months.values():
        entry.days.sort(key=lambda d: d.date)
        entry.total_records = sum(d.record_count for d in entry.days)
        total += entry.total_records
    manifest.total_records_all_time = total
    manifest.available_months = sorted(set(manifest.available_months) | set(manifest.months))
    return manifest


def upsert_day(manifest: Manifest, entry: DayEntry) -> Manifest:
    """Insert or replace a day entry under its month, then recompute totals."""
    month = month_key(entry.date)
    month_entry = manifest.months.setdefault(month, MonthEntry())
    month_entry.days = [d for d in month_entry.days if d.date != entry.date] + [entry]
    return recompute_totals(manifest)


def remove_day(manifest: Manifest, date: str) -> Manifest:
    month_entry = manifest.months.get(month_key(date))
    if month_entry is not None:
        month_entry.days = [d for d in month_entry.days if d.date != date]
    return recompute_totals(manifest)


def check_invariants(manifest: Manifest) -> List[str]:
    """Return human-readable invariant violations (empty when consistent)."""
    problems = []
    if manifest.current_month not in manifest.available_months:
        problems.append(f"currentMonth {manifest.current_month} missing from availableMonths")
    if manifest.available_months != sorted(set(manifest.available_months)):
        problems.append("availableMonths is not sorted and unique")
    for month in manifest.available_months:
        if month not in manifest.months:
            problems.append(f"availableMonths lists {month} without a month entry")

    total = 0
    for month, entry in manifest.months.items():
        day_sum = sum(d.record_count for d in entry.days)
        if entry.total_records != day_sum:
            problems.append(f"{month}: totalRecords {entry.total_records} != sum of days {day_sum}")
        dates = [d.date for d in entry.days]
        if len(dates) != len(set(dates)):
            problems.append(f"{month}: duplicate day entries")
        for date in dates:
            if month_key(date) != month:
                problems.append(f"{month}: day {date} filed under the wrong month")
        total += entry.total_records
    if manifest.total_records_all_time != total:
        problems.append(f"totalRecordsAllTime {manifest.total_records_all_time} != sum of months {total}")
    return problems


class ManifestManager:
    """Loads and saves manifest.json, version-checked on conditional stores."""

    def __init__(self, store: ObjectStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self._doc = VersionedDocument(store, MANIFEST_KEY)

    def load(self) -> Manifest:
        """Read the manifest, creating an empty one for the current month if absent."""
        data = self._doc.read()
        if data is None:
            logger.info("No manifest found, starting empty")
            return new_manifest(self.clock())
        try:
            return Manifest.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedRecord(f"Manifest is unreadable: {e}")

    def save(self, manifest: Manifest):
        manifest.updated_at = iso_timestamp(self.clock())
        recompute_totals(manifest)
        self._doc.write(manifest.to_dict())
        logger.debug("Saved manifest", total=manifest.total_records_all_time,
                     months=len(manifest.available_months))
