"""
Monthly aggregate statistics.

A MonthlyStatistics is a pure function of the multiset of records folded
into it: every dimension is a counter, and salary figures are derived from
a sorted list of salary samples that is persisted with the document. That
makes incremental folding, a rebuild from scratch, and cross-month merging
produce identical output regardless of record order.
"""

import bisect
import math
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import PostingRecord
from .normalize import normalize_city, parse_timestamp

# Wire name -> record attribute; multi-valued attributes are lists
SINGLE_DIMENSIONS = {
    "byIndustry": "industry",
    "bySeniority": "seniority",
    "byLocation": "location",
    "byCountry": "country",
    "byCity": "city",
    "byRegion": "region",
    "byCompany": "company",
    "byYearsExperience": "years_experience",
    "byRoleType": "role_type",
    "byRoleCategory": "role_category",
}
MULTI_DIMENSIONS = {
    "byCertificate": "certificates",
    "byKeyword": "keywords",
    "bySoftware": "software",
    "byProgrammingSkill": "programming_skills",
    "byAcademicDegree": "academic_degrees",
}
TIME_DIMENSIONS = ("byDate", "byHour", "byDayHour")
DIMENSIONS = tuple(sorted(set(SINGLE_DIMENSIONS) | set(MULTI_DIMENSIONS) | set(TIME_DIMENSIONS)))

SALARY_RANGES = (
    ("0-30k", 30000),
    ("30-50k", 50000),
    ("50-75k", 75000),
    ("75-100k", 100000),
    ("100-150k", 150000),
    ("150k+", None),
)
# Sample layout: (midpoint, currency, industry, seniority, location, country, city)
SALARY_GROUPS = ("byIndustry", "bySeniority", "byLocation", "byCountry", "byCity")
UNKNOWN_DATE = "unknown"

SalarySample = Tuple[float, str, str, str, str, str, str]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, matching the dashboard's rounding."""
    return int(math.floor(value + 0.5))


def median(sorted_values: List[float]) -> Optional[float]:
    if not sorted_values:
        return None
    mid = len(sorted_values) // 2
    if len(sorted_values) % 2 == 0:
        return (sorted_values[mid - 1] + sorted_values[mid]) / 2
    return sorted_values[mid]


def salary_range(midpoint: float) -> str:
    for label, upper in SALARY_RANGES:
        if upper is None or midpoint < upper:
            return label
    return SALARY_RANGES[-1][0]


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def time_buckets(posted_date: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    (hour, weekday-hour) keys for a posting time, in UTC.

    Hours are zero-padded in the hour key only; weekdays count from
    Sunday = 0.
    """
    posted = parse_timestamp(posted_date)
    if posted is None:
        return None
    weekday = (posted.weekday() + 1) % 7
    return f"{posted.hour:02d}", f"{weekday}-{posted.hour}"


def salary_sample(record: PostingRecord) -> Optional[SalarySample]:
    """The record's salary contribution, or None when it has none."""
    salary = record.salary
    if salary is None or not salary.has_bound:
        return None
    midpoint = salary.midpoint()
    if midpoint is None or midpoint <= 0:
        return None
    return (
        float(midpoint),
        _clean(salary.currency) or "",
        _clean(record.industry) or "",
        _clean(record.seniority) or "",
        _clean(record.location) or "",
        _clean(record.country) or "",
        normalize_city(record.city) or "",
    )


class MonthlyStatistics:
    """Counters per dimension plus salary samples for one month (or a merge of months)."""

    def __init__(self):
        self.total_jobs = 0
        self.counters: Dict[str, Counter] = {name: Counter() for name in DIMENSIONS}
        self.salary_samples: List[SalarySample] = []
        # salaries a stored document counted but carried no samples for
        self.unsampled_salaries = 0

    def __eq__(self, other) -> bool:
        if not isinstance(other, MonthlyStatistics):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"MonthlyStatistics(total_jobs={self.total_jobs}, salaries={len(self.salary_samples)})"

    def fold(self, record: PostingRecord) -> "MonthlyStatistics":
        """Count one record into every dimension it has a value for."""
        self.total_jobs += 1
        self.counters["byDate"][record.day or UNKNOWN_DATE] += 1

        for name, attr in SINGLE_DIMENSIONS.items():
            value = getattr(record, attr)
            value = normalize_city(value) if attr == "city" else _clean(value)
            if value:
                self.counters[name][value] += 1

        for name, attr in MULTI_DIMENSIONS.items():
            # a record counts once per distinct value
            for value in sorted({v for v in (_clean(x) for x in getattr(record, attr)) if v}):
                self.counters[name][value] += 1

        buckets = time_buckets(record.posted_date)
        if buckets:
            hour, day_hour = buckets
            self.counters["byHour"][hour] += 1
            self.counters["byDayHour"][day_hour] += 1

        sample = salary_sample(record)
        if sample is not None:
            bisect.insort(self.salary_samples, sample)
        return self

    def merge(self, other: "MonthlyStatistics") -> "MonthlyStatistics":
        """New statistics equal to folding both record sets together."""
        merged = MonthlyStatistics()
        merged.total_jobs = self.total_jobs + other.total_jobs
        for name in DIMENSIONS:
            merged.counters[name] = self.counters[name] + other.counters[name]
        merged.salary_samples = sorted(self.salary_samples + other.salary_samples)
        return merged

    @classmethod
    def from_records(cls, records: Iterable[PostingRecord]) -> "MonthlyStatistics":
        stats = cls()
        for record in records:
            stats.fold(record)
        return stats

    def top(self, dimension: str, n: int = 10) -> List[Dict[str, Any]]:
        """Most common values of a dimension, ties broken by name."""
        items = sorted(self.counters[dimension].items(), key=lambda kv: (-kv[1], kv[0]))
        return [{"name": k, "count": v} for k, v in items[:n]]

    def _salary_stats(self) -> Dict[str, Any]:
        midpoints = [s[0] for s in self.salary_samples]
        groups: Dict[str, Dict[str, List[float]]] = {name: {} for name in SALARY_GROUPS}
        by_currency: Counter = Counter()
        ranges = {label: 0 for label, _ in SALARY_RANGES}

        for sample in self.salary_samples:
            midpoint, currency = sample[0], sample[1]
            if currency:
                by_currency[currency] += 1
            ranges[salary_range(midpoint)] += 1
            for name, key in zip(SALARY_GROUPS, sample[2:]):
                if key:
                    groups[name].setdefault(key, []).append(midpoint)

        def summarize(values: List[float]) -> Dict[str, Any]:
            values = sorted(values)
            return {
                "avg": round_half_up(math.fsum(values) / len(values)),
                "median": round_half_up(median(values)),
                "count": len(values),
            }

        result: Dict[str, Any] = {
            "totalWithSalary": len(midpoints),
            "averageSalary": round_half_up(math.fsum(midpoints) / len(midpoints)) if midpoints else None,
            "medianSalary": round_half_up(median(midpoints)) if midpoints else None,
            "byCurrency": dict(by_currency),
            "salaryRanges": ranges,
            "samples": [list(s) for s in self.salary_samples],
        }
        for name in SALARY_GROUPS:
            result[name] = {k: summarize(v) for k, v in groups[name].items()}
        return result

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"totalJobs": self.total_jobs}
        for name in DIMENSIONS:
            doc[name] = dict(sorted(self.counters[name].items()))
        doc["salaryStats"] = self._salary_stats()
        return doc

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MonthlyStatistics":
        """
        Restore statistics from a stored document.

        Missing dimensions load empty. Documents written before salary
        samples were persisted load with no salary data until rebuilt.
        """
        stats = cls()
        if not data:
            return stats
        stats.total_jobs = int(data.get("totalJobs", 0) or 0)
        for name in DIMENSIONS:
            values = data.get(name) or {}
            stats.counters[name] = Counter({str(k): int(v) for k, v in values.items() if v})
        salary = data.get("salaryStats") or {}
        samples = []
        for raw in salary.get("samples") or []:
            if not isinstance(raw, list) or len(raw) != 7:
                continue
            samples.append((float(raw[0]),) + tuple(str(v or "") for v in raw[1:]))
        stats.salary_samples = sorted(samples)
        if not samples:
            stats.unsampled_salaries = int(salary.get("totalWithSalary", 0) or 0)
        return stats


def empty_statistics() -> MonthlyStatistics:
    return MonthlyStatistics()


def fold_incremental(stats: MonthlyStatistics, record: PostingRecord) -> MonthlyStatistics:
    return stats.fold(record)


def rebuild_from_scratch(records: Iterable[PostingRecord]) -> MonthlyStatistics:
    return MonthlyStatistics.from_records(records)


def merge_statistics(items: Iterable[MonthlyStatistics]) -> MonthlyStatistics:
    merged = MonthlyStatistics()
    for stats in items:
        merged = merged.merge(stats)
    return merged
