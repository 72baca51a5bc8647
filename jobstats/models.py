"""
Persistent record types.

Every type reads tolerantly: fields added in later schema versions default
to None (or an empty list) when an older document lacks them, and unknown
posting fields are carried through untouched so a rewrite never loses data.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from .errors import MalformedRecord
from .normalize import date_key, normalize_url, posting_id

RECORD_SCHEMA_VERSION = 2
MANIFEST_VERSION = 1


def _str_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None and str(v) != ""]


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _number(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if number.is_integer() else number


@dataclass
class SalaryData:
    min: Optional[float] = None
    max: Optional[float] = None
    currency: Optional[str] = None
    period: Optional[str] = None
    raw: Optional[str] = None
    confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SalaryData"]:
        if not isinstance(data, dict):
            return None
        return cls(
            min=_number(data.get("min")),
            max=_number(data.get("max")),
            currency=_opt_str(data.get("currency")),
            period=_opt_str(data.get("period")),
            raw=_opt_str(data.get("raw")),
            confidence=_number(data.get("confidence")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "currency": self.currency,
            "period": self.period,
            "raw": self.raw,
            "confidence": self.confidence,
        }

    @property
    def has_bound(self) -> bool:
        return self.min is not None or self.max is not None

    def midpoint(self) -> Optional[float]:
        """Mean of both bounds, or whichever bound is present."""
        if self.min is not None and self.max is not None:
            return (self.min + self.max) / 2
        if self.min is not None:
            return self.min
        return self.max


# Wire name -> attribute name for the metadata half of a posting
METADATA_FIELDS = {
    "id": "id",
    "title": "title",
    "company": "company",
    "location": "location",
    "country": "country",
    "city": "city",
    "region": "region",
    "url": "url",
    "postedDate": "posted_date",
    "extractedDate": "extracted_date",
    "keywords": "keywords",
    "certificates": "certificates",
    "industry": "industry",
    "seniority": "seniority",
    "salary": "salary",
    "software": "software",
    "programmingSkills": "programming_skills",
    "yearsExperience": "years_experience",
    "academicDegrees": "academic_degrees",
    "roleType": "role_type",
    "roleCategory": "role_category",
}
LIST_FIELDS = {"keywords", "certificates", "software", "programming_skills", "academic_degrees"}
KNOWN_KEYS = set(METADATA_FIELDS) | {"description", "schemaVersion"}


@dataclass
class PostingRecord:
    id: str
    url: str
    title: str = ""
    company: str = ""
    location: str = ""
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    posted_date: Optional[str] = None
    extracted_date: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    certificates: List[str] = field(default_factory=list)
    industry: Optional[str] = None
    seniority: Optional[str] = None
    salary: Optional[SalaryData] = None
    software: List[str] = field(default_factory=list)
    programming_skills: List[str] = field(default_factory=list)
    years_experience: Optional[str] = None
    academic_degrees: List[str] = field(default_factory=list)
    role_type: Optional[str] = None
    role_category: Optional[str] = None
    description: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        return normalize_url(self.url)

    @property
    def day(self) -> Optional[str]:
        """Calendar day the record is filed under."""
        return date_key(self.extracted_date) or date_key(self.posted_date)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], description: Optional[str] = None) -> "PostingRecord":
        """
        Build a record from a metadata document (optionally with description).

        Raises:
            MalformedRecord: url is missing or blank
        """
        if not isinstance(data, dict):
            raise MalformedRecord("Posting is not an object")
        url = data.get("url")
        if not isinstance(url, str) or not url.strip():
            raise MalformedRecord("Posting has no url", ["Missing required field: url"])

        values: Dict[str, Any] = {}
        for wire, attr in METADATA_FIELDS.items():
            raw = data.get(wire)
            if attr in LIST_FIELDS:
                values[attr] = _str_list(raw)
            elif attr == "salary":
                values[attr] = SalaryData.from_dict(raw)
            elif attr in ("id", "url"):
                continue
            elif attr in ("title", "company", "location"):
                values[attr] = "" if raw is None else str(raw)
            else:
                values[attr] = _opt_str(raw)

        if description is None:
            description = data.get("description") or ""

        return cls(
            id=_opt_str(data.get("id")) or posting_id(url),
            url=url.strip(),
            description=str(description),
            extra={k: v for k, v in data.items() if k not in KNOWN_KEYS},
            **values,
        )

    def to_metadata(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = dict(self.extra)
        for wire, attr in METADATA_FIELDS.items():
            value = getattr(self, attr)
            if attr == "salary":
                value = value.to_dict() if value is not None else None
            doc[wire] = value
        doc["schemaVersion"] = RECORD_SCHEMA_VERSION
        return doc

    def to_description(self) -> Dict[str, Any]:
        return {"id": self.id, "description": self.description}


@dataclass
class DayEntry:
    date: str
    metadata_key: str
    descriptions_key: str
    record_count: int = 0
    metadata_bytes: int = 0
    descriptions_bytes: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DayEntry":
        return cls(
            date=data["date"],
            # older manifests used metadata/descriptions/jobCount
            metadata_key=data.get("metadataKey") or data.get("metadata"),
            descriptions_key=data.get("descriptionsKey") or data.get("descriptions"),
            record_count=int(data.get("recordCount", data.get("jobCount", 0)) or 0),
            metadata_bytes=int(data.get("metadataBytes", data.get("metadataSize", 0)) or 0),
            descriptions_bytes=int(data.get("descriptionsBytes", data.get("descriptionsSize", 0)) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "metadataKey": self.metadata_key,
            "descriptionsKey": self.descriptions_key,
            "recordCount": self.record_count,
            "metadataBytes": self.metadata_bytes,
            "descriptionsBytes": self.descriptions_bytes,
        }


@dataclass
class MonthEntry:
    total_records: int = 0
    days: List[DayEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonthEntry":
        days = [DayEntry.from_dict(d) for d in data.get("days", [])]
        return cls(
            total_records=int(data.get("totalRecords", data.get("totalJobs", 0)) or 0),
            days=sorted(days, key=lambda d: d.date),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRecords": self.total_records,
            "days": [d.to_dict() for d in sorted(self.days, key=lambda d: d.date)],
        }

    def day(self, date: str) -> Optional[DayEntry]:
        for entry in self.days:
            if entry.date == date:
                return entry
        return None


@dataclass
class Manifest:
    current_month: str
    updated_at: str
    version: int = MANIFEST_VERSION
    months: Dict[str, MonthEntry] = field(default_factory=dict)
    available_months: List[str] = field(default_factory=list)
    total_records_all_time: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        months = {k: MonthEntry.from_dict(v) for k, v in (data.get("months") or {}).items()}
        available = set(data.get("availableMonths") or []) | set(months)
        for month in available:
            months.setdefault(month, MonthEntry())
        return cls(
            version=int(data.get("version", MANIFEST_VERSION)),
            updated_at=data.get("updatedAt") or "",
            current_month=data["currentMonth"],
            months=months,
            available_months=sorted(available),
            total_records_all_time=int(
                data.get("totalRecordsAllTime", data.get("totalJobsAllTime", 0)) or 0
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "updatedAt": self.updated_at,
            "currentMonth": self.current_month,
            "availableMonths": sorted(self.available_months),
            "months": {k: self.months[k].to_dict() for k in sorted(self.months)},
            "totalRecordsAllTime": self.total_records_all_time,
        }


@dataclass
class AppliedJob:
    id: str
    job_id: str
    applied_at: str
    job_title: str
    company: str
    location: str
    original_url: str
    posted_date: str = ""
    city: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    role_type: Optional[str] = None
    industry: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppliedJob":
        kwargs = {}
        wire = cls.wire_names()
        for f in fields(cls):
            if wire[f.name] in data:
                kwargs[f.name] = data[wire[f.name]]
        missing = [wire[n] for n in ("id", "job_id", "applied_at", "original_url") if not kwargs.get(n)]
        if missing:
            raise MalformedRecord(f"Application missing {', '.join(missing)}", missing)
        for name in ("job_title", "company", "location"):
            kwargs.setdefault(name, "")
        return cls(**kwargs)

    @staticmethod
    def wire_names() -> Dict[str, str]:
        return {
            "id": "id",
            "job_id": "jobId",
            "applied_at": "appliedAt",
            "job_title": "jobTitle",
            "company": "company",
            "location": "location",
            "original_url": "originalUrl",
            "posted_date": "postedDate",
            "city": "city",
            "country": "country",
            "region": "region",
            "role_type": "roleType",
            "industry": "industry",
        }

    def to_dict(self) -> Dict[str, Any]:
        wire = self.wire_names()
        doc = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None and f.default is None:
                continue
            doc[wire[f.name]] = value
        return doc
