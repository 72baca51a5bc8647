"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from jobstats.models import PostingRecord, SalaryData
from jobstats.store import LocalObjectStore, SqlObjectStore


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def set(self, year, month, day, hour=12, minute=0):
        self.now = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2025-03-15 12:00 UTC."""
    return FakeClock(datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def local_store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "store")


@pytest.fixture
def sql_store(tmp_path) -> SqlObjectStore:
    return SqlObjectStore(tmp_path / "jobstats.db")


@pytest.fixture(params=["local", "sqlite"])
def store(request, tmp_path):
    """Every test using this runs against both offline backends."""
    if request.param == "local":
        return LocalObjectStore(tmp_path / "store")
    return SqlObjectStore(tmp_path / "jobstats.db")


def build_record(n: int, **overrides) -> PostingRecord:
    values: Dict[str, Any] = {
        "id": f"rec{n}",
        "url": f"https://jobs.example.com/postings/{n}",
        "title": f"Security Engineer {n}",
        "company": "Acme Corp",
        "location": "London, England",
        "country": "United Kingdom",
        "city": "London",
        "region": "Europe",
        "posted_date": "2025-03-14T09:30:00.000Z",
        "extracted_date": "2025-03-15T12:00:00.000Z",
        "keywords": ["siem", "cloud"],
        "certificates": ["CISSP"],
        "industry": "Finance",
        "seniority": "Senior",
        "description": f"Protect systems for posting {n}.",
    }
    values.update(overrides)
    return PostingRecord(**values)


@pytest.fixture
def make_record():
    """Factory for PostingRecord with sensible defaults."""
    return build_record


@pytest.fixture
def sample_records() -> List[PostingRecord]:
    """Five postings across two days with a mix of optional fields."""
    return [
        build_record(1, salary=SalaryData(min=60000, max=80000, currency="GBP")),
        build_record(2, salary=SalaryData(min=None, max=120000, currency="USD"), city="Greater Manchester"),
        build_record(3, keywords=["cloud"], certificates=[], role_type="Engineer", role_category="Engineering"),
        build_record(4, extracted_date="2025-03-14T08:00:00.000Z", posted_date="2025-03-14T07:15:00.000Z"),
        build_record(5, extracted_date="2025-03-14T08:00:00.000Z", city="England", industry=None),
    ]


@pytest.fixture
def raw_posting() -> Dict[str, Any]:
    """Raw feed posting as it arrives before classification."""
    return {
        "url": "https://jobs.example.com/postings/raw-1",
        "title": "Cloud Security Analyst",
        "company": "Beta Ltd",
        "location": "Berlin, Germany",
        "postedDate": "Fri, 14 Mar 2025 10:00:00 GMT",
        "description": "<p>Monitor <b>cloud</b> workloads.</p>",
    }


@pytest.fixture
def feed_items() -> List[Dict[str, Any]]:
    """Items as the feed hands them out: link and pubDate, no classification."""
    return [
        {
            "title": "SOC Analyst",
            "link": "https://jobs.example.com/feed/a",
            "pubDate": "Fri, 14 Mar 2025 10:00:00 GMT",
            "description": "<p>Triage <i>alerts</i>.</p>",
            "company": "Gamma plc",
        },
        {
            "title": "Threat Hunter",
            "link": "https://jobs.example.com/feed/b",
            "pubDate": "Fri, 14 Mar 2025 11:30:00 GMT",
            "description": "Hunt threats.",
            "location": "Leeds, England",
        },
    ]
