"""
Tests for the applied-jobs store.
"""

import pytest

from jobstats.applied import AppliedJobsStore, deduplicate_applications
from jobstats.errors import MalformedRecord
from jobstats.models import AppliedJob
from jobstats.normalize import job_id
from jobstats.store import APPLIED_INDEX_KEY, APPLIED_MANIFEST_KEY, applied_shard_key


def _event(n=1, **extra):
    event = {
        "jobUrl": f"https://jobs.example.com/postings/{n}",
        "title": f"Security Engineer {n}",
        "company": "Acme Corp",
        "location": "London, England",
        "postedDate": "2025-03-14",
    }
    event.update(extra)
    return event


class TestJobId:
    """Test click identity."""

    def test_tracking_params_and_case_ignored(self):
        """Query strings, trailing slashes and host case do not change the id."""
        assert job_id("https://JOBS.example.com/postings/1/?utm_source=x") == job_id("https://jobs.example.com/postings/1")
        assert len(job_id("https://jobs.example.com/postings/1")) == 12

    def test_different_paths_differ(self):
        """Different postings get different ids."""
        assert job_id("https://jobs.example.com/postings/1") != job_id("https://jobs.example.com/postings/2")


class TestAddApplication:
    """Test recording clicks."""

    def test_same_job_twice_stored_once(self, store, clock):
        """A second click on the same job is a no-op."""
        applied = AppliedJobsStore(store, clock).load()
        first = applied.add_application(_event(1))
        clock.advance(minutes=5)
        second = applied.add_application(_event(1, jobUrl="https://jobs.example.com/postings/1?ref=mail"))

        assert first is not None
        assert second is None
        assert len(AppliedJobsStore(store, clock).get_applications()) == 1

    def test_same_job_across_invocations(self, store, clock):
        """Dedup survives a reload."""
        AppliedJobsStore(store, clock).add_application(_event(1))
        clock.advance(hours=1)
        assert AppliedJobsStore(store, clock).add_application(_event(1)) is None

    def test_application_fields(self, store, clock):
        """Ids, timestamps and wire names follow the click."""
        app = AppliedJobsStore(store, clock).add_application(_event(1, roleType="Engineer"))
        doc = app.to_dict()

        assert doc["jobId"] == job_id("https://jobs.example.com/postings/1")
        assert doc["id"] == f"{doc['jobId']}-1742040000000"
        assert doc["appliedAt"] == "2025-03-15T12:00:00.000Z"
        assert doc["jobTitle"] == "Security Engineer 1"
        assert doc["roleType"] == "Engineer"
        assert "industry" not in doc

        manifest = store.get_json(APPLIED_MANIFEST_KEY)
        assert manifest["totalApplications"] == 1
        assert manifest["applicationsByMonth"] == {"2025-03": 1}

    def test_locator_and_city_cleanup(self, store, clock):
        """Location fields come from the locator, with city names cleaned."""
        def locator(location, url):
            return {"city": "Greater London", "country": "United Kingdom", "region": "Europe"}

        app = AppliedJobsStore(store, clock, locator).add_application(_event(1))
        assert (app.city, app.country, app.region) == ("London", "United Kingdom", "Europe")

    def test_invalid_event(self, store, clock):
        """Events without a usable jobUrl are rejected."""
        with pytest.raises(MalformedRecord) as exc_info:
            AppliedJobsStore(store, clock).add_application({"title": "No url"})
        assert exc_info.value.errors == ["Missing required field: jobUrl"]

    def test_deferred_save(self, store, clock):
        """With autosave off, clicks are pending until save()."""
        applied = AppliedJobsStore(store, clock).load()
        applied.add_application(_event(1), autosave=False)
        applied.add_application(_event(2), autosave=False)

        assert not store.exists(applied_shard_key("2025-03"))
        assert applied.get_stats()["totalApplications"] == 2
        assert applied.save() == 2
        assert len(store.get_ndjson_gz(applied_shard_key("2025-03"))) == 2


class TestReads:
    """Test listing and statistics."""

    def test_newest_first(self, store, clock):
        """Applications are listed newest first across months."""
        applied = AppliedJobsStore(store, clock).load()
        applied.add_application(_event(1))
        clock.set(2025, 4, 2)
        applied.add_application(_event(2))
        clock.advance(hours=1)
        applied.add_application(_event(3))

        apps = AppliedJobsStore(store, clock).get_applications()
        assert [a.job_title for a in apps] == ["Security Engineer 3", "Security Engineer 2", "Security Engineer 1"]

        april = AppliedJobsStore(store, clock).get_applications("2025-04")
        assert len(april) == 2
        assert AppliedJobsStore(store, clock).get_applications("2020-01") == []

        stats = AppliedJobsStore(store, clock).get_stats()
        assert stats["totalApplications"] == 3
        assert stats["byMonth"] == {"2025-03": 1, "2025-04": 2}

    def test_index_rebuilt_from_shards(self, store, clock):
        """A store whose job index is gone still recognises earlier clicks."""
        AppliedJobsStore(store, clock).add_application(_event(1))
        store.delete(APPLIED_INDEX_KEY)

        applied = AppliedJobsStore(store, clock).load()
        assert applied.has_applied("https://jobs.example.com/postings/1")
        assert applied.add_application(_event(1)) is None


class TestClearAll:
    """Test deleting every application."""

    def test_clear_after_duplicate_clicks(self, store, clock):
        """Two clicks on one job, then clear: one deleted, nothing left."""
        applied = AppliedJobsStore(store, clock).load()
        applied.add_application(_event(1))
        clock.advance(seconds=30)
        applied.add_application(_event(1))

        result = applied.clear_all()

        assert result == {"deletedMonths": ["2025-03"], "totalDeleted": 1}
        fresh = AppliedJobsStore(store, clock)
        assert fresh.get_applications() == []
        assert fresh.get_stats()["byMonth"] == {}
        assert not store.exists(applied_shard_key("2025-03"))

    def test_clicks_allowed_again_after_clear(self, store, clock):
        """Clearing forgets clicked ids too."""
        applied = AppliedJobsStore(store, clock).load()
        applied.add_application(_event(1))
        applied.clear_all()
        assert AppliedJobsStore(store, clock).add_application(_event(1)) is not None


class TestDeduplicateApplications:
    """Test merging application lists."""

    def test_keeps_earliest_per_job(self):
        """Same job id with different ids keeps the earliest click."""
        def app(id_, applied_at, jid="abc"):
            return AppliedJob(id=id_, job_id=jid, applied_at=applied_at, job_title="t",
                              company="c", location="l", original_url="https://x/1")

        result = deduplicate_applications([
            app("abc-2", "2025-03-15T12:05:00.000Z"),
            app("abc-1", "2025-03-15T12:00:00.000Z"),
            app("def-1", "2025-03-16T08:00:00.000Z", jid="def"),
        ])
        assert [a.id for a in result] == ["def-1", "abc-1"]


class TestNormalizeLocations:
    """Test the location cleanup pass."""

    def test_updates_stored_cities(self, store, clock):
        """Stored city names are cleaned in place."""
        row = AppliedJob(
            id="abc-1", job_id="abc", applied_at="2025-03-10T09:00:00.000Z", job_title="t",
            company="c", location="Manchester", original_url="https://x/1", city="Greater Manchester",
        ).to_dict()
        store.put_ndjson_gz(applied_shard_key("2025-03"), [row])
        store.put_json(APPLIED_MANIFEST_KEY, {"totalApplications": 1, "applicationsByMonth": {"2025-03": 1}})
        store.put_json(APPLIED_INDEX_KEY, {"urls": ["abc"]})

        result = AppliedJobsStore(store, clock).normalize_locations()

        assert result == {"updated": 1, "total": 1}
        assert store.get_ndjson_gz(applied_shard_key("2025-03"))[0]["city"] == "Manchester"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
