"""
Tests for the statistics cache: dedup on insert, save ordering and reads.
"""

import pytest

from jobstats.aggregates import rebuild_from_scratch
from jobstats.consistency import verify_store
from jobstats.errors import MalformedRecord, StorageUnavailable
from jobstats.models import SalaryData
from jobstats import statistics
from jobstats.shards import ShardStore
from jobstats.statistics import StatisticsCache
from jobstats.store import MANIFEST_KEY, URL_INDEX_KEY, LocalObjectStore, S3ObjectStore, stats_key


class RecordingStore(LocalObjectStore):
    """Local store that remembers the order of writes."""

    def __init__(self, root):
        super().__init__(root)
        self.writes = []

    def put_bytes(self, key, body, *args, **kwargs):
        self.writes.append(key)
        super().put_bytes(key, body, *args, **kwargs)


def _feb(make_record, n, **kwargs):
    return make_record(n, extracted_date="2025-02-10T08:00:00.000Z", posted_date="2025-02-09T08:00:00.000Z", **kwargs)


class TestAddJob:
    """Test insert-time dedup."""

    def test_known_url_skipped(self, store, clock, make_record):
        """With A already indexed, a feed of A and B stores only B."""
        a = make_record(1)
        b = make_record(2)
        store.put_json(URL_INDEX_KEY, {"urls": [a.url.upper()]})

        cache = StatisticsCache(store, clock).load()
        assert cache.add_job(a) == {"inserted": False, "status": "duplicate"}
        assert cache.add_job(b) == {"inserted": True, "status": "new"}
        cache.save()

        manifest = store.get_json(MANIFEST_KEY)
        day = manifest["months"]["2025-03"]["days"][0]
        assert day["recordCount"] == 1
        assert manifest["totalRecordsAllTime"] == 1
        assert [r["url"] for r in store.get_ndjson_gz(day["metadataKey"])] == [b.url]

        again = StatisticsCache(store, clock).load()
        assert not again.add_job(make_record(1))["inserted"]
        assert not again.add_job(make_record(2))["inserted"]
        assert again.save() == {"saved": 0, "days": 0}

    def test_duplicate_within_batch(self, store, clock, make_record):
        """The same URL twice in one batch is stored once."""
        cache = StatisticsCache(store, clock).load()
        assert cache.add_job(make_record(1))["inserted"]
        assert not cache.add_job(make_record(1, id="other"))["inserted"]
        assert cache.pending_count == 1

    def test_missing_url(self, store, clock, make_record):
        """A record without a URL is malformed."""
        cache = StatisticsCache(store, clock).load()
        with pytest.raises(MalformedRecord):
            cache.add_job(make_record(1, url="  "))

    def test_missing_date(self, store, clock, make_record):
        """A record with no date cannot be filed under a day."""
        cache = StatisticsCache(store, clock).load()
        with pytest.raises(MalformedRecord):
            cache.add_job(make_record(1, extracted_date=None, posted_date=None))

    def test_unavailable_store(self, clock):
        """An unconfigured store fails before any work."""
        with pytest.raises(StorageUnavailable):
            StatisticsCache(S3ObjectStore(bucket=None), clock).load()


class TestSave:
    """Test persistence order and consistency."""

    def test_write_order(self, tmp_path, clock, sample_records):
        """Shards first, then statistics, then manifest, then the URL index."""
        store = RecordingStore(tmp_path)
        cache = StatisticsCache(store, clock).load()
        for record in sample_records:
            cache.add_job(record)
        cache.save()

        assert store.writes == [
            "metadata/2025/03/day-14.ndjson.gz",
            "descriptions/2025/03/day-14.ndjson.gz",
            "metadata/2025/03/day-15.ndjson.gz",
            "descriptions/2025/03/day-15.ndjson.gz",
            "stats/2025-03.json",
            "manifest.json",
            "url-index.json",
        ]

    def test_saved_store_is_consistent(self, store, clock, sample_records, make_record):
        """Manifest, shards, statistics and index agree after a save."""
        cache = StatisticsCache(store, clock).load()
        for record in sample_records + [_feb(make_record, 10)]:
            cache.add_job(record)
        assert cache.save() == {"saved": 6, "days": 3}
        assert verify_store(store) == []

    def test_statistics_match_rebuild(self, store, clock, sample_records):
        """Incrementally saved statistics equal a rebuild over the shards."""
        cache = StatisticsCache(store, clock).load()
        for record in sample_records[:3]:
            cache.add_job(record)
        cache.save()

        cache = StatisticsCache(store, clock).load()
        for record in sample_records[3:]:
            cache.add_job(record)
        cache.save()

        stored = store.get_json(stats_key("2025-03"))
        expected = rebuild_from_scratch(StatisticsCache(store, clock).load().load_records_for_month("2025-03"))
        assert stored == expected.to_dict()

    def test_index_resync(self, store, clock, sample_records):
        """An index far smaller than the manifest total is rebuilt from shards."""
        cache = StatisticsCache(store, clock).load()
        for record in sample_records:
            cache.add_job(record)
        cache.save()
        store.put_json(URL_INDEX_KEY, {"urls": []})

        reloaded = StatisticsCache(store, clock).load()

        assert len(reloaded.index) == 5
        assert reloaded.is_duplicate(sample_records[0].url)
        assert store.get_json(URL_INDEX_KEY)["count"] == 5

    def test_record_already_in_shard(self, store, clock, make_record):
        """A record the index missed but the shard has is not stored or counted twice."""
        records = [make_record(n) for n in range(20)]
        cache = StatisticsCache(store, clock).load()
        for record in records:
            cache.add_job(record)
        cache.save()

        doc = store.get_json(URL_INDEX_KEY)
        doc["urls"] = doc["urls"][1:]
        store.put_json(URL_INDEX_KEY, doc)

        cache = StatisticsCache(store, clock).load()
        missed = [r for r in records if not cache.is_duplicate(r.url)]
        assert len(missed) == 1
        assert cache.add_job(missed[0])["inserted"]
        assert cache.save()["saved"] == 0

        assert store.get_json(stats_key("2025-03"))["totalJobs"] == 20
        assert store.get_json(MANIFEST_KEY)["totalRecordsAllTime"] == 20
        assert verify_store(store) == []

    def test_shard_written_before_crash(self, store, clock, make_record):
        """Records from a save that stopped after the shards are counted and indexed on the next save."""
        ShardStore(store).write_day("2025-03-15", [make_record(1)])

        cache = StatisticsCache(store, clock).load()
        assert cache.add_job(make_record(2))["inserted"]
        assert cache.save()["saved"] == 1

        assert store.get_json(MANIFEST_KEY)["totalRecordsAllTime"] == 2
        assert store.get_json(stats_key("2025-03"))["totalJobs"] == 2
        assert store.get_json(URL_INDEX_KEY)["count"] == 2
        assert StatisticsCache(store, clock).load().is_duplicate(make_record(1).url)
        assert verify_store(store) == []

    def test_month_rollover(self, store, clock, make_record):
        """A new month starts with empty current statistics."""
        cache = StatisticsCache(store, clock).load()
        cache.add_job(make_record(1))
        cache.save()

        clock.set(2025, 4, 1, 0, 5)
        cache = StatisticsCache(store, clock).load()
        assert cache.current_month == "2025-04"
        assert cache.get_current_statistics().total_jobs == 0

        cache.add_job(make_record(2, extracted_date="2025-04-01T00:05:00.000Z"))
        cache.save()
        manifest = store.get_json(MANIFEST_KEY)
        assert manifest["currentMonth"] == "2025-04"
        assert manifest["availableMonths"] == ["2025-03", "2025-04"]
        assert manifest["months"]["2025-03"]["totalRecords"] == 1


class TestReads:
    """Test archive, aggregate and record reads."""

    @pytest.fixture
    def filled(self, store, clock, sample_records, make_record):
        cache = StatisticsCache(store, clock).load()
        for record in sample_records:
            cache.add_job(record)
        cache.add_job(_feb(make_record, 10, industry="Health", salary=SalaryData(min=40000, max=40000)))
        cache.add_job(_feb(make_record, 11))
        cache.save()
        return StatisticsCache(store, clock).load()

    def test_archived_month(self, filled):
        """Archive lookup returns statistics and the day index."""
        archive = filled.get_archived_month("2025-02")
        assert archive["totalRecords"] == 2
        assert archive["dayIndex"] == [{"date": "2025-02-10", "recordCount": 2}]
        assert archive["statistics"].total_jobs == 2

    def test_unknown_archive_is_none(self, filled):
        """An unknown month is not an error at this level."""
        assert filled.get_archived_month("2019-01") is None

    def test_aggregate_is_additive(self, filled, store):
        """Merged counts equal the sum of each stored month file."""
        result = filled.get_all_archives_aggregated()
        assert [m["month"] for m in result["perMonth"]] == ["2025-02", "2025-03"]
        assert [m["isCurrent"] for m in result["perMonth"]] == [False, True]
        assert result["totalRecords"] == 7

        merged = result["mergedStatistics"].to_dict()
        for industry in ("Finance", "Health"):
            expected = sum(
                store.get_json(stats_key(month))["byIndustry"].get(industry, 0)
                for month in ("2025-02", "2025-03")
            )
            assert merged["byIndustry"][industry] == expected
        assert merged["salaryStats"]["totalWithSalary"] == 3

    def test_records_for_month_description_window(self, filled):
        """Only the newest days carry descriptions."""
        records = filled.load_records_for_month("2025-03", description_days=1)
        assert len(records) == 5
        newest = [r for r in records if r.day == "2025-03-15"]
        older = [r for r in records if r.day == "2025-03-14"]
        assert records[0].day == "2025-03-15"
        assert all(r.description for r in newest)
        assert all(r.description == "" for r in older)

        full = filled.load_records_for_month("2025-03", description_days=None)
        assert all(r.description for r in full)

    def test_records_for_unknown_month(self, filled):
        """Unknown months have no records."""
        assert filled.load_records_for_month("2020-01") == []

    def test_records_for_range(self, filled):
        """Range reads are inclusive on both ends and span months."""
        records = filled.load_records_for_range("2025-02-10", "2025-03-14")
        assert sorted(r.id for r in records) == ["rec10", "rec11", "rec4", "rec5"]

    def test_job_description(self, filled):
        """A single description is fetched by id and day."""
        assert filled.load_job_description("rec1", "2025-03-15") == "Protect systems for posting 1."
        assert filled.load_job_description("rec1", "2025-03-01") is None
        assert filled.load_job_description("nope", "2025-03-15") is None

    def test_summary(self, filled):
        """Summary reports totals and top values for the current month."""
        summary = filled.get_summary(top_n=3)
        assert summary["totalRecordsAllTime"] == 7
        assert summary["currentMonth"] == "2025-03"
        assert summary["currentMonthRecords"] == 5
        assert summary["availableMonths"] == ["2025-02", "2025-03"]
        assert summary["averagePerMonth"] == 4
        assert summary["topIndustries"] == [{"name": "Finance", "count": 4}]
        assert summary["topKeywords"][0] == {"name": "cloud", "count": 5}
        assert summary["indexedUrls"] == 7
        assert summary["pending"] == 0


class TestLegacyStatistics:
    """Test statistics files written before salary samples were stored."""

    def test_missing_samples_warns(self, store, clock, make_record, monkeypatch):
        """Loading salary totals without samples tells the operator to rebuild."""
        warnings = []
        monkeypatch.setattr(statistics.logger, "warning", lambda message, **ctx: warnings.append((message, ctx)))

        cache = StatisticsCache(store, clock).load()
        cache.add_job(make_record(1))
        cache.save()
        doc = store.get_json(stats_key("2025-03"))
        doc["salaryStats"] = {"totalWithSalary": 4, "averageSalary": 70000}
        store.put_json(stats_key("2025-03"), doc)

        StatisticsCache(store, clock).load()

        assert len(warnings) == 1
        assert "run rebuild" in warnings[0][0]
        assert warnings[0][1] == {"month": "2025-03", "totalWithSalary": 4}

    def test_sampled_file_is_quiet(self, store, clock, make_record, monkeypatch):
        warnings = []
        monkeypatch.setattr(statistics.logger, "warning", lambda message, **ctx: warnings.append(message))

        cache = StatisticsCache(store, clock).load()
        cache.add_job(make_record(1, salary=SalaryData(min=50000, max=60000, currency="GBP")))
        cache.save()
        StatisticsCache(store, clock).load()

        assert warnings == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
