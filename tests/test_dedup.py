"""
Tests for the permanent URL index and the expiring scrape cache.
"""

import pytest

from jobstats.dedup import DedupIndex, ExpiringUrlIndex
from jobstats.errors import MalformedRecord
from jobstats.store import URL_INDEX_KEY, url_cache_key


class TestDedupIndex:
    """Test the persisted URL set."""

    def test_missing_document_loads_empty(self, store, clock):
        """A fresh store has an empty index."""
        index = DedupIndex(store, URL_INDEX_KEY, clock).load()
        assert len(index) == 0
        assert not index.existed

    def test_add_is_case_and_whitespace_insensitive(self, store, clock):
        """The same URL in different case is one identifier."""
        index = DedupIndex(store, URL_INDEX_KEY, clock).load()
        assert index.add("https://Jobs.Example.com/A")
        assert not index.add("  https://jobs.example.com/a ")
        assert index.has("HTTPS://JOBS.EXAMPLE.COM/A")
        assert len(index) == 1

    def test_blank_identifier_not_added(self, store, clock):
        """Empty identifiers are ignored."""
        index = DedupIndex(store, URL_INDEX_KEY, clock).load()
        assert not index.add("   ")
        assert len(index) == 0

    def test_save_and_reload(self, store, clock):
        """Saved identifiers survive a reload, sorted with a count."""
        index = DedupIndex(store, URL_INDEX_KEY, clock).load()
        index.add("https://b.example.com/2")
        index.add("https://a.example.com/1")
        index.save()

        doc = store.get_json(URL_INDEX_KEY)
        assert doc["urls"] == ["https://a.example.com/1", "https://b.example.com/2"]
        assert "identifiers" not in doc
        assert doc["count"] == 2
        assert doc["updatedAt"] == "2025-03-15T12:00:00.000Z"

        reloaded = DedupIndex(store, URL_INDEX_KEY, clock).load()
        assert reloaded.existed
        assert reloaded.has("https://a.example.com/1")

    def test_interim_identifiers_key(self, store, clock):
        """Documents that stored the set under identifiers still load."""
        store.put_json(URL_INDEX_KEY, {"identifiers": ["HTTPS://OLD.EXAMPLE.COM/1"]})
        index = DedupIndex(store, URL_INDEX_KEY, clock).load()
        assert index.has("https://old.example.com/1")

    def test_not_an_object(self, store, clock):
        """A list document is malformed."""
        store.put_json(URL_INDEX_KEY, ["https://a"])
        with pytest.raises(MalformedRecord):
            DedupIndex(store, URL_INDEX_KEY, clock).load()

    def test_clear_all(self, store, clock):
        """Clearing persists an empty set and reports how many were removed."""
        index = DedupIndex(store, URL_INDEX_KEY, clock).load()
        index.add("https://a.example.com/1")
        index.add("https://a.example.com/2")
        index.save()

        result = index.clear_all()

        assert result == {"deletedCount": 2, "clearedAt": "2025-03-15T12:00:00.000Z"}
        doc = store.get_json(URL_INDEX_KEY)
        assert doc["urls"] == []
        assert doc["clearedAt"] == "2025-03-15T12:00:00.000Z"
        assert not DedupIndex(store, URL_INDEX_KEY, clock).load().has("https://a.example.com/1")

    def test_status_sample(self, store, clock):
        """Status reports the count and a sorted sample."""
        index = DedupIndex(store, URL_INDEX_KEY, clock).load()
        for n in range(15):
            index.add(f"https://a.example.com/{n:02d}")
        status = index.status(sample_size=3)
        assert status["count"] == 15
        assert status["sample"] == [
            "https://a.example.com/00",
            "https://a.example.com/01",
            "https://a.example.com/02",
        ]


class TestExpiringUrlIndex:
    """Test the 48 hour scrape cache."""

    def test_add_and_has(self, store, clock):
        """A just-added URL is cached."""
        cache = ExpiringUrlIndex(store, clock=clock).load()
        assert cache.add("https://feed.example.com/1")
        assert not cache.add("https://FEED.example.com/1")
        assert cache.has("https://feed.example.com/1")

    def test_posted_time_is_the_reference(self, store, clock):
        """A URL posted three days ago is already outside the horizon."""
        cache = ExpiringUrlIndex(store, clock=clock).load()
        cache.add("https://feed.example.com/old", posted_at="2025-03-12T11:00:00Z")
        assert not cache.has("https://feed.example.com/old")
        assert cache.evicted_count == 1

    def test_expiry_after_horizon(self, store, clock):
        """Entries age out once the clock passes the horizon."""
        cache = ExpiringUrlIndex(store, horizon_hours=48, clock=clock).load()
        cache.add("https://feed.example.com/1")
        clock.advance(hours=47)
        assert cache.has("https://feed.example.com/1")
        clock.advance(hours=2)
        assert not cache.has("https://feed.example.com/1")

    def test_load_evicts_and_resaves(self, store, clock):
        """Expired entries are dropped on load and the document is rewritten."""
        cache = ExpiringUrlIndex(store, clock=clock).load()
        cache.add("https://feed.example.com/1")
        clock.advance(hours=24)
        cache.add("https://feed.example.com/2")
        cache.save()

        clock.advance(hours=30)
        reloaded = ExpiringUrlIndex(store, clock=clock).load()

        assert reloaded.evicted_count == 1
        assert not reloaded.has("https://feed.example.com/1")
        assert reloaded.has("https://feed.example.com/2")
        doc = store.get_json(url_cache_key("scrape"))
        assert [e["url"] for e in doc["entries"]] == ["https://feed.example.com/2"]
        assert doc["metadata"] == {"totalUrlsCached": 1, "version": "2.0.0"}

    def test_filter_new(self, store, clock):
        """filter_new splits uncached from cached URLs, keeping input order."""
        cache = ExpiringUrlIndex(store, clock=clock).load()
        cache.add("https://feed.example.com/2")
        new_urls, seen = cache.filter_new([
            "https://feed.example.com/3",
            "https://feed.example.com/2",
            "https://feed.example.com/1",
        ])
        assert new_urls == ["https://feed.example.com/3", "https://feed.example.com/1"]
        assert seen == ["https://feed.example.com/2"]

    def test_skips_bad_entries(self, store, clock):
        """Entries without url or a parseable timestamp are ignored."""
        store.put_json(url_cache_key("scrape"), {"entries": [
            {"url": "https://feed.example.com/1", "timestamp": "2025-03-15T10:00:00Z"},
            {"url": "https://feed.example.com/2", "timestamp": "yesterday-ish"},
            {"timestamp": "2025-03-15T10:00:00Z"},
            "junk",
        ]})
        cache = ExpiringUrlIndex(store, clock=clock).load()
        assert len(cache) == 1

    def test_clear(self, store, clock):
        """clear persists an empty cache."""
        cache = ExpiringUrlIndex(store, clock=clock).load()
        cache.add("https://feed.example.com/1")
        cache.clear()
        assert store.get_json(url_cache_key("scrape"))["entries"] == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
