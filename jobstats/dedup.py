"""
Persistent URL sets used to keep postings and clicks unique.

DedupIndex is the permanent set (posting URLs, clicked job ids).
ExpiringUrlIndex is the scrape-time cache whose entries age out after a
fixed horizon so recently seen feed items are not fetched twice.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .errors import MalformedRecord
from .logger import get_logger
from .normalize import iso_timestamp, normalize_url, parse_timestamp, utcnow
from .store import URL_INDEX_KEY, ObjectStore, VersionedDocument, url_cache_key

logger = get_logger()

EXPIRING_INDEX_VERSION = "2.0.0"


class DedupIndex:
    """
    Set of normalized identifiers persisted as one JSON document.

    Membership is case-insensitive and whitespace-trimmed. The document is
    ``{urls, count, updatedAt, clearedAt?}`` with urls sorted; the field is
    named urls even when the index holds job ids.
    """

    def __init__(
        self,
        store: ObjectStore,
        key: str = URL_INDEX_KEY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.key = key
        self.clock = clock
        self.identifiers: Set[str] = set()
        self.updated_at: Optional[str] = None
        self.cleared_at: Optional[str] = None
        self.loaded = False
        self.existed = False
        self._doc = VersionedDocument(store, key)

    def __len__(self) -> int:
        return len(self.identifiers)

    def __contains__(self, identifier: str) -> bool:
        return self.has(identifier)

    @property
    def size(self) -> int:
        return len(self.identifiers)

    def load(self) -> "DedupIndex":
        data = self._doc.read()
        self.loaded = True
        self.existed = data is not None
        if data is None:
            self.identifiers = set()
            return self
        if not isinstance(data, dict):
            raise MalformedRecord(f"Dedup index {self.key} is not an object")

        # documents from an interim format used "identifiers"
        values = data.get("urls", data.get("identifiers")) or []
        self.identifiers = {normalize_url(v) for v in values if isinstance(v, str) and v.strip()}
        self.updated_at = data.get("updatedAt")
        self.cleared_at = data.get("clearedAt")
        logger.debug("Loaded dedup index", key=self.key, count=len(self.identifiers))
        return self

    def has(self, identifier: str) -> bool:
        return normalize_url(identifier) in self.identifiers

    def add(self, identifier: str) -> bool:
        """Add an identifier; returns False when it was already present."""
        normalized = normalize_url(identifier)
        if not normalized or normalized in self.identifiers:
            return False
        self.identifiers.add(normalized)
        return True

    def replace(self, identifiers: Iterable[str]):
        """Swap the whole set, e.g. after rebuilding it from shards."""
        self.identifiers = {normalize_url(v) for v in identifiers if v and v.strip()}

    def to_dict(self) -> Dict:
        doc = {
            "urls": sorted(self.identifiers),
            "count": len(self.identifiers),
            "updatedAt": self.updated_at,
        }
        if self.cleared_at:
            doc["clearedAt"] = self.cleared_at
        return doc

    def save(self):
        self.updated_at = iso_timestamp(self.clock())
        self._doc.write(self.to_dict())
        logger.debug("Saved dedup index", key=self.key, count=len(self.identifiers))

    def clear_all(self) -> Dict:
        """Empty the index and persist the empty set."""
        previous = len(self.identifiers)
        self.identifiers = set()
        self.cleared_at = iso_timestamp(self.clock())
        self.save()
        logger.info("Cleared dedup index", key=self.key, previous_count=previous)
        return {"deletedCount": previous, "clearedAt": self.cleared_at}

    def status(self, sample_size: int = 10) -> Dict:
        return {
            "count": len(self.identifiers),
            "updatedAt": self.updated_at,
            "clearedAt": self.cleared_at,
            "sample": sorted(self.identifiers)[:sample_size],
        }


class ExpiringUrlIndex:
    """
    Scrape-time URL cache with a rolling expiry horizon.

    Each URL carries a reference timestamp: its posted time when known,
    otherwise the time it was added. Entries older than the horizon are
    evicted on load (which re-saves when anything was evicted), on save,
    and lazily on lookup.
    """

    def __init__(
        self,
        store: ObjectStore,
        name: str = "scrape",
        horizon_hours: int = 48,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.key = url_cache_key(name)
        self.horizon = timedelta(hours=horizon_hours)
        self.clock = clock
        self.entries: Dict[str, datetime] = {}
        self.evicted_count = 0
        self.last_updated: Optional[str] = None
        self._doc = VersionedDocument(store, self.key)

    def __len__(self) -> int:
        return len(self.entries)

    def _cutoff(self) -> datetime:
        return self.clock() - self.horizon

    def _evict(self) -> int:
        cutoff = self._cutoff()
        expired = [url for url, ts in self.entries.items() if ts < cutoff]
        for url in expired:
            del self.entries[url]
        self.evicted_count += len(expired)
        return len(expired)

    def load(self) -> "ExpiringUrlIndex":
        data = self._doc.read()
        self.entries = {}
        self.evicted_count = 0
        if data is None:
            return self
        if not isinstance(data, dict):
            raise MalformedRecord(f"URL cache {self.key} is not an object")

        for entry in data.get("entries") or []:
            if not isinstance(entry, dict) or not entry.get("url"):
                continue
            ts = parse_timestamp(entry.get("timestamp"))
            if ts is None:
                continue
            url = normalize_url(entry["url"])
            if url not in self.entries or ts > self.entries[url]:
                self.entries[url] = ts
        self.last_updated = data.get("lastUpdated")

        if self._evict():
            logger.info("Evicted expired cache entries", key=self.key, evicted=self.evicted_count)
            self.save()
        return self

    def has(self, url: str) -> bool:
        normalized = normalize_url(url)
        ts = self.entries.get(normalized)
        if ts is None:
            return False
        if ts < self._cutoff():
            del self.entries[normalized]
            self.evicted_count += 1
            return False
        return True

    def add(self, url: str, posted_at=None) -> bool:
        """Remember a URL; returns False when it is already cached and live."""
        if self.has(url):
            return False
        ts = parse_timestamp(posted_at) or self.clock()
        self.entries[normalize_url(url)] = ts
        return True

    def filter_new(self, urls: Iterable[str]) -> Tuple[List[str], List[str]]:
        """Split urls into (not yet cached, already cached)."""
        new_urls: List[str] = []
        seen: List[str] = []
        for url in urls:
            (seen if self.has(url) else new_urls).append(url)
        return new_urls, seen

    def to_dict(self) -> Dict:
        entries = [
            {"url": url, "timestamp": iso_timestamp(ts)}
            for url, ts in sorted(self.entries.items())
        ]
        return {
            "entries": entries,
            "lastUpdated": self.last_updated,
            "metadata": {
                "totalUrlsCached": len(entries),
                "version": EXPIRING_INDEX_VERSION,
            },
        }

    def save(self):
        self._evict()
        self.last_updated = iso_timestamp(self.clock())
        self._doc.write(self.to_dict())

    def clear(self):
        self.entries = {}
        self.save()
