"""
Day shards: one day's postings as two parallel gzip NDJSON files.

Metadata holds everything except the free-text body and is what aggregate
rebuilds read. Descriptions hold ``{id, description}`` and are only joined
in when a caller needs the text.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from .errors import MalformedRecord, PartialShardMismatch
from .logger import get_logger
from .models import DayEntry, PostingRecord
from .store import ObjectStore, descriptions_key, metadata_key, supports_conditional_writes
from .store.base import (
    NDJSON_CONTENT_TYPE,
    SHARD_CACHE_CONTROL,
    decode_ndjson_gz,
    encode_ndjson_gz,
)

logger = get_logger()


def parse_metadata(rows: Iterable[Dict], source: str = "") -> List[PostingRecord]:
    """Build records from metadata rows, skipping rows without a url."""
    records = []
    for row in rows:
        try:
            records.append(PostingRecord.from_dict(row, description=""))
        except MalformedRecord as e:
            logger.warning("Skipping malformed posting", source=source, error=str(e))
            logger.record_malformed()
    return records


class ShardStore:
    """Reads and writes day shards, version-checking writes where supported."""

    def __init__(self, store: ObjectStore):
        self.store = store
        self._versions: Dict[str, Optional[str]] = {}

    def _get(self, key: str) -> List[Dict]:
        if supports_conditional_writes(self.store):
            body, version = self.store.get_bytes_versioned(key)
            self._versions[key] = version
            logger.record_store_read()
            return [] if body is None else decode_ndjson_gz(body, key)
        return self.store.get_ndjson_gz(key)

    def _put(self, key: str, rows: List[Dict]) -> int:
        if not supports_conditional_writes(self.store) or key not in self._versions:
            return self.store.put_ndjson_gz(key, rows)
        body = encode_ndjson_gz(rows)
        self._versions[key] = self.store.put_bytes_if_version(
            key, body, self._versions[key], NDJSON_CONTENT_TYPE, SHARD_CACHE_CONTROL, "gzip"
        )
        logger.record_store_write(len(body))
        return len(body)

    def read_metadata(self, entry: DayEntry) -> List[PostingRecord]:
        """Metadata only; descriptions come back empty."""
        return parse_metadata(self._get(entry.metadata_key), entry.metadata_key)

    def read_descriptions(self, entry: DayEntry) -> Dict[str, str]:
        texts = {}
        for row in self._get(entry.descriptions_key):
            if row.get("id") is None:
                continue
            texts[str(row["id"])] = row.get("description") or ""
        return texts

    def check_pairing(self, entry: DayEntry) -> Optional[PartialShardMismatch]:
        """Compare id sets of both shards; returns the mismatch if any."""
        metadata_ids = {r.id for r in self.read_metadata(entry)}
        description_ids = set(self.read_descriptions(entry))
        if metadata_ids == description_ids:
            return None
        return PartialShardMismatch(
            entry.date,
            missing_descriptions=metadata_ids - description_ids,
            orphan_descriptions=description_ids - metadata_ids,
        )

    def read_day(self, entry: DayEntry) -> List[PostingRecord]:
        """
        Join metadata and description shards by id.

        A metadata record without a description gets empty text and a
        warning; the read itself never fails on a mismatch.
        """
        records = self.read_metadata(entry)
        texts = self.read_descriptions(entry)

        metadata_ids = set()
        for record in records:
            metadata_ids.add(record.id)
            record.description = texts.get(record.id, "")

        missing = metadata_ids - set(texts)
        orphans = set(texts) - metadata_ids
        if missing or orphans:
            mismatch = PartialShardMismatch(entry.date, missing, orphans)
            logger.warning(str(mismatch), date=entry.date)
            logger.record_failure("PartialShardMismatch")
        return records

    def write_day(self, date: str, records: List[PostingRecord]) -> DayEntry:
        """Write both shards for a day and return the fresh DayEntry."""
        entry = DayEntry(
            date=date,
            metadata_key=metadata_key(date),
            descriptions_key=descriptions_key(date),
        )
        entry.metadata_bytes = self._put(entry.metadata_key, [r.to_metadata() for r in records])
        entry.descriptions_bytes = self._put(entry.descriptions_key, [r.to_description() for r in records])
        entry.record_count = len(records)
        logger.debug("Wrote day shards", date=date, records=len(records),
                     metadata_bytes=entry.metadata_bytes, descriptions_bytes=entry.descriptions_bytes)
        return entry

    def append_day(
        self,
        date: str,
        new_records: List[PostingRecord],
        existing: Optional[DayEntry] = None,
    ) -> Tuple[DayEntry, List[PostingRecord], List[PostingRecord]]:
        """
        Merge new records into a day's existing shards by URL and rewrite.

        Returns the new DayEntry, the records that were actually added
        (records whose URL is already in the day are dropped) and the
        records the shard already held. The latter can outnumber
        ``existing.record_count`` when an earlier save wrote the shard but
        never reached the manifest.
        """
        if existing is None:
            existing_keys = DayEntry(date, metadata_key(date), descriptions_key(date))
            current = self.read_day(existing_keys)
        else:
            current = self.read_day(existing)
        seen = {r.dedup_key for r in current}
        added = []
        for record in new_records:
            if record.dedup_key in seen:
                continue
            seen.add(record.dedup_key)
            added.append(record)
        if existing and not added and len(current) == existing.record_count:
            return existing, [], current
        return self.write_day(date, current + added), added, current

    def delete_day(self, entry: DayEntry):
        self.store.delete(entry.metadata_key)
        self.store.delete(entry.descriptions_key)
        self._versions.pop(entry.metadata_key, None)
        self._versions.pop(entry.descriptions_key, None)
