"""
Object store interface.

Every persistent document lives behind a string key. Backends only implement
the byte-level primitives; JSON documents and gzip NDJSON shards are encoded
here so every backend produces identical bytes.
"""

import gzip
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import MalformedRecord
from ..logger import get_logger

logger = get_logger()

JSON_CONTENT_TYPE = "application/json"
NDJSON_CONTENT_TYPE = "application/x-ndjson"

# Small mutable documents (manifest, indexes, statistics)
JSON_CACHE_CONTROL = "public, max-age=60"
# Day shards are never rewritten except by rebuild
SHARD_CACHE_CONTROL = "public, max-age=31536000, immutable"


def encode_json(value: Any) -> bytes:
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8")


def decode_json(body: bytes, key: str = "") -> Any:
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedRecord(f"Object {key} is not valid JSON: {e}")


def encode_ndjson_gz(records: Iterable[Dict[str, Any]]) -> bytes:
    """
    One JSON object per line, gzip-compressed.

    mtime is pinned so identical records always compress to identical bytes.
    """
    text = "\n".join(json.dumps(r, sort_keys=True, ensure_ascii=False) for r in records)
    return gzip.compress(text.encode("utf-8"), mtime=0)


def decode_ndjson_gz(body: bytes, key: str = "") -> List[Dict[str, Any]]:
    """
    Decode a gzip NDJSON shard. Unparseable lines are skipped with a warning.

    Raises:
        MalformedRecord: the body is not gzip data at all
    """
    try:
        text = gzip.decompress(body).decode("utf-8")
    except (OSError, EOFError, UnicodeDecodeError) as e:
        raise MalformedRecord(f"Shard {key} is not valid gzip text: {e}")

    records = []
    for line_no, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Skipping malformed shard line", key=key, line=line_no, error=str(e))
            logger.record_malformed()
            continue
        if not isinstance(record, dict):
            logger.warning("Skipping non-object shard line", key=key, line=line_no)
            logger.record_malformed()
            continue
        records.append(record)
    return records


class ObjectStore(ABC):
    """Key-value blob store."""

    public_base_url: Optional[str] = None

    @abstractmethod
    def is_available(self) -> bool:
        """True when the backend is configured and can be used."""

    @abstractmethod
    def get_bytes(self, key: str) -> Optional[bytes]:
        """Return the object body, or None when the key does not exist."""

    @abstractmethod
    def put_bytes(
        self,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        content_encoding: Optional[str] = None,
    ) -> None:
        """Write an object, replacing any previous body."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Missing keys are not an error."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        """All keys starting with prefix, sorted."""

    def exists(self, key: str) -> bool:
        return self.get_bytes(key) is not None

    def public_url(self, key: str) -> Optional[str]:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url.rstrip('/')}/{key}"

    # Codec helpers

    def get_json(self, key: str) -> Optional[Any]:
        body = self.get_bytes(key)
        logger.record_store_read()
        if body is None:
            return None
        return decode_json(body, key)

    def put_json(self, key: str, value: Any) -> int:
        body = encode_json(value)
        self.put_bytes(key, body, JSON_CONTENT_TYPE, JSON_CACHE_CONTROL)
        logger.record_store_write(len(body))
        return len(body)

    def get_ndjson_gz(self, key: str) -> List[Dict[str, Any]]:
        body = self.get_bytes(key)
        logger.record_store_read()
        if body is None:
            return []
        return decode_ndjson_gz(body, key)

    def put_ndjson_gz(self, key: str, records: Iterable[Dict[str, Any]]) -> int:
        """Write records as a gzip NDJSON shard; returns compressed size."""
        body = encode_ndjson_gz(records)
        self.put_bytes(key, body, NDJSON_CONTENT_TYPE, SHARD_CACHE_CONTROL, "gzip")
        logger.record_store_write(len(body))
        return len(body)


class ConditionalStore(ABC):
    """
    Compare-and-swap capability.

    Backends mixing this in let writers detect that a document changed
    between their read and their write. A version of None means "the key
    must not exist yet".
    """

    @abstractmethod
    def get_bytes_versioned(self, key: str) -> Tuple[Optional[bytes], Optional[str]]:
        """Return (body, version); (None, None) when the key is missing."""

    @abstractmethod
    def put_bytes_if_version(
        self,
        key: str,
        body: bytes,
        expected_version: Optional[str],
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        content_encoding: Optional[str] = None,
    ) -> str:
        """
        Write only if the stored version still equals expected_version.

        Returns:
            The new version tag

        Raises:
            ConcurrentModification: the object changed since it was read
        """


def supports_conditional_writes(store: ObjectStore) -> bool:
    return isinstance(store, ConditionalStore)


class VersionedDocument:
    """
    Read-modify-write helper for a single JSON document.

    Remembers the version seen at read time and, on conditional backends,
    refuses to overwrite a newer version. Plain backends get last-writer-wins.
    """

    def __init__(self, store: ObjectStore, key: str):
        self.store = store
        self.key = key
        self.version: Optional[str] = None
        self._read = False

    def read(self) -> Optional[Any]:
        self._read = True
        if supports_conditional_writes(self.store):
            body, self.version = self.store.get_bytes_versioned(self.key)
            logger.record_store_read()
            return None if body is None else decode_json(body, self.key)
        return self.store.get_json(self.key)

    def write(self, value: Any) -> int:
        if not (self._read and supports_conditional_writes(self.store)):
            return self.store.put_json(self.key, value)
        body = encode_json(value)
        self.version = self.store.put_bytes_if_version(
            self.key, body, self.version, JSON_CONTENT_TYPE, JSON_CACHE_CONTROL
        )
        logger.record_store_write(len(body))
        return len(body)
