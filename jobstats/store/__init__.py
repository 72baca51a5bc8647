"""
Object store backends and key layout.
"""

from ..config import Settings
from .base import (
    ConditionalStore,
    ObjectStore,
    VersionedDocument,
    supports_conditional_writes,
)
from .local import LocalObjectStore
from .s3 import S3ObjectStore
from .sql import SqlObjectStore

MANIFEST_KEY = "manifest.json"
URL_INDEX_KEY = "url-index.json"
APPLIED_MANIFEST_KEY = "applied/manifest.json"
APPLIED_INDEX_KEY = "applied/job-index.json"


def stats_key(month: str) -> str:
    return f"stats/{month}.json"


def metadata_key(date: str) -> str:
    year, month, day = date.split("-")
    return f"metadata/{year}/{month}/day-{day}.ndjson.gz"


def descriptions_key(date: str) -> str:
    year, month, day = date.split("-")
    return f"descriptions/{year}/{month}/day-{day}.ndjson.gz"


def url_cache_key(name: str) -> str:
    return f"url-cache/{name}.json"


def applied_shard_key(month: str) -> str:
    return f"applied/{month}.ndjson.gz"


def open_store(settings: Settings) -> ObjectStore:
    """Instantiate the backend selected by settings.backend."""
    if settings.backend in ("r2", "s3"):
        return S3ObjectStore.from_settings(settings)
    if settings.backend == "sqlite":
        return SqlObjectStore(settings.db_path)
    if settings.backend == "local":
        return LocalObjectStore(settings.data_dir, settings.r2_public_url)
    raise ValueError(f"Unknown backend {settings.backend!r}")


__all__ = [
    "ConditionalStore",
    "LocalObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "SqlObjectStore",
    "VersionedDocument",
    "open_store",
    "supports_conditional_writes",
    "MANIFEST_KEY",
    "URL_INDEX_KEY",
    "APPLIED_MANIFEST_KEY",
    "APPLIED_INDEX_KEY",
    "stats_key",
    "metadata_key",
    "descriptions_key",
    "url_cache_key",
    "applied_shard_key",
]
