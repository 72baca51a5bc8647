"""
Operation layer: every public operation returns a structured envelope.

Envelope: ``{"success", "status", "message", ...payload}``. Status 200 on
success, 400 for a malformed request, 404 for a missing named object,
409 when a conditional write lost a race, 503 when storage is unavailable
and 500 for anything else. Failures always carry the error text.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .applied import AppliedJobsStore
from .consistency import verify_store
from .dedup import DedupIndex, ExpiringUrlIndex
from .errors import ArchiveNotFound, ConcurrentModification, MalformedRecord, NotFound, StorageUnavailable
from .ingest import Classifier, ingest_postings
from .logger import get_logger
from .normalize import utcnow
from .rebuild import Reextractors, rebuild
from .statistics import StatisticsCache
from .store import URL_INDEX_KEY, ObjectStore

logger = get_logger()


def envelope(action: str, operation: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    """Run an operation and wrap its result or failure."""
    try:
        payload = operation() or {}
    except StorageUnavailable as e:
        logger.error(f"{action} failed: storage unavailable", error=str(e))
        return {"success": False, "status": 503, "message": f"Storage unavailable: {e}"}
    except NotFound as e:
        return {"success": False, "status": 404, "message": str(e)}
    except ConcurrentModification as e:
        logger.error(f"{action} lost a concurrent update", error=str(e))
        return {"success": False, "status": 409, "message": str(e)}
    except MalformedRecord as e:
        return {"success": False, "status": 400, "message": str(e), "errors": e.errors}
    except Exception as e:
        logger.error(f"{action} failed", error=str(e), error_type=type(e).__name__)
        logger.record_failure(type(e).__name__)
        return {"success": False, "status": 500, "message": f"{action} failed: {e}"}

    message = payload.pop("message", f"{action} completed")
    return {"success": True, "status": 200, "message": message, **payload}


def extract_and_save(
    store: ObjectStore,
    postings: Iterable[Dict[str, Any]],
    classify: Optional[Classifier] = None,
    scrape_cache_hours: Optional[int] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Dict[str, Any]:
    def run():
        cache = StatisticsCache(store, clock).load()
        scrape_cache = None
        if scrape_cache_hours:
            scrape_cache = ExpiringUrlIndex(store, horizon_hours=scrape_cache_hours, clock=clock).load()
        counts = ingest_postings(cache, postings, classify, scrape_cache)
        counts["message"] = f"Stored {counts['inserted']} new postings ({counts['duplicates']} duplicates)"
        counts["totalRecordsAllTime"] = cache.manifest.total_records_all_time
        return counts
    return envelope("Extract and save", run)


def rebuild_statistics(
    store: ObjectStore,
    months: Optional[List[str]] = None,
    extractors: Optional[Reextractors] = None,
    deduplicate: bool = True,
    clock: Callable[[], datetime] = utcnow,
) -> Dict[str, Any]:
    def run():
        report = rebuild(store, months, extractors, deduplicate, clock).to_dict()
        report["message"] = f"Rebuilt {len(report['months'])} months"
        return report
    return envelope("Rebuild", run)


def clear_index(store: ObjectStore, clock: Callable[[], datetime] = utcnow) -> Dict[str, Any]:
    def run():
        if not store.is_available():
            raise StorageUnavailable("Object storage is not configured")
        result = DedupIndex(store, URL_INDEX_KEY, clock).load().clear_all()
        result["message"] = f"Cleared {result['deletedCount']} URLs from index"
        return result
    return envelope("Clear index", run)


def index_status(store: ObjectStore) -> Dict[str, Any]:
    def run():
        if not store.is_available():
            raise StorageUnavailable("Object storage is not configured")
        return DedupIndex(store, URL_INDEX_KEY).load().status()
    return envelope("Index status", run)


def get_statistics(store: ObjectStore, clock: Callable[[], datetime] = utcnow) -> Dict[str, Any]:
    def run():
        cache = StatisticsCache(store, clock).load()
        return {
            "summary": cache.get_summary(),
            "statistics": cache.get_current_statistics().to_dict(),
        }
    return envelope("Statistics", run)


def get_archive(store: ObjectStore, month: str, clock: Callable[[], datetime] = utcnow) -> Dict[str, Any]:
    def run():
        archive = StatisticsCache(store, clock).load().get_archived_month(month)
        if archive is None:
            raise ArchiveNotFound(month)
        archive["statistics"] = archive["statistics"].to_dict()
        return archive
    return envelope("Archive", run)


def get_aggregate(store: ObjectStore, clock: Callable[[], datetime] = utcnow) -> Dict[str, Any]:
    def run():
        result = StatisticsCache(store, clock).load().get_all_archives_aggregated()
        return {
            "perMonth": [
                {**m, "statistics": m["statistics"].to_dict()} for m in result["perMonth"]
            ],
            "mergedStatistics": result["mergedStatistics"].to_dict(),
            "totalRecords": result["totalRecords"],
        }
    return envelope("Aggregate", run)


def track_application(store: ObjectStore, event: Dict[str, Any], clock: Callable[[], datetime] = utcnow) -> Dict[str, Any]:
    def run():
        app = AppliedJobsStore(store, clock).add_application(event)
        if app is None:
            return {"message": "Already tracked", "tracked": False}
        return {"message": "Application tracked", "tracked": True, "application": app.to_dict()}
    return envelope("Track application", run)


def list_applications(store: ObjectStore, month: Optional[str] = None) -> Dict[str, Any]:
    def run():
        apps = AppliedJobsStore(store).get_applications(month)
        return {"applications": [a.to_dict() for a in apps], "count": len(apps)}
    return envelope("List applications", run)


def applied_stats(store: ObjectStore) -> Dict[str, Any]:
    return envelope("Applied stats", lambda: AppliedJobsStore(store).get_stats())


def clear_applications(store: ObjectStore) -> Dict[str, Any]:
    def run():
        result = AppliedJobsStore(store).clear_all()
        result["message"] = f"Deleted {result['totalDeleted']} applications"
        return result
    return envelope("Clear applications", run)


def verify(store: ObjectStore) -> Dict[str, Any]:
    def run():
        if not store.is_available():
            raise StorageUnavailable("Object storage is not configured")
        problems = verify_store(store)
        return {
            "message": "Store is consistent" if not problems else f"{len(problems)} problems found",
            "consistent": not problems,
            "problems": problems,
        }
    return envelope("Verify", run)
