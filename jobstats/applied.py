"""
Applied-jobs store: one record per clicked posting.

Clicks are deduplicated on job id (a hash of the canonical posting URL),
kept in monthly shards ``applied/YYYY-MM.ndjson.gz`` sorted newest first,
and counted in ``applied/manifest.json``.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .dedup import DedupIndex
from .errors import MalformedRecord, StorageUnavailable
from .logger import get_logger
from .models import AppliedJob
from .normalize import epoch_millis, iso_timestamp, job_id, month_key, normalize_city, utcnow
from .schema import validate_application
from .store import APPLIED_INDEX_KEY, APPLIED_MANIFEST_KEY, ObjectStore, VersionedDocument, applied_shard_key

logger = get_logger()

APPLIED_MANIFEST_VERSION = 1

# (raw location, url) -> {"country", "city", "region"}
LocationExtractor = Callable[[str, str], Optional[Dict[str, Optional[str]]]]


def deduplicate_applications(applications: List[AppliedJob]) -> List[AppliedJob]:
    """Keep the earliest application per job id, newest first."""
    earliest: Dict[str, AppliedJob] = {}
    for app in applications:
        kept = earliest.get(app.job_id)
        if kept is None or app.applied_at < kept.applied_at:
            earliest[app.job_id] = app
    return sorted(earliest.values(), key=lambda a: (a.applied_at, a.id), reverse=True)


class AppliedJobsStore:

    def __init__(
        self,
        store: ObjectStore,
        clock: Callable[[], datetime] = utcnow,
        locator: Optional[LocationExtractor] = None,
    ):
        self.store = store
        self.clock = clock
        self.locator = locator
        self.index = DedupIndex(store, APPLIED_INDEX_KEY, clock)
        self.manifest: Dict[str, Any] = self._empty_manifest()
        self.pending: List[AppliedJob] = []
        self.loaded = False
        self._doc = VersionedDocument(store, APPLIED_MANIFEST_KEY)

    def _empty_manifest(self) -> Dict[str, Any]:
        return {
            "version": APPLIED_MANIFEST_VERSION,
            "updatedAt": iso_timestamp(self.clock()),
            "totalApplications": 0,
            "applicationsByMonth": {},
        }

    def _require_store(self):
        if not self.store.is_available():
            raise StorageUnavailable("Object storage is not configured")

    def load(self) -> "AppliedJobsStore":
        self._require_store()
        data = self._doc.read()
        self.manifest = data if isinstance(data, dict) else self._empty_manifest()
        self.manifest.setdefault("applicationsByMonth", {})

        self.index.load()
        if not self.index.existed and self.manifest["applicationsByMonth"]:
            # index predates this store layout; derive it from the shards
            for app in self._read_all():
                self.index.add(app.job_id)
            logger.info("Rebuilt applied job index", count=len(self.index))

        self.loaded = True
        logger.info("Applied jobs loaded", total=self.manifest.get("totalApplications", 0))
        return self

    def _require_loaded(self):
        if not self.loaded:
            self.load()

    def _read_month(self, month: str) -> List[AppliedJob]:
        apps = []
        for row in self.store.get_ndjson_gz(applied_shard_key(month)):
            try:
                apps.append(AppliedJob.from_dict(row))
            except MalformedRecord as e:
                logger.warning("Skipping malformed application", month=month, error=str(e))
                logger.record_malformed()
        return apps

    def _read_all(self) -> List[AppliedJob]:
        apps = []
        for month in sorted(self.manifest["applicationsByMonth"]):
            apps.extend(self._read_month(month))
        return apps

    def has_applied(self, url: str) -> bool:
        self._require_loaded()
        return self.index.has(job_id(url))

    def add_application(self, event: Dict[str, Any], autosave: bool = True) -> Optional[AppliedJob]:
        """
        Record a click. Returns None when this posting was already recorded.

        Raises:
            MalformedRecord: the event has no valid jobUrl
        """
        errors = validate_application(event)
        if errors:
            raise MalformedRecord("Invalid application event", errors)
        self._require_loaded()

        url = event["jobUrl"].strip()
        jid = job_id(url)
        if not self.index.add(jid):
            logger.info("Already applied to job", title=event.get("title"), job_id=jid)
            return None

        now = self.clock()
        location = event.get("location") or ""
        found = self.locator(location, url) if self.locator else None
        found = found or {}

        app = AppliedJob(
            id=f"{jid}-{epoch_millis(now)}",
            job_id=jid,
            applied_at=iso_timestamp(now),
            job_title=event.get("title") or "",
            company=event.get("company") or "",
            location=location,
            original_url=url,
            posted_date=event.get("postedDate") or "",
            city=normalize_city(found.get("city") or event.get("city")),
            country=found.get("country") or event.get("country"),
            region=found.get("region") or event.get("region"),
            role_type=event.get("roleType"),
            industry=event.get("industry"),
        )
        self.pending.append(app)
        logger.info("Added application", title=app.job_title, company=app.company)
        if autosave:
            self.save()
        return app

    def save(self) -> int:
        """Merge pending applications into their month shards."""
        self._require_store()
        if not self.pending:
            return 0

        by_month: Dict[str, List[AppliedJob]] = {}
        for app in self.pending:
            by_month.setdefault(month_key(app.applied_at), []).append(app)

        counts = self.manifest["applicationsByMonth"]
        for month, apps in sorted(by_month.items()):
            merged = deduplicate_applications(self._read_month(month) + apps)
            self.store.put_ndjson_gz(applied_shard_key(month), [a.to_dict() for a in merged])
            counts[month] = len(merged)

        self.manifest["totalApplications"] = sum(counts.values())
        self.manifest["updatedAt"] = iso_timestamp(self.clock())
        self.manifest["version"] = APPLIED_MANIFEST_VERSION
        self._doc.write(self.manifest)
        self.index.save()

        saved = len(self.pending)
        self.pending = []
        logger.info("Saved applications", saved=saved, total=self.manifest["totalApplications"])
        return saved

    def get_applications(self, month: Optional[str] = None) -> List[AppliedJob]:
        """Stored and pending applications, newest first."""
        self._require_loaded()
        if month:
            apps = self._read_month(month) if month in self.manifest["applicationsByMonth"] else []
            apps += [a for a in self.pending if a.applied_at.startswith(month)]
        else:
            apps = self._read_all() + self.pending
        return deduplicate_applications(apps)

    def get_stats(self) -> Dict[str, Any]:
        self._require_loaded()
        return {
            "totalApplications": self.manifest.get("totalApplications", 0) + len(self.pending),
            "byMonth": dict(sorted(self.manifest["applicationsByMonth"].items())),
            "lastUpdated": self.manifest.get("updatedAt"),
        }

    def clear_all(self) -> Dict[str, Any]:
        """Delete every month shard, reset the manifest and forget clicked ids."""
        self._require_store()
        self._require_loaded()

        deleted_months = []
        total_deleted = 0
        for month, count in sorted(self.manifest["applicationsByMonth"].items()):
            self.store.delete(applied_shard_key(month))
            deleted_months.append(month)
            total_deleted += count

        self.pending = []
        self.manifest = self._empty_manifest()
        self._doc.write(self.manifest)
        self.index.clear_all()

        logger.info("Cleared applied jobs", months=len(deleted_months), deleted=total_deleted)
        return {"deletedMonths": deleted_months, "totalDeleted": total_deleted}

    def normalize_locations(self) -> Dict[str, int]:
        """Re-run city normalization (and the locator, if any) over stored clicks."""
        self._require_loaded()
        updated = 0
        total = 0
        for month in sorted(self.manifest["applicationsByMonth"]):
            apps = self._read_month(month)
            changed = False
            for app in apps:
                total += 1
                found = (self.locator(app.location, app.original_url) if self.locator else None) or {}
                city = normalize_city(found.get("city") or app.city)
                country = found.get("country") or app.country
                region = found.get("region") or app.region
                if (city, country, region) != (app.city, app.country, app.region):
                    app.city, app.country, app.region = city, country, region
                    updated += 1
                    changed = True
            if changed:
                self.store.put_ndjson_gz(applied_shard_key(month), [a.to_dict() for a in apps])
        logger.info("Normalized application locations", updated=updated, total=total)
        return {"updated": updated, "total": total}
