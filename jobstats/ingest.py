"""
Turn raw feed postings into stored PostingRecords.

Classification (salary, location, industry, role...) is done by an external
collaborator passed in as ``classify``; this module only validates, cleans,
assembles the record and hands it to the statistics cache. A bad posting is
logged and skipped, it never aborts the batch.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from .dedup import ExpiringUrlIndex
from .errors import MalformedRecord
from .logger import get_logger
from .models import PostingRecord, SalaryData
from .normalize import iso_timestamp, parse_timestamp, posting_id
from .schema import validate_posting
from .statistics import StatisticsCache

logger = get_logger()

# (title, description, url, location) -> classification fields
Classifier = Callable[[str, str, str, str], Dict[str, Any]]

# feed item key -> posting field
FEED_ALIASES = {"link": "url", "pubDate": "postedDate"}

PASSTHROUGH_FIELDS = (
    "salary",
    "country",
    "city",
    "region",
    "industry",
    "seniority",
    "keywords",
    "certificates",
    "software",
    "programmingSkills",
    "yearsExperience",
    "academicDegrees",
    "roleType",
    "roleCategory",
)


def strip_html(text: Optional[str]) -> str:
    if not text:
        return ""
    if "<" not in text:
        return " ".join(text.split())
    soup = BeautifulSoup(text, "html.parser")
    return soup.get_text(" ", strip=True)


def passthrough_classifier(posting: Dict[str, Any]) -> Classifier:
    """Classifier that returns fields already present on a pre-classified posting."""
    def classify(title, description, url, location):
        return {k: posting[k] for k in PASSTHROUGH_FIELDS if posting.get(k) is not None}
    return classify


def _flatten(classification: Dict[str, Any]) -> Dict[str, Any]:
    """Accept nested location/role objects as well as flat fields."""
    flat = dict(classification)
    location = flat.pop("location", None)
    if isinstance(location, dict):
        for k in ("country", "city", "region"):
            flat.setdefault(k, location.get(k))
    role = flat.pop("role", None)
    if isinstance(role, dict):
        flat.setdefault("roleType", role.get("roleType"))
        flat.setdefault("roleCategory", role.get("category") or role.get("roleCategory"))
    return flat


def feed_posting(posting: Any) -> Dict[str, Any]:
    """
    Map a feed item onto posting field names.

    Feed items carry ``link`` and ``pubDate``; already-shaped postings carry
    ``url`` and ``postedDate``. When both are present ``link`` wins, since
    it is the dedup key the feed hands out.

    Raises:
        MalformedRecord: the posting is not an object
    """
    if not isinstance(posting, dict):
        raise MalformedRecord("Posting must be an object", ["Posting must be an object"])
    doc = dict(posting)
    for feed_key, field_name in FEED_ALIASES.items():
        value = doc.pop(feed_key, None)
        if value is not None:
            doc[field_name] = value
    return doc


def build_record(posting: Dict[str, Any], classification: Dict[str, Any], extracted_at: str) -> PostingRecord:
    """
    Assemble a record from a raw posting and its classification.

    Raises:
        MalformedRecord: the posting fails validation
    """
    posting = feed_posting(posting)
    errors = validate_posting(posting)
    if errors:
        raise MalformedRecord(f"Invalid posting: {'; '.join(errors)}", errors)

    url = posting["url"].strip()
    posted = parse_timestamp(posting.get("postedDate"))
    doc = _flatten(classification)
    doc.update({
        "id": posting.get("id") or posting_id(url),
        "url": url,
        "title": strip_html(posting.get("title")),
        "company": strip_html(posting.get("company")),
        "location": strip_html(posting.get("location")),
        "postedDate": iso_timestamp(posted) if posted else None,
        "extractedDate": extracted_at,
    })
    record = PostingRecord.from_dict(doc, description=strip_html(posting.get("description")))
    if isinstance(doc.get("salary"), SalaryData):
        record.salary = doc["salary"]
    return record


def _classify(classifier: Classifier, posting: Dict[str, Any]) -> Dict[str, Any]:
    """Run the classifier on a validated posting; its failures are per-record."""
    try:
        classification = classifier(
            strip_html(posting.get("title")),
            strip_html(posting.get("description")),
            posting["url"].strip(),
            posting.get("location") or "",
        )
    except Exception as e:
        raise MalformedRecord(f"Classification failed: {e}", [f"{type(e).__name__}: {e}"]) from e
    if classification is None:
        return {}
    if not isinstance(classification, dict):
        raise MalformedRecord("Classification is not an object", ["Classifier returned a non-object"])
    return classification


def ingest_postings(
    cache: StatisticsCache,
    postings: Iterable[Dict[str, Any]],
    classify: Optional[Classifier] = None,
    scrape_cache: Optional[ExpiringUrlIndex] = None,
) -> Dict[str, Any]:
    """
    Validate, classify and store a batch of raw postings.

    A posting that is not an object, fails validation, or whose
    classification raises is logged and counted as skipped; the rest of
    the batch still goes through. Store failures abort the batch.

    Returns counts: processed, inserted, duplicates, cached, skipped, saved.
    """
    counts = {"processed": 0, "inserted": 0, "duplicates": 0, "cached": 0, "skipped": 0}
    skipped: List[Dict[str, Any]] = []
    extracted_at = iso_timestamp(cache.clock())

    for raw in postings:
        counts["processed"] += 1
        url = None
        try:
            posting = feed_posting(raw)
            url = posting.get("url") if isinstance(posting.get("url"), str) else None
            errors = validate_posting(posting)
            if errors:
                raise MalformedRecord(f"Invalid posting: {'; '.join(errors)}", errors)

            if scrape_cache is not None and scrape_cache.has(url):
                counts["cached"] += 1
                continue

            classification = _classify(classify or passthrough_classifier(posting), posting)
            record = build_record(posting, classification, extracted_at)
            outcome = cache.add_job(record)
        except MalformedRecord as e:
            counts["skipped"] += 1
            skipped.append({"url": url, "error": str(e)})
            logger.warning("Skipping malformed posting", url=url, error=str(e))
            logger.record_malformed()
            continue

        if outcome["inserted"]:
            counts["inserted"] += 1
        else:
            counts["duplicates"] += 1
        if scrape_cache is not None:
            scrape_cache.add(record.url, posting.get("postedDate"))

    result = cache.save()
    if scrape_cache is not None:
        scrape_cache.save()

    counts["saved"] = result["saved"]
    counts["skippedRecords"] = skipped
    logger.info("Ingest finished", **{k: v for k, v in counts.items() if k != "skippedRecords"})
    return counts
