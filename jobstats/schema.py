from typing import Any, Dict, List
from urllib.parse import urlparse

REQUIRED_STR_FIELDS = ["url"]
OPTIONAL_STR_FIELDS = [
    "title",
    "company",
    "location",
    "description",
    "postedDate",
]
OPTIONAL_LIST_FIELDS = [
    "keywords",
    "certificates",
    "software",
    "programmingSkills",
    "academicDegrees",
]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_url(v: str) -> bool:
    try:
        p = urlparse(v.strip())
    except ValueError:
        return False
    return bool(p.scheme and p.netloc)


def validate_posting(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.

    Only the URL is required: it is the dedup key. Everything else may be
    missing and is defaulted when the record is built.
    """
    if not isinstance(data, dict):
        return ["Posting must be an object"]

    errors: List[str] = []

    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    for f in OPTIONAL_STR_FIELDS:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    for f in OPTIONAL_LIST_FIELDS:
        if data.get(f) is not None and not isinstance(data[f], list):
            errors.append(f"Field '{f}' must be a list if provided")

    salary = data.get("salary")
    if salary is not None and not isinstance(salary, dict):
        errors.append("Field 'salary' must be an object if provided")

    if _is_non_empty_str(data.get("url")) and not _valid_url(data["url"]):
        errors.append("Field 'url' must be a valid absolute URL (scheme + host)")

    return errors


def validate_application(data: Dict[str, Any]) -> List[str]:
    """Validate a click-tracking event before it becomes an AppliedJob."""
    if not isinstance(data, dict):
        return ["Application event must be an object"]

    errors: List[str] = []
    if not _is_non_empty_str(data.get("jobUrl")):
        errors.append("Missing required field: jobUrl")
    elif not _valid_url(data["jobUrl"]):
        errors.append("Field 'jobUrl' must be a valid absolute URL (scheme + host)")

    for f in ("title", "company", "location", "postedDate", "roleType", "industry"):
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")
    return errors
