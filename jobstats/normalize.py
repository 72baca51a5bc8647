import hashlib
from datetime import datetime, timezone
from typing import Optional, Union
from urllib.parse import urlparse

from dateutil import parser as date_parser


def normalize_url(url: str) -> str:
    """Dedup identity of a posting: lowercased and trimmed, nothing else."""
    return url.strip().lower()


def canonical_url(url: str) -> str:
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/")
    # Drop query and fragment to avoid source-specific tracking
    return f"{parsed.scheme}://{parsed.netloc}{path}" if parsed.scheme and parsed.netloc else path


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(digits[r])
    return "".join(reversed(out))


def posting_id(url: str) -> str:
    """Stable short id for a posting, derived from its normalized URL."""
    digest = hashlib.sha1(normalize_url(url).encode("utf-8")).digest()
    return _base36(int.from_bytes(digest[:8], "big"))


def job_id(url: str) -> str:
    """Identity of a clicked job: first 12 hex chars of md5 of the canonical URL."""
    return hashlib.md5(normalize_url(canonical_url(url)).encode("utf-8")).hexdigest()[:12]


NON_CITY_NAMES = {"england", "scotland", "wales", "united kingdom", "uk", "northern ireland"}


def normalize_city(city: Optional[str]) -> Optional[str]:
    """
    Clean a city name before counting it.

    Drops a trailing " Area", a leading "City of " or "Greater ", and
    returns None for names that are countries rather than cities.
    """
    if not city:
        return None
    name = " ".join(city.split())
    if name.lower().endswith(" area"):
        name = name[: -len(" area")].strip()
    for prefix in ("city of ", "greater "):
        if name.lower().startswith(prefix):
            name = name[len(prefix):].strip()
    if not name or name.lower() in NON_CITY_NAMES:
        return None
    return name


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse ISO-8601 or RFC 2822 timestamps into aware UTC datetimes.

    Naive values are taken as UTC. Unparseable values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso_timestamp(dt: datetime) -> str:
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def date_key(value: Union[str, datetime, None]) -> Optional[str]:
    """YYYY-MM-DD for a timestamp; ISO strings are cut without reparsing."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if len(text) >= 10 and text[4] == "-" and text[7] == "-" and text[:4].isdigit():
            return text[:10]
    dt = parse_timestamp(value)
    return dt.strftime("%Y-%m-%d") if dt else None


def month_key(value: Union[str, datetime]) -> str:
    """YYYY-MM for a datetime or a YYYY-MM-DD date string."""
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).strftime("%Y-%m")
    return value[:7]


def epoch_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)
