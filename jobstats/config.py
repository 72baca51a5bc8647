"""
Runtime settings read from the environment.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import load_env

BACKENDS = ("r2", "s3", "sqlite", "local")


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    backend: str = "r2"
    r2_account_id: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket_name: Optional[str] = None
    r2_public_url: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    aws_region: str = "auto"
    db_path: Path = Path("data/jobstats.db")
    data_dir: Path = Path("data/store")
    scrape_cache_hours: int = 48
    log_level: str = "INFO"

    @property
    def r2_configured(self) -> bool:
        return all([
            self.r2_account_id,
            self.r2_access_key_id,
            self.r2_secret_access_key,
            self.r2_bucket_name,
        ])

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """
        Build settings from environment variables (and .env when present).

        Raises:
            ValueError: unknown backend or non-numeric cache horizon
        """
        if load_dotenv_file:
            load_env()

        backend = (_env("JOBSTATS_BACKEND") or "r2").lower()
        if backend not in BACKENDS:
            raise ValueError(f"Unknown JOBSTATS_BACKEND {backend!r}; expected one of {', '.join(BACKENDS)}")

        hours = _env("JOBSTATS_SCRAPE_CACHE_HOURS") or "48"
        try:
            scrape_cache_hours = int(hours)
        except ValueError:
            raise ValueError(f"JOBSTATS_SCRAPE_CACHE_HOURS must be an integer, got {hours!r}")

        return cls(
            backend=backend,
            r2_account_id=_env("R2_ACCOUNT_ID"),
            r2_access_key_id=_env("R2_ACCESS_KEY_ID"),
            r2_secret_access_key=_env("R2_SECRET_ACCESS_KEY"),
            r2_bucket_name=_env("R2_BUCKET_NAME"),
            r2_public_url=_env("R2_PUBLIC_URL"),
            s3_endpoint_url=_env("S3_ENDPOINT_URL"),
            aws_region=_env("AWS_REGION") or "auto",
            db_path=Path(_env("JOBSTATS_DB_PATH") or "data/jobstats.db"),
            data_dir=Path(_env("JOBSTATS_DATA_DIR") or "data/store"),
            scrape_cache_hours=scrape_cache_hours,
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )
