"""
S3-compatible object store (Cloudflare R2 by default).

The backend is usable only when account, credentials and bucket are all
configured; otherwise ``is_available()`` is False and every call raises
StorageUnavailable. Transient failures are retried with backoff before
they surface as StorageUnavailable.
"""

from typing import List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Settings
from ..errors import StorageUnavailable
from ..logger import get_logger
from ..retry import RetryError, TransientStoreError, exponential_backoff, is_transient_error, response_status
from .base import ObjectStore

logger = get_logger()

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def _log_retry(attempt: int, error: Exception, delay: float):
    logger.warning(f"Store call failed, retrying in {delay:.1f}s", attempt=attempt, error=str(error))


def r2_endpoint(account_id: str) -> str:
    return f"https://{account_id}.r2.cloudflarestorage.com"


class S3ObjectStore(ObjectStore):

    def __init__(
        self,
        bucket: Optional[str],
        client=None,
        public_base_url: Optional[str] = None,
        max_retries: int = 3,
        base_delay: float = 0.5,
    ):
        self.bucket = bucket
        self.client = client
        self.public_base_url = public_base_url
        self._retry = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=8.0,
            retry_if=lambda e: isinstance(e, TransientStoreError),
            on_retry=_log_retry,
        )

    def __repr__(self) -> str:
        return f"S3ObjectStore(bucket={self.bucket!r})"

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        """
        Build an R2 (or plain S3) client from settings.

        A store built from incomplete R2 settings is returned unconfigured
        rather than raising, so callers can report 503 instead of crashing.
        """
        if settings.backend == "r2":
            if not settings.r2_configured:
                logger.warning("R2 storage is not configured")
                return cls(bucket=settings.r2_bucket_name, client=None)
            client = boto3.client(
                "s3",
                endpoint_url=r2_endpoint(settings.r2_account_id),
                region_name="auto",
                aws_access_key_id=settings.r2_access_key_id,
                aws_secret_access_key=settings.r2_secret_access_key,
                config=Config(retries={"max_attempts": 1}),
            )
            return cls(settings.r2_bucket_name, client, settings.r2_public_url)

        if not settings.r2_bucket_name:
            logger.warning("S3 bucket is not configured")
            return cls(bucket=None, client=None)
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            region_name=None if settings.aws_region == "auto" else settings.aws_region,
            config=Config(retries={"max_attempts": 1}),
        )
        return cls(settings.r2_bucket_name, client, settings.r2_public_url)

    def is_available(self) -> bool:
        return self.client is not None and bool(self.bucket)

    def _require(self):
        if not self.is_available():
            raise StorageUnavailable("Object storage is not configured")

    @staticmethod
    def _classify(error: Exception, key: str) -> Exception:
        """Map a botocore failure to a retryable or terminal error."""
        status = response_status(error)
        code = error.response.get("Error", {}).get("Code", "") if isinstance(error, ClientError) else ""
        label = code or status or type(error).__name__
        if is_transient_error(error):
            return TransientStoreError(f"{label} on {key}: {error}", status)
        return StorageUnavailable(f"Store error {label} on {key}: {error}")

    def _call(self, key: str, func, *args, **kwargs):
        self._require()

        @self._retry
        def attempt():
            try:
                return func(*args, **kwargs)
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "")
                if code in NOT_FOUND_CODES:
                    return None
                raise self._classify(e, key) from e
            except BotoCoreError as e:
                raise self._classify(e, key) from e

        try:
            return attempt()
        except RetryError as e:
            logger.record_failure("StorageUnavailable")
            raise StorageUnavailable(str(e)) from e

    def get_bytes(self, key: str) -> Optional[bytes]:
        def fetch():
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        return self._call(key, fetch)

    def put_bytes(self, key, body, content_type="application/octet-stream",
                  cache_control=None, content_encoding=None) -> None:
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        if content_encoding:
            params["ContentEncoding"] = content_encoding
        self._call(key, lambda: self.client.put_object(**params))

    def delete(self, key: str) -> None:
        self._call(key, lambda: self.client.delete_object(Bucket=self.bucket, Key=key))

    def list_keys(self, prefix: str = "") -> List[str]:
        def collect():
            keys = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
            return sorted(keys)

        return self._call(prefix or "/", collect) or []
