"""Storage for solve results too large to return inline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredResult:
    """Where a payload ended up and how to fetch it."""

    backend: str
    url: Optional[str]
    bucket: Optional[str]
    key: Optional[str]
    local_path: Optional[str]


class ResultStore:
    """Put JSON payloads in S3 when a bucket and credentials exist, otherwise on local disk."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
        local_dir: Optional[str] = None,
        expiry: Optional[int] = None,
    ) -> None:
        self.bucket = settings.s3_bucket if bucket is None else bucket
        self.prefix = settings.s3_prefix if prefix is None else prefix
        self.local_dir = settings.local_storage_dir if local_dir is None else local_dir
        self.expiry = settings.presign_expiry_seconds if expiry is None else expiry

    def store_bytes(self, payload: bytes, request_id: str) -> StoredResult:
        key = self._build_key(request_id)
        client = self._get_s3_client()
        if client is None:
            return self._store_local(payload, key)
        try:
            client.put_object(Bucket=self.bucket, Key=key, Body=payload, ContentType="application/json")
            url = client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.expiry,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("S3 upload of %s failed, storing locally: %s", key, exc)
            return self._store_local(payload, key)
        logger.info("stored result %s in s3://%s", key, self.bucket)
        return StoredResult(backend="s3", url=url, bucket=self.bucket, key=key, local_path=None)

    def _build_key(self, request_id: str) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        filename = f"{request_id}-{timestamp}.json"
        if self.prefix:
            return f"{self.prefix.rstrip('/')}/{filename}"
        return filename

    def _get_s3_client(self):
        if not self.bucket:
            return None
        session = boto3.Session()
        if session.get_credentials() is None:
            return None
        return session.client("s3")

    def _store_local(self, payload: bytes, key: str) -> StoredResult:
        full_path = Path(self.local_dir) / key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(payload)
        logger.info("stored result %s at %s", key, full_path)
        return StoredResult(backend="local", url=f"/results/{key}", bucket=None, key=key, local_path=str(full_path))


def build_store() -> ResultStore:
    return ResultStore()
