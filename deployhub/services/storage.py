from __future__ import annotations

import logging
from functools import lru_cache

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from deployhub.core.config import Settings, settings
from deployhub.core.errors import StorageFailure

logger = logging.getLogger(__name__)

_MISSING_CODES = {"nosuchkey", "404", "notfound"}
_MISSING_BUCKET_CODES = {"404", "nosuchbucket", "notfound"}


class ObjectNotFound(StorageFailure):
    kind = "NotFound"
    status_code = 404
    default_message = "Object not found"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "")).lower()


class S3ObjectStore:
    """Blob adapter over one S3 bucket.

    Every call is a single attempt; retry policy belongs to the caller.
    """

    def __init__(self, config: Settings, client=None) -> None:
        self.bucket = config.s3_bucket
        self.region = str(config.s3_region or "").strip()
        self.endpoint_url = config.s3_endpoint_url
        self.public_base_url = str(config.s3_public_base_url or "").strip()
        self.client = client or boto3.client(
            "s3",
            endpoint_url=config.s3_endpoint_url,
            aws_access_key_id=config.s3_access_key,
            aws_secret_access_key=config.s3_secret_key,
            region_name=config.s3_region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        self._bucket_checked = False

    def ensure_bucket(self) -> None:
        if self._bucket_checked:
            return

        try:
            self.client.head_bucket(Bucket=self.bucket)
            self._bucket_checked = True
            return
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_BUCKET_CODES:
                raise

        create_args = {"Bucket": self.bucket}
        if self.region and self.region != "us-east-1":
            create_args["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.client.create_bucket(**create_args)
        self._bucket_checked = True

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        base = self.endpoint_url.rstrip("/")
        return f"{base}/{self.bucket}/{path}"

    def _put(self, path: str, data: bytes, content_type: str) -> None:
        self.ensure_bucket()
        self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)

    def _get(self, path: str) -> bytes:
        self.ensure_bucket()
        obj = self.client.get_object(Bucket=self.bucket, Key=path)
        return obj["Body"].read()

    def _delete(self, path: str) -> None:
        self.ensure_bucket()
        # S3 answers 204 for missing keys too.
        self.client.delete_object(Bucket=self.bucket, Key=path)

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        try:
            await run_in_threadpool(self._put, path, data, content_type)
        except (ClientError, BotoCoreError) as exc:
            raise StorageFailure(f"Failed to store object {path}") from exc

    async def get(self, path: str) -> bytes:
        try:
            return await run_in_threadpool(self._get, path)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise ObjectNotFound(path) from exc
            raise StorageFailure(f"Failed to read object {path}") from exc
        except BotoCoreError as exc:
            raise StorageFailure(f"Failed to read object {path}") from exc

    async def delete(self, path: str) -> None:
        try:
            await run_in_threadpool(self._delete, path)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return
            raise StorageFailure(f"Failed to delete object {path}") from exc
        except BotoCoreError as exc:
            raise StorageFailure(f"Failed to delete object {path}") from exc


@lru_cache(maxsize=1)
def get_object_store() -> S3ObjectStore:
    return S3ObjectStore(settings)
