"""S3 object store backend (boto3) with ETag conditional writes."""

from __future__ import annotations

import logging
from typing import Any, Iterator
from urllib.parse import quote, unquote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    ClientError,
    HTTPClientError,
    ParamValidationError,
)
from botocore.exceptions import ConnectionError as BotoConnectionError

from marks3.config import WikiStoreConfig
from marks3.errors import (
    FatalStoreError,
    MarkS3Error,
    ObjectNotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    StorageBackendError,
    TransientStoreError,
)
from marks3.storage import ObjectInfo, StoredObject

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_PRECONDITION_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict"}
_PERMISSION_CODES = {
    "AccessDenied",
    "403",
    "Forbidden",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
}
_TRANSIENT_CODES = {
    "SlowDown",
    "InternalError",
    "ServiceUnavailable",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
}


def classify_error(err: Exception, *, operation: str, key: str | None = None) -> MarkS3Error:
    """Map a boto3/botocore exception onto the store error taxonomy."""
    if isinstance(err, ClientError):
        error = err.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = str(error.get("Message") or code or err)
        if code == "NoSuchBucket":
            return FatalStoreError(operation, f"bucket does not exist: {message}")
        if code in _NOT_FOUND_CODES or status == 404:
            return ObjectNotFoundError(key or "")
        if code in _PRECONDITION_CODES or status in (409, 412):
            return PreconditionFailedError(key or "")
        if code in _PERMISSION_CODES or status == 403:
            return PermissionDeniedError(operation, key)
        if code in _TRANSIENT_CODES or (isinstance(status, int) and status >= 500):
            return TransientStoreError(operation, message)
        return FatalStoreError(operation, message)
    if isinstance(err, (BotoConnectionError, HTTPClientError)):
        return TransientStoreError(operation, str(err))
    if isinstance(err, ParamValidationError):
        return FatalStoreError(operation, str(err))
    return FatalStoreError(operation, str(err))


class S3ObjectStore:
    """S3-backed :class:`~marks3.storage.ObjectStore`.

    Every key handed in by the repositories is logical (``pages/a.md``); the
    optional bucket prefix is applied here and stripped again on listing.
    """

    def __init__(self, *, bucket: str, prefix: str, config: WikiStoreConfig) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._config = config

        self._session = boto3.Session(
            region_name=config.s3_region,
        )
        self._s3 = self._session.client(
            "s3",
            region_name=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            config=BotoConfig(
                connect_timeout=config.s3_request_timeout_s,
                read_timeout=config.s3_request_timeout_s,
                retries={"max_attempts": config.s3_max_attempts, "mode": "standard"},
            ),
        )

    # --- Key helpers ---

    def _k(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path

    def _rel(self, full_key: str) -> str:
        if self.prefix and full_key.startswith(self.prefix + "/"):
            return full_key[len(self.prefix) + 1 :]
        return full_key

    # --- ObjectStore ---

    def get(self, key: str) -> StoredObject:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=self._k(key))
            body = resp["Body"].read()
        except Exception as e:
            raise classify_error(e, operation="get", key=key) from e
        return self._stored(key, body, resp)

    def head(self, key: str) -> StoredObject:
        try:
            resp = self._s3.head_object(Bucket=self.bucket, Key=self._k(key))
        except Exception as e:
            raise classify_error(e, operation="head", key=key) from e
        return self._stored(key, b"", resp)

    def put(
        self,
        key: str,
        body: bytes,
        *,
        if_match: str | None = None,
        if_none_match: str | None = None,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self._k(key),
            "Body": body,
        }
        if content_type is not None:
            kwargs["ContentType"] = content_type
        if metadata:
            kwargs["Metadata"] = {k: quote(v, safe=" ,:-_.") for k, v in metadata.items()}
        if if_none_match is not None:
            kwargs["IfNoneMatch"] = if_none_match
        if if_match is not None:
            kwargs["IfMatch"] = if_match

        try:
            resp = self._s3.put_object(**kwargs)
        except ParamValidationError as e:
            if if_none_match is not None or if_match is not None:
                raise StorageBackendError(
                    "conditional_write",
                    "S3 endpoint does not support conditional write preconditions",
                ) from e
            raise classify_error(e, operation="put", key=key) from e
        except Exception as e:
            raise classify_error(e, operation="put", key=key) from e
        etag = resp.get("ETag")
        return etag if isinstance(etag, str) else ""

    def delete(self, key: str) -> None:
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=self._k(key))
        except Exception as e:
            classified = classify_error(e, operation="delete", key=key)
            if isinstance(classified, ObjectNotFoundError):
                return
            raise classified from e

    def list(self, prefix: str, *, start_after: str | None = None) -> Iterator[ObjectInfo]:
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Prefix": self._k(prefix)}
        if start_after is not None:
            kwargs["StartAfter"] = self._k(start_after)
        paginator = self._s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(**kwargs):
                for obj in page.get("Contents", []):
                    yield ObjectInfo(
                        key=self._rel(str(obj["Key"])),
                        etag=str(obj.get("ETag", "")),
                        size=int(obj.get("Size", 0)),
                    )
        except Exception as e:
            raise classify_error(e, operation="list", key=prefix) from e

    def url_for(self, key: str) -> str:
        full_key = quote(self._k(key))
        base = self._config.public_base_url
        if base:
            return f"{base.rstrip('/')}/{full_key}"
        if self._config.s3_endpoint_url:
            return f"{self._config.s3_endpoint_url.rstrip('/')}/{self.bucket}/{full_key}"
        region = self._config.s3_region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{full_key}"

    def storage_info(self) -> dict[str, object]:
        return {
            "backend": "s3",
            "bucket": self.bucket,
            "prefix": self.prefix,
            "endpoint_url": self._config.s3_endpoint_url,
            "region": self._config.s3_region,
        }

    def close(self) -> None:
        self._s3.close()

    def _stored(self, key: str, body: bytes, resp: dict[str, Any]) -> StoredObject:
        etag = resp.get("ETag")
        raw_meta = resp.get("Metadata") or {}
        return StoredObject(
            key=key,
            body=body,
            etag=etag if isinstance(etag, str) else "",
            metadata={str(k).lower(): unquote(str(v)) for k, v in raw_meta.items()},
            content_type=resp.get("ContentType"),
        )
