"""Object store contract, key layout, in-memory backend and URI resolution."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Iterator, Protocol, runtime_checkable
from urllib.parse import quote, urlparse

from marks3.config import WikiStoreConfig
from marks3.errors import (
    FatalStoreError,
    ObjectNotFoundError,
    PreconditionFailedError,
    StorageBackendError,
)
from marks3.retry import call_with_retry

logger = logging.getLogger(__name__)

# --- Key layout ---

PAGES_PREFIX = "pages/"
FILES_PREFIX = "files/"
PAGE_INDEX_KEY = "metadata/pages.json"
FILE_INDEX_KEY = "metadata/files.json"

# User metadata key holding the per-write token used by put_with_retry.
WRITE_TOKEN_META = "write-token"


def page_key(path: str) -> str:
    return f"{PAGES_PREFIX}{path}"


def path_from_page_key(key: str) -> str:
    return key[len(PAGES_PREFIX) :]


def file_key(category: str, file_id: str) -> str:
    return f"{FILES_PREFIX}{category}/{file_id}"


# --- Records ---


@dataclass
class StoredObject:
    """Body and headers of a stored object; ``body`` is empty for HEAD reads."""

    key: str
    body: bytes
    etag: str
    metadata: dict[str, str] = field(default_factory=dict)
    content_type: str | None = None


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    etag: str
    size: int


@runtime_checkable
class ObjectStore(Protocol):
    """Backend-agnostic object store contract used by the repositories."""

    def get(self, key: str) -> StoredObject: ...

    def head(self, key: str) -> StoredObject: ...

    def put(
        self,
        key: str,
        body: bytes,
        *,
        if_match: str | None = None,
        if_none_match: str | None = None,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str, *, start_after: str | None = None) -> Iterator[ObjectInfo]: ...

    def url_for(self, key: str) -> str: ...

    def storage_info(self) -> dict[str, object]: ...

    def close(self) -> None: ...


# --- In-memory backend ---


@dataclass
class _MemoryObject:
    body: bytes
    etag: str
    metadata: dict[str, str]
    content_type: str | None


class MemoryObjectStore:
    """Process-local object store with the same conditional-write semantics as S3.

    The internal lock only makes each single PUT/DELETE atomic, the way one
    request is atomic on a real object store. ETags are unique per write.
    """

    _registry: dict[str, MemoryObjectStore] = {}
    _registry_lock = threading.Lock()

    def __init__(self, name: str = "default", *, config: WikiStoreConfig | None = None) -> None:
        self.name = name
        self._config = config or WikiStoreConfig()
        self._objects: dict[str, _MemoryObject] = {}
        self._lock = threading.Lock()

    @classmethod
    def named(cls, name: str, *, config: WikiStoreConfig | None = None) -> MemoryObjectStore:
        """Return the shared store registered under ``name``, creating it on first use."""
        with cls._registry_lock:
            store = cls._registry.get(name)
            if store is None:
                store = cls(name, config=config)
                cls._registry[name] = store
            return store

    @classmethod
    def discard(cls, name: str) -> None:
        with cls._registry_lock:
            cls._registry.pop(name, None)

    def get(self, key: str) -> StoredObject:
        with self._lock:
            obj = self._objects.get(key)
            if obj is None:
                raise ObjectNotFoundError(key)
            return StoredObject(
                key=key,
                body=obj.body,
                etag=obj.etag,
                metadata=dict(obj.metadata),
                content_type=obj.content_type,
            )

    def head(self, key: str) -> StoredObject:
        stored = self.get(key)
        stored.body = b""
        return stored

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
        if if_match is not None and if_none_match is not None:
            raise FatalStoreError("put", "if_match and if_none_match are mutually exclusive")
        if if_none_match is not None and if_none_match != "*":
            raise FatalStoreError("put", "only if_none_match='*' is supported")

        with self._lock:
            current = self._objects.get(key)
            if if_none_match == "*" and current is not None:
                raise PreconditionFailedError(key)
            if if_match is not None and (current is None or current.etag != if_match):
                raise PreconditionFailedError(key)
            etag = f'"{uuid.uuid4().hex}"'
            self._objects[key] = _MemoryObject(
                body=bytes(body),
                etag=etag,
                metadata=dict(metadata or {}),
                content_type=content_type,
            )
            return etag

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def list(self, prefix: str, *, start_after: str | None = None) -> Iterator[ObjectInfo]:
        with self._lock:
            snapshot = sorted(
                (k, o.etag, len(o.body)) for k, o in self._objects.items() if k.startswith(prefix)
            )
        for key, etag, size in snapshot:
            if start_after is not None and key <= start_after:
                continue
            yield ObjectInfo(key=key, etag=etag, size=size)

    def url_for(self, key: str) -> str:
        base = self._config.public_base_url
        if base:
            return f"{base.rstrip('/')}/{quote(key)}"
        return f"memory://{self.name}/{quote(key)}"

    def storage_info(self) -> dict[str, object]:
        with self._lock:
            count = len(self._objects)
        return {"backend": "memory", "name": self.name, "object_count": count}

    def close(self) -> None:
        pass


# --- Conditional writes ---


def put_with_retry(
    store: ObjectStore,
    key: str,
    body: bytes,
    *,
    config: WikiStoreConfig,
    operation: str,
    if_match: str | None = None,
    if_none_match: str | None = None,
    content_type: str | None = None,
    metadata: dict[str, str] | None = None,
) -> str:
    """Conditional put retried on transient errors, tolerant of lost acknowledgements.

    Every attempt carries the same write token in the object's user metadata.
    When a retry is rejected by its precondition, the object is inspected: if
    it carries this token, an earlier attempt landed and only its response was
    lost, so that write's ETag is returned instead of the failure.
    """
    token = uuid.uuid4().hex
    meta = dict(metadata or {})
    meta[WRITE_TOKEN_META] = token
    attempts = 0

    def _put() -> str:
        nonlocal attempts
        attempts += 1
        return store.put(
            key,
            body,
            if_match=if_match,
            if_none_match=if_none_match,
            content_type=content_type,
            metadata=meta,
        )

    try:
        return call_with_retry(_put, config=config, operation=operation)
    except PreconditionFailedError:
        landed = _landed_etag(store, key, token, config) if attempts > 1 else None
        if landed is None:
            raise
        logger.info("%s: an earlier attempt landed before its response was lost", operation)
        return landed


def _landed_etag(store: ObjectStore, key: str, token: str, config: WikiStoreConfig) -> str | None:
    try:
        current = call_with_retry(partial(store.head, key), config=config, operation=f"head {key}")
    except ObjectNotFoundError:
        return None
    if current.metadata.get(WRITE_TOKEN_META) != token:
        return None
    return current.etag


# --- URI resolution ---


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a ``memory://`` or ``s3://`` URI."""

    backend: str
    uri: str
    name: str | None = None
    bucket: str | None = None
    prefix: str | None = None


def parse_storage_target(storage_uri: str) -> StorageTarget:
    """Resolve a backend target from a storage URI."""
    parsed = urlparse(storage_uri)

    if parsed.scheme == "memory":
        name = (parsed.netloc + parsed.path).strip("/") or "default"
        return StorageTarget(backend="memory", uri=storage_uri, name=name)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        prefix = parsed.path.lstrip("/").rstrip("/")
        if not bucket:
            raise StorageBackendError("parse_storage_uri", f"Invalid s3 URI: {storage_uri}")
        return StorageTarget(backend="s3", uri=storage_uri, bucket=bucket, prefix=prefix)

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


def open_object_store(storage_uri: str, *, config: WikiStoreConfig | None = None) -> ObjectStore:
    """Open an object store backend from a storage URI."""
    target = parse_storage_target(storage_uri)
    cfg = config or WikiStoreConfig()
    if target.backend == "memory":
        assert target.name is not None
        return MemoryObjectStore.named(target.name, config=cfg)
    if target.backend == "s3":
        from marks3.storage_s3 import S3ObjectStore

        assert target.bucket is not None
        return S3ObjectStore(bucket=target.bucket, prefix=target.prefix or "", config=cfg)
    raise StorageBackendError("open_object_store", f"Unsupported backend '{target.backend}'")


__all__ = [
    "FILE_INDEX_KEY",
    "FILES_PREFIX",
    "PAGE_INDEX_KEY",
    "PAGES_PREFIX",
    "WRITE_TOKEN_META",
    "MemoryObjectStore",
    "ObjectInfo",
    "ObjectStore",
    "StorageTarget",
    "StoredObject",
    "file_key",
    "open_object_store",
    "page_key",
    "parse_storage_target",
    "path_from_page_key",
    "put_with_retry",
]
