"""Shared test fixtures for MarkS3 tests."""

from __future__ import annotations

import uuid
from typing import Any, Callable

import pytest

from marks3 import Wiki, WikiStoreConfig
from marks3.errors import PreconditionFailedError, TransientStoreError
from marks3.storage import MemoryObjectStore


class FlakyStore:
    """Wraps an object store and injects failures for one key.

    ``conflicts`` conditional PUTs fail with PreconditionFailedError and
    ``transients`` GETs fail with TransientStoreError before the wrapped store
    is reached.
    """

    def __init__(self, inner: Any, key: str, *, conflicts: int = 0, transients: int = 0) -> None:
        self._inner = inner
        self.key = key
        self.conflicts = conflicts
        self.transients = transients
        self.put_calls = 0
        self.get_calls = 0

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)

    def get(self, key: str) -> Any:
        if key == self.key:
            self.get_calls += 1
            if self.transients > 0:
                self.transients -= 1
                raise TransientStoreError("get", "simulated timeout")
        return self._inner.get(key)

    def put(self, key: str, body: bytes, **kwargs: Any) -> str:
        if key == self.key:
            self.put_calls += 1
            if self.conflicts > 0:
                self.conflicts -= 1
                raise PreconditionFailedError(key)
        return self._inner.put(key, body, **kwargs)


class LostAckStore:
    """Wraps an object store and loses the response of PUTs under ``prefix``.

    The first ``lost`` PUTs reach the wrapped store (unless ``write`` is False)
    and then fail with TransientStoreError, like a timeout after the write landed.
    """

    def __init__(self, inner: Any, prefix: str, *, lost: int = 1, write: bool = True) -> None:
        self._inner = inner
        self.prefix = prefix
        self.lost = lost
        self.write = write
        self.put_calls = 0

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)

    def put(self, key: str, body: bytes, **kwargs: Any) -> str:
        if not key.startswith(self.prefix):
            return self._inner.put(key, body, **kwargs)
        self.put_calls += 1
        if self.lost > 0:
            self.lost -= 1
            if self.write:
                self._inner.put(key, body, **kwargs)
            raise TransientStoreError("put", "read timeout")
        return self._inner.put(key, body, **kwargs)


@pytest.fixture
def config() -> WikiStoreConfig:
    """Config with zero backoff so retry tests do not sleep."""
    return WikiStoreConfig(backoff_base_ms=0, backoff_max_ms=0)


@pytest.fixture
def store(config: WikiStoreConfig):
    name = f"test-{uuid.uuid4().hex}"
    store = MemoryObjectStore.named(name, config=config)
    yield store
    MemoryObjectStore.discard(name)


@pytest.fixture
def wiki(store: MemoryObjectStore, config: WikiStoreConfig) -> Wiki:
    return Wiki(store=store, config=config)


@pytest.fixture
def make_flaky(store: MemoryObjectStore) -> Callable[..., FlakyStore]:
    def _make(key: str, **kwargs: Any) -> FlakyStore:
        return FlakyStore(store, key, **kwargs)

    return _make


@pytest.fixture
def make_lost_ack(store: MemoryObjectStore) -> Callable[..., LostAckStore]:
    def _make(prefix: str, **kwargs: Any) -> LostAckStore:
        return LostAckStore(store, prefix, **kwargs)

    return _make
