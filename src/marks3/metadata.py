"""Index documents kept as single objects and updated by compare-and-swap.

The object store only guarantees atomicity for one conditional PUT on one
key. :meth:`MetadataStore.apply` builds "apply a pure function to the index"
on top of that: read the document and its ETag, compute the next snapshot,
and write it back only if the ETag is still current. Losing the race means
re-reading and trying again, a bounded number of times.

Retry policy:

* conflict budget ``index_max_attempts`` (default 5) counts lost CAS races;
  when it runs out :class:`IndexContentionError` is raised;
* transient budget ``transient_max_attempts`` (default 3) counts network and
  5xx failures of the whole read-modify-write; when it runs out the
  :class:`TransientStoreError` propagates.

The budgets are independent: a flaky network does not eat into the fairness
budget of a contended writer, and vice versa.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from marks3.config import WikiStoreConfig
from marks3.errors import (
    FatalStoreError,
    IndexContentionError,
    ObjectNotFoundError,
    PreconditionFailedError,
    TransientStoreError,
)
from marks3.retry import sleep_before_retry
from marks3.storage import FILE_INDEX_KEY, PAGE_INDEX_KEY, ObjectStore

logger = logging.getLogger(__name__)

# Name of the JSON list that holds the entries, and the field used as key.
_COLLECTIONS: dict[str, tuple[str, str]] = {
    PAGE_INDEX_KEY: ("pages", "path"),
    FILE_INDEX_KEY: ("files", "id"),
}


@dataclass(frozen=True)
class MetadataDocument:
    """Immutable snapshot of an index document.

    ``etag`` is the ETag the snapshot was read with, ``None`` when the document
    did not exist yet. Mutators return new snapshots and keep the read ETag.
    """

    key: str
    entries: dict[str, dict[str, Any]] = field(default_factory=dict)
    version: int = 0
    etag: str | None = None

    def get(self, entry_key: str) -> dict[str, Any] | None:
        entry = self.entries.get(entry_key)
        return dict(entry) if entry is not None else None

    def values(self) -> list[dict[str, Any]]:
        return [dict(v) for v in self.entries.values()]

    def __contains__(self, entry_key: object) -> bool:
        return entry_key in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def with_entry(self, entry_key: str, entry: dict[str, Any]) -> MetadataDocument:
        """Insert or replace; an existing key keeps its position."""
        entries = dict(self.entries)
        entries[entry_key] = dict(entry)
        return MetadataDocument(self.key, entries, self.version, self.etag)

    def without_entry(self, entry_key: str) -> MetadataDocument:
        if entry_key not in self.entries:
            return self
        entries = {k: v for k, v in self.entries.items() if k != entry_key}
        return MetadataDocument(self.key, entries, self.version, self.etag)

    def with_entries(self, entries: dict[str, dict[str, Any]]) -> MetadataDocument:
        return MetadataDocument(self.key, dict(entries), self.version, self.etag)


def serialize_document(doc: MetadataDocument) -> bytes:
    collection, _ = _COLLECTIONS[doc.key]
    payload = {collection: list(doc.entries.values()), "version": doc.version}
    return json.dumps(payload, indent=2, sort_keys=False).encode("utf-8")


def deserialize_document(key: str, body: bytes, etag: str | None) -> MetadataDocument:
    collection, id_field = _COLLECTIONS[key]
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FatalStoreError("read_index", f"{key} is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise FatalStoreError("read_index", f"{key} must contain a JSON object")
    entries: dict[str, dict[str, Any]] = {}
    for raw in payload.get(collection) or []:
        if not isinstance(raw, dict) or id_field not in raw:
            logger.warning("Skipping malformed entry in %s: %r", key, raw)
            continue
        entries[str(raw[id_field])] = raw
    return MetadataDocument(
        key=key,
        entries=entries,
        version=int(payload.get("version") or 0),
        etag=etag,
    )


class MetadataStore:
    """Atomic read-modify-write for the page and file index documents.

    This is an advisory protocol: every writer of an index document must go
    through :meth:`apply`, nothing stops a direct PUT from bypassing it.
    """

    def __init__(self, store: ObjectStore, config: WikiStoreConfig | None = None) -> None:
        self._store = store
        self._config = config or WikiStoreConfig()

    def read(self, key: str) -> MetadataDocument:
        """Return the current snapshot, or an empty one if the document is missing."""
        try:
            stored = self._store.get(key)
        except ObjectNotFoundError:
            return MetadataDocument(key=key)
        return deserialize_document(key, stored.body, stored.etag)

    def apply(
        self,
        key: str,
        operation: Callable[[MetadataDocument], MetadataDocument],
    ) -> MetadataDocument:
        """Apply ``operation`` to the document at ``key`` atomically.

        ``operation`` may run several times and must be a pure function of
        its input snapshot. Returns the snapshot that was written (or the
        current one when the operation changed nothing).
        """
        conflict_budget = max(1, self._config.index_max_attempts)
        transient_budget = max(1, self._config.transient_max_attempts)
        conflicts = 0
        transients = 0

        while True:
            try:
                current = self.read(key)
                updated = operation(current)
                if updated.entries == current.entries:
                    return current
                return self._write(current, updated)
            except PreconditionFailedError:
                conflicts += 1
                if conflicts >= conflict_budget:
                    logger.warning(
                        "Giving up on %s after %d lost compare-and-swap races", key, conflicts
                    )
                    raise IndexContentionError(key, conflicts) from None
                logger.info("Lost compare-and-swap on %s (attempt %d), retrying", key, conflicts)
                sleep_before_retry(conflicts - 1, self._config)
            except TransientStoreError as e:
                transients += 1
                if transients >= transient_budget:
                    raise
                logger.info("Transient failure updating %s: %s", key, e.detail)
                sleep_before_retry(transients - 1, self._config)

    def replace(self, key: str, entries: dict[str, dict[str, Any]]) -> MetadataDocument:
        """Swap all entries of the document, still through the CAS loop."""
        return self.apply(key, lambda doc: doc.with_entries(entries))

    def _write(self, current: MetadataDocument, updated: MetadataDocument) -> MetadataDocument:
        next_doc = MetadataDocument(
            key=current.key,
            entries=dict(updated.entries),
            version=current.version + 1,
        )
        body = serialize_document(next_doc)
        if current.etag is None:
            etag = self._store.put(
                current.key, body, if_none_match="*", content_type="application/json"
            )
        else:
            etag = self._store.put(
                current.key, body, if_match=current.etag, content_type="application/json"
            )
        return MetadataDocument(next_doc.key, next_doc.entries, next_doc.version, etag)
