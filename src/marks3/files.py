"""File uploads, the file index and orphan detection."""

from __future__ import annotations

import logging
import mimetypes
import re
import time
import uuid
from functools import partial
from typing import Any, Callable, Iterable, Iterator

import pydantic

from marks3.config import WikiStoreConfig
from marks3.errors import (
    FileInfoNotFoundError,
    FileTooLargeError,
    IndexContentionError,
    InvalidFileTypeError,
    MarkS3Error,
    ObjectNotFoundError,
    PreconditionFailedError,
    StorageBackendError,
)
from marks3.metadata import MetadataDocument, MetadataStore
from marks3.models import FileInfo, UploadFile, utcnow
from marks3.references import (
    build_reference_index,
    extract_file_references,
    is_file_referenced,
    referrers_of,
)
from marks3.retry import call_with_retry
from marks3.storage import (
    FILE_INDEX_KEY,
    FILES_PREFIX,
    PAGE_INDEX_KEY,
    ObjectInfo,
    ObjectStore,
    StoredObject,
    file_key,
    page_key,
    put_with_retry,
)

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".bmp", ".ico"}

_ID_ATTEMPTS = 3


def sanitize_filename(filename: str) -> str:
    """Lower-case, storage-safe version of a client filename."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = re.sub(r'[<>:"|?*#%\x00-\x1f]', "_", name)
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"_{2,}", "_", name)
    return name.strip("_").lower()


def file_extension(filename: str) -> str:
    dot = filename.rfind(".")
    return filename[dot:].lower() if dot > 0 else ""


def is_image(filename: str, content_type: str | None = None) -> bool:
    if content_type and content_type.startswith("image/"):
        return True
    return file_extension(filename) in IMAGE_EXTENSIONS


def file_category(info: FileInfo) -> str:
    return "images" if is_image(info.filename, info.content_type) else "attachments"


def new_file_id(sanitized: str) -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{sanitized}"


def _parse_entry(raw: dict[str, Any]) -> FileInfo | None:
    try:
        return FileInfo.model_validate(raw)
    except pydantic.ValidationError as e:
        logger.warning(
            "Skipping malformed file index entry %r (%d errors)", raw.get("id"), e.error_count()
        )
        return None


class FileRepository:
    """Uploaded files: blobs under ``files/<category>/<id>`` plus ``metadata/files.json``."""

    def __init__(
        self,
        store: ObjectStore,
        metadata: MetadataStore,
        config: WikiStoreConfig | None = None,
    ) -> None:
        self._store = store
        self._metadata = metadata
        self._config = config or WikiStoreConfig()
        self.last_index_warning: str | None = None

    @property
    def file_url_bases(self) -> tuple[str, ...]:
        """URL prefixes under which this store serves uploaded files."""
        return (self._store.url_for(FILES_PREFIX),)

    # --- Validation ---

    def validate_upload(self, upload: UploadFile) -> None:
        if upload.size > self._config.max_file_size:
            raise FileTooLargeError(upload.size, self._config.max_file_size)
        if not upload.filename or not upload.filename.strip():
            raise InvalidFileTypeError(upload.filename, "File must have a valid name")
        extension = file_extension(upload.filename)
        denied = {e.lower() for e in self._config.denied_extensions}
        if extension in denied:
            raise InvalidFileTypeError(
                upload.filename, f"File type {extension} is not allowed for security reasons"
            )
        if not sanitize_filename(upload.filename):
            raise InvalidFileTypeError(upload.filename, "File must have a valid name")

    # --- CRUD ---

    def upload_file(self, upload: UploadFile) -> FileInfo:
        """Validate, store the blob, then add it to the file index."""
        self.validate_upload(upload)

        content_type = (
            upload.content_type
            or mimetypes.guess_type(upload.filename)[0]
            or "application/octet-stream"
        )
        sanitized = sanitize_filename(upload.filename)
        uploaded_at = utcnow()

        info: FileInfo | None = None
        for _ in range(_ID_ATTEMPTS):
            file_id = new_file_id(sanitized)
            candidate = FileInfo(
                id=file_id,
                filename=upload.filename,
                size=upload.size,
                content_type=content_type,
                uploaded_at=uploaded_at,
            )
            key = file_key(file_category(candidate), file_id)
            try:
                put_with_retry(
                    self._store,
                    key,
                    upload.data,
                    config=self._config,
                    operation=f"upload {key}",
                    if_none_match="*",
                    content_type=content_type,
                    metadata={
                        "original-name": upload.filename,
                        "uploaded-at": uploaded_at.isoformat(),
                    },
                )
            except PreconditionFailedError:
                logger.info("File id %s already taken, generating another", file_id)
                continue
            info = candidate.model_copy(update={"url": self._store.url_for(key)})
            break

        if info is None:
            raise StorageBackendError("upload_file", f"could not allocate a unique id for {sanitized}")

        self._index_apply(
            lambda doc: doc.with_entry(info.id, info.to_json()),
            f"file {info.id} stored but not indexed",
        )
        logger.info("Uploaded %s as %s (%d bytes)", upload.filename, info.id, info.size)
        return info

    def delete_file(self, file_id: str) -> None:
        """Delete the blob, then drop the index entry."""
        info = self.get_file_info(file_id)
        key = file_key(file_category(info), file_id)
        call_with_retry(
            partial(self._store.delete, key), config=self._config, operation=f"delete {key}"
        )
        self._index_apply(
            lambda doc: doc.without_entry(file_id),
            f"file {file_id} deleted but still indexed",
        )

    def list_files(self) -> list[FileInfo]:
        parsed = (_parse_entry(e) for e in self._read_index().values())
        return [f for f in parsed if f is not None]

    def get_file_info(self, file_id: str) -> FileInfo:
        entry = self._read_index().get(file_id)
        info = _parse_entry(entry) if entry is not None else None
        if info is None:
            raise FileInfoNotFoundError(file_id)
        return info

    def download_file(self, file_id: str) -> bytes:
        info = self.get_file_info(file_id)
        key = file_key(file_category(info), file_id)
        try:
            stored = call_with_retry(
                partial(self._store.get, key), config=self._config, operation=f"get {key}"
            )
        except ObjectNotFoundError:
            raise FileInfoNotFoundError(file_id) from None
        return stored.body

    # --- References ---

    def iter_page_contents(self, exclude: Iterable[str] = ()) -> Iterator[tuple[str, str]]:
        """Yield ``(path, markdown)`` for every indexed page whose blob exists."""
        skip = set(exclude)
        for entry in self._metadata.read(PAGE_INDEX_KEY).values():
            path = str(entry["path"])
            if path in skip:
                continue
            try:
                stored = call_with_retry(
                    partial(self._store.get, page_key(path)),
                    config=self._config,
                    operation=f"get page {path}",
                )
            except ObjectNotFoundError:
                logger.debug("Index lists %s but the page object is gone", path)
                continue
            yield path, stored.body.decode("utf-8", errors="replace")

    def build_reference_index(self, exclude: Iterable[str] = ()) -> dict[str, set[str]]:
        """One pass over all page bodies: identifier -> referring page paths."""
        return build_reference_index(self.iter_page_contents(exclude), self.file_url_bases)

    def get_file_references(self, file_id: str) -> list[str]:
        """Paths of pages that reference ``file_id`` (an id or a bare filename)."""
        entry = self._read_index().get(file_id)
        target = _parse_entry(entry) if entry is not None else None
        if target is None:
            target = FileInfo(id=file_id, filename=file_id, size=0, uploaded_at=utcnow())
        bases = self.file_url_bases
        return sorted(
            path
            for path, markdown in self.iter_page_contents()
            if is_file_referenced(target, extract_file_references(markdown, bases))
        )

    def find_orphaned_files(
        self, deleted_page_path: str, content: str | None = None
    ) -> list[FileInfo]:
        """Files referenced by ``deleted_page_path`` that no other page references."""
        if content is None:
            try:
                stored = self._store.get(page_key(deleted_page_path))
            except ObjectNotFoundError:
                return []
            content = stored.body.decode("utf-8", errors="replace")

        refs = extract_file_references(content, self.file_url_bases)
        candidates = [f for f in self.list_files() if is_file_referenced(f, refs)]
        if not candidates:
            return []

        index = self.build_reference_index(exclude=[deleted_page_path])
        return [f for f in candidates if not referrers_of(f, index)]

    def find_all_orphaned_files(self) -> list[FileInfo]:
        files = self.list_files()
        if not files:
            return []
        index = self.build_reference_index()
        return [f for f in files if not referrers_of(f, index)]

    def delete_orphaned_files(self, file_ids: Iterable[str]) -> list[str]:
        """Best-effort bulk delete. Returns the ids that could not be deleted."""
        failed: list[str] = []
        for file_id in file_ids:
            try:
                self.delete_file(file_id)
            except MarkS3Error as e:
                logger.warning("Could not delete orphaned file %s: %s", file_id, e)
                failed.append(file_id)
        return failed

    def get_file_usage_stats(self) -> dict[str, int]:
        files = self.list_files()
        images = sum(1 for f in files if is_image(f.filename, f.content_type))
        return {
            "total_files": len(files),
            "total_size": sum(f.size for f in files),
            "image_files": images,
            "document_files": len(files) - images,
            "orphaned_files": len(self.find_all_orphaned_files()),
        }

    # --- Index maintenance ---

    def _listed_files(self) -> dict[str, ObjectInfo]:
        """id -> listing entry for every blob under ``files/``."""
        listed: dict[str, ObjectInfo] = {}
        for obj in self._store.list(FILES_PREFIX):
            rest = obj.key[len(FILES_PREFIX) :]
            if "/" not in rest:
                continue
            listed[rest.rsplit("/", 1)[-1]] = obj
        return listed

    def verify_index(self) -> dict[str, Any]:
        listed = self._listed_files()
        indexed = set(self._read_index().entries)
        unindexed = sorted(set(listed) - indexed)
        dangling = sorted(indexed - set(listed))
        return {
            "file_count": len(listed),
            "unindexed": unindexed,
            "dangling": dangling,
            "ok": not unindexed and not dangling,
        }

    def rebuild_index(self, *, apply: bool = False) -> dict[str, Any]:
        """Reconcile the file index with the blobs under ``files/``."""
        verify = self.verify_index()
        result: dict[str, Any] = {
            "unindexed": verify["unindexed"],
            "dangling": verify["dangling"],
            "applied": False,
        }
        if not apply or verify["ok"]:
            return result

        listed = self._listed_files()
        fresh: dict[str, dict[str, Any]] = {}
        for file_id in verify["unindexed"]:
            obj = listed.get(file_id)
            if obj is None:
                continue
            try:
                stored = self._store.head(obj.key)
            except ObjectNotFoundError:
                continue
            fresh[file_id] = self._info_from_head(file_id, obj, stored).to_json()

        dangling = set(verify["dangling"])

        def _reconcile(doc: MetadataDocument) -> MetadataDocument:
            entries = {k: v for k, v in doc.entries.items() if k not in dangling}
            for file_id, entry in fresh.items():
                entries.setdefault(file_id, entry)
            return doc.with_entries(entries)

        self._metadata.apply(FILE_INDEX_KEY, _reconcile)
        result["applied"] = True
        logger.info(
            "Rebuilt file index: %d added, %d removed", len(fresh), len(dangling)
        )
        return result

    def _info_from_head(self, file_id: str, obj: ObjectInfo, stored: StoredObject) -> FileInfo:
        meta = stored.metadata
        return FileInfo(
            id=file_id,
            filename=meta.get("original-name") or file_id,
            size=obj.size,
            content_type=stored.content_type or "application/octet-stream",
            uploaded_at=meta.get("uploaded-at") or utcnow(),
            url=self._store.url_for(obj.key),
        )

    def _read_index(self) -> MetadataDocument:
        return self._metadata.read(FILE_INDEX_KEY)

    def _index_apply(
        self, operation: Callable[[MetadataDocument], MetadataDocument], warning: str
    ) -> None:
        try:
            self._metadata.apply(FILE_INDEX_KEY, operation)
        except IndexContentionError as e:
            self.last_index_warning = f"{warning}: {e}"
            logger.warning("%s; run 'marks3 index rebuild --apply' to reconcile (%s)", warning, e)
