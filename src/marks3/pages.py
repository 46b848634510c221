"""Markdown pages stored as objects, plus the page index."""

from __future__ import annotations

import logging
import re
from functools import partial
from typing import Any, Callable

import pydantic

from marks3.config import WikiStoreConfig
from marks3.content import (
    PAGE_SUFFIX,
    extract_tags,
    extract_title,
    title_from_path,
    validate_page_path,
)
from marks3.errors import (
    EditConflictError,
    IndexContentionError,
    ObjectNotFoundError,
    PageAlreadyExistsError,
    PageNotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from marks3.files import FileRepository
from marks3.hierarchy import build_tree
from marks3.metadata import MetadataDocument, MetadataStore
from marks3.models import (
    DeletionPreview,
    FileInfo,
    PageDeletionResult,
    PageIndexEntry,
    PageMetadata,
    PageNode,
    WikiPage,
    utcnow,
)
from marks3.references import extract_file_references, is_file_referenced
from marks3.retry import call_with_retry
from marks3.storage import (
    PAGE_INDEX_KEY,
    PAGES_PREFIX,
    ObjectStore,
    StoredObject,
    page_key,
    path_from_page_key,
    put_with_retry,
)

logger = logging.getLogger(__name__)

PAGE_CONTENT_TYPE = "text/markdown; charset=utf-8"


def _links_to_page(content: str, path: str) -> bool:
    """True when ``content`` links to the page at ``path``."""
    stem = path[: -len(PAGE_SUFFIX)] if path.endswith(PAGE_SUFFIX) else path
    name = stem.rsplit("/", 1)[-1]
    targets = "|".join(re.escape(t) for t in (path, stem))
    link = re.compile(rf"\]\(\s*<?/?(?:{targets})>?(?:#[^)\s]*)?(?:\s+\"[^\"]*\")?\s*\)")
    wiki = re.compile(rf"\[\[\s*(?:{re.escape(stem)}|{re.escape(name)})\s*(?:\|[^\]]*)?\]\]")
    return bool(link.search(content) or wiki.search(content))


class PageRepository:
    """Pages under ``pages/<path>`` with metadata in object headers.

    The page object is the source of truth; ``metadata/pages.json`` is a
    derived listing kept in step through :class:`MetadataStore`. When the
    index update loses too many races after the page write succeeded, the
    page write stands, a warning is logged and ``last_index_warning`` is set.
    """

    def __init__(
        self,
        store: ObjectStore,
        metadata: MetadataStore,
        files: FileRepository,
        config: WikiStoreConfig | None = None,
    ) -> None:
        self._store = store
        self._metadata = metadata
        self._files = files
        self._config = config or WikiStoreConfig()
        self.last_index_warning: str | None = None

    # --- CRUD ---

    def get_page(self, path: str) -> WikiPage:
        try:
            stored = call_with_retry(
                partial(self._store.get, page_key(path)),
                config=self._config,
                operation=f"get page {path}",
            )
        except ObjectNotFoundError:
            raise PageNotFoundError(path) from None
        return self._page_from_object(path, stored)

    def page_exists(self, path: str) -> bool:
        try:
            self._store.head(page_key(path))
        except ObjectNotFoundError:
            return False
        return True

    def create_page(self, path: str, content: str, author: str | None = None) -> WikiPage:
        """Create a page; fails with PageAlreadyExistsError if the path is taken."""
        validate_page_path(path)
        now = utcnow()
        meta = PageMetadata(
            created_at=now,
            updated_at=now,
            author=author or self._config.default_author,
            version=1,
            tags=extract_tags(content),
        )
        title = extract_title(content) or title_from_path(path)

        try:
            etag = put_with_retry(
                self._store,
                page_key(path),
                content.encode("utf-8"),
                config=self._config,
                operation=f"create page {path}",
                if_none_match="*",
                content_type=PAGE_CONTENT_TYPE,
                metadata=meta.to_object_metadata(title),
            )
        except PreconditionFailedError:
            raise PageAlreadyExistsError(path) from None

        page = WikiPage(path=path, title=title, content=content, metadata=meta, etag=etag)
        self._index_upsert(page)
        logger.info("Created page %s", path)
        return page

    def update_page(
        self,
        path: str,
        content: str,
        expected_etag: str,
        author: str | None = None,
    ) -> WikiPage:
        """Replace a page's content if it still has ``expected_etag``.

        Raises EditConflictError carrying the current page (or ``None`` when
        it was deleted meanwhile) and the attempted content otherwise.
        """
        validate_page_path(path)
        if not expected_etag:
            raise ValidationError("expected_etag is required to update a page")

        try:
            current = call_with_retry(
                partial(self._store.head, page_key(path)),
                config=self._config,
                operation=f"head page {path}",
            )
        except ObjectNotFoundError:
            raise PageNotFoundError(path) from None
        if current.etag != expected_etag:
            raise self._conflict(path, content)

        current_meta = PageMetadata.from_object_metadata(current.metadata)
        meta = PageMetadata(
            created_at=current_meta.created_at,
            updated_at=utcnow(),
            author=author or current_meta.author,
            version=current_meta.version + 1,
            tags=extract_tags(content),
        )
        title = extract_title(content) or current.metadata.get("title") or title_from_path(path)

        try:
            etag = put_with_retry(
                self._store,
                page_key(path),
                content.encode("utf-8"),
                config=self._config,
                operation=f"update page {path}",
                if_match=expected_etag,
                content_type=PAGE_CONTENT_TYPE,
                metadata=meta.to_object_metadata(title),
            )
        except (PreconditionFailedError, ObjectNotFoundError):
            raise self._conflict(path, content) from None

        page = WikiPage(path=path, title=title, content=content, metadata=meta, etag=etag)
        self._index_upsert(page)
        logger.info("Updated page %s to version %d", path, meta.version)
        return page

    def delete_page(self, path: str) -> PageDeletionResult:
        """Delete a page and report the files only it referenced.

        Deleting a missing page is not an error. Orphaned files are reported,
        never deleted here.
        """
        validate_page_path(path)
        try:
            content = self.get_page(path).content
        except PageNotFoundError:
            content = ""

        call_with_retry(
            partial(self._store.delete, page_key(path)),
            config=self._config,
            operation=f"delete page {path}",
        )
        self._index_apply(
            lambda doc: doc.without_entry(path),
            f"page {path} deleted but still indexed",
        )

        orphaned = self._files.find_orphaned_files(path, content=content) if content else []
        if orphaned:
            logger.info("Deleting %s left %d orphaned file(s)", path, len(orphaned))
        return PageDeletionResult(deleted_page=path, orphaned_files=orphaned)

    # --- Listing and search ---

    def list_pages(self, prefix: str | None = None) -> list[PageIndexEntry]:
        entries = self._index_entries()
        if prefix:
            entries = [e for e in entries if e.path.startswith(prefix)]
        return sorted(entries, key=lambda e: e.path)

    def search_pages(self, query: str, prefix: str | None = None) -> list[PageIndexEntry]:
        """Index search ranked exact title, title, tag, then path match.

        Ties are broken by most recently updated first.
        """
        needle = query.strip().casefold()
        if not needle:
            return []

        ranked: list[tuple[int, float, str, PageIndexEntry]] = []
        for entry in self.list_pages(prefix):
            title = entry.title.casefold()
            if title == needle:
                rank = 0
            elif needle in title:
                rank = 1
            elif any(needle in tag.casefold() for tag in entry.tags):
                rank = 2
            elif needle in entry.path.casefold():
                rank = 3
            else:
                continue
            ranked.append((rank, -entry.updated_at.timestamp(), entry.path, entry))
        ranked.sort(key=lambda r: r[:3])
        return [r[3] for r in ranked]

    def get_pages_by_tag(self, tag: str) -> list[PageIndexEntry]:
        wanted = tag.strip().casefold()
        pages = [
            e for e in self.list_pages() if any(t.casefold() == wanted for t in e.tags)
        ]
        return sorted(pages, key=lambda e: e.updated_at, reverse=True)

    def get_all_tags(self) -> list[str]:
        tags = {t for e in self.list_pages() for t in e.tags}
        return sorted(tags, key=lambda t: (t.casefold(), t))

    def get_hierarchy(self) -> list[PageNode]:
        return build_tree(self.list_pages())

    # --- References ---

    def get_page_attachments(self, path: str) -> list[FileInfo]:
        """Indexed files the page references."""
        refs = extract_file_references(self.get_page(path).content, self._files.file_url_bases)
        if not refs:
            return []
        return [f for f in self._files.list_files() if is_file_referenced(f, refs)]

    def preview_deletion(self, path: str) -> DeletionPreview:
        """What deleting ``path`` would leave behind, without deleting anything."""
        try:
            page = self.get_page(path)
        except PageNotFoundError:
            return DeletionPreview(can_delete=False, warnings=["Page not found"])

        orphaned = self._files.find_orphaned_files(path, content=page.content)
        by_path = {e.path: e for e in self.list_pages()}
        referencing = [
            by_path[other]
            for other, markdown in self._files.iter_page_contents(exclude=[path])
            if other in by_path and _links_to_page(markdown, path)
        ]

        warnings: list[str] = []
        if orphaned:
            warnings.append(f"{len(orphaned)} file(s) will become orphaned")
        if referencing:
            warnings.append(f"{len(referencing)} page(s) link to this page")
        return DeletionPreview(
            can_delete=True,
            orphaned_files=orphaned,
            referencing_pages=referencing,
            warnings=warnings,
        )

    # --- Index maintenance ---

    def _listed_paths(self) -> set[str]:
        return {
            path_from_page_key(obj.key)
            for obj in self._store.list(PAGES_PREFIX)
            if obj.key.endswith(PAGE_SUFFIX)
        }

    def verify_index(self) -> dict[str, Any]:
        listed = self._listed_paths()
        indexed = set(self._read_index().entries)
        unindexed = sorted(listed - indexed)
        dangling = sorted(indexed - listed)
        return {
            "page_count": len(listed),
            "unindexed": unindexed,
            "dangling": dangling,
            "ok": not unindexed and not dangling,
        }

    def rebuild_index(self, *, apply: bool = False) -> dict[str, Any]:
        """Reconcile the page index with the objects under ``pages/``.

        Dry run by default. With ``apply`` the missing entries are rebuilt
        from object metadata and entries without an object are dropped.
        """
        verify = self.verify_index()
        result: dict[str, Any] = {
            "unindexed": verify["unindexed"],
            "dangling": verify["dangling"],
            "applied": False,
        }
        if not apply or verify["ok"]:
            return result

        fresh: dict[str, dict[str, Any]] = {}
        for path in verify["unindexed"]:
            try:
                page = self.get_page(path)
            except PageNotFoundError:
                continue
            fresh[path] = page.to_index_entry().to_json()

        # Re-check right before writing, a page may have been created meanwhile.
        dangling = {p for p in verify["dangling"] if not self.page_exists(p)}

        def _reconcile(doc: MetadataDocument) -> MetadataDocument:
            entries = {k: v for k, v in doc.entries.items() if k not in dangling}
            for path, entry in fresh.items():
                entries.setdefault(path, entry)
            return doc.with_entries(entries)

        self._metadata.apply(PAGE_INDEX_KEY, _reconcile)
        result["applied"] = True
        logger.info("Rebuilt page index: %d added, %d removed", len(fresh), len(dangling))
        return result

    # --- Internals ---

    def _page_from_object(self, path: str, stored: StoredObject) -> WikiPage:
        content = stored.body.decode("utf-8", errors="replace")
        title = stored.metadata.get("title") or extract_title(content) or title_from_path(path)
        return WikiPage(
            path=path,
            title=title,
            content=content,
            metadata=PageMetadata.from_object_metadata(stored.metadata),
            etag=stored.etag,
        )

    def _conflict(self, path: str, attempted_content: str) -> EditConflictError:
        try:
            current: WikiPage | None = self.get_page(path)
        except PageNotFoundError:
            current = None
        logger.info("Edit conflict on %s", path)
        return EditConflictError(path, current, attempted_content)

    def _read_index(self) -> MetadataDocument:
        return self._metadata.read(PAGE_INDEX_KEY)

    def _index_entries(self) -> list[PageIndexEntry]:
        """Valid entries of the page index; malformed ones are logged and skipped."""
        entries: list[PageIndexEntry] = []
        for raw in self._read_index().values():
            try:
                entries.append(PageIndexEntry.model_validate(raw))
            except pydantic.ValidationError as e:
                logger.warning(
                    "Skipping malformed page index entry %r (%d errors)",
                    raw.get("path"),
                    e.error_count(),
                )
        return entries

    def _index_upsert(self, page: WikiPage) -> None:
        entry = page.to_index_entry()

        def _upsert(doc: MetadataDocument) -> MetadataDocument:
            existing = doc.get(page.path)
            if existing is not None:
                try:
                    if PageIndexEntry.model_validate(existing).updated_at > entry.updated_at:
                        return doc
                except ValueError:
                    logger.warning("Replacing malformed index entry for %s", page.path)
            return doc.with_entry(page.path, entry.to_json())

        self._index_apply(_upsert, f"page {page.path} written but not indexed")

    def _index_apply(
        self, operation: Callable[[MetadataDocument], MetadataDocument], warning: str
    ) -> None:
        try:
            self._metadata.apply(PAGE_INDEX_KEY, operation)
        except IndexContentionError as e:
            self.last_index_warning = f"{warning}: {e}"
            logger.warning("%s; run 'marks3 index rebuild --apply' to reconcile (%s)", warning, e)
