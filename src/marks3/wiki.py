"""Wiki: one object store wired to the page and file repositories."""

from __future__ import annotations

import logging
from typing import Any

from marks3.config import WikiStoreConfig
from marks3.files import FileRepository
from marks3.metadata import MetadataStore
from marks3.pages import PageRepository
from marks3.storage import ObjectStore, open_object_store

logger = logging.getLogger(__name__)


class Wiki:
    """Entry point for applications.

    Example::

        with Wiki("memory://demo") as wiki:
            page = wiki.pages.create_page("guide/intro.md", "# Intro")
            wiki.files.upload_file(UploadFile("plan.png", data))
    """

    def __init__(
        self,
        storage_uri: str | None = None,
        *,
        store: ObjectStore | None = None,
        config: WikiStoreConfig | None = None,
    ) -> None:
        if (storage_uri is None) == (store is None):
            raise ValueError("Pass exactly one of storage_uri or store")
        self.config = config or WikiStoreConfig()
        self.store: ObjectStore = store or open_object_store(storage_uri or "", config=self.config)
        self.metadata = MetadataStore(self.store, self.config)
        self.files = FileRepository(self.store, self.metadata, self.config)
        self.pages = PageRepository(self.store, self.metadata, self.files, self.config)

    def storage_info(self) -> dict[str, Any]:
        return dict(self.store.storage_info())

    def verify_indexes(self) -> dict[str, Any]:
        pages = self.pages.verify_index()
        files = self.files.verify_index()
        return {"ok": pages["ok"] and files["ok"], "pages": pages, "files": files}

    def rebuild_indexes(self, *, apply: bool = False) -> dict[str, Any]:
        return {
            "pages": self.pages.rebuild_index(apply=apply),
            "files": self.files.rebuild_index(apply=apply),
        }

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> Wiki:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
