"""Page, file and index records for MarkS3."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat()


def as_utc(value: datetime) -> datetime:
    """Timestamps without an offset are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PageIndexEntry(BaseModel):
    """One row of ``metadata/pages.json``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: str
    title: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    author: str = "unknown"
    tags: list[str] = Field(default_factory=list)

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FileInfo(BaseModel):
    """One row of ``metadata/files.json``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    filename: str
    size: int
    content_type: str = Field(default="application/octet-stream", alias="contentType")
    uploaded_at: datetime = Field(alias="uploadedAt")
    url: str = ""

    @field_validator("uploaded_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class PageMetadata:
    created_at: datetime
    updated_at: datetime
    author: str
    version: int = 1
    tags: list[str] = field(default_factory=list)

    def to_object_metadata(self, title: str) -> dict[str, str]:
        """Render as S3 user metadata (string values only)."""
        meta = {
            "title": title,
            "author": self.author,
            "created-at": _iso(self.created_at),
            "updated-at": _iso(self.updated_at),
            "version": str(self.version),
        }
        if self.tags:
            meta["tags"] = ",".join(self.tags)
        return meta

    @classmethod
    def from_object_metadata(cls, meta: dict[str, str]) -> PageMetadata:
        now = utcnow()
        tags_raw = meta.get("tags") or ""
        try:
            version = int(meta.get("version") or 1)
        except ValueError:
            version = 1
        return cls(
            created_at=_parse_dt(meta.get("created-at"), now),
            updated_at=_parse_dt(meta.get("updated-at"), now),
            author=meta.get("author") or "unknown",
            version=version,
            tags=[t.strip() for t in tags_raw.split(",") if t.strip()],
        )


def _parse_dt(value: str | None, default: datetime) -> datetime:
    if not value:
        return default
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        return default


@dataclass
class WikiPage:
    path: str
    title: str
    content: str
    metadata: PageMetadata
    etag: str | None = None

    def to_index_entry(self) -> PageIndexEntry:
        return PageIndexEntry(
            path=self.path,
            title=self.title,
            created_at=self.metadata.created_at,
            updated_at=self.metadata.updated_at,
            author=self.metadata.author,
            tags=list(self.metadata.tags),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "title": self.title,
            "content": self.content,
            "etag": self.etag,
            "createdAt": _iso(self.metadata.created_at),
            "updatedAt": _iso(self.metadata.updated_at),
            "author": self.metadata.author,
            "version": self.metadata.version,
            "tags": list(self.metadata.tags),
        }


@dataclass
class PageNode:
    """Tree node derived from the page index; never persisted."""

    path: str
    title: str
    is_folder: bool
    children: list[PageNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "title": self.title, "isFolder": self.is_folder}
        if self.is_folder:
            data["children"] = [c.to_dict() for c in self.children]
        return data


@dataclass
class PageDeletionResult:
    deleted_page: str
    orphaned_files: list[FileInfo] = field(default_factory=list)

    @property
    def confirmation_required(self) -> bool:
        return bool(self.orphaned_files)


@dataclass
class DeletionPreview:
    can_delete: bool
    orphaned_files: list[FileInfo] = field(default_factory=list)
    referencing_pages: list[PageIndexEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class UploadFile:
    """An upload request: raw bytes plus the client-supplied name and type."""

    filename: str
    data: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)
