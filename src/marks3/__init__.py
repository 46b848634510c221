"""MarkS3: a markdown wiki stored in an S3-compatible object store."""

from marks3.config import WikiStoreConfig
from marks3.errors import (
    EditConflictError,
    FatalStoreError,
    FileInfoNotFoundError,
    FileTooLargeError,
    IndexContentionError,
    InvalidFileTypeError,
    InvalidPagePathError,
    MarkS3Error,
    NotFoundError,
    ObjectNotFoundError,
    PageAlreadyExistsError,
    PageNotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    StorageBackendError,
    TransientStoreError,
    ValidationError,
)
from marks3.files import FileRepository
from marks3.metadata import MetadataDocument, MetadataStore
from marks3.models import (
    DeletionPreview,
    FileInfo,
    PageDeletionResult,
    PageIndexEntry,
    PageMetadata,
    PageNode,
    UploadFile,
    WikiPage,
)
from marks3.pages import PageRepository
from marks3.storage import MemoryObjectStore, ObjectStore, open_object_store
from marks3.wiki import Wiki

__version__ = "0.1.0"

__all__ = [
    "DeletionPreview",
    "EditConflictError",
    "FatalStoreError",
    "FileInfo",
    "FileInfoNotFoundError",
    "FileRepository",
    "FileTooLargeError",
    "IndexContentionError",
    "InvalidFileTypeError",
    "InvalidPagePathError",
    "MarkS3Error",
    "MemoryObjectStore",
    "MetadataDocument",
    "MetadataStore",
    "NotFoundError",
    "ObjectNotFoundError",
    "ObjectStore",
    "PageAlreadyExistsError",
    "PageDeletionResult",
    "PageIndexEntry",
    "PageMetadata",
    "PageNode",
    "PageNotFoundError",
    "PageRepository",
    "PermissionDeniedError",
    "PreconditionFailedError",
    "StorageBackendError",
    "TransientStoreError",
    "UploadFile",
    "ValidationError",
    "Wiki",
    "WikiPage",
    "WikiStoreConfig",
    "open_object_store",
]
