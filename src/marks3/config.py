"""Configuration for the MarkS3 storage core."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_DENIED_EXTENSIONS: tuple[str, ...] = (
    ".exe",
    ".bat",
    ".cmd",
    ".com",
    ".pif",
    ".scr",
    ".vbs",
    ".js",
)


@dataclass
class WikiStoreConfig:
    """Configuration for the object-store-backed repositories."""

    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    s3_request_timeout_s: float = 10.0
    # botocore's own retries; ours sit on top in marks3.retry
    s3_max_attempts: int = 1
    public_base_url: str | None = None
    max_file_size: int = 10 * 1024 * 1024
    denied_extensions: tuple[str, ...] = DEFAULT_DENIED_EXTENSIONS
    index_max_attempts: int = 5
    transient_max_attempts: int = 3
    backoff_base_ms: int = 50
    backoff_max_ms: int = 1000
    default_author: str = "anonymous"
