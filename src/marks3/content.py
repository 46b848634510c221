"""Page path rules and metadata derived from markdown text."""

from __future__ import annotations

import re

from marks3.errors import InvalidPagePathError

PAGE_SUFFIX = ".md"

_INVALID_PATH_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')
_TAGS_LINE = re.compile(r"^[ \t]*tags:[ \t]*(?P<tags>.*)$", re.IGNORECASE | re.MULTILINE)


def validate_page_path(path: str) -> str:
    """Return ``path`` unchanged if it is a valid page path, else raise."""
    if not path or not path.strip():
        raise InvalidPagePathError(path, "path cannot be empty")
    if not path.endswith(PAGE_SUFFIX):
        raise InvalidPagePathError(path, f"path must end with {PAGE_SUFFIX}")
    if _INVALID_PATH_CHARS.search(path):
        raise InvalidPagePathError(path, "path contains invalid characters")
    if path.startswith("/") or ".." in path.split("/"):
        raise InvalidPagePathError(path, "path cannot contain relative path components")
    if "" in path.split("/"):
        raise InvalidPagePathError(path, "path cannot contain empty segments")
    return path


def title_from_path(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    if name.endswith(PAGE_SUFFIX):
        name = name[: -len(PAGE_SUFFIX)]
    return re.sub(r"[-_]", " ", name)


def extract_title(content: str) -> str | None:
    """First level-one heading, if any."""
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("# "):
            title = stripped[2:].strip()
            if title:
                return title
    return None


def extract_tags(content: str) -> list[str]:
    """Tags from the first ``tags: a, b`` line, de-duplicated in order."""
    match = _TAGS_LINE.search(content)
    if match is None:
        return []
    tags: list[str] = []
    for raw in match.group("tags").split(","):
        tag = raw.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags
