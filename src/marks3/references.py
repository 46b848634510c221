"""Extract file references from page markdown.

Pure functions only: no I/O, no store access. A reference is the final path
segment of a markdown image or link target, so ``![plan](plan.png)`` and
``[spec](files/attachments/1700000000000-ab12cd34-spec.pdf)`` both reduce to an
identifier that can be compared with a :class:`~marks3.models.FileInfo` id or
filename. An absolute URL only counts when it starts with one of the
``file_bases`` passed in, the store's own URL for ``files/``; links to any
other host never name a stored file.
"""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import unquote, urlsplit, urlunsplit

from marks3.models import FileInfo

# [text](target "title") and ![alt](target), target optionally in <...>.
_INLINE_RE = re.compile(
    r"!?\[(?:[^\[\]\\]|\\.|\[[^\[\]]*\])*\]"
    r"\(\s*(?:<(?P<angle>[^<>\n]*)>|(?P<bare>(?:[^()\s\\]|\\.|\([^()\s]*\))+))"
    r"(?:\s+(?:\"[^\"]*\"|'[^']*'|\([^()]*\)))?\s*\)"
)

# Innermost form, so an image wrapped in a link is seen as well.
_INNER_RE = re.compile(
    r"!?\[[^\[\]]*\]"
    r"\(\s*(?:<(?P<angle>[^<>\n]*)>|(?P<bare>(?:[^()\s\\]|\\.|\([^()\s]*\))+))"
    r"(?:\s+(?:\"[^\"]*\"|'[^']*'|\([^()]*\)))?\s*\)"
)

# [label]: target "title"
_DEFINITION_RE = re.compile(
    r"^[ ]{0,3}\[(?!\^)[^\]]+\]:[ \t]*(?:<(?P<angle>[^<>\n]*)>|(?P<bare>\S+))",
    re.MULTILINE,
)


def _normalize_bases(file_bases: Iterable[str]) -> tuple[str, ...]:
    bases = []
    for base in file_bases:
        base = unquote(base).lower()
        bases.append(base if base.endswith("/") else base + "/")
    return tuple(bases)


def _identifier(target: str, bases: tuple[str, ...]) -> str | None:
    target = target.strip().replace("\\", "")
    if not target or target.startswith("#"):
        return None

    parts = urlsplit(target)
    path = unquote(parts.path)

    if parts.scheme or parts.netloc:
        location = unquote(urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")))
        for base in bases:
            if location.lower().startswith(base):
                # <category>/<id> below files/
                tail = [s for s in location[len(base) :].split("/") if s]
                return tail[-1] if len(tail) == 2 else None
        return None

    name = path.rstrip("/").rsplit("/", 1)[-1]
    if not name or name.lower().endswith(".md"):
        return None
    return name


def extract_file_references(markdown: str, file_bases: Iterable[str] = ()) -> set[str]:
    """Return the identifiers of every file the markdown points at."""
    bases = _normalize_bases(file_bases)
    refs: set[str] = set()
    for pattern in (_INLINE_RE, _INNER_RE, _DEFINITION_RE):
        for match in pattern.finditer(markdown):
            target = match.group("angle")
            if target is None:
                target = match.group("bare")
            ident = _identifier(target or "", bases)
            if ident is not None:
                refs.add(ident)
    return refs


def is_file_referenced(file: FileInfo, refs: Iterable[str]) -> bool:
    """True when ``refs`` names ``file`` by id or by filename (case-insensitive)."""
    folded = {r.casefold() for r in refs}
    return file.id.casefold() in folded or file.filename.casefold() in folded


def build_reference_index(
    pages: Iterable[tuple[str, str]], file_bases: Iterable[str] = ()
) -> dict[str, set[str]]:
    """Build a reverse index identifier -> referring page paths.

    ``pages`` yields ``(path, markdown)`` pairs. Identifiers are case-folded.
    """
    bases = tuple(file_bases)
    index: dict[str, set[str]] = {}
    for path, markdown in pages:
        for ref in extract_file_references(markdown, bases):
            index.setdefault(ref.casefold(), set()).add(path)
    return index


def referrers_of(file: FileInfo, index: dict[str, set[str]]) -> set[str]:
    """Pages that reference ``file`` according to a reverse index."""
    return index.get(file.id.casefold(), set()) | index.get(file.filename.casefold(), set())
