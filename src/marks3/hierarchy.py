"""Build the navigation tree from the flat page index."""

from __future__ import annotations

from typing import Iterable

from marks3.models import PageIndexEntry, PageNode


def _sort_key(node: PageNode) -> tuple[bool, str, str]:
    # folders first, then case-insensitive name, then exact name
    name = node.path.rsplit("/", 1)[-1]
    return (not node.is_folder, name.casefold(), name)


def _sort(nodes: list[PageNode]) -> None:
    nodes.sort(key=_sort_key)
    for node in nodes:
        if node.is_folder:
            _sort(node.children)


def build_tree(entries: Iterable[PageIndexEntry]) -> list[PageNode]:
    """Group index entries into folders on ``/``.

    Shared folder prefixes are created once. Within each level folders come
    before pages and names are ordered case-insensitively. A path that shows up
    twice keeps its first entry.
    """
    roots: list[PageNode] = []
    folders: dict[str, PageNode] = {}
    seen_pages: set[str] = set()

    for entry in entries:
        if entry.path in seen_pages:
            continue
        seen_pages.add(entry.path)

        parts = [p for p in entry.path.split("/") if p]
        if not parts:
            continue

        siblings = roots
        prefix = ""
        for part in parts[:-1]:
            prefix = f"{prefix}/{part}" if prefix else part
            folder = folders.get(prefix)
            if folder is None:
                folder = PageNode(path=prefix, title=part, is_folder=True)
                folders[prefix] = folder
                siblings.append(folder)
            siblings = folder.children

        siblings.append(PageNode(path=entry.path, title=entry.title, is_folder=False))

    _sort(roots)
    return roots
