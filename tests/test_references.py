"""Tests for markdown file reference extraction."""

from __future__ import annotations

import pytest

from marks3.models import FileInfo, utcnow
from marks3.references import (
    build_reference_index,
    extract_file_references,
    is_file_referenced,
    referrers_of,
)


def _file(file_id: str, filename: str) -> FileInfo:
    return FileInfo(id=file_id, filename=filename, size=1, uploaded_at=utcnow())


@pytest.mark.parametrize(
    ("markdown", "expected"),
    [
        ("![Plan](plan.png)", {"plan.png"}),
        ('[Spec](files/attachments/1700-ab12cd34-spec.pdf "The spec")', {"1700-ab12cd34-spec.pdf"}),
        ("![a](<my file.png>)", {"my file.png"}),
        ("![a](my%20file.png)", {"my file.png"}),
        (r"![a](my\_file.png)", {"my_file.png"}),
        ("![logo](../images/logo.svg)", {"logo.svg"}),
        ("[logo]: images/logo.png \"Logo\"", {"logo.png"}),
    ],
)
def test_extracts_references(markdown: str, expected: set[str]) -> None:
    assert extract_file_references(markdown) == expected


@pytest.mark.parametrize(
    "markdown",
    [
        "[Intro](guide/intro.md)",
        "[Top](#top)",
        "[Mail](mailto:someone@example.com)",
        "[Site](https://example.com/about)",
        "[Readme](https://example.com/files/readme.txt)",
        "[Vendor doc](https://example.com/files/docs/report.pdf)",
        "[^1]: footnote.txt",
        "plain text mentioning plan.png",
    ],
)
def test_ignores_non_file_targets(markdown: str) -> None:
    assert extract_file_references(markdown) == set()


CDN_FILES = "https://cdn.test/wiki/files/"


@pytest.mark.parametrize(
    ("markdown", "expected"),
    [
        ("![x](https://cdn.test/wiki/files/images/1700-ab12cd34-x.png)", {"1700-ab12cd34-x.png"}),
        (
            "![x](https://CDN.test/wiki/files/images/1700-ab12cd34-x.png?v=2#top)",
            {"1700-ab12cd34-x.png"},
        ),
        (
            "[doc](https://cdn.test/wiki/files/attachments/1700-ab12cd34-my%20doc.pdf)",
            {"1700-ab12cd34-my doc.pdf"},
        ),
        ("[vendor](https://example.com/wiki/files/images/1700-ab12cd34-x.png)", set()),
        ("[listing](https://cdn.test/wiki/files/images/)", set()),
        ("[other](https://cdn.test/elsewhere/x.png)", set()),
    ],
)
def test_absolute_urls_only_under_the_stores_file_base(markdown: str, expected: set[str]) -> None:
    assert extract_file_references(markdown, [CDN_FILES]) == expected


def test_absolute_urls_are_ignored_without_a_file_base() -> None:
    markdown = "![x](https://cdn.test/wiki/files/images/1700-ab12cd34-x.png)"
    assert extract_file_references(markdown) == set()
    assert extract_file_references(markdown, ["https://cdn.test/wiki/files"]) == {
        "1700-ab12cd34-x.png"
    }


def test_image_wrapped_in_link_is_found() -> None:
    refs = extract_file_references("[![logo](logo.png)](https://example.com)")
    assert refs == {"logo.png"}


def test_collects_all_references_in_a_page() -> None:
    markdown = "\n".join(
        [
            "# Trip",
            "![map](map.png) and ![map again](map.png)",
            "See [the budget](files/attachments/1-aa-budget.xlsx).",
            "[ref]: photos/beach.jpg",
        ]
    )
    assert extract_file_references(markdown) == {"map.png", "1-aa-budget.xlsx", "beach.jpg"}


def test_is_file_referenced_matches_id_or_filename_case_insensitively() -> None:
    f = _file("1700-ab12cd34-diagram.png", "Diagram.PNG")
    assert is_file_referenced(f, {"diagram.png"})
    assert is_file_referenced(f, {"1700-AB12CD34-diagram.png"})
    assert not is_file_referenced(f, {"other.png"})


def test_reference_index_and_referrers() -> None:
    index = build_reference_index(
        [
            ("a.md", "![x](X.png)"),
            ("b.md", "![x](x.png) ![y](files/images/1-aa-y.png)"),
            ("c.md", "nothing"),
        ]
    )
    assert index["x.png"] == {"a.md", "b.md"}
    assert referrers_of(_file("1-aa-y.png", "y.png"), index) == {"b.md"}
    assert referrers_of(_file("2-bb-z.png", "z.png"), index) == set()


def test_reference_index_resolves_store_urls() -> None:
    index = build_reference_index(
        [
            ("a.md", "![y](https://cdn.test/wiki/files/images/1-aa-y.png)"),
            ("b.md", "![y](https://mirror.test/wiki/files/images/y.png)"),
        ],
        [CDN_FILES],
    )
    assert referrers_of(_file("1-aa-y.png", "y.png"), index) == {"a.md"}
