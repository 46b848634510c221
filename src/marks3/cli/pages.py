"""marks3 pages: page CRUD, search and navigation."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer

from marks3.cli import _exitcodes as ec
from marks3.cli._output import print_error, print_object, print_table, print_tree
from marks3.cli._storage import open_wiki_or_exit
from marks3.errors import EditConflictError, MarkS3Error
from marks3.models import PageIndexEntry

app = typer.Typer(no_args_is_help=True)


def _read_content(content: str | None, file: Path | None) -> str:
    if content is not None and file is not None:
        print_error("Pass either --content or --file, not both")
        raise typer.Exit(ec.USAGE_ERROR)
    if content is not None:
        return content
    if file is not None:
        if str(file) == "-":
            return sys.stdin.read()
        return file.read_text(encoding="utf-8")
    print_error("Page content is required (--content or --file)")
    raise typer.Exit(ec.USAGE_ERROR)


def _entry_rows(entries: list[PageIndexEntry]) -> list[list[object]]:
    return [
        [e.path, e.title, e.updated_at, e.author, list(e.tags)]
        for e in entries
    ]


_ENTRY_HEADERS = ["path", "title", "updated_at", "author", "tags"]


@app.command(name="list")
def list_cmd(
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Only paths starting with this"),
) -> None:
    """List indexed pages."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        entries = wiki.pages.list_pages(prefix)
        print_table(_ENTRY_HEADERS, _entry_rows(entries), json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="show")
def show_cmd(path: str = typer.Argument(..., help="Page path, e.g. guide/intro.md")) -> None:
    """Show a page with its metadata and ETag."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        page = wiki.pages.get_page(path)
        if state.json_output:
            print_object(page.to_dict(), json_mode=True)
        else:
            data = page.to_dict()
            body = data.pop("content")
            print_object(data)
            print()
            print(body)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="create")
def create_cmd(
    path: str = typer.Argument(..., help="Page path ending in .md"),
    content: Optional[str] = typer.Option(None, "--content", help="Markdown text"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read markdown from file ('-' for stdin)"),
) -> None:
    """Create a new page."""
    from marks3.cli import state

    text = _read_content(content, file)
    wiki = open_wiki_or_exit()
    try:
        page = wiki.pages.create_page(path, text, author=state.author)
        _report_write(page.path, page.etag, page.metadata.version, wiki.pages.last_index_warning)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="update")
def update_cmd(
    path: str = typer.Argument(..., help="Page path ending in .md"),
    etag: str = typer.Option(..., "--etag", help="ETag the edit is based on (see 'pages show')"),
    content: Optional[str] = typer.Option(None, "--content", help="Markdown text"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read markdown from file ('-' for stdin)"),
) -> None:
    """Update a page if nobody changed it since ETAG."""
    from marks3.cli import state

    text = _read_content(content, file)
    wiki = open_wiki_or_exit()
    try:
        page = wiki.pages.update_page(path, text, etag, author=state.author)
        _report_write(page.path, page.etag, page.metadata.version, wiki.pages.last_index_warning)
    except EditConflictError as e:
        print_error(str(e))
        if e.current is not None:
            print_error(
                f"Current version {e.current.metadata.version} by {e.current.metadata.author}, "
                f"etag {e.current.etag}"
            )
        else:
            print_error("The page has been deleted")
        raise typer.Exit(ec.CONFLICT)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


def _report_write(path: str, etag: str | None, version: int, warning: str | None) -> None:
    from marks3.cli import state

    data = {"path": path, "etag": etag, "version": version}
    if warning:
        data["index_warning"] = warning
    print_object(data, json_mode=state.json_output)


@app.command(name="delete")
def delete_cmd(
    path: str = typer.Argument(..., help="Page path ending in .md"),
    preview: bool = typer.Option(False, "--preview", help="Only show what deleting would leave behind"),
) -> None:
    """Delete a page and report files it leaves orphaned."""
    from marks3.cli import state

    json_mode = state.json_output
    wiki = open_wiki_or_exit()
    try:
        if preview:
            p = wiki.pages.preview_deletion(path)
            print_object(
                {
                    "can_delete": p.can_delete,
                    "orphaned_files": [f.id for f in p.orphaned_files],
                    "referencing_pages": [e.path for e in p.referencing_pages],
                    "warnings": p.warnings,
                },
                json_mode=json_mode,
            )
            return
        result = wiki.pages.delete_page(path)
        print_object(
            {
                "deleted_page": result.deleted_page,
                "orphaned_files": [f.id for f in result.orphaned_files],
                "confirmation_required": result.confirmation_required,
            },
            json_mode=json_mode,
        )
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="search")
def search_cmd(
    query: str = typer.Argument(..., help="Text to look for in titles, tags and paths"),
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Only paths starting with this"),
) -> None:
    """Search the page index."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        entries = wiki.pages.search_pages(query, prefix=prefix)
        print_table(_ENTRY_HEADERS, _entry_rows(entries), json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="tree")
def tree_cmd() -> None:
    """Show pages grouped into folders."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        print_tree(wiki.pages.get_hierarchy(), json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="tags")
def tags_cmd(
    tag: Optional[str] = typer.Option(None, "--tag", help="List the pages carrying this tag"),
) -> None:
    """List all tags, or the pages with one tag."""
    from marks3.cli import state

    json_mode = state.json_output
    wiki = open_wiki_or_exit()
    try:
        if tag:
            entries = wiki.pages.get_pages_by_tag(tag)
            print_table(_ENTRY_HEADERS, _entry_rows(entries), json_mode=json_mode)
        else:
            print_object(wiki.pages.get_all_tags(), json_mode=json_mode)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()
