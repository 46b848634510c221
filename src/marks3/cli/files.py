"""marks3 files: uploads, references and orphan cleanup."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from marks3.cli import _exitcodes as ec
from marks3.cli._output import print_error, print_object, print_table
from marks3.cli._storage import open_wiki_or_exit
from marks3.errors import MarkS3Error
from marks3.models import FileInfo, UploadFile

app = typer.Typer(no_args_is_help=True)

_FILE_HEADERS = ["id", "filename", "size", "content_type", "uploaded_at"]


def _file_rows(files: list[FileInfo]) -> list[list[object]]:
    return [
        [f.id, f.filename, f.size, f.content_type, f.uploaded_at] for f in files
    ]


@app.command(name="list")
def list_cmd() -> None:
    """List indexed files."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        files = sorted(wiki.files.list_files(), key=lambda f: f.uploaded_at, reverse=True)
        print_table(_FILE_HEADERS, _file_rows(files), json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="upload")
def upload_cmd(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Local file to upload"),
    name: Optional[str] = typer.Option(None, "--name", help="Filename to record (default: source name)"),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="MIME type override"),
) -> None:
    """Upload a file and print its id and URL."""
    from marks3.cli import state

    upload = UploadFile(
        filename=name or source.name,
        data=source.read_bytes(),
        content_type=content_type,
    )
    wiki = open_wiki_or_exit()
    try:
        info = wiki.files.upload_file(upload)
        data = info.to_json()
        if wiki.files.last_index_warning:
            data["index_warning"] = wiki.files.last_index_warning
        print_object(data, json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="refs")
def refs_cmd(file_id: str = typer.Argument(..., help="File id or filename")) -> None:
    """List the pages that reference a file."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        print_object(wiki.files.get_file_references(file_id), json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="orphans")
def orphans_cmd(
    page: Optional[str] = typer.Option(
        None, "--page", help="Only files that deleting this page would orphan"
    ),
) -> None:
    """List files no page references."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        if page:
            files = wiki.files.find_orphaned_files(page)
        else:
            files = wiki.files.find_all_orphaned_files()
        print_table(_FILE_HEADERS, _file_rows(files), json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="stats")
def stats_cmd() -> None:
    """Show file counts, total size and orphan count."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        print_object(wiki.files.get_file_usage_stats(), json_mode=state.json_output)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="delete")
def delete_cmd(file_ids: list[str] = typer.Argument(..., help="File ids to delete")) -> None:
    """Delete files by id."""
    from marks3.cli import state

    wiki = open_wiki_or_exit()
    try:
        failed = wiki.files.delete_orphaned_files(file_ids)
        deleted = [i for i in file_ids if i not in failed]
        print_object({"deleted": deleted, "failed": failed}, json_mode=state.json_output)
        if failed:
            raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        wiki.close()


@app.command(name="prune")
def prune_cmd(
    apply: bool = typer.Option(False, "--apply", help="Delete the orphans (default: dry-run)"),
) -> None:
    """Delete every file that no page references."""
    from marks3.cli import state

    json_mode = state.json_output
    wiki = open_wiki_or_exit()
    try:
        orphans = [f.id for f in wiki.files.find_all_orphaned_files()]
        if not apply:
            print_object({"orphaned": orphans, "applied": False}, json_mode=json_mode)
            return
        failed = wiki.files.delete_orphaned_files(orphans)
        print_object(
            {"deleted": [i for i in orphans if i not in failed], "failed": failed, "applied": True},
            json_mode=json_mode,
        )
        if failed:
            raise typer.Exit(ec.EXECUTION_FAILURE)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()
