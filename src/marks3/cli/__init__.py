"""MarkS3 CLI: operator console for a wiki stored in an object store."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from marks3.cli import files, index, pages

app = typer.Typer(
    name="marks3",
    help="MarkS3 CLI: manage wiki pages, files and indexes in an object store.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    storage_uri: str | None = None
    author: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("marks3")
        except Exception:
            v = "unknown"
        print(f"marks3 {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="MARKS3_STORAGE_URI",
        help="Storage URI (s3://bucket/prefix or memory://name)",
    ),
    author: Optional[str] = typer.Option(
        None, "--author", envvar="MARKS3_AUTHOR", help="Author recorded on page writes"
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log storage activity to stderr"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all marks3 commands."""
    from marks3.storage import parse_storage_target

    if storage_uri:
        try:
            parse_storage_target(storage_uri)
        except Exception as e:
            raise typer.BadParameter(str(e))

    if verbose:
        logging.basicConfig(
            level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )

    state.storage_uri = storage_uri
    state.author = author
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(pages.app, name="pages", help="Create, read, update and delete pages")
app.add_typer(files.app, name="files", help="Uploaded files and orphan detection")
app.add_typer(index.app, name="index", help="Index health and rebuild commands")


def main() -> None:
    """Entry point for the marks3 CLI."""
    app()
