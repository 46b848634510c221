"""marks3 index: verify and rebuild the page and file indexes."""

from __future__ import annotations

import typer

from marks3.cli import _exitcodes as ec
from marks3.cli._output import print_error, print_object
from marks3.cli._storage import open_wiki_or_exit
from marks3.errors import MarkS3Error

app = typer.Typer(no_args_is_help=True)


@app.command(name="verify")
def index_verify_cmd() -> None:
    """Compare the indexes with the objects actually stored."""
    from marks3.cli import state

    json_mode = state.json_output
    wiki = open_wiki_or_exit()
    try:
        data = wiki.verify_indexes()
        print_object(data, json_mode=json_mode)
        if not data["ok"]:
            raise typer.Exit(ec.EXECUTION_FAILURE)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()


@app.command(name="rebuild")
def index_rebuild_cmd(
    apply: bool = typer.Option(False, "--apply", help="Write the rebuilt indexes (default: dry-run)"),
) -> None:
    """Rebuild missing entries and drop dangling ones."""
    from marks3.cli import state

    json_mode = state.json_output
    wiki = open_wiki_or_exit()
    try:
        data = wiki.rebuild_indexes(apply=apply)
        print_object(data, json_mode=json_mode)
    except MarkS3Error as e:
        print_error(str(e))
        raise typer.Exit(ec.for_error(e))
    finally:
        wiki.close()
