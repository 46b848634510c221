"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import typer
from pydantic import BaseModel

from marks3.models import PageNode


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=_json_default)


def format_cell(value: Any) -> str:
    """Render one value for text output: UTC timestamps, joined lists, '-' for empty."""
    if value is None:
        return "-"
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return ", ".join(format_cell(v) for v in items) or "-"
    return str(value)


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print rows under ``headers`` as aligned columns, or as a JSON array of objects."""
    if json_mode:
        typer.echo(_dumps([dict(zip(headers, row)) for row in rows]))
        return
    if not rows:
        return

    cells = [[format_cell(v) for v in row] for row in rows]
    widths = [
        max([len(h)] + [len(row[i]) for row in cells if i < len(row)])
        for i, h in enumerate(headers)
    ]
    typer.echo("  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip())
    typer.echo("  ".join("-" * w for w in widths))
    for row in cells:
        typer.echo("  ".join(v.ljust(w) for v, w in zip(row, widths)).rstrip())


def _echo_mapping(data: dict[str, Any], depth: int) -> None:
    indent = "  " * depth
    for key, value in data.items():
        if isinstance(value, dict):
            typer.echo(f"{indent}{key}:")
            _echo_mapping(value, depth + 1)
        else:
            typer.echo(f"{indent}{key}: {format_cell(value)}")


def print_object(data: dict[str, Any] | list[Any], *, json_mode: bool = False) -> None:
    """Print a result as JSON, or as ``key: value`` lines with nested sections indented."""
    if json_mode:
        typer.echo(_dumps(data))
        return

    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                _echo_mapping(item, 1)
                typer.echo()
            else:
                typer.echo(f"  {format_cell(item)}")
        return

    _echo_mapping(data, 0)


def print_tree(nodes: list[PageNode], *, json_mode: bool = False) -> None:
    """Print the page hierarchy as an indented outline or nested JSON."""
    if json_mode:
        typer.echo(_dumps([n.to_dict() for n in nodes]))
        return

    def _walk(level: list[PageNode], depth: int) -> None:
        for node in level:
            indent = "  " * depth
            if node.is_folder:
                typer.echo(f"{indent}{node.title}/")
                _walk(node.children, depth + 1)
            else:
                typer.echo(f"{indent}{node.title}  ({node.path})")

    _walk(nodes, 0)


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"Error: {msg}", err=True)
