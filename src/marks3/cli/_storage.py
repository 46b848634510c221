"""CLI helpers for opening the wiki from global options and environment."""

from __future__ import annotations

import os

import typer

from marks3.cli import _exitcodes as ec
from marks3.cli._output import print_error
from marks3.config import WikiStoreConfig
from marks3.wiki import Wiki


def config_from_env() -> WikiStoreConfig:
    """Build the store config from MARKS3_* environment variables."""
    config = WikiStoreConfig(
        s3_region=os.getenv("MARKS3_S3_REGION"),
        s3_endpoint_url=os.getenv("MARKS3_S3_ENDPOINT_URL"),
        public_base_url=os.getenv("MARKS3_PUBLIC_BASE_URL"),
    )
    max_size = os.getenv("MARKS3_MAX_FILE_SIZE")
    if max_size:
        config.max_file_size = int(max_size)
    from marks3.cli import state

    if state.author:
        config.default_author = state.author
    return config


def open_wiki() -> Wiki:
    """Open the wiki selected by --storage-uri / MARKS3_STORAGE_URI."""
    from marks3.cli import state

    if not state.storage_uri:
        raise RuntimeError("No storage configured; pass --storage-uri or set MARKS3_STORAGE_URI")
    return Wiki(state.storage_uri, config=config_from_env())


def open_wiki_or_exit() -> Wiki:
    try:
        return open_wiki()
    except Exception as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.USAGE_ERROR)
