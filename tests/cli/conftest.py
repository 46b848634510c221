"""Shared fixtures for CLI tests."""

from __future__ import annotations

import uuid

import pytest
from typer.testing import CliRunner

from marks3 import Wiki, WikiStoreConfig
from marks3.models import UploadFile
from marks3.storage import MemoryObjectStore


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_uri(monkeypatch):
    """A fresh in-process memory store addressed by URI."""
    monkeypatch.delenv("MARKS3_STORAGE_URI", raising=False)
    monkeypatch.delenv("MARKS3_AUTHOR", raising=False)
    name = f"cli-{uuid.uuid4().hex}"
    yield f"memory://{name}"
    MemoryObjectStore.discard(name)


@pytest.fixture
def seeded_uri(cli_uri):
    """A store with a few pages and files."""
    wiki = Wiki(cli_uri, config=WikiStoreConfig())
    logo = wiki.files.upload_file(UploadFile("logo.png", b"png"))
    wiki.files.upload_file(UploadFile("unused.pdf", b"pdf"))
    wiki.pages.create_page("index.md", "# Home\ntags: start\n![logo](logo.png)", author="ana")
    wiki.pages.create_page("guide/setup.md", "# Setup\ntags: start, ops\nSee [home](index.md)")
    wiki.close()
    return {"uri": cli_uri, "logo_id": logo.id}
