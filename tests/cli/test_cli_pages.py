"""CLI tests for marks3 pages."""

from __future__ import annotations

import json

from marks3.cli import _exitcodes as ec
from marks3.cli import app


def _invoke(runner, uri, *args):
    return runner.invoke(app, ["--storage-uri", uri, *args], catch_exceptions=False)


def test_no_storage_is_a_usage_error(runner, monkeypatch):
    monkeypatch.delenv("MARKS3_STORAGE_URI", raising=False)
    result = runner.invoke(app, ["pages", "list"], catch_exceptions=False)
    assert result.exit_code == ec.USAGE_ERROR


def test_bad_storage_uri_rejected(runner):
    result = runner.invoke(app, ["--storage-uri", "ftp://x", "pages", "list"])
    assert result.exit_code != 0


def test_storage_uri_from_env(runner, seeded_uri, monkeypatch):
    monkeypatch.setenv("MARKS3_STORAGE_URI", seeded_uri["uri"])
    result = runner.invoke(app, ["--json", "pages", "list"], catch_exceptions=False)
    assert result.exit_code == 0
    assert [p["path"] for p in json.loads(result.stdout)] == ["guide/setup.md", "index.md"]


def test_list_json(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "list", "--prefix", "guide/")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert [p["path"] for p in data] == ["guide/setup.md"]
    assert data[0]["tags"] == ["start", "ops"]


def test_show_json_includes_etag(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "show", "index.md")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["title"] == "Home"
    assert data["author"] == "ana"
    assert data["etag"]


def test_show_missing_page(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "pages", "show", "missing.md")
    assert result.exit_code == ec.NOT_FOUND


def test_create_uses_author_option(runner, cli_uri):
    result = _invoke(
        runner, cli_uri, "--author", "cli-user", "--json", "pages", "create", "new.md",
        "--content", "# New",
    )
    assert result.exit_code == 0
    assert json.loads(result.stdout)["version"] == 1

    shown = json.loads(_invoke(runner, cli_uri, "--json", "pages", "show", "new.md").stdout)
    assert shown["author"] == "cli-user"


def test_create_from_file(runner, cli_uri, tmp_path):
    source = tmp_path / "page.md"
    source.write_text("# From file\n", encoding="utf-8")
    result = _invoke(runner, cli_uri, "pages", "create", "f.md", "--file", str(source))
    assert result.exit_code == 0
    shown = json.loads(_invoke(runner, cli_uri, "--json", "pages", "show", "f.md").stdout)
    assert shown["title"] == "From file"


def test_create_requires_content(runner, cli_uri):
    result = _invoke(runner, cli_uri, "pages", "create", "x.md")
    assert result.exit_code == ec.USAGE_ERROR


def test_create_existing_is_conflict(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "pages", "create", "index.md", "--content", "x")
    assert result.exit_code == ec.CONFLICT


def test_create_invalid_path(runner, cli_uri):
    result = _invoke(runner, cli_uri, "pages", "create", "bad.txt", "--content", "x")
    assert result.exit_code == ec.VALIDATION_ERROR


def test_update_and_conflict(runner, seeded_uri):
    uri = seeded_uri["uri"]
    etag = json.loads(_invoke(runner, uri, "--json", "pages", "show", "index.md").stdout)["etag"]

    ok = _invoke(runner, uri, "--json", "pages", "update", "index.md", "--etag", etag, "--content", "# Home v2")
    assert ok.exit_code == 0
    assert json.loads(ok.stdout)["version"] == 2

    stale = _invoke(runner, uri, "pages", "update", "index.md", "--etag", etag, "--content", "# Mine")
    assert stale.exit_code == ec.CONFLICT


def test_delete_reports_orphans(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "delete", "index.md")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["orphaned_files"] == [seeded_uri["logo_id"]]
    assert data["confirmation_required"] is True


def test_delete_preview(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "delete", "index.md", "--preview")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["can_delete"] is True
    assert data["referencing_pages"] == ["guide/setup.md"]
    # still there
    assert _invoke(runner, seeded_uri["uri"], "pages", "show", "index.md").exit_code == 0


def test_search(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "search", "setup")
    assert [p["path"] for p in json.loads(result.stdout)] == ["guide/setup.md"]


def test_tree(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "tree")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert [n["path"] for n in data] == ["guide", "index.md"]
    assert data[0]["children"][0]["title"] == "Setup"


def test_tags(runner, seeded_uri):
    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "tags")
    assert json.loads(result.stdout) == ["ops", "start"]

    result = _invoke(runner, seeded_uri["uri"], "--json", "pages", "tags", "--tag", "ops")
    assert [p["path"] for p in json.loads(result.stdout)] == ["guide/setup.md"]
