"""Multi-writer scenarios: concurrent creates, edits and uploads on one store."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from marks3 import Wiki
from marks3.config import WikiStoreConfig
from marks3.errors import EditConflictError, PageAlreadyExistsError
from marks3.models import UploadFile
from marks3.storage import MemoryObjectStore


@pytest.fixture
def patient_config() -> WikiStoreConfig:
    # enough CAS attempts that contention between threads never exhausts the budget
    return WikiStoreConfig(index_max_attempts=10_000, backoff_base_ms=0, backoff_max_ms=0)


def _writers(store: MemoryObjectStore, config: WikiStoreConfig, n: int) -> list[Wiki]:
    """Independent Wiki instances sharing one store, like separate processes."""
    return [Wiki(store=store, config=config) for _ in range(n)]


def test_concurrent_creates_are_all_indexed(
    store: MemoryObjectStore, patient_config: WikiStoreConfig
) -> None:
    writers = _writers(store, patient_config, 10)
    jobs = [(writers[i % 10], f"team/page-{i}.md") for i in range(40)]

    with ThreadPoolExecutor(max_workers=10) as pool:
        list(pool.map(lambda job: job[0].pages.create_page(job[1], f"# {job[1]}"), jobs))

    listed = {e.path for e in writers[0].pages.list_pages()}
    assert listed == {path for _, path in jobs}
    assert all(w.pages.last_index_warning is None for w in writers)
    assert writers[0].pages.verify_index()["ok"]


def test_concurrent_creates_of_one_path_have_one_winner(
    store: MemoryObjectStore, patient_config: WikiStoreConfig
) -> None:
    writers = _writers(store, patient_config, 8)

    def _create(i: int) -> str:
        try:
            writers[i].pages.create_page("same.md", f"# Writer {i}")
        except PageAlreadyExistsError:
            return "exists"
        return "created"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(_create, range(8)))

    assert outcomes.count("created") == 1
    assert outcomes.count("exists") == 7
    assert [e.path for e in writers[0].pages.list_pages()] == ["same.md"]


def test_concurrent_edits_from_one_version_have_one_winner(
    store: MemoryObjectStore, patient_config: WikiStoreConfig
) -> None:
    writers = _writers(store, patient_config, 6)
    base = writers[0].pages.create_page("doc.md", "# Doc")

    def _edit(i: int) -> tuple[str, EditConflictError | None]:
        try:
            writers[i].pages.update_page("doc.md", f"# Doc\nedit {i}", base.etag or "")
        except EditConflictError as e:
            return "conflict", e
        return "saved", None

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(_edit, range(6)))

    saved = [o for o in outcomes if o[0] == "saved"]
    conflicts = [o[1] for o in outcomes if o[0] == "conflict"]
    assert len(saved) == 1
    assert len(conflicts) == 5

    final = writers[0].pages.get_page("doc.md")
    assert final.metadata.version == 2
    for err in conflicts:
        assert err is not None
        assert err.attempted_content.startswith("# Doc\nedit ")
        assert err.current is not None
        assert err.current.content == final.content


def test_concurrent_uploads_get_unique_ids(
    store: MemoryObjectStore, patient_config: WikiStoreConfig
) -> None:
    writers = _writers(store, patient_config, 5)

    def _upload(i: int) -> str:
        return writers[i % 5].files.upload_file(UploadFile("same-name.png", bytes([i]))).id

    with ThreadPoolExecutor(max_workers=5) as pool:
        ids = list(pool.map(_upload, range(20)))

    assert len(set(ids)) == 20
    assert {f.id for f in writers[0].files.list_files()} == set(ids)


def test_create_update_delete_lifecycle_keeps_index_consistent(wiki: Wiki) -> None:
    img = wiki.files.upload_file(UploadFile("photo.jpg", b"jpg"))
    page = wiki.pages.create_page("trip.md", "# Trip\n![p](photo.jpg)")
    page = wiki.pages.update_page("trip.md", "# Trip\nno photo any more", page.etag or "")

    assert wiki.files.find_all_orphaned_files()[0].id == img.id
    result = wiki.pages.delete_page("trip.md")
    assert result.orphaned_files == []
    assert wiki.verify_indexes()["ok"]

    failed = wiki.files.delete_orphaned_files([f.id for f in wiki.files.find_all_orphaned_files()])
    assert failed == []
    assert wiki.files.list_files() == []
    assert wiki.pages.list_pages() == []


def test_plan_png_scenario(wiki: Wiki) -> None:
    wiki.pages.create_page("notes/todo.md", "# Todo\n![plan](plan.png)")
    plan = wiki.files.upload_file(UploadFile("plan.png", b"png"))

    assert wiki.files.get_file_references("plan.png") == ["notes/todo.md"]
    assert wiki.files.get_file_references(plan.id) == ["notes/todo.md"]

    wiki.pages.delete_page("notes/todo.md")
    assert plan.id in [f.id for f in wiki.files.find_all_orphaned_files()]


def test_orphan_only_when_no_other_referrer(wiki: Wiki) -> None:
    img = wiki.files.upload_file(UploadFile("img1.png", b"1"))
    wiki.pages.create_page("a.md", "![x](img1.png)")
    wiki.pages.create_page("b.md", "![x](img1.png)")

    assert wiki.pages.delete_page("a.md").orphaned_files == []
    assert [f.id for f in wiki.pages.delete_page("b.md").orphaned_files] == [img.id]


def test_delete_twice_is_idempotent(wiki: Wiki) -> None:
    wiki.pages.create_page("p.md", "# P")
    wiki.pages.delete_page("p.md")
    wiki.pages.delete_page("p.md")
    assert wiki.pages.list_pages() == []
