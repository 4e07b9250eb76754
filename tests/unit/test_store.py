"""Unit tests for imagerag.core.store."""

import json
import multiprocessing
import threading

import pytest

from imagerag.core.models import ImageMetadata, VectorEntry
from imagerag.core.store import (
    ImageVectorStore,
    relative_image_path,
    resolve_image_path,
)


def _entry(path, source="doc-a", vector=None, page=None):
    return VectorEntry(
        vector=vector or [1.0, 0.0],
        image_path=path,
        source_doc=source,
        page=page,
        metadata=ImageMetadata(title="Doc", ocrText="text"),
    )


def _upsert_batch(store_path, prefix, count):
    store = ImageVectorStore(store_path, lock_timeout=60)
    for index in range(count):
        store.upsert(_entry(f"{prefix}-{index}.png"))


class TestRead:
    """Tests for reading the backing file."""

    def test_missing_file_is_created_empty(self, store):
        """A missing store reads as empty and is created on disk."""
        assert store.read() == []
        assert json.loads(store.path.read_text()) == []

    def test_corrupt_file_returns_empty(self, store):
        """Truncated JSON degrades to an empty collection."""
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text('[{"vector": [1.0, 0.0], "image_pa')
        assert store.read() == []

    def test_non_list_returns_empty(self, store):
        """A JSON object instead of a list is ignored."""
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text('{"image_path": "x"}')
        assert store.read() == []

    def test_malformed_records_are_skipped(self, store):
        """Valid records survive next to invalid ones."""
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text(json.dumps([
            {"image_path": "missing-vector.png"},
            _entry("ok.png").model_dump(mode="json"),
        ]))
        entries = store.read()
        assert [e.image_path for e in entries] == ["ok.png"]

    def test_rewrites_keep_unparsed_records(self, store):
        legacy = {"image_path": "legacy.png", "source_doc": "doc-b"}
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text(json.dumps([legacy, _entry("old.png").model_dump()]))

        store.upsert(_entry("new.png", source="doc-c"))
        store.delete_by_source("doc-a")

        raw = json.loads(store.path.read_text())
        assert raw[0] == legacy
        assert [item["image_path"] for item in raw] == ["legacy.png", "new.png"]

    def test_persisted_keys(self, store):
        """Entries are stored with their wire key names."""
        store.upsert(_entry("a.png", page=2))
        raw = json.loads(store.path.read_text())
        assert set(raw[0]) == {"vector", "image_path", "source_doc", "page", "metadata"}
        assert set(raw[0]["metadata"]) == {
            "title", "description", "docAuthor", "chunkSource", "ocrText", "embeddingText",
        }


class TestUpsert:
    """Tests for insert-or-replace semantics."""

    def test_replaces_same_path(self, store):
        store.upsert(_entry("a.png", vector=[1.0, 0.0]))
        store.upsert(_entry("b.png"))
        store.upsert(_entry("a.png", vector=[0.0, 1.0]))

        entries = store.read()
        assert [e.image_path for e in entries] == ["b.png", "a.png"]
        assert entries[1].vector == [0.0, 1.0]

    def test_requires_image_path(self, store):
        with pytest.raises(ValueError):
            store.upsert(_entry(""))

    def test_upsert_many_last_wins(self, store):
        store.upsert(_entry("a.png"))
        store.upsert_many([
            _entry("b.png", vector=[1.0, 1.0]),
            _entry("b.png", vector=[2.0, 2.0]),
            _entry("a.png", vector=[3.0, 3.0]),
        ])
        entries = {e.image_path: e for e in store.read()}
        assert len(entries) == 2
        assert entries["b.png"].vector == [2.0, 2.0]
        assert entries["a.png"].vector == [3.0, 3.0]

    def test_upsert_many_empty_is_noop(self, store):
        store.upsert_many([])
        assert not store.path.exists()

    def test_no_temp_files_left_behind(self, store):
        store.upsert(_entry("a.png"))
        leftovers = [p.name for p in store.path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_concurrent_upserts_keep_every_entry(self, store):
        """Parallel writers do not lose each other's updates."""
        threads = [
            threading.Thread(target=store.upsert, args=(_entry(f"img-{i}.png"),))
            for i in range(12)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(store.read()) == 12

    def test_concurrent_processes_keep_every_entry(self, store):
        """Writers in separate processes serialize on the lock file."""
        context = multiprocessing.get_context("spawn")
        workers = [
            context.Process(target=_upsert_batch, args=(str(store.path), f"proc-{n}", 8))
            for n in range(4)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=120)

        assert [worker.exitcode for worker in workers] == [0, 0, 0, 0]
        assert len(store.read()) == 32


class TestDeleteBySource:
    """Tests for bulk removal by source document."""

    def test_returns_exactly_matching_entries(self, store):
        store.upsert_many([
            _entry("a1.png", source="A"),
            _entry("b1.png", source="B"),
            _entry("a2.png", source="A"),
        ])
        removed = store.delete_by_source("A")

        assert sorted(e.image_path for e in removed) == ["a1.png", "a2.png"]
        assert [e.source_doc for e in store.read()] == ["B"]

    def test_falsy_source_is_noop(self, store):
        store.upsert(_entry("a.png", source=""))
        assert store.delete_by_source("") == []
        assert store.delete_by_source(None) == []
        assert len(store.read()) == 1

    def test_no_match_returns_empty(self, store):
        store.upsert(_entry("a.png", source="A"))
        assert store.delete_by_source("Z") == []
        assert len(store.read()) == 1


class TestPaths:
    """Tests for path normalization helpers."""

    def test_relative_path_uses_forward_slashes(self, tmp_path):
        target = tmp_path / "extracted_img" / "x.png"
        assert relative_image_path(target, tmp_path) == "extracted_img/x.png"

    def test_resolve_inside_root(self, tmp_path):
        resolved = resolve_image_path("extracted_img/x.png", tmp_path)
        assert resolved == (tmp_path / "extracted_img" / "x.png").resolve()

    def test_resolve_rejects_escape(self, tmp_path):
        with pytest.raises(ValueError):
            resolve_image_path("../outside.png", tmp_path)

    def test_resolve_rejects_empty(self, tmp_path):
        with pytest.raises(ValueError):
            resolve_image_path("", tmp_path)


def test_store_file_under_extraction_dir(config):
    store = ImageVectorStore(config.vector_store_path)
    store.ensure()
    assert store.path == config.extraction_dir / "image_vectors.json"
    assert store.path.exists()
