"""Tests for the guide index."""

import logging

import pytest
import yaml

from conftest import chunk_payload
from kb_ingest.errors import StoreError
from kb_ingest.index import GUIDE_HEADER, GuideIndex, parse_guide, serialize_guide
from kb_ingest.schemas import Chunk, GuideEntry
from kb_ingest.store import FileChunkStore


def _chunk(chunk_id, topic="Reset a password", **overrides):
    data = chunk_payload(topic, chunk_id=chunk_id, source="guide.pdf")
    data.update(overrides)
    return Chunk.model_validate(data)


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def store(data_dir):
    return FileChunkStore(data_dir / "chunks")


@pytest.fixture
def index(data_dir):
    return GuideIndex(data_dir / "guide.yaml")


def test_rebuild_lists_only_active_chunks(store, index):
    """Test that review and deprecated chunks are not indexed."""
    store.put(_chunk("b-00000000", topic="Billing"))
    store.put(_chunk("a-00000000", topic="Access"))
    store.put(_chunk("c-00000000", status="review"))

    entries = index.rebuild(store)
    assert [entry.chunk_id for entry in entries] == ["a-00000000", "b-00000000"]
    assert entries[0].file == "chunks/a-00000000.md"
    assert index.load() == entries


def test_guide_file_layout(store, index):
    """Test the header comment and the chunks list."""
    store.put(_chunk("a-00000000", related_chunks=["b-00000000"]))
    index.rebuild(store)

    text = index.path.read_text(encoding="utf-8")
    assert text.startswith(GUIDE_HEADER)
    data = yaml.safe_load(text)
    entry = data["chunks"][0]
    assert entry["chunk_id"] == "a-00000000"
    assert entry["related_chunks"] == ["b-00000000"]
    assert entry["status"] == "active"
    assert "context" not in entry


def test_rebuild_is_byte_stable(store, index):
    """Test that rebuilding an unchanged store produces identical bytes."""
    store.put(_chunk("a-00000000"))
    index.rebuild(store)
    first = index.path.read_bytes()
    index.rebuild(store)
    assert index.path.read_bytes() == first


def test_remove_entries(store, index):
    """Test dropping entries by id."""
    store.put(_chunk("a-00000000"))
    store.put(_chunk("b-00000000"))
    index.rebuild(store)

    assert index.remove(["a-00000000", "zzz"]) == 1
    assert [entry.chunk_id for entry in index.load()] == ["b-00000000"]
    assert index.remove([]) == 0


def test_remove_without_guide(index):
    """Test removal before any guide exists."""
    assert index.remove(["a-00000000"]) == 0
    assert not index.path.exists()


def test_missing_guide_loads_empty(index):
    """Test loading before the first rebuild."""
    assert index.load() == []


def test_corrupt_guide_raises(index):
    """Test that a broken guide is a storage error."""
    index.path.parent.mkdir(parents=True)
    index.path.write_text("chunks: [unclosed", encoding="utf-8")
    with pytest.raises(StoreError):
        index.load()


def test_parse_guide_validates_entries():
    """Test entry validation."""
    with pytest.raises(ValueError):
        parse_guide("chunks:\n  - chunk_id: a\n")
    assert parse_guide("") == []


def test_serialize_parse_round_trip():
    """Test that serialized entries parse back."""
    entries = [GuideEntry.from_chunk(_chunk("a-00000000"), "chunks/a-00000000.md")]
    assert parse_guide(serialize_guide(entries)) == entries


def test_large_guide_warns(store, data_dir, caplog):
    """Test the context-window size warning."""
    index = GuideIndex(data_dir / "guide.yaml", warn_chunk_count=2)
    for i in range(3):
        store.put(_chunk(f"c{i}-00000000"))

    with caplog.at_level(logging.WARNING, logger="kb_ingest.index"):
        index.rebuild(store)
    assert "may not fit a model context window" in caplog.text


def test_small_guide_does_not_warn(store, index, caplog):
    """Test that a normal guide is quiet."""
    store.put(_chunk("a-00000000"))
    with caplog.at_level(logging.WARNING, logger="kb_ingest.index"):
        index.rebuild(store)
    assert "context window" not in caplog.text
