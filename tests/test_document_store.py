# /tests/test_document_store.py
"""
Unit tests for the document store

Runs the same behaviour checks against the in-memory and JSON-file stores:
merge upserts, filters, ordering, limits and compare-and-set.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from services.document_store import (
    Filter,
    JsonDocumentStore,
    MemoryDocumentStore,
    StoreUnavailableError,
)

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "json"])
def doc_store(request, tmp_path):
    if request.param == "memory":
        return MemoryDocumentStore()
    return JsonDocumentStore(tmp_path / "documents")


class TestUpsertAndGet:
    """Test cases for writes and point lookups"""

    def test_get_missing(self, doc_store):
        """Test reading a document that does not exist"""
        assert doc_store.get("things", "nope") is None

    def test_upsert_creates(self, doc_store):
        """Test that upsert creates a missing document"""
        doc_store.upsert("things", "a.com", {"x": 1})
        assert doc_store.get("things", "a.com") == {"x": 1}

    def test_upsert_merges_fields(self, doc_store):
        """Test that upsert merges fields into an existing document"""
        doc_store.upsert("things", "a.com", {"x": 1, "y": 2})
        doc_store.upsert("things", "a.com", {"y": 3, "z": 4})
        assert doc_store.get("things", "a.com") == {"x": 1, "y": 3, "z": 4}

    def test_datetimes_stored_as_iso(self, doc_store):
        """Test that datetimes are stored as ISO-8601 strings"""
        doc = doc_store.upsert("things", "a.com", {"at": T0})
        assert doc["at"] == "2024-03-01T12:00:00.000000+00:00"

    def test_returned_documents_are_copies(self, doc_store):
        """Test that callers cannot mutate stored documents"""
        doc_store.upsert("things", "a.com", {"nested": {"x": 1}})
        doc = doc_store.get("things", "a.com")
        doc["nested"]["x"] = 99
        assert doc_store.get("things", "a.com")["nested"]["x"] == 1

    def test_delete(self, doc_store):
        """Test deleting a document"""
        doc_store.upsert("things", "a.com", {"x": 1})
        doc_store.delete("things", "a.com")
        assert doc_store.get("things", "a.com") is None
        doc_store.delete("things", "a.com")


class TestQuery:
    """Test cases for filtered queries"""

    @pytest.fixture
    def populated(self, doc_store):
        doc_store.upsert("things", "a.com", {"flag": True, "due": T0 - timedelta(hours=1), "n": 1})
        doc_store.upsert("things", "b.com", {"flag": False, "due": T0 + timedelta(hours=1), "n": 2})
        doc_store.upsert("things", "c.com", {"due": T0 - timedelta(hours=3), "n": 3})
        doc_store.upsert("things", "d.com", {"flag": None, "nested": {"live": True}})
        return doc_store

    def test_no_filters(self, populated):
        """Test querying a whole collection"""
        assert [k for k, _ in populated.query("things")] == ["a.com", "b.com", "c.com", "d.com"]

    def test_equality(self, populated):
        """Test equality filters"""
        assert [k for k, _ in populated.query("things", [Filter("flag", "==", True)])] == ["a.com"]

    def test_not_equal_includes_missing(self, populated):
        """Test that not-equal matches documents without the field"""
        keys = [k for k, _ in populated.query("things", [Filter("flag", "!=", True)])]
        assert keys == ["b.com", "c.com", "d.com"]

    def test_datetime_range(self, populated):
        """Test range filters on timestamps"""
        keys = [k for k, _ in populated.query("things", [Filter("due", "<=", T0)])]
        assert keys == ["a.com", "c.com"]

    def test_range_skips_missing(self, populated):
        """Test that range filters skip documents without the field"""
        keys = [k for k, _ in populated.query("things", [Filter("n", ">", 1)])]
        assert keys == ["b.com", "c.com"]

    def test_nested_field(self, populated):
        """Test filtering on a nested field"""
        keys = [k for k, _ in populated.query("things", [Filter("nested.live", "==", True)])]
        assert keys == ["d.com"]

    def test_order_by_and_limit(self, populated):
        """Test ordering and limiting query results"""
        results = populated.query("things", [Filter("due", "<=", T0)], limit=1, order_by="due")
        assert [k for k, _ in results] == ["c.com"]

    def test_order_by_missing_last(self, populated):
        """Test that documents without the order field sort last"""
        keys = [k for k, _ in populated.query("things", order_by="due")]
        assert keys == ["c.com", "a.com", "b.com", "d.com"]

    def test_bad_operator(self):
        """Test that unknown filter operators are rejected"""
        with pytest.raises(ValueError):
            Filter("x", "~", 1)


class TestCompareAndSet:
    """Test cases for conditional writes"""

    def test_succeeds_when_expected(self, doc_store):
        """Test compare-and-set when the field matches"""
        doc_store.upsert("things", "a.com", {"claimed": False})
        assert doc_store.compare_and_set("things", "a.com", "claimed", False, {"claimed": True, "by": "me"})
        assert doc_store.get("things", "a.com") == {"claimed": True, "by": "me"}

    def test_fails_when_changed(self, doc_store):
        """Test compare-and-set when the field has changed"""
        doc_store.upsert("things", "a.com", {"claimed": True})
        assert not doc_store.compare_and_set("things", "a.com", "claimed", False, {"claimed": True, "by": "me"})
        assert doc_store.get("things", "a.com") == {"claimed": True}

    def test_missing_field_is_none(self, doc_store):
        """Test that a missing field compares as None"""
        doc_store.upsert("things", "a.com", {"x": 1})
        assert doc_store.compare_and_set("things", "a.com", "claimed", None, {"claimed": True})

    def test_only_one_claim_wins(self, doc_store):
        """Test that concurrent claimers get exactly one winner"""
        doc_store.upsert("things", "a.com", {"claimed": False})
        results = [
            doc_store.compare_and_set("things", "a.com", "claimed", False, {"claimed": True})
            for _ in range(3)
        ]
        assert results == [True, False, False]


class TestJsonDocumentStore:
    """Test cases specific to the file-backed store"""

    def test_one_file_per_document(self, tmp_path):
        """Test that each document is its own JSON file"""
        store = JsonDocumentStore(tmp_path)
        store.upsert("impostors", "exampl.com", {"confidence": 75})
        path = tmp_path / "impostors" / "exampl.com.json"
        assert json.loads(path.read_text()) == {"confidence": 75}

    def test_survives_reopen(self, tmp_path):
        """Test that documents persist across store instances"""
        JsonDocumentStore(tmp_path).upsert("impostors", "exampl.com", {"confidence": 75})
        assert JsonDocumentStore(tmp_path).get("impostors", "exampl.com") == {"confidence": 75}

    def test_corrupt_document_is_skipped(self, tmp_path):
        """Test that an unreadable document file is skipped"""
        store = JsonDocumentStore(tmp_path)
        store.upsert("impostors", "good.com", {"x": 1})
        (tmp_path / "impostors" / "bad.com.json").write_text("{not json")
        assert store.get("impostors", "bad.com") is None
        assert [k for k, _ in store.query("impostors")] == ["good.com"]

    @pytest.mark.parametrize("key", ["", "../escape", "a/b", ".hidden"])
    def test_rejects_unsafe_keys(self, tmp_path, key):
        """Test that empty, hidden and path-like keys are rejected"""
        with pytest.raises(ValueError):
            JsonDocumentStore(tmp_path).upsert("impostors", key, {"x": 1})

    def test_write_failure_is_store_unavailable(self, tmp_path):
        """Test that write failures surface as store outages"""
        store = JsonDocumentStore(tmp_path)
        with patch("services.document_store.tempfile.mkstemp", side_effect=OSError("disk full")):
            with pytest.raises(StoreUnavailableError):
                store.upsert("impostors", "exampl.com", {"x": 1})
