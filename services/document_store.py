"""Document Store.

Keyed JSON documents grouped in collections, with the operations the
monitoring pipeline relies on:

- point lookup by key
- filtered queries (equality / inequality / range) with an optional limit
- field-merge upserts: only the given top-level fields are replaced, so
  concurrent partial writers do not clobber each other's fields
- compare-and-set on a single field, used to claim work

``JsonDocumentStore`` keeps one JSON file per document on disk, the same way
the monitoring state files are kept under ``data/transient``.
``MemoryDocumentStore`` keeps everything in a dict and is meant for tests
and dry runs.
"""

import json
import logging
import operator
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

MONITORED_DOMAINS = "monitored_domains"
IMPOSTORS = "impostors"

_MISSING = object()

_OPERATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class StoreUnavailableError(Exception):
    """Raised when the document store cannot be read or written."""
    pass


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Round-trip through JSON so both stores hold identical representations."""
    return json.loads(json.dumps(doc, default=_json_default))


def _get_path(doc: Dict[str, Any], path: str):
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _as_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class Filter:
    """A single ``field <op> value`` condition. Dotted fields reach into nested dicts."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, doc: Dict[str, Any]) -> bool:
        actual = _get_path(doc, self.field)
        compare = _OPERATORS[self.op]

        if self.op in ("==", "!="):
            # Absent fields compare as None: "claimed != True" matches a missing flag
            actual = None if actual is _MISSING else actual
            if isinstance(self.value, datetime):
                actual = _as_datetime(actual)
            return compare(actual, self.value)

        # Range operators never match absent or null fields
        if actual is _MISSING or actual is None:
            return False
        if isinstance(self.value, datetime):
            actual = _as_datetime(actual)
            if actual is None:
                return False
        try:
            return compare(actual, self.value)
        except TypeError:
            return False


class DocumentStore(ABC):
    """Common query/merge logic on top of four storage primitives."""

    def __init__(self):
        self._lock = threading.RLock()

    @abstractmethod
    def _read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def _write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def _remove(self, collection: str, key: str) -> None:
        ...

    @abstractmethod
    def _keys(self, collection: str) -> Iterable[str]:
        ...

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """Point lookup. Returns a copy of the document or None."""
        with self._lock:
            doc = self._read(collection, key)
            return deepcopy(doc) if doc is not None else None

    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """Return ``(key, document)`` pairs matching every filter.

        Args:
            collection: Collection name
            filters: Conditions that must all hold
            limit: Maximum number of results
            order_by: Field to sort ascending by (documents missing it sort last)
        """
        filters = list(filters)
        with self._lock:
            matches = []
            for key in sorted(self._keys(collection)):
                doc = self._read(collection, key)
                if doc is None:
                    continue
                if all(f.matches(doc) for f in filters):
                    matches.append((key, deepcopy(doc)))

        if order_by:
            def sort_key(item):
                value = _get_path(item[1], order_by)
                missing = value is _MISSING or value is None
                return (missing, "" if missing else str(value), item[0])
            matches.sort(key=sort_key)

        if limit is not None:
            matches = matches[:limit]
        return matches

    def upsert(self, collection: str, key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge top-level fields into a document, creating it if needed."""
        with self._lock:
            doc = self._read(collection, key) or {}
            doc.update(_normalize(fields))
            self._write(collection, key, doc)
            return deepcopy(doc)

    def compare_and_set(
        self,
        collection: str,
        key: str,
        field: str,
        expected: Any,
        fields: Dict[str, Any],
    ) -> bool:
        """Merge ``fields`` only if ``field`` currently equals ``expected``.

        An absent field (or absent document) compares as None.

        Returns:
            True if the write happened
        """
        with self._lock:
            doc = self._read(collection, key)
            current = None if doc is None else doc.get(field)
            if current != expected:
                return False
            doc = doc or {}
            doc.update(_normalize(fields))
            self._write(collection, key, doc)
            return True

    def delete(self, collection: str, key: str) -> None:
        with self._lock:
            self._remove(collection, key)


class MemoryDocumentStore(DocumentStore):
    """In-process store. Useful for tests and dry runs."""

    def __init__(self):
        super().__init__()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _read(self, collection, key):
        doc = self._collections.get(collection, {}).get(key)
        return deepcopy(doc) if doc is not None else None

    def _write(self, collection, key, doc):
        self._collections.setdefault(collection, {})[key] = deepcopy(doc)

    def _remove(self, collection, key):
        self._collections.get(collection, {}).pop(key, None)

    def _keys(self, collection):
        return list(self._collections.get(collection, {}).keys())


class JsonDocumentStore(DocumentStore):
    """One JSON file per document: ``<data_dir>/<collection>/<key>.json``."""

    def __init__(self, data_dir: Path):
        super().__init__()
        self.data_dir = Path(data_dir)

    def _collection_dir(self, collection: str) -> Path:
        path = self.data_dir / collection
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot access store directory {path}: {e}") from e
        return path

    def _doc_path(self, collection: str, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid document key: {key!r}")
        return self._collection_dir(collection) / f"{key}.json"

    def _read(self, collection, key):
        path = self._doc_path(collection, key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt document {collection}/{key}: {e}")
            return None
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read {path}: {e}") from e

    def _write(self, collection, key, doc):
        path = self._doc_path(collection, key)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, default=_json_default)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write {path}: {e}") from e

    def _remove(self, collection, key):
        path = self._doc_path(collection, key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot delete {path}: {e}") from e

    def _keys(self, collection):
        directory = self._collection_dir(collection)
        try:
            return [p.stem for p in directory.glob("*.json") if not p.name.startswith(".")]
        except OSError as e:
            raise StoreUnavailableError(f"Cannot list {directory}: {e}") from e
