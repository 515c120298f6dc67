"""
File-backed JSON document store.

Documents live at <data_dir>/<collection>/<doc_id>.json. Every write goes
through a temp file and an atomic rename, so readers never observe a
half-written document. Multi-document read-modify-write goes through
transaction(), which holds the store lock for the whole block and writes
nothing unless the block finishes without raising.
"""
import os
import copy
import json
import uuid
import logging
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple
from filelock import FileLock
from .errors import InvalidDocumentIdError

logger = logging.getLogger(__name__)

_ALLOWED_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-.")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex[:20]


def _check_name(part: str):
    # Blocks path traversal and hidden files
    if not part or part.startswith(".") or not set(part) <= _ALLOWED_CHARS:
        raise InvalidDocumentIdError(part)


class DocumentStore:
    def __init__(self, data_dir: str):
        self.data_dir = os.path.abspath(data_dir)
        os.makedirs(self.data_dir, exist_ok=True)
        self._lock = FileLock(os.path.join(self.data_dir, ".store.lock"))

    def _collection_dir(self, collection: str) -> str:
        _check_name(collection)
        return os.path.join(self.data_dir, collection)

    def _path(self, collection: str, doc_id: str) -> str:
        _check_name(doc_id)
        return os.path.join(self._collection_dir(collection), f"{doc_id}.json")

    def _read(self, path: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, path: str, data: Dict[str, Any]):
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self._path(collection, doc_id))

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]):
        path = self._path(collection, doc_id)
        with self._lock:
            self._write(path, data)
        logger.debug(f"Stored {collection}/{doc_id}")

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        self.set(collection, doc_id, data)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> bool:
        path = self._path(collection, doc_id)
        with self._lock:
            if not os.path.exists(path):
                return False
            os.remove(path)
        logger.info(f"Deleted {collection}/{doc_id}")
        return True

    def list(self, collection: str) -> List[Dict[str, Any]]:
        """All documents of a collection, sorted by id, each with its "id" filled in."""
        directory = self._collection_dir(collection)
        if not os.path.isdir(directory):
            return []
        out = []
        for name in sorted(os.listdir(directory)):
            if name.startswith(".") or not name.endswith(".json"):
                continue
            data = self._read(os.path.join(directory, name))
            if data is not None:
                data.setdefault("id", name[:-len(".json")])
                out.append(data)
        return out

    @contextmanager
    def transaction(self) -> Iterator["Transaction"]:
        with self._lock:
            txn = Transaction(self)
            yield txn
            txn.commit()


class Transaction:
    """Staged writes against a DocumentStore; reads see the staged state."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._writes: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        key = (collection, doc_id)
        if key in self._writes:
            return copy.deepcopy(self._writes[key])
        return self.store.get(collection, doc_id)

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]):
        self.store._path(collection, doc_id)
        self._writes[(collection, doc_id)] = copy.deepcopy(data)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        self.set(collection, doc_id, data)
        return doc_id

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        current = self.get(collection, doc_id)
        if current is None:
            raise KeyError(f"{collection}/{doc_id}")
        current.update(fields)
        self.set(collection, doc_id, current)
        return current

    def delete(self, collection: str, doc_id: str):
        self.store._path(collection, doc_id)
        self._writes[(collection, doc_id)] = None

    def commit(self):
        for (collection, doc_id), data in self._writes.items():
            path = self.store._path(collection, doc_id)
            if data is None:
                if os.path.exists(path):
                    os.remove(path)
            else:
                self.store._write(path, data)
        logger.debug(f"Committed {len(self._writes)} document write(s)")
        self._writes = {}
