"""Collection-oriented document store on top of the ``documents`` table.

Paths alternate collection and id segments, e.g.
``deliverables/<id>/feedback/<id>``. Writes are grouped into batches that
commit once; listeners registered with :meth:`DocumentStore.subscribe` are
process-wide and receive a fresh snapshot after every commit that touches
their path.
"""
from __future__ import annotations
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.errors import StoreUnavailable
from portal.models.document import Document

logger = structlog.get_logger(__name__)


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# placeholder replaced with the commit time when a batch is written
SERVER_TIMESTAMP = _ServerTimestamp()

Snapshot = Dict[str, Any]
DocListener = Callable[[Optional[Snapshot]], None]
CollectionListener = Callable[[List[Snapshot]], None]

_lock = RLock()
_last_ts: Optional[datetime] = None
_doc_listeners: Dict[str, List[DocListener]] = {}
_collection_listeners: Dict[str, List[CollectionListener]] = {}


def server_now() -> str:
    """UTC ISO timestamp, strictly increasing within this process."""
    global _last_ts
    with _lock:
        now = datetime.now(timezone.utc)
        if _last_ts is not None and now <= _last_ts:
            now = _last_ts + timedelta(microseconds=1)
        _last_ts = now
        return now.isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


def split_path(path: str) -> Tuple[str, str]:
    parts = path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"'{path}' is not a document path")
    return "/".join(parts[:-1]), parts[-1]


def clear_listeners() -> None:
    with _lock:
        _doc_listeners.clear()
        _collection_listeners.clear()


def _resolve(value: Any, ts: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return ts
    if isinstance(value, dict):
        return {k: _resolve(v, ts) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v, ts) for v in value]
    return value


def _snapshot(row: Document) -> Snapshot:
    return {**(row.data or {}), "id": row.doc_id}


class WriteBatch:
    """Writes queued here are committed together or not at all."""

    def __init__(self) -> None:
        self.ops: List[Tuple[str, Dict[str, Any], bool]] = []

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        split_path(path)
        self.ops.append((path, dict(data), merge))

    def append_child(self, collection_path: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        self.set(f"{collection_path.strip('/')}/{doc_id}", data)
        return doc_id


class DocumentStore:
    def __init__(self, db: Session):
        self.db = db

    # -------------------------- reads --------------------------

    def get(self, path: str) -> Optional[Snapshot]:
        try:
            row = self.db.query(Document).filter(Document.path == path.strip("/")).first()
        except SQLAlchemyError as e:
            raise self._unavailable("get", path, e) from e
        return _snapshot(row) if row else None

    def list_children(
        self,
        collection_path: str,
        where: Optional[Dict[str, str]] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        q = self.db.query(Document).filter(Document.collection == collection_path.strip("/"))
        for field, value in (where or {}).items():
            q = q.filter(Document.data[field].as_string() == str(value))
        q = q.order_by(Document.seq.desc() if descending else Document.seq.asc())
        if limit is not None:
            q = q.limit(limit)
        try:
            return [_snapshot(r) for r in q.all()]
        except SQLAlchemyError as e:
            raise self._unavailable("list", collection_path, e) from e

    # -------------------------- writes --------------------------

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        with self.batch() as b:
            b.set(path, data, merge=merge)

    def append_child(self, collection_path: str, data: Dict[str, Any]) -> str:
        with self.batch() as b:
            doc_id = b.append_child(collection_path, data)
        return doc_id

    @contextmanager
    def batch(self) -> Iterator[WriteBatch]:
        b = WriteBatch()
        yield b
        self.commit(b)

    def commit(self, batch: WriteBatch) -> None:
        if not batch.ops:
            return
        ts = server_now()
        now = datetime.utcnow()
        rows: Dict[str, Document] = {}
        try:
            for path, data, merge in batch.ops:
                path = path.strip("/")
                data = _resolve(data, ts)
                row = rows.get(path) or self.db.query(Document).filter(Document.path == path).first()
                if row is None:
                    collection, doc_id = split_path(path)
                    row = Document(path=path, collection=collection, doc_id=doc_id,
                                   data=data, created_at=now, updated_at=now)
                    self.db.add(row)
                else:
                    # assign a fresh dict so the JSON column is flagged dirty
                    row.data = {**(row.data or {}), **data} if merge else data
                    row.updated_at = now
                rows[path] = row
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise self._unavailable("commit", ",".join(rows) or "-", e) from e
        self._notify(list(rows))

    # -------------------------- subscriptions --------------------------

    def subscribe(self, path: str, on_change: DocListener) -> Callable[[], None]:
        """Listen to one document; the current snapshot is delivered immediately."""
        path = path.strip("/")
        with _lock:
            _doc_listeners.setdefault(path, []).append(on_change)
        self._deliver(on_change, self.get(path), path)

        def unsubscribe() -> None:
            with _lock:
                listeners = _doc_listeners.get(path, [])
                if on_change in listeners:
                    listeners.remove(on_change)
        return unsubscribe

    def subscribe_collection(self, collection_path: str, on_change: CollectionListener,
                             descending: bool = False) -> Callable[[], None]:
        collection_path = collection_path.strip("/")

        def listener(_docs: List[Snapshot]) -> None:
            on_change(self.list_children(collection_path, descending=descending))

        with _lock:
            _collection_listeners.setdefault(collection_path, []).append(listener)
        self._deliver(on_change, self.list_children(collection_path, descending=descending), collection_path)

        def unsubscribe() -> None:
            with _lock:
                listeners = _collection_listeners.get(collection_path, [])
                if listener in listeners:
                    listeners.remove(listener)
        return unsubscribe

    def _notify(self, paths: List[str]) -> None:
        with _lock:
            doc_targets = [(p, list(_doc_listeners.get(p, []))) for p in paths]
            collections = {split_path(p)[0] for p in paths}
            col_targets = [(c, list(_collection_listeners.get(c, []))) for c in collections]
        for path, listeners in doc_targets:
            if not listeners:
                continue
            snap = self.get(path)
            for fn in listeners:
                self._deliver(fn, snap, path)
        for collection, listeners in col_targets:
            for fn in listeners:
                self._deliver(fn, [], collection)

    @staticmethod
    def _deliver(fn: Callable, payload: Any, path: str) -> None:
        try:
            fn(payload)
        except Exception:
            logger.warning("store_listener_failed", path=path, exc_info=True)

    @staticmethod
    def _unavailable(op: str, path: str, exc: Exception) -> StoreUnavailable:
        logger.error("store_call_failed", op=op, path=path, error=str(exc))
        return StoreUnavailable(f"Document store {op} failed for '{path}'", op=op)
