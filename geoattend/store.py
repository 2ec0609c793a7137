from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from geoattend.config import settings
from geoattend.core.errors import MalformedRecord, PersistenceFailure, RevisionConflict
from geoattend.db import SessionLocal
from geoattend.models import StoredValue
from geoattend.schemas import StoreRecord


logger = logging.getLogger(__name__)

OFFICES = 'offices'
STUDENTS = 'students'
TEACHERS = 'teachers'
SUBJECTS = 'subjects'
SESSIONS = 'sessions'
ACTIVE_USERS = 'active_users'
CONFIG = 'config'
APP_SETTINGS_PATH = 'config/app_settings'

Snapshot = dict[str, dict[str, Any]]
StoreListener = Callable[[Snapshot], None]
RecordT = TypeVar('RecordT', bound=StoreRecord)


def record_path(collection: str, record_id: str) -> str:
    if not collection or not record_id or '/' in record_id:
        raise ValueError(f'Invalid record address {collection!r}/{record_id!r}')
    return f'{collection}/{record_id}'


def split_path(path: str) -> tuple[str, str]:
    collection, sep, record_id = (path or '').strip('/').partition('/')
    if not sep or not collection or not record_id or '/' in record_id:
        raise ValueError(f'Invalid store path: {path!r}')
    return collection, record_id


class StoreBackend:
    """Key-value store addressed by ``collection/id`` paths.

    Each value carries a revision counter that starts at 1 and increases on
    every write. ``persist`` accepts ``expected_revision``: ``None`` writes
    unconditionally (last write wins), ``0`` requires the path to be absent,
    any other value must equal the stored revision or ``RevisionConflict`` is
    raised. Subscribers receive the full collection after every change.
    """

    def __init__(self) -> None:
        self._listeners_lock = threading.Lock()
        self._listeners: dict[str, list[StoreListener]] = {}
        self._cleanup: dict[str, set[str]] = {}
        self._cleanup_owners: dict[str, str] = {}

    def get(self, path: str) -> tuple[dict[str, Any], int] | None:
        raise NotImplementedError

    def list(self, collection: str) -> dict[str, tuple[dict[str, Any], int]]:
        raise NotImplementedError

    def _write(self, path: str, value: dict[str, Any], expected_revision: int | None) -> int:
        raise NotImplementedError

    def _delete(self, path: str) -> bool:
        raise NotImplementedError

    def persist(self, path: str, value: dict[str, Any], expected_revision: int | None = None) -> int:
        collection, _ = split_path(path)
        revision = self._write(path, value, expected_revision)
        self._notify(collection)
        return revision

    def remove(self, path: str) -> None:
        collection, _ = split_path(path)
        if self._delete(path):
            self._notify(collection)

    def snapshot(self, collection: str) -> Snapshot:
        return {record_id: value for record_id, (value, _) in self.list(collection).items()}

    def subscribe(self, collection: str, callback: StoreListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.setdefault(collection, []).append(callback)
        callback(self.snapshot(collection))

        def unsubscribe() -> None:
            with self._listeners_lock:
                listeners = self._listeners.get(collection, [])
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    def register_disconnect_cleanup(self, connection_id: str, path: str, owner_id: str) -> None:
        """Remove ``path`` when ``connection_id`` drops.

        A connection belongs to the owner that registered it first; another
        owner registering the same id raises ``ValueError``.
        """
        split_path(path)
        with self._listeners_lock:
            current = self._cleanup_owners.setdefault(connection_id, owner_id)
            if current != owner_id:
                raise ValueError(f'Connection {connection_id!r} belongs to another owner')
            self._cleanup.setdefault(connection_id, set()).add(path)

    def connection_owner(self, connection_id: str) -> str | None:
        with self._listeners_lock:
            return self._cleanup_owners.get(connection_id)

    def forget_owner(self, owner_id: str) -> list[str]:
        """Drop every cleanup registration of ``owner_id`` without removing anything."""
        with self._listeners_lock:
            connection_ids = sorted(cid for cid, owner in self._cleanup_owners.items() if owner == owner_id)
            for connection_id in connection_ids:
                self._cleanup_owners.pop(connection_id, None)
                self._cleanup.pop(connection_id, None)
        return connection_ids

    def disconnect(self, connection_id: str) -> list[str]:
        with self._listeners_lock:
            self._cleanup_owners.pop(connection_id, None)
            paths = sorted(self._cleanup.pop(connection_id, set()))
        for path in paths:
            self.remove(path)
        if paths:
            logger.info('store_disconnect_cleanup connection_id=%s removed=%s', connection_id, len(paths))
        return paths

    def _notify(self, collection: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.get(collection, []))
        if not listeners:
            return
        snapshot = self.snapshot(collection)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception('store_listener_failed collection=%s', collection)


def _check_revision(path: str, expected: int | None, actual: int | None) -> None:
    if expected is None:
        return
    if expected == 0 and actual is None:
        return
    if actual != expected:
        raise RevisionConflict(path, expected, actual)


class MemoryStoreBackend(StoreBackend):
    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.RLock()
        self._data: dict[str, tuple[str, int]] = {}

    def get(self, path: str) -> tuple[dict[str, Any], int] | None:
        with self._lock:
            item = self._data.get(path)
        if item is None:
            return None
        raw, revision = item
        return json.loads(raw), revision

    def list(self, collection: str) -> dict[str, tuple[dict[str, Any], int]]:
        prefix = f'{collection}/'
        with self._lock:
            items = [(path, item) for path, item in self._data.items() if path.startswith(prefix)]
        return {path[len(prefix):]: (json.loads(raw), revision) for path, (raw, revision) in items}

    def _write(self, path: str, value: dict[str, Any], expected_revision: int | None) -> int:
        payload = json.dumps(value, sort_keys=True)
        with self._lock:
            current = self._data.get(path)
            current_revision = current[1] if current else None
            _check_revision(path, expected_revision, current_revision)
            revision = (current_revision or 0) + 1
            self._data[path] = (payload, revision)
        return revision

    def _delete(self, path: str) -> bool:
        with self._lock:
            return self._data.pop(path, None) is not None


class SqlStoreBackend(StoreBackend):
    def __init__(self, session_factory: sessionmaker) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._write_lock = threading.Lock()

    def _session(self) -> Session:
        return self._session_factory()

    def get(self, path: str) -> tuple[dict[str, Any], int] | None:
        db = self._session()
        try:
            row = db.query(StoredValue).filter(StoredValue.path == path).first()
            if not row:
                return None
            return json.loads(row.value_json or '{}'), int(row.revision)
        finally:
            db.close()

    def list(self, collection: str) -> dict[str, tuple[dict[str, Any], int]]:
        db = self._session()
        try:
            rows = (
                db.query(StoredValue)
                .filter(StoredValue.collection == collection)
                .order_by(StoredValue.record_id.asc())
                .all()
            )
            return {row.record_id: (json.loads(row.value_json or '{}'), int(row.revision)) for row in rows}
        finally:
            db.close()

    def _write(self, path: str, value: dict[str, Any], expected_revision: int | None) -> int:
        collection, record_id = split_path(path)
        payload = json.dumps(value, sort_keys=True)
        # SQLite has no row locks; the process-level lock serialises compare-and-swap.
        with self._write_lock:
            db = self._session()
            try:
                row = db.query(StoredValue).filter(StoredValue.path == path).with_for_update().first()
                _check_revision(path, expected_revision, int(row.revision) if row else None)
                if row:
                    row.value_json = payload
                    row.revision = int(row.revision) + 1
                else:
                    row = StoredValue(path=path, collection=collection, record_id=record_id, value_json=payload, revision=1)
                    db.add(row)
                db.commit()
                return int(row.revision)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def _delete(self, path: str) -> bool:
        with self._write_lock:
            db = self._session()
            try:
                deleted = db.query(StoredValue).filter(StoredValue.path == path).delete(synchronize_session=False)
                db.commit()
                return bool(deleted)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()


class RecordStore:
    """Typed facade over a backend; validates records on the way in and out."""

    def __init__(self, backend: StoreBackend) -> None:
        self.backend = backend

    def get_record(self, path: str, model: type[RecordT]) -> tuple[RecordT, int] | None:
        try:
            item = self.backend.get(path)
        except SQLAlchemyError as exc:
            logger.exception('store_read_failed path=%s', path)
            raise PersistenceFailure() from exc
        if item is None:
            return None
        value, revision = item
        try:
            return model.model_validate(value), revision
        except PydanticValidationError as exc:
            raise MalformedRecord(path) from exc

    def get(self, collection: str, record_id: str, model: type[RecordT]) -> RecordT | None:
        found = self.get_record(record_path(collection, record_id), model)
        return found[0] if found else None

    def list_records(self, collection: str, model: type[RecordT]) -> list[RecordT]:
        try:
            items = self.backend.list(collection)
        except SQLAlchemyError as exc:
            logger.exception('store_list_failed collection=%s', collection)
            raise PersistenceFailure() from exc
        return validate_snapshot(collection, {key: value for key, (value, _) in items.items()}, model)

    def save(
        self,
        collection: str,
        record_id: str,
        record: StoreRecord,
        expected_revision: int | None = None,
    ) -> int:
        return self.save_path(record_path(collection, record_id), record, expected_revision)

    def save_path(self, path: str, record: StoreRecord, expected_revision: int | None = None) -> int:
        try:
            return self.backend.persist(path, record.to_store(), expected_revision=expected_revision)
        except (RevisionConflict, ValueError):
            raise
        except SQLAlchemyError as exc:
            logger.exception('store_write_failed path=%s', path)
            raise PersistenceFailure() from exc

    def remove(self, collection: str, record_id: str) -> None:
        path = record_path(collection, record_id)
        try:
            self.backend.remove(path)
        except SQLAlchemyError as exc:
            logger.exception('store_remove_failed path=%s', path)
            raise PersistenceFailure() from exc

    def subscribe(self, collection: str, callback: StoreListener) -> Callable[[], None]:
        return self.backend.subscribe(collection, callback)

    def register_disconnect_cleanup(self, connection_id: str, path: str, owner_id: str) -> None:
        self.backend.register_disconnect_cleanup(connection_id, path, owner_id)

    def connection_owner(self, connection_id: str) -> str | None:
        return self.backend.connection_owner(connection_id)

    def forget_owner(self, owner_id: str) -> list[str]:
        return self.backend.forget_owner(owner_id)

    def disconnect(self, connection_id: str) -> list[str]:
        return self.backend.disconnect(connection_id)


def validate_snapshot(collection: str, snapshot: Snapshot, model: type[RecordT]) -> list[RecordT]:
    records: list[RecordT] = []
    for record_id in sorted(snapshot):
        try:
            records.append(model.model_validate(snapshot[record_id]))
        except PydanticValidationError:
            logger.warning('store_record_rejected collection=%s record_id=%s', collection, record_id)
    return records


@dataclass
class SnapshotDiff:
    added: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)


def diff_snapshots(previous: Snapshot, current: Snapshot) -> SnapshotDiff:
    return SnapshotDiff(
        added=sorted(key for key in current if key not in previous),
        changed=sorted(key for key in current if key in previous and current[key] != previous[key]),
        removed=sorted(key for key in previous if key not in current),
    )


class CollectionWatcher(Generic[RecordT]):
    """Keeps a validated copy of one collection in sync with the change feed."""

    def __init__(
        self,
        store: RecordStore,
        collection: str,
        model: type[RecordT],
        on_change: Callable[[list[RecordT], SnapshotDiff], None] | None = None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._model = model
        self._on_change = on_change
        self._previous: Snapshot = {}
        self._records: list[RecordT] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def records(self) -> list[RecordT]:
        return list(self._records)

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._collection, self._handle)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle(self, snapshot: Snapshot) -> None:
        diff = diff_snapshots(self._previous, snapshot)
        self._previous = snapshot
        self._records = validate_snapshot(self._collection, snapshot, self._model)
        if self._on_change and not diff.is_empty():
            self._on_change(self.records, diff)


def _build_store_backend() -> StoreBackend:
    if settings.store_backend == 'memory':
        return MemoryStoreBackend()
    return SqlStoreBackend(SessionLocal)


_store: RecordStore | None = None


def get_store() -> RecordStore:
    global _store
    if _store is None:
        _store = RecordStore(_build_store_backend())
    return _store
