import tempfile
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from geoattend.core.errors import MalformedRecord, RevisionConflict
from geoattend.db import Base
from geoattend.schemas import Coordinates, Office, Student
from geoattend.store import (
    CollectionWatcher,
    MemoryStoreBackend,
    RecordStore,
    SqlStoreBackend,
    diff_snapshots,
    record_path,
    split_path,
)


def _student(student_id: str, name: str) -> Student:
    return Student(id=student_id, name=name, class_id='class-7a', class_name='VII A')


class StoreBehaviour:
    """Shared cases run against every backend."""

    def make_backend(self):
        raise NotImplementedError

    def setUp(self):
        self.backend = self.make_backend()
        self.store = RecordStore(self.backend)

    def test_revision_starts_at_one_and_increments(self):
        path = record_path('students', 's-1')
        self.assertEqual(self.backend.persist(path, _student('s-1', 'Ahmad').to_store()), 1)
        self.assertEqual(self.backend.persist(path, _student('s-1', 'Ahmad R').to_store()), 2)
        value, revision = self.backend.get(path)
        self.assertEqual((value['name'], revision), ('Ahmad R', 2))

    def test_compare_and_swap(self):
        path = record_path('students', 's-1')
        self.backend.persist(path, _student('s-1', 'Ahmad').to_store(), expected_revision=0)
        with self.assertRaises(RevisionConflict):
            self.backend.persist(path, _student('s-1', 'Dup').to_store(), expected_revision=0)
        with self.assertRaises(RevisionConflict):
            self.backend.persist(path, _student('s-1', 'Stale').to_store(), expected_revision=5)
        self.assertEqual(self.backend.persist(path, _student('s-1', 'Fresh').to_store(), expected_revision=1), 2)

    def test_typed_reads_validate(self):
        self.store.save('students', 's-1', _student('s-1', 'Ahmad'))
        self.backend.persist('students/s-2', {'id': 's-2'})
        self.assertEqual(self.store.get('students', 's-1', Student).name, 'Ahmad')
        with self.assertRaises(MalformedRecord):
            self.store.get('students', 's-2', Student)
        self.assertEqual([row.id for row in self.store.list_records('students', Student)], ['s-1'])

    def test_wire_format_uses_camel_case(self):
        self.store.save('offices', 'class-7a', Office(id='class-7a', name='VII A', coordinates=Coordinates(latitude=-6.2, longitude=106.8)))
        value, _ = self.backend.get('offices/class-7a')
        self.assertEqual(value['coordinates'], {'latitude': -6.2, 'longitude': 106.8})
        self.assertNotIn('teacherId', value)
        self.store.save('students', 's-1', _student('s-1', 'Ahmad'))
        self.assertIn('classId', self.backend.get('students/s-1')[0])

    def test_subscribe_delivers_snapshots(self):
        snapshots = []
        unsubscribe = self.store.subscribe('students', snapshots.append)
        self.store.save('students', 's-1', _student('s-1', 'Ahmad'))
        self.store.save('offices', 'class-7a', Office(id='class-7a', name='VII A', coordinates=Coordinates(latitude=0, longitude=0)))
        self.store.remove('students', 's-1')
        unsubscribe()
        self.store.save('students', 's-2', _student('s-2', 'Dewi'))
        self.assertEqual([sorted(snapshot) for snapshot in snapshots], [[], ['s-1'], []])

    def test_listener_failure_does_not_break_writes(self):
        def broken(_snapshot):
            raise RuntimeError('boom')

        self.store.subscribe('students', lambda _snapshot: None)
        self.backend._listeners['students'].append(broken)
        self.store.save('students', 's-1', _student('s-1', 'Ahmad'))
        self.assertIsNotNone(self.store.get('students', 's-1', Student))

    def test_disconnect_cleanup(self):
        self.store.save('active_users', 'u-1', _student('u-1', 'placeholder'))
        self.store.register_disconnect_cleanup('conn-9', 'active_users/u-1', 'u-1')
        self.assertEqual(self.store.connection_owner('conn-9'), 'u-1')
        with self.assertRaises(ValueError):
            self.store.register_disconnect_cleanup('conn-9', 'active_users/u-2', 'u-2')
        self.assertEqual(self.store.disconnect('conn-9'), ['active_users/u-1'])
        self.assertIsNone(self.backend.get('active_users/u-1'))
        self.assertIsNone(self.store.connection_owner('conn-9'))

    def test_forget_owner_keeps_records(self):
        self.store.save('active_users', 'u-1', _student('u-1', 'placeholder'))
        self.store.register_disconnect_cleanup('conn-1', 'active_users/u-1', 'u-1')
        self.store.register_disconnect_cleanup('conn-2', 'active_users/u-1', 'u-1')
        self.assertEqual(self.store.forget_owner('u-1'), ['conn-1', 'conn-2'])
        self.assertEqual(self.store.disconnect('conn-1'), [])
        self.assertIsNotNone(self.backend.get('active_users/u-1'))

    def test_watcher_reports_diffs(self):
        changes = []
        watcher = CollectionWatcher(self.store, 'students', Student, on_change=lambda records, diff: changes.append(diff))
        watcher.start()
        self.store.save('students', 's-1', _student('s-1', 'Ahmad'))
        self.store.save('students', 's-1', _student('s-1', 'Ahmad R'))
        self.store.remove('students', 's-1')
        watcher.stop()
        self.assertEqual([(d.added, d.changed, d.removed) for d in changes], [(['s-1'], [], []), ([], ['s-1'], []), ([], [], ['s-1'])])
        self.assertEqual(watcher.records, [])


class MemoryStoreTests(StoreBehaviour, unittest.TestCase):
    def make_backend(self):
        return MemoryStoreBackend()


class SqlStoreTests(StoreBehaviour, unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_store.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def make_backend(self):
        with self._engine.begin() as conn:
            conn.exec_driver_sql('DELETE FROM store_records')
        return SqlStoreBackend(self._session_factory)


class PathTests(unittest.TestCase):
    def test_split_path(self):
        self.assertEqual(split_path('sessions/math_2026-02-16'), ('sessions', 'math_2026-02-16'))
        with self.assertRaises(ValueError):
            split_path('sessions')
        with self.assertRaises(ValueError):
            record_path('sessions', 'a/b')

    def test_diff_snapshots(self):
        diff = diff_snapshots({'a': {'x': 1}, 'b': {}}, {'a': {'x': 2}, 'c': {}})
        self.assertEqual((diff.added, diff.changed, diff.removed), (['c'], ['a'], ['b']))


if __name__ == '__main__':
    unittest.main()
