import unittest

from fastapi.testclient import TestClient

from geoattend.cache import REPORTS_CACHE_PREFIX, cache, cache_key
from geoattend.main import _on_sessions_changed, app
from geoattend.schemas import ClassSession, Semester, TeacherStatus
from geoattend.store import SESSIONS, CollectionWatcher, MemoryStoreBackend, RecordStore


class MainAppTests(unittest.TestCase):
    def test_health(self):
        client = TestClient(app)
        self.assertEqual(client.get('/health').json(), {'status': 'ok'})
        self.assertEqual(client.get('/').json()['status'], 'ok')

    def test_routes_registered(self):
        paths = {route.path for route in app.routes}
        self.assertIn('/api/sessions/check-in', paths)
        self.assertIn('/api/reports/students/{student_id}/recap', paths)
        self.assertIn('/api/presence/heartbeat', paths)
        self.assertIn('/api/master/{collection}/{record_id}', paths)

    def test_session_changes_invalidate_report_cache(self):
        store = RecordStore(MemoryStoreBackend())
        watcher = CollectionWatcher(store, SESSIONS, ClassSession, on_change=_on_sessions_changed)
        watcher.start()
        key = cache_key(REPORTS_CACHE_PREFIX, 'teacher_counts')
        cache.set_cached(key, {'counts': {}})
        session = ClassSession(
            id='math_2026-02-16',
            subject_id='math',
            subject_name='Matematika',
            class_id='class-7a',
            date='2026-02-16',
            start_time=0,
            teacher_status=TeacherStatus.PRESENT,
            semester=Semester.GENAP,
            school_year='2025/2026',
        )
        store.save(SESSIONS, session.id, session)
        watcher.stop()
        self.assertIsNone(cache.get_cached(key))
        self.assertEqual(watcher.records, [session])


if __name__ == '__main__':
    unittest.main()
