import unittest
from datetime import datetime
from zoneinfo import ZoneInfo

from geoattend.core.errors import AuthFailure
from geoattend.core.time_provider import FixedTimeProvider
from geoattend.schemas import ActiveUserSession, Coordinates, Role, User
from geoattend.services.presence_tracker import (
    deregister,
    drop_connection,
    is_online,
    list_online_users,
    online_users,
    record_heartbeat,
)
from geoattend.store import ACTIVE_USERS, MemoryStoreBackend, RecordStore


JAKARTA = ZoneInfo('Asia/Jakarta')
NOW = FixedTimeProvider(datetime(2026, 2, 16, 7, 0, tzinfo=JAKARTA))


class PresenceTrackerTests(unittest.TestCase):
    def setUp(self):
        self.store = RecordStore(MemoryStoreBackend())
        self.teacher = User(id='t-budi', name='Budi', role=Role.TEACHER)
        self.admin = User(id='admin-1', name='Admin', role=Role.ADMIN)

    def test_heartbeat_upserts_last_seen(self):
        record = record_heartbeat(
            self.store,
            self.teacher,
            Coordinates(latitude=-6.2, longitude=106.8),
            ip='10.0.0.5',
            user_agent='Mobile',
            time_provider=NOW,
        )
        self.assertEqual(record.last_seen, NOW.now_ms())
        stored = self.store.get(ACTIVE_USERS, 't-budi', ActiveUserSession)
        self.assertEqual(stored, record)
        self.assertEqual(self.store.backend.get('active_users/t-budi')[0]['lastSeen'], NOW.now_ms())

    def test_online_threshold_is_strict(self):
        record = ActiveUserSession(user_id='t-budi', name='Budi', role=Role.TEACHER, last_seen=1_000)
        self.assertTrue(is_online(record, 1_000 + 179_999))
        self.assertFalse(is_online(record, 1_000 + 180_000))
        self.assertTrue(is_online(record, 1_000 + 5_000, threshold_ms=10_000))

    def test_online_users_newest_first(self):
        rows = [
            ActiveUserSession(user_id='a', name='A', role=Role.ADMIN, last_seen=100),
            ActiveUserSession(user_id='b', name='B', role=Role.TEACHER, last_seen=300),
            ActiveUserSession(user_id='c', name='C', role=Role.TEACHER, last_seen=-500_000),
        ]
        self.assertEqual([row.user_id for row in online_users(rows, 400)], ['b', 'a'])

    def test_disconnect_removes_registered_record(self):
        record_heartbeat(self.store, self.teacher, connection_id='conn-1', time_provider=NOW)
        self.assertEqual(len(list_online_users(self.store, time_provider=NOW)), 1)
        removed = drop_connection(self.store, 'conn-1', self.teacher)
        self.assertEqual(removed, ['active_users/t-budi'])
        self.assertEqual(list_online_users(self.store, time_provider=NOW), [])
        self.assertEqual(drop_connection(self.store, 'conn-1', self.teacher), [])

    def test_only_owner_or_admin_drops_a_connection(self):
        record_heartbeat(self.store, self.admin, connection_id='admin-conn', time_provider=NOW)
        record_heartbeat(self.store, self.teacher, connection_id='budi-conn', time_provider=NOW)
        with self.assertRaises(AuthFailure) as ctx:
            drop_connection(self.store, 'admin-conn', self.teacher)
        self.assertEqual(ctx.exception.http_status, 403)
        with self.assertRaises(AuthFailure):
            record_heartbeat(self.store, self.teacher, connection_id='admin-conn', time_provider=NOW)
        self.assertIsNotNone(self.store.get(ACTIVE_USERS, 'admin-1', ActiveUserSession))

        self.assertEqual(drop_connection(self.store, 'budi-conn', self.admin), ['active_users/t-budi'])

    def test_logout_forgets_connection_registrations(self):
        record_heartbeat(self.store, self.teacher, connection_id='old-conn', time_provider=NOW)
        deregister(self.store, 't-budi')
        self.assertIsNone(self.store.connection_owner('old-conn'))

        record_heartbeat(self.store, self.teacher, time_provider=NOW)
        self.assertEqual(drop_connection(self.store, 'old-conn', self.teacher), [])
        self.assertIsNotNone(self.store.get(ACTIVE_USERS, 't-budi', ActiveUserSession))

    def test_logout_deregisters(self):
        record_heartbeat(self.store, self.teacher, time_provider=NOW)
        deregister(self.store, 't-budi')
        self.assertIsNone(self.store.get(ACTIVE_USERS, 't-budi', ActiveUserSession))


if __name__ == '__main__':
    unittest.main()
