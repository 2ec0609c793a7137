import unittest

from freezegun import freeze_time

from geoattend.metrics import _MinuteCounter, timed_service


class MinuteCounterTests(unittest.TestCase):
    def test_finished_minute_is_logged_once(self):
        counter = _MinuteCounter()
        with freeze_time('2026-02-16 00:05:10') as frozen:
            counter.record('cache_hit')
            counter.record('cache_hit')
            counter.record('cache_miss')
            frozen.move_to('2026-02-16 00:06:02')
            with self.assertLogs('geoattend.metrics', level='INFO') as logs:
                counter.record('cache_invalidate')
        self.assertEqual(len(logs.output), 1)
        self.assertIn('minute=2026-02-16T00:05:00+00:00', logs.output[0])
        self.assertIn('cache_hit=2 cache_miss=1 cache_invalidate=0', logs.output[0])

        with self.assertLogs('geoattend.metrics', level='INFO') as logs:
            counter.flush()
        self.assertIn('cache_invalidate=1', logs.output[0])

    def test_flush_without_events_logs_nothing(self):
        counter = _MinuteCounter()
        with self.assertNoLogs('geoattend.metrics', level='INFO'):
            counter.flush()


class TimedServiceTests(unittest.TestCase):
    def test_slow_call_is_logged_with_label(self):
        @timed_service('recap', threshold_ms=0)
        def recap(value):
            return value * 2

        with self.assertLogs('geoattend.metrics', level='INFO') as logs:
            self.assertEqual(recap(21), 42)
        self.assertIn('service_timer label=recap', logs.output[0])
        self.assertEqual(recap.__name__, 'recap')


if __name__ == '__main__':
    unittest.main()
