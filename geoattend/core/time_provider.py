from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from geoattend.config import settings


APP_TIMEZONE = settings.app_timezone or "Asia/Jakarta"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)

INDONESIAN_DAYS = ("Senin", "Selasa", "Rabu", "Kamis", "Jumat", "Sabtu", "Minggu")


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def day_name(self) -> str:
        return day_name_for(self.today())


class FixedTimeProvider(TimeProvider):
    """Pinned clock for jobs and tests that replay a known moment."""

    def __init__(self, moment: datetime) -> None:
        self._moment = ensure_aware(moment)

    def now(self) -> datetime:
        return self._moment.astimezone(APP_ZONEINFO)


def day_name_for(value: date) -> str:
    return INDONESIAN_DAYS[value.weekday()]


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError("Naive datetime not allowed in business logic")
    return dt


default_time_provider = TimeProvider()
