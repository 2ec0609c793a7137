from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from geoattend.core.errors import SystemInactive
from geoattend.core.time_provider import FixedTimeProvider
from geoattend.schemas import AppConfig, Semester
from geoattend.services.app_config_service import (
    default_app_config,
    ensure_system_active,
    load_app_config,
    save_app_config,
)
from geoattend.store import MemoryStoreBackend, RecordStore


JAKARTA = ZoneInfo('Asia/Jakarta')


def test_default_config_in_second_half_of_year() -> None:
    config = default_app_config(time_provider=FixedTimeProvider(datetime(2024, 9, 10, 8, 0, tzinfo=JAKARTA)))
    assert config.school_year == '2024/2025'
    assert config.semester == Semester.GANJIL


def test_default_config_in_first_half_of_year() -> None:
    config = default_app_config(time_provider=FixedTimeProvider(datetime(2025, 3, 10, 8, 0, tzinfo=JAKARTA)))
    assert config.school_year == '2024/2025'
    assert config.semester == Semester.GENAP


def test_saved_config_round_trips_through_store() -> None:
    store = RecordStore(MemoryStoreBackend())
    saved = save_app_config(store, AppConfig(school_year='2025/2026', semester=Semester.GENAP, is_system_active=False))
    assert load_app_config(store) == saved
    assert store.backend.get('config/app_settings')[0] == {
        'schoolYear': '2025/2026',
        'semester': 'Genap',
        'isSystemActive': False,
    }


def test_save_rejects_non_consecutive_years() -> None:
    store = RecordStore(MemoryStoreBackend())
    with pytest.raises(ValueError):
        save_app_config(store, AppConfig(school_year='2024/2026', semester=Semester.GANJIL))


def test_config_is_immutable() -> None:
    config = AppConfig(school_year='2025/2026', semester=Semester.GENAP)
    with pytest.raises(Exception):
        config.semester = Semester.GANJIL


def test_inactive_system_is_refused() -> None:
    with pytest.raises(SystemInactive):
        ensure_system_active(AppConfig(school_year='2025/2026', semester=Semester.GENAP, is_system_active=False))
