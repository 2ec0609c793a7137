from __future__ import annotations

import logging

from geoattend.core.errors import SystemInactive
from geoattend.core.time_provider import default_time_provider
from geoattend.schemas import AppConfig, Semester
from geoattend.store import APP_SETTINGS_PATH, RecordStore


logger = logging.getLogger(__name__)

# Ganjil covers July to December of the school year's start year.
GANJIL_FIRST_MONTH = 7


def default_app_config(*, time_provider=default_time_provider) -> AppConfig:
    today = time_provider.today()
    if today.month >= GANJIL_FIRST_MONTH:
        return AppConfig(school_year=f'{today.year}/{today.year + 1}', semester=Semester.GANJIL)
    return AppConfig(school_year=f'{today.year - 1}/{today.year}', semester=Semester.GENAP)


def load_app_config(store: RecordStore, *, time_provider=default_time_provider) -> AppConfig:
    found = store.get_record(APP_SETTINGS_PATH, AppConfig)
    if found is None:
        config = default_app_config(time_provider=time_provider)
        logger.info('app_config_defaulted school_year=%s semester=%s', config.school_year, config.semester.value)
        return config
    return found[0]


def save_app_config(store: RecordStore, config: AppConfig) -> AppConfig:
    start, end = config.year_bounds()
    if end != start + 1:
        raise ValueError('School year must span two consecutive years')
    store.save_path(APP_SETTINGS_PATH, config)
    logger.info(
        'app_config_saved school_year=%s semester=%s active=%s',
        config.school_year,
        config.semester.value,
        config.is_system_active,
    )
    return config


def ensure_system_active(config: AppConfig) -> None:
    if not config.is_system_active:
        raise SystemInactive('Attendance is closed: the system is switched off by the administrator.')
