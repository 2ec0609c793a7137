from geoattend.routers import master_data, presence, reports, sessions

__all__ = [
    'master_data',
    'presence',
    'reports',
    'sessions',
]
