from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'GeoAttend'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Jakarta'
    database_url: str = 'sqlite:///./geoattend.db'
    store_backend: str = 'sql'
    geofence_radius_meters: float = 100.0
    late_tolerance_minutes: int = 15
    check_in_lead_minutes: int = 15
    upcoming_window_minutes: int = 60
    presence_online_threshold_ms: int = 180_000
    max_proof_bytes: int = 5 * 1024 * 1024
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    admin_bypass_ids: list[str] = []
    cache_backend: str = 'memory'
    cache_redis_url: str | None = None
    default_cache_ttl: int = 60
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
