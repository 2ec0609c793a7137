from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from geoattend.cache import REPORTS_CACHE_PREFIX, cache
from geoattend.config import settings
from geoattend.core.errors import AttendanceError
from geoattend.db import Base, engine
from geoattend.metrics import flush_cache_metrics
from geoattend.route_logging import EndpointNameRoute
from geoattend.routers import master_data, presence, reports, sessions
from geoattend.schemas import ClassSession
from geoattend.store import SESSIONS, CollectionWatcher, SnapshotDiff, get_store

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)
logger = logging.getLogger(__name__)


def _on_sessions_changed(records: list[ClassSession], diff: SnapshotDiff) -> None:
    cache.invalidate_prefix(REPORTS_CACHE_PREFIX)
    logger.info(
        'sessions_changed total=%s added=%s changed=%s removed=%s',
        len(records),
        len(diff.added),
        len(diff.changed),
        len(diff.removed),
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    watcher = CollectionWatcher(get_store(), SESSIONS, ClassSession, on_change=_on_sessions_changed)
    watcher.start()
    yield
    watcher.stop()
    flush_cache_metrics()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute


@app.exception_handler(AttendanceError)
async def attendance_error_handler(_: Request, exc: AttendanceError):
    return JSONResponse(status_code=exc.http_status, content={'detail': exc.to_dict()})


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('geoattend.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(sessions.router)
app.include_router(reports.router)
app.include_router(presence.router)
app.include_router(master_data.router)


@app.get('/')
def root():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok'}
