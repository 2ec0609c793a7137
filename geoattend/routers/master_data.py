from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError

from geoattend.cache import REPORTS_CACHE_PREFIX, cache
from geoattend.core.errors import AttendanceError
from geoattend.core.router_guard import http_error, require_admin, require_auth_user
from geoattend.core.time_provider import default_time_provider
from geoattend.route_logging import EndpointNameRoute
from geoattend.schemas import AppConfig, AppConfigUpdateRequest, Office, StoreRecord, Student, Subject, Teacher
from geoattend.services.app_config_service import load_app_config, save_app_config
from geoattend.store import OFFICES, STUDENTS, SUBJECTS, TEACHERS, RecordStore, get_store


logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/master', tags=['Master Data'], route_class=EndpointNameRoute)

COLLECTION_MODELS: dict[str, type[StoreRecord]] = {
    OFFICES: Office,
    STUDENTS: Student,
    TEACHERS: Teacher,
    SUBJECTS: Subject,
}


def _model_for(collection: str) -> type[StoreRecord]:
    model = COLLECTION_MODELS.get(collection)
    if model is None:
        raise HTTPException(status_code=404, detail='Unknown collection')
    return model


def _denormalise_subject(store: RecordStore, subject: Subject) -> Subject:
    updates: dict[str, Any] = {}
    office = store.get(OFFICES, subject.class_id, Office)
    if office is not None:
        updates['class_name'] = office.name
    if subject.teacher_id:
        teacher = store.get(TEACHERS, subject.teacher_id, Teacher)
        if teacher is not None:
            updates['teacher_name'] = teacher.name
    return subject.model_copy(update=updates) if updates else subject


def _prepare(store: RecordStore, record: StoreRecord) -> StoreRecord:
    if isinstance(record, Subject):
        return _denormalise_subject(store, record)
    if isinstance(record, Office) and record.added_at is None:
        return record.model_copy(update={'added_at': default_time_provider.now_ms()})
    if isinstance(record, Student) and not record.class_name:
        office = store.get(OFFICES, record.class_id, Office)
        if office is not None:
            return record.model_copy(update={'class_name': office.name})
    return record


@router.get('/config')
def read_config(request: Request, store: RecordStore = Depends(get_store)):
    require_auth_user(request)
    return load_app_config(store).to_store()


@router.put('/config')
def update_config(payload: AppConfigUpdateRequest, request: Request, store: RecordStore = Depends(get_store)):
    require_admin(request)
    config = AppConfig(**payload.model_dump())
    try:
        save_app_config(store, config)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AttendanceError as exc:
        raise http_error(exc) from exc
    return config.to_store()


@router.get('/{collection}')
def list_collection(collection: str, request: Request, store: RecordStore = Depends(get_store)):
    require_auth_user(request)
    model = _model_for(collection)
    return {'items': [record.to_store() for record in store.list_records(collection, model)]}


@router.get('/{collection}/{record_id}')
def read_record(collection: str, record_id: str, request: Request, store: RecordStore = Depends(get_store)):
    require_auth_user(request)
    record = store.get(collection, record_id, _model_for(collection))
    if record is None:
        raise HTTPException(status_code=404, detail='Record not found')
    return record.to_store()


@router.put('/{collection}/{record_id}')
def upsert_record(
    collection: str,
    record_id: str,
    request: Request,
    payload: dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
):
    user = require_admin(request)
    model = _model_for(collection)
    try:
        record = model.model_validate({**payload, 'id': record_id})
    except PydanticValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    record = _prepare(store, record)
    try:
        store.save(collection, record_id, record)
    except AttendanceError as exc:
        raise http_error(exc) from exc
    cache.invalidate_prefix(REPORTS_CACHE_PREFIX)
    logger.info('master_record_saved collection=%s record_id=%s by=%s', collection, record_id, user.id)
    return record.to_store()


@router.delete('/{collection}/{record_id}')
def delete_record(collection: str, record_id: str, request: Request, store: RecordStore = Depends(get_store)):
    user = require_admin(request)
    _model_for(collection)
    try:
        store.remove(collection, record_id)
    except AttendanceError as exc:
        raise http_error(exc) from exc
    cache.invalidate_prefix(REPORTS_CACHE_PREFIX)
    logger.info('master_record_deleted collection=%s record_id=%s by=%s', collection, record_id, user.id)
    return {'ok': True}
