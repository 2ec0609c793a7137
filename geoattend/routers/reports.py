from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from geoattend.cache import REPORTS_CACHE_PREFIX, cache, cache_key
from geoattend.core.router_guard import require_admin, require_auth_user, require_role
from geoattend.core.time_provider import default_time_provider
from geoattend.route_logging import EndpointNameRoute
from geoattend.schemas import ClassSession, Role, Semester, Student, Teacher
from geoattend.services.app_config_service import load_app_config
from geoattend.services.attendance_aggregator import (
    class_recap,
    period_filter,
    student_history,
    student_recap,
    subject_history,
    teacher_session_counts,
    teacher_stats,
)
from geoattend.store import SESSIONS, STUDENTS, TEACHERS, RecordStore, get_store


router = APIRouter(prefix='/api/reports', tags=['Reports'], route_class=EndpointNameRoute)


def _period_sessions(store: RecordStore, semester: Semester | None, school_year: str | None) -> list[ClassSession]:
    config = load_app_config(store)
    return period_filter(
        store.list_records(SESSIONS, ClassSession),
        semester or config.semester,
        school_year or config.school_year,
    )


def _load_student(store: RecordStore, student_id: str) -> Student:
    student = store.get(STUDENTS, student_id, Student)
    if student is None:
        raise HTTPException(status_code=404, detail='Student not found')
    return student


@router.get('/teachers/{teacher_id}/today')
def teacher_today(teacher_id: str, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    if user.role == Role.TEACHER and user.id != teacher_id:
        raise HTTPException(status_code=403, detail='Forbidden')
    date_str = default_time_provider.today().isoformat()
    key = cache_key(REPORTS_CACHE_PREFIX, 'teacher_today', teacher_id, date_str)
    cached = cache.get_cached(key)
    if cached is not None:
        return cached
    stats = teacher_stats(store.list_records(SESSIONS, ClassSession), teacher_id, date_str)
    payload = {'teacherId': teacher_id, 'date': date_str, **stats.model_dump(by_alias=True)}
    cache.set_cached(key, payload)
    return payload


@router.get('/teachers/session-counts')
def session_counts(request: Request, store: RecordStore = Depends(get_store)):
    require_admin(request)
    key = cache_key(REPORTS_CACHE_PREFIX, 'teacher_counts')
    cached = cache.get_cached(key)
    if cached is not None:
        return cached
    teacher_ids = [teacher.id for teacher in store.list_records(TEACHERS, Teacher)]
    payload = {'counts': teacher_session_counts(store.list_records(SESSIONS, ClassSession), teacher_ids)}
    cache.set_cached(key, payload)
    return payload


@router.get('/students/{student_id}/history')
def history(
    student_id: str,
    request: Request,
    semester: Semester | None = Query(default=None),
    school_year: str | None = Query(default=None),
    store: RecordStore = Depends(get_store),
):
    require_auth_user(request)
    student = _load_student(store, student_id)
    rows = student_history(_period_sessions(store, semester, school_year), student)
    return {'studentId': student_id, 'items': [row.model_dump(by_alias=True, mode='json') for row in rows]}


@router.get('/students/{student_id}/recap')
def recap(
    student_id: str,
    request: Request,
    semester: Semester | None = Query(default=None),
    school_year: str | None = Query(default=None),
    store: RecordStore = Depends(get_store),
):
    require_auth_user(request)
    student = _load_student(store, student_id)
    return student_recap(_period_sessions(store, semester, school_year), student).model_dump(by_alias=True, mode='json')


@router.get('/classes/{class_id}/recap')
def class_recap_view(
    class_id: str,
    request: Request,
    semester: Semester | None = Query(default=None),
    school_year: str | None = Query(default=None),
    store: RecordStore = Depends(get_store),
):
    user = require_auth_user(request)
    require_role(user, {Role.ADMIN, Role.TEACHER})
    config = load_app_config(store)
    period = (semester or config.semester).value, school_year or config.school_year
    key = cache_key(REPORTS_CACHE_PREFIX, 'class_recap', class_id, *period)
    cached = cache.get_cached(key)
    if cached is not None:
        return cached
    students = [student for student in store.list_records(STUDENTS, Student) if student.class_id == class_id]
    rows = class_recap(_period_sessions(store, semester, school_year), students)
    payload = {'classId': class_id, 'items': [row.model_dump(by_alias=True, mode='json') for row in rows]}
    cache.set_cached(key, payload)
    return payload


@router.get('/subjects/{subject_id}/history')
def subject_history_view(subject_id: str, request: Request, store: RecordStore = Depends(get_store)):
    require_auth_user(request)
    rows = subject_history(store.list_records(SESSIONS, ClassSession), subject_id)
    return {
        'subjectId': subject_id,
        'items': [{**row.to_store(), 'presentCount': row.present_count()} for row in rows],
    }


@router.get('/sessions')
def sessions_in_period(
    request: Request,
    semester: Semester | None = Query(default=None),
    school_year: str | None = Query(default=None),
    store: RecordStore = Depends(get_store),
):
    require_admin(request)
    rows = _period_sessions(store, semester, school_year)
    rows.sort(key=lambda row: (row.date, row.subject_name))
    return {'items': [row.to_store() for row in rows]}
