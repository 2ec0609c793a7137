from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from geoattend.core.errors import AttendanceError, TransitionBlocked
from geoattend.core.router_guard import assert_teacher_subject_scope, http_error, require_auth_user
from geoattend.core.time_provider import default_time_provider
from geoattend.route_logging import EndpointNameRoute
from geoattend.schemas import (
    CheckInRequest,
    ClassSession,
    MarkAttendanceRequest,
    PermissionRequest,
    Role,
    Student,
    Subject,
    User,
)
from geoattend.services import session_state_machine as machine
from geoattend.services.app_config_service import load_app_config
from geoattend.services.schedule_resolver import (
    is_time_in_range,
    pending_subjects,
    session_for,
    today_status,
)
from geoattend.store import SESSIONS, STUDENTS, SUBJECTS, RecordStore, get_store


logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/sessions', tags=['Class Sessions'], route_class=EndpointNameRoute)


def _load_subject(store: RecordStore, subject_id: str, user: User) -> Subject:
    subject = store.get(SUBJECTS, subject_id, Subject)
    if subject is None:
        raise HTTPException(status_code=404, detail='Subject not found')
    assert_teacher_subject_scope(user, subject)
    return subject


def _load_session_for_user(store: RecordStore, session_id: str, user: User) -> ClassSession:
    try:
        session = machine.get_session(store, session_id)
    except AttendanceError as exc:
        raise http_error(exc) from exc
    if user.role == Role.TEACHER and session.teacher_id != user.id:
        raise HTTPException(status_code=403, detail='Forbidden')
    return session


@router.get('/today')
def today_sessions(request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    now = default_time_provider.now()
    today = now.date()
    subjects = store.list_records(SUBJECTS, Subject)
    sessions = store.list_records(SESSIONS, ClassSession)
    rows = []
    for subject in pending_subjects(subjects, sessions, user, now):
        session = session_for(sessions, subject.id, today.isoformat())
        try:
            machine.ensure_can_check_in(session)
            can_check_in = is_time_in_range(subject.time, now)
        except TransitionBlocked:
            can_check_in = False
        rows.append(
            {
                'subject': subject.to_store(),
                'session': session.to_store() if session else None,
                'todayStatus': today_status(subject, sessions, today),
                'canCheckIn': can_check_in,
            }
        )
    return {'date': today.isoformat(), 'dayName': default_time_provider.day_name(), 'items': rows}


@router.get('/{session_id}')
def read_session(session_id: str, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    return _load_session_for_user(store, session_id, user).to_store()


@router.post('/check-in')
def check_in(payload: CheckInRequest, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    subject = _load_subject(store, payload.subject_id, user)
    try:
        config = load_app_config(store)
        session = machine.request_check_in(store, subject, payload.coordinates, payload.photo, config=config)
    except AttendanceError as exc:
        raise http_error(exc) from exc
    return session.to_store()


@router.post('/permission')
def file_permission(payload: PermissionRequest, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    subject = _load_subject(store, payload.subject_id, user)
    try:
        config = load_app_config(store)
        session = machine.request_permission(
            store,
            subject,
            payload.substitute_teacher_id,
            payload.proof,
            payload.proof_kind,
            payload.notes,
            config=config,
        )
    except AttendanceError as exc:
        raise http_error(exc) from exc
    return session.to_store()


@router.post('/{session_id}/students')
def mark_student(
    session_id: str,
    payload: MarkAttendanceRequest,
    request: Request,
    store: RecordStore = Depends(get_store),
):
    user = require_auth_user(request)
    _load_session_for_user(store, session_id, user)
    try:
        session = machine.mark_student_attendance(store, session_id, payload.student_id, payload.status)
    except AttendanceError as exc:
        raise http_error(exc) from exc
    return session.to_store()


@router.post('/{session_id}/mark-all-present')
def mark_all_present(session_id: str, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    session = _load_session_for_user(store, session_id, user)
    roster = [student for student in store.list_records(STUDENTS, Student) if student.class_id == session.class_id]
    try:
        written = machine.mark_all_present(store, session_id, roster)
    except AttendanceError as exc:
        logger.warning('mark_all_present_interrupted session_id=%s roster=%s code=%s', session_id, len(roster), exc.code)
        raise http_error(exc) from exc
    return {'sessionId': session_id, 'marked': len(written), 'studentIds': written}


@router.post('/{session_id}/finish')
def finish(session_id: str, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    _load_session_for_user(store, session_id, user)
    try:
        session = machine.finish_session(store, session_id)
    except AttendanceError as exc:
        raise http_error(exc) from exc
    return session.to_store()
