from __future__ import annotations

import base64
import binascii
import logging
from datetime import date
from typing import Iterable

from geoattend.cache import REPORTS_CACHE_PREFIX, cache
from geoattend.config import settings
from geoattend.core.errors import (
    GeofenceViolation,
    MissingProof,
    NoGPSFix,
    RevisionConflict,
    SessionNotFound,
    TransitionBlocked,
    ValidationError,
)
from geoattend.core.geo import distance_meters, is_within_geofence
from geoattend.core.time_provider import day_name_for, default_time_provider
from geoattend.metrics import timed_service
from geoattend.schemas import (
    AppConfig,
    AttendanceStatus,
    ClassSession,
    Coordinates,
    Office,
    ProofKind,
    SessionStatus,
    Student,
    StudentMark,
    Subject,
    Teacher,
    TeacherStatus,
    session_id_for,
)
from geoattend.services.app_config_service import ensure_system_active
from geoattend.services.schedule_resolver import is_due_on, late_minutes_for
from geoattend.store import OFFICES, SESSIONS, STUDENTS, TEACHERS, RecordStore, record_path


logger = logging.getLogger(__name__)

MARK_RETRY_ATTEMPTS = 3


def _invalidate_reports() -> None:
    cache.invalidate_prefix(REPORTS_CACHE_PREFIX)


def _load_session(store: RecordStore, session_id: str) -> tuple[ClassSession, int]:
    found = store.get_record(record_path(SESSIONS, session_id), ClassSession)
    if found is None:
        raise SessionNotFound(f'Session {session_id} does not exist.')
    return found


def _existing_session(store: RecordStore, session_id: str) -> tuple[ClassSession | None, int]:
    found = store.get_record(record_path(SESSIONS, session_id), ClassSession)
    if found is None:
        return None, 0
    return found


def get_session(store: RecordStore, session_id: str) -> ClassSession:
    return _load_session(store, session_id)[0]


def ensure_can_check_in(session: ClassSession | None) -> None:
    if session is None:
        return
    if session.status == SessionStatus.COMPLETED:
        raise TransitionBlocked('This session is already finished.')
    if session.teacher_status != TeacherStatus.PRESENT:
        raise TransitionBlocked('A permission was already filed for this subject today; check-in is closed.')


def ensure_can_file_permission(session: ClassSession | None) -> None:
    if session is None:
        return
    if session.status == SessionStatus.COMPLETED:
        raise TransitionBlocked('This session is already finished.')
    if session.teacher_status == TeacherStatus.PRESENT:
        raise TransitionBlocked('You already checked in for this subject today.')


def ensure_due_today(subject: Subject, today: date) -> None:
    if not is_due_on(subject, today):
        raise TransitionBlocked(f'{subject.name} is not scheduled on {day_name_for(today)}.')


def ensure_student_in_class(store: RecordStore, session: ClassSession, student_id: str) -> None:
    student = store.get(STUDENTS, student_id, Student)
    if student is None:
        raise ValidationError(f'Student {student_id} does not exist.')
    if student.class_id != session.class_id:
        raise ValidationError(f'Student {student_id} is not enrolled in {session.class_name or session.class_id}.')


def ensure_can_mark(session: ClassSession) -> None:
    if session.status != SessionStatus.ACTIVE:
        raise TransitionBlocked('This session is finished; attendance can no longer change.')
    if session.teacher_status != TeacherStatus.PRESENT:
        raise TransitionBlocked('Students can only be marked after the teacher checks in.')


def proof_size_bytes(proof: str) -> int:
    """Decoded size of a base64 proof, accepting ``data:<mime>;base64,`` URLs."""
    payload = proof.strip()
    if payload.startswith('data:'):
        _, sep, payload = payload.partition(',')
        if not sep:
            raise ValidationError('Proof file is not a valid data URL.')
    try:
        return len(base64.b64decode(''.join(payload.split()), validate=True))
    except (binascii.Error, ValueError) as exc:
        raise ValidationError('Proof file is not valid base64 data.') from exc


@timed_service('request_check_in')
def request_check_in(
    store: RecordStore,
    subject: Subject,
    device_coords: Coordinates | None,
    photo: str | None,
    *,
    config: AppConfig,
    late_tolerance_minutes: int | None = None,
    radius_meters: float | None = None,
    time_provider=default_time_provider,
) -> ClassSession:
    """Record the teacher as PRESENT for today's session of ``subject``.

    The device must report a fix within the geofence of the subject's class
    and a selfie must be attached. Only subjects scheduled for today's day
    name are accepted. Students already marked on an earlier check-in the
    same day are kept.
    """
    ensure_system_active(config)
    now = time_provider.now()
    ensure_due_today(subject, now.date())
    if device_coords is None:
        raise NoGPSFix()
    if not (photo or '').strip():
        raise MissingProof('Take a selfie before checking in.')

    office = store.get(OFFICES, subject.class_id, Office)
    if office is None:
        raise ValidationError(f'Class {subject.class_id} has no registered location.')

    radius = settings.geofence_radius_meters if radius_meters is None else radius_meters
    if not is_within_geofence(device_coords, office.coordinates, radius):
        distance = distance_meters(device_coords, office.coordinates)
        logger.info(
            'check_in_outside_geofence subject_id=%s class_id=%s distance_m=%.1f radius_m=%.1f',
            subject.id,
            subject.class_id,
            distance,
            radius,
        )
        raise GeofenceViolation(distance, radius)

    date_str = now.date().isoformat()
    session_id = session_id_for(subject.id, date_str)
    previous, revision = _existing_session(store, session_id)
    ensure_can_check_in(previous)

    tolerance = settings.late_tolerance_minutes if late_tolerance_minutes is None else late_tolerance_minutes
    late = late_minutes_for(subject.time, now)
    is_late = late > tolerance

    session = ClassSession(
        id=session_id,
        subject_id=subject.id,
        subject_name=subject.name,
        class_id=subject.class_id,
        class_name=subject.class_name,
        teacher_id=subject.teacher_id or '',
        date=date_str,
        start_time=int(now.timestamp() * 1000),
        teacher_status=TeacherStatus.PRESENT,
        attendance_status=AttendanceStatus.LATE if is_late else AttendanceStatus.ON_TIME,
        late_minutes=late if is_late else 0,
        attendance_photo_url=photo,
        teacher_coordinates=device_coords,
        semester=previous.semester if previous else config.semester,
        school_year=previous.school_year if previous else config.school_year,
        student_attendance=dict(previous.student_attendance) if previous else {},
        status=SessionStatus.ACTIVE,
    )
    store.save(SESSIONS, session_id, session, expected_revision=revision)
    _invalidate_reports()
    logger.info(
        'session_checked_in session_id=%s teacher_id=%s status=%s late_minutes=%s',
        session_id,
        session.teacher_id,
        session.attendance_status.value,
        late,
    )
    return session


@timed_service('request_permission')
def request_permission(
    store: RecordStore,
    subject: Subject,
    substitute_teacher_id: str,
    proof: str,
    proof_kind: ProofKind | str,
    notes: str,
    *,
    config: AppConfig,
    max_proof_bytes: int | None = None,
    time_provider=default_time_provider,
) -> ClassSession:
    ensure_system_active(config)
    now = time_provider.now()
    ensure_due_today(subject, now.date())
    missing = []
    if not (substitute_teacher_id or '').strip():
        missing.append('substitute teacher')
    if not (proof or '').strip():
        missing.append('proof file')
    if not (notes or '').strip():
        missing.append('notes')
    if missing:
        raise ValidationError(f'Please complete: {", ".join(missing)}.')

    try:
        kind = ProofKind(proof_kind)
    except ValueError as exc:
        raise ValidationError(f'Unsupported proof type: {proof_kind}') from exc

    limit = settings.max_proof_bytes if max_proof_bytes is None else max_proof_bytes
    size = proof_size_bytes(proof)
    if size > limit:
        raise ValidationError(f'Proof file is too large ({size} bytes, maximum {limit}).')

    date_str = now.date().isoformat()
    session_id = session_id_for(subject.id, date_str)
    previous, revision = _existing_session(store, session_id)
    ensure_can_file_permission(previous)

    substitute = store.get(TEACHERS, substitute_teacher_id.strip(), Teacher)
    if substitute is None:
        logger.warning('permission_substitute_unknown subject_id=%s substitute_id=%s', subject.id, substitute_teacher_id)

    session = ClassSession(
        id=session_id,
        subject_id=subject.id,
        subject_name=subject.name,
        class_id=subject.class_id,
        class_name=subject.class_name,
        teacher_id=subject.teacher_id or '',
        date=date_str,
        start_time=int(now.timestamp() * 1000),
        teacher_status=TeacherStatus.PERMISSION,
        permission_proof_url=proof,
        permission_type=kind,
        permission_notes=notes.strip(),
        substitute_teacher_id=substitute_teacher_id.strip(),
        substitute_teacher_name=substitute.name if substitute else None,
        semester=previous.semester if previous else config.semester,
        school_year=previous.school_year if previous else config.school_year,
        student_attendance={},
        status=SessionStatus.ACTIVE,
    )
    store.save(SESSIONS, session_id, session, expected_revision=revision)
    _invalidate_reports()
    logger.info(
        'session_permission_filed session_id=%s teacher_id=%s substitute_id=%s proof_bytes=%s',
        session_id,
        session.teacher_id,
        session.substitute_teacher_id,
        size,
    )
    return session


def mark_student_attendance(
    store: RecordStore,
    session_id: str,
    student_id: str,
    status: StudentMark | str,
) -> ClassSession:
    """Set one student's mark. Re-marking with the same status is a no-op write."""
    if not (student_id or '').strip():
        raise ValidationError('Student id is required.')
    try:
        mark = StudentMark(status)
    except ValueError as exc:
        raise ValidationError(f'Unknown attendance status: {status}') from exc

    # A single-key update can be reapplied on top of a concurrent write.
    attempt = 0
    while True:
        attempt += 1
        session, revision = _load_session(store, session_id)
        ensure_can_mark(session)
        if attempt == 1:
            ensure_student_in_class(store, session, student_id)
        updated = session.model_copy(
            update={'student_attendance': {**session.student_attendance, student_id: mark}}
        )
        try:
            store.save(SESSIONS, session_id, updated, expected_revision=revision)
        except RevisionConflict:
            if attempt == MARK_RETRY_ATTEMPTS:
                raise
            logger.info('student_mark_retry session_id=%s student_id=%s attempt=%s', session_id, student_id, attempt)
            continue
        _invalidate_reports()
        logger.debug('student_marked session_id=%s student_id=%s status=%s', session_id, student_id, mark.value)
        return updated


@timed_service('mark_all_present')
def mark_all_present(store: RecordStore, session_id: str, roster: Iterable[Student]) -> list[str]:
    """Mark every student in ``roster`` PRESENT, one write per student.

    Writes are sequential and not atomic: if one fails, the students before it
    keep their mark and the error propagates. Returns the ids written.
    """
    ensure_can_mark(get_session(store, session_id))
    written: list[str] = []
    for student in roster:
        mark_student_attendance(store, session_id, student.id, StudentMark.PRESENT)
        written.append(student.id)
    logger.info('session_marked_all_present session_id=%s count=%s', session_id, len(written))
    return written


def finish_session(store: RecordStore, session_id: str) -> ClassSession:
    session, revision = _load_session(store, session_id)
    if session.status != SessionStatus.ACTIVE:
        raise TransitionBlocked('This session is already finished.')
    finished = session.model_copy(update={'status': SessionStatus.COMPLETED})
    store.save(SESSIONS, session_id, finished, expected_revision=revision)
    _invalidate_reports()
    logger.info(
        'session_finished session_id=%s teacher_status=%s present=%s',
        session_id,
        session.teacher_status.value,
        finished.present_count(),
    )
    return finished
