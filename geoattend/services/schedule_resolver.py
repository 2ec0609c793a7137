from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Iterable

from geoattend.config import settings
from geoattend.core.time_provider import day_name_for
from geoattend.schemas import ClassSession, Role, SessionStatus, Subject, TeacherStatus, User, session_id_for


logger = logging.getLogger(__name__)


def _parse_hhmm(value: str) -> time:
    hh, mm = (value or '').split(':', 1)
    hour = int(hh)
    minute = int(mm)
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise ValueError('Invalid time')
    return time(hour=hour, minute=minute)


def parse_time_range(value: str) -> tuple[time, time]:
    """Parse a subject slot such as ``"07:00 - 08:30"``."""
    start_str, sep, end_str = (value or '').partition('-')
    if not sep:
        raise ValueError(f'Invalid time range: {value!r}')
    return _parse_hhmm(start_str.strip()), _parse_hhmm(end_str.strip())


def _minutes(value: time | datetime) -> int:
    return value.hour * 60 + value.minute


def _slot_minutes(time_range: str) -> tuple[int, int] | None:
    try:
        start, end = parse_time_range(time_range)
    except ValueError:
        logger.warning('schedule_time_range_invalid value=%r', time_range)
        return None
    return _minutes(start), _minutes(end)


def is_time_in_range(time_range: str, now: datetime, lead_minutes: int | None = None) -> bool:
    """Check-in opens ``lead_minutes`` before the slot starts and closes when it ends."""
    slot = _slot_minutes(time_range)
    if slot is None:
        return False
    lead = settings.check_in_lead_minutes if lead_minutes is None else lead_minutes
    start, end = slot
    return start - lead <= _minutes(now) <= end


def is_upcoming_or_active(time_range: str, now: datetime, window_minutes: int | None = None) -> bool:
    slot = _slot_minutes(time_range)
    if slot is None:
        return False
    window = settings.upcoming_window_minutes if window_minutes is None else window_minutes
    start, end = slot
    return start - window <= _minutes(now) <= end


def is_time_past(time_range: str, now: datetime) -> bool:
    slot = _slot_minutes(time_range)
    if slot is None:
        return False
    return _minutes(now) > slot[1]


def late_minutes_for(time_range: str, now: datetime) -> int:
    """Minutes between the declared start and ``now`` on the local wall clock, floored at zero."""
    slot = _slot_minutes(time_range)
    if slot is None:
        return 0
    return max(0, _minutes(now) - slot[0])


def subjects_due_today(subjects: Iterable[Subject], day_name: str) -> list[Subject]:
    return [subject for subject in subjects if subject.day == day_name]


def is_due_on(subject: Subject, on: date) -> bool:
    return subject.day == day_name_for(on)


def subjects_for_user(subjects: Iterable[Subject], user: User) -> list[Subject]:
    if user.role == Role.TEACHER:
        return [subject for subject in subjects if subject.teacher_id == user.id]
    return list(subjects)


def session_for(sessions: Iterable[ClassSession], subject_id: str, date_str: str) -> ClassSession | None:
    target = session_id_for(subject_id, date_str)
    for session in sessions:
        if session.id == target:
            return session
    return None


def is_pending(subject: Subject, sessions: Iterable[ClassSession], today: date) -> bool:
    if not is_due_on(subject, today):
        return False
    session = session_for(sessions, subject.id, today.isoformat())
    return session is None or session.status != SessionStatus.COMPLETED


def pending_subjects(
    subjects: Iterable[Subject],
    sessions: Iterable[ClassSession],
    user: User,
    now: datetime,
    *,
    hide_past: bool = True,
) -> list[Subject]:
    """Today's task list for ``user``: due, not completed and, by default, not already over."""
    today = now.date()
    session_list = list(sessions)
    rows = []
    for subject in subjects_for_user(subjects, user):
        if not is_pending(subject, session_list, today):
            continue
        if hide_past and is_time_past(subject.time, now):
            continue
        rows.append(subject)
    rows.sort(key=lambda subject: (_slot_minutes(subject.time) or (0, 0), subject.name))
    return rows


def today_status(subject: Subject, sessions: Iterable[ClassSession], today: date) -> str | None:
    if not is_due_on(subject, today):
        return None
    session = session_for(sessions, subject.id, today.isoformat())
    if session and session.teacher_status == TeacherStatus.PRESENT:
        return 'DONE'
    return 'PENDING'
