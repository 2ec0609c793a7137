from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from geoattend.metrics import timed_service
from geoattend.schemas import (
    ClassSession,
    Semester,
    Student,
    StudentHistoryEntry,
    StudentMark,
    StudentRecap,
    TeacherStats,
    TeacherStatus,
)
from geoattend.services.app_config_service import GANJIL_FIRST_MONTH


logger = logging.getLogger(__name__)


def teacher_stats(sessions: Iterable[ClassSession], teacher_id: str, date_str: str) -> TeacherStats:
    """Counts for one teacher on one day. SICK is reported as permission."""
    stats = TeacherStats()
    for session in sessions:
        if session.teacher_id != teacher_id or session.date != date_str:
            continue
        stats.total += 1
        if session.teacher_status == TeacherStatus.PRESENT:
            stats.present += 1
        elif session.teacher_status in (TeacherStatus.PERMISSION, TeacherStatus.SICK):
            stats.permission += 1
        else:
            stats.absent += 1
    return stats


def _belongs_to(session: ClassSession, student: Student) -> bool:
    return session.class_id == student.class_id or student.id in session.student_attendance


def student_history(sessions: Iterable[ClassSession], student: Student) -> list[StudentHistoryEntry]:
    rows = [
        StudentHistoryEntry(
            date=session.date,
            subject_name=session.subject_name,
            status=session.student_attendance.get(student.id, StudentMark.ALPHA),
        )
        for session in sessions
        if _belongs_to(session, student)
    ]
    rows.sort(key=lambda row: (row.date, row.subject_name))
    return rows


def in_period(session_date: str, semester: Semester | str, school_year: str) -> bool:
    """Fixed calendar split: Ganjil is July-December of the start year, Genap January-June of the end year."""
    try:
        day = date.fromisoformat(session_date)
        start_str, end_str = school_year.split('/', 1)
        start_year, end_year = int(start_str), int(end_str)
    except ValueError:
        logger.warning('period_filter_bad_input date=%s school_year=%s', session_date, school_year)
        return False
    if Semester(semester) == Semester.GANJIL:
        return day.year == start_year and day.month >= GANJIL_FIRST_MONTH
    return day.year == end_year and day.month < GANJIL_FIRST_MONTH


def period_filter(sessions: Iterable[ClassSession], semester: Semester | str, school_year: str) -> list[ClassSession]:
    return [session for session in sessions if in_period(session.date, semester, school_year)]


def student_recap(sessions: Iterable[ClassSession], student: Student) -> StudentRecap:
    recap = StudentRecap(student_id=student.id)
    for row in student_history(sessions, student):
        recap.total += 1
        if row.status == StudentMark.PRESENT:
            recap.present += 1
        elif row.status == StudentMark.SICK:
            recap.sick += 1
        elif row.status == StudentMark.PERMISSION:
            recap.permission += 1
        else:
            recap.alpha += 1
    if recap.total:
        recap.present_percent = round(recap.present * 100.0 / recap.total, 1)
    return recap


@timed_service('class_recap')
def class_recap(sessions: Iterable[ClassSession], students: Iterable[Student]) -> list[StudentRecap]:
    session_list = list(sessions)
    return [student_recap(session_list, student) for student in sorted(students, key=lambda s: s.name)]


def teacher_session_counts(sessions: Iterable[ClassSession], teacher_ids: Iterable[str]) -> dict[str, int]:
    counts = {teacher_id: 0 for teacher_id in teacher_ids}
    for session in sessions:
        if session.teacher_status == TeacherStatus.PRESENT and session.teacher_id in counts:
            counts[session.teacher_id] += 1
    return counts


def subject_history(sessions: Iterable[ClassSession], subject_id: str) -> list[ClassSession]:
    """PRESENT sessions of one subject, newest first."""
    rows = [
        session
        for session in sessions
        if session.subject_id == subject_id and session.teacher_status == TeacherStatus.PRESENT
    ]
    rows.sort(key=lambda session: session.start_time, reverse=True)
    return rows
