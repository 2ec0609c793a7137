from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    ADMIN = 'admin'
    TEACHER = 'teacher'


class TeacherStatus(str, Enum):
    PRESENT = 'PRESENT'
    ABSENT = 'ABSENT'
    SICK = 'SICK'
    PERMISSION = 'PERMISSION'


class AttendanceStatus(str, Enum):
    ON_TIME = 'ON_TIME'
    LATE = 'LATE'


class StudentMark(str, Enum):
    PRESENT = 'PRESENT'
    SICK = 'SICK'
    PERMISSION = 'PERMISSION'
    ALPHA = 'ALPHA'


class SessionStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'


class Semester(str, Enum):
    GANJIL = 'Ganjil'
    GENAP = 'Genap'


class ProofKind(str, Enum):
    IMAGE = 'image'
    PDF = 'pdf'


TIME_RANGE_PATTERN = r'^\s*\d{1,2}:\d{2}\s*-\s*\d{1,2}:\d{2}\s*$'
SCHOOL_YEAR_PATTERN = r'^\d{4}/\d{4}$'


class StoreRecord(BaseModel):
    """Base for every value kept in the realtime store.

    Field names are snake_case in Python and camelCase on the wire, matching
    the paths the web and mobile clients already read.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True, mode='json', exclude_none=True)


class Coordinates(StoreRecord):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    @field_validator('latitude', 'longitude')
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError('coordinate must be finite')
        return value


class User(StoreRecord):
    id: str
    name: str
    role: Role
    photo_url: str | None = None


class Teacher(StoreRecord):
    id: str
    name: str
    nip: str = ''
    email: str | None = None
    photo_url: str | None = None
    role: Role = Role.TEACHER


class Student(StoreRecord):
    id: str
    name: str
    class_id: str
    class_name: str = ''
    attendance_count: int = 0
    photo_url: str | None = None


class Office(StoreRecord):
    id: str
    name: str
    grade: str | None = None
    teacher_id: str | None = None
    teacher: str | None = None
    address: str = ''
    coordinates: Coordinates
    added_at: int | None = None


class Subject(StoreRecord):
    id: str
    name: str
    teacher_id: str | None = None
    teacher_name: str | None = None
    class_id: str
    class_name: str = ''
    day: str
    time: str = Field(pattern=TIME_RANGE_PATTERN)


class AppConfig(StoreRecord):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore', frozen=True)

    school_year: str = Field(pattern=SCHOOL_YEAR_PATTERN)
    semester: Semester
    is_system_active: bool = True

    def year_bounds(self) -> tuple[int, int]:
        start, end = self.school_year.split('/', 1)
        return int(start), int(end)


class ClassSession(StoreRecord):
    id: str
    subject_id: str
    subject_name: str
    class_id: str
    class_name: str = ''
    teacher_id: str = ''
    date: str = Field(pattern=r'^\d{4}-\d{2}-\d{2}$')
    start_time: int
    teacher_status: TeacherStatus
    semester: Semester
    school_year: str = Field(pattern=SCHOOL_YEAR_PATTERN)
    attendance_status: AttendanceStatus | None = None
    late_minutes: int = Field(default=0, ge=0)
    attendance_photo_url: str | None = None
    teacher_coordinates: Coordinates | None = None
    permission_proof_url: str | None = None
    permission_type: ProofKind | None = None
    permission_notes: str | None = None
    substitute_teacher_id: str | None = None
    substitute_teacher_name: str | None = None
    student_attendance: dict[str, StudentMark] = Field(default_factory=dict)
    status: SessionStatus = SessionStatus.ACTIVE

    @model_validator(mode='after')
    def _check_shape(self) -> 'ClassSession':
        if self.id != session_id_for(self.subject_id, self.date):
            raise ValueError('session id must be subjectId_date')
        if self.teacher_status != TeacherStatus.PRESENT and self.attendance_status is not None:
            raise ValueError('attendanceStatus is only set for PRESENT sessions')
        if self.teacher_status != TeacherStatus.PERMISSION and self.permission_proof_url:
            raise ValueError('permission fields are only set for PERMISSION sessions')
        return self

    def present_count(self) -> int:
        return sum(1 for mark in self.student_attendance.values() if mark == StudentMark.PRESENT)


class ActiveUserSession(StoreRecord):
    user_id: str
    name: str
    role: Role
    ip: str = ''
    user_agent: str = ''
    last_seen: int
    location: Coordinates | None = None
    photo_url: str | None = None


def session_id_for(subject_id: str, date_str: str) -> str:
    return f'{subject_id}_{date_str}'


class ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TeacherStats(ReportModel):
    present: int = 0
    permission: int = 0
    absent: int = 0
    total: int = 0


class StudentHistoryEntry(ReportModel):
    date: str
    subject_name: str
    status: StudentMark


class StudentRecap(ReportModel):
    student_id: str
    present: int = 0
    sick: int = 0
    permission: int = 0
    alpha: int = 0
    total: int = 0
    present_percent: float = 0.0


class CheckInRequest(BaseModel):
    subject_id: str
    coordinates: Coordinates | None = None
    photo: str | None = None


class PermissionRequest(BaseModel):
    subject_id: str
    substitute_teacher_id: str = ''
    proof: str = ''
    proof_kind: ProofKind = ProofKind.IMAGE
    notes: str = ''


class MarkAttendanceRequest(BaseModel):
    student_id: str
    status: StudentMark


class HeartbeatRequest(BaseModel):
    coordinates: Coordinates | None = None
    connection_id: str | None = None


class AppConfigUpdateRequest(BaseModel):
    school_year: str = Field(pattern=SCHOOL_YEAR_PATTERN)
    semester: Semester
    is_system_active: bool = True
