from __future__ import annotations

from typing import Iterable

from fastapi import HTTPException, Request

from geoattend.core.errors import AttendanceError, AuthFailure
from geoattend.schemas import Role, Subject, User
from geoattend.services.auth_service import validate_session_token


def resolve_token(request: Request) -> str | None:
    token = request.cookies.get('auth_session')
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def http_error(exc: AttendanceError) -> HTTPException:
    return HTTPException(status_code=exc.http_status, detail=exc.to_dict())


def require_auth_user(request: Request) -> User:
    token = resolve_token(request)
    if not token:
        raise http_error(AuthFailure('missing_token'))
    user = validate_session_token(token)
    if user is None:
        raise http_error(AuthFailure('wrong_credential'))
    return user


def require_role(user: User, allowed_roles: set[Role] | Iterable[Role]) -> None:
    if user.role not in set(allowed_roles):
        raise http_error(AuthFailure('forbidden'))


def require_admin(request: Request) -> User:
    user = require_auth_user(request)
    require_role(user, {Role.ADMIN})
    return user


def assert_teacher_subject_scope(user: User, subject: Subject) -> None:
    if user.role != Role.TEACHER:
        return
    if subject.teacher_id != user.id:
        raise http_error(AuthFailure('forbidden'))
