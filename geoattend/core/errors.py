from __future__ import annotations


class AttendanceError(Exception):
    """Base for failures raised by a user-triggered action.

    Every subclass carries a stable ``code`` and the HTTP status the API maps
    it to. The message is what the user sees in the toast.
    """

    code = 'attendance_error'
    http_status = 400

    def __init__(self, message: str = '') -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': self.message}


class ValidationError(AttendanceError):
    code = 'validation_error'
    http_status = 400


class MissingProof(ValidationError):
    code = 'missing_proof'


class SystemInactive(ValidationError):
    code = 'system_inactive'


class MalformedRecord(ValidationError):
    code = 'malformed_record'

    def __init__(self, path: str, message: str = '') -> None:
        super().__init__(message or f'Malformed record at {path}')
        self.path = path


class GeofenceViolation(AttendanceError):
    code = 'geofence_violation'
    http_status = 403

    def __init__(self, distance_meters: float, radius_meters: float) -> None:
        super().__init__(
            f'Check-in rejected: you are {distance_meters:.0f}m from the class, '
            f'maximum distance is {radius_meters:.0f}m.'
        )
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            'distance_meters': round(self.distance_meters, 1),
            'radius_meters': self.radius_meters,
        }


class NoGPSFix(AttendanceError):
    code = 'no_gps_fix'
    http_status = 409

    def __init__(self, message: str = '') -> None:
        super().__init__(message or 'Waiting for GPS signal.')


class PositionUnavailable(NoGPSFix):
    code = 'position_unavailable'


class LocationTimeout(NoGPSFix):
    code = 'location_timeout'


class LocationPermissionDenied(NoGPSFix):
    code = 'location_permission_denied'


class SessionNotFound(AttendanceError):
    code = 'session_not_found'
    http_status = 404


class TransitionBlocked(AttendanceError):
    code = 'transition_blocked'
    http_status = 409


class RevisionConflict(AttendanceError):
    code = 'revision_conflict'
    http_status = 409

    def __init__(self, path: str, expected: int | None, actual: int | None) -> None:
        super().__init__(f'Record {path} changed concurrently (expected revision {expected}, found {actual}).')
        self.path = path
        self.expected = expected
        self.actual = actual


class PersistenceFailure(AttendanceError):
    code = 'persistence_failure'
    http_status = 503

    def __init__(self, message: str = '') -> None:
        super().__init__(message or 'Saving failed, please try again.')


AUTH_FAILURE_MESSAGES = {
    'wrong_credential': 'Wrong email or password.',
    'rate_limited': 'Too many attempts, please wait a moment and try again.',
    'network_unreachable': 'Cannot reach the server, check your connection.',
    'missing_token': 'Please sign in first.',
    'forbidden': 'You are not allowed to do this.',
}


class AuthFailure(AttendanceError):
    code = 'auth_failure'
    http_status = 401

    def __init__(self, kind: str = 'wrong_credential') -> None:
        if kind not in AUTH_FAILURE_MESSAGES:
            raise ValueError(f'Unknown auth failure kind: {kind}')
        super().__init__(AUTH_FAILURE_MESSAGES[kind])
        self.kind = kind
        if kind == 'forbidden':
            self.http_status = 403
        elif kind == 'rate_limited':
            self.http_status = 429

    def to_dict(self) -> dict:
        return {**super().to_dict(), 'kind': self.kind}
