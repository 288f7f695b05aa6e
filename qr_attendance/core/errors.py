"""
Attendance error taxonomy.

Every rejection carries a stable ``code`` for clients, an ``action`` telling the
scanning screen what the student can do about it, and the HTTP status the
routers answer with:

- ``rescan``        token expired or superseded, scan the screen again
- ``not_eligible``  session closed or not taking QR check-ins, outside the
                    geofence, location missing
- ``already_done``  attendance is already recorded for this session
- ``invalid``       not an attendance code, or unknown session
- ``retry_later``   store unavailable
"""
from __future__ import annotations


class AttendanceError(Exception):
    code = "attendance_error"
    action = "retry_later"
    status_code = 500
    default_message = "Attendance could not be processed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message, "action": self.action}


class VerificationError(AttendanceError):
    """A scan was rejected. Terminal for that scan, never retried automatically."""


class MalformedToken(VerificationError):
    code = "malformed_token"
    action = "invalid"
    status_code = 400
    default_message = "This is not an attendance QR code."


class SessionNotFound(VerificationError):
    code = "session_not_found"
    action = "invalid"
    status_code = 404
    default_message = "Attendance session not found."


class SessionClosed(VerificationError):
    code = "session_closed"
    action = "not_eligible"
    status_code = 403
    default_message = "Attendance for this session is closed."


class QrNotEnabled(VerificationError):
    code = "qr_not_enabled"
    action = "not_eligible"
    status_code = 403
    default_message = "This session does not take QR check-ins. Ask your teacher."


class TokenExpired(VerificationError):
    code = "token_expired"
    action = "rescan"
    status_code = 410
    default_message = "QR code expired. Scan the current code again."


class TokenStale(VerificationError):
    code = "token_stale"
    action = "rescan"
    status_code = 410
    default_message = "QR code was replaced. Scan the current code again."


class LocationRequired(VerificationError):
    code = "location_required"
    action = "not_eligible"
    status_code = 422
    default_message = "This session requires your location. Enable GPS and try again."


class OutOfRange(VerificationError):
    code = "out_of_range"
    action = "not_eligible"
    status_code = 403
    default_message = "You are too far from the classroom."

    def __init__(self, message: str | None = None, *, distance_m: float | None = None, radius_m: float | None = None):
        self.distance_m = distance_m
        self.radius_m = radius_m
        super().__init__(message)


class AlreadyRecorded(VerificationError):
    code = "already_recorded"
    action = "already_done"
    status_code = 409
    default_message = "Your attendance is already recorded."


class PersistenceFailure(AttendanceError):
    code = "persistence_failure"
    action = "retry_later"
    status_code = 503
    default_message = "Attendance storage is unavailable. Try again shortly."
