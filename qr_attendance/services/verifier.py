from __future__ import annotations
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from ..core.config import Settings, get_settings
from ..core.errors import (
    AlreadyRecorded, LocationRequired, OutOfRange, QrNotEnabled, SessionClosed, SessionNotFound,
    TokenExpired, TokenStale, VerificationError,
)
from ..core.geo import GeoPoint, within_radius
from ..core.qr import now_ms, parse_token
from ..models import AttendanceRecord, AttendanceSession, RecordMethod, RecordStatus, SessionMode
from .store import SessionStore

logger = logging.getLogger(__name__)

class AttendanceVerifier:
    """
    Decides one scan. Checks run in a fixed order and the first failure wins:
    token shape, session exists, is open and takes QR check-ins, freshness,
    still the active token, geofence, not already recorded. Only a scan
    passing all of them writes anything.
    """

    def __init__(self, store: SessionStore, *, clock: Callable[[], int] = now_ms, settings: Settings | None = None):
        self._store = store
        self._clock = clock
        self._settings = settings or get_settings()

    async def verify(
        self,
        scanned_token: str,
        student_id: uuid.UUID,
        device_location: GeoPoint | None = None,
    ) -> AttendanceRecord:
        try:
            record = await self._verify(scanned_token, student_id, device_location)
        except VerificationError as e:
            logger.info("Scan rejected for student %s: %s", student_id, e.code)
            raise
        logger.info("Attendance recorded: session %s student %s", record.attendance_id, student_id)
        return record

    async def _verify(
        self, scanned_token: str, student_id: uuid.UUID, device_location: GeoPoint | None
    ) -> AttendanceRecord:
        parsed = parse_token(scanned_token, marker=self._settings.token_marker)
        token = scanned_token.strip()

        session = await self._store.read_session(parsed.session_id)
        if session is None:
            raise SessionNotFound()
        if not session.is_open:
            raise SessionClosed()
        if session.mode != SessionMode.QR_CODE:
            raise QrNotEnabled()

        now = self._clock()
        self._check_fresh(parsed.issued_at_ms, now)

        if not session.active_token or not hmac.compare_digest(session.active_token, token):
            raise TokenStale()

        if session.has_geofence:
            self._check_geofence(session, device_location)

        if await self._store.find_record(session.id, student_id) is not None:
            raise AlreadyRecorded()

        return await self._store.create_record(
            session.id,
            student_id,
            status=RecordStatus.PRESENT,
            method=RecordMethod.QR,
            recorded_at=datetime.fromtimestamp(now / 1000, tz=timezone.utc),
            location=device_location,
        )

    def _check_fresh(self, issued_at_ms: int, now: int) -> None:
        skew = self._settings.token_clock_skew_ms
        age = now - issued_at_ms
        if age > self._settings.token_ttl_ms + skew or age < -skew:
            raise TokenExpired()

    @staticmethod
    def _check_geofence(session: AttendanceSession, device_location: GeoPoint | None) -> None:
        if device_location is None:
            raise LocationRequired()
        center = GeoPoint(session.location_lat, session.location_long)
        inside, distance = within_radius(device_location, center, session.radius_meters)
        if not inside:
            raise OutOfRange(
                f"You are {distance:.0f} m from the classroom; check-in is allowed within {session.radius_meters:.0f} m.",
                distance_m=distance,
                radius_m=session.radius_meters,
            )
