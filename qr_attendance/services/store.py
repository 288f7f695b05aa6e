from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import AlreadyRecorded, PersistenceFailure
from ..core.geo import GeoPoint
from ..models import AttendanceRecord, AttendanceSession, RecordMethod, RecordStatus

def as_uuid(value: uuid.UUID | str) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None

class SessionStore:
    """
    Read/write contract the token generator and the verifier share.

    Each call runs in its own short database session. Infrastructure errors
    surface as PersistenceFailure; a second record for the same
    (session, student) surfaces as AlreadyRecorded, whatever the caller checked
    beforehand.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def read_session(self, session_id: uuid.UUID | str) -> AttendanceSession | None:
        sid = as_uuid(session_id)
        if sid is None:
            return None
        try:
            async with self._session_maker() as db:
                return (await db.execute(
                    select(AttendanceSession).where(AttendanceSession.id == sid)
                )).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceFailure() from e

    async def update_active_token(self, session_id: uuid.UUID | str, token: str) -> bool:
        """Overwrite the session's active token. False when no such session exists."""
        sid = as_uuid(session_id)
        if sid is None:
            return False
        try:
            async with self._session_maker() as db:
                res = await db.execute(
                    update(AttendanceSession).where(AttendanceSession.id == sid).values(active_token=token)
                )
                await db.commit()
                return res.rowcount == 1
        except SQLAlchemyError as e:
            raise PersistenceFailure() from e

    async def find_record(self, session_id: uuid.UUID, student_id: uuid.UUID) -> AttendanceRecord | None:
        try:
            async with self._session_maker() as db:
                return (await db.execute(
                    select(AttendanceRecord).where(
                        AttendanceRecord.attendance_id == session_id,
                        AttendanceRecord.student_id == student_id,
                    )
                )).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceFailure() from e

    async def create_record(
        self,
        session_id: uuid.UUID,
        student_id: uuid.UUID,
        *,
        status: RecordStatus = RecordStatus.PRESENT,
        method: RecordMethod = RecordMethod.QR,
        recorded_at: datetime | None = None,
        location: GeoPoint | None = None,
    ) -> AttendanceRecord:
        obj = AttendanceRecord(attendance_id=session_id, student_id=student_id, status=status, method=method)
        if recorded_at is not None:
            obj.recorded_at = recorded_at
        if location is not None:
            obj.location_lat, obj.location_long = location
        try:
            async with self._session_maker() as db:
                db.add(obj)
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    raise AlreadyRecorded() from e
                await db.refresh(obj)
                return obj
        except SQLAlchemyError as e:
            raise PersistenceFailure() from e
