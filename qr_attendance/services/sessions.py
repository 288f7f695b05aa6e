from __future__ import annotations
import logging
import uuid
from datetime import date
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import PersistenceFailure
from ..models import AttendanceRecord, AttendanceSession, RecordMethod, RecordStatus, SessionMode, utcnow

logger = logging.getLogger(__name__)

async def get_session_row(db: AsyncSession, session_id: uuid.UUID) -> AttendanceSession | None:
    return (await db.execute(
        select(AttendanceSession).where(AttendanceSession.id == session_id)
    )).scalar_one_or_none()

async def _day_row(db: AsyncSession, class_id: uuid.UUID, on_date: date) -> AttendanceSession | None:
    return (await db.execute(
        select(AttendanceSession).where(AttendanceSession.class_id == class_id, AttendanceSession.date == on_date)
    )).scalar_one_or_none()

async def _record_row(db: AsyncSession, session_id: uuid.UUID, student_id: uuid.UUID) -> AttendanceRecord | None:
    return (await db.execute(
        select(AttendanceRecord).where(
            AttendanceRecord.attendance_id == session_id, AttendanceRecord.student_id == student_id
        )
    )).scalar_one_or_none()

async def open_session(
    db: AsyncSession,
    *,
    class_id: uuid.UUID,
    on_date: date,
    mode: SessionMode = SessionMode.MANUAL,
    location_lat: float | None = None,
    location_long: float | None = None,
    radius_meters: float | None = None,
) -> AttendanceSession:
    """Open (or reopen) the class's session for the day; one row per class+date."""
    try:
        row = await _day_row(db, class_id, on_date)
        if row is None:
            db.add(AttendanceSession(class_id=class_id, date=on_date))
            try:
                await db.flush()
            except IntegrityError:
                # a concurrent open won the insert; update its row instead
                await db.rollback()
            row = await _day_row(db, class_id, on_date)
            if row is None:
                raise PersistenceFailure()

        row.is_open = True
        row.mode = mode
        row.location_lat = location_lat
        row.location_long = location_long
        row.radius_meters = radius_meters

        await db.commit()
        await db.refresh(row)
        return row
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceFailure() from e

async def close_session(db: AsyncSession, session_id: uuid.UUID) -> AttendanceSession | None:
    try:
        row = await get_session_row(db, session_id)
        if row is None:
            return None
        row.is_open = False
        await db.commit()
        await db.refresh(row)
        return row
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceFailure() from e

async def mark_status(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    student_id: uuid.UUID,
    status: RecordStatus,
) -> AttendanceRecord:
    # teacher override: replaces whatever the student's scan recorded
    try:
        rec = await _record_row(db, session_id, student_id)
        if rec is None:
            db.add(AttendanceRecord(
                attendance_id=session_id, student_id=student_id, status=status, method=RecordMethod.MANUAL
            ))
            try:
                await db.flush()
            except IntegrityError:
                # the student's scan (or another mark) landed first
                await db.rollback()
            rec = await _record_row(db, session_id, student_id)
            if rec is None:
                raise PersistenceFailure()

        rec.status = status
        rec.method = RecordMethod.MANUAL
        rec.recorded_at = utcnow()
        await db.commit()
        await db.refresh(rec)
        return rec
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceFailure() from e

async def reject_record(db: AsyncSession, *, session_id: uuid.UUID, student_id: uuid.UUID) -> bool:
    """Delete a student's record so they can check in again. False when there was none."""
    try:
        res = await db.execute(
            delete(AttendanceRecord).where(
                AttendanceRecord.attendance_id == session_id, AttendanceRecord.student_id == student_id
            )
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceFailure() from e
    if res.rowcount:
        logger.info("Attendance record rejected: session %s student %s", session_id, student_id)
    return res.rowcount > 0

async def summarize(db: AsyncSession, session_id: uuid.UUID) -> dict[str, int]:
    counts = {s.value: 0 for s in RecordStatus}
    rows = await db.execute(
        select(AttendanceRecord.status, func.count())
        .where(AttendanceRecord.attendance_id == session_id)
        .group_by(AttendanceRecord.status)
    )
    for status, n in rows.all():
        counts[RecordStatus(status).value] = int(n)
    return counts

async def list_records(db: AsyncSession, session_id: uuid.UUID) -> list[AttendanceRecord]:
    rows = await db.execute(
        select(AttendanceRecord).where(AttendanceRecord.attendance_id == session_id).order_by(AttendanceRecord.recorded_at.asc())
    )
    return list(rows.scalars().all())

async def list_for_student(db: AsyncSession, student_id: uuid.UUID) -> list[AttendanceRecord]:
    rows = await db.execute(
        select(AttendanceRecord).where(AttendanceRecord.student_id == student_id).order_by(AttendanceRecord.recorded_at.desc())
    )
    return list(rows.scalars().all())
