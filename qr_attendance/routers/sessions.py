from __future__ import annotations
import uuid
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import AttendanceError
from ..core.qr import render_png
from ..deps import get_db, get_claims, require_teacher, get_rotator
from ..models import AttendanceRecord, AttendanceSession, RecordStatus, SessionMode
from ..schemas import SessionOpen, SessionRead, TokenDisplay, StatusMark, RecordRead, SessionSummary
from ..services import sessions as svc
from ..services.rotation import RotationState, TokenRotator

router = APIRouter(prefix="/attendance/sessions", tags=["sessions"])

def _session_read(row: AttendanceSession, rotator: TokenRotator) -> SessionRead:
    return SessionRead(
        id=row.id, class_id=row.class_id, date=row.date, is_open=row.is_open, mode=row.mode.value,
        location_lat=row.location_lat, location_long=row.location_long, radius_meters=row.radius_meters,
        rotating=rotator.is_running(row.id),
    )

def record_read(r: AttendanceRecord) -> RecordRead:
    return RecordRead(
        id=r.id, attendance_id=r.attendance_id, student_id=r.student_id,
        status=r.status.value, method=r.method.value, recorded_at=r.recorded_at,
        location_lat=r.location_lat, location_long=r.location_long,
    )

def http_error(e: AttendanceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())

def _display(state: RotationState | None) -> TokenDisplay:
    if state is None or state.issue is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No rotating code for this session")
    i = state.issue
    return TokenDisplay(
        session_id=i.session_id, token=i.token, issued_at=i.issued_at_ms, expires_at=i.expires_at_ms,
        seconds_left=state.seconds_left, persisted=i.persisted,
    )

async def _existing_row(db: AsyncSession, session_id: uuid.UUID) -> AttendanceSession:
    row = await svc.get_session_row(db, session_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return row

async def _qr_row(db: AsyncSession, session_id: uuid.UUID) -> AttendanceSession:
    row = await _existing_row(db, session_id)
    if not row.is_open:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session is closed")
    if row.mode != SessionMode.QR_CODE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session does not use QR check-in")
    return row

# --- 1) Teacher opens (or reopens) today's session for a class
@router.post("", response_model=SessionRead, status_code=201)
async def open_session(
    payload: SessionOpen,
    claims: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
    rotator: TokenRotator = Depends(get_rotator),
):
    try:
        row = await svc.open_session(
            db,
            class_id=payload.class_id,
            on_date=payload.date or datetime.now(timezone.utc).date(),
            mode=SessionMode(payload.mode),
            location_lat=payload.location_lat,
            location_long=payload.location_long,
            radius_meters=payload.radius_meters,
        )
    except AttendanceError as e:
        raise http_error(e)
    # switching a session to manual ends its rotating code
    if row.mode != SessionMode.QR_CODE:
        rotator.stop(row.id)
    return _session_read(row, rotator)

@router.get("/{session_id}", response_model=SessionRead)
async def get_session(
    session_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    rotator: TokenRotator = Depends(get_rotator),
):
    return _session_read(await _existing_row(db, session_id), rotator)

@router.post("/{session_id}/close", response_model=SessionRead)
async def close_session(
    session_id: uuid.UUID,
    claims: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
    rotator: TokenRotator = Depends(get_rotator),
):
    rotator.stop(session_id)
    try:
        row = await svc.close_session(db, session_id)
    except AttendanceError as e:
        raise http_error(e)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return _session_read(row, rotator)

# --- 2) Rotating QR code: start / forced refresh / stop
@router.post("/{session_id}/qr/start", response_model=TokenDisplay, status_code=201)
async def start_qr(
    session_id: uuid.UUID,
    claims: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
    rotator: TokenRotator = Depends(get_rotator),
):
    await _qr_row(db, session_id)
    return _display(await rotator.start(session_id))

@router.post("/{session_id}/qr/refresh", response_model=TokenDisplay)
async def refresh_qr(
    session_id: uuid.UUID,
    claims: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
    rotator: TokenRotator = Depends(get_rotator),
):
    await _qr_row(db, session_id)
    return _display(await rotator.refresh(session_id))

@router.post("/{session_id}/qr/stop", status_code=204)
async def stop_qr(
    session_id: uuid.UUID,
    claims: dict = Depends(require_teacher),
    rotator: TokenRotator = Depends(get_rotator),
):
    rotator.stop(session_id)
    return Response(status_code=204)

# --- 3) Display surfaces poll the current code
@router.get("/{session_id}/qr", response_model=TokenDisplay)
async def current_qr(
    session_id: uuid.UUID,
    claims: dict = Depends(require_teacher),
    rotator: TokenRotator = Depends(get_rotator),
):
    return _display(rotator.current(session_id))

@router.get("/{session_id}/qr.png")
async def current_qr_png(
    session_id: uuid.UUID,
    claims: dict = Depends(require_teacher),
    rotator: TokenRotator = Depends(get_rotator),
):
    shown = _display(rotator.current(session_id))
    return Response(
        content=render_png(shown.token),
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )

# --- 4) Manual marking, rejecting a check-in, roster and summary
@router.put("/{session_id}/records/{student_id}", response_model=RecordRead)
async def mark_student(
    session_id: uuid.UUID,
    student_id: uuid.UUID,
    payload: StatusMark,
    claims: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    await _existing_row(db, session_id)
    try:
        rec = await svc.mark_status(db, session_id=session_id, student_id=student_id, status=RecordStatus(payload.status))
    except AttendanceError as e:
        raise http_error(e)
    return record_read(rec)

@router.delete("/{session_id}/records/{student_id}", status_code=204)
async def reject_student(
    session_id: uuid.UUID,
    student_id: uuid.UUID,
    claims: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    await _existing_row(db, session_id)
    try:
        deleted = await svc.reject_record(db, session_id=session_id, student_id=student_id)
    except AttendanceError as e:
        raise http_error(e)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No attendance record for this student")
    return Response(status_code=204)

@router.get("/{session_id}/records", response_model=list[RecordRead])
async def roster(session_id: uuid.UUID, claims: dict = Depends(require_teacher), db: AsyncSession = Depends(get_db)):
    await _existing_row(db, session_id)
    return [record_read(r) for r in await svc.list_records(db, session_id)]

@router.get("/{session_id}/summary", response_model=SessionSummary)
async def summary(session_id: uuid.UUID, claims: dict = Depends(require_teacher), db: AsyncSession = Depends(get_db)):
    await _existing_row(db, session_id)
    return SessionSummary(**await svc.summarize(db, session_id))
