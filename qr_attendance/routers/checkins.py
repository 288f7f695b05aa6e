from __future__ import annotations
import logging
import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import AttendanceError
from ..core.nats import publish_recorded
from ..deps import get_db, require_student, get_verifier
from ..schemas import ScanRequest, RecordRead
from ..services import sessions as svc
from ..services.verifier import AttendanceVerifier
from .sessions import http_error, record_read

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/attendance", tags=["checkin"])

# --- Student scans the rotating code; location only matters for geofenced sessions
@router.post("/scan", response_model=RecordRead, status_code=201)
async def scan_and_checkin(
    payload: ScanRequest,
    claims: dict = Depends(require_student),
    verifier: AttendanceVerifier = Depends(get_verifier),
):
    student_id = uuid.UUID(claims["sub"])
    try:
        rec = await verifier.verify(payload.token, student_id, payload.location())
    except AttendanceError as e:
        raise http_error(e)

    # realtime "someone checked in" for the teacher's screen; never fails the scan
    try:
        await publish_recorded({
            "session_id": str(rec.attendance_id),
            "student_id": str(student_id),
            "status": rec.status.value,
            "recorded_at": rec.recorded_at.isoformat(),
            "idempotency_key": f"{rec.attendance_id}:{student_id}",
        })
    except Exception:
        logger.warning("Check-in event publish failed for session %s", rec.attendance_id, exc_info=True)

    return record_read(rec)

# --- Student attendance history
@router.get("/users/me", response_model=list[RecordRead])
async def my_attendance(claims: dict = Depends(require_student), db: AsyncSession = Depends(get_db)):
    uid = uuid.UUID(claims["sub"])
    return [record_read(r) for r in await svc.list_for_student(db, uid)]
