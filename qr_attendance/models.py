from __future__ import annotations
import uuid
from datetime import date as calendar_date, datetime, timezone
from enum import Enum
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Boolean, Enum as SqlEnum, Float, ForeignKey, UniqueConstraint
from sqlalchemy.types import Date, DateTime, String

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

class SessionMode(str, Enum):
    MANUAL = "manual"
    QR_CODE = "qr_code"

class RecordStatus(str, Enum):
    PRESENT = "present"
    EXCUSED = "excused"
    SICK = "sick"
    ABSENT = "absent"

class RecordMethod(str, Enum):
    QR = "qr"
    MANUAL = "manual"

# One attendance-taking window per class per day
class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    date: Mapped[calendar_date] = mapped_column(Date, nullable=False)
    is_open: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mode: Mapped[SessionMode] = mapped_column(SqlEnum(SessionMode), default=SessionMode.MANUAL, nullable=False)
    # written only by the token generator; overwritten on every rotation
    active_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_long: Mapped[float | None] = mapped_column(Float, nullable=True)
    radius_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("class_id", "date", name="uq_attendance_session_class_date"),
    )

    @property
    def has_geofence(self) -> bool:
        return self.location_lat is not None and self.location_long is not None and self.radius_meters is not None

class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    attendance_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("attendance_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[RecordStatus] = mapped_column(SqlEnum(RecordStatus), default=RecordStatus.PRESENT, nullable=False)
    method: Mapped[RecordMethod] = mapped_column(SqlEnum(RecordMethod), default=RecordMethod.QR, nullable=False)
    # device position at scan time, when the student sent one
    location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_long: Mapped[float | None] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("attendance_id", "student_id", name="uq_record_per_student_per_session"),
    )
