from __future__ import annotations
from datetime import date as calendar_date, datetime
from typing import Annotated, Literal
from uuid import UUID
from pydantic import BaseModel, Field, model_validator

from .core.geo import GeoPoint

Latitude = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]

# -------- Sessions --------
class SessionOpen(BaseModel):
    class_id: UUID
    date: calendar_date | None = None  # defaults to today (UTC)
    mode: Literal["manual", "qr_code"] = "qr_code"
    location_lat: Latitude | None = None
    location_long: Longitude | None = None
    radius_meters: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _geofence_complete(self):
        parts = (self.location_lat, self.location_long, self.radius_meters)
        if any(p is not None for p in parts) and not all(p is not None for p in parts):
            raise ValueError("geofence needs location_lat, location_long and radius_meters together")
        return self

class SessionRead(BaseModel):
    id: UUID
    class_id: UUID
    date: calendar_date
    is_open: bool
    mode: str
    location_lat: float | None = None
    location_long: float | None = None
    radius_meters: float | None = None
    rotating: bool = False

# -------- Token display --------
class TokenDisplay(BaseModel):
    session_id: str
    token: str
    issued_at: int  # ms since epoch
    expires_at: int  # ms since epoch
    seconds_left: int  # cosmetic countdown
    persisted: bool  # False: token shown but not saved, scans of it will fail

# -------- Check-ins --------
class ScanRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    latitude: Latitude | None = None
    longitude: Longitude | None = None

    @model_validator(mode="after")
    def _both_or_neither(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be sent together")
        return self

    def location(self) -> GeoPoint | None:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(self.latitude, self.longitude)

class StatusMark(BaseModel):
    status: Literal["present", "excused", "sick", "absent"]

class RecordRead(BaseModel):
    id: UUID
    attendance_id: UUID
    student_id: UUID
    status: str
    method: str
    recorded_at: datetime
    location_lat: float | None = None
    location_long: float | None = None

class SessionSummary(BaseModel):
    present: int = 0
    excused: int = 0
    sick: int = 0
    absent: int = 0
