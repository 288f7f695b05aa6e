from __future__ import annotations
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/auth/jwks")
os.environ.setdefault("ENABLE_NATS", "false")

import uuid
from datetime import date

import httpx
import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from qr_attendance.core.config import get_settings
from qr_attendance.core.errors import AlreadyRecorded, PersistenceFailure
from qr_attendance.models import AttendanceRecord, AttendanceSession, Base, SessionMode
from qr_attendance.services.generator import TokenGenerator
from qr_attendance.services.rotation import TokenRotator
from qr_attendance.services.store import SessionStore
from qr_attendance.services.verifier import AttendanceVerifier


class FakeClock:
    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeStore:
    """In-memory stand-in for SessionStore, keyed by plain string ids."""

    def __init__(self):
        self.sessions: dict[str, AttendanceSession] = {}
        self.records: dict[tuple[str, str], AttendanceRecord] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.token_writes = 0
        self.inserts = 0

    def add_session(self, sid: str, **kw) -> AttendanceSession:
        kw.setdefault("is_open", True)
        kw.setdefault("mode", SessionMode.QR_CODE)
        s = AttendanceSession(id=sid, class_id=uuid.uuid4(), date=date(2026, 10, 19), **kw)
        self.sessions[sid] = s
        return s

    async def read_session(self, session_id):
        if self.fail_reads:
            raise PersistenceFailure()
        return self.sessions.get(str(session_id))

    async def update_active_token(self, session_id, token):
        if self.fail_writes:
            raise PersistenceFailure()
        s = self.sessions.get(str(session_id))
        if s is None:
            return False
        s.active_token = token
        self.token_writes += 1
        return True

    async def find_record(self, session_id, student_id):
        return self.records.get((str(session_id), str(student_id)))

    async def create_record(self, session_id, student_id, *, status, method, recorded_at=None, location=None):
        key = (str(session_id), str(student_id))
        if key in self.records:
            raise AlreadyRecorded()
        rec = AttendanceRecord(
            id=uuid.uuid4(), attendance_id=session_id, student_id=student_id,
            status=status, method=method, recorded_at=recorded_at,
            location_lat=location.latitude if location else None,
            location_long=location.longitude if location else None,
        )
        self.records[key] = rec
        self.inserts += 1
        return rec


class BrokenSession:
    """AsyncSession look-alike whose every database call fails as if the server were gone."""

    def __init__(self):
        self.rolled_back = False

    @staticmethod
    def _down():
        return OperationalError("SELECT 1", {}, ConnectionRefusedError("database is down"))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, *args, **kwargs):
        raise self._down()

    def add(self, obj):
        pass

    async def flush(self):
        raise self._down()

    async def commit(self):
        raise self._down()

    async def rollback(self):
        self.rolled_back = True


class ClaimsHolder:
    def __init__(self):
        self.claims: dict = {}

    def as_teacher(self, sub: uuid.UUID | None = None) -> uuid.UUID:
        sub = sub or uuid.uuid4()
        self.claims = {"sub": str(sub), "role": "teacher"}
        return sub

    def as_student(self, sub: uuid.UUID | None = None) -> uuid.UUID:
        sub = sub or uuid.uuid4()
        self.claims = {"sub": str(sub), "role": "student"}
        return sub


@pytest.fixture
def settings():
    return get_settings()

@pytest.fixture
def clock():
    return FakeClock(1_760_000_000_000)

@pytest.fixture
def fake_store():
    return FakeStore()

@pytest.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'attendance.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()

@pytest.fixture
def store(session_maker):
    return SessionStore(session_maker)

@pytest.fixture
def scheduler():
    # never started: jobs stay pending, tests drive ticks by hand
    return AsyncIOScheduler()

@pytest.fixture
def broken_session_maker():
    return BrokenSession

@pytest.fixture
def claims():
    return ClaimsHolder()

@pytest.fixture
async def client(session_maker, store, scheduler, clock, settings, claims):
    from qr_attendance.deps import get_claims, get_db
    from qr_attendance.main import app

    async def _db():
        async with session_maker() as s:
            yield s

    app.state.rotator = TokenRotator(TokenGenerator(store, clock=clock, settings=settings), scheduler)
    app.state.verifier = AttendanceVerifier(store, clock=clock, settings=settings)
    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_claims] = lambda: claims.claims

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.state.rotator.stop_all()
    app.dependency_overrides.clear()
