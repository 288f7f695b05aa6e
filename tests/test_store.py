from __future__ import annotations
import asyncio
import uuid
from datetime import date

import pytest

from qr_attendance.core.errors import AlreadyRecorded, PersistenceFailure
from qr_attendance.core.geo import GeoPoint
from qr_attendance.core.qr import build_token
from qr_attendance.models import AttendanceRecord, AttendanceSession, RecordMethod, RecordStatus, SessionMode
from qr_attendance.services.generator import TokenGenerator
from qr_attendance.services.store import SessionStore
from qr_attendance.services.verifier import AttendanceVerifier


async def make_session(session_maker, **kw) -> AttendanceSession:
    kw.setdefault("is_open", True)
    kw.setdefault("mode", SessionMode.QR_CODE)
    async with session_maker() as db:
        row = AttendanceSession(class_id=uuid.uuid4(), date=date(2026, 10, 19), **kw)
        db.add(row)
        await db.commit()
        await db.refresh(row)
        return row


async def test_update_active_token_overwrites(store, session_maker):
    row = await make_session(session_maker)
    assert await store.update_active_token(row.id, "ATTEND:x:1:aaaaaa") is True
    assert await store.update_active_token(str(row.id), "ATTEND:x:2:bbbbbb") is True
    fresh = await store.read_session(row.id)
    assert fresh.active_token == "ATTEND:x:2:bbbbbb"

async def test_update_unknown_session(store):
    assert await store.update_active_token(uuid.uuid4(), "t") is False
    assert await store.update_active_token("S1", "t") is False

async def test_read_session_with_non_uuid_id(store):
    assert await store.read_session("S1") is None

async def test_unique_constraint_is_the_authoritative_guard(store, session_maker):
    row = await make_session(session_maker)
    student = uuid.uuid4()
    rec = await store.create_record(row.id, student)
    assert rec.status == RecordStatus.PRESENT
    assert rec.method == RecordMethod.QR
    with pytest.raises(AlreadyRecorded):
        await store.create_record(row.id, student)
    assert (await store.find_record(row.id, student)).id == rec.id

async def test_generated_token_verifies_against_database(store, session_maker, clock, settings):
    row = await make_session(session_maker)
    issue = await TokenGenerator(store, clock=clock, settings=settings).generate(row.id)
    assert issue.persisted

    clock.advance(12_000)
    rec = await AttendanceVerifier(store, clock=clock, settings=settings).verify(issue.token, uuid.uuid4())
    assert rec.attendance_id == row.id

async def test_racing_scans_produce_one_record(store, session_maker, clock, settings):
    row = await make_session(session_maker)
    token = build_token(str(row.id), clock.now)
    await store.update_active_token(row.id, token)
    verifier = AttendanceVerifier(store, clock=clock, settings=settings)
    student = uuid.uuid4()

    results = await asyncio.gather(*(verifier.verify(token, student) for _ in range(4)), return_exceptions=True)

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert all(isinstance(r, AlreadyRecorded) for r in results if isinstance(r, Exception))

def test_record_uniqueness_has_no_duplicate_index():
    pair = {"attendance_id", "student_id"}
    assert not [ix for ix in AttendanceRecord.__table__.indexes if {c.name for c in ix.columns} == pair]

async def test_scan_location_is_stored_with_the_record(store, session_maker):
    row = await make_session(session_maker)
    student = uuid.uuid4()
    await store.create_record(row.id, student, location=GeoPoint(-6.2001, 106.8002))
    rec = await store.find_record(row.id, student)
    assert rec.location_lat == pytest.approx(-6.2001)
    assert rec.location_long == pytest.approx(106.8002)


class TestDatabaseDown:
    @pytest.fixture
    def down(self, broken_session_maker):
        return SessionStore(broken_session_maker)

    async def test_read_session(self, down):
        with pytest.raises(PersistenceFailure):
            await down.read_session(uuid.uuid4())

    async def test_update_active_token(self, down):
        with pytest.raises(PersistenceFailure):
            await down.update_active_token(uuid.uuid4(), "ATTEND:x:1:aaaaaa")

    async def test_find_record(self, down):
        with pytest.raises(PersistenceFailure):
            await down.find_record(uuid.uuid4(), uuid.uuid4())

    async def test_create_record_is_not_mistaken_for_a_duplicate(self, down):
        with pytest.raises(PersistenceFailure) as exc:
            await down.create_record(uuid.uuid4(), uuid.uuid4())
        assert not isinstance(exc.value, AlreadyRecorded)
        assert exc.value.action == "retry_later"

    async def test_generator_reports_unpersisted_token(self, down, clock, settings):
        issue = await TokenGenerator(down, clock=clock, settings=settings).generate(uuid.uuid4())
        assert issue.persisted is False
