from __future__ import annotations
import asyncio
import logging
import uuid
from typing import Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .generator import TokenGenerator, TokenIssue

logger = logging.getLogger(__name__)

Publisher = Callable[[dict], Awaitable[None]]

class RotationState:
    """What a display surface needs: the current token and the cosmetic countdown."""

    def __init__(self, seconds_left: int):
        self.issue: TokenIssue | None = None
        self.seconds_left = seconds_left
        self.ready = asyncio.Event()

class TokenRotator:
    """
    One authoritative token generator per attendance session.

    ``start`` generates immediately, then a scheduler job regenerates every
    ``rotate_seconds``. A second job ticks the countdown every ``tick_seconds``;
    the countdown only drives the display, verification always reads the
    timestamp inside the token.
    """

    def __init__(
        self,
        generator: TokenGenerator,
        scheduler: AsyncIOScheduler,
        *,
        rotate_seconds: int = 30,
        tick_seconds: int = 1,
        publish: Publisher | None = None,
    ):
        self._generator = generator
        self._scheduler = scheduler
        self.rotate_seconds = rotate_seconds
        self.tick_seconds = tick_seconds
        self._publish = publish
        self._states: dict[str, RotationState] = {}

    @staticmethod
    def rotate_job_id(session_id: str) -> str:
        return f"rotate:{session_id}"

    @staticmethod
    def countdown_job_id(session_id: str) -> str:
        return f"countdown:{session_id}"

    def is_running(self, session_id: uuid.UUID | str) -> bool:
        return str(session_id) in self._states

    def current(self, session_id: uuid.UUID | str) -> RotationState | None:
        return self._states.get(str(session_id))

    async def start(self, session_id: uuid.UUID | str) -> RotationState:
        sid = str(session_id)
        existing = self._states.get(sid)
        if existing is not None:
            await existing.ready.wait()
            return existing

        state = RotationState(self.rotate_seconds)
        self._states[sid] = state
        try:
            issue = await self._generator.generate(sid)
        except BaseException:
            # release waiters and let the next start try again
            if self._states.get(sid) is state:
                del self._states[sid]
            state.ready.set()
            raise
        if self._states.get(sid) is not state:
            # stopped while the first write was in flight
            state.ready.set()
            return state
        self._install(state, issue)

        self._scheduler.add_job(
            self.rotate, "interval", seconds=self.rotate_seconds, args=[sid],
            id=self.rotate_job_id(sid), replace_existing=True, max_instances=1, coalesce=True,
        )
        self._scheduler.add_job(
            self.countdown, "interval", seconds=self.tick_seconds, args=[sid],
            id=self.countdown_job_id(sid), replace_existing=True, max_instances=1, coalesce=True,
        )
        logger.info("Started token rotation for session %s", sid)
        await self._announce(issue)
        return state

    async def refresh(self, session_id: uuid.UUID | str) -> RotationState | None:
        """Force a new token now and restart the rotation cadence from it."""
        sid = str(session_id)
        if sid not in self._states:
            return await self.start(sid)
        await self.rotate(sid)
        try:
            self._scheduler.reschedule_job(self.rotate_job_id(sid), trigger="interval", seconds=self.rotate_seconds)
        except JobLookupError:
            logger.warning("Rotation job for session %s vanished during refresh", sid)
        return self._states.get(sid)

    async def rotate(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        issue = await self._generator.generate(session_id)
        if self._states.get(session_id) is not state:
            return
        self._install(state, issue)
        await self._announce(issue)

    async def countdown(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        # holds at 0 until the next token resets it
        state.seconds_left = max(0, state.seconds_left - self.tick_seconds)

    def stop(self, session_id: uuid.UUID | str) -> bool:
        """Cancel both timers. The session keeps its last active token."""
        sid = str(session_id)
        state = self._states.pop(sid, None)
        for job_id in (self.rotate_job_id(sid), self.countdown_job_id(sid)):
            try:
                self._scheduler.remove_job(job_id)
            except JobLookupError:
                pass
        if state is not None:
            state.ready.set()
            logger.info("Stopped token rotation for session %s", sid)
        return state is not None

    def stop_all(self) -> None:
        for sid in list(self._states):
            self.stop(sid)

    def _install(self, state: RotationState, issue: TokenIssue) -> None:
        state.issue = issue
        state.seconds_left = self.rotate_seconds
        state.ready.set()

    async def _announce(self, issue: TokenIssue) -> None:
        if self._publish is None:
            return
        try:
            await self._publish({
                "session_id": issue.session_id,
                "token": issue.token,
                "issued_at": issue.issued_at_ms,
                "expires_at": issue.expires_at_ms,
                "persisted": issue.persisted,
            })
        except Exception:
            logger.warning("Token publish failed for session %s", issue.session_id, exc_info=True)
