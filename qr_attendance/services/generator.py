from __future__ import annotations
import logging
import uuid
from typing import Callable, NamedTuple

from ..core.config import Settings, get_settings
from ..core.errors import PersistenceFailure
from ..core.qr import build_token, now_ms
from .store import SessionStore

logger = logging.getLogger(__name__)

class TokenIssue(NamedTuple):
    session_id: str
    token: str
    issued_at_ms: int
    expires_at_ms: int
    # False: shown on screen but not the session's active token, scans will fail
    persisted: bool

class TokenGenerator:
    def __init__(self, store: SessionStore, *, clock: Callable[[], int] = now_ms, settings: Settings | None = None):
        self._store = store
        self._clock = clock
        self._settings = settings or get_settings()

    async def generate(self, session_id: uuid.UUID | str) -> TokenIssue:
        """
        Build a fresh token for the session and make it the session's active token.

        A failed write does not raise: the token is still returned for display
        with ``persisted=False`` and the failure is logged.
        """
        sid = str(session_id)
        issued_at = self._clock()
        token = build_token(sid, issued_at, marker=self._settings.token_marker)

        persisted = False
        try:
            persisted = await self._store.update_active_token(sid, token)
        except PersistenceFailure:
            logger.error("Failed to persist attendance token for session %s", sid, exc_info=True)
        else:
            if not persisted:
                logger.warning("Attendance session %s not found; displayed token cannot be verified", sid)

        return TokenIssue(
            session_id=sid,
            token=token,
            issued_at_ms=issued_at,
            expires_at_ms=issued_at + self._settings.token_ttl_ms,
            persisted=persisted,
        )
