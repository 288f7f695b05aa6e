from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)
_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception:
        logger.warning("NATS drain failed", exc_info=True)

async def _publish(subject: str, evt: dict):
    if not _settings.enable_nats:
        return
    await nats_connect()
    await _nats.publish(subject, json.dumps(evt).encode("utf-8"))

async def publish_token(evt: dict):
    """
    evt = {
      "session_id": str,
      "token": str,
      "issued_at": int ms,
      "expires_at": int ms,
      "persisted": bool
    }
    """
    await _publish(_settings.nats_subject_tokens, evt)

async def publish_recorded(evt: dict):
    """
    evt = {
      "session_id": str,
      "student_id": str,
      "status": "present",
      "recorded_at": iso8601,
      "idempotency_key": "session_id:student_id"
    }
    """
    await _publish(_settings.nats_subject_recorded, evt)
