from __future__ import annotations
from io import BytesIO
from typing import NamedTuple
import secrets
import string
import time

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from .config import get_settings
from .errors import MalformedToken

settings = get_settings()

NONCE_LEN = 6
NONCE_ALPHABET = string.ascii_lowercase + string.digits

def now_ms() -> int:
    return time.time_ns() // 1_000_000

class ParsedToken(NamedTuple):
    marker: str
    session_id: str
    issued_at_ms: int
    nonce: str

def new_nonce() -> str:
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(NONCE_LEN))

def build_token(session_id: str, issued_at_ms: int, nonce: str | None = None, *, marker: str | None = None) -> str:
    # ATTEND:<session id>:<ms since epoch>:<6 char nonce>
    return f"{marker or settings.token_marker}:{session_id}:{issued_at_ms}:{nonce or new_nonce()}"

def parse_token(raw: str, *, marker: str | None = None) -> ParsedToken:
    expected = marker or settings.token_marker
    if not isinstance(raw, str) or not raw.isascii():
        raise MalformedToken()
    parts = raw.strip().split(":")
    if len(parts) != 4:
        raise MalformedToken()
    mk, session_id, ts, nonce = parts
    if mk != expected or not session_id:
        raise MalformedToken()
    if not (ts.isascii() and ts.isdigit()):
        raise MalformedToken()
    if len(nonce) != NONCE_LEN or not nonce.isalnum() or not nonce.isascii():
        raise MalformedToken()
    return ParsedToken(mk, session_id, int(ts), nonce)

def render_png(token: str, *, box_size: int = 10, border: int = 4) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=box_size, border=border)
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    b = BytesIO(); img.save(b, format="PNG")
    return b.getvalue()
