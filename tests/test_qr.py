from __future__ import annotations
import re

import pytest

from qr_attendance.core.errors import MalformedToken
from qr_attendance.core.qr import NONCE_ALPHABET, build_token, new_nonce, parse_token, render_png


def test_token_layout_is_bit_exact():
    assert build_token("S1", 0, "abc123") == "ATTEND:S1:0:abc123"

def test_generated_nonce_is_six_alphanumerics():
    for _ in range(50):
        n = new_nonce()
        assert len(n) == 6
        assert set(n) <= set(NONCE_ALPHABET)

def test_build_without_nonce_draws_a_fresh_one():
    tok = build_token("7f0e", 1_760_000_000_123)
    assert re.fullmatch(r"ATTEND:7f0e:1760000000123:[a-z0-9]{6}", tok)

def test_parse_scenario_token():
    p = parse_token("ATTEND:S1:0:abc123")
    assert p.marker == "ATTEND"
    assert p.session_id == "S1"
    assert p.issued_at_ms == 0
    assert p.nonce == "abc123"

def test_parse_tolerates_surrounding_whitespace_from_scanners():
    assert parse_token("  ATTEND:S1:5:abc123\n").issued_at_ms == 5

@pytest.mark.parametrize("raw", [
    "garbage",
    "",
    "ATTEND:S1:0",                 # missing nonce
    "ATTEND:S1:0:abc123:extra",    # too many parts
    "PRESENT:S1:0:abc123",         # wrong marker
    "attend:S1:0:abc123",          # marker is case sensitive
    "ATTEND::0:abc123",            # empty session id
    "ATTEND:S1:-5:abc123",         # signed timestamp
    "ATTEND:S1:12a:abc123",        # non numeric timestamp
    "ATTEND:S1:0:abc12",           # short nonce
    "ATTEND:S1:0:abc-12",          # non alphanumeric nonce
    "ATTEND:S1:²:abc123",     # unicode digit
    "https://example.com/?t=ATTEND:S1:0:abc123",
])
def test_malformed_tokens_are_rejected(raw):
    with pytest.raises(MalformedToken):
        parse_token(raw)

def test_custom_marker():
    tok = build_token("S1", 10, "zzzzzz", marker="HADIR")
    assert parse_token(tok, marker="HADIR").session_id == "S1"
    with pytest.raises(MalformedToken):
        parse_token(tok)

def test_render_png_produces_png_bytes():
    data = render_png("ATTEND:S1:0:abc123")
    assert data.startswith(b"\x89PNG\r\n\x1a\n")
