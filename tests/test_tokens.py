"""
tests/test_tokens.py -- Unit tests for auth/tokens (access token codec) and
auth/entropy (refresh token generator).

Coverage:
  - issue/validate round trip carries user_id and email
  - exact time boundaries: valid iff nbf <= now < exp
  - negative TTL yields an already-expired token
  - tampered signature, wrong secret, alg "none" and alg substitution
  - garbage input and malformed claims all raise the same InvalidToken
  - generate_token length, alphabet, uniqueness, minimum size
"""

from __future__ import annotations

import base64
import json
import re
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.entropy import REFRESH_TOKEN_BYTES, generate_token, new_family_id
from auth.errors import InvalidToken
from auth.tokens import ALGORITHM, issue_access_token, validate_access_token

SECRET = "codec-secret-0123456789-abcdefghijklmno"
NOW = datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
TTL = timedelta(minutes=5)


def _b64(segment: dict) -> str:
    raw = json.dumps(segment, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class TestAccessTokenRoundTrip:
    def test_claims_survive_round_trip(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        claims = validate_access_token(token, SECRET, now=NOW)
        assert claims.user_id == 1
        assert claims.email == "a@x.com"
        assert claims.issued_at == NOW
        assert claims.not_before == NOW
        assert claims.expires_at == NOW + TTL

    def test_header_pins_hs256(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        assert jwt.get_unverified_header(token)["alg"] == ALGORITHM == "HS256"

    def test_empty_secret_refused_at_issue(self) -> None:
        with pytest.raises(ValueError):
            issue_access_token(1, "a@x.com", "", TTL, now=NOW)


class TestAccessTokenTimeBoundaries:
    def test_valid_one_second_before_expiry(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        validate_access_token(token, SECRET, now=NOW + TTL - timedelta(seconds=1))

    def test_invalid_exactly_at_expiry(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        with pytest.raises(InvalidToken):
            validate_access_token(token, SECRET, now=NOW + TTL)

    def test_invalid_before_not_before(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        with pytest.raises(InvalidToken):
            validate_access_token(token, SECRET, now=NOW - timedelta(seconds=1))

    def test_negative_ttl_is_already_expired(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, timedelta(seconds=-1), now=NOW)
        with pytest.raises(InvalidToken):
            validate_access_token(token, SECRET, now=NOW)


class TestAccessTokenForgery:
    def test_tampered_signature_rejected(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        header, payload, signature = token.split(".")
        # Flip a middle character; the last one may only carry padding bits
        mid = len(signature) // 2
        flipped = "A" if signature[mid] != "A" else "B"
        forged = ".".join([header, payload, signature[:mid] + flipped + signature[mid + 1 :]])
        with pytest.raises(InvalidToken):
            validate_access_token(forged, SECRET, now=NOW)

    def test_tampered_payload_rejected(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        header, _payload, signature = token.split(".")
        forged_payload = _b64({"user_id": 2, "email": "b@x.com", "iat": 0, "nbf": 0, "exp": 9999999999})
        with pytest.raises(InvalidToken):
            validate_access_token(f"{header}.{forged_payload}.{signature}", SECRET, now=NOW)

    def test_wrong_secret_rejected(self) -> None:
        token = issue_access_token(1, "a@x.com", SECRET, TTL, now=NOW)
        with pytest.raises(InvalidToken):
            validate_access_token(token, "another-secret-0123456789-abcdefghijk", now=NOW)

    def test_alg_none_rejected(self) -> None:
        stamp = int(NOW.timestamp())
        payload = {"user_id": 1, "email": "a@x.com", "iat": stamp, "nbf": stamp, "exp": stamp + 300}
        unsigned = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(payload)}."
        with pytest.raises(InvalidToken):
            validate_access_token(unsigned, SECRET, now=NOW)

    def test_other_hmac_alg_rejected(self) -> None:
        """A correctly signed HS512 token is still refused: the algorithm is pinned."""
        stamp = int(NOW.timestamp())
        payload = {"user_id": 1, "email": "a@x.com", "iat": stamp, "nbf": stamp, "exp": stamp + 300}
        token = jwt.encode(payload, SECRET, algorithm="HS512")
        with pytest.raises(InvalidToken):
            validate_access_token(token, SECRET, now=NOW)

    def test_missing_user_id_rejected(self) -> None:
        stamp = int(NOW.timestamp())
        token = jwt.encode({"email": "a@x.com", "iat": stamp, "nbf": stamp, "exp": stamp + 300}, SECRET)
        with pytest.raises(InvalidToken):
            validate_access_token(token, SECRET, now=NOW)

    def test_boolean_user_id_rejected(self) -> None:
        stamp = int(NOW.timestamp())
        payload = {"user_id": True, "email": "a@x.com", "iat": stamp, "nbf": stamp, "exp": stamp + 300}
        with pytest.raises(InvalidToken):
            validate_access_token(jwt.encode(payload, SECRET), SECRET, now=NOW)

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "...."])
    def test_garbage_rejected(self, garbage: str) -> None:
        with pytest.raises(InvalidToken):
            validate_access_token(garbage, SECRET, now=NOW)

    def test_failures_share_one_message(self) -> None:
        """Expired and forged tokens are indistinguishable to the caller."""
        expired = issue_access_token(1, "a@x.com", SECRET, timedelta(seconds=-1), now=NOW)
        messages = set()
        for bad in (expired, "not-a-jwt"):
            with pytest.raises(InvalidToken) as exc_info:
                validate_access_token(bad, SECRET, now=NOW)
            messages.add(str(exc_info.value))
        assert len(messages) == 1


class TestGenerateToken:
    def test_default_length_is_44_chars(self) -> None:
        token = generate_token()
        assert len(token) == 44
        assert len(base64.urlsafe_b64decode(token)) == REFRESH_TOKEN_BYTES

    def test_url_safe_alphabet(self) -> None:
        for _ in range(50):
            assert re.fullmatch(r"[A-Za-z0-9_\-]+=*", generate_token())

    def test_tokens_are_unique(self) -> None:
        assert len({generate_token() for _ in range(500)}) == 500

    def test_short_length_refused(self) -> None:
        with pytest.raises(ValueError):
            generate_token(8)

    def test_family_ids_are_unique_hex(self) -> None:
        first, second = new_family_id(), new_family_id()
        assert first != second
        assert re.fullmatch(r"[0-9a-f]{32}", first)
