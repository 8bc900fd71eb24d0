"""Session tokens: round trip, tampering, expiry, issuer/audience binding."""

import base64
import json

import pytest

from aftersales.auth.errors import InvalidSignature, InvalidToken, TokenExpired
from aftersales.auth.tokens import TokenService, TokenSubject

SECRET = "unit-test-secret-aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
OTHER_SECRET = "another-secret-bbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
NOW = 1_760_000_000
TTL = 3600
SUBJECT = TokenSubject(user_id="6f1c2b1e-0000-4000-8000-000000000001", email="a@b.c", role="manager")


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _service(clock=None, secret=SECRET, issuer="aftersales-api", audience="aftersales-frontend"):
    return TokenService(secret, issuer, audience, TTL, clock=clock or FakeClock(NOW))


def _bit_flips(segment: str):
    """Every variant of `segment` with one bit of one character flipped."""
    for i, ch in enumerate(segment):
        for bit in range(7):
            yield segment[:i] + chr(ord(ch) ^ (1 << bit)) + segment[i + 1:]


def _decode_segment(segment: str) -> dict:
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


class TestIssueAndVerify:
    def test_round_trip(self):
        service = _service()
        claims = service.verify(service.issue(SUBJECT))
        assert claims.user_id == SUBJECT.user_id
        assert claims.email == SUBJECT.email
        assert claims.role == SUBJECT.role
        assert claims.issued_at == NOW
        assert claims.expires_at == NOW + TTL
        assert claims.issuer == "aftersales-api"
        assert claims.audience == "aftersales-frontend"

    def test_wire_format(self):
        header, payload, signature = _service().issue(SUBJECT).split(".")
        assert _decode_segment(header) == {"alg": "HS256", "typ": "JWT"}
        assert set(_decode_segment(payload)) == {
            "user_id", "email", "role", "iat", "exp", "iss", "aud",
        }
        assert signature

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            TokenService("", "i", "a", TTL)


class TestRejections:
    def test_any_bit_flip_in_signature(self):
        service = _service()
        header, payload, signature = service.issue(SUBJECT).split(".")
        for forged_signature in _bit_flips(signature):
            with pytest.raises(InvalidSignature):
                service.verify(".".join([header, payload, forged_signature]))

    def test_any_bit_flip_in_payload(self):
        service = _service()
        header, payload, signature = service.issue(SUBJECT).split(".")
        for forged_payload in _bit_flips(payload):
            with pytest.raises(InvalidSignature):
                service.verify(".".join([header, forged_payload, signature]))

    def test_unused_trailing_bits_in_signature(self):
        # 32 signature bytes leave two unused bits in the last base64url character
        service = _service()
        header, payload, signature = service.issue(SUBJECT).split(".")
        alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
        last = alphabet.index(signature[-1])
        for padding in range(1, 4):
            forged = signature[:-1] + alphabet[last ^ padding]
            with pytest.raises(InvalidSignature):
                service.verify(".".join([header, payload, forged]))

    def test_foreign_secret(self):
        token = _service(secret=OTHER_SECRET).issue(SUBJECT)
        with pytest.raises(InvalidSignature):
            _service().verify(token)

    def test_wrong_audience(self):
        token = _service(audience="someone-else").issue(SUBJECT)
        with pytest.raises(InvalidToken):
            _service().verify(token)

    def test_wrong_issuer(self):
        token = _service(issuer="someone-else").issue(SUBJECT)
        with pytest.raises(InvalidToken):
            _service().verify(token)

    def test_garbage(self):
        with pytest.raises(InvalidToken):
            _service().verify("not-a-token")

    def test_unreadable_header(self):
        _, payload, signature = _service().issue(SUBJECT).split(".")
        with pytest.raises(InvalidToken):
            _service().verify(".".join(["bm90LWpzb24", payload, signature]))


class TestExpiry:
    def test_valid_until_exp(self):
        clock = FakeClock(NOW)
        service = _service(clock)
        token = service.issue(SUBJECT)
        clock.now = NOW + TTL
        assert service.verify(token).user_id == SUBJECT.user_id

    def test_expired_after_exp(self):
        clock = FakeClock(NOW)
        service = _service(clock)
        token = service.issue(SUBJECT)
        clock.now = NOW + TTL + 1
        with pytest.raises(TokenExpired):
            service.verify(token)

    def test_expiry_uses_injected_clock_not_wall_time(self):
        # NOW is in the past relative to the wall clock; the token is still valid
        service = _service(FakeClock(NOW))
        assert service.verify(service.issue(SUBJECT)).expires_at == NOW + TTL
