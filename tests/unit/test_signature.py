"""Unit tests for webhook signature verification."""

import hashlib
import hmac

import pytest

from sbt_verifier.domain.signature import SignatureGuard

SECRET = "shared-secret"
BODY = b'{"endToEndId":"E2E001","valor":"0.01"}'


@pytest.fixture
def guard():
    return SignatureGuard(SECRET)


def expected_signature(body: bytes = BODY, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestVerify:
    """Tests for SignatureGuard.verify."""

    def test_accepts_matching_signature(self, guard):
        assert guard.verify(BODY, expected_signature()) is True

    def test_accepts_uppercase_hex(self, guard):
        assert guard.verify(BODY, expected_signature().upper()) is True

    def test_accepts_sha256_prefix(self, guard):
        assert guard.verify(BODY, f"sha256={expected_signature()}") is True

    def test_rejects_signature_from_different_secret(self, guard):
        """A byte-for-byte correct payload signed with another secret is rejected."""
        assert guard.verify(BODY, expected_signature(secret="other-secret")) is False

    def test_rejects_tampered_body(self, guard):
        signature = expected_signature()
        assert guard.verify(BODY + b" ", signature) is False

    @pytest.mark.parametrize("signature", [None, "", "   "])
    def test_rejects_missing_signature(self, guard, signature):
        assert guard.verify(BODY, signature) is False

    def test_rejects_empty_body(self, guard):
        assert guard.verify(b"", expected_signature(b"")) is False

    def test_rejects_non_hex_signature(self, guard):
        assert guard.verify(BODY, "not-a-hex-signature") is False

    def test_rejects_truncated_signature(self, guard):
        assert guard.verify(BODY, expected_signature()[:32]) is False

    def test_rejects_embedded_whitespace(self, guard):
        digest = expected_signature()
        spaced = " ".join(digest[i:i + 2] for i in range(0, len(digest), 2))

        assert guard.verify(BODY, spaced) is False

    def test_rejects_whitespace_after_prefix(self, guard):
        assert guard.verify(BODY, f"sha256= {expected_signature()}") is False

    def test_fails_closed_without_secret(self):
        guard = SignatureGuard("")
        signature = hmac.new(b"", BODY, hashlib.sha256).hexdigest()

        assert guard.verify(BODY, signature) is False


def test_sign_matches_hmac_sha256(guard):
    assert guard.sign(BODY) == expected_signature()


def test_accepts_bytes_secret():
    guard = SignatureGuard(SECRET.encode())
    assert guard.verify(BODY, expected_signature()) is True
