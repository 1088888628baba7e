"""Webhook signature verification using HMAC-SHA256.

The Pix provider signs the exact raw request body with a pre-shared secret
and sends the hex digest in a header (optionally prefixed with ``sha256=``).

Security considerations:
- The digest is computed over the raw bytes, never over re-serialized JSON
- Comparison is constant-time on the decoded digests
- Every failure path returns False (fail closed)
"""

import hashlib
import hmac
import re

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_PREFIX = "sha256="

HEX_DIGEST_PATTERN = re.compile(r"[0-9a-fA-F]{64}")


class SignatureGuard:
    """Verifies that a notification was produced by the trusted notifier."""

    def __init__(self, secret: str | bytes):
        """
        Initialize the guard with the shared secret.

        Args:
            secret: Pre-shared webhook secret
        """
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret

    def sign(self, raw_body: bytes) -> str:
        """Compute the hex HMAC-SHA256 digest of a raw body."""
        return hmac.new(self._secret, raw_body, hashlib.sha256).hexdigest()

    def verify(self, raw_body: bytes, presented_signature: str | None) -> bool:
        """
        Verify a presented signature against the raw body.

        Args:
            raw_body: Exact bytes of the request body
            presented_signature: Hex digest from the signature header

        Returns:
            True only if the signature matches; False on any error
        """
        if not raw_body or not presented_signature:
            logger.warning("signature_missing", has_body=bool(raw_body))
            return False

        if not self._secret:
            logger.error("signature_secret_not_configured")
            return False

        try:
            candidate = presented_signature.strip()
            if candidate.lower().startswith(SIGNATURE_PREFIX):
                candidate = candidate[len(SIGNATURE_PREFIX):]

            if not HEX_DIGEST_PATTERN.fullmatch(candidate):
                logger.warning("signature_malformed", presented_length=len(candidate))
                return False

            presented = bytes.fromhex(candidate)
            expected = hmac.new(self._secret, raw_body, hashlib.sha256).digest()

            if not hmac.compare_digest(presented, expected):
                logger.warning("signature_mismatch")
                return False

            return True
        except (ValueError, TypeError) as e:
            logger.warning("signature_decode_failed", error=str(e))
            return False
