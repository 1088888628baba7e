"""Exceptions for the verification pipeline."""


class VerificationError(Exception):
    """Base exception for verification-related errors."""

    pass


class AuthenticationFailure(VerificationError):
    """
    Raised when a notification signature is missing or does not match.

    TERMINAL. No side effects have happened; the notifier must fix the
    signature before redelivering.
    """

    pass


class ValidationFailure(VerificationError):
    """
    Raised when a payload is malformed or fails amount/currency/status/CPF checks.

    TERMINAL. Raised before any store access.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class AttributionFailure(VerificationError):
    """
    Raised when no unexpired session matches the payment's reference code.

    TERMINAL for this delivery, but the payment is NOT marked processed.
    """

    pass


class DuplicatePayment(VerificationError):
    """
    Raised when a payment id has already been processed. Safe no-op.

    Attributes:
        concurrent: True when another run recorded the payment while this one was in flight
    """

    def __init__(self, message: str, concurrent: bool = False):
        super().__init__(message)
        self.concurrent = concurrent


class DuplicateIdentity(VerificationError):
    """
    Raised when the identity hash already has a credential.

    TERMINAL. The payment id is marked processed so redeliveries stop early.

    Attributes:
        concurrent: True when another run claimed the identity while this one was in flight
    """

    def __init__(self, message: str, concurrent: bool = False):
        super().__init__(message)
        self.concurrent = concurrent


class WalletAlreadyVerified(VerificationError):
    """
    Raised when the attributed wallet already holds a credential on chain.

    TERMINAL. The payment id is marked processed; no second mint is attempted.
    """

    pass


class IssuerFailure(VerificationError):
    """
    Raised when any call to the external ledger fails.

    RETRYABLE. The payment id is explicitly NOT marked processed, so a
    redelivery of the same notification can re-attempt the mint.

    Examples:
    - RPC node unreachable or timing out
    - Gas estimation reverted (contract rejected the mint)
    - Minter wallet underfunded
    - Receipt reported a reverted transaction
    """

    pass


class StorageConflict(VerificationError):
    """
    Raised when a uniqueness ledger commit hits a unique constraint.

    Attributes:
        constraint: "payment" or "identity", naming the constraint that fired
    """

    PAYMENT = "payment"
    IDENTITY = "identity"

    def __init__(self, constraint: str, message: str | None = None):
        super().__init__(message or f"Unique constraint violated: {constraint}")
        self.constraint = constraint


class ReferenceCodeExhausted(VerificationError):
    """Raised when no free reference code was found after all attempts."""

    pass
