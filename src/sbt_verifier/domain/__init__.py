"""SBT verifier domain layer.

This package contains the verification pipeline, its collaborators'
interfaces, and the pure validation and hashing helpers they share.
"""

from sbt_verifier.domain.exceptions import (
    AttributionFailure,
    AuthenticationFailure,
    DuplicateIdentity,
    DuplicatePayment,
    IssuerFailure,
    ReferenceCodeExhausted,
    StorageConflict,
    ValidationFailure,
    VerificationError,
    WalletAlreadyVerified,
)
from sbt_verifier.domain.identity import IdentityHasher, hash_identity, is_valid_cpf, mask_cpf
from sbt_verifier.domain.issuer import CredentialIssuer, MintReceipt
from sbt_verifier.domain.ledger import IUniquenessLedger, PaymentOutcome
from sbt_verifier.domain.notification import NotificationPolicy, PixNotification
from sbt_verifier.domain.pipeline import Outcome, PipelineResult, VerificationPipeline
from sbt_verifier.domain.session import ISessionRepository, SessionService, VerificationSession
from sbt_verifier.domain.signature import SignatureGuard

__all__ = [
    # Pipeline
    "VerificationPipeline",
    "PipelineResult",
    "Outcome",
    # Collaborators
    "SignatureGuard",
    "SessionService",
    "VerificationSession",
    "NotificationPolicy",
    "PixNotification",
    "IdentityHasher",
    "hash_identity",
    "is_valid_cpf",
    "mask_cpf",
    # Interfaces
    "CredentialIssuer",
    "MintReceipt",
    "ISessionRepository",
    "IUniquenessLedger",
    "PaymentOutcome",
    # Exceptions
    "VerificationError",
    "AuthenticationFailure",
    "ValidationFailure",
    "AttributionFailure",
    "DuplicatePayment",
    "DuplicateIdentity",
    "IssuerFailure",
    "StorageConflict",
    "ReferenceCodeExhausted",
    "WalletAlreadyVerified",
]
