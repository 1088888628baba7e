"""Uniqueness ledger repository interface.

Two durable sets guard the pipeline: processed payment ids (idempotency) and
used identity hashes (one identity, one credential). The database's unique
constraints are the concurrency guard; implementations must not check before
inserting inside commit().
"""

from abc import ABC, abstractmethod


class PaymentOutcome:
    """Outcome stored with a processed payment."""

    RECORDED = "recorded"
    DUPLICATE_IDENTITY = "duplicate_identity"
    ALREADY_VERIFIED = "already_verified"


class IUniquenessLedger(ABC):
    """Abstract repository for the processed-payment and used-identity sets."""

    @abstractmethod
    def is_payment_processed(self, payment_id: str) -> bool:
        """Whether a payment id has a processed record."""
        pass

    @abstractmethod
    def is_identity_used(self, identity_hash: str) -> bool:
        """Whether an identity hash has a used record."""
        pass

    @abstractmethod
    def commit(
        self,
        identity_hash: str | None,
        payment_id: str,
        wallet_address: str | None = None,
        outcome: str = PaymentOutcome.RECORDED,
        transaction_hash: str | None = None,
    ) -> None:
        """Atomically record the identity hash (if given) and the payment id.

        Either both rows are written and committed, or neither is.

        Args:
            identity_hash: Hash to mark used, or None to record only the payment
            payment_id: Provider payment id to mark processed
            wallet_address: Wallet the payment was attributed to
            outcome: PaymentOutcome stored with the payment
            transaction_hash: Mint transaction reference, if any

        Raises:
            StorageConflict: If either unique constraint fired; nothing is written
        """
        pass

    @abstractmethod
    def count_used_identities(self) -> int:
        """Number of identity hashes recorded locally."""
        pass
