"""Repository layer for verification sessions and the uniqueness ledger.

This module provides the SQLAlchemy implementations of the domain
repository interfaces. Unique constraints in the database are the final
arbiter for reference codes, payment ids and identity hashes; violations
are translated into StorageConflict after rolling back.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sbt_verifier.domain.exceptions import StorageConflict
from sbt_verifier.domain.ledger import IUniquenessLedger, PaymentOutcome
from sbt_verifier.domain.session import ISessionRepository
from sbt_verifier.domain.session import VerificationSession
from sbt_verifier.infrastructure.models import (
    ProcessedPayment,
    UsedIdentityHash,
    VerificationSession as VerificationSessionModel,
)

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; every stored timestamp is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionRepository(ISessionRepository):
    """Repository for verification session persistence."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy database session
        """
        self.session = session

    def create(self, verification_session: VerificationSession) -> None:
        """Insert and commit a new session.

        Raises:
            StorageConflict: If the reference code is already taken
        """
        model = VerificationSessionModel(
            reference_code=verification_session.reference_code,
            wallet_address=verification_session.wallet_address,
            expires_at=verification_session.expires_at,
            created_at=verification_session.created_at or datetime.now(timezone.utc),
        )

        self.session.add(model)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise StorageConflict(
                "reference_code",
                f"Reference code already exists: {verification_session.reference_code}",
            ) from e

    def find_valid(self, reference_code: str, now: datetime) -> Optional[VerificationSession]:
        """Return the session for a reference code if it has not expired."""
        model = (
            self.session.query(VerificationSessionModel)
            .filter(
                VerificationSessionModel.reference_code == reference_code,
                VerificationSessionModel.expires_at > now,
            )
            .first()
        )

        if not model:
            return None

        return VerificationSession(
            reference_code=model.reference_code,
            wallet_address=model.wallet_address,
            expires_at=_as_utc(model.expires_at),
            created_at=_as_utc(model.created_at),
        )


class UniquenessLedgerRepository(IUniquenessLedger):
    """Repository for processed payment ids and used identity hashes."""

    def __init__(self, session: Session):
        self.session = session

    def is_payment_processed(self, payment_id: str) -> bool:
        return self.session.get(ProcessedPayment, payment_id) is not None

    def is_identity_used(self, identity_hash: str) -> bool:
        return self.session.get(UsedIdentityHash, identity_hash) is not None

    def commit(
        self,
        identity_hash: str | None,
        payment_id: str,
        wallet_address: str | None = None,
        outcome: str = PaymentOutcome.RECORDED,
        transaction_hash: str | None = None,
    ) -> None:
        """Write the identity hash (if given) and the payment id in one transaction.

        Inserts without checking first; the primary keys reject duplicates.

        Raises:
            StorageConflict: Naming the constraint that fired. Nothing is written.
        """
        now = datetime.now(timezone.utc)

        if identity_hash is not None:
            self.session.add(UsedIdentityHash(identity_hash=identity_hash, created_at=now))

        self.session.add(
            ProcessedPayment(
                payment_id=payment_id,
                wallet_address=wallet_address,
                identity_hash=identity_hash,
                outcome=outcome,
                transaction_hash=transaction_hash,
                processed_at=now,
            )
        )

        try:
            self.session.flush()
            self.session.commit()
        except IntegrityError as e:
            # Race condition: another run committed first
            self.session.rollback()

            if self.is_payment_processed(payment_id) or identity_hash is None:
                constraint = StorageConflict.PAYMENT
            else:
                constraint = StorageConflict.IDENTITY

            logger.warning(
                "ledger_commit_conflict",
                payment_id=payment_id,
                constraint=constraint,
            )
            raise StorageConflict(constraint) from e

        logger.debug("ledger_committed", payment_id=payment_id, outcome=outcome)

    def count_used_identities(self) -> int:
        return self.session.query(func.count(UsedIdentityHash.identity_hash)).scalar() or 0

    def get_processed_payment(self, payment_id: str) -> Optional[ProcessedPayment]:
        """Fetch the stored record for a payment id, for operators and tests."""
        return self.session.get(ProcessedPayment, payment_id)
