"""SQLAlchemy ORM models for the SBT Verifier."""

from datetime import datetime

from sqlalchemy import TIMESTAMP, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from sbt_verifier.infrastructure.database import Base


class VerificationSession(Base):
    """
    Binding between a reference code and the wallet that requested it.

    Reference codes are unique across all rows, expired or not, so a code
    can never resolve to two wallets.
    """

    __tablename__ = "verification_sessions"

    reference_code: Mapped[str] = mapped_column(
        String(32), primary_key=True, comment="Lowercase code in format word-xxxx"
    )

    wallet_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True, comment="Lowercase 0x wallet address"
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Session creation timestamp",
    )

    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Session expiration timestamp"
    )

    __table_args__ = (Index("idx_sessions_expires_at", "expires_at"),)


class ProcessedPayment(Base):
    """
    Payment ids that reached a terminal ledger decision.

    The primary key is the idempotency guard: a second insert of the same
    end-to-end id fails at the database, whatever the caller checked first.
    """

    __tablename__ = "processed_payments"

    payment_id: Mapped[str] = mapped_column(
        String(128), primary_key=True, comment="Pix end-to-end id"
    )

    wallet_address: Mapped[str | None] = mapped_column(
        String(42), nullable=True, comment="Wallet the payment was attributed to"
    )

    identity_hash: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Identity hash claimed by this payment, if any"
    )

    outcome: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="recorded, duplicate_identity or already_verified"
    )

    transaction_hash: Mapped[str | None] = mapped_column(
        String(66), nullable=True, comment="Mint transaction hash (0x hex)"
    )

    processed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the payment was recorded",
    )


class UsedIdentityHash(Base):
    """
    Hashed identities that already own a credential.

    Only the hash is stored; the raw CPF never reaches the database.
    """

    __tablename__ = "used_identity_hashes"

    identity_hash: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="SHA-256 or HMAC-SHA256 hex of the CPF"
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the identity was claimed",
    )
