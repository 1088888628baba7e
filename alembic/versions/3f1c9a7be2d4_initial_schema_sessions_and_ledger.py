"""Initial schema with verification_sessions, processed_payments and used_identity_hashes

Revision ID: 3f1c9a7be2d4
Revises:
Create Date: 2026-10-18 09:12:31.408211

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7be2d4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create verification_sessions table
    op.create_table(
        'verification_sessions',
        sa.Column('reference_code', sa.String(length=32), nullable=False, comment='Lowercase code in format word-xxxx'),
        sa.Column('wallet_address', sa.String(length=42), nullable=False, comment='Lowercase 0x wallet address'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False, comment='Session creation timestamp'),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False, comment='Session expiration timestamp'),
        sa.PrimaryKeyConstraint('reference_code')
    )
    op.create_index('idx_sessions_expires_at', 'verification_sessions', ['expires_at'])
    op.create_index(op.f('ix_verification_sessions_wallet_address'), 'verification_sessions', ['wallet_address'])

    # Create processed_payments table (idempotency guard)
    op.create_table(
        'processed_payments',
        sa.Column('payment_id', sa.String(length=128), nullable=False, comment='Pix end-to-end id'),
        sa.Column('wallet_address', sa.String(length=42), nullable=True, comment='Wallet the payment was attributed to'),
        sa.Column('identity_hash', sa.String(length=64), nullable=True, comment='Identity hash claimed by this payment, if any'),
        sa.Column('outcome', sa.String(length=32), nullable=False, comment='recorded, duplicate_identity or already_verified'),
        sa.Column('transaction_hash', sa.String(length=66), nullable=True, comment='Mint transaction hash (0x hex)'),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False, comment='When the payment was recorded'),
        sa.PrimaryKeyConstraint('payment_id')
    )

    # Create used_identity_hashes table (one identity, one credential)
    op.create_table(
        'used_identity_hashes',
        sa.Column('identity_hash', sa.String(length=64), nullable=False, comment='SHA-256 or HMAC-SHA256 hex of the CPF'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False, comment='When the identity was claimed'),
        sa.PrimaryKeyConstraint('identity_hash')
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('used_identity_hashes')
    op.drop_table('processed_payments')
    op.drop_index(op.f('ix_verification_sessions_wallet_address'), table_name='verification_sessions')
    op.drop_index('idx_sessions_expires_at', table_name='verification_sessions')
    op.drop_table('verification_sessions')
