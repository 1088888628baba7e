"""Infrastructure layer exports."""

from sbt_verifier.infrastructure.repository import (
    SessionRepository,
    UniquenessLedgerRepository,
)

__all__ = [
    "SessionRepository",
    "UniquenessLedgerRepository",
]
