"""Verification sessions: reference code to wallet bindings.

This module defines the session entity, the repository interface the domain
depends on, and the service that creates sessions with fresh reference codes.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from sbt_verifier.domain.exceptions import ReferenceCodeExhausted, StorageConflict
from sbt_verifier.domain.reference_code import generate_reference_code

logger = structlog.get_logger(__name__)

WALLET_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def normalize_wallet_address(address: str) -> str:
    """Validate and lowercase a 0x-prefixed 20-byte address.

    Raises:
        ValueError: If the address is not 42 characters of 0x + hex
    """
    if not address or not WALLET_ADDRESS_PATTERN.match(address):
        raise ValueError("walletAddress must be 0x followed by 40 hex characters")
    return address.lower()


@dataclass(frozen=True)
class VerificationSession:
    """A short-lived binding between a reference code and a wallet."""

    reference_code: str
    wallet_address: str
    expires_at: datetime
    created_at: datetime | None = None


class ISessionRepository(ABC):
    """Abstract repository for verification session persistence."""

    @abstractmethod
    def create(self, session: VerificationSession) -> None:
        """Persist a new session.

        Raises:
            StorageConflict: If the reference code already exists
        """
        pass

    @abstractmethod
    def find_valid(self, reference_code: str, now: datetime) -> Optional[VerificationSession]:
        """Return the session if its expires_at is strictly after now."""
        pass


class SessionService:
    """Creates verification sessions and resolves reference codes."""

    def __init__(
        self,
        repository: ISessionRepository,
        ttl_minutes: int = 15,
        max_code_attempts: int = 5,
        code_generator: Callable[[], str] = generate_reference_code,
    ):
        self.repository = repository
        self.ttl = timedelta(minutes=ttl_minutes)
        self.max_code_attempts = max_code_attempts
        self.code_generator = code_generator

    def create_session(self, wallet_address: str) -> VerificationSession:
        """Create a session for a wallet with a fresh reference code.

        Reference codes are unique across every stored session, expired or
        not. A collision regenerates the code up to max_code_attempts times.

        Args:
            wallet_address: 0x-prefixed wallet address

        Returns:
            The persisted VerificationSession

        Raises:
            ValueError: If the wallet address is malformed
            ReferenceCodeExhausted: If every generated code collided
        """
        wallet = normalize_wallet_address(wallet_address)

        for attempt in range(1, self.max_code_attempts + 1):
            now = datetime.now(timezone.utc)
            session = VerificationSession(
                reference_code=self.code_generator(),
                wallet_address=wallet,
                expires_at=now + self.ttl,
                created_at=now,
            )
            try:
                self.repository.create(session)
            except StorageConflict:
                logger.warning(
                    "reference_code_collision",
                    reference_code=session.reference_code,
                    attempt=attempt,
                )
                continue

            logger.info(
                "verification_session_created",
                reference_code=session.reference_code,
                wallet_address=wallet,
                expires_at=session.expires_at.isoformat(),
            )
            return session

        raise ReferenceCodeExhausted(
            f"Could not allocate a reference code after {self.max_code_attempts} attempts"
        )

    def find_valid_session(self, reference_code: str) -> Optional[VerificationSession]:
        """Resolve a reference code to an unexpired session."""
        return self.repository.find_valid(reference_code.lower(), datetime.now(timezone.utc))
