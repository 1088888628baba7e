"""FastAPI dependencies for the SBT Verifier API.

This module provides reusable dependencies for the API routes including:
- Database session management
- Credential issuer injection (created once in the app lifespan)
- Signature guard, session service and verification pipeline wiring
"""

from typing import Annotated, Generator

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from sbt_verifier.config import settings
from sbt_verifier.domain.identity import IdentityHasher
from sbt_verifier.domain.issuer import CredentialIssuer
from sbt_verifier.domain.notification import NotificationPolicy
from sbt_verifier.domain.pipeline import VerificationPipeline
from sbt_verifier.domain.session import SessionService
from sbt_verifier.domain.signature import SignatureGuard
from sbt_verifier.infrastructure.database import get_db as _get_db
from sbt_verifier.infrastructure.repository import (
    SessionRepository,
    UniquenessLedgerRepository,
)

logger = structlog.get_logger(__name__)


# Database session dependency
def get_db() -> Generator[Session, None, None]:
    """Provide a database session scoped to the request."""
    yield from _get_db()


DBSession = Annotated[Session, Depends(get_db)]


def get_optional_issuer(request: Request) -> CredentialIssuer | None:
    """Provide the issuer created at startup, or None if chain settings were missing."""
    return getattr(request.app.state, "issuer", None)


OptionalIssuer = Annotated[CredentialIssuer | None, Depends(get_optional_issuer)]


def get_credential_issuer(issuer: OptionalIssuer) -> CredentialIssuer:
    """Provide the issuer, failing when it is not configured.

    Raises:
        HTTPException: 503 if the chain settings were missing at startup
    """
    if issuer is None:
        logger.error("credential_issuer_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credential issuer not configured",
        )
    return issuer


Issuer = Annotated[CredentialIssuer, Depends(get_credential_issuer)]


def get_session_service(db: DBSession) -> SessionService:
    return SessionService(
        SessionRepository(db),
        ttl_minutes=settings.session.ttl_minutes,
        max_code_attempts=settings.session.max_code_attempts,
    )


SessionSvc = Annotated[SessionService, Depends(get_session_service)]


def get_ledger(db: DBSession) -> UniquenessLedgerRepository:
    return UniquenessLedgerRepository(db)


Ledger = Annotated[UniquenessLedgerRepository, Depends(get_ledger)]


def get_signature_guard() -> SignatureGuard:
    return SignatureGuard(settings.webhook.secret)


Guard = Annotated[SignatureGuard, Depends(get_signature_guard)]


def build_pipeline(
    guard: SignatureGuard,
    sessions: SessionService,
    ledger: UniquenessLedgerRepository,
    issuer: CredentialIssuer,
) -> VerificationPipeline:
    """Wire a pipeline run from settings and request-scoped repositories."""
    webhook = settings.webhook
    return VerificationPipeline(
        guard=guard,
        sessions=sessions,
        ledger=ledger,
        issuer=issuer,
        policy=NotificationPolicy(
            expected_amount=webhook.expected_amount,
            currency=webhook.currency,
            accepted_statuses=frozenset(webhook.accepted_statuses),
        ),
        hasher=IdentityHasher(settings.identity_pepper),
        precheck_on_chain=settings.chain.precheck_on_chain,
    )
