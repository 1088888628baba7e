"""POST /session endpoint implementation."""

import asyncio

import structlog
from fastapi import APIRouter, HTTPException, status

from sbt_verifier.api.dependencies import OptionalIssuer, SessionSvc
from sbt_verifier.api.models import CreateSessionRequest, CreateSessionResponse
from sbt_verifier.domain.exceptions import IssuerFailure, ReferenceCodeExhausted

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["session"])


@router.post(
    "/session",
    response_model=CreateSessionResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(
    request: CreateSessionRequest,
    sessions: SessionSvc,
    issuer: OptionalIssuer,
) -> CreateSessionResponse:
    """
    Start a verification session for a wallet.

    The returned reference code must be sent in the Pix payer message
    before the session expires. Without a configured issuer the
    already-verified check is skipped.

    Raises:
        HTTPException: 400 if the wallet already holds a credential,
            503 if the ledger is unreachable or no free reference code
            could be allocated
    """
    wallet = request.wallet_address

    if issuer is None:
        logger.warning("already_verified_check_skipped", wallet_address=wallet)
    else:
        try:
            already_verified = await issuer.is_verified(wallet)
        except IssuerFailure as e:
            logger.error("already_verified_check_failed", wallet_address=wallet, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Failed to check verification status",
            ) from e

        if already_verified:
            logger.info("session_rejected_already_verified", wallet_address=wallet)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Wallet already holds a credential",
            )

    try:
        session = await asyncio.to_thread(sessions.create_session, wallet)
    except ReferenceCodeExhausted as e:
        logger.error("reference_code_exhausted", wallet_address=wallet)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        ) from e

    return CreateSessionResponse(
        reference_code=session.reference_code,
        expires_at=session.expires_at,
    )
