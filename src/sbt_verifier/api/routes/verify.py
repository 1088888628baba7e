"""GET /verify/status/{address}, /verify/payment-status/{address} and /verify/stats endpoints."""

import asyncio

import structlog
from fastapi import APIRouter, HTTPException, status

from sbt_verifier.api.dependencies import Issuer, Ledger
from sbt_verifier.api.models import (
    PaymentStatusResponse,
    VerificationStatsResponse,
    VerificationStatusResponse,
)
from sbt_verifier.config import settings
from sbt_verifier.domain.exceptions import IssuerFailure
from sbt_verifier.domain.issuer import CredentialIssuer
from sbt_verifier.domain.session import normalize_wallet_address

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/verify", tags=["verify"])


def _parse_address(address: str) -> str:
    try:
        return normalize_wallet_address(address)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


async def _read_credential(issuer: CredentialIssuer, wallet: str) -> tuple[bool, int | None]:
    """Return (is_verified, token_id) for a wallet, 503 if the ledger is unreachable."""
    try:
        is_verified = await issuer.is_verified(wallet)
        token_id = await issuer.get_token_id(wallet) if is_verified else None
    except IssuerFailure as e:
        logger.error("verification_status_failed", address=wallet, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to check verification status",
        ) from e
    return is_verified, token_id


@router.get(
    "/status/{address}",
    response_model=VerificationStatusResponse,
    response_model_by_alias=True,
)
async def get_verification_status(address: str, issuer: Issuer) -> VerificationStatusResponse:
    """
    Check whether a wallet holds an identity credential.

    Raises:
        HTTPException: 422 for a malformed address, 503 if the ledger is unreachable
    """
    wallet = _parse_address(address)
    is_verified, token_id = await _read_credential(issuer, wallet)

    return VerificationStatusResponse(address=wallet, is_verified=is_verified, token_id=token_id)


@router.get(
    "/payment-status/{address}",
    response_model=PaymentStatusResponse,
    response_model_by_alias=True,
)
async def get_payment_status(address: str, issuer: Issuer) -> PaymentStatusResponse:
    """Polled by the frontend after the payer has been shown a reference code."""
    wallet = _parse_address(address)
    is_verified, token_id = await _read_credential(issuer, wallet)

    if is_verified:
        return PaymentStatusResponse(
            status="completed",
            is_verified=True,
            token_id=token_id,
            message="Identity verification completed",
        )

    return PaymentStatusResponse(
        status="pending",
        is_verified=False,
        message="Waiting for Pix payment confirmation",
    )


@router.get("/stats", response_model=VerificationStatsResponse, response_model_by_alias=True)
async def get_verification_stats(issuer: Issuer, ledger: Ledger) -> VerificationStatsResponse:
    """Credentials issued by the contract next to identities recorded locally."""
    try:
        total = await issuer.total_supply()
    except IssuerFailure as e:
        logger.error("verification_stats_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to get verification stats",
        ) from e

    local_total = await asyncio.to_thread(ledger.count_used_identities)

    return VerificationStatsResponse(
        total_verified_identities=total,
        local_verified_identities=local_total,
        contract_address=settings.chain.contract_address,
        network=settings.chain.network_name,
    )
