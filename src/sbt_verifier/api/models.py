"""Pydantic models for JSON API requests/responses.

Field names follow the camelCase contract the frontend and the Pix
provider already speak; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sbt_verifier.domain.session import normalize_wallet_address


class CamelModel(BaseModel):
    """Base model serializing to camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


class CreateSessionRequest(CamelModel):
    """Request to bind a new reference code to a wallet."""

    wallet_address: str = Field(..., alias="walletAddress", description="0x-prefixed wallet address")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {"walletAddress": "0x000000000000000000000000000000000000aBcD"}
        },
    )

    @field_validator("wallet_address")
    @classmethod
    def validate_wallet_address(cls, v: str) -> str:
        return normalize_wallet_address(v)


class CreateSessionResponse(CamelModel):
    """Reference code the payer must put in the Pix message."""

    reference_code: str = Field(..., alias="referenceCode", description="Code in format word-xxxx")
    expires_at: datetime = Field(..., alias="expiresAt", description="Session expiration (UTC)")


class WebhookAckResponse(CamelModel):
    """Acknowledgement returned to the Pix provider."""

    status: str = Field(..., description="received or received_with_internal_error")
    outcome: str = Field(..., description="Pipeline outcome name")
    message: Optional[str] = Field(None, description="Human-readable outcome")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")


class WebhookTestResponse(CamelModel):
    """Sample notification, its signature and the handler's answer."""

    test_payload: dict[str, Any] = Field(..., alias="testPayload")
    signature: str
    status_code: int = Field(..., alias="statusCode")
    response: dict[str, Any]


class VerificationStatusResponse(CamelModel):
    """On-chain verification status of a wallet."""

    address: str
    is_verified: bool = Field(..., alias="isVerified")
    token_id: Optional[int] = Field(None, alias="tokenId")


class VerificationStatsResponse(CamelModel):
    """Aggregate verification statistics."""

    total_verified_identities: int = Field(..., alias="totalVerifiedIdentities")
    local_verified_identities: int = Field(
        ..., alias="localVerifiedIdentities", description="Identity hashes in the local ledger"
    )
    contract_address: str = Field(..., alias="contractAddress")
    network: str


class PaymentStatusResponse(CamelModel):
    """Polling view of a wallet's verification progress."""

    status: str = Field(..., description="completed or pending")
    is_verified: bool = Field(..., alias="isVerified")
    token_id: Optional[int] = Field(None, alias="tokenId")
    message: str
