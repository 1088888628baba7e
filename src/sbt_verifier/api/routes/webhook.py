"""POST /webhook/pix endpoint implementation."""

import json
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from sbt_verifier.api.dependencies import Guard, Ledger, OptionalIssuer, SessionSvc, build_pipeline
from sbt_verifier.api.models import WebhookAckResponse, WebhookTestResponse
from sbt_verifier.config import settings
from sbt_verifier.domain.issuer import CredentialIssuer
from sbt_verifier.domain.ledger import IUniquenessLedger
from sbt_verifier.domain.pipeline import Outcome
from sbt_verifier.domain.session import SessionService
from sbt_verifier.domain.signature import SignatureGuard

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["webhook"])

# Valid check digits; overridable per request
TEST_PAYER_CPF = "52998224725"


async def _handle_notification(
    raw_body: bytes,
    signature: str | None,
    guard: SignatureGuard,
    sessions: SessionService,
    ledger: IUniquenessLedger,
    issuer: CredentialIssuer | None,
) -> JSONResponse:
    # Authentication precedes the issuer check
    if not guard.verify(raw_body, signature):
        logger.warning("pix_notification_rejected_auth")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Invalid signature"},
        )

    if issuer is None:
        logger.error("credential_issuer_not_configured")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Credential issuer not configured"},
        )

    pipeline = build_pipeline(guard, sessions, ledger, issuer)
    result = await pipeline.process(raw_body, signature)

    if result.outcome == Outcome.REJECTED_AUTH:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Invalid signature"},
        )

    if result.outcome == Outcome.REJECTED_INVALID:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": result.message, "details": result.errors},
        )

    logger.info(
        "pix_notification_handled",
        payment_id=result.payment_id,
        outcome=result.outcome.value,
        concurrent=result.concurrent,
    )

    ack = WebhookAckResponse(
        status="received_with_internal_error" if result.is_internal_failure else "received",
        outcome=result.outcome.value,
        message=result.message,
        transaction_hash=result.transaction_hash,
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=ack.model_dump(by_alias=True))


@router.post("/webhook/pix")
async def receive_pix_notification(
    request: Request,
    guard: Guard,
    sessions: SessionSvc,
    ledger: Ledger,
    issuer: OptionalIssuer,
) -> JSONResponse:
    """
    Receive a Pix payment notification.

    The raw body is read before any parsing so the HMAC covers the exact
    bytes the provider signed. Rejections of the sender (bad signature,
    bad payload) are answered with 4xx; every other outcome is
    acknowledged with 200 so the provider stops retrying.
    """
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook.signature_header)

    return await _handle_notification(raw_body, signature, guard, sessions, ledger, issuer)


@router.post("/webhook/pix/test", response_model=WebhookTestResponse, response_model_by_alias=True)
async def send_test_notification(
    request: Request,
    guard: Guard,
    sessions: SessionSvc,
    ledger: Ledger,
    issuer: OptionalIssuer,
) -> WebhookTestResponse:
    """
    Sign a sample notification and run it through the webhook handler.

    Only available in debug mode. Top-level fields of the JSON request
    body (e.g. ``infoPagador`` with a reference code) override the sample.

    Raises:
        HTTPException: 404 outside debug mode, 400 for a non-object body
    """
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    body = await request.body()
    try:
        overrides = json.loads(body) if body else {}
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be JSON") from e
    if not isinstance(overrides, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")

    now = datetime.now(timezone.utc)
    test_payload = {
        "endToEndId": f"test_{int(now.timestamp() * 1000)}",
        "valor": str(settings.webhook.expected_amount),
        "moeda": settings.webhook.currency,
        "status": "completed",
        "pagador": {"cpf": TEST_PAYER_CPF, "nome": "Test User"},
        "infoPagador": "",
        **overrides,
    }
    raw_body = json.dumps(test_payload).encode("utf-8")
    signature = guard.sign(raw_body)

    logger.info("pix_test_notification_sent", payment_id=test_payload["endToEndId"])
    response = await _handle_notification(raw_body, signature, guard, sessions, ledger, issuer)

    return WebhookTestResponse(
        test_payload=test_payload,
        signature=signature,
        status_code=response.status_code,
        response=json.loads(response.body),
    )
