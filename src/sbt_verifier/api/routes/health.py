"""Health check endpoints."""

import asyncio
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from sbt_verifier.api.dependencies import DBSession, OptionalIssuer
from sbt_verifier.config import settings
from sbt_verifier.domain.exceptions import IssuerFailure

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

# Environment variable name -> current value
REQUIRED_SETTINGS = {
    "CHAIN__RPC_URL": lambda: settings.chain.rpc_url,
    "CHAIN__CONTRACT_ADDRESS": lambda: settings.chain.contract_address,
    "CHAIN__MINTER_PRIVATE_KEY": lambda: settings.chain.minter_private_key,
    "WEBHOOK__SECRET": lambda: settings.webhook.secret,
}


def _ping_database(db) -> str | None:
    """Return None when the database answers, else the error text."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("health_check_database_failed", error=str(e))
        return str(e)
    return None


@router.get("")
def health_check(db: DBSession) -> JSONResponse:
    """Health check endpoint.

    Returns:
        200 OK if the database is reachable
        503 Service Unavailable otherwise
    """
    error = _ping_database(db)
    content = {
        "status": "healthy" if error is None else "unhealthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if error is not None:
        content["error"] = error
        return JSONResponse(status_code=503, content=content)
    return JSONResponse(status_code=200, content=content)


@router.get("/ready")
def readiness_check(db: DBSession) -> JSONResponse:
    """Ready when the database answers and the chain settings are present."""
    checks = {
        "database": _ping_database(db) is None,
        "chain": bool(settings.chain.contract_address and settings.chain.minter_private_key),
        "webhook_secret": bool(settings.webhook.secret),
    }
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )


@router.get("/detailed")
async def detailed_health_check(db: DBSession, issuer: OptionalIssuer) -> JSONResponse:
    """Dependency report for operators.

    Status is "degraded" when the chain cannot be read and "unhealthy"
    (503) when the database is down or required settings are missing.
    """
    health_status = "healthy"
    checks = {}

    db_error = await asyncio.to_thread(_ping_database, db)
    if db_error is None:
        checks["database"] = {"status": "healthy"}
    else:
        checks["database"] = {"status": "unhealthy", "error": db_error}

    if issuer is None:
        checks["chain"] = {"status": "unhealthy", "error": "Credential issuer not configured"}
        health_status = "degraded"
    else:
        try:
            total = await issuer.total_supply()
            checks["chain"] = {
                "status": "healthy",
                "totalVerifiedIdentities": total,
                "contractAddress": settings.chain.contract_address,
                "network": settings.chain.network_name,
            }
        except IssuerFailure as e:
            logger.error("health_check_chain_failed", error=str(e))
            checks["chain"] = {"status": "unhealthy", "error": str(e)}
            health_status = "degraded"

    missing = [name for name, value in REQUIRED_SETTINGS.items() if not value()]
    if missing:
        checks["environment"] = {"status": "unhealthy", "missingVariables": missing}
    else:
        checks["environment"] = {"status": "healthy"}

    if db_error is not None or missing:
        health_status = "unhealthy"

    return JSONResponse(
        status_code=503 if health_status == "unhealthy" else 200,
        content={
            "status": health_status,
            "service": settings.service_name,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        },
    )


@router.get("/live")
def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
