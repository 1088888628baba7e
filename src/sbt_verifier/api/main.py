"""FastAPI application entry point for the SBT Verifier."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from sbt_verifier.api.routes import health, session, verify, webhook
from sbt_verifier.config import settings
from sbt_verifier.infrastructure.blockchain import Web3CredentialIssuer
from sbt_verifier.infrastructure.database import dispose_engine, get_engine
from sbt_verifier.logging_config import configure_logging

# Configure logging at module level
configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager.

    Handles startup and shutdown:
    - Verify database connectivity
    - Create the credential issuer (one per process)
    - Close issuer and database connections on shutdown
    """
    logger.info("starting_sbt_verifier", environment=settings.environment)

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("database_connection_verified")
    except Exception as e:
        logger.error("failed_to_initialize_database", error=str(e))
        raise

    chain = settings.chain
    if chain.contract_address and chain.minter_private_key:
        app.state.issuer = Web3CredentialIssuer.from_settings(chain)
    else:
        # Session and health endpoints still work; issuer-backed ones answer 503
        logger.warning("credential_issuer_disabled", reason="chain settings missing")
        app.state.issuer = None

    if not settings.webhook.secret:
        logger.warning("webhook_secret_missing", effect="every notification will be rejected")

    logger.info("sbt_verifier_started", network=chain.network_name)

    yield

    logger.info("shutting_down_sbt_verifier")

    if app.state.issuer is not None:
        await app.state.issuer.close()

    dispose_engine()

    logger.info("sbt_verifier_shutdown_complete")


app = FastAPI(
    title="SBT Verifier",
    description="Pix-verified identity credentials minted as soulbound tokens",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    """Bind a request id into the log context for the duration of the request."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("request_id")

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(session.router)
app.include_router(webhook.router)
app.include_router(verify.router)
app.include_router(health.router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "SBT Verifier",
        "version": "0.1.0",
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sbt_verifier.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
