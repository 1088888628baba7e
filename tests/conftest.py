"""Pytest configuration and shared fixtures for all tests.

This module provides shared test fixtures including:
- In-memory SQLite database with the full schema
- Database session management
- A recording fake credential issuer
- A fully wired verification pipeline
"""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sbt_verifier.domain.identity import IdentityHasher
from sbt_verifier.domain.notification import NotificationPolicy
from sbt_verifier.domain.pipeline import VerificationPipeline
from sbt_verifier.domain.session import SessionService
from sbt_verifier.domain.signature import SignatureGuard
from sbt_verifier.infrastructure.database import drop_all_tables, init_db
from sbt_verifier.infrastructure.repository import SessionRepository, UniquenessLedgerRepository
from tests.helpers.fakes import TEST_WALLET, TEST_WEBHOOK_SECRET, FakeCredentialIssuer


@pytest.fixture
def db_engine():
    """Create an in-memory SQLite engine with all tables.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)

    yield engine

    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Create a session factory for the test database."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Create a database session for a test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def issuer():
    return FakeCredentialIssuer()


@pytest.fixture
def session_service(db_session):
    return SessionService(SessionRepository(db_session))


@pytest.fixture
def ledger(db_session):
    return UniquenessLedgerRepository(db_session)


@pytest.fixture
def policy():
    return NotificationPolicy(
        expected_amount=Decimal("0.01"),
        currency="BRL",
        accepted_statuses=frozenset({"completed", "paid", "CONCLUIDA"}),
    )


@pytest.fixture
def pipeline(session_service, ledger, issuer, policy):
    return VerificationPipeline(
        guard=SignatureGuard(TEST_WEBHOOK_SECRET),
        sessions=session_service,
        ledger=ledger,
        issuer=issuer,
        policy=policy,
        hasher=IdentityHasher(),
        precheck_on_chain=True,
    )


@pytest.fixture
def create_session_with_code(session_service):
    """Create a session whose reference code is known in advance."""

    def _create(wallet: str = TEST_WALLET, code: str = "sol-a1b2"):
        session_service.code_generator = lambda: code
        return session_service.create_session(wallet)

    return _create
