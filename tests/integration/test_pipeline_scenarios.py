"""Integration tests for the verification pipeline on a real database.

These tests run the full protocol through the SQLite-backed session store
and uniqueness ledger with a recording fake issuer.
"""

import asyncio

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sbt_verifier.domain.exceptions import IssuerFailure
from sbt_verifier.domain.identity import IdentityHasher, hash_identity
from sbt_verifier.domain.ledger import PaymentOutcome
from sbt_verifier.domain.pipeline import Outcome, VerificationPipeline
from sbt_verifier.domain.session import SessionService
from sbt_verifier.domain.signature import SignatureGuard
from sbt_verifier.infrastructure.database import drop_all_tables, init_db
from sbt_verifier.infrastructure.repository import SessionRepository, UniquenessLedgerRepository
from tests.helpers.fakes import (
    OTHER_VALID_CPF,
    OTHER_WALLET,
    TEST_WALLET,
    TEST_WEBHOOK_SECRET,
    VALID_CPF,
    FakeCredentialIssuer,
    signed_notification,
)

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def test_happy_path_mints_and_records(pipeline, create_session_with_code, issuer, ledger):
    """A valid paid session for sol-a1b2 ends in exactly one mint and both markers."""
    create_session_with_code(TEST_WALLET, "sol-a1b2")
    raw_body, signature = signed_notification(end_to_end_id="E2E001", cpf=VALID_CPF)

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.RECORDED
    assert result.wallet_address == TEST_WALLET
    assert result.token_id == 1
    assert issuer.issue_calls == [(TEST_WALLET, hash_identity(VALID_CPF))]
    assert ledger.is_payment_processed("E2E001")
    assert ledger.is_identity_used(hash_identity(VALID_CPF))

    record = ledger.get_processed_payment("E2E001")
    assert record.transaction_hash == result.transaction_hash
    assert record.outcome == PaymentOutcome.RECORDED


async def test_same_cpf_second_payment_is_duplicate_identity(
    pipeline, create_session_with_code, issuer, ledger
):
    """E2E002 with the same CPF for another wallet: no second mint, payment still marked."""
    create_session_with_code(TEST_WALLET, "sol-a1b2")
    create_session_with_code(OTHER_WALLET, "lua-c3d4")

    first_body, first_signature = signed_notification(end_to_end_id="E2E001", message="sol-a1b2")
    second_body, second_signature = signed_notification(end_to_end_id="E2E002", message="lua-c3d4")

    first = await pipeline.process(first_body, first_signature)
    second = await pipeline.process(second_body, second_signature)

    assert first.outcome == Outcome.RECORDED
    assert second.outcome == Outcome.REJECTED_DUP_IDENTITY
    assert len(issuer.issue_calls) == 1
    assert ledger.is_payment_processed("E2E002")
    assert ledger.get_processed_payment("E2E002").outcome == PaymentOutcome.DUPLICATE_IDENTITY
    assert ledger.count_used_identities() == 1


async def test_replayed_notification_is_duplicate_payment(pipeline, create_session_with_code, issuer, ledger):
    create_session_with_code()
    raw_body, signature = signed_notification()

    first = await pipeline.process(raw_body, signature)
    replay = await pipeline.process(raw_body, signature)

    assert first.outcome == Outcome.RECORDED
    assert replay.outcome == Outcome.REJECTED_DUP_PAYMENT
    assert replay.concurrent is False
    assert len(issuer.issue_calls) == 1
    assert ledger.count_used_identities() == 1


async def test_unknown_reference_code_is_not_marked_processed(pipeline, issuer, ledger):
    raw_body, signature = signed_notification(message="rio-ffff")

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.REJECTED_NO_SESSION
    assert issuer.issue_calls == []
    assert not ledger.is_payment_processed("E2E001")


async def test_expired_session_is_attribution_failure(pipeline, session_service, issuer, ledger):
    session_service.ttl = session_service.ttl * -1
    session_service.code_generator = lambda: "sol-a1b2"
    session_service.create_session(TEST_WALLET)
    raw_body, signature = signed_notification()

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.REJECTED_NO_SESSION
    assert issuer.issue_calls == []
    assert not ledger.is_payment_processed("E2E001")


async def test_code_inside_free_text_is_attributed(pipeline, create_session_with_code):
    create_session_with_code(TEST_WALLET, "sol-a1b2")
    raw_body, signature = signed_notification(message="Verificacao SOL-A1B2 obrigado")

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.RECORDED
    assert result.wallet_address == TEST_WALLET


async def test_hyphenated_word_before_code_does_not_hide_session(pipeline, create_session_with_code, ledger):
    create_session_with_code(TEST_WALLET, "sol-a1b2")
    raw_body, signature = signed_notification(message="pix bem-cafe sol-a1b2")

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.RECORDED
    assert result.wallet_address == TEST_WALLET
    assert ledger.is_payment_processed("E2E001")


async def test_unknown_word_code_is_still_tried(pipeline, create_session_with_code):
    create_session_with_code(TEST_WALLET, "sol-a1b2")
    raw_body, signature = signed_notification(message="bem-cafe lua-0000 sol-a1b2")

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.RECORDED


async def test_bad_signature_has_no_side_effects(pipeline, create_session_with_code, issuer, ledger):
    create_session_with_code()
    raw_body, _ = signed_notification()
    _, foreign_signature = signed_notification(secret="another-secret")

    result = await pipeline.process(raw_body, foreign_signature)

    assert result.outcome == Outcome.REJECTED_AUTH
    assert issuer.issue_calls == []
    assert not ledger.is_payment_processed("E2E001")


async def test_failed_mint_writes_nothing_and_retry_succeeds(
    pipeline, create_session_with_code, issuer, ledger
):
    create_session_with_code()
    raw_body, signature = signed_notification()
    issuer.fail_issue = IssuerFailure("minter underfunded")

    failed = await pipeline.process(raw_body, signature)

    assert failed.outcome == Outcome.FAILED_MINT
    assert failed.is_internal_failure
    assert not ledger.is_payment_processed("E2E001")
    assert not ledger.is_identity_used(hash_identity(VALID_CPF))

    issuer.fail_issue = None
    retried = await pipeline.process(raw_body, signature)

    assert retried.outcome == Outcome.RECORDED
    assert len(issuer.issue_calls) == 2


async def test_identity_used_on_chain_reconciles_local_ledger(
    pipeline, create_session_with_code, issuer, ledger
):
    create_session_with_code()
    identity_hash = hash_identity(VALID_CPF)
    issuer.used_identities.add(identity_hash)
    raw_body, signature = signed_notification()

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.REJECTED_DUP_IDENTITY
    assert issuer.issue_calls == []
    assert ledger.is_identity_used(identity_hash)
    assert ledger.is_payment_processed("E2E001")


async def test_wallet_already_verified_on_chain(pipeline, create_session_with_code, issuer, ledger):
    create_session_with_code()
    issuer.verified_wallets[TEST_WALLET] = 9
    raw_body, signature = signed_notification()

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.REJECTED_ALREADY_VERIFIED
    assert issuer.issue_calls == []
    assert ledger.get_processed_payment("E2E001").outcome == PaymentOutcome.ALREADY_VERIFIED
    assert not ledger.is_identity_used(hash_identity(VALID_CPF))


async def test_identity_claimed_during_mint_is_duplicate_identity(
    pipeline, create_session_with_code, issuer, db_session
):
    """Another run commits the same identity while this run's mint is in flight."""
    create_session_with_code()
    identity_hash = hash_identity(VALID_CPF)
    rival_ledger = UniquenessLedgerRepository(db_session)
    original_issue = issuer.issue

    async def issue_while_rival_commits(recipient_address, hash_):
        rival_ledger.commit(identity_hash, "E2E-RIVAL", wallet_address=OTHER_WALLET)
        return await original_issue(recipient_address, hash_)

    issuer.issue = issue_while_rival_commits
    raw_body, signature = signed_notification()

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.REJECTED_DUP_IDENTITY
    assert result.concurrent is True
    assert rival_ledger.is_payment_processed("E2E001")
    assert rival_ledger.get_processed_payment("E2E001").outcome == PaymentOutcome.DUPLICATE_IDENTITY
    assert rival_ledger.count_used_identities() == 1


async def test_payment_recorded_during_mint_is_duplicate_payment(
    pipeline, create_session_with_code, issuer, db_session
):
    create_session_with_code()
    rival_ledger = UniquenessLedgerRepository(db_session)
    original_issue = issuer.issue

    async def issue_while_rival_commits(recipient_address, hash_):
        rival_ledger.commit(hash_identity(OTHER_VALID_CPF), "E2E001", wallet_address=OTHER_WALLET)
        return await original_issue(recipient_address, hash_)

    issuer.issue = issue_while_rival_commits
    raw_body, signature = signed_notification()

    result = await pipeline.process(raw_body, signature)

    assert result.outcome == Outcome.REJECTED_DUP_PAYMENT
    assert result.concurrent is True
    assert not rival_ledger.is_identity_used(hash_identity(VALID_CPF))


class RendezvousIssuer(FakeCredentialIssuer):
    """Holds every mint until all expected runs have reached the issuer."""

    def __init__(self, parties: int):
        super().__init__()
        self._parties = parties
        self._arrived = 0
        self._all_arrived = asyncio.Event()

    async def issue(self, recipient_address, identity_hash):
        self._arrived += 1
        if self._arrived == self._parties:
            self._all_arrived.set()
        await self._all_arrived.wait()
        return await super().issue(recipient_address, identity_hash)


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on separate connections to one file-backed database."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    init_db(engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    drop_all_tables(engine)
    engine.dispose()


async def test_two_sessions_racing_for_one_identity(file_session_factory, policy):
    """Independent runs mint for the same CPF; the unique constraint lets one record."""
    issuer = RendezvousIssuer(parties=2)
    db_sessions = [file_session_factory() for _ in range(2)]
    try:
        pipelines = []
        for db_session, wallet, code in zip(
            db_sessions, (TEST_WALLET, OTHER_WALLET), ("sol-a1b2", "lua-c3d4")
        ):
            sessions = SessionService(SessionRepository(db_session), code_generator=lambda code=code: code)
            sessions.create_session(wallet)
            pipelines.append(
                VerificationPipeline(
                    guard=SignatureGuard(TEST_WEBHOOK_SECRET),
                    sessions=sessions,
                    ledger=UniquenessLedgerRepository(db_session),
                    issuer=issuer,
                    policy=policy,
                    hasher=IdentityHasher(),
                )
            )

        first = signed_notification(end_to_end_id="E2E001", message="sol-a1b2")
        second = signed_notification(end_to_end_id="E2E002", message="lua-c3d4")

        results = await asyncio.gather(
            pipelines[0].process(*first),
            pipelines[1].process(*second),
        )
    finally:
        for db_session in db_sessions:
            db_session.close()

    outcomes = sorted(result.outcome.value for result in results)
    assert outcomes == [Outcome.RECORDED.value, Outcome.REJECTED_DUP_IDENTITY.value]
    loser = next(r for r in results if r.outcome == Outcome.REJECTED_DUP_IDENTITY)
    assert loser.concurrent is True
    assert len(issuer.issue_calls) == 2

    check_session = file_session_factory()
    try:
        ledger = UniquenessLedgerRepository(check_session)
        assert ledger.count_used_identities() == 1
        assert ledger.is_payment_processed("E2E001")
        assert ledger.is_payment_processed("E2E002")
        assert ledger.get_processed_payment(loser.payment_id).outcome == PaymentOutcome.DUPLICATE_IDENTITY
    finally:
        check_session.close()
