"""
Verification-and-mint pipeline orchestration.

This module turns one inbound Pix notification into exactly one named
outcome. The ordered protocol is:

1. Authenticate the raw body (HMAC)
2. Parse and validate the payload (no store access yet)
3. Idempotency check on the payment id
4. Attribute the payment to a wallet through its reference code
5. Identity uniqueness check on the hashed CPF
6. Optional on-chain pre-checks (identity used, wallet verified)
7. Mint the credential
8. Atomically commit identity hash + payment id

Each step rejects by raising a VerificationError subclass; process() maps
the exception to an Outcome and never lets anything escape.

Steps 3-6 run strictly before the mint so redeliveries are rejected cheaply.
Store calls are synchronous and run in worker threads so one slow query
never stalls the event loop for unrelated runs.

Uniqueness markers are written only after a successful mint; a failed mint
writes nothing, which leaves the payment eligible for a retry. Concurrent
runs that both reach step 8 are resolved by the ledger's unique constraints
and surface as duplicate outcomes, never as crashes.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import structlog

from sbt_verifier.domain.exceptions import (
    AttributionFailure,
    AuthenticationFailure,
    DuplicateIdentity,
    DuplicatePayment,
    IssuerFailure,
    StorageConflict,
    ValidationFailure,
    VerificationError,
    WalletAlreadyVerified,
)
from sbt_verifier.domain.identity import mask_cpf
from sbt_verifier.domain.issuer import CredentialIssuer
from sbt_verifier.domain.ledger import IUniquenessLedger, PaymentOutcome
from sbt_verifier.domain.notification import NotificationPolicy, parse_notification
from sbt_verifier.domain.reference_code import extract_reference_codes
from sbt_verifier.domain.session import SessionService, VerificationSession
from sbt_verifier.domain.signature import SignatureGuard

logger = structlog.get_logger(__name__)


class Outcome(str, Enum):
    """Terminal state of one pipeline run."""

    RECORDED = "recorded"
    REJECTED_AUTH = "rejected_auth"
    REJECTED_INVALID = "rejected_invalid"
    REJECTED_DUP_PAYMENT = "rejected_dup_payment"
    REJECTED_NO_SESSION = "rejected_no_session"
    REJECTED_DUP_IDENTITY = "rejected_dup_identity"
    REJECTED_ALREADY_VERIFIED = "rejected_already_verified"
    FAILED_MINT = "failed_mint"
    FAILED_INTERNAL = "failed_internal"


# Checked in order
OUTCOME_BY_ERROR = (
    (AuthenticationFailure, Outcome.REJECTED_AUTH),
    (ValidationFailure, Outcome.REJECTED_INVALID),
    (DuplicatePayment, Outcome.REJECTED_DUP_PAYMENT),
    (AttributionFailure, Outcome.REJECTED_NO_SESSION),
    (DuplicateIdentity, Outcome.REJECTED_DUP_IDENTITY),
    (WalletAlreadyVerified, Outcome.REJECTED_ALREADY_VERIFIED),
    (IssuerFailure, Outcome.FAILED_MINT),
)

INTERNAL_FAILURES = frozenset({Outcome.FAILED_MINT, Outcome.FAILED_INTERNAL})


@dataclass
class PipelineResult:
    """Result of processing one notification."""

    outcome: Outcome
    message: str = ""
    payment_id: str | None = None
    wallet_address: str | None = None
    transaction_hash: str | None = None
    token_id: int | None = None
    concurrent: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def is_internal_failure(self) -> bool:
        return self.outcome in INTERNAL_FAILURES


class VerificationPipeline:
    """Orchestrates signature guard, sessions, uniqueness ledger and issuer."""

    def __init__(
        self,
        guard: SignatureGuard,
        sessions: SessionService,
        ledger: IUniquenessLedger,
        issuer: CredentialIssuer,
        policy: NotificationPolicy,
        hasher: Callable[[str], str],
        precheck_on_chain: bool = True,
    ):
        self.guard = guard
        self.sessions = sessions
        self.ledger = ledger
        self.issuer = issuer
        self.policy = policy
        self.hasher = hasher
        self.precheck_on_chain = precheck_on_chain

    async def process(self, raw_body: bytes, signature: str | None) -> PipelineResult:
        """
        Process one Pix notification end to end.

        Args:
            raw_body: Exact request body bytes (the HMAC covers these)
            signature: Presented signature header value

        Returns:
            PipelineResult with a named Outcome. Never raises.
        """
        # Filled in as the run progresses so every exit can report it
        result = PipelineResult(outcome=Outcome.RECORDED)

        try:
            await self._run(raw_body, signature, result)
        except VerificationError as e:
            result.outcome = self._outcome_for(e)
            result.message = str(e)
            result.concurrent = getattr(e, "concurrent", False)
            if isinstance(e, ValidationFailure):
                result.errors = list(e.errors)
        except Exception as e:
            logger.error(
                "pipeline_unexpected_error",
                payment_id=result.payment_id,
                wallet_address=result.wallet_address,
                transaction_hash=result.transaction_hash,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            result.outcome = Outcome.FAILED_INTERNAL
            result.message = "Internal processing error"

        return result

    @staticmethod
    def _outcome_for(error: VerificationError) -> Outcome:
        for error_type, outcome in OUTCOME_BY_ERROR:
            if isinstance(error, error_type):
                return outcome
        # StorageConflict or ReferenceCodeExhausted that was not translated
        logger.error("pipeline_untranslated_error", error_type=type(error).__name__, error=str(error))
        return Outcome.FAILED_INTERNAL

    async def _run(self, raw_body: bytes, signature: str | None, result: PipelineResult) -> None:
        # Step 1: Authenticate
        if not self.guard.verify(raw_body, signature):
            logger.warning("notification_rejected_auth")
            raise AuthenticationFailure("Invalid signature")

        # Step 2: Parse and validate before touching any store
        try:
            notification = parse_notification(raw_body)
            self.policy.validate(notification)
        except ValidationFailure as e:
            logger.warning("notification_rejected_invalid", errors=e.errors)
            raise

        payment_id = notification.end_to_end_id
        result.payment_id = payment_id
        log = logger.bind(payment_id=payment_id)

        # Step 3: Idempotency
        if await asyncio.to_thread(self.ledger.is_payment_processed, payment_id):
            log.info("notification_duplicate_payment")
            raise DuplicatePayment("Payment already processed")

        # Step 4: Attribution
        candidates = extract_reference_codes(notification.payer_message)
        session = await self._find_session(candidates)

        if session is None:
            log.warning("notification_session_not_found", candidates=candidates)
            raise AttributionFailure("Verification session not found or expired")

        wallet = session.wallet_address
        result.wallet_address = wallet
        identity_hash = self.hasher(notification.payer.cpf)
        log = log.bind(
            wallet_address=wallet,
            identity_hash=identity_hash[:8],
            cpf=mask_cpf(notification.payer.cpf),
        )

        # Step 5: Identity uniqueness (local ledger)
        if await asyncio.to_thread(self.ledger.is_identity_used, identity_hash):
            log.warning("notification_duplicate_identity")
            await self._record_payment(None, payment_id, wallet, PaymentOutcome.DUPLICATE_IDENTITY, log)
            raise DuplicateIdentity("Identity already verified")

        # Step 6: On-chain pre-checks. A read failure propagates as IssuerFailure.
        if self.precheck_on_chain:
            if await self.issuer.is_identity_used(identity_hash):
                log.warning("identity_already_used_on_chain")
                # Passing the hash lets the local ledger catch up with the chain
                await self._record_payment(
                    identity_hash, payment_id, wallet, PaymentOutcome.DUPLICATE_IDENTITY, log
                )
                raise DuplicateIdentity("Identity already verified")

            if await self.issuer.is_verified(wallet):
                log.info("wallet_already_verified_on_chain")
                await self._record_payment(None, payment_id, wallet, PaymentOutcome.ALREADY_VERIFIED, log)
                raise WalletAlreadyVerified("Wallet already holds a credential")

        # Step 7: Mint. Nothing is written to the ledger if this raises.
        try:
            receipt = await self.issuer.issue(wallet, identity_hash)
        except IssuerFailure as e:
            log.error("credential_mint_failed", error=str(e))
            raise

        result.transaction_hash = receipt.transaction_hash
        result.token_id = receipt.token_id
        log = log.bind(transaction_hash=receipt.transaction_hash)

        # Step 8: Commit both markers atomically
        try:
            await self._record_payment(
                identity_hash,
                payment_id,
                wallet,
                PaymentOutcome.RECORDED,
                log,
                transaction_hash=receipt.transaction_hash,
            )
        except DuplicateIdentity:
            log.error("identity_concurrently_claimed_after_mint")
            raise
        except VerificationError:
            raise
        except Exception as e:
            # The credential exists on chain but the ledger does not know it
            log.critical(
                "credential_minted_but_commit_failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        result.message = "Credential issued"
        log.info("credential_issued_and_recorded", token_id=receipt.token_id)

    async def _find_session(self, candidates: list[str]) -> VerificationSession | None:
        """Return the valid session of the first candidate code that has one."""
        for reference_code in candidates:
            session = await asyncio.to_thread(self.sessions.find_valid_session, reference_code)
            if session is not None:
                return session
        return None

    async def _record_payment(
        self,
        identity_hash: str | None,
        payment_id: str,
        wallet: str,
        outcome: str,
        log,
        transaction_hash: str | None = None,
    ) -> None:
        """
        Commit the ledger markers, translating unique-constraint races.

        A payment conflict means another run already finished this payment.
        An identity conflict means another run claimed the identity first:
        the payment is then recorded on its own so redeliveries stop.

        Raises:
            DuplicatePayment: concurrent=True, the payment id was taken
            DuplicateIdentity: concurrent=True, the identity hash was taken
        """
        try:
            await asyncio.to_thread(
                self.ledger.commit,
                identity_hash,
                payment_id,
                wallet_address=wallet,
                outcome=outcome,
                transaction_hash=transaction_hash,
            )
            return
        except StorageConflict as e:
            if e.constraint == StorageConflict.PAYMENT:
                log.info("payment_concurrently_processed")
                raise DuplicatePayment("Payment processed concurrently", concurrent=True) from e

        log.warning("identity_concurrently_claimed")
        try:
            await asyncio.to_thread(
                self.ledger.commit,
                None,
                payment_id,
                wallet_address=wallet,
                outcome=PaymentOutcome.DUPLICATE_IDENTITY,
                transaction_hash=transaction_hash,
            )
        except StorageConflict as e:
            log.info("payment_concurrently_processed")
            raise DuplicatePayment("Payment processed concurrently", concurrent=True) from e

        raise DuplicateIdentity("Identity claimed concurrently", concurrent=True)
