"""Fake collaborators and payload builders for pipeline tests."""

import json

from sbt_verifier.domain.issuer import CredentialIssuer, MintReceipt
from sbt_verifier.domain.signature import SignatureGuard

TEST_WEBHOOK_SECRET = "test-webhook-secret"
TEST_WALLET = "0x00000000000000000000000000000000000000a1"
OTHER_WALLET = "0x00000000000000000000000000000000000000b2"

# CPFs with valid check digits
VALID_CPF = "11111111111"
OTHER_VALID_CPF = "529.982.247-25"


class FakeCredentialIssuer(CredentialIssuer):
    """In-memory issuer that records calls and can be told to fail."""

    def __init__(self):
        self.issue_calls: list[tuple[str, str]] = []
        self.verified_wallets: dict[str, int] = {}
        self.used_identities: set[str] = set()
        self.fail_issue: Exception | None = None
        self.fail_reads: Exception | None = None
        self.closed = False
        self._next_token_id = 1

    async def issue(self, recipient_address: str, identity_hash: str) -> MintReceipt:
        self.issue_calls.append((recipient_address, identity_hash))
        if self.fail_issue is not None:
            raise self.fail_issue

        token_id = self._next_token_id
        self._next_token_id += 1
        self.verified_wallets[recipient_address.lower()] = token_id
        self.used_identities.add(identity_hash)
        return MintReceipt(
            transaction_hash="0x" + f"{token_id:064x}",
            token_id=token_id,
            block_number=100 + token_id,
            confirmed=True,
        )

    async def is_verified(self, address: str) -> bool:
        self._maybe_fail_read()
        return address.lower() in self.verified_wallets

    async def is_identity_used(self, identity_hash: str) -> bool:
        self._maybe_fail_read()
        return identity_hash in self.used_identities

    async def get_token_id(self, address: str) -> int | None:
        self._maybe_fail_read()
        return self.verified_wallets.get(address.lower())

    async def total_supply(self) -> int:
        self._maybe_fail_read()
        return len(self.verified_wallets)

    async def close(self) -> None:
        self.closed = True

    def _maybe_fail_read(self) -> None:
        if self.fail_reads is not None:
            raise self.fail_reads


def build_notification(
    end_to_end_id: str = "E2E001",
    cpf: str = VALID_CPF,
    message: str = "sol-a1b2",
    amount: str = "0.01",
    **extra,
) -> dict:
    """Build a Pix notification payload as the provider sends it."""
    payload = {
        "endToEndId": end_to_end_id,
        "valor": amount,
        "pagador": {"cpf": cpf, "nome": "Fulano de Tal"},
        "infoPagador": message,
    }
    payload.update(extra)
    return payload


def encode_notification(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


def sign_body(raw_body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    return SignatureGuard(secret).sign(raw_body)


def signed_notification(secret: str = TEST_WEBHOOK_SECRET, **kwargs) -> tuple[bytes, str]:
    """Return (raw_body, signature) for a notification built from kwargs."""
    raw_body = encode_notification(build_notification(**kwargs))
    return raw_body, sign_body(raw_body, secret)
