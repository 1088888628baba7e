"""EVM credential issuer backed by web3.py."""

import asyncio

import aiohttp
import structlog
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception
from web3.logs import DISCARD
from web3.providers import AsyncHTTPProvider

from sbt_verifier.config import ChainSettings
from sbt_verifier.domain.exceptions import IssuerFailure
from sbt_verifier.domain.issuer import CredentialIssuer, MintReceipt

logger = structlog.get_logger(__name__)

# Minimal ABI for the identity SBT contract
SBT_CONTRACT_ABI = [
    {
        "type": "function",
        "name": "mint",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "cpfHash", "type": "bytes32"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "isVerified",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "isCPFUsed",
        "stateMutability": "view",
        "inputs": [{"name": "cpfHash", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "getTokenId",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "totalSupply",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "IdentityVerified",
        "anonymous": False,
        "inputs": [
            {"name": "user", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
            {"name": "cpfHash", "type": "bytes32", "indexed": False},
        ],
    },
]

# Errors raised by web3, the JSON-RPC transport or the node
LEDGER_ERRORS = (Web3Exception, ValueError, aiohttp.ClientError, asyncio.TimeoutError, OSError)


def identity_hash_to_bytes32(identity_hash: str) -> bytes:
    """Convert a 64-char hex identity hash to the contract's bytes32 argument.

    Raises:
        ValueError: If the hash is not exactly 32 bytes of hex
    """
    raw = bytes.fromhex(identity_hash.removeprefix("0x"))
    if len(raw) != 32:
        raise ValueError("identity hash must be 32 bytes")
    return raw


class Web3CredentialIssuer(CredentialIssuer):
    """
    Mints identity SBTs through a JSON-RPC node.

    Transactions are signed locally with the minter key; the node only
    relays them. Submissions are serialized so concurrent mints never
    reuse a nonce.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        minter_private_key: str,
        chain_id: int | None = None,
        gas_buffer_percent: int = 10,
        wait_for_confirmation: bool = True,
        mint_timeout_seconds: int = 120,
    ):
        self.w3 = w3
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=SBT_CONTRACT_ABI
        )
        self.account = w3.eth.account.from_key(minter_private_key)
        self.chain_id = chain_id
        self.gas_buffer_percent = gas_buffer_percent
        self.wait_for_confirmation = wait_for_confirmation
        self.mint_timeout_seconds = mint_timeout_seconds
        self._send_lock = asyncio.Lock()

        logger.info(
            "credential_issuer_initialized",
            contract_address=self.contract.address,
            minter_address=self.account.address,
            wait_for_confirmation=wait_for_confirmation,
        )

    @classmethod
    def from_settings(cls, chain: ChainSettings) -> "Web3CredentialIssuer":
        """Build an issuer with an HTTP provider from chain settings."""
        w3 = AsyncWeb3(AsyncHTTPProvider(chain.rpc_url))
        return cls(
            w3,
            contract_address=chain.contract_address,
            minter_private_key=chain.minter_private_key,
            chain_id=chain.chain_id,
            gas_buffer_percent=chain.gas_buffer_percent,
            wait_for_confirmation=chain.wait_for_confirmation,
            mint_timeout_seconds=chain.mint_timeout_seconds,
        )

    async def issue(self, recipient_address: str, identity_hash: str) -> MintReceipt:
        recipient = Web3.to_checksum_address(recipient_address)
        cpf_hash = identity_hash_to_bytes32(identity_hash)

        logger.info(
            "credential_mint_started",
            recipient=recipient,
            identity_hash=identity_hash[:8],
        )

        try:
            mint = self.contract.functions.mint(recipient, cpf_hash)

            # A revert here means the contract would reject the mint
            gas_estimate = await mint.estimate_gas({"from": self.account.address})
            gas_limit = gas_estimate * (100 + self.gas_buffer_percent) // 100

            async with self._send_lock:
                chain_id = self.chain_id or await self.w3.eth.chain_id
                nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
                tx = await mint.build_transaction(
                    {
                        "from": self.account.address,
                        "nonce": nonce,
                        "gas": gas_limit,
                        "chainId": chain_id,
                    }
                )
                signed = self.account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

            tx_hash_hex = Web3.to_hex(tx_hash)
            logger.info("credential_mint_submitted", transaction_hash=tx_hash_hex, gas_limit=gas_limit)

            if not self.wait_for_confirmation:
                return MintReceipt(transaction_hash=tx_hash_hex)

            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.mint_timeout_seconds
            )
        except LEDGER_ERRORS as e:
            logger.error(
                "credential_mint_error",
                recipient=recipient,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise IssuerFailure(f"Failed to mint credential: {e}") from e

        if receipt["status"] != 1:
            logger.error(
                "credential_mint_reverted",
                transaction_hash=tx_hash_hex,
                block_number=receipt["blockNumber"],
            )
            raise IssuerFailure(f"Mint transaction {tx_hash_hex} reverted")

        token_id = self._token_id_from_receipt(receipt)

        logger.info(
            "credential_mint_confirmed",
            transaction_hash=tx_hash_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            token_id=token_id,
        )

        return MintReceipt(
            transaction_hash=tx_hash_hex,
            token_id=token_id,
            block_number=receipt["blockNumber"],
            confirmed=True,
        )

    def _token_id_from_receipt(self, receipt) -> int | None:
        events = self.contract.events.IdentityVerified().process_receipt(receipt, errors=DISCARD)
        if not events:
            return None
        return int(events[0]["args"]["tokenId"])

    async def is_verified(self, address: str) -> bool:
        try:
            return await self.contract.functions.isVerified(
                Web3.to_checksum_address(address)
            ).call()
        except LEDGER_ERRORS as e:
            raise IssuerFailure(f"Failed to check verification status: {e}") from e

    async def is_identity_used(self, identity_hash: str) -> bool:
        try:
            return await self.contract.functions.isCPFUsed(
                identity_hash_to_bytes32(identity_hash)
            ).call()
        except LEDGER_ERRORS as e:
            raise IssuerFailure(f"Failed to check identity usage: {e}") from e

    async def get_token_id(self, address: str) -> int | None:
        try:
            token_id = await self.contract.functions.getTokenId(
                Web3.to_checksum_address(address)
            ).call()
        except LEDGER_ERRORS as e:
            raise IssuerFailure(f"Failed to get token id: {e}") from e

        # The contract returns 0 for wallets without a token
        return token_id or None

    async def total_supply(self) -> int:
        try:
            return await self.contract.functions.totalSupply().call()
        except LEDGER_ERRORS as e:
            raise IssuerFailure(f"Failed to get total supply: {e}") from e

    async def close(self) -> None:
        """Close the provider's HTTP sessions."""
        await self.w3.provider.disconnect()
