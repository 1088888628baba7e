"""Base interface for credential issuers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class MintReceipt:
    """
    Result of a mint submission.

    Attributes:
        transaction_hash: Opaque reference of the submitted transaction (0x hex)
        token_id: Token id read from the IdentityVerified event, if confirmed
        block_number: Block that included the transaction, if confirmed
        confirmed: Whether the issuer waited for a successful receipt
    """

    transaction_hash: str
    token_id: int | None = None
    block_number: int | None = None
    confirmed: bool = False


class CredentialIssuer(ABC):
    """
    Abstract base class for the external ledger that mints identity credentials.

    Every method raises IssuerFailure on any failure talking to the ledger.
    Implementations never swallow errors: the pipeline decides whether to
    commit uniqueness markers based on whether issue() raised.
    """

    @abstractmethod
    async def issue(self, recipient_address: str, identity_hash: str) -> MintReceipt:
        """
        Mint a non-transferable credential for a wallet.

        Args:
            recipient_address: 0x-prefixed 20-byte wallet address
            identity_hash: 64-char hex identity hash, bound to the token on chain

        Returns:
            MintReceipt identifying the submission

        Raises:
            IssuerFailure: Network error, gas estimation revert, underfunded
                minter, reverted receipt or confirmation timeout
        """
        pass

    @abstractmethod
    async def is_verified(self, address: str) -> bool:
        """Whether the wallet already holds a credential."""
        pass

    @abstractmethod
    async def is_identity_used(self, identity_hash: str) -> bool:
        """Whether the identity hash is already bound to a credential on chain."""
        pass

    @abstractmethod
    async def get_token_id(self, address: str) -> int | None:
        """Token id held by the wallet, or None."""
        pass

    @abstractmethod
    async def total_supply(self) -> int:
        """Total number of credentials issued."""
        pass

    async def close(self) -> None:
        """Release connections held by the issuer."""
        return None
