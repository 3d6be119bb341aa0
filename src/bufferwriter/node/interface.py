"""
Abstract interface for Solana RPC access.

Defines the contract for network access that all ledger adapters must implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from bufferwriter.config import Commitment, MAX_SIGNATURE_STATUS_BATCH


class ConfirmationLevel(str, Enum):
    """How far a landed transaction has progressed toward irreversibility."""
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class SignatureStatus:
    """Status the network reports for one signature."""
    confirmation_level: Optional[ConfirmationLevel] = None
    error: Optional[str] = None
    slot: int = 0

    @property
    def is_errored(self) -> bool:
        return self.error is not None

    @property
    def is_confirmed(self) -> bool:
        """Confirmed or finalized, without an error."""
        return not self.is_errored and self.confirmation_level in (
            ConfirmationLevel.CONFIRMED,
            ConfirmationLevel.FINALIZED,
        )


@dataclass(frozen=True)
class SendConfig:
    """Options passed with every transaction submission."""
    skip_preflight: bool = True
    preflight_commitment: Commitment = Commitment.FINALIZED
    encoding: str = "base64"
    max_retries: Optional[int] = 3


class LedgerInterface(ABC):
    """
    Abstract interface for Solana network access.

    This interface defines all network operations needed by the writer:
    - Blockhash (validity anchor) fetching
    - Rent-exemption and balance queries
    - Transaction submission
    - Batched signature status queries
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the RPC node.

        Raises:
            RpcTransportError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the RPC node."""
        pass

    @abstractmethod
    async def get_latest_blockhash(self) -> Hash:
        """
        Get a recent blockhash to anchor new transactions.

        Raises:
            AnchorFetchFailed: If the blockhash cannot be fetched
        """
        pass

    @abstractmethod
    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        """
        Get the lamports needed to keep an account of the given size alive.

        Args:
            size: Account data length in bytes

        Returns:
            Required lamports (0 means the query did not produce a usable value)

        Raises:
            FundingQueryFailed: If the query fails
        """
        pass

    @abstractmethod
    async def get_balance(self, pubkey: Pubkey) -> int:
        """
        Get the lamport balance of an account.

        Raises:
            RpcTransportError: If the query fails
        """
        pass

    @abstractmethod
    async def send_transaction(self, tx: Transaction, config: SendConfig) -> Signature:
        """
        Submit a signed transaction.

        The returned signature only says the node accepted the bytes; landing is
        established by polling statuses.

        Raises:
            SubmissionFailed: If the node rejects the submission
        """
        pass

    @abstractmethod
    async def get_signature_statuses(
        self,
        signatures: Sequence[Signature],
    ) -> List[Optional[SignatureStatus]]:
        """
        Get statuses for a batch of signatures.

        Args:
            signatures: At most MAX_SIGNATURE_STATUS_BATCH signatures

        Returns:
            One entry per input signature, in order; None when the network has
            no record of it

        Raises:
            StatusQueryFailed: If the query fails
        """
        pass

    @staticmethod
    def check_batch_size(signatures: Sequence[Signature]) -> None:
        """Reject status queries larger than the protocol ceiling."""
        if len(signatures) > MAX_SIGNATURE_STATUS_BATCH:
            raise ValueError(
                f"At most {MAX_SIGNATURE_STATUS_BATCH} signatures per status query, "
                f"got {len(signatures)}"
            )
