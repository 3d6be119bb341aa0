"""
Transaction Builder - constructs buffer transactions.

Handles the construction of the account-creation and chunk-write
transactions, each fully signed and self-contained.
"""

from typing import List, Optional, Sequence

import structlog

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from bufferwriter.config import PACKET_DATA_SIZE, WriterConfig, get_config
from bufferwriter.core.chunk import Chunk
from bufferwriter.errors import InstructionBuildError, ZeroFunding
from bufferwriter.tx import instructions
from bufferwriter.tx.signer import TransactionSigner

logger = structlog.get_logger(__name__)


def transaction_signature(tx: Transaction) -> Signature:
    """The fee payer's signature, which identifies the transaction on the network."""
    return tx.signatures[0]


class TransactionBuilder:
    """
    Builds and signs buffer transactions.

    Every transaction is signed against the blockhash it is built with, so
    rebuilding the same chunk against a newer blockhash yields a new signature
    with identical offset and bytes.
    """

    def __init__(
        self,
        signer: TransactionSigner,
        config: Optional[WriterConfig] = None,
    ):
        """
        Initialize the transaction builder.

        Args:
            signer: Authority signer (fee payer and buffer authority)
            config: Writer configuration
        """
        self.signer = signer
        self.config = config or get_config()

    @property
    def chunk_size(self) -> int:
        """Bytes written per transaction."""
        return self.config.effective_chunk_size

    def fee_instructions(self) -> List[Instruction]:
        """Priority fee prefix for every transaction (may be empty)."""
        return instructions.priority_fee_instructions(
            self.config.compute_unit_limit,
            self.config.compute_unit_price,
        )

    def build_create_buffer_transaction(
        self,
        buffer: Keypair,
        lamports: int,
        payload_len: int,
        blockhash: Hash,
    ) -> Transaction:
        """
        Build the transaction that creates and initializes the buffer account.

        Args:
            buffer: Freshly generated buffer keypair (co-signs the transaction)
            lamports: Rent-exempt funding for the account
            payload_len: Number of payload bytes the buffer must hold
            blockhash: Recent blockhash

        Returns:
            Signed transaction

        Raises:
            ZeroFunding: If lamports is zero
            InstructionBuildError: If the transaction cannot be built
        """
        if lamports <= 0:
            raise ZeroFunding(f"Refusing to create buffer with {lamports} lamports")

        authority = self.authority
        ixs = self.fee_instructions() + instructions.create_buffer(
            payer=authority,
            buffer=buffer.pubkey(),
            authority=authority,
            lamports=lamports,
            payload_len=payload_len,
        )

        tx = self._sign(ixs, [self.signer.keypair, buffer], blockhash)

        logger.info(
            "create_buffer_transaction_built",
            buffer=str(buffer.pubkey()),
            lamports=lamports,
            payload_len=payload_len,
            signature=str(transaction_signature(tx))[:16] + "...",
        )
        return tx

    def build_write_transaction(
        self,
        chunk: Chunk,
        buffer: Pubkey,
        blockhash: Hash,
    ) -> Transaction:
        """
        Build the transaction that writes one chunk into the buffer.

        Args:
            chunk: Offset-tagged payload slice
            buffer: Buffer account address
            blockhash: Recent blockhash

        Returns:
            Signed transaction
        """
        ixs = self.fee_instructions()
        ixs.append(
            instructions.write(buffer, self.authority, chunk.offset, chunk.data)
        )
        return self._sign(ixs, [self.signer.keypair], blockhash)

    def build_set_authority_transaction(
        self,
        buffer: Pubkey,
        new_authority: Pubkey,
        blockhash: Hash,
    ) -> Transaction:
        """Build the transaction that hands the buffer to a new authority."""
        ixs = self.fee_instructions()
        ixs.append(
            instructions.set_buffer_authority(buffer, self.authority, new_authority)
        )
        return self._sign(ixs, [self.signer.keypair], blockhash)

    @property
    def authority(self) -> Pubkey:
        """Authority public key; raises InstructionBuildError if no key is loaded."""
        if not self.signer.is_loaded:
            raise InstructionBuildError("Signer key not loaded")
        return self.signer.pubkey

    def _sign(
        self,
        ixs: List[Instruction],
        signers: Sequence[Keypair],
        blockhash: Hash,
    ) -> Transaction:
        try:
            tx = Transaction.new_signed_with_payer(
                ixs,
                self.signer.pubkey,
                signers,
                blockhash,
            )
        except Exception as e:
            logger.error("transaction_build_failed", error=str(e))
            raise InstructionBuildError(f"Failed to build transaction: {e}") from e

        size = len(bytes(tx))
        if size > PACKET_DATA_SIZE:
            raise InstructionBuildError(
                f"Transaction is {size} bytes, limit is {PACKET_DATA_SIZE}"
            )

        return tx
