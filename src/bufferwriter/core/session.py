"""
Buffer Writer session.

Coordinates account creation, chunk submission, confirmation polling and
re-signing until every chunk of a payload is confirmed in the buffer.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import structlog

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from bufferwriter.config import WriterConfig, get_config
from bufferwriter.core.chunk import Chunk, split_payload
from bufferwriter.core.dispatcher import Dispatcher
from bufferwriter.core.progress import Completed, Failed, Idle, ProgressReporter
from bufferwriter.core.tracker import ConfirmationTracker, TrackingResult
from bufferwriter.errors import (
    AccountCreationRejected,
    InsufficientFunding,
    InvalidPayloadLength,
    RetryBudgetExhausted,
    SubmissionFailed,
    UploadCancelled,
    ZeroFunding,
)
from bufferwriter.node.interface import LedgerInterface
from bufferwriter.tx.builder import TransactionBuilder, transaction_signature
from bufferwriter.tx.signer import TransactionSigner

logger = structlog.get_logger(__name__)


class UploadState(str, Enum):
    """State of an upload session."""
    IDLE = "idle"
    CREATING_ACCOUNT = "creating_account"
    AWAITING_ACCOUNT_CONFIRMATION = "awaiting_account_confirmation"
    SENDING_CHUNKS = "sending_chunks"
    CONFIRMING_CHUNKS = "confirming_chunks"
    RETRYING_CHUNKS = "retrying_chunks"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PendingChunk:
    """
    A chunk that is not confirmed yet.

    The offset is the chunk's identity across rounds; `signature` always
    belongs to the most recent signing and replaces the previous one.
    """

    chunk: Chunk
    signature: Optional[Signature] = None
    attempts: int = 0


class BufferWriter:
    """
    Writes one payload into a freshly created buffer account.

    Lifecycle of a session:
    - Create and fund the buffer account, wait until it is confirmed
    - Send every pending chunk, wait, poll statuses
    - Drop confirmed chunks, re-sign the rest against a new blockhash
    - Repeat until nothing is pending or the round budget is spent

    A BufferWriter runs a single session.

    Usage:
        ```python
        writer = BufferWriter(node, signer, config)
        account = await writer.write(payload)
        ```
    """

    def __init__(
        self,
        node: LedgerInterface,
        signer: TransactionSigner,
        config: Optional[WriterConfig] = None,
        reporter: Optional[ProgressReporter] = None,
        buffer: Optional[Keypair] = None,
    ):
        """
        Initialize the writer.

        Args:
            node: Ledger interface (shared read-only with submission tasks)
            signer: Authority signer
            config: Writer configuration
            reporter: Progress channel (a new one is created if not provided)
            buffer: Buffer keypair (generated if not provided)
        """
        self.config = config or get_config()
        self.node = node
        self.signer = signer
        self.buffer = buffer or Keypair()
        self.progress = reporter or ProgressReporter(self.config.progress_queue_size)

        self.builder = TransactionBuilder(signer, self.config)
        self.dispatcher = Dispatcher(node, self.progress, self.config)
        self.tracker = ConfirmationTracker(node, self.config)

        # State
        self._state = UploadState.IDLE
        self._round = 0
        self._started = False
        self._stopped = False
        self._pending: Dict[int, PendingChunk] = {}
        self._confirmed: Dict[int, Chunk] = {}
        self._max_attempts = 0

        self.lamports: int = 0
        self.creation_signature: Optional[Signature] = None

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def round(self) -> int:
        """Number of send/confirm rounds started so far."""
        return self._round

    @property
    def buffer_pubkey(self) -> Pubkey:
        return self.buffer.pubkey()

    @property
    def pending_offsets(self) -> List[int]:
        return sorted(self._pending)

    @property
    def confirmed_chunks(self) -> List[Chunk]:
        return [self._confirmed[offset] for offset in sorted(self._confirmed)]

    @property
    def max_attempts(self) -> int:
        """Most signings any single chunk has needed so far."""
        return self._max_attempts

    def stop(self) -> None:
        """Stop the session at the next round boundary or dispatch delay."""
        self._stopped = True
        self.dispatcher.stop()
        logger.info("writer_stopping", buffer=str(self.buffer_pubkey))

    async def write(self, payload: bytes) -> Pubkey:
        """
        Upload a payload into the buffer account.

        Args:
            payload: Bytes to write

        Returns:
            Address of the buffer account holding the payload

        Raises:
            WriterError: Any fatal error; a Failed event is emitted first
        """
        if self._started:
            raise RuntimeError("BufferWriter runs a single session")
        self._started = True

        self.progress.emit(Idle())

        try:
            account = await self._run(payload)
        except (Exception, asyncio.CancelledError) as e:
            self._state = UploadState.FAILED
            self.progress.finish(Failed(reason=str(e) or type(e).__name__))
            logger.error(
                "upload_failed",
                buffer=str(self.buffer_pubkey),
                round=self._round,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            await self.dispatcher.aclose()

        self._state = UploadState.COMPLETED
        self.progress.finish(Completed(account=account))
        logger.info(
            "upload_completed",
            buffer=str(account),
            rounds=self._round,
            chunks=len(self._confirmed),
        )
        return account

    async def _run(self, payload: bytes) -> Pubkey:
        if len(payload) == 0:
            raise InvalidPayloadLength("Payload is empty")

        # Fails before any network call when no key is loaded
        authority = self.builder.authority

        chunks = split_payload(payload, self.builder.chunk_size)
        self._pending = {chunk.offset: PendingChunk(chunk) for chunk in chunks}

        logger.info(
            "upload_starting",
            buffer=str(self.buffer_pubkey),
            payload_len=len(payload),
            chunks=len(chunks),
            chunk_size=self.builder.chunk_size,
        )

        await self._create_account(len(payload), authority)
        await self._write_chunks()

        return self.buffer_pubkey

    async def _create_account(self, payload_len: int, authority: Pubkey) -> None:
        """Create the buffer account and wait until it is confirmed."""
        self._state = UploadState.CREATING_ACCOUNT

        blockhash = await self.node.get_latest_blockhash()

        size = payload_len + self.config.account_extra_space
        lamports = await self.node.get_minimum_balance_for_rent_exemption(size)
        if lamports == 0:
            raise ZeroFunding(f"Rent exemption for {size} bytes reported as 0 lamports")

        balance = await self.node.get_balance(authority)
        if balance < lamports:
            raise InsufficientFunding(required=lamports, available=balance)

        self.lamports = lamports
        tx = self.builder.build_create_buffer_transaction(
            self.buffer,
            lamports,
            payload_len,
            blockhash,
        )
        self.creation_signature = transaction_signature(tx)

        self._check_stopped("before creating the buffer account")

        self._state = UploadState.AWAITING_ACCOUNT_CONFIRMATION
        try:
            await self.node.send_transaction(tx, self.dispatcher.send_config)
        except SubmissionFailed as e:
            raise AccountCreationRejected(f"Account creation was not accepted: {e}") from e

        await self.tracker.wait_for_confirmation(
            self.creation_signature,
            stopped=lambda: self._stopped,
        )

        logger.info(
            "buffer_account_created",
            buffer=str(self.buffer_pubkey),
            lamports=lamports,
            signature=str(self.creation_signature)[:16] + "...",
        )

    async def _write_chunks(self) -> None:
        """Run send/confirm rounds until nothing is pending."""
        blockhash = await self.node.get_latest_blockhash()

        while True:
            self._round += 1
            transactions = self._sign_pending(blockhash)

            self._state = UploadState.SENDING_CHUNKS
            logger.info("round_started", round=self._round, pending=len(transactions))
            await self.dispatcher.dispatch(transactions)

            self._state = UploadState.CONFIRMING_CHUNKS
            await asyncio.sleep(self.config.settle_seconds)
            result = await self.tracker.poll(p.signature for p in self._pending.values())
            self._apply(result)

            logger.info(
                "round_completed",
                round=self._round,
                confirmed=len(self._confirmed),
                pending=len(self._pending),
                max_attempts=self.max_attempts,
            )

            if not self._pending:
                return

            if self.config.max_rounds is not None and self._round >= self.config.max_rounds:
                raise RetryBudgetExhausted(rounds=self._round, pending=len(self._pending))

            self._check_stopped(f"after round {self._round}")

            self._state = UploadState.RETRYING_CHUNKS
            blockhash = await self.node.get_latest_blockhash()

    def _check_stopped(self, where: str) -> None:
        if self._stopped:
            raise UploadCancelled(f"Stopped {where}")

    def _sign_pending(self, blockhash: Hash) -> List[Transaction]:
        """Build fresh write transactions for every pending chunk, in offset order."""
        transactions = []
        for offset in sorted(self._pending):
            pending = self._pending[offset]
            tx = self.builder.build_write_transaction(pending.chunk, self.buffer_pubkey, blockhash)
            pending.signature = transaction_signature(tx)
            pending.attempts += 1
            self._max_attempts = max(self._max_attempts, pending.attempts)
            transactions.append(tx)
        return transactions

    def _apply(self, result: TrackingResult) -> None:
        """Move confirmed chunks out of the pending set."""
        by_signature = {p.signature: offset for offset, p in self._pending.items()}

        for signature in result.confirmed:
            offset = by_signature.get(signature)
            if offset is None:
                logger.debug("stale_confirmation_ignored", signature=str(signature)[:16] + "...")
                continue
            self._confirmed[offset] = self._pending.pop(offset).chunk

        for signature, rejection in result.rejections.items():
            offset = by_signature.get(signature)
            if offset is not None:
                logger.warning(
                    "chunk_rejected",
                    offset=offset,
                    attempts=self._pending[offset].attempts,
                    reason=rejection.reason,
                )

    def get_stats(self) -> dict:
        """Get session statistics."""
        return {
            "state": self._state.value,
            "buffer": str(self.buffer_pubkey),
            "round": self._round,
            "pending": len(self._pending),
            "confirmed": len(self._confirmed),
            "max_attempts": self.max_attempts,
            "lamports": self.lamports,
            "progress_dropped": self.progress.dropped,
            "dispatcher": self.dispatcher.get_stats(),
        }
