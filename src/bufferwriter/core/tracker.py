"""
Confirmation Tracker - establishes which transactions actually landed.

Polls signature statuses in batches no larger than the RPC ceiling and sorts
each signature into confirmed or retry-eligible.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, TypeVar

import structlog

from solders.signature import Signature

from bufferwriter.config import MAX_SIGNATURE_STATUS_BATCH, WriterConfig, get_config
from bufferwriter.errors import (
    AccountCreationRejected,
    ChunkSendRejected,
    StatusQueryFailed,
    UploadCancelled,
)
from bufferwriter.node.interface import ConfirmationLevel, LedgerInterface, SignatureStatus

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ChunkState(str, Enum):
    """Classification of one polled signature."""
    UNKNOWN = "unknown"           # No status yet
    PROCESSED = "processed"       # Landed but not yet safe
    CONFIRMED = "confirmed"       # Confirmed or finalized
    ERRORED = "errored"           # Landed with an error


def classify(status: Optional[SignatureStatus]) -> ChunkState:
    """Map a reported status to a ChunkState."""
    if status is None:
        return ChunkState.UNKNOWN
    if status.is_errored:
        return ChunkState.ERRORED
    if status.confirmation_level in (ConfirmationLevel.CONFIRMED, ConfirmationLevel.FINALIZED):
        return ChunkState.CONFIRMED
    if status.confirmation_level == ConfirmationLevel.PROCESSED:
        return ChunkState.PROCESSED
    return ChunkState.UNKNOWN


def batched(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive lists of at most `size` elements."""
    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class TrackingResult:
    """Outcome of polling a set of signatures."""
    confirmed: Set[Signature] = field(default_factory=set)
    retry: Set[Signature] = field(default_factory=set)
    errored: Set[Signature] = field(default_factory=set)
    rejections: Dict[Signature, ChunkSendRejected] = field(default_factory=dict)

    def merge(self, other: "TrackingResult") -> None:
        self.confirmed |= other.confirmed
        self.retry |= other.retry
        self.errored |= other.errored
        self.rejections.update(other.rejections)


class ConfirmationTracker:
    """
    Polls signature statuses for a round of submissions.

    A batch is re-polled up to `status_poll_attempts` times. Confirmed and
    errored signatures leave the batch as soon as they are seen; whatever is
    still unknown or only processed after the last attempt is conceded to the
    next round.
    """

    def __init__(
        self,
        node: LedgerInterface,
        config: Optional[WriterConfig] = None,
    ):
        """
        Initialize the tracker.

        Args:
            node: Ledger interface used for status queries
            config: Writer configuration
        """
        self.node = node
        self.config = config or get_config()

    @property
    def batch_size(self) -> int:
        return min(self.config.status_batch_size, MAX_SIGNATURE_STATUS_BATCH)

    async def poll(self, signatures: Iterable[Signature]) -> TrackingResult:
        """
        Poll every signature and partition them.

        Args:
            signatures: Signatures of the current round

        Returns:
            TrackingResult; every input signature is in exactly one of
            confirmed or retry
        """
        batches = batched(list(signatures), self.batch_size)
        result = TrackingResult()

        for batch_result in await asyncio.gather(*(self._poll_batch(b) for b in batches)):
            result.merge(batch_result)

        logger.info(
            "signatures_polled",
            batches=len(batches),
            confirmed=len(result.confirmed),
            errored=len(result.errored),
            retry=len(result.retry),
        )
        return result

    async def _poll_batch(self, batch: List[Signature]) -> TrackingResult:
        """Poll one batch until it settles or attempts run out."""
        result = TrackingResult()
        pending = list(batch)
        attempts = self.config.status_poll_attempts
        interval = self.config.status_poll_interval_ms / 1000

        for attempt in range(attempts):
            statuses = await self._query(pending)

            if statuses is not None:
                unsettled = []
                for signature, status in zip(pending, statuses):
                    state = classify(status)
                    if state == ChunkState.CONFIRMED:
                        result.confirmed.add(signature)
                    elif state == ChunkState.ERRORED:
                        result.errored.add(signature)
                        result.rejections[signature] = ChunkSendRejected(
                            f"Chunk write {signature} failed: {status.error}",
                            reason=status.error,
                        )
                        logger.debug(
                            "chunk_write_errored",
                            signature=str(signature)[:16] + "...",
                            error=status.error,
                        )
                    else:
                        unsettled.append(signature)
                pending = unsettled

            if not pending:
                break

            if attempt < attempts - 1:
                await asyncio.sleep(interval)

        result.retry = result.errored | set(pending)
        return result

    async def _query(self, signatures: List[Signature]) -> Optional[List[Optional[SignatureStatus]]]:
        """One status query; None when it failed and the attempt is spent."""
        try:
            statuses = await self.node.get_signature_statuses(signatures)
        except StatusQueryFailed as e:
            logger.warning("status_query_failed", count=len(signatures), error=str(e))
            return None

        if len(statuses) != len(signatures):
            logger.warning(
                "status_query_length_mismatch",
                expected=len(signatures),
                received=len(statuses),
            )
            return None

        return statuses

    async def wait_for_confirmation(
        self,
        signature: Signature,
        timeout_seconds: Optional[float] = None,
        interval_ms: Optional[int] = None,
        stopped: Optional[Callable[[], bool]] = None,
    ) -> SignatureStatus:
        """
        Wait until a single transaction is confirmed.

        Used for the account creation transaction, which must land before
        any chunk can be written.

        `stopped` is checked before every poll.

        Raises:
            AccountCreationRejected: If the transaction errored or was not
                confirmed within the timeout
            UploadCancelled: If `stopped` returns True
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.config.account_confirm_timeout_seconds
        interval = (interval_ms if interval_ms is not None else self.config.account_confirm_interval_ms) / 1000

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if stopped is not None and stopped():
                raise UploadCancelled("Stopped while waiting for account creation")

            statuses = await self._query([signature])
            status = statuses[0] if statuses else None
            state = classify(status)

            if state == ChunkState.ERRORED:
                raise AccountCreationRejected(
                    f"Account creation transaction failed: {status.error}",
                    reason=status.error,
                )

            if state == ChunkState.CONFIRMED:
                return status

            if loop.time() >= deadline:
                raise AccountCreationRejected(
                    f"Account creation not confirmed within {timeout}s (last state: {state.value})",
                    reason="timeout",
                )

            await asyncio.sleep(interval)
