"""
Dispatcher - hands signed transactions to the network.

Submissions run as independent tasks and are never awaited by the round that
spawned them; whether a transaction landed is decided by status polling.
"""

import asyncio
from typing import Dict, Optional, Sequence, Set

import structlog

from solders.transaction import Transaction

from bufferwriter.config import WriterConfig, get_config
from bufferwriter.core.progress import ProgressReporter, Sending
from bufferwriter.errors import UploadCancelled, WriterError
from bufferwriter.node.interface import LedgerInterface, SendConfig

logger = structlog.get_logger(__name__)


class Dispatcher:
    """
    Submits transactions with a fixed delay between them.

    Each submission is a child task limited by a semaphore of
    `max_inflight_sends`. Submission failures are logged and counted but
    otherwise ignored.
    """

    def __init__(
        self,
        node: LedgerInterface,
        reporter: ProgressReporter,
        config: Optional[WriterConfig] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            node: Ledger interface used for submission
            reporter: Progress channel receiving Sending events
            config: Writer configuration
        """
        self.node = node
        self.reporter = reporter
        self.config = config or get_config()

        self.send_config = SendConfig(
            skip_preflight=self.config.skip_preflight,
            preflight_commitment=self.config.preflight_commitment,
            encoding=self.config.encoding,
            max_retries=self.config.send_max_retries,
        )

        self._semaphore = asyncio.Semaphore(self.config.max_inflight_sends)
        self._tasks: Set[asyncio.Task] = set()
        self._stopped = False

        # Statistics
        self._stats: Dict[str, int] = {
            "submitted": 0,
            "accepted": 0,
            "failed": 0,
        }

    @property
    def in_flight(self) -> int:
        """Submissions spawned but not yet finished."""
        return len(self._tasks)

    def stop(self) -> None:
        """Refuse further submissions; the current dispatch raises at its next delay point."""
        self._stopped = True

    async def dispatch(self, transactions: Sequence[Transaction]) -> int:
        """
        Submit every transaction in order.

        Emits Sending(sent, total) before each hand-off and sleeps
        `send_delay_ms` after it.

        Args:
            transactions: Signed transactions for this round

        Returns:
            Number of transactions handed off

        Raises:
            UploadCancelled: If stop() was called
        """
        total = len(transactions)
        delay = self.config.send_delay_ms / 1000
        sent = 0

        for tx in transactions:
            if self._stopped:
                raise UploadCancelled(f"Stopped after dispatching {sent} of {total}")

            sent += 1
            self.reporter.emit(Sending(sent=sent, total=total))

            task = asyncio.create_task(self._submit(tx))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

            await asyncio.sleep(delay)

        logger.debug("transactions_dispatched", total=total, in_flight=self.in_flight)
        return sent

    async def _submit(self, tx: Transaction) -> None:
        """Send one transaction; the outcome is only logged."""
        async with self._semaphore:
            self._stats["submitted"] += 1
            signature = str(tx.signatures[0])[:16] + "..."

            try:
                await self.node.send_transaction(tx, self.send_config)
                self._stats["accepted"] += 1
            except WriterError as e:
                self._stats["failed"] += 1
                logger.debug("submission_failed", signature=signature, error=str(e))
            except Exception as e:
                self._stats["failed"] += 1
                logger.error(
                    "submission_error",
                    signature=signature,
                    error_type=type(e).__name__,
                    error=str(e),
                )

    async def aclose(self) -> None:
        """Cancel submissions still in flight."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("dispatcher_closed", cancelled=len(tasks))

    def get_stats(self) -> Dict[str, int]:
        """Get submission statistics."""
        return {**self._stats, "in_flight": self.in_flight}
