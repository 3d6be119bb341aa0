"""
Error taxonomy for the Buffer Writer.

Every failure the pipeline can hit is one of these types. Transient errors are
recovered inside a session (the affected chunks go back into the next round);
everything else aborts the session.
"""

from typing import Optional


class WriterError(Exception):
    """Base class for all Buffer Writer errors."""

    transient = False

    def __init__(self, message: str = "", *, reason: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__)
        self.reason = reason


class InvalidPayloadLength(WriterError):
    """Payload is empty."""


class FundingQueryFailed(WriterError):
    """Rent-exemption query for the buffer account failed."""


class ZeroFunding(FundingQueryFailed):
    """Rent-exemption query reported zero lamports."""


class InsufficientFunding(WriterError):
    """Authority balance does not cover the buffer account rent."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient funding: {required} lamports required, {available} available"
        )
        self.required = required
        self.available = available


class AnchorFetchFailed(WriterError):
    """Could not fetch a recent blockhash."""


class InstructionBuildError(WriterError):
    """Transaction could not be built."""


class AccountCreationRejected(WriterError):
    """Buffer account creation transaction failed."""


class ChunkSendRejected(WriterError):
    """Network reported an error for a chunk write."""

    transient = True


class StatusQueryFailed(WriterError):
    """Signature status query failed."""

    transient = True


class SubmissionFailed(WriterError):
    """A single transaction submission failed."""

    transient = True


class RpcTransportError(WriterError):
    """Lower-level RPC transport failure."""


class RetryBudgetExhausted(WriterError):
    """Chunks were still pending after the maximum number of rounds."""

    def __init__(self, rounds: int, pending: int):
        super().__init__(
            f"Retry budget exhausted after {rounds} rounds with {pending} chunks pending"
        )
        self.rounds = rounds
        self.pending = pending


class UploadCancelled(WriterError):
    """Upload was stopped before completion."""


def is_transient(error: BaseException) -> bool:
    """Check whether an error is recovered locally rather than aborting the session."""
    return isinstance(error, WriterError) and error.transient
