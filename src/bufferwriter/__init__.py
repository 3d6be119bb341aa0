"""
Solana Buffer Writer

Uploads an arbitrary payload into a Solana buffer account by splitting it into
chunks, submitting one signed write transaction per chunk concurrently, and
re-signing and resending whatever has not confirmed until every chunk has landed.
"""

__version__ = "0.1.0"

from bufferwriter.core.session import BufferWriter, UploadState
from bufferwriter.core.progress import Completed, Failed, Idle, ProgressReporter, Sending

__all__ = [
    "BufferWriter",
    "UploadState",
    "Completed",
    "Failed",
    "Idle",
    "ProgressReporter",
    "Sending",
]
