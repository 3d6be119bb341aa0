"""
Core writer components.

This module contains payload chunking, progress reporting, submission,
confirmation tracking and the session that ties them together.
"""

from bufferwriter.core.chunk import Chunk, reassemble, split_payload
from bufferwriter.core.progress import (
    Completed,
    Failed,
    Idle,
    ProgressEvent,
    ProgressReporter,
    Sending,
)
from bufferwriter.core.dispatcher import Dispatcher
from bufferwriter.core.tracker import ChunkState, ConfirmationTracker, TrackingResult
from bufferwriter.core.session import BufferWriter, PendingChunk, UploadState

__all__ = [
    "Chunk",
    "reassemble",
    "split_payload",
    "Completed",
    "Failed",
    "Idle",
    "ProgressEvent",
    "ProgressReporter",
    "Sending",
    "Dispatcher",
    "ChunkState",
    "ConfirmationTracker",
    "TrackingResult",
    "BufferWriter",
    "PendingChunk",
    "UploadState",
]
