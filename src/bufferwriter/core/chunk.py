"""
Chunk model.

Splits a payload into offset-tagged segments sized to fit one transaction.
"""

from dataclasses import dataclass
from typing import Iterable, List


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous slice of the payload.

    Attributes:
        offset: Position of the first byte within the payload
        data: The bytes written at that position
    """

    offset: int
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def end(self) -> int:
        return self.offset + len(self.data)

    def __repr__(self) -> str:
        return f"Chunk(offset={self.offset}, size={self.size})"


def split_payload(payload: bytes, chunk_size: int) -> List[Chunk]:
    """
    Split a payload into chunks of `chunk_size` bytes.

    The last chunk holds whatever remains and may be shorter. An empty
    payload yields no chunks.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    return [
        Chunk(offset=offset, data=bytes(payload[offset:offset + chunk_size]))
        for offset in range(0, len(payload), chunk_size)
    ]


def reassemble(chunks: Iterable[Chunk]) -> bytes:
    """Concatenate chunks in offset order."""
    return b"".join(chunk.data for chunk in sorted(chunks, key=lambda c: c.offset))
