"""Chunking helpers for inscription payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .constants import CHUNK_SIZE


@dataclass(frozen=True)
class Chunk:
    index: int
    offset: int
    data: bytes

    @property
    def end(self) -> int:
        return self.offset + len(self.data)


def split_chunks(data: bytes, chunk_size: int = CHUNK_SIZE) -> List[Chunk]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    view = bytes(data)
    return [
        Chunk(index=idx, offset=offset, data=view[offset : offset + chunk_size])
        for idx, offset in enumerate(range(0, len(view), chunk_size))
    ]


def diff_chunks(desired: Sequence[Chunk], actual: Sequence[Chunk]) -> List[Chunk]:
    """Return the desired chunks that the actual sequence does not already hold.

    Indices past the end of ``actual`` always count as different, so an
    account that is still shorter than the payload reports its tail as
    pending rather than being compared against a misaligned sequence.
    """
    pending: List[Chunk] = []
    for chunk in desired:
        if chunk.index >= len(actual) or actual[chunk.index].data != chunk.data:
            pending.append(chunk)
    return pending


@dataclass
class ChunkSet:
    payload: bytes
    chunk_size: int = CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self.payload = bytes(self.payload)

    @property
    def chunks(self) -> List[Chunk]:
        return split_chunks(self.payload, self.chunk_size)

    def __len__(self) -> int:
        return -(-len(self.payload) // self.chunk_size)

    def diff(self, account_data: bytes) -> List[Chunk]:
        # Only the payload-length prefix of the account is meaningful.
        prefix = bytes(account_data[: len(self.payload)])
        return diff_chunks(self.chunks, split_chunks(prefix, self.chunk_size))


def pending_bytes(chunks: Sequence[Chunk]) -> int:
    return sum(len(chunk.data) for chunk in chunks)
