"""Chunked inscription driver.

``InscriptionDriver.inscribe`` takes a target account and a payload and
drives the account to hold the payload byte for byte. It runs in two
phases:

SIZING
    Measure the account, issue as many ``grow`` calls as the remaining
    shortfall needs (each call adds at most ``grow_increment`` bytes), then
    measure again. Failed grows are dropped; the next round re-derives the
    remaining need from the account itself.

WRITING
    Split payload and account into chunks, write every chunk that differs,
    then read the account back and diff again until nothing differs. Each
    chunk write is retried with exponential backoff because there is no
    other way to get those bytes in.

Calls inside a round run concurrently up to ``concurrency``; rounds run one
after another. Because every round starts from a fresh read, calling
``inscribe`` again on a converged account performs no grows or writes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from .chunk import Chunk, ChunkSet, pending_bytes
from .constants import CHUNK_SIZE, DEFAULT_CONCURRENCY, MAX_GROW_INCREMENT
from .errors import (
    AccountNotFoundError,
    AllocationStalledError,
    InscriptionCancelled,
    TransientRemoteError,
    WriteFailedError,
)
from .remote import InscriptionTarget, RemoteAccountClient


class Phase(str, Enum):
    SIZING = "sizing"
    WRITING = "writing"
    CONVERGED = "converged"
    FAILED = "failed"


@dataclass
class RetryPolicy:
    max_attempts: int = 8
    base_delay: float = 0.5
    max_delay: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


@dataclass
class InscriptionResult:
    target: InscriptionTarget
    payload_size: int
    phase: Phase = Phase.SIZING
    initial_length: int = 0
    final_length: int = 0
    sizing_rounds: int = 0
    writing_rounds: int = 0
    grows_issued: int = 0
    grows_failed: int = 0
    writes_issued: int = 0
    writes_failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.phase == Phase.CONVERGED


def needed_grows(payload_size: int, current_length: int, grow_increment: int = MAX_GROW_INCREMENT) -> int:
    shortfall = payload_size - current_length
    if shortfall <= 0:
        return 0
    return -(-shortfall // grow_increment)


class InscriptionDriver:
    def __init__(
        self,
        remote: RemoteAccountClient,
        concurrency: int = DEFAULT_CONCURRENCY,
        chunk_size: int = CHUNK_SIZE,
        grow_increment: int = MAX_GROW_INCREMENT,
        retry: Optional[RetryPolicy] = None,
        max_stalled_rounds: int = 8,
        max_verify_rounds: int = 16,
        cancel_event: Optional[asyncio.Event] = None,
        log: Optional[Callable[[str], None]] = print,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if grow_increment <= 0:
            raise ValueError("grow_increment must be > 0")
        self.remote = remote
        self.concurrency = concurrency
        self.chunk_size = chunk_size
        self.grow_increment = grow_increment
        self.retry = retry or RetryPolicy()
        self.max_stalled_rounds = max_stalled_rounds
        self.max_verify_rounds = max_verify_rounds
        self.cancel_event = cancel_event
        self.log = log or (lambda _msg: None)
        self.sleep = sleep
        self.last_result: Optional[InscriptionResult] = None

    async def inscribe(self, target: InscriptionTarget, payload: bytes) -> InscriptionResult:
        payload = bytes(payload)
        result = InscriptionResult(target=target, payload_size=len(payload))
        self.last_result = result
        limiter = asyncio.Semaphore(self.concurrency)
        try:
            await self._size(target, payload, result, limiter)
            result.phase = Phase.WRITING
            await self._write(target, payload, result, limiter)
        except BaseException:
            result.phase = Phase.FAILED
            raise
        result.phase = Phase.CONVERGED
        return result

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise InscriptionCancelled("inscription cancelled")

    async def _gather(self, calls: Iterable[Awaitable[Any]]) -> List[Any]:
        # Let the whole batch settle before surfacing the first failure.
        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return outcomes

    async def _size(
        self,
        target: InscriptionTarget,
        payload: bytes,
        result: InscriptionResult,
        limiter: asyncio.Semaphore,
    ) -> None:
        length = await self.remote.account_length(target.account)
        result.initial_length = length
        result.final_length = length
        self.log(f"Account size: {length}")
        self.log(f"Bytes length: {len(payload)}")
        pending = needed_grows(len(payload), length, self.grow_increment)
        if pending <= 0:
            return

        self.log("Allocating Space...")
        stalled = 0
        while pending > 0:
            self._check_cancelled()
            result.sizing_rounds += 1
            await self._gather(self._grow_once(target, len(payload), result, limiter) for _ in range(pending))

            new_length = await self.remote.account_length(target.account)
            if new_length <= length:
                stalled += 1
                if stalled > self.max_stalled_rounds:
                    raise AllocationStalledError(
                        f"account {target.account} stuck at {new_length} of {len(payload)} bytes "
                        f"after {result.sizing_rounds} allocation rounds"
                    )
            else:
                stalled = 0
            length = max(length, new_length)
            result.final_length = length
            self.log(f"Allocated {min(length, len(payload))}/{len(payload)} bytes")
            pending = needed_grows(len(payload), length, self.grow_increment)

    async def _grow_once(
        self,
        target: InscriptionTarget,
        target_size: int,
        result: InscriptionResult,
        limiter: asyncio.Semaphore,
    ) -> bool:
        async with limiter:
            result.grows_issued += 1
            try:
                await self.remote.grow(target, target_size)
            except TransientRemoteError as exc:
                result.grows_failed += 1
                result.errors.append(str(exc))
                self.log(f"Allocate failed: {exc}")
                return False
        return True

    async def _read_pending(self, target: InscriptionTarget, chunk_set: ChunkSet) -> List[Chunk]:
        snapshot = await self.remote.read(target.account)
        if not snapshot.exists:
            raise AccountNotFoundError(target.account)
        return chunk_set.diff(snapshot.data)

    async def _write(
        self,
        target: InscriptionTarget,
        payload: bytes,
        result: InscriptionResult,
        limiter: asyncio.Semaphore,
    ) -> None:
        chunk_set = ChunkSet(payload, self.chunk_size)
        to_write = await self._read_pending(target, chunk_set)
        if not to_write:
            return

        self.log("Inscribing Data...")
        while to_write:
            self._check_cancelled()
            if result.writing_rounds >= self.max_verify_rounds:
                raise WriteFailedError(
                    f"account {target.account} still differs in {len(to_write)} chunks "
                    f"after {result.writing_rounds} verification rounds"
                )
            result.writing_rounds += 1
            self.log(f"Writing {len(to_write)} chunks ({pending_bytes(to_write)} bytes)...")
            await self._gather(self._write_chunk(target, chunk, result, limiter) for chunk in to_write)

            self.log("Verifying Inscription...")
            to_write = await self._read_pending(target, chunk_set)
            if to_write:
                self.log("Verification failed, retrying...")

        snapshot = await self.remote.read(target.account)
        result.final_length = snapshot.length

    async def _write_chunk(
        self,
        target: InscriptionTarget,
        chunk: Chunk,
        result: InscriptionResult,
        limiter: asyncio.Semaphore,
    ) -> None:
        for attempt in range(1, self.retry.max_attempts + 1):
            async with limiter:
                result.writes_issued += 1
                try:
                    await self.remote.write_at(target, chunk.offset, chunk.data)
                    return
                except TransientRemoteError as exc:
                    result.writes_failed += 1
                    result.errors.append(str(exc))
                    self.log(f"Write at offset {chunk.offset} failed (attempt {attempt}): {exc}")
                    if attempt == self.retry.max_attempts:
                        raise WriteFailedError(
                            f"write at offset {chunk.offset} failed after {attempt} attempts: {exc}",
                            offset=chunk.offset,
                        ) from exc
            await self.sleep(self.retry.delay(attempt))
