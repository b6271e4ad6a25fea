"""Shard counter allocation."""

from __future__ import annotations

import random
from typing import Any, Callable, List, Optional

from solders.pubkey import Pubkey

from .accounts import INSCRIPTION_PROGRAM, find_inscription_shard_pda
from .constants import DEFAULT_CONCURRENCY, SHARD_COUNT
from .errors import AccountNotFoundError, AlreadyInitializedError
from .remote import RemoteAccountClient
from .state import InscriptionShard, decode_shard


class ShardAllocator:
    """Create-or-fetch access to the 32 inscription shard counters."""

    def __init__(
        self,
        remote: RemoteAccountClient,
        program_id: Pubkey = INSCRIPTION_PROGRAM,
        rng: Optional[random.Random] = None,
        log: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.remote = remote
        self.program_id = program_id
        self.rng = rng or random.Random()
        self.log = log or (lambda _msg: None)

    def shard_address(self, shard_number: int) -> Pubkey:
        address, _bump = find_inscription_shard_pda(shard_number, self.program_id)
        return address

    def pick_shard_number(self) -> int:
        return self.rng.randrange(SHARD_COUNT)

    async def fetch_shard(self, shard_number: int) -> Optional[InscriptionShard]:
        snapshot = await self.remote.read(self.shard_address(shard_number))
        if not snapshot.exists or not snapshot.data:
            return None
        return decode_shard(snapshot.data)

    async def ensure_shard(self, shard_number: Optional[int] = None) -> Pubkey:
        if shard_number is None:
            shard_number = self.pick_shard_number()
        address = self.shard_address(shard_number)
        if await self.fetch_shard(shard_number) is not None:
            return address

        self.log(f"Creating shard {shard_number}...")
        try:
            await self.remote.create_shard(address, shard_number)
        except AlreadyInitializedError:
            self.log(f"Shard {shard_number} was created concurrently.")

        if await self.fetch_shard(shard_number) is None:
            raise AccountNotFoundError(address)
        return address

    async def create_all(self) -> List[Pubkey]:
        created: List[Pubkey] = []
        for shard_number in range(SHARD_COUNT):
            if await self.fetch_shard(shard_number) is not None:
                self.log(f"Shard {shard_number} already exists.")
                created.append(self.shard_address(shard_number))
                continue
            created.append(await self.ensure_shard(shard_number))
        return created

    async def describe(self, shard_numbers: List[int], concurrency: int = DEFAULT_CONCURRENCY) -> List[dict[str, Any]]:
        addresses = [self.shard_address(shard_number) for shard_number in shard_numbers]
        snapshots = await self.remote.read_many(addresses, concurrency)
        out: List[dict[str, Any]] = []
        for address, snapshot in zip(addresses, snapshots):
            if not snapshot.exists or not snapshot.data:
                raise AccountNotFoundError(address)
            out.append(decode_shard(snapshot.data).to_dict())
        return out
