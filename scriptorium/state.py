"""Decoders for inscription program account state."""

from __future__ import annotations

from dataclasses import dataclass, field
import struct
from typing import Any, Dict, List, Optional

from solders.pubkey import Pubkey

from .constants import KEY_INSCRIPTION_METADATA, KEY_INSCRIPTION_SHARD, KEY_MINT_INSCRIPTION_METADATA, SHARD_COUNT

DATA_TYPES = {0: "uninitialized", 1: "binary", 2: "json"}
KEY_NAMES = {
    0: "uninitialized",
    KEY_INSCRIPTION_METADATA: "inscription_metadata",
    KEY_MINT_INSCRIPTION_METADATA: "mint_inscription_metadata",
    KEY_INSCRIPTION_SHARD: "inscription_shard",
}


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)
        self.pos = 0

    def take(self, size: int) -> bytes:
        if self.pos + size > len(self.data):
            raise ValueError("account data truncated")
        out = self.data[self.pos : self.pos + size]
        self.pos += size
        return out

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self.take(8))[0]

    def pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self.take(32))

    def string(self) -> str:
        return self.take(self.u32()).decode("utf-8")

    def option(self, read):
        tag = self.u8()
        if tag == 0:
            return None
        if tag != 1:
            raise ValueError(f"invalid option tag {tag}")
        return read()


@dataclass
class InscriptionShard:
    key: int
    bump: int
    shard_number: int
    count: int

    @property
    def rank(self) -> int:
        """Rank that the next inscription backed by this shard will receive."""
        return self.count * SHARD_COUNT + self.shard_number

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": KEY_NAMES.get(self.key, self.key),
            "bump": self.bump,
            "shardNumber": self.shard_number,
            "count": str(self.count),
            "realCount": str(self.rank),
        }


def decode_shard(data: bytes) -> InscriptionShard:
    reader = _Reader(data)
    shard = InscriptionShard(
        key=reader.u8(),
        bump=reader.u8(),
        shard_number=reader.u8(),
        count=reader.u64(),
    )
    if shard.key != KEY_INSCRIPTION_SHARD:
        raise ValueError(f"account is not an inscription shard (key {shard.key})")
    return shard


@dataclass
class AssociatedInscription:
    tag: str
    bump: int
    data_type: int


@dataclass
class InscriptionMetadata:
    key: int
    inscription_account: Pubkey
    bump: int
    data_type: int
    inscription_rank: int
    inscription_bump: Optional[int]
    update_authorities: List[Pubkey] = field(default_factory=list)
    associated_inscriptions: List[AssociatedInscription] = field(default_factory=list)
    mint: Optional[Pubkey] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": KEY_NAMES.get(self.key, self.key),
            "inscriptionAccount": str(self.inscription_account),
            "bump": self.bump,
            "dataType": DATA_TYPES.get(self.data_type, self.data_type),
            "inscriptionRank": str(self.inscription_rank),
            "inscriptionBump": self.inscription_bump,
            "updateAuthorities": [str(key) for key in self.update_authorities],
            "associatedInscriptions": [
                {"tag": item.tag, "bump": item.bump, "dataType": DATA_TYPES.get(item.data_type, item.data_type)}
                for item in self.associated_inscriptions
            ],
            "mint": str(self.mint) if self.mint is not None else None,
        }


def decode_inscription_metadata(data: bytes) -> InscriptionMetadata:
    reader = _Reader(data)
    key = reader.u8()
    if key not in (KEY_INSCRIPTION_METADATA, KEY_MINT_INSCRIPTION_METADATA):
        raise ValueError(f"account is not inscription metadata (key {key})")
    inscription_account = reader.pubkey()
    bump = reader.u8()
    data_type = reader.u8()
    rank = reader.u64()
    inscription_bump = reader.option(reader.u8)
    authorities = [reader.pubkey() for _ in range(reader.u32())]
    associated = []
    for _ in range(reader.u32()):
        associated.append(AssociatedInscription(tag=reader.string(), bump=reader.u8(), data_type=reader.u8()))
    mint = reader.option(reader.pubkey)
    return InscriptionMetadata(
        key=key,
        inscription_account=inscription_account,
        bump=bump,
        data_type=data_type,
        inscription_rank=rank,
        inscription_bump=inscription_bump,
        update_authorities=authorities,
        associated_inscriptions=associated,
        mint=mint,
    )
