"""Instruction builders for the inscription program.

Argument layouts follow the program's Borsh encoding: integers are
little-endian, strings and byte vectors carry a u32 length prefix and
``Option`` values a one byte tag.
"""

from __future__ import annotations

import struct
from typing import List, Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .accounts import INSCRIPTION_PROGRAM, validate_tag
from .constants import (
    CHUNK_SIZE,
    IX_ALLOCATE,
    IX_CREATE_SHARD,
    IX_INITIALIZE_ASSOCIATED_INSCRIPTION,
    IX_INITIALIZE_FROM_MINT,
    IX_WRITE_DATA,
    SHARD_COUNT,
    SYSTEM_PROGRAM_ID,
)

SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ID)


def encode_u8(value: int) -> bytes:
    return struct.pack("<B", value)


def encode_u64(value: int) -> bytes:
    if value < 0 or value > (2**64 - 1):
        raise ValueError("value must be within u64 range")
    return struct.pack("<Q", value)


def encode_bytes(value: bytes) -> bytes:
    return struct.pack("<I", len(value)) + bytes(value)


def encode_string(value: str) -> bytes:
    return encode_bytes(value.encode("utf-8"))


def encode_option_string(value: Optional[str]) -> bytes:
    if value is None:
        return b"\x00"
    return b"\x01" + encode_string(value)


def _optional_signer(authority: Optional[Pubkey], program_id: Pubkey) -> AccountMeta:
    # Omitted optional accounts are passed as the program ID.
    if authority is None:
        return AccountMeta(program_id, False, False)
    return AccountMeta(authority, True, False)


def allocate(
    inscription_account: Pubkey,
    metadata_account: Pubkey,
    payer: Pubkey,
    target_size: int,
    associated_tag: Optional[str] = None,
    authority: Optional[Pubkey] = None,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> Instruction:
    validate_tag(associated_tag)
    data = encode_u8(IX_ALLOCATE) + encode_option_string(associated_tag) + encode_u64(target_size)
    metas = [
        AccountMeta(inscription_account, False, True),
        AccountMeta(metadata_account, False, True),
        AccountMeta(payer, True, True),
        _optional_signer(authority, program_id),
        AccountMeta(SYSTEM_PROGRAM, False, False),
    ]
    return Instruction(program_id, data, metas)


def write_data(
    inscription_account: Pubkey,
    metadata_account: Pubkey,
    payer: Pubkey,
    offset: int,
    value: bytes,
    associated_tag: Optional[str] = None,
    authority: Optional[Pubkey] = None,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> Instruction:
    validate_tag(associated_tag)
    if len(value) > CHUNK_SIZE:
        raise ValueError(f"write value must be at most {CHUNK_SIZE} bytes")
    data = (
        encode_u8(IX_WRITE_DATA)
        + encode_option_string(associated_tag)
        + encode_u64(offset)
        + encode_bytes(value)
    )
    metas = [
        AccountMeta(inscription_account, False, True),
        AccountMeta(metadata_account, False, True),
        AccountMeta(payer, True, True),
        _optional_signer(authority, program_id),
        AccountMeta(SYSTEM_PROGRAM, False, False),
    ]
    return Instruction(program_id, data, metas)


def create_shard(
    shard_account: Pubkey,
    payer: Pubkey,
    shard_number: int,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> Instruction:
    if shard_number < 0 or shard_number >= SHARD_COUNT:
        raise ValueError(f"shard number must be within 0..{SHARD_COUNT - 1}")
    data = encode_u8(IX_CREATE_SHARD) + encode_u8(shard_number)
    metas = [
        AccountMeta(shard_account, False, True),
        AccountMeta(payer, True, True),
        AccountMeta(SYSTEM_PROGRAM, False, False),
    ]
    return Instruction(program_id, data, metas)


def initialize_from_mint(
    mint_inscription_account: Pubkey,
    metadata_account: Pubkey,
    mint: Pubkey,
    token_metadata_account: Pubkey,
    shard_account: Pubkey,
    payer: Pubkey,
    authority: Optional[Pubkey] = None,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> Instruction:
    metas = [
        AccountMeta(mint_inscription_account, False, True),
        AccountMeta(metadata_account, False, True),
        AccountMeta(mint, False, False),
        AccountMeta(token_metadata_account, False, False),
        AccountMeta(shard_account, False, True),
        AccountMeta(payer, True, True),
        _optional_signer(authority, program_id),
        AccountMeta(SYSTEM_PROGRAM, False, False),
    ]
    return Instruction(program_id, encode_u8(IX_INITIALIZE_FROM_MINT), metas)


def initialize_associated_inscription(
    inscription_account: Pubkey,
    metadata_account: Pubkey,
    associated_inscription_account: Pubkey,
    payer: Pubkey,
    association_tag: str,
    authority: Optional[Pubkey] = None,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> Instruction:
    validate_tag(association_tag)
    data = encode_u8(IX_INITIALIZE_ASSOCIATED_INSCRIPTION) + encode_string(association_tag)
    metas: List[AccountMeta] = [
        AccountMeta(inscription_account, False, False),
        AccountMeta(metadata_account, False, True),
        AccountMeta(associated_inscription_account, False, True),
        AccountMeta(payer, True, True),
        _optional_signer(authority, program_id),
        AccountMeta(SYSTEM_PROGRAM, False, False),
    ]
    return Instruction(program_id, data, metas)
