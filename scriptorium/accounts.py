"""Address derivation and keypair helpers for inscription accounts."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .constants import (
    INSCRIPTION_PROGRAM_ID,
    MAX_TAG_LEN,
    SEED_ASSOCIATION,
    SEED_PREFIX,
    SEED_SHARD,
    SEED_TOKEN_METADATA,
    SHARD_COUNT,
    TOKEN_METADATA_PROGRAM_ID,
)
from .errors import DerivationError

INSCRIPTION_PROGRAM = Pubkey.from_string(INSCRIPTION_PROGRAM_ID)
TOKEN_METADATA_PROGRAM = Pubkey.from_string(TOKEN_METADATA_PROGRAM_ID)


def load_keypair(path: str | Path) -> Keypair:
    keypair_path = Path(path).expanduser()
    if not keypair_path.exists():
        raise FileNotFoundError(f"Keypair not found: {keypair_path}")
    try:
        raw = json.loads(keypair_path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Keypair file is not valid JSON: {keypair_path}") from exc
    if not isinstance(raw, list) or len(raw) != 64:
        raise ValueError(f"Keypair file must hold a 64-byte array: {keypair_path}")
    return Keypair.from_bytes(bytes(raw))


def parse_pubkey(value: str, name: str = "address") -> Pubkey:
    try:
        return Pubkey.from_string(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} is not a valid base58 public key: {value}") from exc


def validate_tag(tag: Optional[str]) -> Optional[str]:
    if tag is None:
        return None
    if not tag:
        raise ValueError("associated tag cannot be blank")
    if len(tag.encode("utf-8")) > MAX_TAG_LEN:
        raise ValueError(f"associated tag must be at most {MAX_TAG_LEN} bytes")
    return tag


def find_inscription_metadata_pda(
    inscription_account: Pubkey,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [SEED_PREFIX, bytes(program_id), bytes(inscription_account)],
        program_id,
    )


def find_mint_inscription_pda(mint: Pubkey, program_id: Pubkey = INSCRIPTION_PROGRAM) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [SEED_PREFIX, bytes(program_id), bytes(mint)],
        program_id,
    )


def find_associated_inscription_pda(
    tag: str,
    inscription_metadata_account: Pubkey,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> Tuple[Pubkey, int]:
    validate_tag(tag)
    return Pubkey.find_program_address(
        [SEED_PREFIX, SEED_ASSOCIATION, tag.encode("utf-8"), bytes(inscription_metadata_account)],
        program_id,
    )


def find_inscription_shard_pda(shard_number: int, program_id: Pubkey = INSCRIPTION_PROGRAM) -> Tuple[Pubkey, int]:
    if shard_number < 0 or shard_number >= SHARD_COUNT:
        raise ValueError(f"shard number must be within 0..{SHARD_COUNT - 1}")
    return Pubkey.find_program_address(
        [SEED_PREFIX, SEED_SHARD, bytes(program_id), bytes([shard_number])],
        program_id,
    )


def find_token_metadata_pda(mint: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [SEED_TOKEN_METADATA, bytes(TOKEN_METADATA_PROGRAM), bytes(mint)],
        TOKEN_METADATA_PROGRAM,
    )


def check_metadata_derivation(
    inscription_account: Pubkey,
    metadata_account: Pubkey,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> None:
    expected, _bump = find_inscription_metadata_pda(inscription_account, program_id)
    if expected != metadata_account:
        raise DerivationError(
            f"metadata account {metadata_account} does not match derived address {expected} "
            f"for inscription {inscription_account}"
        )


def check_associated_derivation(
    tag: str,
    inscription_account: Pubkey,
    metadata_account: Pubkey,
    program_id: Pubkey = INSCRIPTION_PROGRAM,
) -> None:
    expected, _bump = find_associated_inscription_pda(tag, metadata_account, program_id)
    if expected != inscription_account:
        raise DerivationError(
            f"inscription account {inscription_account} does not match derived address {expected} "
            f"for tag '{tag}'"
        )
