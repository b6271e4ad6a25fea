"""CLI entrypoint for scriptorium."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .accounts import (
    check_associated_derivation,
    check_metadata_derivation,
    find_inscription_metadata_pda,
    find_mint_inscription_pda,
    load_keypair,
    parse_pubkey,
)
from .config import COMMITMENTS, Settings, resolve_settings
from .constants import CLUSTER_URLS, SHARD_COUNT
from .driver import InscriptionDriver, RetryPolicy
from .errors import AccountNotFoundError, InscriptionError
from .nft import NftInscriber, gateway_url, network_name
from .remote import InscriptionTarget, SolanaAccountClient
from .shard import ShardAllocator
from .state import decode_inscription_metadata


def _settings(args: argparse.Namespace) -> Settings:
    return resolve_settings(
        rpc_url=args.rpc_url,
        cluster=args.cluster,
        keypair=args.keypair,
        config_path=args.config,
        commitment=args.commitment,
        concurrency=args.concurrency,
        cache_dir=getattr(args, "cache_dir", None),
    )


def _connect(settings: Settings, require_payer: bool = True) -> SolanaAccountClient:
    payer: Optional[Keypair] = None
    if require_payer:
        payer = load_keypair(settings.require_keypair())
    return SolanaAccountClient.connect(settings.rpc_url, payer, commitment=settings.commitment)


def _run(factory: Callable[[], Awaitable[int]]) -> int:
    return asyncio.run(factory())


def _collect_mints(args: argparse.Namespace) -> List[Pubkey]:
    raw: List[str] = list(args.mint or [])
    if args.mints_file:
        path = Path(args.mints_file)
        if not path.exists():
            raise FileNotFoundError(f"Mints file not found: {path}")
        text = path.read_text()
        if path.suffix.lower() == ".json":
            parsed = json.loads(text)
            if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
                raise ValueError("mints file must be a JSON array of base58 strings")
            raw.extend(parsed)
        else:
            raw.extend(line.strip() for line in text.splitlines() if line.strip())
    if not raw:
        raise ValueError("inscribe nft requires --mint or --mints-file")
    seen: set[str] = set()
    mints: List[Pubkey] = []
    for item in raw:
        if item in seen:
            continue
        seen.add(item)
        mints.append(parse_pubkey(item, "mint"))
    return mints


def _prompt_yes_no(question: str) -> bool:
    answer = input(question).strip().lower()
    return answer in {"y", "yes"}


def _write_json(path: str, data: Any) -> None:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(data, indent=2) + "\n")
    print(f"Wrote {out_path}")


def _cmd_inscribe_nft(args: argparse.Namespace) -> int:
    if args.skip_json and args.skip_media:
        raise ValueError("--skip-json and --skip-media together leave nothing to inscribe")
    settings = _settings(args)
    mints = _collect_mints(args)

    async def run() -> int:
        async with _connect(settings) as remote:
            inscriber = NftInscriber(remote, settings.concurrency, Path(settings.cache_dir))
            await inscriber.run(
                mints,
                network_name(settings.rpc_url),
                skip_json=args.skip_json,
                skip_media=args.skip_media,
                confirm=None if args.yes else _prompt_yes_no,
            )
        return 0

    return _run(run)


def _read_payload(path: str) -> bytes:
    payload_path = Path(path)
    if not payload_path.exists():
        raise FileNotFoundError(f"Payload not found: {payload_path}")
    return payload_path.read_bytes()


def _file_target(args: argparse.Namespace) -> InscriptionTarget:
    account = parse_pubkey(args.account, "--account")
    if args.tag:
        if not args.metadata_account:
            raise ValueError("--tag requires --metadata-account")
        metadata_account = parse_pubkey(args.metadata_account, "--metadata-account")
        check_associated_derivation(args.tag, account, metadata_account)
    elif args.metadata_account:
        metadata_account = parse_pubkey(args.metadata_account, "--metadata-account")
        check_metadata_derivation(account, metadata_account)
    else:
        metadata_account, _ = find_inscription_metadata_pda(account)
    return InscriptionTarget(account, metadata_account, args.tag)


def _cmd_inscribe_file(args: argparse.Namespace) -> int:
    settings = _settings(args)
    payload = _read_payload(args.path)
    target = _file_target(args)
    retry = RetryPolicy(max_attempts=args.max_attempts)

    async def run() -> int:
        async with _connect(settings) as remote:
            if await remote.account_valid(target.account, payload):
                print("Payload already inscribed.")
                return 0
            driver = InscriptionDriver(remote, concurrency=settings.concurrency, retry=retry)
            result = await driver.inscribe(target, payload)
            print(
                f"Inscribed {result.payload_size} bytes "
                f"({result.grows_issued} allocations, {result.writes_issued} writes)"
            )
        print(f"Inscription viewable at {gateway_url(network_name(settings.rpc_url), target.account)}")
        return 0

    return _run(run)


def _cmd_verify(args: argparse.Namespace) -> int:
    settings = _settings(args)
    payload = _read_payload(args.path)
    account = parse_pubkey(args.account, "--account")

    async def run() -> int:
        async with _connect(settings, require_payer=False) as remote:
            valid = await remote.account_valid(account, payload)
        if valid:
            print(f"{account} matches {args.path}")
            return 0
        print(f"{account} does not match {args.path}")
        return 1

    return _run(run)


def _cmd_shards_create(args: argparse.Namespace) -> int:
    settings = _settings(args)

    async def run() -> int:
        async with _connect(settings) as remote:
            allocator = ShardAllocator(remote, log=print)
            shards = await allocator.create_all()
        print(f"{len(shards)} shards ready")
        return 0

    return _run(run)


def _cmd_shards_fetch(args: argparse.Namespace) -> int:
    settings = _settings(args)
    shard_numbers = args.shard if args.shard else list(range(SHARD_COUNT))

    async def run() -> int:
        async with _connect(settings, require_payer=False) as remote:
            allocator = ShardAllocator(remote)
            shards = await allocator.describe(shard_numbers, settings.concurrency)
        _write_json(args.output, shards)
        return 0

    return _run(run)


def _cmd_fetch_nft(args: argparse.Namespace) -> int:
    settings = _settings(args)
    mints = _collect_mints(args)

    async def run() -> int:
        async with _connect(settings, require_payer=False) as remote:
            metadata_accounts = []
            for mint in mints:
                inscription_account, _ = find_mint_inscription_pda(mint)
                metadata_account, _ = find_inscription_metadata_pda(inscription_account)
                metadata_accounts.append(metadata_account)
            snapshots = await remote.read_many(metadata_accounts, settings.concurrency)
        records = []
        for address, snapshot in zip(metadata_accounts, snapshots):
            if not snapshot.exists:
                raise AccountNotFoundError(address)
            records.append(decode_inscription_metadata(snapshot.data))
        records.sort(key=lambda item: item.inscription_rank)
        _write_json(args.output, [item.to_dict() for item in records])
        return 0

    return _run(run)


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--rpc-url", help="RPC endpoint (overrides config and Solana CLI config)")
    parser.add_argument(
        "--cluster",
        choices=sorted(CLUSTER_URLS),
        help="Cluster to target when --rpc-url is not given",
    )
    parser.add_argument("-k", "--keypair", help="Path to Solana keypair JSON")
    parser.add_argument("--config", help="Path to scriptorium.toml")
    parser.add_argument("--commitment", choices=COMMITMENTS, help="Commitment level for reads and confirmations")
    parser.add_argument("-c", "--concurrency", type=_positive_int, help="Concurrent remote calls (default 2)")


def _add_mint_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-m", "--mint", action="append", help="Mint address (repeatable)")
    parser.add_argument("--mints-file", help="File of mint addresses (one per line or a JSON array)")


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return number


def _shard_number(value: str) -> int:
    number = int(value)
    if number < 0 or number >= SHARD_COUNT:
        raise argparse.ArgumentTypeError(f"must be within 0..{SHARD_COUNT - 1}")
    return number


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog=os.path.basename(sys.argv[0]))
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_inscribe = sub.add_parser("inscribe", help="Inscribe payloads on-chain")
    p_inscribe_sub = p_inscribe.add_subparsers(dest="inscribe_cmd", required=True)

    p_inscribe_nft = p_inscribe_sub.add_parser("nft", help="Inscribe existing NFTs (JSON and media)")
    _add_connection_args(p_inscribe_nft)
    _add_mint_args(p_inscribe_nft)
    p_inscribe_nft.add_argument("--cache-dir", help="Directory for downloaded JSON/media (default ./cache)")
    p_inscribe_nft.add_argument("--skip-json", action="store_true", help="Skip inscribing the JSON metadata")
    p_inscribe_nft.add_argument("--skip-media", action="store_true", help="Skip inscribing the media file")
    p_inscribe_nft.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p_inscribe_nft.set_defaults(func=_cmd_inscribe_nft)

    p_inscribe_file = p_inscribe_sub.add_parser("file", help="Inscribe a file into an existing inscription account")
    _add_connection_args(p_inscribe_file)
    p_inscribe_file.add_argument("path", help="Payload file")
    p_inscribe_file.add_argument("--account", required=True, help="Inscription account address")
    p_inscribe_file.add_argument("--metadata-account", help="Inscription metadata account (derived when omitted)")
    p_inscribe_file.add_argument("--tag", help="Associated inscription tag (e.g. image)")
    p_inscribe_file.add_argument(
        "--max-attempts",
        type=_positive_int,
        default=8,
        help="Attempts per chunk write before giving up",
    )
    p_inscribe_file.set_defaults(func=_cmd_inscribe_file)

    p_verify = sub.add_parser("verify", help="Check that an account holds exactly a file's bytes")
    _add_connection_args(p_verify)
    p_verify.add_argument("path", help="Expected payload file")
    p_verify.add_argument("--account", required=True, help="Inscription account address")
    p_verify.set_defaults(func=_cmd_verify)

    p_shards = sub.add_parser("shards", help="Inscription shard counters")
    p_shards_sub = p_shards.add_subparsers(dest="shards_cmd", required=True)

    p_shards_create = p_shards_sub.add_parser("create", help=f"Create all {SHARD_COUNT} shard accounts")
    _add_connection_args(p_shards_create)
    p_shards_create.set_defaults(func=_cmd_shards_create)

    p_shards_fetch = p_shards_sub.add_parser("fetch", help="Dump shard counters as JSON")
    _add_connection_args(p_shards_fetch)
    p_shards_fetch.add_argument("-s", "--shard", type=_shard_number, action="append", help="Shard number (repeatable)")
    p_shards_fetch.add_argument("-o", "--output", default="shards.json", help="Output JSON path")
    p_shards_fetch.set_defaults(func=_cmd_shards_fetch)

    p_fetch = sub.add_parser("fetch", help="Fetch inscription metadata")
    p_fetch_sub = p_fetch.add_subparsers(dest="fetch_cmd", required=True)

    p_fetch_nft = p_fetch_sub.add_parser("nft", help="Fetch inscription metadata for NFT mints")
    _add_connection_args(p_fetch_nft)
    _add_mint_args(p_fetch_nft)
    p_fetch_nft.add_argument("-o", "--output", default="inscriptions.json", help="Output JSON path")
    p_fetch_nft.set_defaults(func=_cmd_fetch_nft)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except FileNotFoundError as exc:
        print(str(exc))
        return 1
    except (InscriptionError, ValueError) as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
