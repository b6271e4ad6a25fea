"""NFT inscription workflow: initialize accounts, then inscribe JSON and media."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from solders.pubkey import Pubkey

from . import instructions
from .accounts import (
    find_associated_inscription_pda,
    find_inscription_metadata_pda,
    find_mint_inscription_pda,
    find_token_metadata_pda,
)
from .constants import IMAGE_TAG, INSCRIPTION_GATEWAY
from .driver import InscriptionDriver
from .errors import AccountNotFoundError, AlreadyInitializedError, AuthorityError
from .metadata import NftMetadata, TokenMetadata, decode_token_metadata, load_json_payload, load_media_payload
from .remote import InscriptionTarget, SolanaAccountClient
from .shard import ShardAllocator


@dataclass
class NftPlan:
    mint: Pubkey
    token_metadata: TokenMetadata
    inscription_account: Pubkey
    metadata_account: Pubkey
    image_account: Pubkey
    json_bytes: bytes = b""
    media_bytes: bytes = b""

    @property
    def json_target(self) -> InscriptionTarget:
        return InscriptionTarget(self.inscription_account, self.metadata_account)

    @property
    def media_target(self) -> InscriptionTarget:
        return InscriptionTarget(self.image_account, self.metadata_account, IMAGE_TAG)


def plan_addresses(mint: Pubkey, token_metadata: TokenMetadata) -> NftPlan:
    inscription_account, _ = find_mint_inscription_pda(mint)
    metadata_account, _ = find_inscription_metadata_pda(inscription_account)
    image_account, _ = find_associated_inscription_pda(IMAGE_TAG, metadata_account)
    return NftPlan(
        mint=mint,
        token_metadata=token_metadata,
        inscription_account=inscription_account,
        metadata_account=metadata_account,
        image_account=image_account,
    )


def gateway_url(network: str, account: Pubkey) -> str:
    return f"{INSCRIPTION_GATEWAY}{network}/{account}"


def network_name(rpc_url: str) -> str:
    lowered = rpc_url.lower()
    if "devnet" in lowered:
        return "devnet"
    if "testnet" in lowered:
        return "testnet"
    if "127.0.0.1" in lowered or "localhost" in lowered:
        return "localnet"
    return "mainnet"


class NftInscriber:
    def __init__(
        self,
        remote: SolanaAccountClient,
        concurrency: int,
        cache_dir: Path,
        log: Callable[[str], None] = print,
        driver: Optional[InscriptionDriver] = None,
        shards: Optional[ShardAllocator] = None,
    ) -> None:
        self.remote = remote
        self.concurrency = concurrency
        self.cache_dir = cache_dir
        self.log = log
        self.driver = driver or InscriptionDriver(remote, concurrency=concurrency, log=log)
        self.shards = shards or ShardAllocator(remote, log=log)
        self.limiter = asyncio.Semaphore(concurrency)

    async def _bounded(self, coro):
        async with self.limiter:
            return await coro

    async def load_plan(self, mint: Pubkey) -> NftPlan:
        token_metadata_address, _ = find_token_metadata_pda(mint)
        snapshot = await self.remote.read(token_metadata_address)
        if not snapshot.exists:
            raise AccountNotFoundError(token_metadata_address)
        token_metadata = decode_token_metadata(snapshot.data)
        if token_metadata.update_authority != self.remote.payer_pubkey:
            raise AuthorityError(f"You are not the update authority of NFT {mint}")
        return plan_addresses(mint, token_metadata)

    async def load_payloads(self, plan: NftPlan, skip_json: bool, skip_media: bool) -> None:
        mint = str(plan.mint)
        json_bytes = await asyncio.to_thread(load_json_payload, self.cache_dir, mint, plan.token_metadata.uri)
        if not skip_json:
            plan.json_bytes = json_bytes
        if skip_media:
            return
        media_uri = NftMetadata.from_json(json_bytes).media_uri()
        if not media_uri:
            raise ValueError(f"No media found for {mint}!")
        plan.media_bytes = await asyncio.to_thread(load_media_payload, self.cache_dir, mint, media_uri)

    async def initialize(self, plan: NftPlan, with_media: bool) -> None:
        if not await self.remote.account_exists(plan.inscription_account):
            shard = await self.shards.ensure_shard()
            token_metadata_account, _ = find_token_metadata_pda(plan.mint)
            ix = instructions.initialize_from_mint(
                plan.inscription_account,
                plan.metadata_account,
                plan.mint,
                token_metadata_account,
                shard,
                self.remote.payer_pubkey,
            )
            try:
                await self.remote.send([ix])
            except AlreadyInitializedError:
                self.log(f"Inscription for {plan.mint} was initialized concurrently.")
        if with_media and not await self.remote.account_exists(plan.image_account):
            ix = instructions.initialize_associated_inscription(
                plan.inscription_account,
                plan.metadata_account,
                plan.image_account,
                self.remote.payer_pubkey,
                IMAGE_TAG,
            )
            try:
                await self.remote.send([ix])
            except AlreadyInitializedError:
                self.log(f"Image inscription for {plan.mint} was initialized concurrently.")

    async def inscribe_payload(self, target: InscriptionTarget, payload: bytes, label: str) -> None:
        if await self.remote.account_valid(target.account, payload):
            self.log(f"{label} already inscribed.")
            return
        self.log(f"Inscribing {label}...")
        await self.driver.inscribe(target, payload)

    async def run(
        self,
        mints: Sequence[Pubkey],
        network: str,
        skip_json: bool = False,
        skip_media: bool = False,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> List[NftPlan]:
        plans = list(await asyncio.gather(*(self._bounded(self.load_plan(mint)) for mint in mints)))
        await asyncio.gather(*(self._bounded(self.load_payloads(plan, skip_json, skip_media)) for plan in plans))

        total_json = sum(len(plan.json_bytes) for plan in plans)
        total_media = sum(len(plan.media_bytes) for plan in plans)
        if not skip_json:
            self.log(f"{len(plans)} JSON files are a total of {total_json} bytes.")
        if not skip_media:
            self.log(f"{len(plans)} media files are a total of {total_media} bytes.")
        if confirm is not None and not confirm(
            f"Inscribing {len(plans)} NFTs ({total_json + total_media} bytes). Do you want to continue (y/n)? "
        ):
            self.log("Aborting...")
            return []

        self.log(f"Initializing {len(plans)} inscription accounts...")
        await asyncio.gather(*(self._bounded(self.initialize(plan, not skip_media)) for plan in plans))

        for plan in plans:
            if skip_json:
                break
            await self.inscribe_payload(plan.json_target, plan.json_bytes, "JSON")
            self.log(f"JSON Inscription viewable at {gateway_url(network, plan.inscription_account)}")
        for plan in plans:
            if skip_media:
                break
            await self.inscribe_payload(plan.media_target, plan.media_bytes, "image")
            self.log(f"Image Inscription viewable at {gateway_url(network, plan.image_account)}")
        return plans
