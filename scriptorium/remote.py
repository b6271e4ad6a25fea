"""Remote account access for inscription accounts."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import re
from typing import Any, Iterable, List, Optional, Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from . import instructions
from .accounts import INSCRIPTION_PROGRAM, validate_tag
from .constants import DEFAULT_COMMITMENT, DEFAULT_CONCURRENCY, MAX_MULTIPLE_ACCOUNTS
from .errors import (
    AccountNotFoundError,
    InscriptionError,
    TransientRemoteError,
    classify_program_error,
)

_CUSTOM_CODE_RE = re.compile(r"Custom\((\d+)\)")
_CUSTOM_HEX_RE = re.compile(r"custom program error: 0x([0-9a-fA-F]+)")


@dataclass(frozen=True)
class InscriptionTarget:
    account: Any
    metadata_account: Any
    associated_tag: Optional[str] = None

    def __post_init__(self) -> None:
        validate_tag(self.associated_tag)


@dataclass(frozen=True)
class AccountSnapshot:
    exists: bool
    data: bytes = b""
    owner: Any = None

    @property
    def length(self) -> int:
        return len(self.data)


class RemoteAccountClient(ABC):
    """Async contract over the ledger's account read and write primitives.

    Every method is a suspension point and may fail independently. Fatal
    failures raise ``InscriptionError`` subclasses; anything worth retrying
    raises ``TransientRemoteError``.
    """

    @abstractmethod
    async def get_account(self, address: Any) -> Optional[AccountSnapshot]:
        ...

    @abstractmethod
    async def grow(self, target: InscriptionTarget, target_size: int) -> None:
        ...

    @abstractmethod
    async def write_at(self, target: InscriptionTarget, offset: int, data: bytes) -> None:
        ...

    @abstractmethod
    async def create_shard(self, shard_address: Any, shard_number: int) -> None:
        ...

    async def read(self, address: Any) -> AccountSnapshot:
        snapshot = await self.get_account(address)
        if snapshot is None:
            return AccountSnapshot(exists=False)
        return snapshot

    async def read_many(self, addresses: Sequence[Any], concurrency: int = DEFAULT_CONCURRENCY) -> List[AccountSnapshot]:
        limiter = asyncio.Semaphore(concurrency)

        async def bounded(address: Any) -> AccountSnapshot:
            async with limiter:
                return await self.read(address)

        return list(await asyncio.gather(*(bounded(address) for address in addresses)))

    async def account_exists(self, address: Any) -> bool:
        return (await self.read(address)).exists

    async def account_length(self, address: Any) -> int:
        snapshot = await self.read(address)
        if not snapshot.exists:
            raise AccountNotFoundError(address)
        return snapshot.length

    async def account_valid(self, address: Any, expected: bytes) -> bool:
        snapshot = await self.read(address)
        if not snapshot.exists or snapshot.length != len(expected):
            return False
        return snapshot.data == bytes(expected)


def classify_rpc_error(exc: BaseException) -> InscriptionError:
    text = str(exc)
    match = _CUSTOM_CODE_RE.search(text)
    if match:
        return classify_program_error(int(match.group(1)), text)
    match = _CUSTOM_HEX_RE.search(text)
    if match:
        return classify_program_error(int(match.group(1), 16), text)
    return TransientRemoteError(text or exc.__class__.__name__)


class SolanaAccountClient(RemoteAccountClient):
    def __init__(
        self,
        client: AsyncClient,
        payer: Optional[Keypair] = None,
        authority: Optional[Keypair] = None,
        commitment: str = DEFAULT_COMMITMENT,
        program_id: Pubkey = INSCRIPTION_PROGRAM,
    ) -> None:
        self.client = client
        self.payer = payer
        self.authority = authority
        self.commitment = Commitment(commitment)
        self.program_id = program_id

    @classmethod
    def connect(cls, rpc_url: str, payer: Optional[Keypair] = None, **kwargs: Any) -> "SolanaAccountClient":
        commitment = kwargs.get("commitment", DEFAULT_COMMITMENT)
        return cls(AsyncClient(rpc_url, commitment=Commitment(commitment)), payer, **kwargs)

    @property
    def payer_pubkey(self) -> Pubkey:
        if self.payer is None:
            raise ValueError("A payer keypair is required to send transactions")
        return self.payer.pubkey()

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> "SolanaAccountClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _authority_pubkey(self) -> Optional[Pubkey]:
        if self.authority is None or self.authority.pubkey() == self.payer_pubkey:
            return None
        return self.authority.pubkey()

    def _signers(self) -> list[Keypair]:
        signers = [self.payer]
        if self._authority_pubkey() is not None:
            signers.append(self.authority)
        return signers

    async def get_account(self, address: Pubkey) -> Optional[AccountSnapshot]:
        try:
            resp = await self.client.get_account_info(address, commitment=self.commitment)
        except (RPCException, SolanaRpcException, OSError) as exc:
            raise classify_rpc_error(exc) from exc
        info = resp.value
        if info is None:
            return None
        return AccountSnapshot(exists=True, data=bytes(info.data), owner=info.owner)

    async def _get_account_batch(self, addresses: List[Pubkey]) -> List[Optional[AccountSnapshot]]:
        try:
            resp = await self.client.get_multiple_accounts(addresses, commitment=self.commitment)
        except (RPCException, SolanaRpcException, OSError) as exc:
            raise classify_rpc_error(exc) from exc
        return [
            None if info is None else AccountSnapshot(exists=True, data=bytes(info.data), owner=info.owner)
            for info in resp.value
        ]

    async def get_multiple_accounts(
        self,
        addresses: Sequence[Pubkey],
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> List[Optional[AccountSnapshot]]:
        addresses = list(addresses)
        batches = [
            addresses[start : start + MAX_MULTIPLE_ACCOUNTS]
            for start in range(0, len(addresses), MAX_MULTIPLE_ACCOUNTS)
        ]
        limiter = asyncio.Semaphore(concurrency)

        async def bounded(batch: List[Pubkey]) -> List[Optional[AccountSnapshot]]:
            async with limiter:
                return await self._get_account_batch(batch)

        results = await asyncio.gather(*(bounded(batch) for batch in batches))
        return [snapshot for batch in results for snapshot in batch]

    async def read_many(self, addresses: Sequence[Pubkey], concurrency: int = DEFAULT_CONCURRENCY) -> List[AccountSnapshot]:
        snapshots = await self.get_multiple_accounts(addresses, concurrency)
        return [AccountSnapshot(exists=False) if snapshot is None else snapshot for snapshot in snapshots]

    async def send(self, ixs: Iterable[Instruction]) -> Signature:
        try:
            blockhash = (await self.client.get_latest_blockhash(commitment=self.commitment)).value.blockhash
            tx = Transaction.new_with_payer(list(ixs), self.payer_pubkey)
            tx.sign(self._signers(), blockhash)
            sig = (
                await self.client.send_raw_transaction(
                    bytes(tx),
                    opts=TxOpts(skip_preflight=False, preflight_commitment=self.commitment),
                )
            ).value
            await self.client.confirm_transaction(sig, commitment=self.commitment)
            statuses = (await self.client.get_signature_statuses([sig])).value
        except (
            RPCException,
            SolanaRpcException,
            UnconfirmedTxError,
            TransactionExpiredBlockheightExceededError,
            OSError,
        ) as exc:
            raise classify_rpc_error(exc) from exc
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            raise classify_rpc_error(RuntimeError(str(status.err)))
        return sig

    async def grow(self, target: InscriptionTarget, target_size: int) -> None:
        ix = instructions.allocate(
            target.account,
            target.metadata_account,
            self.payer_pubkey,
            target_size,
            associated_tag=target.associated_tag,
            authority=self._authority_pubkey(),
            program_id=self.program_id,
        )
        await self.send([ix])

    async def write_at(self, target: InscriptionTarget, offset: int, data: bytes) -> None:
        ix = instructions.write_data(
            target.account,
            target.metadata_account,
            self.payer_pubkey,
            offset,
            data,
            associated_tag=target.associated_tag,
            authority=self._authority_pubkey(),
            program_id=self.program_id,
        )
        await self.send([ix])

    async def create_shard(self, shard_address: Pubkey, shard_number: int) -> None:
        ix = instructions.create_shard(shard_address, self.payer_pubkey, shard_number, program_id=self.program_id)
        await self.send([ix])
