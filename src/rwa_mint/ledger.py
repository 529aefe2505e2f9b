"""Ledger client port, simulated ledger and mirror-node reader.

Contract consumed by the orchestrator:

    create_collection(spec) -> collection_id
    mint(collection_id, signed_tx) -> MintSubmission(tx_id, receipt)
    get_receipt(tx_id) -> LedgerReceipt

Mint submission is idempotent on the transaction id: a resubmitted
transaction returns the original receipt and never mints again.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .commitment import is_rwa_memo
from .exceptions import CollectionCreateError, LedgerRejected, SubmissionError
from .transactions import CollectionSpec, SignedMintTransaction, SignerRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerReceipt:
    """Receipt of a ledger transaction."""
    tx_id: str
    status: str = "SUCCESS"
    serial_numbers: Tuple[int, ...] = ()
    token_id: Optional[str] = None

    @property
    def serial_number(self) -> Optional[int]:
        return self.serial_numbers[0] if self.serial_numbers else None


@dataclass(frozen=True)
class MintSubmission:
    tx_id: str
    receipt: LedgerReceipt


class LedgerClient(ABC):
    """Abstract interface to the token service of the target ledger."""

    @abstractmethod
    async def create_collection(self, spec: CollectionSpec) -> str:
        """Create a token collection and return its id."""

    @abstractmethod
    async def mint(self, collection_id: str, signed_tx: SignedMintTransaction) -> MintSubmission:
        """Submit a dual-signed mint."""

    @abstractmethod
    async def get_receipt(self, tx_id: str) -> LedgerReceipt:
        """Fetch the receipt of a submitted transaction."""


@dataclass
class _Collection:
    collection_id: str
    spec: CollectionSpec
    serials: List[int] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class NftRecord:
    """A minted NFT as the ledger (or its mirror) reports it."""
    token_id: str
    serial_number: int
    account_id: str
    metadata: bytes
    created_at: Optional[str] = None

    @property
    def nft_id(self) -> str:
        return f"{self.token_id}@{self.serial_number}"

    def metadata_text(self) -> str:
        return self.metadata.decode("utf-8", errors="replace")


class SimulatedLedger(LedgerClient):
    """In-process ledger for development, sandbox and tests.

    Enforces what the real token service enforces for a mint: the supply
    key must sign, the treasury must sign when its key is known, and supply
    is finite. Fault-injection counters simulate transient failures.
    """

    def __init__(self, shard: int = 0, realm: int = 0, first_entity: int = 5000):
        self._shard = shard
        self._realm = realm
        self._next_entity = first_entity
        self._collections: Dict[str, _Collection] = {}
        self._receipts: Dict[str, LedgerReceipt] = {}
        self._nfts: Dict[Tuple[str, int], NftRecord] = {}
        self._account_keys: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

        # Fault injection
        self.fail_collection_create = False
        self.fail_next_submissions = 0
        self.drop_next_responses = 0
        self.omit_serials = False
        self.submission_count = 0

    def register_account(self, account_id: str, public_key: bytes) -> None:
        self._account_keys[account_id] = public_key

    def _new_entity_id(self) -> str:
        entity = self._next_entity
        self._next_entity += 1
        return f"{self._shard}.{self._realm}.{entity}"

    async def create_collection(self, spec: CollectionSpec) -> str:
        if self.fail_collection_create:
            raise CollectionCreateError(
                "Token collection creation failed",
                details={"treasury": spec.treasury_account},
            )
        if spec.max_supply < 1:
            raise CollectionCreateError("Collection max supply must be at least 1")
        async with self._lock:
            collection_id = self._new_entity_id()
            self._collections[collection_id] = _Collection(collection_id, spec)
        logger.info(f"Collection created: {collection_id} ({spec.name})")
        return collection_id

    async def mint(self, collection_id: str, signed_tx: SignedMintTransaction) -> MintSubmission:
        tx_id = signed_tx.transaction_id
        self.submission_count += 1

        if self.fail_next_submissions > 0:
            self.fail_next_submissions -= 1
            raise SubmissionError("Ledger node unavailable", details={"tx_id": tx_id})

        async with self._lock:
            existing = self._receipts.get(tx_id)
            if existing is None:
                existing = self._apply_mint(collection_id, signed_tx)
                self._receipts[tx_id] = existing
            else:
                logger.info(f"Duplicate submission of {tx_id}; returning original receipt")

        if self.drop_next_responses > 0:
            self.drop_next_responses -= 1
            raise SubmissionError("Response lost after submission", details={"tx_id": tx_id})

        return MintSubmission(tx_id=tx_id, receipt=existing)

    def _apply_mint(self, collection_id: str, signed_tx: SignedMintTransaction) -> LedgerReceipt:
        tx = signed_tx.transaction
        collection = self._collections.get(collection_id)
        if collection is None or tx.collection_id != collection_id:
            raise LedgerRejected(
                f"Invalid token id {collection_id}",
                details={"tx_id": tx.transaction_id, "collection_id": collection_id},
            )
        if not signed_tx.verify_signatures():
            raise LedgerRejected("Invalid signature", details={"tx_id": tx.transaction_id})

        authority = signed_tx.signature_for(SignerRole.AUTHORITY)
        if authority is None or authority.public_key.hex() != collection.spec.supply_public_key:
            raise LedgerRejected(
                "Supply key signature missing",
                details={"tx_id": tx.transaction_id, "signature": "authority"},
            )

        custodian = signed_tx.signature_for(SignerRole.CUSTODIAN)
        treasury_key = self._account_keys.get(collection.spec.treasury_account)
        if custodian is None or (treasury_key is not None and custodian.public_key != treasury_key):
            raise LedgerRejected(
                "Treasury signature missing",
                details={"tx_id": tx.transaction_id, "signature": "custodian"},
            )

        if len(collection.serials) >= collection.spec.max_supply:
            raise LedgerRejected(
                "Token max supply reached",
                details={"tx_id": tx.transaction_id, "collection_id": collection_id},
            )

        serial = len(collection.serials) + 1
        collection.serials.append(serial)
        self._nfts[(collection_id, serial)] = NftRecord(
            token_id=collection_id,
            serial_number=serial,
            account_id=collection.spec.treasury_account,
            metadata=tx.metadata,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        serials: Tuple[int, ...] = () if self.omit_serials else (serial,)
        return LedgerReceipt(tx_id=tx.transaction_id, serial_numbers=serials, token_id=collection_id)

    async def get_receipt(self, tx_id: str) -> LedgerReceipt:
        receipt = self._receipts.get(tx_id)
        if receipt is None:
            raise SubmissionError(f"No receipt for transaction {tx_id}", details={"tx_id": tx_id})
        return receipt

    def minted_count(self, collection_id: str) -> int:
        collection = self._collections.get(collection_id)
        return len(collection.serials) if collection else 0

    def collection_spec(self, collection_id: str) -> Optional[CollectionSpec]:
        collection = self._collections.get(collection_id)
        return collection.spec if collection else None

    def get_nft(self, token_id: str, serial_number: int) -> Optional[NftRecord]:
        return self._nfts.get((token_id, serial_number))


class MirrorNodeClient:
    """Read-only access to a ledger mirror node REST API."""

    def __init__(
        self,
        base_url: str = "https://testnet.mirrornode.hedera.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._token_memos: Dict[str, str] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _get_json(self, path: str, **params: Any) -> Dict[str, Any]:
        client = await self._get_client()
        response = await client.get(path, params=params or None)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> NftRecord:
        raw = data.get("metadata") or ""
        return NftRecord(
            token_id=str(data.get("token_id", "")),
            serial_number=int(data.get("serial_number", 0)),
            account_id=str(data.get("account_id", "")),
            metadata=base64.b64decode(raw) if raw else b"",
            created_at=data.get("created_timestamp"),
        )

    async def get_nft(self, token_id: str, serial_number: int) -> Optional[NftRecord]:
        """Fetch one NFT; metadata is base64-decoded."""
        try:
            data = await self._get_json(f"/api/v1/tokens/{token_id}/nfts/{serial_number}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        return self._to_record(data)

    async def get_token_memo(self, token_id: str) -> str:
        if token_id not in self._token_memos:
            data = await self._get_json(f"/api/v1/tokens/{token_id}")
            self._token_memos[token_id] = str(data.get("memo") or "")
        return self._token_memos[token_id]

    async def list_account_nfts(self, account_id: str, limit: int = 100) -> List[NftRecord]:
        """NFTs held by `account_id` whose collection memo carries the RWA prefix."""
        data = await self._get_json(f"/api/v1/accounts/{account_id}/nfts", limit=limit)
        results = []
        for item in data.get("nfts") or []:
            if not item.get("token_id") or not item.get("serial_number"):
                continue
            record = self._to_record(item)
            if is_rwa_memo(record.metadata_text()) or is_rwa_memo(await self.get_token_memo(record.token_id)):
                results.append(record)
        logger.info(f"Found {len(results)} RWA NFTs for account {account_id}")
        return results

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = [
    "LedgerReceipt",
    "MintSubmission",
    "LedgerClient",
    "SimulatedLedger",
    "NftRecord",
    "MirrorNodeClient",
]
