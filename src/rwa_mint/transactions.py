"""Ledger transaction shapes for collection creation and minting.

A `MintTransaction` is frozen on construction: its body bytes are what
both parties sign, so nothing may change after the first signature.
"""
from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from nacl import exceptions as nacl_exceptions
from nacl import signing

from .constants import LedgerLimits
from .exceptions import SigningError
from .models import AssetAttributes, canonical_bytes


class SignerRole(str, Enum):
    """Which party produced a signature."""
    CUSTODIAN = "custodian"
    AUTHORITY = "authority"


def new_transaction_id(payer_account: str, now: Optional[float] = None) -> str:
    """Ledger-style transaction id `<payer>@<seconds>.<nanos>`.

    Unique per payer and valid-start; doubles as the idempotency key.
    """
    ns = time.time_ns() if now is None else int(now * 1_000_000_000)
    seconds, nanos = divmod(ns, 1_000_000_000)
    return f"{payer_account}@{seconds}.{nanos:09d}"


@dataclass(frozen=True)
class TransactionSignature:
    role: SignerRole
    public_key: bytes
    signature: bytes

    def verify(self, message: bytes) -> bool:
        try:
            signing.VerifyKey(self.public_key).verify(message, self.signature)
        except (nacl_exceptions.BadSignatureError, ValueError, TypeError):
            return False
        return True

    def to_dict(self) -> Dict[str, str]:
        return {
            "role": self.role.value,
            "public_key": self.public_key.hex(),
            "signature": self.signature.hex(),
        }


@dataclass(frozen=True)
class CollectionSpec:
    """Single-asset, non-fungible collection with a supply of one."""
    name: str
    symbol: str
    treasury_account: str
    supply_public_key: str
    memo: str = ""
    max_supply: int = LedgerLimits.COLLECTION_MAX_SUPPLY
    token_type: str = "NON_FUNGIBLE_UNIQUE"
    supply_type: str = "FINITE"
    decimals: int = 0
    initial_supply: int = 0
    max_fee_tinybars: int = LedgerLimits.COLLECTION_MAX_FEE_TINYBARS
    valid_duration_seconds: int = LedgerLimits.TRANSACTION_VALID_DURATION_SECONDS

    @classmethod
    def for_asset(
        cls,
        attributes: AssetAttributes,
        treasury_account: str,
        supply_public_key: str,
        memo: str,
        **kwargs: Any,
    ) -> "CollectionSpec":
        name = f"{attributes.name} Property NFT"[: LedgerLimits.TOKEN_NAME_MAX_LENGTH]
        symbol = (attributes.asset_type or "RWA").upper()[: LedgerLimits.TOKEN_SYMBOL_MAX_LENGTH]
        return cls(
            name=name,
            symbol=symbol,
            treasury_account=treasury_account,
            supply_public_key=supply_public_key,
            memo=memo,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "treasury": self.treasury_account,
            "supplyKey": self.supply_public_key,
            "memo": self.memo,
            "maxSupply": self.max_supply,
            "tokenType": self.token_type,
            "supplyType": self.supply_type,
            "decimals": self.decimals,
            "initialSupply": self.initial_supply,
        }


@dataclass(frozen=True)
class MintTransaction:
    """Frozen mint of one NFT carrying the on-chain payload as metadata."""
    transaction_id: str
    collection_id: str
    metadata: bytes
    max_fee_tinybars: int = LedgerLimits.MINT_MAX_FEE_TINYBARS
    valid_duration_seconds: int = LedgerLimits.TRANSACTION_VALID_DURATION_SECONDS

    def body(self) -> Dict[str, Any]:
        return {
            "type": "TokenMint",
            "transactionId": self.transaction_id,
            "tokenId": self.collection_id,
            "metadata": [base64.b64encode(self.metadata).decode("ascii")],
            "maxTransactionFee": self.max_fee_tinybars,
            "transactionValidDuration": self.valid_duration_seconds,
        }

    def body_bytes(self) -> bytes:
        return canonical_bytes(self.body())


@dataclass(frozen=True)
class SignedMintTransaction:
    """Mint transaction plus the signatures collected so far.

    Signatures are appended in protocol order: custodian first, then the
    ephemeral authority.
    """
    transaction: MintTransaction
    signatures: Tuple[TransactionSignature, ...] = field(default_factory=tuple)

    @property
    def transaction_id(self) -> str:
        return self.transaction.transaction_id

    def signature_for(self, role: SignerRole) -> Optional[TransactionSignature]:
        for sig in self.signatures:
            if sig.role == role:
                return sig
        return None

    def with_signature(self, signature: TransactionSignature) -> "SignedMintTransaction":
        if self.signature_for(signature.role) is not None:
            raise SigningError(
                f"Transaction already carries a {signature.role.value} signature",
                details={"tx_id": self.transaction_id, "signature": signature.role.value},
            )
        if signature.role == SignerRole.AUTHORITY and self.signature_for(SignerRole.CUSTODIAN) is None:
            raise SigningError(
                "Authority signature requires the custodian signature first",
                details={"tx_id": self.transaction_id, "signature": signature.role.value},
            )
        if not signature.verify(self.transaction.body_bytes()):
            raise SigningError(
                f"{signature.role.value} signature does not match the transaction body",
                details={"tx_id": self.transaction_id, "signature": signature.role.value},
            )
        return replace(self, signatures=(*self.signatures, signature))

    @property
    def is_fully_signed(self) -> bool:
        return (
            self.signature_for(SignerRole.CUSTODIAN) is not None
            and self.signature_for(SignerRole.AUTHORITY) is not None
        )

    def verify_signatures(self) -> bool:
        body = self.transaction.body_bytes()
        return all(sig.verify(body) for sig in self.signatures)


__all__ = [
    "SignerRole",
    "TransactionSignature",
    "CollectionSpec",
    "MintTransaction",
    "SignedMintTransaction",
    "new_transaction_id",
]
