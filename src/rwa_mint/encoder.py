"""
On-chain payload encoding under the ledger's metadata budget.

The ledger caps NFT metadata at B bytes (100 on the target network).
`MetadataEncoder.encode` returns one of two variants:

- `InlinePayload`: the deterministically serialized record itself, when it
  fits in B.
- `PointerPayload`: the content id of the record after storing it in the
  content store.

Callers branch on the variant type; nothing is ever truncated to fit.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Literal, Optional, Union

from .commitment import CommitmentTag
from .constants import LedgerLimits
from .content_store import ContentStore
from .exceptions import ConfigurationError, MetadataBudgetError
from .models import AssetAttributes, FullMetadataRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InlinePayload:
    """The serialized record carried directly on-chain."""
    data: bytes
    mode: Literal["inline"] = "inline"

    def to_bytes(self) -> bytes:
        return self.data

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class PointerPayload:
    """A content id pointing at the stored record."""
    content_id: str
    mode: Literal["pointer"] = "pointer"

    def to_bytes(self) -> bytes:
        return self.content_id.encode("ascii")

    def __len__(self) -> int:
        return len(self.to_bytes())


OnChainPayload = Union[InlinePayload, PointerPayload]

_MEMO_FIELDS = (("asset_id", "RWA"), ("value", "Value"), ("custodian", "AMC"))


def _check_budget(budget: int) -> None:
    if budget <= 0:
        raise ConfigurationError(
            f"Metadata budget must be positive, got {budget}",
            details={"budget": budget},
        )


class MetadataEncoder:
    """Chooses inline or pointer mode for a full metadata record."""

    def __init__(self, store: ContentStore, budget: int = LedgerLimits.METADATA_BUDGET_BYTES):
        _check_budget(budget)
        self._store = store
        self.budget = budget

    async def encode(self, record: FullMetadataRecord, budget: Optional[int] = None) -> OnChainPayload:
        budget = self.budget if budget is None else budget
        _check_budget(budget)

        serialized = record.serialize()
        if len(serialized) <= budget:
            logger.debug(f"Metadata fits inline ({len(serialized)}/{budget} bytes)")
            return InlinePayload(serialized)

        logger.info(f"Metadata too large ({len(serialized)} > {budget} bytes), storing off-chain")
        stored = await self._store.upload(
            serialized,
            {
                "name": "rwa-metadata.json",
                "type": "application/json",
                "description": f"RWA NFT metadata for {record.attributes.name}",
            },
        )
        payload = PointerPayload(stored.content_id)
        try:
            pointer_ascii = payload.to_bytes()
        except UnicodeEncodeError:
            raise MetadataBudgetError(
                "Content identifier is not ASCII and cannot be carried on-chain",
                budget=budget,
                payload_length=len(stored.content_id.encode("utf-8")),
                details={"content_id": stored.content_id},
            ) from None
        if len(pointer_ascii) > budget:
            raise MetadataBudgetError(
                f"Pointer payload ({len(pointer_ascii)} bytes) exceeds metadata budget ({budget})",
                budget=budget,
                payload_length=len(pointer_ascii),
                details={"content_id": stored.content_id},
            )
        return payload


def decode_payload(data: bytes) -> OnChainPayload:
    """Classify stored NFT metadata back into its variant.

    Inline payloads are canonical JSON objects; everything else is a
    pointer.
    """
    if data[:1] == b"{":
        try:
            json.loads(data)
        except ValueError:
            pass
        else:
            return InlinePayload(bytes(data))
    return PointerPayload(data.decode("ascii").strip())


def _render_value(value: Any) -> Optional[str]:
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    # Plain notation at any magnitude; whole amounts drop fractional zeros
    whole = amount.to_integral_value()
    if amount == whole:
        return f"{whole:f}"
    return f"{amount:f}"


def encode_collection_memo(
    attributes: AssetAttributes,
    custodian: str,
    tag: CommitmentTag,
    budget: int = LedgerLimits.METADATA_BUDGET_BYTES,
) -> str:
    """Collection memo: compact `key:value|...` when it fits, else the tag.

    A valuation that is not a finite number also falls back to the tag.
    """
    _check_budget(budget)
    value = _render_value(attributes.total_value)
    if value is not None:
        memo = f"RWA:{attributes.asset_id}|Value:${value}|AMC:{custodian}"
        if memo.isascii() and len(memo.encode("ascii")) <= budget:
            return memo

    rendered = tag.render()
    if len(rendered) > budget:
        raise MetadataBudgetError(
            f"Commitment tag ({len(rendered)} bytes) exceeds memo budget ({budget})",
            budget=budget,
            payload_length=len(rendered),
        )
    return rendered


def parse_collection_memo(memo: str) -> Dict[str, str]:
    """Split a compact collection memo back into its fields.

    `RWA:<asset_id>|Value:$<value>|AMC:<custodian>` becomes
    `{"asset_id": ..., "value": ..., "custodian": ...}`. A memo that is not
    in that form raises ValueError.
    """
    parts = memo.strip().split("|")
    if len(parts) != 3:
        raise ValueError(f"Not a compact collection memo: {memo[:80]!r}")
    fields = {}
    for part, (key, label) in zip(parts, _MEMO_FIELDS):
        prefix = f"{label}:"
        if not part.startswith(prefix):
            raise ValueError(f"Expected {label!r} field in collection memo, got {part[:40]!r}")
        fields[key] = part[len(prefix):]
    fields["value"] = fields["value"].lstrip("$")
    return fields


__all__ = [
    "InlinePayload",
    "PointerPayload",
    "OnChainPayload",
    "MetadataEncoder",
    "decode_payload",
    "encode_collection_memo",
    "parse_collection_memo",
]
