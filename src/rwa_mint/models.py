"""Asset, evidence and token records for the tokenization pipeline."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from .constants import EvidenceCategory
from .exceptions import InvalidRecord


def canonical_json(obj: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators, ASCII only."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=_json_default,
    )


def canonical_bytes(obj: Any) -> bytes:
    return canonical_json(obj).encode("ascii")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass(frozen=True)
class StoredContent:
    """Result of a content store upload."""
    content_id: str
    locator: str
    size: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(eq=False)
class EvidenceFile:
    """A file supporting an asset claim.

    Mutable only until the content store assigns its identifier.
    """
    category: EvidenceCategory
    data: bytes
    name: str = ""
    media_type: str = "application/octet-stream"
    content_id: Optional[str] = None
    locator: Optional[str] = None
    size: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "_locked", self.content_id is not None)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("_locked"):
            raise AttributeError(
                f"Evidence file '{self.__dict__.get('name', '')}' is immutable once stored"
            )
        super().__setattr__(name, value)

    @property
    def is_stored(self) -> bool:
        return self.content_id is not None

    def mark_stored(self, stored: StoredContent) -> None:
        """Attach the store's identifier; locks the file."""
        if self.is_stored:
            raise AttributeError(f"Evidence file '{self.name}' already stored as {self.content_id}")
        self.locator = stored.locator
        self.size = stored.size
        self.content_id = stored.content_id
        object.__setattr__(self, "_locked", True)

    def reference(self) -> "EvidenceReference":
        if not self.is_stored:
            raise ValueError(f"Evidence file '{self.name}' has not been stored")
        return EvidenceReference(
            category=self.category,
            content_id=self.content_id,
            locator=self.locator or "",
            size=self.size or 0,
            name=self.name,
        )


@dataclass(frozen=True)
class EvidenceReference:
    """Stored evidence as it appears in the full metadata record."""
    category: EvidenceCategory
    content_id: str
    locator: str = ""
    size: int = 0
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cid": self.content_id,
            "url": self.locator,
            "size": self.size,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, category: EvidenceCategory, data: Mapping[str, Any]) -> "EvidenceReference":
        return cls(
            category=category,
            content_id=str(data["cid"]),
            locator=str(data.get("url", "")),
            size=int(data.get("size", 0)),
            name=str(data.get("name", "")),
        )


def _as_decimal(value: Any) -> Any:
    """Decimal when the value reads as a number, otherwise the value as given."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return value


@dataclass
class AssetAttributes:
    """Caller-supplied description of the asset; opaque to the core.

    `total_value` and `location` are free-form: values that do not read as
    a number or a mapping are carried through unchanged.
    """
    name: str
    asset_id: str
    asset_type: str = "property"
    description: str = ""
    total_value: Any = Decimal("0")
    location: Any = field(default_factory=dict)
    maturity_date: Optional[str] = None
    extra: Any = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "assetId": self.asset_id,
            "assetType": self.asset_type,
            "description": self.description,
            "totalValue": str(self.total_value) if isinstance(self.total_value, Decimal) else self.total_value,
            "location": self.location,
        }
        if self.maturity_date:
            result["maturityDate"] = self.maturity_date
        if self.extra:
            result["extra"] = self.extra
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssetAttributes":
        return cls(
            name=str(data.get("name", "")),
            asset_id=str(data.get("assetId", "")),
            asset_type=str(data.get("assetType", "property")),
            description=str(data.get("description", "")),
            total_value=_as_decimal(data.get("totalValue", "0")),
            location=data.get("location") or {},
            maturity_date=data.get("maturityDate"),
            extra=data.get("extra") or {},
        )


@dataclass(frozen=True)
class VerificationBlock:
    """Self-description of how the record's commitment was computed."""
    algorithm_id: str
    digest_hex: str
    display_count: int = 0
    evidence_count: int = 0
    legal_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithmId": self.algorithm_id,
            "digestHex": self.digest_hex,
            "displayCount": self.display_count,
            "evidenceCount": self.evidence_count,
            "legalCount": self.legal_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerificationBlock":
        return cls(
            algorithm_id=str(data.get("algorithmId", "")),
            digest_hex=str(data.get("digestHex", "")),
            display_count=int(data.get("displayCount", 0)),
            evidence_count=int(data.get("evidenceCount", 0)),
            legal_count=int(data.get("legalCount", 0)),
        )


@dataclass
class FullMetadataRecord:
    """Complete off-chain description of a tokenized asset.

    Evidence lists keep upload order; the record serializes with stable key
    order so its bytes are reproducible.
    """
    attributes: AssetAttributes
    display: List[EvidenceReference] = field(default_factory=list)
    evidence: List[EvidenceReference] = field(default_factory=list)
    legal: List[EvidenceReference] = field(default_factory=list)
    verification: Optional[VerificationBlock] = None
    custodian: str = ""
    tokenized_at: Optional[str] = None
    status: str = "ACTIVE"
    incomplete: bool = False

    def references(self) -> List[EvidenceReference]:
        """All references in canonical order."""
        return [*self.display, *self.evidence, *self.legal]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "asset": self.attributes.to_dict(),
            "displayImage": [ref.to_dict() for ref in self.display],
            "evidenceFiles": [ref.to_dict() for ref in self.evidence],
            "legalDocuments": [ref.to_dict() for ref in self.legal],
            "custodian": self.custodian,
            "status": self.status,
            "incomplete": self.incomplete,
        }
        if self.tokenized_at:
            result["tokenizedAt"] = self.tokenized_at
        if self.verification:
            result["verification"] = self.verification.to_dict()
        return result

    def serialize(self) -> bytes:
        return canonical_bytes(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FullMetadataRecord":
        try:
            return cls._from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidRecord(
                f"Malformed metadata record: {type(e).__name__}: {e}",
                details={"field": str(e)},
            ) from e

    @classmethod
    def _from_dict(cls, data: Mapping[str, Any]) -> "FullMetadataRecord":
        verification = data.get("verification")
        return cls(
            attributes=AssetAttributes.from_dict(data.get("asset") or {}),
            display=[
                EvidenceReference.from_dict(EvidenceCategory.DISPLAY, item)
                for item in data.get("displayImage") or []
            ],
            evidence=[
                EvidenceReference.from_dict(EvidenceCategory.EVIDENCE, item)
                for item in data.get("evidenceFiles") or []
            ],
            legal=[
                EvidenceReference.from_dict(EvidenceCategory.LEGAL, item)
                for item in data.get("legalDocuments") or []
            ],
            verification=VerificationBlock.from_dict(verification) if verification else None,
            custodian=str(data.get("custodian", "")),
            tokenized_at=data.get("tokenizedAt"),
            status=str(data.get("status", "ACTIVE")),
            incomplete=bool(data.get("incomplete", False)),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "FullMetadataRecord":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise InvalidRecord(f"Metadata record is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass(frozen=True)
class MintedToken:
    """A confirmed, dual-signed mint."""
    collection_id: str
    serial_number: int
    tx_id: str
    commitment_tag: str

    @property
    def nft_id(self) -> str:
        return f"{self.collection_id}@{self.serial_number}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection_id": self.collection_id,
            "serial_number": self.serial_number,
            "tx_id": self.tx_id,
            "commitment_tag": self.commitment_tag,
        }
