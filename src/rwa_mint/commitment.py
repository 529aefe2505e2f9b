"""
Evidence commitments.

A commitment fixes an ordered set of content identifiers in a short,
size-bounded tag:

    RWA:V1:HASH:<sha256 hex of "cid1,cid2,...">

Order is part of the contract. Identifiers are hashed in canonical order
(display, then evidence in upload order, then legal in upload order) and
swapping two of them yields a different tag. Nothing here sorts or
de-duplicates identifiers.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .constants import CANONICAL_CATEGORY_ORDER, CommitmentFormat, EvidenceCategory
from .exceptions import InvalidCommitmentTag, InvalidContentId
from .models import EvidenceFile, EvidenceReference, FullMetadataRecord

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class CommitmentTag:
    """On-chain commitment to an ordered evidence set."""
    digest_hex: str
    version: str = CommitmentFormat.VERSION
    algorithm_id: str = CommitmentFormat.ALGORITHM_ID

    def render(self) -> str:
        sep = CommitmentFormat.SEPARATOR
        return sep.join((CommitmentFormat.PREFIX, self.version, self.algorithm_id, self.digest_hex))

    def __str__(self) -> str:
        return self.render()

    @classmethod
    def parse(cls, text: str) -> "CommitmentTag":
        """Parse `RWA:V1:HASH:<hex>`; anything else is rejected."""
        parts = text.strip().split(CommitmentFormat.SEPARATOR)
        if (
            len(parts) != 4
            or parts[0] != CommitmentFormat.PREFIX
            or parts[1] != CommitmentFormat.VERSION
            or parts[2] != CommitmentFormat.ALGORITHM_ID
        ):
            raise InvalidCommitmentTag(
                f"Not an RWA commitment tag: {text[:80]!r}",
                details={"value": text[:80]},
            )
        if not _DIGEST_RE.match(parts[3]):
            raise InvalidCommitmentTag(
                "Commitment digest must be 64 lowercase hex characters",
                details={"value": text[:80]},
            )
        return cls(digest_hex=parts[3], version=parts[1], algorithm_id=parts[2])


def is_rwa_memo(text: Optional[str]) -> bool:
    """True for any memo carrying the RWA prefix (tag or compact key-value memo)."""
    return bool(text) and text.startswith(CommitmentFormat.PREFIX + CommitmentFormat.SEPARATOR)


def canonical_order(
    display: Optional[str | Sequence[str]],
    evidence: Sequence[str] = (),
    legal: Sequence[str] = (),
) -> List[str]:
    """Arrange identifiers in canonical hashing order.

    display -> evidence (upload order) -> legal (upload order).
    """
    if display is None:
        display_ids: List[str] = []
    elif isinstance(display, str):
        display_ids = [display]
    else:
        display_ids = list(display)
    return [*display_ids, *evidence, *legal]


def canonical_order_from_files(files: Iterable[EvidenceFile]) -> List[str]:
    """Canonical identifiers of the stored files; unstored files are skipped.

    Within a category the iteration order of `files` is the upload order.
    """
    buckets = {category: [] for category in CANONICAL_CATEGORY_ORDER}
    for f in files:
        if f.is_stored:
            buckets[EvidenceCategory(f.category)].append(f.content_id)
    return canonical_order(
        buckets[EvidenceCategory.DISPLAY],
        buckets[EvidenceCategory.EVIDENCE],
        buckets[EvidenceCategory.LEGAL],
    )


def canonical_order_from_references(references: Iterable[EvidenceReference]) -> List[str]:
    buckets = {category: [] for category in CANONICAL_CATEGORY_ORDER}
    for ref in references:
        buckets[EvidenceCategory(ref.category)].append(ref.content_id)
    return canonical_order(
        buckets[EvidenceCategory.DISPLAY],
        buckets[EvidenceCategory.EVIDENCE],
        buckets[EvidenceCategory.LEGAL],
    )


class CommitmentBuilder:
    """Builds commitment tags over canonically ordered content identifiers."""

    delimiter = CommitmentFormat.CONTENT_ID_DELIMITER

    def preimage(self, ordered_content_ids: Sequence[str]) -> bytes:
        for content_id in ordered_content_ids:
            if not isinstance(content_id, str) or not content_id:
                raise InvalidContentId(
                    "Content identifiers must be non-empty strings",
                    details={"content_id": repr(content_id)},
                )
            if self.delimiter in content_id:
                raise InvalidContentId(
                    f"Content identifier contains the delimiter {self.delimiter!r}",
                    details={"content_id": content_id},
                )
        return self.delimiter.join(ordered_content_ids).encode("utf-8")

    def digest(self, ordered_content_ids: Sequence[str]) -> str:
        return hashlib.sha256(self.preimage(ordered_content_ids)).hexdigest()

    def build(self, ordered_content_ids: Sequence[str]) -> CommitmentTag:
        return CommitmentTag(digest_hex=self.digest(ordered_content_ids))

    def build_for_record(self, record: FullMetadataRecord) -> CommitmentTag:
        return self.build(canonical_order_from_references(record.references()))


__all__ = [
    "CommitmentTag",
    "CommitmentBuilder",
    "canonical_order",
    "canonical_order_from_files",
    "canonical_order_from_references",
    "is_rwa_memo",
]
