"""Offline commitment verification.

Anyone holding the full metadata record and the on-chain tag can check
that the record's evidence set is the one that was committed to:

    result = CommitmentVerifier().verify(record_dict, "RWA:V1:HASH:...")
    if not result:
        print(result.expected, result.recomputed)

A mismatch is a result, not an exception. Only `verify_payload` touches
a content store, and only for pointer-mode payloads.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .commitment import CommitmentBuilder, CommitmentTag
from .content_store import ContentStore
from .encoder import InlinePayload, decode_payload
from .exceptions import ConfigurationError
from .models import FullMetadataRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    tag: CommitmentTag
    self_consistent: bool = True

    matched = True

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Mismatch:
    expected: CommitmentTag
    recomputed: CommitmentTag
    self_consistent: bool = True

    matched = False

    def __bool__(self) -> bool:
        return False


VerificationResult = Union[Match, Mismatch]


class CommitmentVerifier:
    """Recomputes a record's commitment and compares it to the on-chain tag."""

    def __init__(self, builder: Optional[CommitmentBuilder] = None):
        self._builder = builder or CommitmentBuilder()

    def verify(
        self,
        claimed: Union[FullMetadataRecord, Mapping[str, Any]],
        on_chain_tag: Union[CommitmentTag, str],
    ) -> VerificationResult:
        record = claimed if isinstance(claimed, FullMetadataRecord) else FullMetadataRecord.from_dict(claimed)
        expected = on_chain_tag if isinstance(on_chain_tag, CommitmentTag) else CommitmentTag.parse(on_chain_tag)

        recomputed = self._builder.build_for_record(record)
        self_consistent = self._self_consistent(record, recomputed)

        if recomputed == expected:
            return Match(tag=recomputed, self_consistent=self_consistent)

        logger.warning(
            f"Commitment mismatch for asset {record.attributes.asset_id}: "
            f"expected {expected.render()}, recomputed {recomputed.render()}"
        )
        return Mismatch(expected=expected, recomputed=recomputed, self_consistent=self_consistent)

    @staticmethod
    def _self_consistent(record: FullMetadataRecord, recomputed: CommitmentTag) -> bool:
        block = record.verification
        if block is None:
            return False
        return (
            block.algorithm_id == recomputed.algorithm_id
            and block.digest_hex == recomputed.digest_hex
            and block.display_count == len(record.display)
            and block.evidence_count == len(record.evidence)
            and block.legal_count == len(record.legal)
        )

    async def verify_payload(
        self,
        payload: bytes,
        on_chain_tag: Union[CommitmentTag, str],
        store: Optional[ContentStore] = None,
    ) -> VerificationResult:
        """Verify straight from NFT metadata bytes.

        Inline payloads carry the record itself. Pointer payloads need a
        store to fetch the record from.
        """
        decoded = decode_payload(payload)
        if isinstance(decoded, InlinePayload):
            return self.verify(FullMetadataRecord.from_json(decoded.data), on_chain_tag)

        if store is None:
            raise ConfigurationError(
                "Pointer-mode payload requires a content store to fetch the record",
                details={"content_id": decoded.content_id},
            )
        data = await store.fetch(decoded.content_id)
        return self.verify(FullMetadataRecord.from_json(data), on_chain_tag)


def verify(
    claimed: Union[FullMetadataRecord, Mapping[str, Any]],
    on_chain_tag: Union[CommitmentTag, str],
) -> VerificationResult:
    return CommitmentVerifier().verify(claimed, on_chain_tag)


__all__ = [
    "Match",
    "Mismatch",
    "VerificationResult",
    "CommitmentVerifier",
    "verify",
]
