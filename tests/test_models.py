"""Tests for rwa_mint.models records."""
from __future__ import annotations

import json
from decimal import Decimal

import pytest

from rwa_mint.constants import EvidenceCategory
from rwa_mint.exceptions import InvalidRecord
from rwa_mint.models import (
    AssetAttributes,
    EvidenceFile,
    EvidenceReference,
    FullMetadataRecord,
    MintedToken,
    StoredContent,
    VerificationBlock,
    canonical_json,
)


def _record():
    return FullMetadataRecord(
        attributes=AssetAttributes(
            name="Harbor View",
            asset_id="prop-001",
            total_value=Decimal("1250000.50"),
            location={"city": "Lisbon"},
        ),
        display=[EvidenceReference(EvidenceCategory.DISPLAY, "cidA", "https://gw/ipfs/cidA", 10, "front.jpg")],
        evidence=[
            EvidenceReference(EvidenceCategory.EVIDENCE, "cidB", "https://gw/ipfs/cidB", 20, "survey.pdf"),
            EvidenceReference(EvidenceCategory.EVIDENCE, "cidC", "https://gw/ipfs/cidC", 30, "appraisal.pdf"),
        ],
        legal=[EvidenceReference(EvidenceCategory.LEGAL, "cidD", "https://gw/ipfs/cidD", 40, "deed.pdf")],
        verification=VerificationBlock("HASH", "ab" * 32, 1, 2, 1),
        custodian="0.0.1234",
        tokenized_at="2026-01-01T00:00:00+00:00",
    )


class TestEvidenceFile:
    """Tests for EvidenceFile lifecycle."""

    def test_mutable_before_storage(self):
        f = EvidenceFile(EvidenceCategory.EVIDENCE, b"data", name="a.pdf")
        f.name = "b.pdf"
        assert f.name == "b.pdf"
        assert not f.is_stored

    def test_immutable_once_stored(self):
        f = EvidenceFile(EvidenceCategory.EVIDENCE, b"data", name="a.pdf")
        f.mark_stored(StoredContent(content_id="cidA", locator="https://gw/ipfs/cidA", size=4))

        assert f.is_stored
        with pytest.raises(AttributeError):
            f.content_id = "cidZ"
        with pytest.raises(AttributeError):
            f.data = b"tampered"

    def test_second_assignment_raises(self):
        f = EvidenceFile(EvidenceCategory.EVIDENCE, b"data")
        f.mark_stored(StoredContent(content_id="cidA", locator="", size=4))
        with pytest.raises(AttributeError):
            f.mark_stored(StoredContent(content_id="cidB", locator="", size=4))
        assert f.content_id == "cidA"

    def test_constructed_with_content_id_is_locked(self):
        f = EvidenceFile(EvidenceCategory.LEGAL, b"deed", content_id="cidD")
        assert f.is_stored
        with pytest.raises(AttributeError):
            f.content_id = "cidX"

    def test_reference_requires_storage(self):
        with pytest.raises(ValueError):
            EvidenceFile(EvidenceCategory.DISPLAY, b"img").reference()


class TestFullMetadataRecord:
    """Tests for record serialization."""

    def test_serialization_is_deterministic(self):
        assert _record().serialize() == _record().serialize()

    def test_serialization_is_canonical_json(self):
        data = _record().serialize()
        assert data.isascii()
        assert b" " not in data.replace(b"Harbor View", b"")
        parsed = json.loads(data)
        assert list(parsed) == sorted(parsed)

    def test_dict_roundtrip(self):
        record = _record()
        restored = FullMetadataRecord.from_dict(json.loads(record.serialize()))
        assert restored.serialize() == record.serialize()
        assert restored.attributes.total_value == Decimal("1250000.50")
        assert [ref.content_id for ref in restored.references()] == ["cidA", "cidB", "cidC", "cidD"]

    def test_verification_block_keys(self):
        block = json.loads(_record().serialize())["verification"]
        assert block["algorithmId"] == "HASH"
        assert block["digestHex"] == "ab" * 32
        assert block["evidenceCount"] == 2

    def test_non_ascii_is_escaped(self):
        assert canonical_json({"name": "Édifice"}) == '{"name":"\\u00c9difice"}'

    def test_free_form_attributes_survive_roundtrip(self):
        data = json.loads(_record().serialize())
        data["asset"]["totalValue"] = "USD 1.2M"
        data["asset"]["location"] = "Lisbon, PT"

        restored = FullMetadataRecord.from_dict(data)
        assert restored.attributes.total_value == "USD 1.2M"
        assert restored.attributes.location == "Lisbon, PT"
        assert json.loads(restored.serialize())["asset"] == data["asset"]

    def test_missing_content_id_raises(self):
        with pytest.raises(InvalidRecord) as exc_info:
            FullMetadataRecord.from_dict({"displayImage": [{"url": "https://gw/ipfs/x"}]})
        assert exc_info.value.error_code == "INVALID_RECORD"

    def test_invalid_json_raises(self):
        with pytest.raises(InvalidRecord):
            FullMetadataRecord.from_json(b"\x89PNG")


class TestMintedToken:
    def test_nft_id(self):
        token = MintedToken("0.0.5000", 1, "0.0.1234@1.000000001", "RWA:V1:HASH:" + "ab" * 32)
        assert token.nft_id == "0.0.5000@1"
        assert token.to_dict()["serial_number"] == 1
