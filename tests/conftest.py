"""
Pytest configuration for rwa-mint tests.
"""
from __future__ import annotations

import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

# Set test environment
os.environ.setdefault("RWA_MINT_ENVIRONMENT", "dev")
os.environ.setdefault("RWA_MINT_LEDGER__MODE", "simulated")
os.environ.setdefault("RWA_MINT_CONTENT_STORE__PROVIDER", "memory")

from rwa_mint.config import MintSettings
from rwa_mint.constants import EvidenceCategory
from rwa_mint.content_store import ContentStore, compute_cid
from rwa_mint.custodian import LocalKeyCustodianSigner
from rwa_mint.exceptions import ContentStoreError
from rwa_mint.ledger import SimulatedLedger
from rwa_mint.models import AssetAttributes, EvidenceFile, StoredContent
from rwa_mint.orchestrator import MintSession

CUSTODIAN_ACCOUNT = "0.0.1234"


class ScriptedContentStore(ContentStore):
    """Content store that hands out fixed ids by file name.

    Files named in `fail_names` raise ContentStoreError. Anything without a
    scripted id (such as the metadata record) gets its real CID.
    """

    def __init__(self, ids: Optional[Dict[str, str]] = None, fail_names: Iterable[str] = ()):
        self.ids = dict(ids or {})
        self.fail_names = set(fail_names)
        self.objects: Dict[str, bytes] = {}
        self.uploaded_names: list[str] = []

    async def upload(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> StoredContent:
        name = (metadata or {}).get("name", "")
        self.uploaded_names.append(name)
        if name in self.fail_names:
            raise ContentStoreError(f"Upload of {name} refused", details={"file": name})
        content_id = self.ids.get(name) or compute_cid(data)
        self.objects[content_id] = bytes(data)
        return StoredContent(content_id=content_id, locator=self.gateway_url(content_id), size=len(data))

    async def fetch(self, content_id: str) -> bytes:
        try:
            return self.objects[content_id]
        except KeyError:
            raise ContentStoreError(f"Content '{content_id}' not found") from None

    def gateway_url(self, content_id: str) -> str:
        return f"https://gateway.test/ipfs/{content_id}"


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def settings():
    """Settings with short deadlines and near-zero retry delays."""
    return MintSettings(
        custodian_signature_timeout_seconds=0.2,
        submission_max_retries=3,
        submission_base_delay_seconds=0.001,
        submission_max_delay_seconds=0.01,
    )


@pytest.fixture
def ledger():
    return SimulatedLedger()


@pytest.fixture
def custodian_signer(ledger):
    """Custodian wallet whose key the ledger knows as the treasury key."""
    signer = LocalKeyCustodianSigner(CUSTODIAN_ACCOUNT)
    ledger.register_account(CUSTODIAN_ACCOUNT, signer.public_key)
    return signer


@pytest.fixture
def scripted_store():
    return ScriptedContentStore(
        ids={
            "front.jpg": "cidA",
            "survey.pdf": "cidB",
            "appraisal.pdf": "cidC",
            "deed.pdf": "cidD",
        }
    )


@pytest.fixture
def session(custodian_signer, ledger, scripted_store, settings):
    return MintSession(
        custodian_account=CUSTODIAN_ACCOUNT,
        signer=custodian_signer,
        ledger=ledger,
        store=scripted_store,
        settings=settings,
    )


@pytest.fixture
def attributes():
    return AssetAttributes(
        name="Harbor View Apartments",
        asset_id="prop-001",
        asset_type="property",
        description="Twelve-unit residential building",
        total_value=Decimal("1250000"),
        location={"city": "Lisbon", "country": "PT"},
    )


@pytest.fixture
def evidence_files():
    """One display image, two evidence files, one legal document."""
    return [
        EvidenceFile(EvidenceCategory.DISPLAY, b"front-image", name="front.jpg", media_type="image/jpeg"),
        EvidenceFile(EvidenceCategory.EVIDENCE, b"survey", name="survey.pdf", media_type="application/pdf"),
        EvidenceFile(EvidenceCategory.EVIDENCE, b"appraisal", name="appraisal.pdf", media_type="application/pdf"),
        EvidenceFile(EvidenceCategory.LEGAL, b"deed", name="deed.pdf", media_type="application/pdf"),
    ]


@pytest.fixture
def sample_digest_hex():
    return "ab" * 32
