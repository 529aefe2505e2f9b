"""Evidence commitments and dual-signed minting for real-world asset NFTs."""

from .config import MintSettings, ContentStoreSettings, LedgerSettings, load_settings
from .constants import EvidenceCategory
from .models import (
    AssetAttributes,
    EvidenceFile,
    EvidenceReference,
    FullMetadataRecord,
    MintedToken,
    StoredContent,
    VerificationBlock,
)
from .commitment import CommitmentBuilder, CommitmentTag, canonical_order, canonical_order_from_files, is_rwa_memo
from .content_store import ContentStore, InMemoryContentStore, PinataContentStore, build_content_store, compute_cid
from .uploads import UploadBatch, upload_evidence
from .encoder import (
    InlinePayload,
    PointerPayload,
    OnChainPayload,
    MetadataEncoder,
    decode_payload,
    encode_collection_memo,
    parse_collection_memo,
)
from .authority import SigningAuthority
from .transactions import CollectionSpec, MintTransaction, SignedMintTransaction, SignerRole, TransactionSignature
from .custodian import CustodianSigner, LocalKeyCustodianSigner, request_custodian_signature
from .ledger import LedgerClient, LedgerReceipt, MintSubmission, MirrorNodeClient, NftRecord, SimulatedLedger
from .orchestrator import FailureReason, MintOrchestrator, MintOutcome, MintSession, MintState
from .verifier import CommitmentVerifier, Match, Mismatch, verify
from .exceptions import (
    RWAMintError,
    ConfigurationError,
    MetadataBudgetError,
    InvalidCommitmentTag,
    InvalidContentId,
    InvalidRecord,
    ContentStoreError,
    UploadError,
    MintError,
    CollectionCreateError,
    SigningError,
    SigningTimeout,
    SigningRejected,
    AuthorityReuseError,
    SubmissionError,
    LedgerRejected,
    ReceiptMissingSerial,
    AttemptCancelled,
    InvalidStateTransition,
)

__version__ = "0.1.0"

__all__ = [
    "MintSettings",
    "ContentStoreSettings",
    "LedgerSettings",
    "load_settings",
    "EvidenceCategory",
    "AssetAttributes",
    "EvidenceFile",
    "EvidenceReference",
    "FullMetadataRecord",
    "MintedToken",
    "StoredContent",
    "VerificationBlock",
    "CommitmentBuilder",
    "CommitmentTag",
    "canonical_order",
    "canonical_order_from_files",
    "is_rwa_memo",
    "ContentStore",
    "InMemoryContentStore",
    "PinataContentStore",
    "build_content_store",
    "compute_cid",
    "UploadBatch",
    "upload_evidence",
    "InlinePayload",
    "PointerPayload",
    "OnChainPayload",
    "MetadataEncoder",
    "decode_payload",
    "encode_collection_memo",
    "parse_collection_memo",
    "SigningAuthority",
    "CollectionSpec",
    "MintTransaction",
    "SignedMintTransaction",
    "SignerRole",
    "TransactionSignature",
    "CustodianSigner",
    "LocalKeyCustodianSigner",
    "request_custodian_signature",
    "LedgerClient",
    "LedgerReceipt",
    "MintSubmission",
    "MirrorNodeClient",
    "NftRecord",
    "SimulatedLedger",
    "FailureReason",
    "MintOrchestrator",
    "MintOutcome",
    "MintSession",
    "MintState",
    "CommitmentVerifier",
    "Match",
    "Mismatch",
    "verify",
    "RWAMintError",
    "ConfigurationError",
    "MetadataBudgetError",
    "InvalidCommitmentTag",
    "InvalidContentId",
    "InvalidRecord",
    "ContentStoreError",
    "UploadError",
    "MintError",
    "CollectionCreateError",
    "SigningError",
    "SigningTimeout",
    "SigningRejected",
    "AuthorityReuseError",
    "SubmissionError",
    "LedgerRejected",
    "ReceiptMissingSerial",
    "AttemptCancelled",
    "InvalidStateTransition",
]
