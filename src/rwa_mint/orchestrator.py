"""Tokenization attempt orchestration.

One call to `MintOrchestrator.tokenize` is one attempt:

    DRAFTING → FILES_UPLOADING → FILES_UPLOADED → COLLECTION_CREATING
      → COLLECTION_CREATED → AWAITING_CUSTODIAN_SIGNATURE
      → AWAITING_AUTHORITY_SIGNATURE → SUBMITTING → CONFIRMED
    (any non-terminal state) → FAILED

Upload failures are recorded and the attempt carries on over the files
that were stored. Every other failure ends the attempt in FAILED with a
reason. The ephemeral signing authority is discarded when the attempt
ends, whatever the outcome.

Usage:
    session = MintSession(
        custodian_account="0.0.1234",
        signer=wallet_signer,
        ledger=SimulatedLedger(),
        store=InMemoryContentStore(),
    )
    outcome = await MintOrchestrator(session).tokenize(attributes, files)
    outcome.raise_for_failure()
    print(outcome.token.nft_id)
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from .authority import SigningAuthority
from .commitment import CommitmentBuilder, CommitmentTag
from .config import MintSettings, load_settings
from .constants import EvidenceCategory
from .content_store import ContentStore
from .custodian import CustodianSigner, request_custodian_signature
from .encoder import MetadataEncoder, OnChainPayload, encode_collection_memo
from .exceptions import (
    AttemptCancelled,
    AuthorityReuseError,
    CollectionCreateError,
    ContentStoreError,
    InvalidStateTransition,
    LedgerRejected,
    MetadataBudgetError,
    ReceiptMissingSerial,
    RWAMintError,
    SigningError,
    SigningRejected,
    SigningTimeout,
    SubmissionError,
)
from .ledger import LedgerClient, MintSubmission
from .logging import StructuredLogger, get_logger
from .models import (
    AssetAttributes,
    EvidenceFile,
    EvidenceReference,
    FullMetadataRecord,
    MintedToken,
    VerificationBlock,
)
from .retry import RetryConfig, RetryExhausted, retry_async, submission_retry_config
from .transactions import (
    CollectionSpec,
    MintTransaction,
    SignedMintTransaction,
    new_transaction_id,
)
from .uploads import UploadBatch, upload_evidence

T = TypeVar("T")


class MintState(str, Enum):
    """Tokenization attempt states."""
    DRAFTING = "drafting"
    FILES_UPLOADING = "files_uploading"
    FILES_UPLOADED = "files_uploaded"
    COLLECTION_CREATING = "collection_creating"
    COLLECTION_CREATED = "collection_created"
    AWAITING_CUSTODIAN_SIGNATURE = "awaiting_custodian_signature"
    AWAITING_AUTHORITY_SIGNATURE = "awaiting_authority_signature"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MintState.CONFIRMED, MintState.FAILED)


class FailureReason(str, Enum):
    """Why an attempt ended in FAILED."""
    METADATA_BUDGET = "metadata_budget"
    CONTENT_STORE = "content_store"
    COLLECTION_CREATE = "collection_create"
    SIGNING_TIMEOUT = "signing_timeout"
    SIGNING_REJECTED = "signing_rejected"
    AUTHORITY_SIGNATURE = "authority_signature"
    SUBMISSION = "submission"
    LEDGER_REJECTED = "ledger_rejected"
    RECEIPT_MISSING_SERIAL = "receipt_missing_serial"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


# Only explicit transitions are allowed
VALID_TRANSITIONS: dict[MintState, set[MintState]] = {
    MintState.DRAFTING: {MintState.FILES_UPLOADING, MintState.FAILED},
    MintState.FILES_UPLOADING: {MintState.FILES_UPLOADED, MintState.FAILED},
    MintState.FILES_UPLOADED: {MintState.COLLECTION_CREATING, MintState.FAILED},
    MintState.COLLECTION_CREATING: {MintState.COLLECTION_CREATED, MintState.FAILED},
    MintState.COLLECTION_CREATED: {MintState.AWAITING_CUSTODIAN_SIGNATURE, MintState.FAILED},
    MintState.AWAITING_CUSTODIAN_SIGNATURE: {MintState.AWAITING_AUTHORITY_SIGNATURE, MintState.FAILED},
    MintState.AWAITING_AUTHORITY_SIGNATURE: {MintState.SUBMITTING, MintState.FAILED},
    MintState.SUBMITTING: {MintState.CONFIRMED, MintState.FAILED},
    MintState.CONFIRMED: set(),  # Terminal state
    MintState.FAILED: set(),  # Terminal state
}

# Most specific first
_FAILURE_REASONS: list[tuple[type[BaseException], FailureReason]] = [
    (AttemptCancelled, FailureReason.CANCELLED),
    (CollectionCreateError, FailureReason.COLLECTION_CREATE),
    (SigningTimeout, FailureReason.SIGNING_TIMEOUT),
    (AuthorityReuseError, FailureReason.AUTHORITY_SIGNATURE),
    (SigningError, FailureReason.SIGNING_REJECTED),
    (ReceiptMissingSerial, FailureReason.RECEIPT_MISSING_SERIAL),
    (LedgerRejected, FailureReason.LEDGER_REJECTED),
    (SubmissionError, FailureReason.SUBMISSION),
    (MetadataBudgetError, FailureReason.METADATA_BUDGET),
    (ContentStoreError, FailureReason.CONTENT_STORE),
]


def failure_reason_for(error: BaseException) -> FailureReason:
    for error_type, reason in _FAILURE_REASONS:
        if isinstance(error, error_type):
            return reason
    return FailureReason.INTERNAL


@dataclass(frozen=True)
class StateChange:
    """One entry of an attempt's transition history."""
    from_state: MintState
    to_state: MintState
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, str]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "at": self.at.isoformat(),
        }


class MintAttempt:
    """State holder for one attempt; enforces the transition table."""

    def __init__(self, attempt_id: Optional[str] = None):
        self.attempt_id = attempt_id or uuid.uuid4().hex
        self.state = MintState.DRAFTING
        self.history: List[StateChange] = []

    def can_transition_to(self, new_state: MintState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self.state, set())

    def transition(self, new_state: MintState) -> StateChange:
        if not self.can_transition_to(new_state):
            raise InvalidStateTransition(self.state.value, new_state.value)
        change = StateChange(self.state, new_state)
        self.state = new_state
        self.history.append(change)
        return change


@dataclass
class MintSession:
    """Everything one attempt needs; nothing is global.

    `cancel_event` may be set by the caller at any time to abandon the
    attempt. Set during submission it stops further retries; a mint the
    ledger has already accepted is not undone.
    """
    custodian_account: str
    signer: CustodianSigner
    ledger: LedgerClient
    store: ContentStore
    settings: MintSettings = field(default_factory=load_settings)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass
class MintOutcome:
    """Result of one tokenization attempt."""
    attempt_id: str
    state: MintState = MintState.DRAFTING
    token: Optional[MintedToken] = None
    failure_reason: Optional[FailureReason] = None
    error: Optional[BaseException] = None
    upload_failures: List[RWAMintError] = field(default_factory=list)
    stored: List[EvidenceReference] = field(default_factory=list)
    commitment_tag: Optional[CommitmentTag] = None
    payload: Optional[OnChainPayload] = None
    record: Optional[FullMetadataRecord] = None
    collection_id: Optional[str] = None
    tx_id: Optional[str] = None
    authority_fingerprint: Optional[str] = None
    history: List[StateChange] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == MintState.CONFIRMED and self.token is not None

    @property
    def incomplete(self) -> bool:
        return bool(self.upload_failures)

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "state": self.state.value,
            "token": self.token.to_dict() if self.token else None,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error": self.error.to_dict() if isinstance(self.error, RWAMintError) else (
                str(self.error) if self.error else None
            ),
            "incomplete": self.incomplete,
            "upload_failures": [failure.to_dict() for failure in self.upload_failures],
            "commitment_tag": self.commitment_tag.render() if self.commitment_tag else None,
            "payload_mode": self.payload.mode if self.payload else None,
            "collection_id": self.collection_id,
            "tx_id": self.tx_id,
            "history": [change.to_dict() for change in self.history],
        }


class MintOrchestrator:
    """Runs tokenization attempts for one session."""

    def __init__(
        self,
        session: MintSession,
        builder: Optional[CommitmentBuilder] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self._session = session
        self._settings = session.settings
        self._builder = builder or CommitmentBuilder()
        self._encoder = MetadataEncoder(session.store, budget=self._settings.metadata_budget_bytes)
        self._retry_config = retry_config or submission_retry_config(
            max_retries=self._settings.submission_max_retries,
            base_delay=self._settings.submission_base_delay_seconds,
            max_delay=self._settings.submission_max_delay_seconds,
        )
        self.last_outcome: Optional[MintOutcome] = None

    async def tokenize(
        self,
        attributes: AssetAttributes,
        files: Sequence[EvidenceFile] = (),
    ) -> MintOutcome:
        """Run one attempt to completion.

        Fatal errors end the attempt in FAILED and are returned on the
        outcome, not raised; use `raise_for_failure()`. Task cancellation
        marks the attempt FAILED(CANCELLED) and then propagates.
        """
        attempt = MintAttempt()
        authority = SigningAuthority.generate()
        outcome = MintOutcome(attempt_id=attempt.attempt_id, authority_fingerprint=authority.fingerprint)
        self.last_outcome = outcome
        log = get_logger(__name__)

        with log.context(
            operation="tokenize",
            attempt_id=attempt.attempt_id,
            custodian=self._session.custodian_account,
            asset_id=attributes.asset_id,
        ):
            try:
                await self._run(attempt, authority, attributes, list(files), outcome, log)
            except asyncio.CancelledError:
                self._fail(
                    attempt,
                    outcome,
                    AttemptCancelled(
                        "Tokenization attempt cancelled",
                        details={"during": attempt.state.value},
                    ),
                    log,
                )
                raise
            except RWAMintError as e:
                self._fail(attempt, outcome, e, log)
            except Exception as e:
                self._fail(attempt, outcome, e, log)
                raise
            finally:
                authority.discard()
                outcome.state = attempt.state
                outcome.history = list(attempt.history)

        return outcome

    async def _run(
        self,
        attempt: MintAttempt,
        authority: SigningAuthority,
        attributes: AssetAttributes,
        files: List[EvidenceFile],
        outcome: MintOutcome,
        log: StructuredLogger,
    ) -> None:
        session = self._session
        settings = self._settings

        # Evidence upload
        self._transition(attempt, MintState.FILES_UPLOADING, log)
        batch: UploadBatch = await self._unless_cancelled(
            upload_evidence(
                session.store,
                files,
                max_concurrency=settings.max_concurrent_uploads,
                asset_name=attributes.name,
            ),
            attempt,
        )
        outcome.upload_failures = list(batch.failures)
        outcome.stored = [f.reference() for f in batch.stored]
        self._transition(attempt, MintState.FILES_UPLOADED, log)
        if batch.incomplete:
            log.warning(
                "Evidence set incomplete",
                failed=[failure.details for failure in batch.failures],
            )

        # Commitment and on-chain payload
        tag = self._builder.build(batch.content_ids())
        outcome.commitment_tag = tag
        record = self._build_record(attributes, batch, tag)
        outcome.record = record
        payload = await self._unless_cancelled(self._encoder.encode(record), attempt)
        outcome.payload = payload
        log.info("Commitment built", commitment_tag=tag.render(), payload_mode=payload.mode)

        # Collection
        self._check_cancelled(attempt)
        self._transition(attempt, MintState.COLLECTION_CREATING, log)
        memo = encode_collection_memo(
            attributes,
            session.custodian_account,
            tag,
            budget=settings.metadata_budget_bytes,
        )
        spec = CollectionSpec.for_asset(
            attributes,
            treasury_account=session.custodian_account,
            supply_public_key=authority.public_key_hex,
            memo=memo,
            max_fee_tinybars=settings.ledger.collection_max_fee_tinybars,
            valid_duration_seconds=settings.ledger.transaction_valid_duration_seconds,
        )
        collection_id = await self._create_collection(spec, attempt)
        outcome.collection_id = collection_id
        self._transition(attempt, MintState.COLLECTION_CREATED, log)

        # Custodian signature
        tx = MintTransaction(
            transaction_id=new_transaction_id(session.custodian_account),
            collection_id=collection_id,
            metadata=payload.to_bytes(),
            max_fee_tinybars=settings.ledger.mint_max_fee_tinybars,
            valid_duration_seconds=settings.ledger.transaction_valid_duration_seconds,
        )
        outcome.tx_id = tx.transaction_id
        self._transition(attempt, MintState.AWAITING_CUSTODIAN_SIGNATURE, log)
        signed = await self._collect_custodian_signature(tx)

        # Authority signature
        self._transition(attempt, MintState.AWAITING_AUTHORITY_SIGNATURE, log)
        signed = signed.with_signature(authority.sign(tx))

        # Submission
        self._check_cancelled(attempt)
        self._transition(attempt, MintState.SUBMITTING, log)
        submission = await self._unless_cancelled(self._submit(collection_id, signed), attempt)
        serial = submission.receipt.serial_number
        if serial is None:
            log.critical(
                "Mint accepted without serial number",
                tx_id=submission.tx_id,
                collection_id=collection_id,
                status=submission.receipt.status,
            )
            raise ReceiptMissingSerial(submission.tx_id, details={"collection_id": collection_id})

        outcome.token = MintedToken(
            collection_id=collection_id,
            serial_number=serial,
            tx_id=submission.tx_id,
            commitment_tag=tag.render(),
        )
        self._transition(attempt, MintState.CONFIRMED, log)
        log.info("Asset tokenized", nft_id=outcome.token.nft_id, incomplete=batch.incomplete)

    def _build_record(
        self,
        attributes: AssetAttributes,
        batch: UploadBatch,
        tag: CommitmentTag,
    ) -> FullMetadataRecord:
        by_category: Dict[EvidenceCategory, List[EvidenceReference]] = {
            category: [] for category in EvidenceCategory
        }
        for f in batch.stored:
            by_category[EvidenceCategory(f.category)].append(f.reference())

        return FullMetadataRecord(
            attributes=attributes,
            display=by_category[EvidenceCategory.DISPLAY],
            evidence=by_category[EvidenceCategory.EVIDENCE],
            legal=by_category[EvidenceCategory.LEGAL],
            verification=VerificationBlock(
                algorithm_id=tag.algorithm_id,
                digest_hex=tag.digest_hex,
                display_count=len(by_category[EvidenceCategory.DISPLAY]),
                evidence_count=len(by_category[EvidenceCategory.EVIDENCE]),
                legal_count=len(by_category[EvidenceCategory.LEGAL]),
            ),
            custodian=self._session.custodian_account,
            tokenized_at=datetime.now(timezone.utc).isoformat(),
            incomplete=batch.incomplete,
        )

    async def _create_collection(self, spec: CollectionSpec, attempt: MintAttempt) -> str:
        try:
            return await self._unless_cancelled(self._session.ledger.create_collection(spec), attempt)
        except (CollectionCreateError, AttemptCancelled):
            raise
        except Exception as e:
            raise CollectionCreateError(
                f"Token collection creation failed: {e}",
                details={"cause": type(e).__name__, "treasury": spec.treasury_account},
            ) from e

    async def _collect_custodian_signature(self, tx: MintTransaction) -> SignedMintTransaction:
        signer = self._session.signer
        signature = await request_custodian_signature(
            signer,
            tx,
            timeout=self._settings.custodian_signature_timeout_seconds,
            cancel_event=self._session.cancel_event,
        )
        expected_key = signer.public_key
        if expected_key is not None and signature.public_key != expected_key:
            raise SigningRejected(
                "Custodian signature was produced by an unexpected key",
                details={"tx_id": tx.transaction_id, "signature": "custodian"},
            )
        try:
            return SignedMintTransaction(tx).with_signature(signature)
        except SigningError as e:
            raise SigningRejected(
                e.message,
                details={"tx_id": tx.transaction_id, "signature": "custodian"},
            ) from e

    async def _submit(self, collection_id: str, signed: SignedMintTransaction) -> MintSubmission:
        # Same signed bytes on every retry; the transaction id deduplicates
        try:
            return await retry_async(
                self._session.ledger.mint,
                collection_id,
                signed,
                config=self._retry_config,
            )
        except RetryExhausted as e:
            raise SubmissionError(
                f"Ledger submission failed after {e.stats.attempts} attempts",
                details={"tx_id": signed.transaction_id, "attempts": e.stats.attempts},
            ) from e.original_exception

    async def _unless_cancelled(self, aw: Awaitable[T], attempt: MintAttempt) -> T:
        """Await `aw` unless the session's cancel event fires first."""
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._session.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (task, waiter):
                if not pending.done():
                    pending.cancel()

        if waiter in done and task not in done:
            raise AttemptCancelled(
                "Tokenization attempt cancelled",
                details={"during": attempt.state.value},
            )
        return task.result()

    def _check_cancelled(self, attempt: MintAttempt) -> None:
        if self._session.cancelled:
            raise AttemptCancelled(
                "Tokenization attempt cancelled",
                details={"during": attempt.state.value},
            )

    def _transition(self, attempt: MintAttempt, new_state: MintState, log: StructuredLogger) -> None:
        change = attempt.transition(new_state)
        log.info(f"Attempt {change.from_state.value} -> {change.to_state.value}")

    def _fail(
        self,
        attempt: MintAttempt,
        outcome: MintOutcome,
        error: BaseException,
        log: StructuredLogger,
    ) -> None:
        reason = failure_reason_for(error)
        failed_in = attempt.state
        if not attempt.state.is_terminal:
            attempt.transition(MintState.FAILED)
        outcome.failure_reason = reason
        outcome.error = error
        outcome.token = None

        details = error.to_dict() if isinstance(error, RWAMintError) else {"error": str(error)}
        if reason in (FailureReason.RECEIPT_MISSING_SERIAL, FailureReason.INTERNAL):
            log.critical(f"Attempt failed in {failed_in.value}: {reason.value}", error=details)
        elif reason == FailureReason.CANCELLED:
            log.warning(f"Attempt cancelled in {failed_in.value}")
        else:
            log.error(f"Attempt failed in {failed_in.value}: {reason.value}", error=details)


__all__ = [
    "MintState",
    "FailureReason",
    "VALID_TRANSITIONS",
    "StateChange",
    "MintAttempt",
    "MintSession",
    "MintOutcome",
    "MintOrchestrator",
    "failure_reason_for",
]
