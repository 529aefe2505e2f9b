"""
Tests for rwa_mint.orchestrator.

Tests cover:
- End-to-end tokenization against the simulated ledger
- Commitment order sensitivity through the whole pipeline
- Partial upload failure (incomplete evidence set)
- Signing deadline, rejection and cancellation
- Receipt without serial number
- Submission retries and idempotency
- Transition table enforcement
"""
from __future__ import annotations

import asyncio
import dataclasses
from decimal import Decimal

import pytest

from rwa_mint.authority import SigningAuthority
from rwa_mint.custodian import LocalKeyCustodianSigner
from rwa_mint.encoder import PointerPayload
from rwa_mint.exceptions import (
    InvalidStateTransition,
    ReceiptMissingSerial,
    SigningTimeout,
)
from rwa_mint.models import FullMetadataRecord
from rwa_mint.orchestrator import (
    VALID_TRANSITIONS,
    FailureReason,
    MintAttempt,
    MintOrchestrator,
    MintSession,
    MintState,
)
from rwa_mint.retry import submission_retry_config
from rwa_mint.verifier import CommitmentVerifier

from conftest import CUSTODIAN_ACCOUNT, ScriptedContentStore

TAG_ABCD = "RWA:V1:HASH:b207f450cadea88230c699b77c0f6c9e2089341545b4724895e55e37dd2e7c5b"
TAG_ACBD = "RWA:V1:HASH:e4d0e15d39bc63dfffbdf2c5dfc2849c64e4f7faf141457843353390b82b9ba3"
TAG_AC = "RWA:V1:HASH:c2c3c283285dbdc628da24158065abe399eeac298b86db8cdc53bd602101b178"

HAPPY_PATH = [
    MintState.FILES_UPLOADING,
    MintState.FILES_UPLOADED,
    MintState.COLLECTION_CREATING,
    MintState.COLLECTION_CREATED,
    MintState.AWAITING_CUSTODIAN_SIGNATURE,
    MintState.AWAITING_AUTHORITY_SIGNATURE,
    MintState.SUBMITTING,
    MintState.CONFIRMED,
]


def _session_with_signer(session, signer, ledger):
    ledger.register_account(CUSTODIAN_ACCOUNT, signer.public_key)
    return MintSession(
        custodian_account=CUSTODIAN_ACCOUNT,
        signer=signer,
        ledger=ledger,
        store=session.store,
        settings=session.settings,
    )


class TestTokenize:
    """End-to-end tests for MintOrchestrator.tokenize."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, session, ledger, scripted_store, attributes, evidence_files):
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.succeeded
        assert outcome.state == MintState.CONFIRMED
        assert outcome.failure_reason is None
        assert not outcome.incomplete
        assert outcome.commitment_tag.render() == TAG_ABCD
        assert [change.to_state for change in outcome.history] == HAPPY_PATH

        token = outcome.token
        assert token.nft_id == "0.0.5000@1"
        assert token.commitment_tag == TAG_ABCD
        assert token.tx_id == outcome.tx_id
        assert token.tx_id.startswith(f"{CUSTODIAN_ACCOUNT}@")

        # Full record is off-chain; the NFT carries its CID
        assert isinstance(outcome.payload, PointerPayload)
        nft = ledger.get_nft("0.0.5000", 1)
        assert nft.metadata == outcome.payload.to_bytes()
        assert len(nft.metadata) <= session.settings.metadata_budget_bytes

        record = FullMetadataRecord.from_json(await scripted_store.fetch(outcome.payload.content_id))
        assert record.verification.digest_hex == outcome.commitment_tag.digest_hex
        assert record.custodian == CUSTODIAN_ACCOUNT
        assert CommitmentVerifier().verify(record, TAG_ABCD)

    @pytest.mark.asyncio
    async def test_collection_shape(self, session, ledger, attributes, evidence_files):
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)
        spec = ledger.collection_spec(outcome.collection_id)

        assert spec.name == "Harbor View Apartments Property NFT"
        assert spec.symbol == "PROPE"
        assert spec.max_supply == 1
        assert spec.treasury_account == CUSTODIAN_ACCOUNT
        assert spec.memo == "RWA:prop-001|Value:$1250000|AMC:0.0.1234"

    @pytest.mark.asyncio
    async def test_evidence_order_changes_tag(self, session, attributes, evidence_files):
        display, survey, appraisal, deed = evidence_files
        outcome = await MintOrchestrator(session).tokenize(attributes, [display, appraisal, survey, deed])

        assert outcome.succeeded
        assert outcome.commitment_tag.render() == TAG_ACBD

    @pytest.mark.asyncio
    async def test_category_order_is_canonical(self, session, attributes, evidence_files):
        display, survey, appraisal, deed = evidence_files
        outcome = await MintOrchestrator(session).tokenize(attributes, [deed, survey, display, appraisal])
        assert outcome.commitment_tag.render() == TAG_ABCD

    @pytest.mark.asyncio
    async def test_large_valuation(self, session, ledger, attributes, evidence_files):
        attributes.total_value = Decimal("1e30")
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.succeeded
        spec = ledger.collection_spec(outcome.collection_id)
        assert spec.memo == "RWA:prop-001|Value:$1" + "0" * 30 + "|AMC:0.0.1234"

    @pytest.mark.asyncio
    async def test_free_form_attributes(self, session, ledger, scripted_store, attributes, evidence_files):
        attributes.total_value = "on request"
        attributes.location = "Lisbon, PT"
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.succeeded
        assert ledger.collection_spec(outcome.collection_id).memo == TAG_ABCD
        record = FullMetadataRecord.from_json(await scripted_store.fetch(outcome.payload.content_id))
        assert record.attributes.total_value == "on request"
        assert record.attributes.location == "Lisbon, PT"
        assert CommitmentVerifier().verify(record, TAG_ABCD)

    @pytest.mark.asyncio
    async def test_partial_upload_failure(self, session, ledger, attributes, evidence_files):
        session.store = ScriptedContentStore(
            ids={"front.jpg": "cidA", "appraisal.pdf": "cidC"},
            fail_names={"survey.pdf"},
        )
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files[:3])

        assert outcome.succeeded
        assert outcome.incomplete
        assert outcome.commitment_tag.render() == TAG_AC
        assert len(outcome.upload_failures) == 1
        assert outcome.upload_failures[0].details["file"] == "survey.pdf"
        assert outcome.record.incomplete
        assert outcome.record.verification.evidence_count == 1
        assert outcome.to_dict()["incomplete"] is True

    @pytest.mark.asyncio
    async def test_empty_evidence_set(self, session, attributes):
        outcome = await MintOrchestrator(session).tokenize(attributes, [])

        assert outcome.succeeded
        assert outcome.commitment_tag.digest_hex == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    @pytest.mark.asyncio
    async def test_authority_discarded_after_success(self, monkeypatch, session, attributes, evidence_files):
        created = []
        original = SigningAuthority.generate

        def capture():
            authority = original()
            created.append(authority)
            return authority

        monkeypatch.setattr(SigningAuthority, "generate", staticmethod(capture))
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert len(created) == 1
        assert created[0].is_discarded
        assert outcome.authority_fingerprint == created[0].fingerprint

    @pytest.mark.asyncio
    async def test_fresh_authority_per_attempt(self, session, ledger, attributes, evidence_files):
        orchestrator = MintOrchestrator(session)
        first = await orchestrator.tokenize(attributes, evidence_files)
        second = await orchestrator.tokenize(attributes, evidence_files)

        assert first.authority_fingerprint != second.authority_fingerprint
        assert (
            ledger.collection_spec(first.collection_id).supply_public_key
            != ledger.collection_spec(second.collection_id).supply_public_key
        )


class TestTokenizeFailures:
    """Fatal failure paths end in FAILED with a reason."""

    @pytest.mark.asyncio
    async def test_signing_timeout(self, session, ledger, attributes, evidence_files):
        async def slow_approval(tx):
            await asyncio.sleep(5)
            return True

        session = _session_with_signer(
            session, LocalKeyCustodianSigner(CUSTODIAN_ACCOUNT, approve=slow_approval), ledger
        )
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.state == MintState.FAILED
        assert outcome.failure_reason == FailureReason.SIGNING_TIMEOUT
        assert isinstance(outcome.error, SigningTimeout)
        assert outcome.token is None
        assert ledger.submission_count == 0
        assert outcome.history[-1].from_state == MintState.AWAITING_CUSTODIAN_SIGNATURE
        with pytest.raises(SigningTimeout):
            outcome.raise_for_failure()

    @pytest.mark.asyncio
    async def test_signing_rejected(self, session, ledger, attributes, evidence_files):
        async def decline(tx):
            return False

        session = _session_with_signer(
            session, LocalKeyCustodianSigner(CUSTODIAN_ACCOUNT, approve=decline), ledger
        )
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.failure_reason == FailureReason.SIGNING_REJECTED
        assert ledger.submission_count == 0

    @pytest.mark.asyncio
    async def test_custodian_key_mismatch(self, session, ledger, attributes, evidence_files):
        class SwappedKeySigner(LocalKeyCustodianSigner):
            @property
            def public_key(self):
                return b"\x01" * 32

        session = MintSession(
            custodian_account=CUSTODIAN_ACCOUNT,
            signer=SwappedKeySigner(CUSTODIAN_ACCOUNT),
            ledger=ledger,
            store=session.store,
            settings=session.settings,
        )
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)
        assert outcome.failure_reason == FailureReason.SIGNING_REJECTED

    @pytest.mark.asyncio
    async def test_missing_serial_is_fatal(self, session, ledger, attributes, evidence_files):
        ledger.omit_serials = True
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.state == MintState.FAILED
        assert outcome.failure_reason == FailureReason.RECEIPT_MISSING_SERIAL
        assert isinstance(outcome.error, ReceiptMissingSerial)
        assert outcome.token is None
        assert ledger.submission_count == 1

    @pytest.mark.asyncio
    async def test_collection_create_failure(self, session, ledger, attributes, evidence_files):
        ledger.fail_collection_create = True
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.failure_reason == FailureReason.COLLECTION_CREATE
        assert outcome.collection_id is None
        assert outcome.history[-1].from_state == MintState.COLLECTION_CREATING

    @pytest.mark.asyncio
    async def test_metadata_budget_too_small(self, session, ledger, attributes, evidence_files):
        session.settings = session.settings.model_copy(update={"metadata_budget_bytes": 10})
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.failure_reason == FailureReason.METADATA_BUDGET
        assert outcome.collection_id is None

    @pytest.mark.asyncio
    async def test_submission_exhausted(self, session, ledger, attributes, evidence_files):
        ledger.fail_next_submissions = 10
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.failure_reason == FailureReason.SUBMISSION
        assert outcome.error.details["attempts"] == session.settings.submission_max_retries + 1
        assert ledger.minted_count(outcome.collection_id) == 0

    @pytest.mark.asyncio
    async def test_lost_response_retries_to_one_token(self, session, ledger, attributes, evidence_files):
        ledger.drop_next_responses = 1
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.succeeded
        assert ledger.submission_count == 2
        assert ledger.minted_count(outcome.collection_id) == 1

    @pytest.mark.asyncio
    async def test_outcome_to_dict_on_failure(self, session, ledger, attributes, evidence_files):
        ledger.fail_collection_create = True
        data = (await MintOrchestrator(session).tokenize(attributes, evidence_files)).to_dict()

        assert data["state"] == "failed"
        assert data["failure_reason"] == "collection_create"
        assert data["error"]["error"] == "COLLECTION_CREATE_FAILED"
        assert data["error"]["details"]["stage"] == "collection_create"
        assert data["token"] is None


class TestCancellation:
    """Tests for cancelling an attempt."""

    @pytest.mark.asyncio
    async def test_cancel_event_during_signing(self, session, ledger, attributes, evidence_files):
        async def never(tx):
            await asyncio.sleep(10)
            return True

        session = _session_with_signer(session, LocalKeyCustodianSigner(CUSTODIAN_ACCOUNT, approve=never), ledger)
        session.settings = session.settings.model_copy(update={"custodian_signature_timeout_seconds": 5.0})
        asyncio.get_running_loop().call_later(0.05, session.cancel)

        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.state == MintState.FAILED
        assert outcome.failure_reason == FailureReason.CANCELLED
        assert ledger.submission_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, session, ledger, attributes, evidence_files):
        session.cancel()
        outcome = await MintOrchestrator(session).tokenize(attributes, evidence_files)

        assert outcome.failure_reason == FailureReason.CANCELLED
        assert outcome.collection_id is None

    @pytest.mark.asyncio
    async def test_cancel_event_between_submission_retries(self, session, ledger, attributes, evidence_files):
        ledger.fail_next_submissions = 10
        retry_config = dataclasses.replace(
            submission_retry_config(max_retries=10, base_delay=1.0, max_delay=1.0),
            on_retry=lambda attempt, error, delay: session.cancel(),
        )

        outcome = await MintOrchestrator(session, retry_config=retry_config).tokenize(attributes, evidence_files)

        assert outcome.state == MintState.FAILED
        assert outcome.failure_reason == FailureReason.CANCELLED
        assert outcome.history[-1].from_state == MintState.SUBMITTING
        assert ledger.submission_count == 1
        assert ledger.minted_count(outcome.collection_id) == 0

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, session, ledger, attributes, evidence_files):
        async def never(tx):
            await asyncio.sleep(10)
            return True

        session = _session_with_signer(session, LocalKeyCustodianSigner(CUSTODIAN_ACCOUNT, approve=never), ledger)
        session.settings = session.settings.model_copy(update={"custodian_signature_timeout_seconds": 5.0})
        orchestrator = MintOrchestrator(session)

        task = asyncio.ensure_future(orchestrator.tokenize(attributes, evidence_files))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.last_outcome.state == MintState.FAILED
        assert orchestrator.last_outcome.failure_reason == FailureReason.CANCELLED
        assert ledger.submission_count == 0


class TestReattempt:
    @pytest.mark.asyncio
    async def test_stored_files_are_reused(self, session, ledger, scripted_store, attributes, evidence_files):
        ledger.fail_collection_create = True
        orchestrator = MintOrchestrator(session)
        first = await orchestrator.tokenize(attributes, evidence_files)
        assert first.failure_reason == FailureReason.COLLECTION_CREATE

        ledger.fail_collection_create = False
        scripted_store.uploaded_names.clear()
        second = await orchestrator.tokenize(attributes, evidence_files)

        assert second.succeeded
        assert second.commitment_tag.render() == TAG_ABCD
        assert scripted_store.uploaded_names == ["rwa-metadata.json"]


class TestMintAttempt:
    """Tests for the transition table."""

    def test_starts_in_drafting(self):
        attempt = MintAttempt()
        assert attempt.state == MintState.DRAFTING
        assert attempt.history == []

    def test_happy_path_is_legal(self):
        attempt = MintAttempt()
        for state in HAPPY_PATH:
            attempt.transition(state)
        assert attempt.state.is_terminal

    def test_skipping_a_state_is_illegal(self):
        attempt = MintAttempt()
        attempt.transition(MintState.FILES_UPLOADING)
        with pytest.raises(InvalidStateTransition):
            attempt.transition(MintState.SUBMITTING)
        assert attempt.state == MintState.FILES_UPLOADING

    def test_terminal_states_are_final(self):
        assert VALID_TRANSITIONS[MintState.CONFIRMED] == set()
        assert VALID_TRANSITIONS[MintState.FAILED] == set()

        attempt = MintAttempt()
        attempt.transition(MintState.FAILED)
        with pytest.raises(InvalidStateTransition):
            attempt.transition(MintState.FILES_UPLOADING)

    def test_every_non_terminal_state_can_fail(self):
        for state, targets in VALID_TRANSITIONS.items():
            if not state.is_terminal:
                assert MintState.FAILED in targets

    def test_history_records_changes(self):
        attempt = MintAttempt("attempt-1")
        change = attempt.transition(MintState.FILES_UPLOADING)

        assert attempt.attempt_id == "attempt-1"
        assert attempt.history == [change]
        assert change.to_dict()["from"] == "drafting"
        assert change.to_dict()["to"] == "files_uploading"
