"""Unified exception hierarchy for rwa-mint.

All package exceptions inherit from RWAMintError, enabling:
- Consistent handling at the orchestrator boundary
- Machine-readable error codes for callers deciding whether to retry
- Structured details naming the failing stage, signature or receipt field

Usage:
    from rwa_mint.exceptions import RWAMintError, SigningTimeout

    try:
        outcome.raise_for_failure()
    except SigningTimeout as e:
        prompt_user_to_retry(e.to_dict())

All exceptions have:
- error_code: Machine-readable error code (e.g., "SIGNING_TIMEOUT")
- retryable: Whether a fresh attempt may succeed without operator action
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to response format
"""
from __future__ import annotations

from typing import Any, Optional


class RWAMintError(Exception):
    """Base exception for all rwa-mint errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "RWA_MINT_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Configuration & Format Errors
# =============================================================================

class ConfigurationError(RWAMintError):
    """Invalid configuration for the target ledger or store."""

    error_code = "CONFIGURATION_ERROR"


class MetadataBudgetError(ConfigurationError):
    """Even the pointer-mode payload does not fit the ledger budget."""

    error_code = "METADATA_BUDGET_EXCEEDED"

    def __init__(
        self,
        message: str,
        budget: int,
        payload_length: int,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["budget"] = budget
        details["payload_length"] = payload_length
        super().__init__(message, details=details)


class InvalidCommitmentTag(RWAMintError):
    """Text is not a well-formed commitment tag."""

    error_code = "INVALID_COMMITMENT_TAG"


class InvalidContentId(RWAMintError):
    """Content identifier cannot take part in a commitment."""

    error_code = "INVALID_CONTENT_ID"


class InvalidRecord(RWAMintError):
    """Full metadata record is structurally malformed."""

    error_code = "INVALID_RECORD"


# =============================================================================
# Content Store Errors
# =============================================================================

class ContentStoreError(RWAMintError):
    """Content store call failed."""

    error_code = "CONTENT_STORE_ERROR"
    retryable = True


class UploadError(ContentStoreError):
    """A single evidence file failed to upload.

    Recoverable: collected per file, never aborts the attempt.
    """

    error_code = "UPLOAD_FAILED"

    def __init__(
        self,
        file: Any,
        cause: BaseException,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.file = file
        self.cause = cause
        details = details or {}
        details["file"] = getattr(file, "name", "")
        details["category"] = str(getattr(file, "category", ""))
        details["cause"] = f"{type(cause).__name__}: {cause}"
        super().__init__(
            f"Upload of {details['category']} file '{details['file']}' failed: {cause}",
            details=details,
        )


# =============================================================================
# Minting Errors
# =============================================================================

class MintError(RWAMintError):
    """Base class for fatal errors of a tokenization attempt."""

    error_code = "MINT_ERROR"
    stage: str = ""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if self.stage:
            details.setdefault("stage", self.stage)
        super().__init__(message, details=details)


class CollectionCreateError(MintError):
    """Creating the single-asset collection failed."""

    error_code = "COLLECTION_CREATE_FAILED"
    stage = "collection_create"


class SigningError(MintError):
    """Base class for signature acquisition failures."""

    error_code = "SIGNING_ERROR"
    stage = "custodian_signature"


class SigningTimeout(SigningError):
    """Custodian did not sign before the deadline."""

    error_code = "SIGNING_TIMEOUT"
    retryable = True

    def __init__(
        self,
        timeout_seconds: float,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["timeout_seconds"] = timeout_seconds
        details["signature"] = "custodian"
        super().__init__(
            f"Custodian signature not received within {timeout_seconds:g}s",
            details=details,
        )


class SigningRejected(SigningError):
    """Custodian declined, or returned an invalid signature."""

    error_code = "SIGNING_REJECTED"


class AuthorityReuseError(SigningError):
    """An ephemeral signing authority was asked to sign twice."""

    error_code = "AUTHORITY_REUSED"
    stage = "authority_signature"


class SubmissionError(MintError):
    """Ledger submission failed before a receipt was obtained.

    Retryable with the transaction id as idempotency key.
    """

    error_code = "SUBMISSION_FAILED"
    stage = "submission"
    retryable = True


class LedgerRejected(MintError):
    """Ledger refused the transaction outright (bad signature, supply exhausted).

    Not retryable: resubmitting the same bytes gets the same answer.
    """

    error_code = "LEDGER_REJECTED"
    stage = "submission"


class ReceiptMissingSerial(MintError):
    """Ledger accepted the mint but the receipt carries no serial number.

    Protocol-level inconsistency: never retried.
    """

    error_code = "RECEIPT_MISSING_SERIAL"
    stage = "receipt"

    def __init__(
        self,
        tx_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["tx_id"] = tx_id
        details["receipt_field"] = "serial_numbers"
        super().__init__(
            f"Mint transaction {tx_id} was accepted but its receipt has no serial number",
            details=details,
        )


class AttemptCancelled(MintError):
    """Tokenization attempt was cancelled by its caller."""

    error_code = "ATTEMPT_CANCELLED"
    stage = "cancelled"


class InvalidStateTransition(RWAMintError):
    """Orchestrator was asked to take a transition its table forbids."""

    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition from {current} to {target}",
            details={"current": current, "target": target},
        )


__all__ = [
    "RWAMintError",
    "ConfigurationError",
    "MetadataBudgetError",
    "InvalidCommitmentTag",
    "InvalidContentId",
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
