"""
Centralized constants for rwa-mint.

Single source of truth for ledger limits, timeouts, retry defaults and
logging masks used throughout the package.

Usage:
    from rwa_mint.constants import LedgerLimits, Timeouts, RetryDefaults

All values are organized into logical namespaces using classes.
"""
from __future__ import annotations

from enum import StrEnum
from typing import Final


# =============================================================================
# Ledger Limits
# =============================================================================

class LedgerLimits:
    """Hard limits of the target ledger."""

    # NFT metadata / memo ceiling in bytes
    METADATA_BUDGET_BYTES: Final[int] = 100

    # A tokenized asset is exactly one unit
    COLLECTION_MAX_SUPPLY: Final[int] = 1

    TOKEN_SYMBOL_MAX_LENGTH: Final[int] = 5
    TOKEN_NAME_MAX_LENGTH: Final[int] = 100

    MINT_MAX_FEE_TINYBARS: Final[int] = 5 * 100_000_000
    COLLECTION_MAX_FEE_TINYBARS: Final[int] = 10 * 100_000_000
    TRANSACTION_VALID_DURATION_SECONDS: Final[int] = 120


class ContentLimits:
    """Content store limits."""

    MAX_FILE_SIZE_BYTES: Final[int] = 10 * 1024 * 1024
    MAX_CONCURRENT_UPLOADS: Final[int] = 4


# =============================================================================
# Commitment Format
# =============================================================================

class CommitmentFormat:
    """Wire format of the on-chain commitment tag."""

    PREFIX: Final[str] = "RWA"
    VERSION: Final[str] = "V1"
    ALGORITHM_ID: Final[str] = "HASH"
    SEPARATOR: Final[str] = ":"
    # Joins content identifiers before hashing
    CONTENT_ID_DELIMITER: Final[str] = ","
    DIGEST_HEX_LENGTH: Final[int] = 64


# =============================================================================
# Timeouts (seconds)
# =============================================================================

class Timeouts:
    """Network and signing timeouts."""

    HTTP_DEFAULT: Final[float] = 30.0
    CONTENT_UPLOAD: Final[float] = 60.0
    CUSTODIAN_SIGNATURE: Final[float] = 60.0
    LEDGER_SUBMISSION: Final[float] = 60.0


# =============================================================================
# Retry Configuration
# =============================================================================

class RetryDefaults:
    """Retry defaults for external calls."""

    DEFAULT_MAX_RETRIES: Final[int] = 3
    DEFAULT_BASE_DELAY: Final[float] = 1.0
    DEFAULT_MAX_DELAY: Final[float] = 60.0
    DEFAULT_EXPONENTIAL_BASE: Final[float] = 2.0
    DEFAULT_JITTER: Final[float] = 0.1

    SUBMISSION_MAX_RETRIES: Final[int] = 3
    SUBMISSION_BASE_DELAY: Final[float] = 0.5
    SUBMISSION_MAX_DELAY: Final[float] = 10.0


# =============================================================================
# Logging
# =============================================================================

class LoggingConfig:
    """Logging-related constants."""

    SENSITIVE_FIELDS: Final[frozenset[str]] = frozenset({
        "password",
        "secret",
        "token",
        "api_key",
        "apiKey",
        "api_secret",
        "apiSecret",
        "private_key",
        "privateKey",
        "secret_key",
        "secretKey",
        "seed",
        "signing_key",
        "supply_key",
        "authorization",
        "pinata_api_key",
        "pinata_secret_api_key",
        "jwt",
    })

    MASK_PATTERN: Final[str] = "***MASKED***"
    MAX_LOG_MESSAGE_LENGTH: Final[int] = 10_000


class EvidenceCategory(StrEnum):
    """Role of an evidence file within an asset."""

    DISPLAY = "display"
    EVIDENCE = "evidence"
    LEGAL = "legal"


# Canonical hashing order of categories
CANONICAL_CATEGORY_ORDER: Final[tuple[EvidenceCategory, ...]] = (
    EvidenceCategory.DISPLAY,
    EvidenceCategory.EVIDENCE,
    EvidenceCategory.LEGAL,
)
