"""Canonical configuration surface for rwa-mint."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .constants import ContentLimits, LedgerLimits, RetryDefaults, Timeouts


class ContentStoreSettings(BaseSettings):
    """Content-addressed store configuration (Pinata or in-memory)."""
    provider: Literal["pinata", "memory"] = "memory"
    api_base: str = "https://api.pinata.cloud"
    gateway_host: str = "gateway.pinata.cloud"
    api_key: str = ""
    api_secret: str = ""
    timeout_seconds: float = Timeouts.CONTENT_UPLOAD
    cid_version: int = 1

    class Config:
        env_prefix = "RWA_MINT_CONTENT_STORE__"
        extra = "ignore"


class LedgerSettings(BaseSettings):
    """Target ledger configuration."""
    network: Literal["testnet", "mainnet", "previewnet"] = "testnet"
    mode: Literal["simulated", "live"] = "simulated"
    mirror_node_url: str = "https://testnet.mirrornode.hedera.com"
    operator_account: str = ""
    mint_max_fee_tinybars: int = LedgerLimits.MINT_MAX_FEE_TINYBARS
    collection_max_fee_tinybars: int = LedgerLimits.COLLECTION_MAX_FEE_TINYBARS
    transaction_valid_duration_seconds: int = LedgerLimits.TRANSACTION_VALID_DURATION_SECONDS

    class Config:
        env_prefix = "RWA_MINT_LEDGER__"
        extra = "ignore"


class MintSettings(BaseSettings):
    """Main rwa-mint configuration."""

    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Hard ceiling of the ledger's metadata field
    metadata_budget_bytes: int = LedgerLimits.METADATA_BUDGET_BYTES

    # Custodian wallet approval deadline
    custodian_signature_timeout_seconds: float = Timeouts.CUSTODIAN_SIGNATURE

    # Ledger submission retry
    submission_max_retries: int = RetryDefaults.SUBMISSION_MAX_RETRIES
    submission_base_delay_seconds: float = RetryDefaults.SUBMISSION_BASE_DELAY
    submission_max_delay_seconds: float = RetryDefaults.SUBMISSION_MAX_DELAY

    # Upload fan-out
    max_concurrent_uploads: int = ContentLimits.MAX_CONCURRENT_UPLOADS
    max_file_size_bytes: int = ContentLimits.MAX_FILE_SIZE_BYTES

    content_store: ContentStoreSettings = Field(default_factory=ContentStoreSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)

    class Config:
        env_prefix = "RWA_MINT_"
        env_nested_delimiter = "__"
        env_file = ".env"
        extra = "ignore"

    @field_validator("metadata_budget_bytes", "max_concurrent_uploads", "max_file_size_bytes")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("custodian_signature_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("custodian signature timeout must be positive")
        return v

    @field_validator("submission_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("submission_max_retries cannot be negative")
        return v


@lru_cache
def load_settings(env_file: str | None = None) -> MintSettings:
    """Load MintSettings once per process to keep attempts consistent."""
    if env_file:
        return MintSettings(_env_file=Path(env_file))
    return MintSettings()
