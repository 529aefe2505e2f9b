"""
Logging utilities for rwa-mint with sensitive data masking.

Key material, API secrets and bearer tokens must never reach a log
record. Everything the orchestrator logs goes through
`mask_sensitive_data` first.

Usage:
    from rwa_mint.logging import get_logger, mask_sensitive_data

    logger = get_logger(__name__)

    with logger.context(operation="tokenize", custodian="0.0.1234"):
        logger.info("Uploading evidence", files=3)
"""
from __future__ import annotations

import logging
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Sequence

from .constants import LoggingConfig


# =============================================================================
# Sensitive Data Masking
# =============================================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, showing only its first/last characters."""
    if not value or len(value) <= show_chars * 2:
        return LoggingConfig.MASK_PATTERN

    return f"{value[:show_chars]}...{value[-show_chars:]}"


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_")
    return key_lower in LoggingConfig.SENSITIVE_FIELDS or any(
        sensitive in key_lower
        for sensitive in ("secret", "password", "private", "seed", "credential")
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    mask_pattern: str = LoggingConfig.MASK_PATTERN,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive data in a data structure.

    Args:
        data: The data structure to mask (dict, list, or scalar)
        additional_fields: Additional field names to mask
        mask_pattern: Pattern to replace sensitive values with

    Returns:
        Copy of data with sensitive values masked
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_sensitive_key(str(key)):
                result[key] = mask_pattern
            elif additional_fields and key in additional_fields:
                result[key] = mask_pattern
            else:
                result[key] = mask_sensitive_data(
                    value,
                    additional_fields,
                    mask_pattern,
                    _depth + 1,
                    _max_depth,
                )
        return result

    if isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(item, additional_fields, mask_pattern, _depth + 1, _max_depth)
            for item in data
        )

    if isinstance(data, str):
        return _mask_inline_patterns(data)

    if isinstance(data, (bytes, bytearray)):
        # Raw bytes in a log are almost always key or signature material
        return f"<{len(data)} bytes>"

    return data


def _mask_inline_patterns(text: str) -> str:
    """Mask bearer tokens, JWTs and credentialed URLs in free text."""
    if len(text) > LoggingConfig.MAX_LOG_MESSAGE_LENGTH:
        text = text[: LoggingConfig.MAX_LOG_MESSAGE_LENGTH] + "...[truncated]"

    patterns = [
        (r"(Bearer\s+)[a-zA-Z0-9._-]+", r"\1***"),
        (r"(https?://)[^:/\s]+:[^@/\s]+@", r"\1***:***@"),
        (r"\beyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\b", "***JWT***"),
    ]

    for pattern, replacement in patterns:
        text = re.sub(pattern, replacement, text)

    return text


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask sensitive HTTP headers (Pinata uses key headers, not bearer auth)."""
    sensitive_headers = {
        "authorization",
        "pinata_api_key",
        "pinata_secret_api_key",
        "cookie",
    }
    return {
        key: LoggingConfig.MASK_PATTERN if key.lower() in sensitive_headers else value
        for key, value in headers.items()
    }


# =============================================================================
# Structured Logging
# =============================================================================

@dataclass
class AttemptContext:
    """Logging context for one tokenization attempt.

    Attributes:
        attempt_id: Unique identifier for the attempt
        operation: Name of the operation being performed
        started_at: When the operation started
        custodian: Custodian account, if known
        extra: Additional context data
    """

    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    operation: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    custodian: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def elapsed_ms(self) -> float:
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "attempt_id": self.attempt_id,
            "operation": self.operation,
            "elapsed_ms": round(self.elapsed_ms(), 3),
        }
        if self.custodian:
            result["custodian"] = self.custodian
        if self.extra:
            result.update(mask_sensitive_data(self.extra))
        return result


class StructuredLogger:
    """Logger wrapper that adds attempt context and masking.

    Usage:
        logger = StructuredLogger(__name__)
        with logger.context(operation="tokenize", attempt_id=attempt.attempt_id):
            logger.info("Collection created", collection_id="0.0.5005")
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)
        self._context_stack: list[AttemptContext] = []

    @property
    def current_context(self) -> Optional[AttemptContext]:
        return self._context_stack[-1] if self._context_stack else None

    @contextmanager
    def context(
        self,
        operation: str,
        attempt_id: Optional[str] = None,
        custodian: Optional[str] = None,
        **extra: Any,
    ) -> Iterator[AttemptContext]:
        """Create a logging context for an operation."""
        ctx = AttemptContext(
            attempt_id=attempt_id or uuid.uuid4().hex,
            operation=operation,
            custodian=custodian,
            extra=extra,
        )
        self._context_stack.append(ctx)

        try:
            self.debug(f"Starting {operation}")
            yield ctx
            self.debug(f"Completed {operation}")
        except Exception as e:
            self.error(f"Failed {operation}: {type(e).__name__}", error=str(e))
            raise
        finally:
            self._context_stack.pop()

    def _build_extra(self, **kwargs: Any) -> Dict[str, Any]:
        extra = mask_sensitive_data(kwargs)
        if self.current_context:
            extra.update(self.current_context.to_dict())
        return extra

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, extra={"data": self._build_extra(**kwargs)})

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, extra={"data": self._build_extra(**kwargs)})

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, extra={"data": self._build_extra(**kwargs)})

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, extra={"data": self._build_extra(**kwargs)})

    def critical(self, message: str, **kwargs: Any) -> None:
        self._logger.critical(message, extra={"data": self._build_extra(**kwargs)})


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given name."""
    return StructuredLogger(name)


__all__ = [
    "mask_value",
    "is_sensitive_key",
    "mask_sensitive_data",
    "mask_headers",
    "AttemptContext",
    "StructuredLogger",
    "get_logger",
]
