"""Content-addressed storage adapters.

Only the upload/fetch contract matters to the tokenization pipeline:

    upload(data, metadata) -> StoredContent(content_id, locator, size, timestamp)
    fetch(content_id) -> bytes

`PinataContentStore` talks to the Pinata pinning API; `InMemoryContentStore`
computes real CIDv1 identifiers locally for development and tests.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .config import ContentStoreSettings
from .constants import ContentLimits
from .exceptions import ContentStoreError
from .logging import mask_headers, mask_value
from .models import StoredContent

logger = logging.getLogger(__name__)

# multicodec / multihash prefixes for CIDv1
_CID_VERSION_1 = 0x01
_CODEC_RAW = 0x55
_MULTIHASH_SHA2_256 = 0x12
_SHA2_256_LENGTH = 0x20


def compute_cid(data: bytes) -> str:
    """CIDv1 (raw codec, sha2-256) in base32 multibase, e.g. `bafkrei...`."""
    digest = hashlib.sha256(data).digest()
    raw = bytes([_CID_VERSION_1, _CODEC_RAW, _MULTIHASH_SHA2_256, _SHA2_256_LENGTH]) + digest
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


class ContentStore(ABC):
    """Abstract interface for content-addressed storage."""

    max_file_size: int = ContentLimits.MAX_FILE_SIZE_BYTES

    @abstractmethod
    async def upload(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> StoredContent:
        """Store bytes and return their content identifier."""

    @abstractmethod
    async def fetch(self, content_id: str) -> bytes:
        """Return the bytes stored under `content_id`."""

    @abstractmethod
    def gateway_url(self, content_id: str) -> str:
        """Public locator for a content identifier."""

    def validate_size(self, data: bytes) -> None:
        if len(data) > self.max_file_size:
            raise ContentStoreError(
                f"File size exceeds {round(self.max_file_size / 1024 / 1024)}MB limit",
                details={"size": len(data), "max_size": self.max_file_size},
            )

    async def close(self) -> None:
        return None


class InMemoryContentStore(ContentStore):
    """Content-addressed store held in process memory.

    Identical bytes always produce the identical identifier.
    """

    def __init__(
        self,
        gateway_host: str = "gateway.pinata.cloud",
        max_file_size: int = ContentLimits.MAX_FILE_SIZE_BYTES,
    ):
        self._gateway_host = gateway_host
        self.max_file_size = max_file_size
        self._objects: Dict[str, bytes] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}
        self.upload_count = 0

    async def upload(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> StoredContent:
        self.validate_size(data)
        # Yield so concurrent uploads interleave like network calls
        await asyncio.sleep(0)
        content_id = compute_cid(data)
        self._objects[content_id] = bytes(data)
        self._metadata[content_id] = dict(metadata or {})
        self.upload_count += 1
        return StoredContent(
            content_id=content_id,
            locator=self.gateway_url(content_id),
            size=len(data),
        )

    async def fetch(self, content_id: str) -> bytes:
        try:
            return self._objects[content_id]
        except KeyError:
            raise ContentStoreError(
                f"Content '{content_id}' not found",
                details={"content_id": content_id},
            ) from None

    def gateway_url(self, content_id: str) -> str:
        return f"https://{self._gateway_host}/ipfs/{content_id}"

    def metadata_for(self, content_id: str) -> Dict[str, Any]:
        return dict(self._metadata.get(content_id, {}))

    def __contains__(self, content_id: str) -> bool:
        return content_id in self._objects


class PinataContentStore(ContentStore):
    """Pinata pinning service adapter.

    Uses API key headers for authentication. Uploads pin with CIDv1 so
    identifiers fit the ledger's metadata budget.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        api_base: str = "https://api.pinata.cloud",
        gateway_host: str = "gateway.pinata.cloud",
        timeout: float = 60.0,
        cid_version: int = 1,
        max_file_size: int = ContentLimits.MAX_FILE_SIZE_BYTES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._api_secret = api_secret
        self._api_base = api_base.rstrip("/")
        self._gateway_host = gateway_host
        self._timeout = timeout
        self._cid_version = cid_version
        self._transport = transport
        self.max_file_size = max_file_size
        self._client: Optional[httpx.AsyncClient] = None

        if not api_key or not api_secret:
            logger.warning("Pinata credentials not configured. Uploads will fail.")
        else:
            logger.info(f"Pinata content store ready (api key {mask_value(api_key)}, gateway {gateway_host})")

    @classmethod
    def from_settings(cls, settings: ContentStoreSettings, **kwargs: Any) -> "PinataContentStore":
        return cls(
            api_key=settings.api_key,
            api_secret=settings.api_secret,
            api_base=settings.api_base,
            gateway_host=settings.gateway_host,
            timeout=settings.timeout_seconds,
            cid_version=settings.cid_version,
            **kwargs,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    def _auth_headers(self) -> Dict[str, str]:
        if not self._api_key or not self._api_secret:
            raise ContentStoreError("Pinata credentials not configured")
        return {
            "pinata_api_key": self._api_key,
            "pinata_secret_api_key": self._api_secret,
        }

    async def upload(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> StoredContent:
        self.validate_size(data)
        metadata = dict(metadata or {})
        file_name = str(metadata.get("name") or "file")
        media_type = str(metadata.get("type") or "application/octet-stream")

        keyvalues = {
            "originalName": file_name,
            "fileType": media_type,
            "uploadTime": datetime.now(timezone.utc).isoformat(),
        }
        keyvalues.update({k: str(v) for k, v in metadata.items() if k not in ("name", "type")})

        headers = self._auth_headers()
        client = await self._get_client()
        logger.debug("Pinata upload", extra={"data": {"file": file_name, "headers": mask_headers(headers)}})
        try:
            response = await client.post(
                f"{self._api_base}/pinning/pinFileToIPFS",
                headers=headers,
                files={"file": (file_name, data, media_type)},
                data={
                    "pinataMetadata": json.dumps({"name": file_name, "keyvalues": keyvalues}),
                    "pinataOptions": json.dumps({"cidVersion": self._cid_version}),
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ContentStoreError(
                f"IPFS upload failed: {_error_text(e.response)}",
                details={"status_code": e.response.status_code, "file": file_name},
            ) from e
        except httpx.HTTPError as e:
            raise ContentStoreError(
                f"IPFS upload failed: {e}",
                details={"file": file_name},
            ) from e

        body = response.json()
        content_id = body["IpfsHash"]
        logger.info(f"File uploaded to IPFS: {content_id}")
        return StoredContent(
            content_id=content_id,
            locator=self.gateway_url(content_id),
            size=int(body.get("PinSize", len(data))),
            timestamp=_parse_timestamp(body.get("Timestamp")),
        )

    async def fetch(self, content_id: str) -> bytes:
        client = await self._get_client()
        try:
            response = await client.get(self.gateway_url(content_id))
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ContentStoreError(
                f"IPFS fetch failed for {content_id}: {e}",
                details={"content_id": content_id},
            ) from e
        return response.content

    async def pin(self, content_id: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Pin existing content by CID."""
        client = await self._get_client()
        response = await client.post(
            f"{self._api_base}/pinning/pinByHash",
            headers={**self._auth_headers(), "Content-Type": "application/json"},
            json={
                "hashToPin": content_id,
                "pinataMetadata": {"name": f"pinned_{content_id}", "keyvalues": metadata or {}},
            },
        )
        if response.status_code != 200:
            logger.error(f"Failed to pin {content_id}: HTTP {response.status_code}")
            return False
        return True

    async def unpin(self, content_id: str) -> bool:
        client = await self._get_client()
        response = await client.delete(
            f"{self._api_base}/pinning/unpin/{content_id}",
            headers=self._auth_headers(),
        )
        if response.status_code != 200:
            logger.error(f"Failed to unpin {content_id}: HTTP {response.status_code}")
            return False
        return True

    def gateway_url(self, content_id: str) -> str:
        return f"https://{self._gateway_host}/ipfs/{content_id}"

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or str(response.status_code)
    if isinstance(body, dict) and body.get("error"):
        error = body["error"]
        return error.get("reason", str(error)) if isinstance(error, dict) else str(error)
    return response.reason_phrase or str(response.status_code)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def build_content_store(settings: ContentStoreSettings, max_file_size: int) -> ContentStore:
    """Construct the configured content store."""
    if settings.provider == "pinata":
        return PinataContentStore.from_settings(settings, max_file_size=max_file_size)
    return InMemoryContentStore(gateway_host=settings.gateway_host, max_file_size=max_file_size)


__all__ = [
    "ContentStore",
    "InMemoryContentStore",
    "PinataContentStore",
    "build_content_store",
    "compute_cid",
]
