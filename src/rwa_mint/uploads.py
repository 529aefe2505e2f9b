"""Concurrent evidence upload (fan-out, join-all)."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .commitment import canonical_order_from_files
from .constants import ContentLimits
from .content_store import ContentStore
from .exceptions import UploadError
from .models import EvidenceFile

logger = logging.getLogger(__name__)


@dataclass
class UploadBatch:
    """Per-file outcome of one upload round.

    `files` keeps the caller's order, which is the upload order used for
    hashing, regardless of which upload finished first.
    """
    files: List[EvidenceFile] = field(default_factory=list)
    failures: List[UploadError] = field(default_factory=list)
    reused: int = 0

    @property
    def stored(self) -> List[EvidenceFile]:
        return [f for f in self.files if f.is_stored]

    @property
    def failed_files(self) -> List[EvidenceFile]:
        return [failure.file for failure in self.failures]

    @property
    def incomplete(self) -> bool:
        return bool(self.failures)

    def content_ids(self) -> List[str]:
        """Stored identifiers in canonical order."""
        return canonical_order_from_files(self.files)


async def _upload_one(
    store: ContentStore,
    file: EvidenceFile,
    semaphore: asyncio.Semaphore,
    description: str,
) -> Optional[UploadError]:
    async with semaphore:
        try:
            stored = await store.upload(
                file.data,
                {
                    "name": file.name,
                    "type": file.media_type,
                    "category": str(file.category),
                    "description": description,
                },
            )
        except Exception as e:
            logger.warning(f"Failed to upload {file.category} file {file.name}: {e}")
            return UploadError(file, e)

    file.mark_stored(stored)
    logger.info(f"Uploaded {file.category} file: {file.name} -> {stored.locator}")
    return None


async def upload_evidence(
    store: ContentStore,
    files: Sequence[EvidenceFile],
    max_concurrency: int = ContentLimits.MAX_CONCURRENT_UPLOADS,
    asset_name: str = "",
) -> UploadBatch:
    """Upload every file not yet stored; failures are collected, not raised.

    Files that already carry a content id (from an earlier attempt) are
    reused as-is and never uploaded again. Cancelling the caller cancels
    every in-flight upload.
    """
    batch = UploadBatch(files=list(files))
    semaphore = asyncio.Semaphore(max_concurrency)

    pending = []
    for f in batch.files:
        if f.is_stored:
            batch.reused += 1
            continue
        description = f"{str(f.category).title()} file for {asset_name}" if asset_name else ""
        pending.append(_upload_one(store, f, semaphore, description))

    results = await asyncio.gather(*pending)
    batch.failures = [r for r in results if r is not None]

    logger.info(
        f"Upload summary: {len(batch.stored)} stored "
        f"({batch.reused} reused), {len(batch.failures)} failed"
    )
    return batch


__all__ = ["UploadBatch", "upload_evidence"]
