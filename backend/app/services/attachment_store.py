"""Attachment uploads for dispute chat messages.

Each file is uploaded on its own worker thread and waited on with its own
time limit. A failed or slow upload is dropped; the caller gets back only
the URLs that made it, in submission order.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from ..utils import r2
from ..utils.errors import AttachmentUploadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttachmentUpload:
    filename: str
    content_type: Optional[str]
    data: bytes


@dataclass(frozen=True)
class UploadContext:
    ticket_id: int
    uploader_id: str


class AttachmentStore(Protocol):
    def upload(self, file: AttachmentUpload, context: UploadContext) -> str:
        """Store ``file`` and return its URL, raising AttachmentUploadError on failure."""
        ...


class R2AttachmentStore:
    """Stores dispute attachments in the configured R2 bucket."""

    def __init__(self, cfg: Optional[r2.R2Config] = None) -> None:
        self.cfg = cfg or r2.R2Config()

    def upload(self, file: AttachmentUpload, context: UploadContext) -> str:
        key = r2.build_dispute_key(context.ticket_id, file.filename, file.content_type)
        try:
            return r2.put_object(key, file.data, file.content_type, cfg=self.cfg)
        except Exception as exc:
            raise AttachmentUploadError(f"upload of {file.filename!r} failed: {exc}") from exc


def upload_attachments(
    store: AttachmentStore,
    files: Sequence[AttachmentUpload],
    context: UploadContext,
    timeout: float,
) -> List[str]:
    """Upload ``files`` in parallel and return the URLs that succeeded.

    Every call gets its own pool, so uploads abandoned after a timeout can
    only occupy their own threads, never another caller's.
    """
    if not files:
        return []
    executor = ThreadPoolExecutor(max_workers=len(files), thread_name_prefix="dispute-upload")
    urls: List[str] = []
    try:
        started = time.monotonic()
        futures = [executor.submit(store.upload, f, context) for f in files]
        for upload, future in zip(files, futures):
            # Each upload gets ``timeout`` seconds measured from submission
            remaining = max(0.0, started + timeout - time.monotonic())
            try:
                url = future.result(timeout=remaining)
            except FutureTimeout:
                logger.warning(
                    "dispute_attachment_timeout ticket=%s file=%s timeout_s=%s",
                    context.ticket_id,
                    upload.filename,
                    timeout,
                )
                continue
            except Exception as exc:
                logger.warning(
                    "dispute_attachment_failed ticket=%s file=%s err=%s",
                    context.ticket_id,
                    upload.filename,
                    exc,
                )
                continue
            if url:
                urls.append(url)
    finally:
        # Stragglers finish on their own, bounded by the store's socket timeouts
        executor.shutdown(wait=False, cancel_futures=True)
    if len(urls) < len(files):
        logger.info(
            "dispute_attachments_degraded ticket=%s uploaded=%s requested=%s",
            context.ticket_id,
            len(urls),
            len(files),
        )
    return urls
