from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

import boto3
from botocore.config import Config

from ..core.config import settings


class R2Config:
    def __init__(self) -> None:
        self.account_id = settings.R2_ACCOUNT_ID
        self.access_key_id = settings.R2_ACCESS_KEY_ID
        self.secret_access_key = settings.R2_SECRET_ACCESS_KEY
        self.bucket = settings.R2_BUCKET
        # Example: https://9bd...d91c.r2.cloudflarestorage.com (or EU endpoint)
        self.endpoint_url = settings.R2_S3_ENDPOINT or (
            f"https://{self.account_id}.r2.cloudflarestorage.com" if self.account_id else None
        )
        # Public custom domain used to reference objects (no signature).
        # Falls back to the path-style base (endpoint plus bucket).
        _public = (settings.R2_PUBLIC_BASE_URL or "").rstrip("/")
        if not _public and self.endpoint_url and self.bucket:
            _public = f"{self.endpoint_url.rstrip('/')}/{self.bucket}"
        self.public_base_url = _public
        # Per-call socket budget; an upload never outlives the caller's wait
        self.upload_timeout = float(settings.DISPUTE_ATTACHMENT_UPLOAD_TIMEOUT)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.endpoint_url and self.access_key_id and self.secret_access_key)


def _client(cfg: R2Config):
    """Create an S3 client configured for Cloudflare R2.

    Important bits:
    - signature_version s3v4
    - region "auto" (R2 requirement)
    - path-style addressing (virtual-hosted style is not supported the same way)
    - endpoint_url MUST match the host you will call (eu vs non-eu)
    - connect/read timeouts from ``cfg.upload_timeout`` and a single attempt,
      so a hung call releases its thread within the upload budget
    """
    return boto3.client(
        "s3",
        aws_access_key_id=cfg.access_key_id,
        aws_secret_access_key=cfg.secret_access_key,
        endpoint_url=cfg.endpoint_url,
        region_name="auto",
        config=client_config(cfg.upload_timeout),
    )


def client_config(timeout: float) -> Config:
    return Config(
        signature_version="s3v4",
        s3={"addressing_style": "path"},
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"mode": "standard", "max_attempts": 1},
    )


def guess_extension(filename: Optional[str], content_type: Optional[str]) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].strip().lower()
        if ext:
            return "." + ext
    if content_type:
        mapping = {
            "image/heic": ".heic",
            "image/heif": ".heif",
            "image/avif": ".avif",
            "image/jpeg": ".jpg",
            "image/png": ".png",
            "image/gif": ".gif",
            "image/webp": ".webp",
            "video/mp4": ".mp4",
            "application/pdf": ".pdf",
        }
        return mapping.get(content_type.lower(), "")
    return ""


def build_dispute_key(ticket_id: int, filename: Optional[str], content_type: Optional[str]) -> str:
    """Key format: disputes/{ticket_id}/{yyyy}/{mm}/{uuid}{ext}"""
    now = dt.datetime.now(dt.timezone.utc)
    uid = uuid.uuid4().hex
    ext = guess_extension(filename, content_type)
    return f"disputes/{int(ticket_id)}/{now:%Y}/{now:%m}/{uid}{ext}"


def put_object(key: str, body: bytes, content_type: Optional[str], cfg: Optional[R2Config] = None) -> str:
    """Upload ``body`` under ``key`` and return its public URL."""
    cfg = cfg or R2Config()
    if not cfg.is_configured():
        raise RuntimeError("R2 is not configured")
    params = {"Bucket": cfg.bucket, "Key": key, "Body": body}
    if content_type:
        params["ContentType"] = content_type
    _client(cfg).put_object(**params)
    return f"{cfg.public_base_url}/{key}"
