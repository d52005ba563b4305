"""
S3 helpers for line item attachments. boto3 is blocking, so calls run in a thread.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Any

import boto3

from purchase_tracker.config import settings
from purchase_tracker.workflow import Attachment

ALLOWED_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "application/pdf",
})

_s3_client: Any = None


class AttachmentRejectedError(ValueError):
    """File type or size not accepted."""


def _get_client():
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client("s3", region_name=settings.aws_region)
    return _s3_client


def validate_attachment(content_type: str | None, size: int) -> None:
    if content_type not in ALLOWED_TYPES:
        raise AttachmentRejectedError("file type not allowed, use JPG, PNG, WEBP or PDF")
    if size > settings.max_attachment_bytes:
        raise AttachmentRejectedError(
            f"file too large, maximum is {format_file_size(settings.max_attachment_bytes)}"
        )


def format_file_size(num_bytes: int) -> str:
    if num_bytes == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    size = float(num_bytes)
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{round(size, 2):g} {units[i]}"


def storage_path_for(draft_id: str, item_key: str, file_name: str) -> str:
    return f"products/{draft_id}/{item_key}/{int(time.time() * 1000)}_{file_name}"


def download_url_for(path: str) -> str:
    return f"https://{settings.attachments_bucket}.s3.{settings.aws_region}.amazonaws.com/{path}"


async def upload_attachment(
    data: bytes,
    file_name: str,
    content_type: str,
    draft_id: str,
    item_key: str,
) -> Attachment:
    """Validate and store one file; returns the metadata to attach to a line item."""
    validate_attachment(content_type, len(data))
    path = storage_path_for(draft_id, item_key, file_name)
    client = _get_client()
    await asyncio.to_thread(
        client.put_object,
        Bucket=settings.attachments_bucket,
        Key=path,
        Body=data,
        ContentType=content_type,
    )
    return Attachment(
        file_name=file_name,
        file_type=content_type,
        file_size=len(data),
        download_url=download_url_for(path),
        storage_path=path,
        uploaded_at=datetime.now(timezone.utc),
    )


async def delete_attachment(storage_path: str) -> None:
    client = _get_client()
    await asyncio.to_thread(
        client.delete_object,
        Bucket=settings.attachments_bucket,
        Key=storage_path,
    )
