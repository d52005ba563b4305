import asyncio

import pytest

from purchase_tracker import storage
from purchase_tracker.config import settings


class FakeS3:
    def __init__(self):
        self.put_calls = []

    def put_object(self, **kwargs):
        self.put_calls.append(kwargs)
        return {"ETag": "x"}


@pytest.mark.parametrize("content_type", ["image/png", "image/jpeg", "image/webp", "application/pdf"])
def test_accepts_images_and_pdf(content_type):
    storage.validate_attachment(content_type, 1024)


def test_rejects_other_types_and_oversized_files():
    with pytest.raises(storage.AttachmentRejectedError):
        storage.validate_attachment("text/html", 10)
    with pytest.raises(storage.AttachmentRejectedError):
        storage.validate_attachment(None, 10)
    with pytest.raises(storage.AttachmentRejectedError, match="10 MB"):
        storage.validate_attachment("application/pdf", settings.max_attachment_bytes + 1)


@pytest.mark.parametrize("size, text", [
    (0, "0 Bytes"),
    (512, "512 Bytes"),
    (1536, "1.5 KB"),
    (10 * 1024 * 1024, "10 MB"),
])
def test_format_file_size(size, text):
    assert storage.format_file_size(size) == text


def test_upload_stores_under_draft_and_item(monkeypatch):
    fake = FakeS3()
    monkeypatch.setattr(storage, "_s3_client", fake)

    attachment = asyncio.run(storage.upload_attachment(
        b"%PDF-1.4", file_name="quote.pdf", content_type="application/pdf", draft_id="d1", item_key="i1",
    ))

    assert len(fake.put_calls) == 1
    key = fake.put_calls[0]["Key"]
    assert key.startswith("products/d1/i1/") and key.endswith("_quote.pdf")
    assert fake.put_calls[0]["Bucket"] == settings.attachments_bucket
    assert attachment.storage_path == key
    assert attachment.file_size == 8
    assert attachment.download_url.endswith(key)


def test_upload_rejected_before_touching_s3(monkeypatch):
    fake = FakeS3()
    monkeypatch.setattr(storage, "_s3_client", fake)
    with pytest.raises(storage.AttachmentRejectedError):
        asyncio.run(storage.upload_attachment(b"<html>", "x.html", "text/html", "d1", "i1"))
    assert fake.put_calls == []
