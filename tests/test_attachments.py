from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from lexbot.errors import ConfigurationError
from lexbot.ingest import attachments
from lexbot.ingest.attachments import purge_expired_media, store_channel_media
from lexbot.storage.gcs import GcsStorage


class DummyStorage:
    def __init__(self):
        self.uploads: list[dict] = []
        self.purged: list[tuple[str, str, int]] = []

    def upload_bytes(self, bucket, object_key, data, content_type=None, metadata=None):
        self.uploads.append(
            {"bucket": bucket, "key": object_key, "data": data, "content_type": content_type, "metadata": metadata}
        )
        return f"gs://{bucket}/{object_key}"

    def delete_older_than(self, bucket, prefix, max_age_seconds):
        self.purged.append((bucket, prefix, max_age_seconds))
        return 2


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(attachments.settings, "GCS_BUCKET", "media-bucket")
    monkeypatch.setattr(attachments.settings, "GCS_MEDIA_PREFIX", "whatsapp-media")
    monkeypatch.setattr(attachments.settings, "TWILIO_ACCOUNT_SID", "AC1")
    monkeypatch.setattr(attachments.settings, "TWILIO_AUTH_TOKEN", "tok")


def test_store_channel_media(monkeypatch, configured):
    seen = {}

    def fake_download(url, auth=None, timeout=60):
        seen["url"] = url
        seen["auth"] = auth
        return b"\x89PNG..."

    monkeypatch.setattr(attachments, "download_bytes", fake_download)
    storage = DummyStorage()
    item = store_channel_media("https://api.twilio.com/media/ME1", "image/png", storage)

    assert seen == {"url": "https://api.twilio.com/media/ME1", "auth": ("AC1", "tok")}
    upload = storage.uploads[0]
    assert upload["bucket"] == "media-bucket"
    assert upload["key"].startswith("whatsapp-media/")
    assert upload["key"].endswith(".png")
    assert upload["metadata"] == {"source": "whatsapp"}
    assert item.storage_location.bucket == "media-bucket"
    assert item.storage_location.object_key == upload["key"]
    assert item.content_type == "image/png"
    assert item.size_bytes == len(b"\x89PNG...")


def test_object_key_extension_for_parameters(configured):
    assert attachments._object_key("audio/ogg; codecs=opus").endswith(".ogg")
    assert attachments._object_key("weird").endswith(".bin")


def test_store_requires_bucket(monkeypatch):
    monkeypatch.setattr(attachments.settings, "GCS_BUCKET", None)
    with pytest.raises(ConfigurationError):
        store_channel_media("https://x", "image/png", DummyStorage())


def test_purge_uses_retention(monkeypatch, configured):
    monkeypatch.setattr(attachments.settings, "GCS_MEDIA_RETENTION_SECONDS", 86400)
    storage = DummyStorage()
    assert purge_expired_media(storage) == 2
    assert storage.purged == [("media-bucket", "whatsapp-media/", 86400)]


def test_gcs_delete_older_than():
    now = datetime.now(timezone.utc)

    class Blob:
        def __init__(self, name, age):
            self.name = name
            self.time_created = now - timedelta(seconds=age)
            self.deleted = False

        def delete(self):
            self.deleted = True

    old, fresh = Blob("whatsapp-media/old.png", 90000), Blob("whatsapp-media/new.png", 10)

    class Client:
        def list_blobs(self, bucket, prefix=None):
            assert prefix == "whatsapp-media/"
            return [old, fresh]

    assert GcsStorage(client=Client()).delete_older_than("b", "whatsapp-media/", 86400) == 1
    assert old.deleted and not fresh.deleted
