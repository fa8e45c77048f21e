"""Tests for the upload pipeline."""

import magic
import pytest
from conftest import FILE_BASE

from tgcloud.errors import ConfigError, FileError, RemoteApiError, TransportError
from tgcloud.models.attachment import AttachmentRecord
from tgcloud.services.uploader import UploadPipeline, detect_mime, image_dimensions


@pytest.fixture
def pipeline(telegram_client, memory_store):
    return UploadPipeline(telegram_client, memory_store)


@pytest.mark.usefixtures("stub_mime")
class TestOffload:
    def test_success(self, pipeline, fake_telegram, memory_store, jpeg_file, jpeg_bytes):
        fake_telegram.next_file_ids = ["ABC123"]

        record = pipeline.offload(jpeg_file)

        assert record.remote_file_id == "ABC123"
        assert record.mime_type == "image/jpeg"
        assert (record.width, record.height) == (64, 48)
        assert record.size_bytes == len(jpeg_bytes)
        assert record.filename == "photo.jpg"
        assert record.remote_url.startswith(f"{FILE_BASE}/bot")
        assert not jpeg_file.exists()
        assert memory_store.get(record.local_id) == record
        assert fake_telegram.calls == ["sendMessage", "sendDocument", "getFile"]

    def test_existing_local_id(self, pipeline, memory_store, jpeg_file):
        existing = memory_store.create(filename="old.jpg", remote_url="https://x/old")
        record = pipeline.offload(jpeg_file, local_id=existing.local_id)
        assert record.local_id == existing.local_id
        assert memory_store.get(existing.local_id).filename == "photo.jpg"
        assert len(memory_store.all()) == 1

    def test_unknown_local_id_is_created(self, pipeline, memory_store, jpeg_file):
        record = pipeline.offload(jpeg_file, local_id=77)
        assert record.local_id == 77
        assert memory_store.get(77).remote_file_id

    def test_upload_failure_keeps_file(self, pipeline, fake_telegram, memory_store, jpeg_file):
        fake_telegram.fail_upload = "Bad Request: wrong file"
        with pytest.raises(RemoteApiError):
            pipeline.offload(jpeg_file)
        assert jpeg_file.exists()
        assert memory_store.all() == []

    def test_network_failure_keeps_file(self, pipeline, fake_telegram, memory_store, jpeg_file):
        fake_telegram.network_down = True
        with pytest.raises(TransportError):
            pipeline.offload(jpeg_file)
        assert jpeg_file.exists()
        assert memory_store.all() == []

    def test_probe_failure_skips_upload(self, pipeline, fake_telegram, memory_store, jpeg_file):
        fake_telegram.known_chats = set()
        with pytest.raises(RemoteApiError, match="start a chat with the bot"):
            pipeline.offload(jpeg_file)
        assert "sendDocument" not in fake_telegram.calls
        assert jpeg_file.exists()
        assert memory_store.all() == []

    def test_resolve_failure_is_soft(self, pipeline, fake_telegram, memory_store, jpeg_file):
        fake_telegram.fail_get_file = True
        record = pipeline.offload(jpeg_file)
        assert record.remote_file_id
        assert record.remote_url == ""
        assert not jpeg_file.exists()
        assert memory_store.get(record.local_id).remote_url == ""

    def test_missing_config(self, memory_store, jpeg_file, fake_telegram):
        from tgcloud.telegram.client import TelegramClient

        pipeline = UploadPipeline(TelegramClient("", ""), memory_store)
        with pytest.raises(ConfigError):
            pipeline.offload(jpeg_file)
        assert jpeg_file.exists()

    def test_missing_file(self, pipeline, tmp_path, fake_telegram):
        with pytest.raises(FileError, match="not found"):
            pipeline.offload(tmp_path / "nope.jpg")
        assert fake_telegram.calls == []

    def test_oversized_file(self, telegram_client, memory_store, jpeg_file, fake_telegram):
        pipeline = UploadPipeline(telegram_client, memory_store, max_size_bytes=100)
        with pytest.raises(FileError, match="exceeds"):
            pipeline.offload(jpeg_file)
        assert fake_telegram.calls == []
        assert jpeg_file.exists()

    def test_undetectable_mime(self, pipeline, tmp_path, fake_telegram):
        path = tmp_path / "blob.xyz"
        path.write_bytes(b"\x00\x01")
        with pytest.raises(FileError, match="MIME"):
            pipeline.offload(path)
        assert fake_telegram.calls == []
        assert path.exists()

    def test_non_image_has_no_dimensions(self, pipeline, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        record = pipeline.offload(path)
        assert record.mime_type == "text/plain"
        assert record.width is None and record.height is None


def test_image_dimensions(jpeg_file, tmp_path):
    assert image_dimensions(jpeg_file) == (64, 48)
    text = tmp_path / "a.txt"
    text.write_text("not an image")
    assert image_dimensions(text) is None


def test_detect_mime_from_content(jpeg_file, tmp_path):
    disguised = tmp_path / "photo.txt"
    disguised.write_bytes(jpeg_file.read_bytes())
    assert detect_mime(disguised) == "image/jpeg"


def test_detect_mime_failure_is_none(jpeg_file, monkeypatch):
    def broken(path, mime=False):
        raise magic.MagicException("cannot open magic database")

    monkeypatch.setattr(magic, "from_file", broken)
    assert detect_mime(jpeg_file) is None


def test_record_equality_ignores_updated_at():
    a = AttachmentRecord(local_id=1, updated_at="x")
    b = AttachmentRecord(local_id=1, updated_at="y")
    assert a == b
