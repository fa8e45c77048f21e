"""Tests for the Telegram Bot API client against the fake API."""

import httpx
import pytest
from conftest import BOT_TOKEN, CHAT_ID, FILE_BASE, telegram_url

from tgcloud.errors import (
    ConfigError,
    FetchError,
    NotFoundError,
    RemoteApiError,
    TransportError,
)
from tgcloud.telegram.client import CHAT_NOT_FOUND_HINT, TelegramClient


def test_get_me_returns_bot(telegram_client):
    assert telegram_client.get_me()["username"] == "test_bot"


def test_probe_sends_message(telegram_client, fake_telegram):
    telegram_client.probe()
    assert fake_telegram.calls == ["sendMessage"]


def test_probe_chat_not_found_adds_hint(telegram_client):
    with pytest.raises(RemoteApiError) as excinfo:
        telegram_client.probe(chat_id="-999")
    assert excinfo.value.description.startswith("Bad Request: chat not found")
    assert excinfo.value.description.endswith(CHAT_NOT_FOUND_HINT)
    assert excinfo.value.status_code == 400


def test_missing_token_is_config_error(fake_telegram):
    client = TelegramClient("", CHAT_ID, transport=httpx.MockTransport(fake_telegram.handler))
    with pytest.raises(ConfigError):
        client.probe()
    with pytest.raises(ConfigError):
        client.resolve("ABC")
    assert fake_telegram.calls == []


def test_missing_chat_is_config_error(fake_telegram):
    client = TelegramClient(BOT_TOKEN, "", transport=httpx.MockTransport(fake_telegram.handler))
    with pytest.raises(ConfigError):
        client.probe()


def test_network_failure_is_transport_error(telegram_client, fake_telegram):
    fake_telegram.network_down = True
    with pytest.raises(TransportError):
        telegram_client.get_me()


def test_upload_returns_file_id(telegram_client, fake_telegram, jpeg_file, jpeg_bytes):
    fake_telegram.next_file_ids = ["ABC123"]
    file_id = telegram_client.upload(jpeg_file, "image/jpeg", "photo.jpg")
    assert file_id == "ABC123"
    assert fake_telegram.files["ABC123"][1] == jpeg_bytes
    assert fake_telegram.files["ABC123"][2] == "image/jpeg"


def test_upload_rejected(telegram_client, fake_telegram, jpeg_file):
    fake_telegram.fail_upload = "Bad Request: file is too big"
    with pytest.raises(RemoteApiError, match="too big"):
        telegram_client.upload(jpeg_file, "image/jpeg", "photo.jpg")


def test_upload_without_file_id(jpeg_file):
    def handler(request):
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 5}})

    client = TelegramClient(BOT_TOKEN, CHAT_ID, transport=httpx.MockTransport(handler))
    with pytest.raises(RemoteApiError, match="No file ID returned"):
        client.upload(jpeg_file, "image/jpeg", "photo.jpg")


def test_resolve_builds_download_url(telegram_client, fake_telegram):
    file_path = fake_telegram.add_file("XYZ", b"data")
    assert telegram_client.resolve("XYZ") == telegram_url(file_path)


def test_resolve_unknown_is_not_found(telegram_client):
    with pytest.raises(NotFoundError):
        telegram_client.resolve("does-not-exist")


def test_open_stream_yields_bytes(telegram_client, fake_telegram):
    file_path = fake_telegram.add_file("XYZ", b"hello world", "text/plain")
    stream = telegram_client.open_stream(telegram_url(file_path))
    try:
        assert stream.content_type == "text/plain"
        assert b"".join(stream.iter_bytes()) == b"hello world"
    finally:
        stream.close()


def test_open_stream_expired_url(telegram_client, fake_telegram):
    file_path = fake_telegram.add_file("XYZ", b"data")
    fake_telegram.expired_paths.add(file_path)
    with pytest.raises(FetchError) as excinfo:
        telegram_client.open_stream(telegram_url(file_path))
    assert excinfo.value.status_code == 404
    assert excinfo.value.is_stale


def test_url_pattern_and_redact(telegram_client):
    url = telegram_url("photos/file_7.jpg")
    match = telegram_client.url_pattern.search(f'<img src="{url}">')
    assert match.group(0) == url
    assert match.group(1) == "photos/file_7.jpg"
    assert BOT_TOKEN not in telegram_client.redact(url)
    assert telegram_client.is_remote_url(f"see {FILE_BASE}/x")
    assert not telegram_client.is_remote_url("https://example.com/img.png")
