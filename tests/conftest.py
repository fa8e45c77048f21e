"""Shared pytest fixtures: a fake Telegram Bot API and wired-up services."""

import gzip
import io
import itertools
import json
import os
from urllib.parse import parse_qs

import httpx
import pytest
from PIL import Image
from werkzeug.formparser import MultiPartParser
from werkzeug.http import parse_options_header

from tgcloud import create_app
from tgcloud.db import init_db_at
from tgcloud.service import StorageService
from tgcloud.store.memory import MemoryMetadataStore
from tgcloud.store.sqlite import SqliteMetadataStore
from tgcloud.telegram.client import TelegramClient

BOT_TOKEN = "123456:TEST-token"
CHAT_ID = "-100200300"
API_BASE = "https://api.telegram.org"
FILE_BASE = "https://api.telegram.org/file"
API_KEY = "test-api-key"


def telegram_url(file_path: str, token: str = BOT_TOKEN, base: str = FILE_BASE) -> str:
    return f"{base}/bot{token}/{file_path}"


def _json(status: int, payload: dict) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(payload).encode(), headers={
        "content-type": "application/json"
    })


def _multipart_parts(request: httpx.Request) -> dict[str, tuple[bytes, str]]:
    _, options = parse_options_header(request.headers["content-type"])
    body = request.read()
    _, files = MultiPartParser().parse(
        io.BytesIO(body), options["boundary"].encode(), len(body)
    )
    return {name: (f.read(), f.mimetype) for name, f in files.items()}


class FakeTelegram:
    """In-memory stand-in for the Bot API and its file download host."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[str, bytes, str]] = {}
        self.next_file_ids: list[str] = []
        self.calls: list[str] = []
        self.known_chats = {CHAT_ID}
        self.fail_upload: str | None = None
        self.fail_get_file = False
        self.expired_paths: set[str] = set()
        self.gzip_paths: set[str] = set()
        self.download_headers: list[httpx.Headers] = []
        self.network_down = False
        self._counter = itertools.count(1)

    def add_file(self, file_id: str, data: bytes, content_type: str = "image/jpeg") -> str:
        n = next(self._counter)
        file_path = f"documents/file_{n}.bin"
        self.files[file_id] = (file_path, data, content_type)
        return file_path

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.network_down:
            raise httpx.ConnectError("connection refused", request=request)

        url = str(request.url)
        if url.startswith(f"{FILE_BASE}/"):
            return self._download(request)

        prefix = f"{API_BASE}/bot{BOT_TOKEN}/"
        if not url.startswith(prefix):
            return _json(401, {"ok": False, "error_code": 401, "description": "Unauthorized"})

        method = url[len(prefix):]
        self.calls.append(method)
        match method:
            case "getMe":
                return _json(200, {"ok": True, "result": {"id": 1, "username": "test_bot"}})
            case "sendMessage":
                form = parse_qs(request.read().decode())
                if form.get("chat_id", [""])[0] not in self.known_chats:
                    return _json(
                        400,
                        {"ok": False, "error_code": 400, "description": "Bad Request: chat not found"},
                    )
                return _json(200, {"ok": True, "result": {"message_id": 1}})
            case "sendDocument":
                return self._send_document(request)
            case "getFile":
                return self._get_file(request)
        return _json(404, {"ok": False, "error_code": 404, "description": "Not Found"})

    def _send_document(self, request: httpx.Request) -> httpx.Response:
        if self.fail_upload:
            return _json(400, {"ok": False, "error_code": 400, "description": self.fail_upload})
        parts = _multipart_parts(request)
        data, content_type = parts["document"]
        file_id = self.next_file_ids.pop(0) if self.next_file_ids else f"FILE{len(self.files) + 1}"
        self.add_file(file_id, data, content_type)
        return _json(
            200,
            {"ok": True, "result": {"message_id": 2, "document": {"file_id": file_id}}},
        )

    def _get_file(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.read().decode())
        file_id = form.get("file_id", [""])[0]
        if self.fail_get_file or file_id not in self.files:
            return _json(
                400,
                {
                    "ok": False,
                    "error_code": 400,
                    "description": "Bad Request: invalid file_id",
                },
            )
        file_path = self.files[file_id][0]
        return _json(
            200,
            {"ok": True, "result": {"file_id": file_id, "file_path": file_path}},
        )

    def _download(self, request: httpx.Request) -> httpx.Response:
        self.download_headers.append(request.headers)
        file_path = str(request.url).split(f"/bot{BOT_TOKEN}/", 1)[-1]
        if file_path in self.expired_paths:
            return httpx.Response(404, content=b"Not Found")
        for path, data, content_type in self.files.values():
            if path != file_path:
                continue
            headers = {"content-type": content_type}
            # Compressed regardless of Accept-Encoding, like some CDNs
            if file_path in self.gzip_paths:
                data = gzip.compress(data)
                headers["content-encoding"] = "gzip"
            headers["content-length"] = str(len(data))
            # An unread stream, as a real streamed download delivers it
            return httpx.Response(200, headers=headers, stream=httpx.ByteStream(data))
        return httpx.Response(404, content=b"Not Found")


@pytest.fixture
def fake_telegram() -> FakeTelegram:
    return FakeTelegram()


@pytest.fixture
def telegram_client(fake_telegram: FakeTelegram) -> TelegramClient:
    return TelegramClient(
        bot_token=BOT_TOKEN,
        chat_id=CHAT_ID,
        api_base=API_BASE,
        file_base=FILE_BASE,
        transport=httpx.MockTransport(fake_telegram.handler),
    )


@pytest.fixture
def memory_store() -> MemoryMetadataStore:
    return MemoryMetadataStore()


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "tgcloud.sqlite3")
    init_db_at(path)
    return path


@pytest.fixture
def sqlite_store(db_path: str) -> SqliteMetadataStore:
    return SqliteMetadataStore(db_path)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, memory_store, sqlite_store):
    """Run a test against both metadata store implementations."""
    return memory_store if request.param == "memory" else sqlite_store


@pytest.fixture
def service(telegram_client, sqlite_store) -> StorageService:
    return StorageService(telegram_client, sqlite_store)


@pytest.fixture
def app(service, db_path, tmp_path, monkeypatch):
    monkeypatch.setenv("TGCLOUD_DB", db_path)
    app = create_app(
        test_config={
            "TESTING": True,
            "DATABASE_PATH": db_path,
            "API_KEYS": [API_KEY],
            "UPLOAD_DIRECTORY": str(tmp_path / "spool"),
        },
        service=service,
    )
    return app


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A ~10 KB JPEG of random noise."""
    img = Image.frombytes("RGB", (64, 48), os.urandom(64 * 48 * 3))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=90)
    return buf.getvalue()


@pytest.fixture
def jpeg_file(tmp_path, jpeg_bytes):
    path = tmp_path / "photo.jpg"
    path.write_bytes(jpeg_bytes)
    return path


@pytest.fixture
def stub_mime(monkeypatch):
    """Replace libmagic detection with an extension lookup."""

    def detect(path):
        return {".jpg": "image/jpeg", ".png": "image/png", ".txt": "text/plain"}.get(
            path.suffix.lower()
        )

    monkeypatch.setattr("tgcloud.services.uploader.detect_mime", detect)
    return detect
