"""Telegram Bot API client used as the remote blob store."""

import logging
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from tgcloud.errors import (
    ConfigError,
    FetchError,
    NotFoundError,
    RemoteApiError,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"
DEFAULT_FILE_BASE = "https://api.telegram.org/file"

PROBE_TEXT = "Test message from Telegram Cloud Storage"
CHAT_NOT_FOUND_HINT = (
    " Please start a chat with the bot by sending a message to it (e.g., /start)."
)


def _describe(data: Any, status_code: int, default: str = "Unknown error") -> str:
    if isinstance(data, dict) and data.get("description"):
        return str(data["description"])
    return default if status_code == 200 else f"HTTP {status_code}: {default}"


class FileStream:
    """An open streaming download; the caller must ``close()`` it."""

    def __init__(self, response: httpx.Response, client: httpx.Client) -> None:
        self.response = response
        self._client = client

    @property
    def content_type(self) -> str:
        return self.response.headers.get("content-type", "application/octet-stream")

    @property
    def content_length(self) -> str | None:
        return self.response.headers.get("content-length")

    @property
    def content_encoding(self) -> str | None:
        return self.response.headers.get("content-encoding")

    def iter_bytes(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        # Undecoded body, matching the upstream Content-Length and Content-Encoding
        yield from self.response.iter_raw(chunk_size)

    def close(self) -> None:
        self.response.close()
        self._client.close()


class TelegramClient:
    """Thin synchronous wrapper over the four Bot API calls tgcloud needs.

    No retries: every failure is raised to the caller, which decides whether
    the enclosing operation fails.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        api_base: str = DEFAULT_API_BASE,
        file_base: str = DEFAULT_FILE_BASE,
        timeout: float = 30.0,
        upload_timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base = api_base.rstrip("/")
        self.file_base = file_base.rstrip("/")
        self.timeout = timeout
        self.upload_timeout = upload_timeout
        self.transport = transport
        self.url_pattern = re.compile(
            re.escape(self.file_base) + r"/bot[^/\s\"'<>]+/([^\s\"'<>]+)"
        )
        self.file_host = urlparse(self.file_base).netloc

    # -- helpers ---------------------------------------------------------

    def redact(self, text: str) -> str:
        if self.bot_token:
            return text.replace(self.bot_token, "<token>")
        return text

    def _require_token(self) -> None:
        if not self.bot_token:
            raise ConfigError("Telegram bot token not configured.")

    def _target_chat(self, chat_id: str | None) -> str:
        self._require_token()
        target = chat_id or self.chat_id
        if not target:
            raise ConfigError("Telegram chat ID not configured.")
        return target

    def _client(self, timeout: float | None = None) -> httpx.Client:
        return httpx.Client(
            base_url=f"{self.api_base}/bot{self.bot_token}/",
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    def _call(
        self,
        method: str,
        data: dict[str, str] | None = None,
        files: dict[str, Any] | None = None,
        timeout: float | None = None,
        default_error: str = "Unknown error",
    ) -> dict[str, Any]:
        """POST a Bot API method and return its ``result`` object."""
        try:
            with self._client(timeout) as client:
                resp = client.post(method, data=data, files=files)
        except httpx.TransportError as exc:
            message = self.redact(str(exc)) or exc.__class__.__name__
            logger.warning("Telegram %s failed: %s", method, message)
            raise TransportError(message) from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = None
        logger.debug("Telegram %s response (%d): %s", method, resp.status_code, payload)

        if resp.status_code != 200 or not isinstance(payload, dict) or not payload.get("ok"):
            description = _describe(payload, resp.status_code, default_error)
            logger.warning("Telegram %s error (%d): %s", method, resp.status_code, description)
            raise RemoteApiError(description, status_code=resp.status_code)

        result = payload.get("result")
        return result if isinstance(result, dict) else {}

    # -- Bot API -----------------------------------------------------------

    def get_me(self) -> dict[str, Any]:
        """Validate the bot token; returns the bot's user object."""
        self._require_token()
        result = self._call("getMe")
        return result

    def probe(self, chat_id: str | None = None, text: str = PROBE_TEXT) -> dict[str, Any]:
        """Send a message to the destination chat to prove it is reachable.

        A "chat not found" rejection means the chat never talked to the bot;
        the error description gets a hint telling the operator to do that.
        """
        target = self._target_chat(chat_id)
        logger.info("Probing chat %s", target)
        try:
            result = self._call("sendMessage", data={"chat_id": target, "text": text})
        except RemoteApiError as exc:
            if "chat not found" in exc.description:
                raise RemoteApiError(
                    exc.description + CHAT_NOT_FOUND_HINT, status_code=exc.status_code
                ) from exc
            raise
        return result

    def upload(
        self,
        path: str | Path,
        mime_type: str,
        filename: str,
        chat_id: str | None = None,
    ) -> str:
        """Send ``path`` as a document and return the Telegram ``file_id``."""
        target = self._target_chat(chat_id)
        logger.info("Uploading %s (%s) to chat %s", filename, mime_type, target)
        with open(path, "rb") as fh:
            result = self._call(
                "sendDocument",
                data={"chat_id": target},
                files={"document": (filename, fh, mime_type)},
                timeout=self.upload_timeout,
                default_error="Bad request (check file format, size, or server configuration)",
            )

        file_id = (result.get("document") or {}).get("file_id")
        if not file_id:
            logger.warning("No file_id in sendDocument response: %s", result)
            raise RemoteApiError("No file ID returned.")
        logger.info("File uploaded successfully, file_id: %s", file_id)
        return str(file_id)

    def resolve(self, remote_file_id: str) -> str:
        """Turn a ``file_id`` into a time-limited download URL."""
        self._require_token()
        try:
            result = self._call("getFile", data={"file_id": remote_file_id})
        except RemoteApiError as exc:
            if exc.status_code in (400, 404):
                raise NotFoundError(exc.description, status_code=exc.status_code) from exc
            raise

        file_path = result.get("file_path")
        if not file_path:
            raise NotFoundError(f"No file_path for file_id {remote_file_id}")
        return f"{self.file_base}/bot{self.bot_token}/{file_path}"

    def open_stream(self, url: str) -> FileStream:
        """Start a streaming GET of a resolved file URL."""
        client = httpx.Client(timeout=self.timeout, transport=self.transport)
        try:
            response = client.send(
                client.build_request("GET", url, headers={"Accept-Encoding": "identity"}),
                stream=True,
            )
        except httpx.TransportError as exc:
            client.close()
            message = self.redact(str(exc)) or exc.__class__.__name__
            raise TransportError(message) from exc

        if response.status_code != 200:
            response.close()
            client.close()
            raise FetchError(
                f"Upstream returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return FileStream(response, client)

    # -- URL recognition ---------------------------------------------------

    def is_remote_url(self, text: str) -> bool:
        """Cheap check whether ``text`` references the Telegram file host."""
        return bool(text) and self.file_host in text
