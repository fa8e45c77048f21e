"""StorageService - the wired-up core, built once per process."""

from collections.abc import Mapping
from typing import Any

import httpx

from tgcloud.config import MAX_UPLOAD_BYTES
from tgcloud.services.reconcile import reconcile_attachments
from tgcloud.services.resolver import ProxyResolver
from tgcloud.services.rewriter import UrlRewriter
from tgcloud.services.uploader import UploadPipeline
from tgcloud.store.base import MetadataStore
from tgcloud.store.sqlite import SqliteMetadataStore
from tgcloud.telegram.client import DEFAULT_API_BASE, DEFAULT_FILE_BASE, TelegramClient


class StorageService:
    """Holds the Telegram client and metadata store and everything built on them.

    Usage:
        service = StorageService.from_config(app.config)

        record = service.pipeline.offload("/tmp/upload.jpg")
        html = service.rewriter.rewrite_content(html)
        proxied = service.resolver.open(record.remote_file_id)
    """

    def __init__(
        self,
        client: TelegramClient,
        store: MetadataStore,
        public_base_url: str = "",
        max_size_bytes: int = MAX_UPLOAD_BYTES,
        rewrite_output: bool = True,
    ) -> None:
        self.client = client
        self.store = store
        self.pipeline = UploadPipeline(client, store, max_size_bytes=max_size_bytes)
        self.rewriter = UrlRewriter(store, client, public_base_url=public_base_url)
        self.resolver = ProxyResolver(store, client)
        self.rewrite_output = rewrite_output

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        store: MetadataStore | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> "StorageService":
        """Build from Flask-style config keys (see ``tgcloud.config.KEY_MAP``)."""
        client = TelegramClient(
            bot_token=config.get("TELEGRAM_BOT_TOKEN", ""),
            chat_id=config.get("TELEGRAM_CHAT_ID", ""),
            api_base=config.get("TELEGRAM_API_BASE", DEFAULT_API_BASE),
            file_base=config.get("TELEGRAM_FILE_BASE", DEFAULT_FILE_BASE),
            timeout=float(config.get("TELEGRAM_TIMEOUT", 30)),
            upload_timeout=float(config.get("TELEGRAM_UPLOAD_TIMEOUT", 120)),
            transport=transport,
        )
        if store is None:
            store = SqliteMetadataStore(config["DATABASE_PATH"])
        return cls(
            client,
            store,
            public_base_url=config.get("PUBLIC_BASE_URL", ""),
            max_size_bytes=int(config.get("UPLOAD_MAX_SIZE_BYTES", MAX_UPLOAD_BYTES)),
            rewrite_output=bool(config.get("REWRITE_OUTPUT_BUFFER", True)),
        )

    def reconcile(self) -> int:
        """Run the bulk reconciliation pass over every stored record."""
        return reconcile_attachments(self.store, self.client)
