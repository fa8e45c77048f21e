"""Resolve proxy identifiers to Telegram download URLs and open the stream."""

import logging

from tgcloud.errors import FetchError, NotFoundError, TgCloudError, TransportError
from tgcloud.models.attachment import AttachmentRecord
from tgcloud.store.base import MetadataStore
from tgcloud.telegram.client import FileStream, TelegramClient

logger = logging.getLogger(__name__)


class ProxiedFile:
    """A resolved record plus its open upstream stream."""

    def __init__(self, record: AttachmentRecord, stream: FileStream) -> None:
        self.record = record
        self.stream = stream

    @property
    def content_type(self) -> str:
        return self.stream.content_type

    @property
    def content_length(self) -> str | None:
        return self.stream.content_length

    @property
    def content_encoding(self) -> str | None:
        return self.stream.content_encoding

    def iter_bytes(self):
        return self.stream.iter_bytes()

    def close(self) -> None:
        self.stream.close()


class ProxyResolver:
    """Lookup -> (Refresh | Direct resolve) -> Serve, per proxy request.

    Resolution failures raise ``NotFoundError`` (404). Failures fetching an
    already-resolved URL raise ``FetchError`` (500) and are not retried within
    the request; an expired URL is cleared so the next request refreshes it.
    """

    def __init__(self, store: MetadataStore, client: TelegramClient) -> None:
        self.store = store
        self.client = client

    def _remote_url(self, file_id: str) -> str:
        try:
            return self.client.resolve(file_id)
        except TgCloudError as exc:
            logger.warning("Failed to resolve file_id %s: %s", file_id, exc)
            raise NotFoundError(f"File not found: {file_id}") from exc

    def resolve(self, file_id: str) -> AttachmentRecord:
        """Return a record for ``file_id`` that carries a usable ``remote_url``."""
        if not file_id:
            raise NotFoundError("No file_id provided")

        record = self.store.find_by_remote_file_id(file_id)
        if record is not None:
            if record.remote_url:
                return record
            logger.info("No Telegram URL cached for attachment %d, refreshing", record.local_id)
            record.remote_url = self._remote_url(file_id)
            self.store.put(record)
            return record

        logger.info("No attachment for file_id %s, attempting direct resolve", file_id)
        remote_url = self._remote_url(file_id)
        record = self.store.create(remote_file_id=file_id, remote_url=remote_url)
        logger.info("Created attachment %d for file_id %s", record.local_id, file_id)
        return record

    def open(self, file_id: str) -> ProxiedFile:
        """Resolve ``file_id`` and start streaming its bytes."""
        record = self.resolve(file_id)
        try:
            stream = self.client.open_stream(record.remote_url)
        except FetchError as exc:
            logger.warning("Failed to fetch file %s: %s", file_id, exc)
            if exc.is_stale:
                self._forget_url(record)
            raise
        except TransportError as exc:
            logger.warning("Failed to fetch file %s: %s", file_id, exc)
            raise FetchError(f"Failed to fetch file from Telegram: {exc}") from exc
        return ProxiedFile(record, stream)

    def _forget_url(self, record: AttachmentRecord) -> None:
        current = self.store.get(record.local_id)
        if current is not None and current.remote_url == record.remote_url:
            current.remote_url = ""
            self.store.put(current)
            logger.info("Cleared expired Telegram URL for attachment %d", record.local_id)
