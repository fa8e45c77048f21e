"""Upload pipeline: validate a local file, move it to Telegram, record the mapping."""

import logging
import os
from pathlib import Path

import magic
from PIL import Image, UnidentifiedImageError

from tgcloud.config import MAX_UPLOAD_BYTES
from tgcloud.errors import ConfigError, FileError, TgCloudError
from tgcloud.models.attachment import AttachmentRecord
from tgcloud.store.base import MetadataStore
from tgcloud.telegram.client import TelegramClient

logger = logging.getLogger(__name__)

RASTER_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


def detect_mime(path: Path) -> str | None:
    """Detect a file's MIME type from its content (libmagic)."""
    try:
        detected = magic.from_file(str(path), mime=True)
    except (OSError, magic.MagicException) as exc:
        logger.warning("MIME detection failed for %s: %s", path, exc)
        return None
    return detected or None


def image_dimensions(path: Path) -> tuple[int, int] | None:
    """Best-effort (width, height) of a raster image."""
    try:
        with Image.open(path) as img:
            return img.size
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        logger.info("Could not read image dimensions for %s: %s", path, exc)
        return None


class UploadPipeline:
    """Move freshly received files from local disk to Telegram.

    The local file is deleted only after Telegram has returned a file handle
    and the mapping has been written; on every failure it is left in place.
    """

    def __init__(
        self,
        client: TelegramClient,
        store: MetadataStore,
        max_size_bytes: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self.client = client
        self.store = store
        self.max_size_bytes = max_size_bytes

    def _check_config(self) -> None:
        if not self.client.bot_token or not self.client.chat_id:
            logger.error("Missing bot token or chat ID")
            raise ConfigError("Telegram bot token or chat ID not configured.")

    def _check_file(self, path: Path) -> int:
        if not path.is_file():
            logger.error("File does not exist: %s", path)
            raise FileError(f"Upload file not found on server: {path}")
        if not os.access(path, os.R_OK):
            logger.error("File is not readable: %s", path)
            raise FileError(f"Upload file is not readable: {path}")

        size = path.stat().st_size
        if size > self.max_size_bytes:
            logger.error("File size too large: %d bytes", size)
            raise FileError(
                f"File size {size} bytes exceeds the limit of {self.max_size_bytes} bytes."
            )
        return size

    def offload(
        self,
        path: str | Path,
        declared_mime: str | None = None,
        context: str | None = None,
        local_id: int | None = None,
        filename: str | None = None,
    ) -> AttachmentRecord:
        """Upload ``path`` to Telegram and return the stored mapping.

        ``declared_mime`` is only logged; the MIME type sent to Telegram comes
        from content inspection. ``local_id`` attaches the mapping to an
        existing record instead of allocating a new one.
        """
        path = Path(path)
        filename = filename or path.name
        logger.info("Starting upload to Telegram: %s (context=%s)", path, context)

        self._check_config()
        size = self._check_file(path)

        mime_type = detect_mime(path)
        if not mime_type:
            logger.error("Failed to detect MIME type for file: %s", path)
            raise FileError(f"Failed to detect file MIME type: {path}")
        if declared_mime and declared_mime != mime_type:
            logger.info("Declared MIME %s differs from detected %s", declared_mime, mime_type)
        logger.info("File details - Name: %s, MIME: %s, Size: %d bytes", filename, mime_type, size)

        dimensions = image_dimensions(path) if mime_type in RASTER_MIME_TYPES else None

        # Refuse to upload into a chat the bot cannot post to
        self.client.probe(text="Pre-upload test from Telegram Cloud Storage")

        remote_file_id = self.client.upload(path, mime_type, filename)

        fields = {
            "remote_file_id": remote_file_id,
            "width": dimensions[0] if dimensions else None,
            "height": dimensions[1] if dimensions else None,
            "filename": filename,
            "mime_type": mime_type,
            "size_bytes": size,
        }
        existing = self.store.get(local_id) if local_id is not None else None
        if existing is not None:
            for name, value in fields.items():
                setattr(existing, name, value)
            existing.remote_url = ""
            record = self.store.put(existing)
        elif local_id is not None:
            record = self.store.put(AttachmentRecord(local_id=local_id, **fields))
        else:
            record = self.store.create(**fields)

        path.unlink(missing_ok=True)
        logger.info("Local file deleted: %s", path)

        try:
            record.remote_url = self.client.resolve(remote_file_id)
        except TgCloudError as exc:
            logger.warning(
                "Could not pre-resolve file_id %s, will resolve on first access: %s",
                remote_file_id,
                exc,
            )
        else:
            record = self.store.put(record)

        return record
