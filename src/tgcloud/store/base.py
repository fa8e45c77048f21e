"""Metadata store protocol."""

from typing import Protocol

from tgcloud.models.attachment import AttachmentRecord


class MetadataStore(Protocol):
    """Protocol that all attachment metadata stores must implement.

    Writes are last-writer-wins per record; no optimistic locking.
    """

    def get(self, local_id: int) -> AttachmentRecord | None:
        """Get a record by its local id."""
        ...

    def put(self, record: AttachmentRecord) -> AttachmentRecord:
        """Insert or overwrite a record, keyed by ``record.local_id``."""
        ...

    def create(self, **fields: object) -> AttachmentRecord:
        """Allocate a new local id and store a record with ``fields``."""
        ...

    def find_by_remote_file_id(self, remote_file_id: str) -> AttachmentRecord | None:
        """Find the record carrying exactly this Telegram handle."""
        ...

    def find_by_remote_handle_or_url(self, key: str) -> AttachmentRecord | None:
        """Find a record by handle, by Telegram file-path fragment, or by URL substring."""
        ...

    def all(self) -> list[AttachmentRecord]:
        """All records ordered by local id."""
        ...
