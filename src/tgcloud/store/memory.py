"""In-process metadata store with explicit secondary indexes."""

import threading
from dataclasses import replace
from datetime import UTC, datetime

from tgcloud.models.attachment import AttachmentRecord


class MemoryMetadataStore:
    """Dict-backed store for embedding and tests.

    Keeps ``remote_file_id -> local_id`` and ``remote_path -> local_id`` maps
    next to the records. Records are copied in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._records: dict[int, AttachmentRecord] = {}
        self._by_handle: dict[str, int] = {}
        self._by_path: dict[str, int] = {}
        self._last_id = 0
        self._lock = threading.Lock()

    def _reindex(self, index: dict[str, int], attr: str, key: str) -> None:
        # Lowest id owns the slot, matching ORDER BY id in SQLite
        owners = [i for i, r in self._records.items() if getattr(r, attr) == key]
        if owners:
            index[key] = min(owners)
        else:
            index.pop(key, None)

    def _store(self, record: AttachmentRecord) -> AttachmentRecord:
        previous = self._records.get(record.local_id)
        self._records[record.local_id] = replace(record)
        self._last_id = max(self._last_id, record.local_id)
        for attr, index in (("remote_file_id", self._by_handle), ("remote_path", self._by_path)):
            keys = {getattr(record, attr)}
            if previous is not None:
                keys.add(getattr(previous, attr))
            for key in keys - {""}:
                self._reindex(index, attr, key)
        return record

    def get(self, local_id: int) -> AttachmentRecord | None:
        with self._lock:
            record = self._records.get(local_id)
            return replace(record) if record else None

    def put(self, record: AttachmentRecord) -> AttachmentRecord:
        now = datetime.now(UTC).isoformat()
        record.updated_at = now
        if not record.created_at:
            record.created_at = now
        with self._lock:
            return self._store(record)

    def create(self, **fields: object) -> AttachmentRecord:
        now = datetime.now(UTC).isoformat()
        with self._lock:
            record = AttachmentRecord(
                local_id=self._last_id + 1, created_at=now, updated_at=now, **fields
            )
            return self._store(record)

    def _lookup(self, index: dict[str, int], key: str) -> AttachmentRecord | None:
        local_id = index.get(key)
        if local_id is None:
            return None
        return replace(self._records[local_id])

    def find_by_remote_file_id(self, remote_file_id: str) -> AttachmentRecord | None:
        if not remote_file_id:
            return None
        with self._lock:
            return self._lookup(self._by_handle, remote_file_id)

    def find_by_remote_handle_or_url(self, key: str) -> AttachmentRecord | None:
        if not key:
            return None
        with self._lock:
            found = self._lookup(self._by_handle, key) or self._lookup(self._by_path, key)
            if found:
                return found
            for local_id in sorted(self._records):
                record = self._records[local_id]
                if not record.remote_path and key in record.remote_url:
                    return replace(record)
            return None

    def all(self) -> list[AttachmentRecord]:
        with self._lock:
            return [replace(self._records[k]) for k in sorted(self._records)]
