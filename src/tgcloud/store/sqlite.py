"""SQLite-backed metadata store (direct apsw access, one connection per call)."""

from datetime import UTC, datetime

import apsw

from tgcloud.db import connect, transaction
from tgcloud.models.attachment import AttachmentRecord, extract_remote_path

_ATTACHMENT_COLUMNS = (
    "id, remote_file_id, remote_url, width, height, filename, mime_type, size_bytes, "
    "created_at, updated_at"
)


def _record_from_row(row: tuple) -> AttachmentRecord:
    return AttachmentRecord(
        local_id=int(row[0]),
        remote_file_id=str(row[1]),
        remote_url=str(row[2]),
        width=row[3],
        height=row[4],
        filename=str(row[5]),
        mime_type=str(row[6]),
        size_bytes=int(row[7]),
        created_at=str(row[8]),
        updated_at=str(row[9]),
    )


class SqliteMetadataStore:
    """Store attachment mappings in the tgcloud SQLite database.

    ``remote_file_id`` and ``remote_path`` are indexed columns, so lookups by
    handle or by Telegram file-path fragment never scan serialized metadata.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> apsw.Connection:
        return connect(self.db_path)

    def _fetch_one(self, where: str, params: tuple) -> AttachmentRecord | None:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_ATTACHMENT_COLUMNS} FROM attachment WHERE {where} ORDER BY id LIMIT 1",
                params,
            ).fetchone()
            return _record_from_row(row) if row else None
        finally:
            conn.close()

    def get(self, local_id: int) -> AttachmentRecord | None:
        return self._fetch_one("id = ?", (local_id,))

    def put(self, record: AttachmentRecord) -> AttachmentRecord:
        now = datetime.now(UTC).isoformat()
        record.updated_at = now
        if not record.created_at:
            record.created_at = now

        conn = self._connect()
        try:
            with transaction(conn) as cursor:
                cursor.execute(
                    "INSERT INTO attachment "
                    "(id, remote_file_id, remote_url, remote_path, width, height, filename, "
                    "mime_type, size_bytes, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET "
                    "remote_file_id = excluded.remote_file_id, "
                    "remote_url = excluded.remote_url, "
                    "remote_path = excluded.remote_path, "
                    "width = excluded.width, height = excluded.height, "
                    "filename = excluded.filename, mime_type = excluded.mime_type, "
                    "size_bytes = excluded.size_bytes, updated_at = excluded.updated_at",
                    (
                        record.local_id,
                        record.remote_file_id,
                        record.remote_url,
                        extract_remote_path(record.remote_url),
                        record.width,
                        record.height,
                        record.filename,
                        record.mime_type,
                        record.size_bytes,
                        record.created_at,
                        record.updated_at,
                    ),
                )
        finally:
            conn.close()
        return record

    def create(self, **fields: object) -> AttachmentRecord:
        now = datetime.now(UTC).isoformat()
        record = AttachmentRecord(local_id=0, created_at=now, updated_at=now, **fields)

        conn = self._connect()
        try:
            with transaction(conn) as cursor:
                cursor.execute(
                    "INSERT INTO attachment "
                    "(remote_file_id, remote_url, remote_path, width, height, filename, "
                    "mime_type, size_bytes, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.remote_file_id,
                        record.remote_url,
                        extract_remote_path(record.remote_url),
                        record.width,
                        record.height,
                        record.filename,
                        record.mime_type,
                        record.size_bytes,
                        now,
                        now,
                    ),
                )
                row = cursor.execute("SELECT last_insert_rowid()").fetchone()
                record.local_id = int(row[0]) if row else 0
        finally:
            conn.close()
        return record

    def find_by_remote_file_id(self, remote_file_id: str) -> AttachmentRecord | None:
        if not remote_file_id:
            return None
        return self._fetch_one("remote_file_id = ?", (remote_file_id,))

    def find_by_remote_handle_or_url(self, key: str) -> AttachmentRecord | None:
        if not key:
            return None
        return (
            self.find_by_remote_file_id(key)
            or self._fetch_one("remote_path = ?", (key,))
            # Legacy rows whose URL did not parse into a remote_path
            or self._fetch_one("remote_path = '' AND instr(remote_url, ?) > 0", (key,))
        )

    def all(self) -> list[AttachmentRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_ATTACHMENT_COLUMNS} FROM attachment ORDER BY id"
            ).fetchall()
            return [_record_from_row(row) for row in rows]
        finally:
            conn.close()
