"""XLSX export of attachment mappings."""

from openpyxl import Workbook

from tgcloud.models.attachment import AttachmentRecord

HEADERS = [
    "Local ID",
    "Remote file ID",
    "Proxy path",
    "Filename",
    "MIME type",
    "Size (bytes)",
    "Width",
    "Height",
    "URL cached",
    "Created",
    "Updated",
]


def write_xlsx(records: list[AttachmentRecord], path: str) -> int:
    """Write one row per record to ``path``; returns the row count."""
    wb = Workbook()
    ws = wb.active
    ws.title = "attachments"
    ws.append(HEADERS)
    for r in records:
        ws.append(
            [
                r.local_id,
                r.remote_file_id,
                r.proxy_path,
                r.filename,
                r.mime_type,
                r.size_bytes,
                r.width,
                r.height,
                "yes" if r.remote_url else "no",
                r.created_at,
                r.updated_at,
            ]
        )
    wb.save(path)
    return len(records)
