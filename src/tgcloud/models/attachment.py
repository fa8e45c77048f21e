"""Attachment mapping record."""

import re
from dataclasses import asdict, dataclass, field
from typing import Any

PROXY_PREFIX = "/telegram-file/"

FALLBACK_PREFIX = "fallback_"
UNMATCHED_PREFIX = "unmatched_"

# Everything after "/bot<token>/" in a Telegram file URL, minus query/fragment
_REMOTE_PATH_RE = re.compile(r"/bot[^/\s]+/([^?#\s]+)")


def extract_remote_path(url: str) -> str:
    """Return the Telegram ``file_path`` embedded in a file URL, or ``""``."""
    if not url:
        return ""
    match = _REMOTE_PATH_RE.search(url)
    return match.group(1) if match else ""


def is_synthetic_handle(remote_file_id: str) -> bool:
    """True for locally synthesized handles that Telegram has never issued."""
    return remote_file_id.startswith((FALLBACK_PREFIX, UNMATCHED_PREFIX))


def proxy_path_for(remote_file_id: str) -> str:
    return f"{PROXY_PREFIX}{remote_file_id}"


@dataclass
class AttachmentRecord:
    local_id: int
    remote_file_id: str = ""
    remote_url: str = ""
    width: int | None = None
    height: int | None = None
    filename: str = ""
    mime_type: str = ""
    size_bytes: int = 0
    created_at: str = ""
    updated_at: str = field(default="", compare=False)

    @property
    def proxy_path(self) -> str:
        """Host-local path clients use instead of the Telegram URL."""
        return proxy_path_for(self.remote_file_id) if self.remote_file_id else ""

    @property
    def remote_path(self) -> str:
        return extract_remote_path(self.remote_url)

    @property
    def has_real_handle(self) -> bool:
        return bool(self.remote_file_id) and not is_synthetic_handle(self.remote_file_id)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        # The cached URL embeds the bot token; never hand it out
        data.pop("remote_url")
        data["proxy_path"] = self.proxy_path
        data["has_remote_url"] = bool(self.remote_url)
        return data
