"""Exception hierarchy shared by the client, pipeline, rewriter and resolver."""


class TgCloudError(Exception):
    """Base class for all tgcloud errors."""


class ConfigError(TgCloudError):
    """Bot token or chat id is missing or invalid."""


class FileError(TgCloudError):
    """Local upload file is missing, unreadable, oversized or of unknown type."""


class TransportError(TgCloudError):
    """Network or TLS failure talking to Telegram (includes timeouts)."""


class RemoteApiError(TgCloudError):
    """Telegram answered but rejected the call."""

    def __init__(self, description: str, status_code: int | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.status_code = status_code


class NotFoundError(RemoteApiError):
    """The file handle is unknown to Telegram or cannot be resolved locally."""


class FetchError(TgCloudError):
    """Downloading bytes from an already-resolved file URL failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_stale(self) -> bool:
        """True when the upstream status means the cached URL has expired."""
        return self.status_code in (401, 403, 404)
