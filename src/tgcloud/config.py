"""Settings registry.

Each setting is declared once with its dotted key, type, default, the
``app.config`` name it loads into and whether it holds a secret. Stored values
live as strings in the ``app_setting`` table; INI import names are derived
from the dotted key (``telegram.chat_id`` <-> ``[telegram] CHAT_ID``).
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

# Telegram's hard limit for bot uploads
MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024

logger = logging.getLogger(__name__)

Value = str | int | bool | list[str]


class ConfigType(Enum):
    STRING = "string"
    INT = "int"
    BOOL = "bool"
    STRING_LIST = "string_list"


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("true", "1", "yes", "on")


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


_PARSERS = {
    ConfigType.STRING: str,
    ConfigType.INT: int,
    ConfigType.BOOL: _parse_bool,
    ConfigType.STRING_LIST: _parse_list,
}


@dataclass(frozen=True, slots=True)
class ConfigEntry:
    key: str
    type: ConfigType
    default: Value
    flask_key: str
    description: str
    secret: bool = False

    @property
    def group(self) -> str:
        return self.key.partition(".")[0]

    @property
    def ini_name(self) -> tuple[str, str]:
        group, _, name = self.key.partition(".")
        return group, name.upper()

    def parse(self, raw: str) -> Value:
        """Typed value of a stored string; raises ValueError when malformed."""
        return _PARSERS[self.type](raw)

    def serialize(self, value: Value) -> str:
        if self.type is ConfigType.BOOL:
            return "true" if value else "false"
        if isinstance(value, list):
            return ", ".join(value)
        return str(value)


REGISTRY: list[ConfigEntry] = [
    # -- server --
    ConfigEntry("server.host", ConfigType.STRING, "0.0.0.0", "HOST", "Listen address for serve"),
    ConfigEntry("server.port", ConfigType.INT, 5300, "PORT", "Listen port for serve"),
    ConfigEntry(
        "server.dev_host", ConfigType.STRING, "127.0.0.1", "DEV_HOST", "Listen address for --dev"
    ),
    ConfigEntry("server.dev_port", ConfigType.INT, 5300, "DEV_PORT", "Listen port for serve --dev"),
    ConfigEntry("server.debug", ConfigType.BOOL, False, "DEBUG", "Flask debug mode"),
    # -- telegram --
    ConfigEntry(
        "telegram.bot_token",
        ConfigType.STRING,
        "",
        "TELEGRAM_BOT_TOKEN",
        "Bot token from @BotFather",
        secret=True,
    ),
    ConfigEntry(
        "telegram.chat_id", ConfigType.STRING, "", "TELEGRAM_CHAT_ID", "Chat that receives uploads"
    ),
    ConfigEntry(
        "telegram.api_base",
        ConfigType.STRING,
        "https://api.telegram.org",
        "TELEGRAM_API_BASE",
        "Bot API base URL",
    ),
    ConfigEntry(
        "telegram.file_base",
        ConfigType.STRING,
        "https://api.telegram.org/file",
        "TELEGRAM_FILE_BASE",
        "Base URL of file download links",
    ),
    ConfigEntry(
        "telegram.timeout", ConfigType.INT, 30, "TELEGRAM_TIMEOUT", "API call timeout (seconds)"
    ),
    ConfigEntry(
        "telegram.upload_timeout",
        ConfigType.INT,
        120,
        "TELEGRAM_UPLOAD_TIMEOUT",
        "Upload timeout (seconds)",
    ),
    # -- uploads --
    ConfigEntry(
        "uploads.directory",
        ConfigType.STRING,
        "instance/uploads",
        "UPLOAD_DIRECTORY",
        "Spool directory for API uploads",
    ),
    ConfigEntry(
        "uploads.max_size_bytes",
        ConfigType.INT,
        MAX_UPLOAD_BYTES,
        "UPLOAD_MAX_SIZE_BYTES",
        "Largest file the pipeline will send",
    ),
    # -- rewrite --
    ConfigEntry(
        "rewrite.public_base_url",
        ConfigType.STRING,
        "",
        "PUBLIC_BASE_URL",
        "Absolute base for proxy URLs (empty for host-relative paths)",
    ),
    ConfigEntry(
        "rewrite.output_buffer",
        ConfigType.BOOL,
        True,
        "REWRITE_OUTPUT_BUFFER",
        "Rewrite Telegram URLs left in rendered responses",
    ),
    # -- api --
    ConfigEntry(
        "api.keys",
        ConfigType.STRING_LIST,
        [],
        "API_KEYS",
        "Accepted X-API-Key values",
        secret=True,
    ),
    # -- logging --
    ConfigEntry(
        "logging.file", ConfigType.STRING, "", "LOG_FILE", "Also append tgcloud log records here"
    ),
    ConfigEntry(
        "logging.level", ConfigType.STRING, "INFO", "LOG_LEVEL", "Level of the tgcloud logger"
    ),
    # -- proxy (werkzeug ProxyFix hop counts) --
    *(
        ConfigEntry(
            f"proxy.x_forwarded_{name}",
            ConfigType.INT,
            0,
            f"PROXY_X_FORWARDED_{name.upper()}",
            f"Trusted X-Forwarded-{name.title()} hops",
        )
        for name in ("for", "proto", "host", "prefix")
    ),
]


_BY_KEY: dict[str, ConfigEntry] = {e.key: e for e in REGISTRY}

# Registry key -> app.config key
KEY_MAP: dict[str, str] = {e.key: e.flask_key for e in REGISTRY}

# (INI section, OPTION) -> registry key; None marks options that are recognised but ignored
INI_MAP: dict[tuple[str, str], str | None] = {e.ini_name: e.key for e in REGISTRY}
INI_MAP[("database", "PATH")] = None


def resolve_entry(key: str) -> ConfigEntry | None:
    return _BY_KEY.get(key)


def defaults() -> dict[str, Value]:
    """app.config keys mapped to registry defaults."""
    return {e.flask_key: e.default for e in REGISTRY}


def load_settings(stored: Mapping[str, str]) -> dict[str, Value]:
    """app.config values from stored strings, falling back to defaults.

    A stored value that no longer parses falls back to the default.
    """
    config: dict[str, Value] = {}
    for entry in REGISTRY:
        raw = stored.get(entry.key)
        try:
            config[entry.flask_key] = entry.default if raw is None else entry.parse(raw)
        except ValueError:
            logger.warning("Ignoring malformed stored value for %s", entry.key)
            config[entry.flask_key] = entry.default
    return config
