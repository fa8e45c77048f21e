"""Telegram Bot API access."""

from tgcloud.telegram.client import FileStream, TelegramClient

__all__ = ["FileStream", "TelegramClient"]
