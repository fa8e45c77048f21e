"""Attachment metadata stores."""

from tgcloud.store.base import MetadataStore
from tgcloud.store.memory import MemoryMetadataStore
from tgcloud.store.sqlite import SqliteMetadataStore

__all__ = ["MetadataStore", "MemoryMetadataStore", "SqliteMetadataStore"]
