"""Bulk reconciliation of stored attachment mappings."""

import logging
import time

from tgcloud.errors import TgCloudError
from tgcloud.models.attachment import FALLBACK_PREFIX
from tgcloud.store.base import MetadataStore
from tgcloud.telegram.client import TelegramClient

logger = logging.getLogger(__name__)


def reconcile_attachments(store: MetadataStore, client: TelegramClient) -> int:
    """Make every record proxyable; return how many changed.

    Records without a handle get a fallback handle. Records with a real handle
    but no cached URL are resolved; a failed resolve is logged and skipped.
    """
    now = int(time.time())
    updated = 0

    for record in store.all():
        changed = False

        if not record.remote_file_id:
            record.remote_file_id = f"{FALLBACK_PREFIX}{record.local_id}_{now}"
            logger.info(
                "Generated fallback handle for attachment %d: %s",
                record.local_id,
                record.remote_file_id,
            )
            changed = True

        if not record.remote_url and record.has_real_handle:
            try:
                record.remote_url = client.resolve(record.remote_file_id)
            except TgCloudError as exc:
                logger.warning(
                    "Could not resolve attachment %d (%s): %s",
                    record.local_id,
                    record.remote_file_id,
                    exc,
                )
            else:
                logger.info("Fetched Telegram URL for attachment %d", record.local_id)
                changed = True

        if changed:
            store.put(record)
            updated += 1

    logger.info("Reconciled %d attachment(s)", updated)
    return updated
