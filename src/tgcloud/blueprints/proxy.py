"""Proxy route serving Telegram-hosted files under a stable local URL."""

import logging

from flask import Blueprint, Response, abort, current_app

from tgcloud.errors import FetchError, NotFoundError
from tgcloud.service import StorageService

logger = logging.getLogger(__name__)

bp = Blueprint("proxy", __name__)

CACHE_CONTROL = "max-age=31536000"


def get_service() -> StorageService:
    return current_app.extensions["tgcloud"]


@bp.route("/telegram-file/<file_id>", strict_slashes=False)
def serve_file(file_id: str) -> Response:
    """Stream the Telegram file behind ``file_id`` verbatim."""
    logger.info("Handling proxy request for file_id: %s", file_id)
    try:
        proxied = get_service().resolver.open(file_id)
    except NotFoundError:
        abort(404, description="File not found.")
    except FetchError as exc:
        abort(500, description=f"Failed to fetch file from Telegram: {exc}")

    headers = {"Cache-Control": CACHE_CONTROL}
    if proxied.content_length:
        headers["Content-Length"] = proxied.content_length
    if proxied.content_encoding:
        headers["Content-Encoding"] = proxied.content_encoding

    response = Response(
        proxied.iter_bytes(),
        status=200,
        content_type=proxied.content_type,
        headers=headers,
        direct_passthrough=True,
    )
    response.call_on_close(proxied.close)
    return response
