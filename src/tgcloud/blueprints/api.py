"""JSON API blueprint for host applications, with API key authentication."""

import hmac
import logging
import uuid
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename
from werkzeug.wrappers import Response

from tgcloud.errors import ConfigError, FileError, TgCloudError
from tgcloud.models.attachment import AttachmentRecord
from tgcloud.service import StorageService

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__, url_prefix="/api/v1")

REWRITE_KINDS = ("url", "attributes", "html", "content")


def api_key_required(f: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: require a configured API key in the X-API-Key header."""

    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        raw_key = request.headers.get("X-API-Key", "")
        if not raw_key:
            return jsonify({"error": "Missing X-API-Key header"}), 401

        keys = current_app.config.get("API_KEYS") or []
        if not any(hmac.compare_digest(raw_key, k) for k in keys):
            return jsonify({"error": "Invalid API key"}), 401

        return f(*args, **kwargs)

    return decorated


def _service() -> StorageService:
    return current_app.extensions["tgcloud"]


def _record_to_dict(record: AttachmentRecord) -> dict[str, Any]:
    data = record.to_dict()
    data["proxy_url"] = (
        _service().rewriter.proxy_url(record.remote_file_id) if record.remote_file_id else ""
    )
    return data


def _spool_path(filename: str) -> Path:
    spool_dir = Path(current_app.config["UPLOAD_DIRECTORY"])
    if not spool_dir.is_absolute():
        spool_dir = Path(current_app.instance_path).parent / spool_dir
    spool_dir.mkdir(parents=True, exist_ok=True)
    return spool_dir / f"{uuid.uuid4().hex}-{filename}"


@bp.route("/attachments", methods=["POST"])
@api_key_required
def upload_attachment() -> Response | tuple[Response, int]:
    """Accept a multipart upload and offload it to Telegram."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "file is required"}), 400

    filename = secure_filename(upload.filename) or "upload"
    spool = _spool_path(filename)
    upload.save(spool)

    try:
        record = _service().pipeline.offload(
            spool,
            declared_mime=upload.mimetype,
            context=request.form.get("context") or "api",
            filename=filename,
        )
    except TgCloudError as exc:
        # The pipeline keeps the file on failure; the spool is ours to clean
        spool.unlink(missing_ok=True)
        logger.warning("Upload of %s failed: %s", filename, exc)
        if isinstance(exc, FileError):
            return jsonify({"error": str(exc)}), 400
        if isinstance(exc, ConfigError):
            return jsonify({"error": str(exc)}), 503
        return jsonify({"error": str(exc)}), 502

    return jsonify(_record_to_dict(record)), 201


@bp.route("/attachments/<int:local_id>")
@api_key_required
def get_attachment(local_id: int) -> Response | tuple[Response, int]:
    """Get an attachment mapping by local id."""
    record = _service().store.get(local_id)
    if record is None:
        return jsonify({"error": "Attachment not found"}), 404
    return jsonify(_record_to_dict(record))


@bp.route("/rewrite", methods=["POST"])
@api_key_required
def rewrite() -> Response | tuple[Response, int]:
    """Run one of the rewrite hooks on behalf of a host renderer."""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Invalid JSON body"}), 400

    kind = data.get("kind", "content")
    value = data.get("value")
    local_id = data.get("local_id")

    if kind not in REWRITE_KINDS:
        return jsonify({"error": f"kind must be one of {', '.join(REWRITE_KINDS)}"}), 400
    if local_id is not None and not isinstance(local_id, int):
        return jsonify({"error": "local_id must be an integer"}), 400
    if kind == "attributes":
        if not isinstance(value, dict):
            return jsonify({"error": "value must be an object for kind 'attributes'"}), 400
    elif not isinstance(value, str):
        return jsonify({"error": f"value must be a string for kind '{kind}'"}), 400

    rewriter = _service().rewriter
    match kind:
        case "url":
            result = rewriter.rewrite_url(value, local_id)
        case "attributes":
            result = rewriter.rewrite_attributes(value, local_id)
        case "html":
            result = rewriter.rewrite_html(value, local_id)
        case _:
            result = rewriter.rewrite_content(value)

    return jsonify({"value": result})
