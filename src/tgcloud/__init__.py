"""tgcloud - Telegram-backed media offload proxy."""

import logging
from pathlib import Path
from typing import Any

import apsw
from flask import Flask, current_app
from werkzeug.wrappers import Response

from tgcloud.config import defaults, load_settings
from tgcloud.db import get_db_path, read_settings
from tgcloud.service import StorageService

# Non-text responses the final output scan may touch
_REWRITABLE_MIMETYPES = ("application/json", "application/javascript", "application/xml")

_PROXY_HEADERS = ("for", "proto", "host", "prefix")


def create_app(
    test_config: dict[str, Any] | None = None,
    service: StorageService | None = None,
) -> Flask:
    """Application factory for tgcloud.

    ``service`` replaces the StorageService normally built from app.config,
    e.g. one wired to a fake Telegram transport.
    """
    db_path = get_db_path()
    instance_path = Path(db_path).parent
    instance_path.mkdir(parents=True, exist_ok=True)

    app = Flask(__name__, instance_path=str(instance_path), instance_relative_config=True)
    app.config.from_mapping(defaults())
    app.config["DATABASE_PATH"] = db_path
    if test_config is not None:
        app.config.from_mapping(test_config)
    else:
        app.config.from_mapping(load_settings(_stored_settings(db_path)))

    _configure_logging(app)
    _apply_proxy_fix(app)

    app.extensions["tgcloud"] = service or StorageService.from_config(app.config)

    from tgcloud.blueprints import api, proxy

    app.register_blueprint(proxy.bp)
    app.register_blueprint(api.bp)

    if app.extensions["tgcloud"].rewrite_output:
        app.after_request(_rewrite_output)

    return app


def _stored_settings(db_path: str) -> dict[str, str]:
    """Settings from app_setting; empty before ``init-db`` has run."""
    try:
        conn = apsw.Connection(db_path, flags=apsw.SQLITE_OPEN_READONLY)
    except apsw.CantOpenError:
        return {}
    try:
        return read_settings(conn)
    except apsw.SQLError:
        return {}
    finally:
        conn.close()


def _rewrite_output(response: Response) -> Response:
    """Last-pass scan of rendered responses for Telegram URLs that slipped through."""
    if response.direct_passthrough or response.is_streamed:
        return response
    mimetype = response.mimetype or ""
    if not (mimetype.startswith("text/") or mimetype in _REWRITABLE_MIMETYPES):
        return response

    body = response.get_data()
    rewritten = current_app.extensions["tgcloud"].rewriter.rewrite_output(body)
    if rewritten is not body:
        response.set_data(rewritten)
    return response


def _configure_logging(app: Flask) -> None:
    """Apply logging.level and attach logging.file to the tgcloud logger."""
    logger = logging.getLogger("tgcloud")
    level = str(app.config.get("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, level, logging.INFO))

    log_file = app.config.get("LOG_FILE")
    if not log_file:
        return
    log_path = str(Path(log_file).resolve())
    if any(getattr(h, "baseFilename", None) == log_path for h in logger.handlers):
        return
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)


def _apply_proxy_fix(app: Flask) -> None:
    """Trust X-Forwarded-* headers for the configured number of hops."""
    hops = {
        f"x_{name}": int(app.config.get(f"PROXY_X_FORWARDED_{name.upper()}") or 0)
        for name in _PROXY_HEADERS
    }
    if any(hops.values()):
        from werkzeug.middleware.proxy_fix import ProxyFix

        app.wsgi_app = ProxyFix(app.wsgi_app, **hops)
