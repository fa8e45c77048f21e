"""CLI entry point for tgcloud-admin."""

import configparser
import logging
import shlex
import sys
from datetime import UTC, datetime
from itertools import groupby
from pathlib import Path
from typing import Any

import click

from tgcloud.config import INI_MAP, REGISTRY, ConfigEntry, load_settings, resolve_entry
from tgcloud.db import (
    close_standalone_db,
    get_db_path,
    get_standalone_db,
    init_db_at,
    read_settings,
    write_settings,
)
from tgcloud.errors import TgCloudError

MASK = "********"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


# ---------------------------------------------------------------------------
# Settings helpers (standalone DB, no Flask)
# ---------------------------------------------------------------------------


def _stored() -> dict[str, str]:
    return read_settings(get_standalone_db())


def _store(entry: ConfigEntry, value: str) -> None:
    write_settings(get_standalone_db(), [(entry.key, value, entry.description)])


def _entry_or_exit(key: str) -> ConfigEntry:
    entry = resolve_entry(key)
    if entry is None:
        click.echo(f"Unknown setting: {key}", err=True)
        sys.exit(1)
    return entry


def _effective(entry: ConfigEntry, stored: dict[str, str]) -> str:
    """Stored value, or the serialized default when nothing is stored."""
    raw = stored.get(entry.key)
    return entry.serialize(entry.default) if raw is None else raw


def _display(entry: ConfigEntry, stored: dict[str, str]) -> str:
    if entry.secret and entry.key in stored:
        return MASK
    return _effective(entry, stored) or "(empty)"


def _effective_config(overrides: dict[str, str] | None = None) -> dict[str, Any]:
    """app.config-style mapping built from stored settings plus ``overrides``."""
    config = load_settings({**_stored(), **(overrides or {})})
    config["DATABASE_PATH"] = get_db_path()
    return config


def _make_service(overrides: dict[str, str] | None = None):
    from tgcloud.service import StorageService

    return StorageService.from_config(_effective_config(overrides))


def _verify_telegram_setting(key: str, value: str) -> None:
    """Check a Telegram setting against the Bot API before it is stored.

    Raises TgCloudError with Telegram's own description on rejection.
    """
    if not value:
        return
    client = _make_service({key: value}).client
    if key == "telegram.bot_token":
        bot = client.get_me()
        click.echo(f"Bot token valid (@{bot.get('username', '?')})")
    elif client.bot_token:
        client.probe()
        click.echo("Chat ID is valid and accessible.")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.pass_context
def main(ctx: click.Context):
    """tgcloud administration tool."""
    ctx.call_on_close(close_standalone_db)


# ---- config group --------------------------------------------------------


@main.group()
def config():
    """Inspect and change stored settings."""


@config.command("list")
def config_list():
    """Show every setting, its effective value and where it comes from."""
    stored = _stored()
    for group, entries in groupby(REGISTRY, key=lambda e: e.group):
        click.echo(click.style(f"[{group}]", bold=True))
        for entry in entries:
            if entry.key in stored:
                source = click.style("[db]", fg="cyan")
            else:
                source = click.style("[default]", fg="yellow")
            click.echo(f"  {entry.key} = {_display(entry, stored)}  {source}")
            click.echo(click.style(f"    {entry.description}", dim=True))
        click.echo()


@config.command("get")
@click.argument("key")
def config_get(key: str):
    """Print the effective value of KEY (secrets are masked)."""
    entry = _entry_or_exit(key)
    click.echo(_display(entry, _stored()))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--no-verify", is_flag=True, help="Store Telegram settings without checking them")
def config_set(key: str, value: str, no_verify: bool):
    """Store VALUE for KEY.

    telegram.bot_token is checked with getMe and telegram.chat_id with a test
    message before they are stored. Use "--" before a negative chat id.
    """
    entry = _entry_or_exit(key)
    value = value.strip()
    try:
        entry.parse(value)
    except ValueError as exc:
        click.echo(f"Invalid value for {key} ({entry.type.value}): {exc}", err=True)
        sys.exit(1)

    if key in ("telegram.bot_token", "telegram.chat_id") and not no_verify:
        try:
            _verify_telegram_setting(key, value)
        except TgCloudError as exc:
            label = "bot token" if key == "telegram.bot_token" else "chat ID"
            click.echo(f"Invalid {label}: {exc}", err=True)
            sys.exit(1)

    _store(entry, value)
    click.echo(f"{key} = {MASK if entry.secret else value}")


@config.command("export")
@click.argument("output_file", type=click.Path(dir_okay=False, path_type=Path))
def config_export(output_file: Path):
    """Write every effective setting as a replayable shell script."""
    stored = _stored()
    stamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = ["#!/bin/sh", f"# tgcloud settings, exported {stamp}", ""]
    lines += [
        f"tgcloud-admin config set --no-verify -- {e.key} {shlex.quote(_effective(e, stored))}"
        for e in REGISTRY
    ]
    output_file.write_text("\n".join(lines) + "\n")
    output_file.chmod(output_file.stat().st_mode | 0o111)
    click.echo(f"Exported {len(REGISTRY)} settings to {output_file}")


@config.command("import")
@click.argument("ini_file", type=click.Path(exists=True, dir_okay=False))
def config_import(ini_file: str):
    """Load settings from an INI file ([telegram] CHAT_ID = ... style)."""
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str.upper
    parser.read(ini_file)

    rows = []
    for section in parser.sections():
        for name, value in parser.items(section):
            where = f"[{section}] {name}"
            if (section, name) not in INI_MAP:
                click.echo(f"  (unknown) {where}")
                continue
            key = INI_MAP[(section, name)]
            if key is None:
                click.echo(f"  (skip) {where}")
                continue
            entry = resolve_entry(key)
            rows.append((key, value, entry.description))
            click.echo(f"  {key} = {MASK if entry.secret else value}")

    write_settings(get_standalone_db(), rows)
    click.echo(f"\nImported {len(rows)} settings.")


# ---- admin commands ------------------------------------------------------


@main.command("init-db")
def init_db_command():
    """Create the database schema (safe to re-run)."""
    init_db_at(get_db_path())
    click.echo(f"Database initialized at {get_db_path()}.")


@main.command("test-chat")
def test_chat_command():
    """Send a test message to the configured chat."""
    service = _make_service()
    try:
        service.client.probe()
    except TgCloudError as exc:
        click.echo(f"Invalid chat ID: {exc}", err=True)
        sys.exit(1)
    click.echo("Chat ID is valid and accessible.")


@main.command("test-file-id")
@click.argument("file_id")
def test_file_id_command(file_id: str):
    """Look up FILE_ID locally, refreshing or creating its mapping via Telegram."""
    service = _make_service()
    known = service.store.find_by_remote_file_id(file_id) is not None
    try:
        record = service.resolver.resolve(file_id)
    except TgCloudError as exc:
        click.echo(f"File ID could not be resolved: {exc}", err=True)
        sys.exit(1)

    if known:
        click.echo(f"File ID found on attachment {record.local_id} with valid metadata.")
    else:
        click.echo(f"File ID accessible, new attachment {record.local_id} created.")
    click.echo(f"Proxy URL: {service.rewriter.proxy_url(record.remote_file_id)}")


@main.command("reconcile")
@click.option("--verbose", "-v", is_flag=True, help="Log each attachment")
def reconcile_command(verbose: bool):
    """Give every attachment a handle and refresh missing Telegram URLs."""
    _setup_logging(verbose)
    updated = _make_service().reconcile()
    click.echo(f"Updated {updated} attachments to use proxy URLs.")


@main.command("upload")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--local-id", type=int, default=None, help="Attach to an existing record")
def upload_command(path: str, local_id: int | None):
    """Move a local file to Telegram and record its mapping."""
    _setup_logging(False)
    service = _make_service()
    try:
        record = service.pipeline.offload(path, context="cli", local_id=local_id)
    except TgCloudError as exc:
        click.echo(f"Upload failed: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Uploaded as attachment {record.local_id}, file_id {record.remote_file_id}")
    click.echo(f"Proxy URL: {service.rewriter.proxy_url(record.remote_file_id)}")


@main.command("export")
@click.argument("output_file", type=click.Path(dir_okay=False))
def export_command(output_file: str):
    """Export all attachment mappings to an XLSX file."""
    from tgcloud.services.export import write_xlsx

    count = write_xlsx(_make_service().store.all(), output_file)
    click.echo(f"Exported {count} attachments to {output_file}")


@main.command("serve")
@click.option("--dev", is_flag=True, help="Use the dev host/port and Flask debug mode")
def serve_command(dev: bool):
    """Run the proxy with Flask's built-in server."""
    from tgcloud import create_app

    _setup_logging(False)
    app = create_app()
    if dev:
        app.run(host=app.config["DEV_HOST"], port=app.config["DEV_PORT"], debug=True)
    else:
        app.run(host=app.config["HOST"], port=app.config["PORT"], debug=app.config["DEBUG"])
