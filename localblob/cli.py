"""
LocalBlob Command-Line Interface

Inspect the effective configuration and issue shared access signatures
offline from the configured account key. Commands apply the logging section
of the effective configuration before they run.

Author: LocalBlob Team
Date: 2026-10-17
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

from localblob import __version__
from localblob.auth.sas import (
    SASGenerator,
    SASPermissions,
    SASResource,
    SharedKeySigner,
)
from localblob.core.config_manager import ConfigManager
from localblob.core.logging_config import setup_logging
from localblob.exceptions import BlobStorageError


def _load_config(ctx: click.Context):
    manager: ConfigManager = ctx.obj["config_manager"]
    try:
        cfg = manager.load(config_file=ctx.obj["config_file"], cli_overrides=ctx.obj["overrides"])
    except (ValidationError, ValueError, FileNotFoundError) as e:
        click.echo(f"[ERROR] Invalid configuration: {e}", err=True)
        sys.exit(1)

    setup_logging(
        level=cfg.logging.level.value,
        format_type=cfg.logging.format,
        log_file=cfg.logging.file,
        rotation_size=cfg.logging.rotation_size,
        rotation_count=cfg.logging.rotation_count,
        module_levels=cfg.logging.module_levels,
    )
    return cfg


@click.group()
@click.version_option(version=__version__, prog_name="localblob")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option("--account-name", help="Override the account name")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Override the logging level",
)
@click.pass_context
def cli(ctx, config_file: Optional[Path], account_name: Optional[str], log_level: Optional[str]):
    """
    LocalBlob - In-Process Blob Storage Emulator

    Local blob storage for development and testing.
    """
    ctx.ensure_object(dict)
    overrides = {}
    if account_name:
        overrides.setdefault("account", {})["name"] = account_name
    if log_level:
        overrides.setdefault("logging", {})["level"] = log_level.upper()
    ctx.obj["config_manager"] = ConfigManager()
    ctx.obj["config_file"] = str(config_file) if config_file else None
    ctx.obj["overrides"] = overrides


@cli.command()
def version():
    """Show LocalBlob version."""
    click.echo(f"LocalBlob version {__version__}")


@cli.command()
@click.pass_context
def config(ctx):
    """
    Show the effective configuration.

    Merges the configuration file, LOCALBLOB_* environment variables and
    command-line overrides. The account key is redacted.
    """
    _load_config(ctx)
    click.echo(json.dumps(ctx.obj["config_manager"].redacted(), indent=2, default=str))


@cli.command()
@click.option("--container", help="Container the token is scoped to (omit for an account SAS)")
@click.option("--blob", help="Blob the token is scoped to (needs --container)")
@click.option("--permissions", "-p", required=True, help="Permission letters from 'rcwdl', e.g. 'rl'")
@click.option(
    "--expiry-minutes",
    type=int,
    default=60,
    show_default=True,
    help="Minutes from now until the token expires",
)
@click.option("--start-minutes", type=int, help="Minutes from now until the token becomes valid")
@click.pass_context
def sas(
    ctx,
    container: Optional[str],
    blob: Optional[str],
    permissions: str,
    expiry_minutes: int,
    start_minutes: Optional[int],
):
    """
    Generate a shared access signature.

    The token is signed with the configured account key. Stored access
    policies live on containers, so policy-bound tokens are issued through
    BlobService.generate_sas instead.

    Examples:
        localblob sas --container photos --permissions rl
        localblob sas --container photos --blob cat.jpg -p r --expiry-minutes 5
    """
    cfg = _load_config(ctx)

    if blob and not container:
        raise click.UsageError("--blob requires --container")
    if container and blob:
        resource = SASResource.for_blob(container, blob)
    elif container:
        resource = SASResource.for_container(container)
    else:
        resource = SASResource.account()

    now = datetime.now(timezone.utc)
    try:
        granted = SASPermissions.from_string(permissions)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--permissions")

    expiry = now + timedelta(minutes=expiry_minutes)
    start = now + timedelta(minutes=start_minutes) if start_minutes is not None else None

    signer = SharedKeySigner(cfg.account.name, cfg.account.key)
    generator = SASGenerator(signer, cfg.account.sas_version)
    try:
        token = generator.generate(resource, granted, expiry, start)
    except BlobStorageError as e:
        click.echo(f"[ERROR] {e.message}", err=True)
        sys.exit(1)
    click.echo(token)


def main():
    """Entry point for the localblob command."""
    cli(obj={})


if __name__ == "__main__":
    main()
