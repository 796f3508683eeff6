"""
CLI commands for backups: create, restore, verify.

Thin wrappers over ``safescaffold.core.services.backup_manager``. Records
go to the configured ledger, or ``.scaffold/backups.ndjson`` under the
working directory, so incremental chains span invocations.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from safescaffold.core.errors import ScaffoldError
from safescaffold.ui.cli.common import backup_manager_for, get_config


def _manager(ctx: click.Context, strategy: str | None = None, compress: bool = False):
    manager = backup_manager_for(get_config(ctx), default_ledger=True)
    if strategy or compress:
        manager.options = manager.options.model_copy(update={
            "strategy": strategy or manager.options.strategy,
            "compress": compress or manager.options.compress,
        })
    return manager


@click.group()
def backup() -> None:
    """Backups — create, restore and verify file backups."""


@backup.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=True))
@click.option("--strategy", type=click.Choice(["full", "incremental", "differential"]), default=None,
              help="Backup strategy (default: config).")
@click.option("--compress", is_flag=True, help="gzip the backup payload.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def create(ctx: click.Context, path: str, strategy: str | None, compress: bool, as_json: bool) -> None:
    """Back up a file (or a whole directory) beside the original.

    Encryption is enabled when SCAFFOLD_BACKUP_KEY is set.
    """
    manager = _manager(ctx, strategy, compress)
    target = Path(path).absolute()
    try:
        if target.is_dir():
            record = manager.create_directory_backup(target)
        else:
            record = manager.create_backup(target)
    except ScaffoldError as e:
        click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(record.model_dump(mode="json"), indent=2))
        return

    click.secho(f"✅ Backup created: {Path(record.backup_path).name}", fg="green", bold=True)
    click.echo(f"   Path: {record.backup_path}")
    click.echo(f"   Strategy: {record.strategy}")
    click.echo(f"   Size: {record.original_size:,} → {record.backup_size:,} bytes")
    if record.encrypted:
        click.echo("   🔒 Encrypted")


@backup.command()
@click.argument("backup_path", type=click.Path(exists=True))
@click.option("--target", default=None, help="File to restore into (default: the original).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def restore(ctx: click.Context, backup_path: str, target: str | None, as_json: bool) -> None:
    """Restore a file from BACKUP_PATH. The backup is kept."""
    manager = _manager(ctx)
    source = Path(backup_path).absolute()
    record = manager.get_backup_metadata(source)

    try:
        if record is not None and record.backup_type == "directory":
            ok = manager.restore_directory(record)
            restored = record.target
        else:
            if target is None:
                if record is None:
                    click.secho("❌ Unknown backup; pass --target", fg="red", err=True)
                    sys.exit(1)
                target = record.target
            ok = manager.rollback_file(target, source)
            restored = str(target)
    except ScaffoldError as e:
        click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({"restored": ok, "target": restored, "backup": str(source)}, indent=2))
    elif ok:
        click.secho(f"✅ Restored {restored}", fg="green", bold=True)
    else:
        click.secho(f"❌ Could not restore {restored}", fg="red")

    if not ok:
        sys.exit(1)


@backup.command()
@click.argument("backup_path", type=click.Path(exists=True))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def verify(ctx: click.Context, backup_path: str, as_json: bool) -> None:
    """Check that a backup decodes and matches its recorded checksum."""
    manager = _manager(ctx)
    source = Path(backup_path).absolute()
    record = manager.get_backup_metadata(source)
    if record is None:
        click.secho(f"❌ No record of {source}", fg="red", err=True)
        sys.exit(1)

    ok = manager.verify_backup(record)

    if as_json:
        click.echo(json.dumps({"valid": ok, "backup": record.model_dump(mode="json")}, indent=2))
    elif ok:
        click.secho(f"✅ Backup verified: {source.name}", fg="green", bold=True)
    else:
        click.secho(f"❌ Backup failed verification: {source.name}", fg="red", bold=True)

    if not ok:
        sys.exit(1)
