"""
safescaffold — CLI entrypoint.

Usage:
    safescaffold --help
    safescaffold templates list
    safescaffold generate python-package -o ./mypkg --var package=mypkg
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from safescaffold import __version__
from safescaffold.core.observability.logging_config import resolve_level, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="safescaffold")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to scaffold.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """safescaffold — generate project files without losing existing work."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        flag_level = "DEBUG"
    elif verbose:
        flag_level = "INFO"
    elif quiet:
        flag_level = "ERROR"
    else:
        flag_level = None

    setup_logging(level=resolve_level(flag_level), quiet_third_party=not debug)


@cli.group()
def config() -> None:
    """Scaffold configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate scaffold.yml and show the effective configuration."""
    from safescaffold.core.config.loader import ConfigError, load_config

    try:
        cfg = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        if as_json:
            click.echo(json.dumps({"valid": False, "error": str(e)}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red", bold=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({"valid": True, "source": cfg.source, "config": cfg.model_dump(mode="json")}, indent=2))
        return

    click.secho("✅ Configuration is valid", fg="green", bold=True)
    click.echo(f"   Source: {cfg.source or '(defaults)'}")
    click.echo(f"   Output dir: {cfg.output_dir}")
    click.echo(f"   Templates dir: {cfg.templates_dir}")
    click.echo(f"   Conflict strategy: {cfg.conflict_strategy}")
    click.echo(f"   Backups: {'on' if cfg.create_backups else 'off'} ({cfg.backup.strategy})")
    if cfg.backup_passphrase:
        click.echo("   🔒 Backup encryption key set")
    click.echo()


# ── Sub-groups and commands ─────────────────────────────────────

from safescaffold.ui.cli.backup import backup  # noqa: E402
from safescaffold.ui.cli.generate import generate, mkdirs, preview, rollback  # noqa: E402
from safescaffold.ui.cli.templates import templates  # noqa: E402

cli.add_command(generate)
cli.add_command(preview)
cli.add_command(rollback)
cli.add_command(mkdirs)
cli.add_command(templates)
cli.add_command(backup)


if __name__ == "__main__":
    cli()
