"""
CLI commands for generation: generate, preview, rollback, mkdirs.

Thin wrappers over ``safescaffold.core.services.file_generator``.
"""

from __future__ import annotations

import json
import sys
from typing import Any

import click

from safescaffold.core.errors import ScaffoldError
from safescaffold.core.models.conflict import Conflict
from safescaffold.core.models.options import BackupOptions
from safescaffold.core.models.result import GenerationResult
from safescaffold.ui.cli.common import (
    backup_manager_for,
    get_config,
    parse_vars,
    read_manifest,
    write_manifest,
)

_STRATEGIES = ["ask", "overwrite", "skip", "backup", "merge", "auto", "intelligent"]

_ACTION_ICON = {
    "created": ("+", "green"),
    "overwritten": ("~", "yellow"),
    "backed_up": ("~", "yellow"),
    "merged": ("±", "yellow"),
    "create": ("+", "green"),
    "overwrite": ("~", "yellow"),
    "backup_rename": ("~", "yellow"),
    "merge": ("±", "yellow"),
    "skip": ("-", "white"),
    "ask": ("?", "cyan"),
}


def _generation_options(
    ctx: click.Context,
    output_dir: str | None,
    strategy: str | None,
    overwrite: bool,
    force: bool,
    dry_run: bool,
    no_backups: bool,
    workers: int | None,
    backup_strategy: str | None = None,
    compress: bool = False,
):
    config = get_config(ctx)
    backup: BackupOptions = config.backup_options()
    if backup_strategy or compress:
        backup = backup.model_copy(update={
            "strategy": backup_strategy or backup.strategy,
            "compress": compress or backup.compress,
        })
    return config.generation_options(
        output_dir=output_dir,
        conflict_strategy=strategy,
        overwrite=overwrite,
        force=force,
        dry_run=dry_run,
        create_backups=False if no_backups else None,
        max_workers=workers,
        backup=backup,
    )


def _pipeline(ctx: click.Context):
    from safescaffold.core.services.file_generator import FileGenerationPipeline

    return FileGenerationPipeline(backup_manager=backup_manager_for(get_config(ctx)))


def _prompt_decision(conflict: Conflict, description: str) -> str:
    click.echo()
    click.secho(description, fg="yellow")
    return click.prompt(
        "   Resolve",
        type=click.Choice(["overwrite", "backup", "merge", "skip"]),
        default="backup",
    )


def _print_result(result: GenerationResult) -> None:
    label = "Dry run" if result.dry_run else "Generated"
    for f in result.files:
        icon, color = _ACTION_ICON.get(f.action, ("•", "white"))
        click.secho(f"   {icon} {f.relative_path}", fg=color, nl=False)
        click.echo(f"  ({f.action})" if f.action != "created" else "")
    for d in result.directories:
        if d.created:
            click.secho(f"   + {d.path}/", fg="green")

    s = result.summary
    click.echo()
    click.secho(
        f"{label}: {s.created_files} created, {s.updated_files} updated, "
        f"{s.skipped_files} skipped, {s.failed_files} failed",
        fg="green" if result.success else "red",
        bold=True,
    )
    if result.warnings:
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")
    if result.errors:
        click.secho("❌ Errors:", fg="red")
        for err in result.errors:
            click.echo(f"   • {err.path}: {err.message} [{err.error_type}]")


_shared_generation_options = [
    click.option("--output", "-o", "output_dir", default=None, help="Output directory (default: config)."),
    click.option("--var", "var_pairs", multiple=True, help="Variable as key=value (repeatable)."),
    click.option("--vars-file", type=click.Path(exists=True, dir_okay=False), default=None,
                 help="YAML/JSON file of variables."),
    click.option("--strategy", type=click.Choice(_STRATEGIES), default=None,
                 help="Conflict strategy (default: config, else auto)."),
    click.option("--overwrite", is_flag=True, help="Allow replacing existing files (backed up)."),
    click.option("--force", is_flag=True, help="Overwrite every conflict."),
    click.option("--no-backups", is_flag=True, help="Do not back up files before modifying them."),
    click.option("--workers", type=click.IntRange(min=1), default=None, help="Worker threads."),
    click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
]


def _with_generation_options(fn):
    for option in reversed(_shared_generation_options):
        fn = option(fn)
    return fn


@click.command()
@click.argument("template_id")
@_with_generation_options
@click.option("--dry-run", is_flag=True, help="Plan everything, write nothing.")
@click.option("--backup-strategy", type=click.Choice(["full", "incremental", "differential"]),
              default=None, help="How backups are stored.")
@click.option("--compress", is_flag=True, help="gzip backup payloads.")
@click.option("--manifest", default=None, help="Write a run manifest (for rollback) to this path.")
@click.pass_context
def generate(
    ctx: click.Context,
    template_id: str,
    output_dir: str | None,
    var_pairs: tuple[str, ...],
    vars_file: str | None,
    strategy: str | None,
    overwrite: bool,
    force: bool,
    no_backups: bool,
    workers: int | None,
    as_json: bool,
    dry_run: bool,
    backup_strategy: str | None,
    compress: bool,
    manifest: str | None,
) -> None:
    """Generate files from a template.

    Examples:

        safescaffold generate python-package -o ./mypkg --var package=mypkg

        safescaffold generate web --strategy intelligent --manifest run.json
    """
    from safescaffold.core.services.template_registry import TemplateRegistry

    config = get_config(ctx)
    options = _generation_options(
        ctx, output_dir, strategy, overwrite, force, dry_run, no_backups, workers,
        backup_strategy, compress,
    )
    variables: dict[str, Any] = {**config.variables, **parse_vars(var_pairs, vars_file)}
    decide = _prompt_decision if options.conflict_strategy == "ask" and not as_json else None

    try:
        template = TemplateRegistry(config.templates_dir).get(template_id)
        result = _pipeline(ctx).generate_template(template, variables, options, decide=decide)
    except ScaffoldError as e:
        if as_json:
            click.echo(json.dumps({"success": False, "error": e.to_dict()}, indent=2))
        else:
            click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    if manifest and not options.dry_run:
        write_manifest(manifest, options.output_dir, result)

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        _print_result(result)
        if manifest and not options.dry_run:
            click.secho(f"   📄 Manifest: {manifest}", fg="cyan")

    if not result.success:
        sys.exit(1)


@click.command()
@click.argument("template_id")
@_with_generation_options
@click.pass_context
def preview(
    ctx: click.Context,
    template_id: str,
    output_dir: str | None,
    var_pairs: tuple[str, ...],
    vars_file: str | None,
    strategy: str | None,
    overwrite: bool,
    force: bool,
    no_backups: bool,
    workers: int | None,
    as_json: bool,
) -> None:
    """Show what generating a template would do. Writes nothing."""
    from safescaffold.core.services.template_registry import TemplateRegistry

    config = get_config(ctx)
    options = _generation_options(
        ctx, output_dir, strategy, overwrite, force, True, no_backups, workers,
    )
    try:
        template = TemplateRegistry(config.templates_dir).get(template_id)
        variables = {**template.variables, **config.variables, **parse_vars(var_pairs, vars_file)}
        result = _pipeline(ctx).preview_generation(template.files, variables, options)
    except ScaffoldError as e:
        click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    click.secho(f"\n🔍 Preview: {template.name} → {options.output_dir}", fg="cyan", bold=True)
    for f in result.files:
        icon, color = _ACTION_ICON.get(f.action, ("•", "white"))
        click.secho(f"   {icon} {f.relative_path}", fg=color, nl=False)
        click.echo(f"  ({f.action})" if f.action != "create" else "")
    if result.conflicts:
        click.echo()
        click.secho(f"   Conflicts: {len(result.conflicts)}", fg="yellow")
        for c in result.conflicts:
            click.echo(f"     • {c.path} [{c.severity}]")
    for warn in result.warnings:
        click.secho(f"   ⚠️  {warn}", fg="yellow")
    for err in result.errors:
        click.secho(f"   ❌ {err.path}: {err.message}", fg="red")
    click.echo()


@click.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Report what would be undone.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def rollback(ctx: click.Context, manifest: str, dry_run: bool, as_json: bool) -> None:
    """Undo a generation run recorded in MANIFEST.

    Overwritten files are restored from their backups; created files are
    removed. Backups are kept.
    """
    output_dir, files, backups = read_manifest(manifest)
    config = get_config(ctx)
    options = config.generation_options(output_dir=output_dir, dry_run=dry_run)

    pipeline = _pipeline(ctx)
    pipeline.backup_manager.adopt(backups)
    result = pipeline.rollback_generation(files, options)

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        verb = "Would roll back" if dry_run else "Rolled back"
        color = "green" if result.success else "red"
        click.secho(f"{verb} {len(result.rolled_back)} file(s)", fg=color, bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if not result.success:
        sys.exit(1)


@click.command()
@click.argument("paths", nargs=-1, required=True)
@click.option("--output", "-o", "output_dir", default=None, help="Output directory (default: config).")
@click.option("--var", "var_pairs", multiple=True, help="Variable as key=value (repeatable).")
@click.option("--dry-run", is_flag=True, help="Validate only.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def mkdirs(
    ctx: click.Context,
    paths: tuple[str, ...],
    output_dir: str | None,
    var_pairs: tuple[str, ...],
    dry_run: bool,
    as_json: bool,
) -> None:
    """Create directories under the output directory."""
    config = get_config(ctx)
    options = config.generation_options(output_dir=output_dir, dry_run=dry_run)
    try:
        results = _pipeline(ctx).generate_directories(list(paths), options, parse_vars(var_pairs))
    except ScaffoldError as e:
        click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
        return

    for r in results:
        if r.existing:
            click.echo(f"   = {r.path}/ (exists)")
        else:
            click.secho(f"   + {r.path}/", fg="green")
