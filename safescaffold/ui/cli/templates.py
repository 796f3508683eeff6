"""
CLI commands for the template catalog: list, show, validate.
"""

from __future__ import annotations

import json
import sys

import click

from safescaffold.core.errors import ScaffoldError
from safescaffold.ui.cli.common import get_config


def _registry(ctx: click.Context):
    from safescaffold.core.services.template_registry import TemplateRegistry

    return TemplateRegistry(get_config(ctx).templates_dir)


@click.group()
def templates() -> None:
    """Template catalog — list, inspect and validate templates."""


@templates.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_templates(ctx: click.Context, as_json: bool) -> None:
    """List available template ids."""
    registry = _registry(ctx)
    ids = registry.list_ids()

    if as_json:
        click.echo(json.dumps({"templates_dir": str(registry.templates_dir), "templates": ids}, indent=2))
        return

    if not ids:
        click.secho(f"No templates found in {registry.templates_dir}", fg="yellow")
        return

    click.secho(f"📦 Templates in {registry.templates_dir} ({len(ids)}):", fg="cyan", bold=True)
    for template_id in ids:
        click.echo(f"   • {template_id}")


@templates.command("show")
@click.argument("template_id")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, template_id: str, as_json: bool) -> None:
    """Show a template's files, directories and default variables."""
    try:
        template = _registry(ctx).get(template_id)
    except ScaffoldError as e:
        click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(template.model_dump(mode="json"), indent=2))
        return

    click.secho(f"\n📋 {template.name} v{template.version}", fg="cyan", bold=True)
    if template.description:
        click.echo(f"   {template.description}")
    if template.directories:
        click.secho("   Directories:", bold=True)
        for d in template.directories:
            click.echo(f"     • {d}/")
    click.secho(f"   Files: {len(template.files)}", bold=True)
    for f in template.files:
        extra = f"  (if {f.condition})" if f.condition else ""
        click.echo(f"     • {f.path}{extra}")
    if template.variables:
        click.secho("   Variables:", bold=True)
        for key, value in template.variables.items():
            click.echo(f"     {key} = {value!r}")
    click.echo()


@templates.command("validate")
@click.argument("template_id")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def validate(ctx: click.Context, template_id: str, as_json: bool) -> None:
    """Check every path and content pattern of a template for syntax errors."""
    from safescaffold.core.services.template_renderer import TemplateRenderer

    try:
        template = _registry(ctx).get(template_id)
    except ScaffoldError as e:
        click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    renderer = TemplateRenderer(use_cache=False)
    errors: list[str] = []
    warnings: list[str] = []
    variables: dict[str, None] = {}

    patterns = [(d, d) for d in template.directories]
    for f in template.files:
        patterns.append((f.path, f.path))
        patterns.append((f"{f.path} (content)", f.content))
        if f.condition:
            try:
                renderer.evaluate_condition(f.condition, {})
            except ScaffoldError as e:
                errors.append(f"{f.path} (condition): {e.message}")

    for label, pattern in patterns:
        report = renderer.validate(pattern)
        errors.extend(f"{label}: {msg}" for msg in report.errors)
        warnings.extend(f"{label}: {msg}" for msg in report.warnings)
        for name in report.variables:
            variables.setdefault(name, None)

    missing = [name for name in variables if name.split(".", 1)[0] not in template.variables]
    valid = not errors

    if as_json:
        click.echo(json.dumps({
            "template": template_id,
            "valid": valid,
            "errors": errors,
            "warnings": warnings,
            "variables": list(variables),
            "required": missing,
        }, indent=2))
        sys.exit(0 if valid else 1)

    if valid:
        click.secho(f"✅ Template '{template_id}' is valid", fg="green", bold=True)
    else:
        click.secho(f"❌ Template '{template_id}' has errors:", fg="red", bold=True)
        for err in errors:
            click.echo(f"   • {err}")
    if warnings:
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in warnings:
            click.echo(f"   • {warn}")
    if missing:
        click.echo(f"   Variables without defaults: {', '.join(missing)}")

    if not valid:
        sys.exit(1)
