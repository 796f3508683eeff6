"""
Shared CLI helpers — config access, variable parsing, run manifests.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from safescaffold.core.config.loader import ConfigError, ScaffoldConfig, load_config
from safescaffold.core.models.backup import BackupRecord
from safescaffold.core.models.result import GeneratedFile, GenerationResult
from safescaffold.core.persistence.atomic_write import atomic_write
from safescaffold.core.persistence.backup_ledger import BackupLedger
from safescaffold.core.services.backup_manager import BackupManager

MANIFEST_VERSION = 1


def get_config(ctx: click.Context) -> ScaffoldConfig:
    """Load config once per invocation; exit 1 on ConfigError."""
    cached = ctx.obj.get("config")
    if cached is not None:
        return cached
    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)
    ctx.obj["config"] = config
    return config


def backup_manager_for(config: ScaffoldConfig, default_ledger: bool = False) -> BackupManager:
    """BackupManager with the configured ledger (or the default one if asked)."""
    ledger_path = config.ledger_path()
    ledger = None
    if ledger_path is not None:
        ledger = BackupLedger(ledger_path)
    elif default_ledger:
        ledger = BackupLedger(project_root=Path.cwd())
    return BackupManager(config.backup_options(), ledger=ledger)


# ── Variables ───────────────────────────────────────────────────────


def _set_dotted(target: dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    current = target
    for part in parts[:-1]:
        nested = current.get(part)
        if not isinstance(nested, dict):
            nested = {}
            current[part] = nested
        current = nested
    current[parts[-1]] = value


def parse_vars(pairs: tuple[str, ...], vars_file: str | None = None) -> dict[str, Any]:
    """``--vars-file`` first, then ``--var key=value`` pairs on top.

    Values are YAML scalars (``true`` → bool, ``3`` → int). Dotted keys
    build nested maps.
    """
    variables: dict[str, Any] = {}
    if vars_file:
        try:
            loaded = yaml.safe_load(Path(vars_file).read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise click.BadParameter(f"Cannot read {vars_file}: {e}", param_hint="--vars-file") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise click.BadParameter("Variables file must hold a mapping", param_hint="--vars-file")
        variables.update(loaded or {})

    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--var")
        try:
            value = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            value = raw
        if isinstance(value, (dict, list)):
            value = raw
        _set_dotted(variables, key.strip(), value)
    return variables


# ── Manifests ───────────────────────────────────────────────────────


def write_manifest(path: str, output_dir: str, result: GenerationResult) -> None:
    data = {
        "version": MANIFEST_VERSION,
        "output_dir": output_dir,
        "result": result.model_dump(mode="json"),
    }
    atomic_write(Path(path), json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def read_manifest(path: str) -> tuple[str, list[GeneratedFile], list[BackupRecord]]:
    """Returns (output_dir, files, backups) from a run manifest."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        result = GenerationResult.model_validate(data["result"])
        output_dir = data["output_dir"]
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise click.BadParameter(f"Not a valid run manifest: {e}", param_hint="MANIFEST") from e
    return output_dir, result.files, result.backups
