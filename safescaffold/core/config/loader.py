"""
Configuration loader — reads scaffold.yml into a ScaffoldConfig.

The file is optional. Without one, defaults apply. Environment
variables override whatever the file says:

    SCAFFOLD_OUTPUT_DIR         output_dir
    SCAFFOLD_TEMPLATES_DIR      templates_dir
    SCAFFOLD_CONFLICT_STRATEGY  conflict_strategy
    SCAFFOLD_CREATE_BACKUPS     create_backups (1/0, true/false, yes/no)
    SCAFFOLD_MAX_WORKERS        max_workers
    SCAFFOLD_BACKUP_KEY         backup.passphrase (environment only)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from safescaffold.core.models.options import (
    BackupOptions,
    BackupStrategy,
    ConflictStrategy,
    GenerationOptions,
    check_passphrase,
)

logger = logging.getLogger(__name__)

CONFIG_FILE = "scaffold.yml"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised when scaffold configuration is invalid or unreadable."""


class BackupSettings(BaseModel):
    strategy: BackupStrategy = "full"
    compress: bool = False
    kdf_iterations: int = Field(default=480_000, ge=1)
    ledger: str | None = None          # NDJSON ledger path, relative to the config file


class ScaffoldConfig(BaseModel):
    """Validated contents of scaffold.yml (plus environment overrides)."""

    output_dir: str = "."
    templates_dir: str = "templates"
    conflict_strategy: ConflictStrategy = "auto"
    create_backups: bool = True
    max_workers: int | None = Field(default=None, ge=1)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    variables: dict[str, Any] = Field(default_factory=dict)

    # Not from the file
    backup_passphrase: str | None = Field(default=None, exclude=True, repr=False)
    source: str | None = Field(default=None, exclude=True)

    def backup_options(self) -> BackupOptions:
        return BackupOptions(
            strategy=self.backup.strategy,
            compress=self.backup.compress,
            passphrase=self.backup_passphrase,
            kdf_iterations=self.backup.kdf_iterations,
        )

    def generation_options(self, **overrides: Any) -> GenerationOptions:
        """GenerationOptions seeded from config; ``overrides`` win when not None."""
        values: dict[str, Any] = {
            "output_dir": self.output_dir,
            "conflict_strategy": self.conflict_strategy,
            "create_backups": self.create_backups,
            "max_workers": self.max_workers,
            "backup": self.backup_options(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return GenerationOptions(**values)

    def ledger_path(self) -> Path | None:
        if not self.backup.ledger:
            return None
        ledger = Path(self.backup.ledger)
        if not ledger.is_absolute() and self.source:
            ledger = Path(self.source).parent / ledger
        return ledger


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for scaffold.yml from ``start_dir`` (default: cwd) upward."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    env = os.environ
    if env.get("SCAFFOLD_OUTPUT_DIR"):
        overrides["output_dir"] = env["SCAFFOLD_OUTPUT_DIR"]
    if env.get("SCAFFOLD_TEMPLATES_DIR"):
        overrides["templates_dir"] = env["SCAFFOLD_TEMPLATES_DIR"]
    if env.get("SCAFFOLD_CONFLICT_STRATEGY"):
        overrides["conflict_strategy"] = env["SCAFFOLD_CONFLICT_STRATEGY"]
    if env.get("SCAFFOLD_CREATE_BACKUPS"):
        overrides["create_backups"] = _parse_bool(
            "SCAFFOLD_CREATE_BACKUPS", env["SCAFFOLD_CREATE_BACKUPS"],
        )
    if env.get("SCAFFOLD_MAX_WORKERS"):
        try:
            overrides["max_workers"] = int(env["SCAFFOLD_MAX_WORKERS"])
        except ValueError as e:
            raise ConfigError(
                f"SCAFFOLD_MAX_WORKERS must be an integer, got {env['SCAFFOLD_MAX_WORKERS']!r}"
            ) from e
    return overrides


def load_config(path: Path | None = None) -> ScaffoldConfig:
    """Load scaffold configuration.

    Args:
        path: Explicit config file. When None, searches upward from the
              working directory and falls back to defaults if none exists.

    Raises:
        ConfigError: Explicit file missing, unreadable, or invalid.
    """
    data: dict[str, Any] = {}
    source: Path | None = path

    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    if source is None:
        source = find_config_file()

    if source is not None:
        logger.debug("Loading scaffold config from %s", source)
        try:
            raw = source.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {source}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {source}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {source}, got {type(loaded).__name__}")
        data = loaded
    else:
        logger.debug("No %s found; using defaults", CONFIG_FILE)

    data.pop("backup_passphrase", None)
    data.update(_env_overrides())

    try:
        config = ScaffoldConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid scaffold configuration: {e}") from e

    updates: dict[str, Any] = {"source": str(source) if source else None}
    key = os.environ.get("SCAFFOLD_BACKUP_KEY")
    if key:
        try:
            updates["backup_passphrase"] = check_passphrase(key)
        except ValueError as e:
            raise ConfigError(f"SCAFFOLD_BACKUP_KEY: {e}") from e
    return config.model_copy(update=updates)
