"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from safescaffold.core.models.options import BackupOptions, GenerationOptions
from safescaffold.core.services.backup_manager import BackupManager
from safescaffold.core.services.file_generator import FileGenerationPipeline


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    """Return an empty output directory."""
    d = tmp_path / "out"
    d.mkdir()
    return d


@pytest.fixture
def fast_backup_options() -> BackupOptions:
    """Backup options with a cheap KDF, for encryption tests."""
    return BackupOptions(passphrase="correct horse", kdf_iterations=1_000)


@pytest.fixture
def backup_manager() -> BackupManager:
    return BackupManager()


@pytest.fixture
def pipeline(backup_manager: BackupManager) -> FileGenerationPipeline:
    return FileGenerationPipeline(backup_manager=backup_manager)


@pytest.fixture
def options(out_dir: Path) -> GenerationOptions:
    """Default options rooted at ``out_dir``, two workers."""
    return GenerationOptions(output_dir=str(out_dir), max_workers=2)


DEMO_TEMPLATE = """\
name: demo
description: Demo package
variables:
  package: demo
  license: MIT
directories:
  - "{{package}}/tests"
files:
  - path: "{{package}}/__init__.py"
    content: |
      __version__ = "{{version}}"
  - path: LICENSE
    condition: license
    content: "{{license}}\\n"
"""


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """A templates directory holding the ``demo`` template."""
    d = tmp_path / "templates"
    d.mkdir()
    (d / "demo.yml").write_text(DEMO_TEMPLATE)
    return d
