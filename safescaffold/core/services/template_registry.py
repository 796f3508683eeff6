"""
Template registry — TemplateDefinitions from a directory of YAML files.

Each ``<id>.yml`` (or ``.yaml``) holds one template:

    name: python-package
    description: Minimal Python package
    variables:
      license: MIT
    directories:
      - "{{package}}/tests"
    files:
      - path: "{{package}}/__init__.py"
        content: |
          __version__ = "{{version}}"
      - path: LICENSE
        condition: license
        content: "{{license}}"
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from safescaffold.core.errors import TemplateNotFoundError, ValidationError
from safescaffold.core.models.template import TemplateDefinition

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".yml", ".yaml")
_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class TemplateRegistry:
    """Serves templates by id from ``templates_dir``."""

    def __init__(self, templates_dir: str | Path) -> None:
        self.templates_dir = Path(templates_dir)

    def list_ids(self) -> list[str]:
        """Sorted ids of every template file in the directory."""
        if not self.templates_dir.is_dir():
            logger.debug("Templates directory %s does not exist", self.templates_dir)
            return []
        ids = {
            p.stem for p in self.templates_dir.iterdir()
            if p.is_file() and p.suffix in TEMPLATE_SUFFIXES
        }
        return sorted(ids)

    def _path_for(self, template_id: str) -> Path:
        if not _ID_RE.match(template_id):
            raise TemplateNotFoundError(f"Invalid template id: {template_id!r}", path=template_id)
        for suffix in TEMPLATE_SUFFIXES:
            candidate = self.templates_dir / f"{template_id}{suffix}"
            if candidate.is_file():
                return candidate
        raise TemplateNotFoundError(
            f"Template '{template_id}' not found in {self.templates_dir}", path=template_id,
        )

    def get(self, template_id: str) -> TemplateDefinition:
        """Load and validate a template.

        Raises:
            TemplateNotFoundError: No such template.
            ValidationError: The file is not a valid template.
        """
        path = self._path_for(template_id)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ValidationError(f"Cannot load template {path.name}: {e}", path=str(path)) from e

        if not isinstance(data, dict):
            raise ValidationError(f"Template {path.name} must be a YAML mapping", path=str(path))
        data.setdefault("name", template_id)

        try:
            template = TemplateDefinition.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid template {path.name}: {e}", path=str(path)) from e

        logger.debug("Loaded template '%s' (%d files)", template_id, len(template.files))
        return template
