"""
Tests for the pydantic models — templates, options, results, errors.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from safescaffold.core.errors import (
    BackupIntegrityError,
    ConflictError,
    PathValidationError,
    ScaffoldError,
    TemplateSyntaxError,
    ValidationError,
)
from safescaffold.core.models import (
    BackupOptions,
    BackupRecord,
    GenerationOptions,
    GenerationResult,
    TemplateDefinition,
    TemplateFileDefinition,
)


class TestTemplateFileDefinition:
    """Tests for TemplateFileDefinition."""

    def test_defaults(self):
        f = TemplateFileDefinition(path="a.txt")
        assert f.content == ""
        assert f.condition is None
        assert f.overwrite is False
        assert f.mode is None

    def test_octal_permissions(self):
        assert TemplateFileDefinition(path="x", permissions="755").mode == 0o755
        assert TemplateFileDefinition(path="x", permissions="0644").mode == 0o644

    @pytest.mark.parametrize("bad", ["rwx", "8", "99999"])
    def test_bad_permissions(self, bad: str):
        with pytest.raises(PydanticValidationError):
            TemplateFileDefinition(path="x", permissions=bad)

    def test_frozen(self):
        f = TemplateFileDefinition(path="a.txt")
        with pytest.raises(PydanticValidationError):
            f.path = "b.txt"


class TestTemplateDefinition:
    """Tests for TemplateDefinition."""

    def test_from_dict(self):
        t = TemplateDefinition.model_validate({
            "name": "t",
            "files": [{"path": "a"}, {"path": "b", "overwrite": True}],
        })
        assert t.version == "1.0"
        assert t.files[1].overwrite is True


class TestOptions:
    """Tests for GenerationOptions / BackupOptions."""

    def test_defaults(self):
        opts = GenerationOptions(output_dir="out")
        assert opts.conflict_strategy == "auto"
        assert opts.create_backups is True
        assert opts.validate_paths is True
        assert opts.dry_run is False
        assert opts.workers >= 1

    def test_explicit_workers(self):
        assert GenerationOptions(output_dir="out", max_workers=3).workers == 3

    def test_invalid_strategy(self):
        with pytest.raises(PydanticValidationError):
            GenerationOptions(output_dir="out", conflict_strategy="yolo")

    def test_zero_workers_rejected(self):
        with pytest.raises(PydanticValidationError):
            GenerationOptions(output_dir="out", max_workers=0)

    def test_encrypt_follows_passphrase(self):
        assert BackupOptions().encrypt is False
        opts = BackupOptions(passphrase="hunter22")
        assert opts.encrypt is True
        assert "hunter22" not in repr(opts)

    def test_short_passphrase_rejected(self):
        with pytest.raises(PydanticValidationError, match="at least 4") as exc:
            BackupOptions(passphrase="abc")
        assert "abc" not in str(exc.value)
        assert BackupOptions(passphrase="").encrypt is False


class TestResults:
    """Tests for result and backup models."""

    def test_generation_result_json(self):
        data = GenerationResult().model_dump(mode="json")
        assert data["success"] is True
        assert data["summary"]["total_files"] == 0

    def test_backup_record_delta(self):
        full = BackupRecord(id="a", target="t", backup_path="b")
        assert full.is_delta is False
        assert full.status == "pending"
        inc = full.model_copy(update={"strategy": "incremental"})
        assert inc.is_delta is True


class TestErrors:
    """Tests for the error taxonomy."""

    def test_hierarchy(self):
        assert issubclass(PathValidationError, ValidationError)
        assert issubclass(ConflictError, ScaffoldError)
        assert issubclass(BackupIntegrityError, ScaffoldError)

    def test_to_dict(self):
        e = ConflictError("needs a decision", path="a.txt", severity="medium")
        assert e.to_dict() == {
            "error_type": "conflict",
            "message": "needs a decision",
            "path": "a.txt",
            "severity": "medium",
        }
        assert str(e) == "needs a decision"

    def test_syntax_error_position(self):
        e = TemplateSyntaxError("bad", position=7)
        assert e.position == 7
        assert e.to_dict()["position"] == 7
        assert e.error_type == "syntax"
