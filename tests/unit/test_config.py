"""
Tests for Configuration System.

This test suite covers:
1. Schema validation (type mismatch, constraint violation)
2. Settings validation and defaults
3. Manifest creation with schema comments
4. Plugin entries round-trip without losing comments
5. Project root discovery
6. Error cases
"""

import tempfile
from pathlib import Path

import pytest

from graft.config import (
    MANIFEST_FILE,
    ConfigError,
    ConfigField,
    ProjectConfig,
    ValidationError,
    find_project_root,
)
from graft.config.schema import SETTINGS_SCHEMA, SchemaError, validate_settings
from graft.config.toml_handler import TOMLError
from graft.plugin.registry import DEFAULT_REGISTRY


class TestSchemaValidation:
    """Test schema field validation."""

    def test_field_creation_basic_types(self):
        """ConfigField should accept basic types."""
        field_int = ConfigField(int, 42, "An integer")
        assert field_int.type_ is int
        assert field_int.default == 42

        field_number = ConfigField((int, float), 1.5, "A number")
        assert field_number.default == 1.5

        field_bool = ConfigField(bool, True, "A boolean")
        assert field_bool.default is True

    def test_field_default_type_mismatch(self):
        """ConfigField should reject default value that doesn't match type."""
        with pytest.raises(SchemaError, match="does not match type"):
            ConfigField(int, "not an int", "Bad default")

    def test_field_default_not_in_choices(self):
        with pytest.raises(SchemaError, match="not in choices"):
            ConfigField(str, "c", "Choice", choices=["a", "b"])

    def test_field_min_max_constraints(self):
        """Numbers are checked against min/max."""
        field = ConfigField((int, float), 60.0, "Timeout", min=1, max=3600)

        field.validate(1)
        field.validate(3600.0)

        with pytest.raises(ValidationError, match="less than minimum"):
            field.validate(0)
        with pytest.raises(ValidationError, match="greater than maximum"):
            field.validate(3601)

    def test_field_length_constraints(self):
        """Strings are checked by length."""
        field = ConfigField(str, "x", "Name", min=1)

        with pytest.raises(ValidationError, match="Length 0 is less than minimum 1"):
            field.validate("")

    def test_bool_is_not_a_number(self):
        """A bool should not pass as an int."""
        field = ConfigField(int, 1, "Count")

        with pytest.raises(ValidationError, match="Expected type int, got bool"):
            field.validate(True)


class TestSettings:
    """Test the [settings] table."""

    def test_defaults_filled_in(self):
        settings = validate_settings({"link": True})

        assert settings["link"] is True
        assert settings["registry"] == DEFAULT_REGISTRY
        assert settings["searchpath"] == []
        assert settings["fetch_timeout"] == 60.0

    def test_unknown_setting(self):
        with pytest.raises(ValidationError, match="Unknown setting: colour"):
            validate_settings({"colour": "blue"})

    def test_invalid_setting(self):
        with pytest.raises(ValidationError, match="Setting 'hook_timeout'"):
            validate_settings({"hook_timeout": 0})

    def test_every_schema_field_has_description(self):
        assert all(field.description for field in SETTINGS_SCHEMA.values())


class TestProjectConfig:
    """Test graft.toml handling."""

    def test_create_writes_commented_manifest(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            config = ProjectConfig.create(root, "hello")

            content = (root / MANIFEST_FILE).read_text()
            assert "# Project configuration for hello" in content
            assert "# Plugin registry URL" in content
            assert "# Constraints: min: 1, max: 3600" in content
            assert config.name == "hello"

            reloaded = ProjectConfig.load(root)
            assert reloaded.name == "hello"
            assert reloaded.settings["registry"] == DEFAULT_REGISTRY

    def test_create_refuses_existing_manifest(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ProjectConfig.create(Path(tmpdir), "hello")

            with pytest.raises(ConfigError, match="already exists"):
                ProjectConfig.create(Path(tmpdir), "hello")

    def test_missing_manifest_is_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = ProjectConfig.load(Path(tmpdir))

            assert config.name is None
            assert config.plugin_ids() == []
            assert config.settings["link"] is False

    def test_plugin_entries_round_trip(self):
        """Entries are saved and removed without losing comments."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            ProjectConfig.create(root, "hello")

            config = ProjectConfig.load(root)
            config.add_plugin("com.example.camera", "~2.1.0", {"API_KEY": "abc"})
            config.add_plugin("com.example.file", None).write()

            reloaded = ProjectConfig.load(root)
            assert reloaded.plugin_ids() == ["com.example.camera", "com.example.file"]
            camera = reloaded.get_plugin("com.example.camera")
            assert camera.spec == "~2.1.0"
            assert camera.variables == {"API_KEY": "abc"}
            assert reloaded.get_plugin("com.example.file").spec is None
            assert reloaded.get_plugin("missing") is None

            assert reloaded.remove_plugin("com.example.file") is True
            assert reloaded.remove_plugin("com.example.file") is False
            reloaded.write()

            content = (root / MANIFEST_FILE).read_text()
            assert "com.example.file" not in content
            assert "# Project configuration for hello" in content

    def test_add_plugin_replaces_entry(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = ProjectConfig.load(Path(tmpdir))
            config.add_plugin("camera", "~1.0.0").add_plugin("camera", "~2.0.0")

            assert config.get_plugin("camera").spec == "~2.0.0"

    def test_search_path_resolved_against_project(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / MANIFEST_FILE).write_text(
                '[settings]\nsearchpath = ["local", "/opt/plugins"]\n'
            )

            assert ProjectConfig.load(root).search_path() == [
                root / "local",
                Path("/opt/plugins"),
            ]

    def test_malformed_manifest(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / MANIFEST_FILE).write_text("[project\nname = ")

            with pytest.raises(TOMLError, match="Failed to parse TOML file"):
                ProjectConfig.load(Path(tmpdir))


class TestFindProjectRoot:
    def test_walks_up(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir).resolve()
            (root / MANIFEST_FILE).write_text("[project]\n")
            nested = root / "www" / "js"
            nested.mkdir(parents=True)

            assert find_project_root(nested) == root

    def test_not_a_project(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            # Assumes no graft.toml above the temp directory
            assert find_project_root(Path(tmpdir)) is None
