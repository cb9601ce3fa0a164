"""
Tests for plugin descriptors.

This test suite covers:
1. plugin.json parsing (valid/invalid cases)
2. Platform sections merged over common sections
3. Descriptor caching and invalidation
"""

import json
import sys
import tempfile
from pathlib import Path

import pytest

from graft.plugin.descriptor import (
    DescriptorError,
    DescriptorProvider,
    ValidationError,
    has_descriptor,
    parse_descriptor,
)


def _write(plugin_dir: Path, data) -> None:
    plugin_dir.mkdir(parents=True, exist_ok=True)
    with open(plugin_dir / "plugin.json", "w") as f:
        json.dump(data, f)


class TestDescriptorParsing:
    """Test plugin.json parsing and validation."""

    def test_parse_valid_descriptor(self):
        """Should parse a complete descriptor."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "camera"
            _write(
                plugin_dir,
                {
                    "id": "com.example.camera",
                    "version": "2.1.0",
                    "name": "Camera",
                    "description": "Take pictures",
                    "preferences": {"API_KEY": None, "QUALITY": "high"},
                    "dependencies": [
                        {"id": "com.example.file", "version": "^1.0.0"},
                        {"id": "com.example.log", "url": "../log", "subdir": "src"},
                    ],
                    "engines": [{"name": "graft", "version": ">=0.1.0"}],
                    "info": ["Set $API_KEY in your dashboard"],
                },
            )

            descriptor = parse_descriptor(plugin_dir)

            assert descriptor.id == "com.example.camera"
            assert descriptor.version == "2.1.0"
            assert descriptor.name == "Camera"
            assert descriptor.dir == plugin_dir
            assert descriptor.preferences == {"API_KEY": None, "QUALITY": "high"}
            assert [d.id for d in descriptor.dependencies] == [
                "com.example.file",
                "com.example.log",
            ]
            assert descriptor.dependencies[0].version == "^1.0.0"
            assert descriptor.dependencies[1].url == "../log"
            assert descriptor.dependencies[1].subdir == "src"
            assert descriptor.get_engines()[0].name == "graft"
            assert descriptor.get_info() == ["Set $API_KEY in your dashboard"]

    def test_parse_minimal_descriptor(self):
        """Should parse a descriptor with only id and version."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "minimal"
            _write(plugin_dir, {"id": "minimal", "version": "1.0.0"})

            descriptor = parse_descriptor(plugin_dir)

            assert descriptor.name == ""
            assert descriptor.dependencies == ()
            assert descriptor.get_preferences() == {}

    def test_parse_missing_required_field(self):
        """Should reject a descriptor without a version."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "broken"
            _write(plugin_dir, {"id": "broken"})

            with pytest.raises(ValidationError, match="Missing required field: version"):
                parse_descriptor(plugin_dir)

    def test_parse_invalid_version(self):
        """Should reject versions that are not semantic versions."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "broken"
            _write(plugin_dir, {"id": "broken", "version": "1.0"})

            with pytest.raises(ValidationError, match="Invalid version format"):
                parse_descriptor(plugin_dir)

    def test_parse_invalid_id(self):
        """Should reject ids with illegal characters."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "broken"
            _write(plugin_dir, {"id": "bad id!", "version": "1.0.0"})

            with pytest.raises(ValidationError, match="Invalid plugin id"):
                parse_descriptor(plugin_dir)

    def test_parse_dependency_without_id(self):
        """Should reject dependencies missing an id."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "broken"
            _write(
                plugin_dir,
                {"id": "broken", "version": "1.0.0", "dependencies": [{"version": "1.0.0"}]},
            )

            with pytest.raises(ValidationError, match="missing an 'id'"):
                parse_descriptor(plugin_dir)

    def test_parse_malformed_json(self):
        """Should raise DescriptorError on invalid JSON."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "broken"
            plugin_dir.mkdir()
            (plugin_dir / "plugin.json").write_text("{not json")

            with pytest.raises(DescriptorError, match="Failed to parse descriptor JSON"):
                parse_descriptor(plugin_dir)

    def test_missing_descriptor(self):
        """Should raise DescriptorError when plugin.json is absent."""
        with tempfile.TemporaryDirectory() as tmpdir:
            assert not has_descriptor(Path(tmpdir))
            with pytest.raises(DescriptorError, match="not found"):
                parse_descriptor(Path(tmpdir))


class TestPlatformSections:
    """Test platform-specific descriptor sections."""

    def test_platform_sections_merge(self):
        """Platform preferences, dependencies and info should extend the common ones."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "camera"
            _write(
                plugin_dir,
                {
                    "id": "camera",
                    "version": "1.0.0",
                    "preferences": {"QUALITY": "high"},
                    "dependencies": [{"id": "file"}],
                    "info": ["common"],
                    "platforms": {
                        "android": {
                            "preferences": {"QUALITY": "low", "SDK_KEY": None},
                            "dependencies": [{"id": "android-support"}],
                            "info": ["android"],
                        }
                    },
                },
            )

            descriptor = parse_descriptor(plugin_dir)

            assert descriptor.get_preferences("android") == {"QUALITY": "low", "SDK_KEY": None}
            assert descriptor.get_preferences("ios") == {"QUALITY": "high"}
            assert [d.id for d in descriptor.get_dependencies("android")] == [
                "file",
                "android-support",
            ]
            assert [d.id for d in descriptor.get_dependencies("ios")] == ["file"]
            assert descriptor.get_info("android") == ["common", "android"]
            assert [d.id for d in descriptor.all_dependencies()] == ["file", "android-support"]


class TestDescriptorProvider:
    """Test descriptor caching."""

    def test_get_is_cached_until_invalidated(self):
        """A cached descriptor should survive file changes until invalidated."""
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir) / "camera"
            _write(plugin_dir, {"id": "camera", "version": "1.0.0"})
            provider = DescriptorProvider()

            assert provider.get(plugin_dir).version == "1.0.0"

            _write(plugin_dir, {"id": "camera", "version": "2.0.0"})
            assert provider.get(plugin_dir).version == "1.0.0"

            provider.invalidate(plugin_dir)
            assert provider.get(plugin_dir).version == "2.0.0"

    def test_put_rebinds_directory(self):
        """put() should record a copy of a descriptor under a new directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "source"
            _write(source, {"id": "camera", "version": "1.0.0"})
            provider = DescriptorProvider()
            descriptor = provider.get(source)

            copy_dir = Path(tmpdir) / "copy"
            copy_dir.mkdir()
            provider.put(copy_dir, descriptor)

            assert provider.get(copy_dir).dir == copy_dir
            assert provider.get(copy_dir).id == "camera"
            assert provider.get(source).dir == source

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks")
    def test_put_symlink_keeps_source_entry(self):
        """A linked plugin directory is cached apart from its target."""
        with tempfile.TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "source"
            _write(source, {"id": "camera", "version": "1.0.0"})
            provider = DescriptorProvider()
            descriptor = provider.get(source)

            link = Path(tmpdir) / "plugins" / "camera"
            link.parent.mkdir()
            link.symlink_to(source, target_is_directory=True)
            provider.put(link, descriptor)

            assert provider.get(link).dir == link
            assert provider.get(source).dir == source

            provider.invalidate(link)
            assert provider.get(source).dir == source

    def test_get_all_within_search_path(self):
        """Should find plugins in a search directory and skip broken ones."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _write(root / "a", {"id": "a", "version": "1.0.0"})
            _write(root / "b", {"id": "b", "version": "2.0.0"})
            (root / "broken").mkdir()
            (root / "broken" / "plugin.json").write_text("{")
            (root / "empty").mkdir()

            found = DescriptorProvider().get_all_within_search_path(root)

            assert sorted(d.id for d in found) == ["a", "b"]
