"""
Tests for version helpers and plugin spec parsing.

This test suite covers:
1. Coercion of partial versions
2. Range checks on untrusted input
3. Dependency version requirements
4. Plugin spec parsing
"""

import pytest

from graft.plugin import spec_parser, versions


class TestCoerce:
    """Test partial version coercion."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("18", "18.0.0"),
            ("3.1", "3.1.0"),
            ("1.2.3", "1.2.3"),
            ("v20", "20.0.0"),
            ("", ""),
            (None, None),
        ],
    )
    def test_coerce(self, raw, expected):
        assert versions.coerce(raw) == expected

    def test_release(self):
        """Prerelease and build parts are dropped."""
        assert versions.release("1.2.3-dev") == "1.2.3"
        assert versions.release("2.0.0-rc.1+build.5") == "2.0.0"
        assert versions.release("4.5.6") == "4.5.6"
        assert versions.release("garbage") == "garbage"


class TestSatisfies:
    """Test range checks."""

    @pytest.mark.parametrize(
        "version,range_text,expected",
        [
            ("1.4.2", "^1.2.0", True),
            ("2.0.0", "^1.2.0", False),
            ("1.9.0", "1.x", True),
            ("5.1.0", ">=5.0.0", True),
            ("1.9.9", "<2.0.0", True),
            ("v1.2.3", "~1.2.0", True),
        ],
    )
    def test_npm_ranges(self, version, range_text, expected):
        assert versions.satisfies(version, range_text) is expected

    def test_prerelease_excluded_from_upper_bound(self):
        assert not versions.satisfies("2.0.0-beta", "<2.0.0")

    def test_invalid_input_is_unsatisfied(self):
        """Text that is not a version or range should simply not satisfy."""
        assert not versions.satisfies("bogus", "^1.0.0")
        assert not versions.satisfies("1.0.0", "not a range !!")
        assert not versions.satisfies(None, "*")


class TestDependencyRange:
    """Test how declared dependency versions are read."""

    @pytest.mark.parametrize(
        "required,expected",
        [
            ("1.2", "^1.2"),
            ("1", "^1"),
            ("1.2.3", "^1.2.3"),
            ("0.1", "^0.1"),
            ("0.0.0", "0.0.0"),
            ("~1.2", "~1.2"),
            (">=1.0.0", ">=1.0.0"),
            ("1.2.3.4", "1.2.3.4"),
            (None, None),
        ],
    )
    def test_dependency_range(self, required, expected):
        assert versions.dependency_range(required) == expected

    def test_two_part_version_is_a_caret_range(self):
        """"1.2" accepts any later 1.x release."""
        assert versions.satisfies("1.3.0", versions.dependency_range("1.2"))
        assert not versions.satisfies("2.0.0", versions.dependency_range("1.2"))


class TestSpecParser:
    """Test plugin target parsing."""

    def test_id_only(self):
        """A bare id should have no version."""
        spec = spec_parser.parse("com.example.camera")

        assert spec.id == "com.example.camera"
        assert spec.package == "com.example.camera"
        assert spec.version is None
        assert spec.scope is None

    def test_id_with_version(self):
        """id@range should split on the last part."""
        spec = spec_parser.parse("com.example.camera@^2.1.0")

        assert spec.id == "com.example.camera"
        assert spec.version == "^2.1.0"

    def test_scoped_package(self):
        """Scoped packages should keep the scope in package."""
        spec = spec_parser.parse("@acme/camera@1.0.0")

        assert spec.scope == "@acme/"
        assert spec.id == "camera"
        assert spec.package == "@acme/camera"
        assert spec.version == "1.0.0"

    def test_path_is_not_an_id(self):
        """Paths and URLs should not parse as ids."""
        for raw in ("./plugins/camera", "https://example.com/camera.git", "/abs/dir"):
            spec = spec_parser.parse(raw)
            assert spec.id is None
            assert spec.package is None
            assert spec.raw == raw
