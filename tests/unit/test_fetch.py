"""
Tests for plugin fetching.

This test suite covers:
1. Local directory fetches (copy, link, idempotence)
2. Identity checks
3. Search path lookup and --noregistry
4. Git and registry sources (git and HTTP mocked)
5. Fetch metadata
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from graft.core.errors import FetchError, InvalidPluginError, PluginIdentityMismatchError
from graft.plugin.descriptor import parse_descriptor
from graft.plugin.fetch import FetchOptions, FetchProvider, split_url_hash
from graft.plugin.registry import RegistryClient
from tests.unit.test_registry import REGISTRY, make_tarball, package_document, registry_transport


@pytest.fixture
def provider(project, events):
    return FetchProvider(project, events=events)


class TestSplitUrlHash:
    def test_ref_and_subdir(self):
        assert split_url_hash("https://example.com/camera.git#v1.0:src/plugin") == (
            "https://example.com/camera.git",
            "v1.0",
            "src/plugin",
        )

    def test_ref_only(self):
        assert split_url_hash("git@example.com:camera.git#main") == (
            "git@example.com:camera.git",
            "main",
            None,
        )

    def test_local_path_unchanged(self):
        assert split_url_hash("./plugins/camera#x") == ("./plugins/camera#x", None, None)


class TestLocalFetch:
    """Test fetching from local directories."""

    @pytest.mark.asyncio
    async def test_copy_into_plugins(self, tmp_path, project, provider, make_plugin):
        source = make_plugin(tmp_path / "src", "camera", "1.2.0")
        (source / "www").mkdir()
        (source / "www" / "camera.js").write_text("// camera")

        dest = await provider.fetch(str(source))

        assert dest == project / "plugins" / "camera"
        assert not dest.is_symlink()
        assert (dest / "www" / "camera.js").read_text() == "// camera"

        record = provider.metadata.get("camera")
        assert record.source.type == "local"
        assert record.source.path == "../src/camera"
        assert record.is_top_level

    @pytest.mark.asyncio
    async def test_copied_descriptor_matches_source(self, tmp_path, provider, make_plugin):
        """Reading the copied plugin.json gives the same id, version and dependencies."""
        source = make_plugin(
            tmp_path / "src",
            "camera",
            "1.2.0",
            dependencies=[{"id": "file", "version": "^2.0.0"}, {"id": "geo", "url": "../geo"}],
        )

        dest = await provider.fetch(str(source))

        original, copied = parse_descriptor(source), parse_descriptor(dest)
        assert (copied.id, copied.version) == (original.id, original.version) == ("camera", "1.2.0")
        assert copied.dependencies == original.dependencies
        assert [d.id for d in copied.dependencies] == ["file", "geo"]

    @pytest.mark.asyncio
    async def test_link(self, tmp_path, provider, make_plugin):
        source = make_plugin(tmp_path / "src", "camera")

        dest = await provider.fetch(str(source), FetchOptions(link=True))

        assert dest.is_symlink()
        assert dest.resolve() == source.resolve()

    @pytest.mark.asyncio
    async def test_fetch_twice_is_idempotent(self, tmp_path, provider, make_plugin):
        source = make_plugin(tmp_path / "src", "camera")
        first = await provider.fetch(str(source))
        (first / "marker").write_text("kept")

        second = await provider.fetch(str(source))

        assert second == first
        assert (second / "marker").read_text() == "kept"

    @pytest.mark.asyncio
    async def test_subdir(self, tmp_path, provider, make_plugin):
        make_plugin(tmp_path / "repo" / "packages", "camera")

        dest = await provider.fetch(
            str(tmp_path / "repo"), FetchOptions(subdir="packages/camera")
        )

        assert dest.name == "camera"

    @pytest.mark.asyncio
    async def test_directory_without_descriptor(self, tmp_path, provider):
        (tmp_path / "empty").mkdir()

        with pytest.raises(InvalidPluginError, match="needs a valid plugin.json"):
            await provider.fetch(str(tmp_path / "empty"))


class TestIdentityChecks:
    """Test expected id and version checks."""

    @pytest.mark.asyncio
    async def test_id_mismatch(self, tmp_path, provider, make_plugin):
        source = make_plugin(tmp_path / "src", "camera")

        with pytest.raises(PluginIdentityMismatchError, match='Expected plugin to have ID "file"'):
            await provider.fetch(str(source), FetchOptions(expected_id="file"))

    @pytest.mark.asyncio
    async def test_version_mismatch(self, tmp_path, provider, make_plugin):
        source = make_plugin(tmp_path / "src", "camera", "1.0.0")

        with pytest.raises(PluginIdentityMismatchError, match='satisfy version "\\^2.0.0"'):
            await provider.fetch(str(source), FetchOptions(expected_id="camera@^2.0.0"))

    @pytest.mark.asyncio
    async def test_matching_identity(self, tmp_path, provider, make_plugin):
        source = make_plugin(tmp_path / "src", "camera", "2.1.0")

        dest = await provider.fetch(str(source), FetchOptions(expected_id="camera@^2.0.0"))

        assert dest.name == "camera"


class TestSearchPath:
    """Test lookup by id."""

    @pytest.mark.asyncio
    async def test_highest_matching_version(self, tmp_path, provider, make_plugin):
        make_plugin(tmp_path / "one", "camera", "1.4.0")
        make_plugin(tmp_path / "two", "camera", "2.0.0")
        search = [tmp_path / "one", tmp_path / "two"]

        dest = await provider.fetch("camera@^1.0.0", FetchOptions(search_path=search))

        assert json.loads((dest / "plugin.json").read_text())["version"] == "1.4.0"

    @pytest.mark.asyncio
    async def test_search_path_source_recorded(self, tmp_path, provider, make_plugin):
        found = make_plugin(tmp_path / "one", "camera", "1.4.0")

        await provider.fetch("camera", FetchOptions(search_path=[tmp_path / "one"]))

        record = provider.metadata.get("camera")
        assert record.source.type == "local"
        assert Path(record.source.path) == found

    @pytest.mark.asyncio
    async def test_noregistry(self, provider):
        with pytest.raises(FetchError, match="disabled by --noregistry"):
            await provider.fetch("camera", FetchOptions(noregistry=True))


class TestGitFetch:
    """Test git sources with the clone mocked."""

    @pytest.mark.asyncio
    async def test_clone_with_ref_and_subdir(self, project, provider, make_plugin):
        calls = []

        def fake_clone(url, target_dir, ref=None):
            calls.append((url, ref))
            make_plugin(target_dir / "src", "camera", "3.0.0")

        with patch("graft.plugin.git_ops.clone_plugin", side_effect=fake_clone):
            dest = await provider.fetch("https://example.com/camera.git#v3:src/camera")

        assert calls == [("https://example.com/camera.git", "v3")]
        assert dest == project / "plugins" / "camera"
        assert (dest / "plugin.json").exists()

        record = provider.metadata.get("camera")
        assert record.source.type == "git"
        assert record.source.url == "https://example.com/camera.git"
        assert record.source.ref == "v3"
        assert record.source.subdir == "src/camera"

    @pytest.mark.asyncio
    async def test_clone_failure(self, provider):
        from graft.plugin.git_ops import GitError

        with patch("graft.plugin.git_ops.clone_plugin", side_effect=GitError("git clone failed")):
            with pytest.raises(FetchError, match="via git"):
                await provider.fetch("https://example.com/camera.git")


class TestRegistryFetch:
    """Test registry sources over a mocked transport."""

    @pytest.mark.asyncio
    async def test_download_into_plugins(self, project, events):
        document = package_document("camera", {"1.0.0": {}}, latest="1.0.0")
        tarballs = {
            "/camera/-/camera-1.0.0.tgz": make_tarball(
                {"plugin.json": json.dumps({"id": "camera", "version": "1.0.0"})}
            )
        }
        registry = RegistryClient(
            REGISTRY, transport=registry_transport({"camera": document}, tarballs)
        )
        provider = FetchProvider(project, registry=registry, events=events)

        try:
            dest = await provider.fetch("camera@1.0.0")
        finally:
            await provider.close()

        assert dest == project / "plugins" / "camera"
        assert provider.metadata.get("camera").source.id == "camera@1.0.0"

    @pytest.mark.asyncio
    async def test_download_failure(self, project, events):
        registry = RegistryClient(REGISTRY, transport=registry_transport({}, {}))
        provider = FetchProvider(project, registry=registry, events=events)

        try:
            with pytest.raises(FetchError, match="via registry"):
                await provider.fetch("camera")
        finally:
            await provider.close()
