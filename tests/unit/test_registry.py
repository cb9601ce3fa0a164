"""
Tests for the registry client.

Requests are served by httpx.MockTransport; nothing touches the network.
"""

import io
import json
import tarfile

import httpx
import pytest

from graft.plugin.registry import PackageInfo, RegistryClient, RegistryError, extract_package

REGISTRY = "https://registry.test"


def make_tarball(files: dict[str, str]) -> bytes:
    """Build an npm-style tarball with everything under package/."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"package/{name}")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def package_document(name: str, versions: dict[str, dict], latest: str) -> dict:
    return {
        "name": name,
        "dist-tags": {"latest": latest},
        "versions": {
            version: {
                "name": name,
                "version": version,
                "dist": {"tarball": f"{REGISTRY}/{name}/-/{name}-{version}.tgz"},
                **manifest,
            }
            for version, manifest in versions.items()
        },
    }


def registry_transport(packages: dict[str, dict], tarballs: dict[str, bytes]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.lstrip("/") in packages:
            return httpx.Response(200, json=packages[path.lstrip("/")])
        if path in tarballs:
            return httpx.Response(200, content=tarballs[path])
        return httpx.Response(404, json={"error": "Not found"})

    return httpx.MockTransport(handler)


class TestPackageInfo:
    """Test version resolution."""

    def test_resolve_by_tag_and_range(self):
        info = PackageInfo(
            name="camera",
            versions=["1.0.0", "1.2.0", "2.0.0-beta.1"],
            dist_tags={"latest": "1.2.0", "next": "2.0.0-beta.1"},
        )

        assert info.resolve(None) == "1.2.0"
        assert info.resolve("next") == "2.0.0-beta.1"
        assert info.resolve("~1.0.0") == "1.0.0"
        assert info.resolve("^3.0.0") is None

    def test_latest_manifest(self):
        info = PackageInfo(
            name="camera",
            versions=["1.0.0"],
            manifests={"1.0.0": {"version": "1.0.0"}},
        )

        assert info.latest == {"version": "1.0.0"}


class TestRegistryClient:
    """Test registry requests."""

    @pytest.mark.asyncio
    async def test_info(self):
        document = package_document(
            "camera",
            {"1.0.0": {}, "1.2.0": {"engines": {"graftDependencies": {"0.0.0": {}}}}},
            latest="1.2.0",
        )
        transport = registry_transport({"camera": document}, {})

        async with RegistryClient(REGISTRY, transport=transport) as client:
            info = await client.info("camera")

        assert info.name == "camera"
        assert info.versions == ["1.0.0", "1.2.0"]
        assert info.latest["engines"]["graftDependencies"] == {"0.0.0": {}}

    @pytest.mark.asyncio
    async def test_unknown_package(self):
        transport = registry_transport({}, {})

        async with RegistryClient(REGISTRY, transport=transport) as client:
            with pytest.raises(RegistryError, match="not found in registry"):
                await client.info("missing")

    @pytest.mark.asyncio
    async def test_server_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))

        async with RegistryClient(REGISTRY, transport=transport) as client:
            with pytest.raises(RegistryError, match="Registry request for camera failed"):
                await client.info("camera")

    @pytest.mark.asyncio
    async def test_scoped_name_is_encoded(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.raw_path)
            return httpx.Response(404)

        async with RegistryClient(REGISTRY, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(RegistryError):
                await client.info("@acme/camera")

        assert seen == [b"/@acme%2Fcamera"]

    @pytest.mark.asyncio
    async def test_download_extracts_package(self, tmp_path):
        descriptor = json.dumps({"id": "camera", "version": "1.2.0"})
        document = package_document("camera", {"1.0.0": {}, "1.2.0": {}}, latest="1.2.0")
        tarballs = {
            "/camera/-/camera-1.2.0.tgz": make_tarball(
                {"plugin.json": descriptor, "src/camera.js": "// camera"}
            )
        }
        transport = registry_transport({"camera": document}, tarballs)

        async with RegistryClient(REGISTRY, transport=transport) as client:
            target = await client.download("camera", "^1.1.0", tmp_path / "out")

        assert json.loads((target / "plugin.json").read_text())["version"] == "1.2.0"
        assert (target / "src" / "camera.js").read_text() == "// camera"

    @pytest.mark.asyncio
    async def test_download_without_match(self, tmp_path):
        document = package_document("camera", {"1.0.0": {}}, latest="1.0.0")
        transport = registry_transport({"camera": document}, {})

        async with RegistryClient(REGISTRY, transport=transport) as client:
            with pytest.raises(RegistryError, match="No version of camera matches"):
                await client.download("camera", "^2.0.0", tmp_path / "out")


class TestExtractPackage:
    def test_invalid_archive(self, tmp_path):
        with pytest.raises(RegistryError, match="Failed to extract package"):
            extract_package(b"not a tarball", tmp_path)
