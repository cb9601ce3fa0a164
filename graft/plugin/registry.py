"""
Plugin Registry Client.

An npm-style registry client used to look up plugin versions and download
plugin packages.

Key features:
- Package info lookup (GET <registry>/<name>)
- Version selection by dist-tag or range
- Tarball download and safe extraction
"""

import io
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
import nodesemver

from graft.core.errors import GraftError

DEFAULT_REGISTRY = "https://registry.npmjs.org"


class RegistryError(GraftError):
    """Raised when the registry cannot be reached or has no matching package."""

    pass


@dataclass
class PackageInfo:
    """
    Registry metadata for a package.

    Attributes:
        name: Package name
        versions: Published versions
        dist_tags: Dist-tags (e.g. {"latest": "1.2.0"})
        manifests: Per-version package manifests
    """

    name: str
    versions: list[str]
    dist_tags: dict[str, str] = field(default_factory=dict)
    manifests: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def latest(self) -> dict[str, Any]:
        """Manifest of the "latest" dist-tag, or of the highest version."""
        version = self.dist_tags.get("latest") or nodesemver.max_satisfying(
            self.versions, "*", loose=True
        )
        return self.manifests.get(version, {}) if version else {}

    def resolve(self, wanted: str | None) -> str | None:
        """Pick a version by dist-tag or range; None if nothing matches."""
        if not wanted:
            wanted = "latest"
        if wanted in self.dist_tags:
            return self.dist_tags[wanted]
        if nodesemver.valid_range(wanted, loose=True) is None:
            return None
        return nodesemver.max_satisfying(self.versions, wanted, loose=True)


class RegistryClient:
    """
    Async registry client.

    Args:
        registry_url: Registry base URL
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.registry_url = registry_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.registry_url,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def info(self, name: str) -> PackageInfo:
        """
        Fetch package metadata.

        Raises:
            RegistryError: If the request fails or the package is unknown
        """
        try:
            response = await self.client.get("/" + quote(name, safe="@"))
            if response.status_code == 404:
                raise RegistryError(f"Package {name} not found in registry {self.registry_url}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise RegistryError(f"Registry request for {name} failed: {e}") from e
        except ValueError as e:
            raise RegistryError(f"Registry returned invalid JSON for {name}: {e}") from e

        manifests = data.get("versions") or {}
        return PackageInfo(
            name=data.get("name", name),
            versions=list(manifests),
            dist_tags=data.get("dist-tags") or {},
            manifests=manifests,
        )

    async def download(self, name: str, wanted: str | None, target_dir: Path) -> Path:
        """
        Download a package version and extract it.

        Args:
            name: Package name
            wanted: Dist-tag or version range (None means "latest")
            target_dir: Directory to extract into; package contents land
                directly inside it

        Returns:
            The target directory

        Raises:
            RegistryError: If no version matches or the download fails
        """
        info = await self.info(name)
        version = info.resolve(wanted)
        if version is None:
            raise RegistryError(f"No version of {name} matches {wanted}")

        tarball = (info.manifests.get(version, {}).get("dist") or {}).get("tarball")
        if not tarball:
            raise RegistryError(f"{name}@{version} has no tarball")

        try:
            response = await self.client.get(tarball)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RegistryError(f"Failed to download {name}@{version}: {e}") from e

        extract_package(response.content, target_dir)
        return target_dir


def extract_package(data: bytes, target_dir: Path) -> None:
    """
    Extract an npm tarball, dropping its leading "package/" directory.

    Raises:
        RegistryError: If the archive is invalid
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            members = []
            for member in archive.getmembers():
                parts = Path(member.name).parts
                if len(parts) < 2:
                    continue
                member.name = str(Path(*parts[1:]))
                members.append(member)
            archive.extractall(target_dir, members=members, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise RegistryError(f"Failed to extract package: {e}") from e
