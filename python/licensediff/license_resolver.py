"""License resolution from locally installed package metadata.

NuGet licenses come from the ``.nuspec`` file in the global packages cache,
npm licenses from ``node_modules/<name>/package.json`` in the checkout.
Resolution is best effort: a package without readable metadata ends up as
UNKNOWN with a link to its registry page, and the run carries on.
"""

import json
import logging
import os
import xml.etree.ElementTree as ET
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .exceptions import MalformedMetadataError, MetadataNotFoundError
from .models import UNKNOWN_LICENSE, Dependency, Ecosystem

logger = logging.getLogger(__name__)

NUGET_GALLERY_URL = "https://www.nuget.org/packages"
NPM_REGISTRY_URL = "https://www.npmjs.com/package"

NUSPEC_PATTERN = "*.nuspec"


def default_nuget_cache_root() -> Path:
    """Global NuGet packages folder (NUGET_PACKAGES overrides ~/.nuget/packages)."""
    override = os.environ.get("NUGET_PACKAGES")
    if override:
        return Path(override)
    return Path.home() / ".nuget" / "packages"


def nuget_package_url(name: str, version: str) -> str:
    return f"{NUGET_GALLERY_URL}/{name}/{version}"


def npm_package_url(name: str) -> str:
    return f"{NPM_REGISTRY_URL}/{name}"


class NugetPackageCache:
    """Reads .nuspec files from {cache_root}/{name-lowercased}/{version}/."""

    def __init__(self, cache_root=None):
        self.cache_root = Path(cache_root) if cache_root else default_nuget_cache_root()

    def package_dir(self, name: str, version: str) -> Path:
        return self.cache_root / name.lower() / version

    def read_metadata(self, name: str, version: str) -> bytes:
        package_dir = self.package_dir(name, version)
        if not package_dir.is_dir():
            raise MetadataNotFoundError(
                f"NuGet package folder not found for {name} {version}", path=package_dir
            )

        nuspecs = sorted(package_dir.glob(NUSPEC_PATTERN))
        if not nuspecs:
            raise MetadataNotFoundError(
                f"No .nuspec file for {name} {version}", path=package_dir
            )
        return nuspecs[0].read_bytes()


class NodeModulesStore:
    """Reads package.json files from {project_root}/node_modules/{name}/."""

    def __init__(self, project_root):
        self.project_root = Path(project_root)

    def package_json_path(self, name: str) -> Path:
        return self.project_root / "node_modules" / name / "package.json"

    def read_metadata(self, name: str, version: str = None) -> bytes:
        path = self.package_json_path(name)
        if not path.is_file():
            raise MetadataNotFoundError(f"package.json not found for {name}", path=path)
        return path.read_bytes()


def _local_name(tag: str) -> str:
    """Strip the XML namespace from a tag."""
    return tag.split('}')[-1] if '}' in tag else tag


def parse_nuspec_license(content: bytes):
    """
    Extract license information from .nuspec content.

    Order matters: a license expression wins over a legacy licenseUrl.

    Returns:
        (license, license_url) where either may be None

    Raises:
        MalformedMetadataError: If the content is not well-formed XML
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise MalformedMetadataError(f"Invalid nuspec XML: {e}") from e

    for elem in root.iter():
        if _local_name(elem.tag) != 'license':
            continue
        if (elem.get('type') or '').lower() == 'expression' and elem.text and elem.text.strip():
            return elem.text.strip(), None

    for elem in root.iter():
        if _local_name(elem.tag) == 'licenseUrl' and elem.text and elem.text.strip():
            return None, elem.text.strip()

    return None, None


def _license_from_package_json(data: dict) -> str:
    """License string from package.json: 'license' first, then legacy 'licenses'."""
    if 'license' in data:
        value = data['license']
        if value is None:
            return UNKNOWN_LICENSE
        if isinstance(value, str):
            return value
        # Deprecated object form: {"type": "MIT", "url": "..."}
        if isinstance(value, dict) and isinstance(value.get('type'), str):
            return value['type']
        raise MalformedMetadataError(f"Unsupported 'license' value: {value!r}")

    licenses = data.get('licenses')
    if isinstance(licenses, list):
        types = []
        for entry in licenses:
            if isinstance(entry, dict):
                license_type = entry.get('type')
            else:
                license_type = entry
            if isinstance(license_type, str) and license_type:
                types.append(license_type)
        return " OR ".join(types) if types else UNKNOWN_LICENSE

    return UNKNOWN_LICENSE


def _reference_url_from_package_json(data: dict) -> Optional[str]:
    """Best-effort pointer to license information: homepage, else repository."""
    homepage = data.get('homepage')
    if isinstance(homepage, str) and homepage:
        return homepage

    repository = data.get('repository')
    if isinstance(repository, str):
        return repository or None
    if isinstance(repository, dict):
        url = repository.get('url')
        if isinstance(url, str) and url:
            return url
    return None


def parse_package_json_license(content: bytes):
    """
    Extract license information from package.json content.

    Returns:
        (license, license_url); license is UNKNOWN when none is declared

    Raises:
        MalformedMetadataError: If the content is not a JSON object or has a
            license field of an unexpected shape
    """
    try:
        data = json.loads(content)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedMetadataError(f"Invalid package.json: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMetadataError("package.json is not a JSON object")

    license_value = _license_from_package_json(data)
    license_url = None
    if not license_value or license_value == UNKNOWN_LICENSE:
        license_value = UNKNOWN_LICENSE
        license_url = _reference_url_from_package_json(data)
    return license_value, license_url


class LicenseResolver:
    """
    Annotates dependencies with their license from local metadata.

    Failures never propagate: the dependency is marked UNKNOWN with its
    registry URL, a warning is logged and ``on_unresolved`` (if given) is
    called with the dependency and the reason.
    """

    def __init__(
        self,
        nuget_store: Optional[NugetPackageCache] = None,
        npm_store: Optional[NodeModulesStore] = None,
        on_unresolved: Optional[Callable[[Dependency, str], None]] = None,
    ):
        self.nuget_store = nuget_store or NugetPackageCache()
        self.npm_store = npm_store
        self.on_unresolved = on_unresolved

    def resolve(self, dependency: Dependency) -> Dependency:
        """Set license and license_url on the dependency and return it."""
        if dependency.ecosystem is Ecosystem.NUGET:
            self._resolve_nuget(dependency)
        elif dependency.ecosystem is Ecosystem.NPM:
            self._resolve_npm(dependency)
        return dependency

    def resolve_all(self, dependencies: Sequence[Dependency], max_workers: int = 1) -> List[Dependency]:
        """Resolve a whole snapshot. Lookups are independent, so they may run in threads."""
        if max_workers <= 1 or len(dependencies) <= 1:
            return [self.resolve(dep) for dep in dependencies]

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self.resolve, dependencies))

    def _resolve_nuget(self, dep: Dependency) -> None:
        dep.license_url = None
        try:
            content = self.nuget_store.read_metadata(dep.name, dep.version)
            license_value, license_url = parse_nuspec_license(content)
        except MetadataNotFoundError as e:
            self._unresolved(dep, f"{e} (looked in {e.path})", nuget_package_url(dep.name, dep.version))
            return
        except (MalformedMetadataError, OSError) as e:
            self._unresolved(
                dep,
                f"Could not read NuGet license for '{dep.name}' (version {dep.version}): {e}",
                nuget_package_url(dep.name, dep.version),
            )
            return

        if license_value:
            dep.license = license_value
            return
        dep.license = UNKNOWN_LICENSE
        if license_url:
            dep.license_url = license_url
        logger.debug(f"No license expression in nuspec for {dep.full_name}")

    def _resolve_npm(self, dep: Dependency) -> None:
        dep.license_url = None
        if self.npm_store is None:
            self._unresolved(dep, f"No node_modules location known for {dep.name}", npm_package_url(dep.name))
            return

        try:
            content = self.npm_store.read_metadata(dep.name, dep.version)
            license_value, license_url = parse_package_json_license(content)
        except MetadataNotFoundError as e:
            self._unresolved(dep, f"{e} (looked in {e.path})", npm_package_url(dep.name))
            return
        except (MalformedMetadataError, OSError) as e:
            self._unresolved(
                dep,
                f"Could not determine license for npm package '{dep.name}' (version {dep.version}): {e}",
                npm_package_url(dep.name),
            )
            return

        dep.license = license_value
        dep.license_url = license_url

    def _unresolved(self, dep: Dependency, reason: str, fallback_url: str) -> None:
        dep.license = UNKNOWN_LICENSE
        dep.license_url = fallback_url
        logger.warning(reason)
        if self.on_unresolved is not None:
            self.on_unresolved(dep, reason)
