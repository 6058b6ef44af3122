"""Package manager introspection: raw dependency lists per ecosystem."""

import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from .exceptions import CollectorError
from .models import Dependency, Ecosystem

logger = logging.getLogger(__name__)


def _run(cmd: List[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise CollectorError(f"{cmd[0]} executable not found") from e


def parse_dotnet_list_output(output: str) -> List[Dependency]:
    """
    Parse the JSON printed by ``dotnet list package --format json``.

    Example:
        {"projects": [{"frameworks": [{"topLevelPackages": [
            {"id": "Newtonsoft.Json", "requestedVersion": "13.0.1"}]}]}]}

    Top-level packages come before transitive ones, per framework. The
    requested version is preferred over the resolved one.
    """
    try:
        document = json.loads(output)
    except ValueError as e:
        raise CollectorError(f"Invalid dotnet list output: {e}") from e

    deps = []
    try:
        for project in document.get('projects') or []:
            for framework in project.get('frameworks') or []:
                for section in ('topLevelPackages', 'transitivePackages'):
                    for pkg in framework.get(section) or []:
                        name = pkg.get('id')
                        version = pkg.get('requestedVersion') or pkg.get('resolvedVersion')
                        if not name or not version:
                            continue
                        deps.append(Dependency(name=name, version=version, ecosystem=Ecosystem.NUGET))
    except (AttributeError, TypeError) as e:
        raise CollectorError(f"Unexpected dotnet list output structure: {e}") from e
    return deps


def _collect_npm_tree(node: dict, deps: List[Dependency]) -> None:
    """Depth-first walk over the nested 'dependencies' objects of npm ls."""
    for name, value in (node.get('dependencies') or {}).items():
        if not isinstance(value, dict):
            continue
        version = value.get('version')
        if not version:
            continue
        deps.append(Dependency(name=name, version=version, ecosystem=Ecosystem.NPM))
        _collect_npm_tree(value, deps)


def parse_npm_ls_output(output: str) -> List[Dependency]:
    """Parse the JSON printed by ``npm ls --json --all``."""
    try:
        document = json.loads(output)
    except ValueError as e:
        raise CollectorError(f"Invalid npm ls output: {e}") from e

    deps: List[Dependency] = []
    try:
        _collect_npm_tree(document, deps)
    except (AttributeError, TypeError) as e:
        raise CollectorError(f"Unexpected npm ls output structure: {e}") from e
    return deps


class NugetCollector:
    """Lists NuGet dependencies of a .csproj via the dotnet CLI."""

    def __init__(self, dotnet: str = "dotnet"):
        self.dotnet = dotnet

    def list_dependencies(self, csproj_path) -> List[Dependency]:
        cmd = [self.dotnet, "list", str(csproj_path), "package", "--include-transitive", "--format", "json"]
        result = _run(cmd)
        if result.returncode != 0:
            raise CollectorError(
                f"dotnet list package failed for {csproj_path}: {result.stderr.strip()}"
            )
        return parse_dotnet_list_output(result.stdout)


class NpmCollector:
    """Lists npm production dependencies of a project directory via npm ls."""

    def __init__(self, npm: str = "npm"):
        self.npm = npm

    def list_dependencies(self, project_dir) -> List[Dependency]:
        cmd = [self.npm, "ls", "--json", "--production", "--all"]
        result = _run(cmd, cwd=Path(project_dir))
        # npm ls exits non-zero on peer dependency problems but still prints the tree
        if result.stderr.strip():
            logger.debug(f"npm ls in {project_dir}: {result.stderr.strip()}")
        if not result.stdout.strip():
            raise CollectorError(f"npm ls failed in {project_dir}: {result.stderr.strip()}")
        return parse_npm_ls_output(result.stdout)


def collect_snapshot(root, project, nuget: NugetCollector, npm: NpmCollector) -> List[Dependency]:
    """
    List every dependency of a project checked out at ``root``.

    NuGet manifests are listed first, then npm project directories, so the
    result keeps package manager order. Missing paths are skipped.
    """
    root = Path(root)
    deps: List[Dependency] = []

    for relative in project.csproj_paths:
        csproj = root / relative
        if not csproj.is_file():
            logger.debug(f"csproj not found: {csproj}")
            continue
        logger.info(f"Listing NuGet packages for {csproj}")
        deps.extend(nuget.list_dependencies(csproj))

    for relative in project.npm_project_dirs:
        npm_dir = root / relative
        if not npm_dir.is_dir():
            logger.debug(f"npm directory not found: {npm_dir}")
            continue
        logger.info(f"Listing npm packages for {npm_dir}")
        deps.extend(npm.list_dependencies(npm_dir))

    logger.info(f"Found {len(deps)} dependencies")
    for dep in deps:
        logger.debug(f"  - {dep.full_name}")
    return deps
