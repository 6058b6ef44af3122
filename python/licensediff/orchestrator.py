"""Reconciliation of dependency snapshots per project and across projects."""

import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .collectors import NpmCollector, NugetCollector, collect_snapshot
from .config import ProjectConfig
from .diff_engine import build_package_summaries, compute_diff
from .exceptions import LicenseDiffError
from .license_resolver import LicenseResolver, NodeModulesStore, NugetPackageCache
from .models import (
    ConsolidatedPackage,
    ConsolidatedView,
    Dependency,
    IdentityKey,
    PackageChangeSummary,
    ProjectDiffRow,
    ProjectResult,
)
from .patterns import filter_dependencies
from .vcs import GitRepository
from .version_ranker import VersionRanker

logger = logging.getLogger(__name__)


class ReconciliationOrchestrator:
    """
    Runs filter -> license resolution -> diff for each project and folds the
    results into a consolidated view.

    Projects share nothing but read-only configuration, so separate
    instances or calls may run concurrently.
    """

    def __init__(
        self,
        nuget_cache: Optional[NugetPackageCache] = None,
        nuget_collector: Optional[NugetCollector] = None,
        npm_collector: Optional[NpmCollector] = None,
        resolver_workers: int = 1,
        on_unresolved: Optional[Callable[[Dependency, str], None]] = None,
    ):
        self.nuget_cache = nuget_cache or NugetPackageCache()
        self.nuget_collector = nuget_collector or NugetCollector()
        self.npm_collector = npm_collector or NpmCollector()
        self.resolver_workers = resolver_workers
        self.on_unresolved = on_unresolved

    def _resolver_for(self, checkout_root) -> LicenseResolver:
        npm_store = NodeModulesStore(checkout_root) if checkout_root is not None else None
        return LicenseResolver(self.nuget_cache, npm_store, on_unresolved=self.on_unresolved)

    def _prepare_snapshot(self, project: ProjectConfig, deps: Sequence[Dependency], checkout_root) -> List[Dependency]:
        # Filter before resolving so excluded packages are never looked up
        kept = filter_dependencies(deps, project.exclusions)
        return self._resolver_for(checkout_root).resolve_all(kept, max_workers=self.resolver_workers)

    def reconcile_project(
        self,
        project: ProjectConfig,
        from_deps: Sequence[Dependency],
        to_deps: Sequence[Dependency],
        from_root=None,
        to_root=None,
    ) -> ProjectResult:
        """
        Reconcile the two raw snapshots of one project.

        Args:
            project: Project configuration (name and exclusion rules)
            from_deps: Raw dependencies at the older commit, in listing order
            to_deps: Raw dependencies at the newer commit, in listing order
            from_root: Checkout of the older commit, used for npm metadata
            to_root: Checkout of the newer commit, used for npm metadata

        Returns:
            Immutable ProjectResult
        """
        logger.info(f"Reconciling '{project.name}': {len(from_deps)} -> {len(to_deps)} raw dependencies")
        from_resolved = self._prepare_snapshot(project, from_deps, from_root)
        to_resolved = self._prepare_snapshot(project, to_deps, to_root)
        return self._build_result(project, from_resolved, to_resolved)

    @staticmethod
    def _build_result(project: ProjectConfig, from_resolved, to_resolved) -> ProjectResult:
        diff = compute_diff(from_resolved, to_resolved)
        summaries = build_package_summaries(from_resolved, to_resolved)
        logger.info(f"'{project.name}': {len(diff)} diff entries, {len(summaries)} packages")

        return ProjectResult(
            project_name=project.name,
            from_dependencies=tuple(from_resolved),
            to_dependencies=tuple(to_resolved),
            diff_entries=tuple(diff),
            package_summaries=tuple(summaries),
        )

    def process_project(self, project: ProjectConfig, working_dir) -> ProjectResult:
        """Check out both commits of a project, list and reconcile its dependencies."""
        repo = GitRepository(project.git_url, Path(working_dir) / project.name)
        repo.clone_or_open()

        logger.info(f"Using commits for '{project.name}': from={project.from_commit} to={project.to_commit}")

        # Resolve each snapshot while its commit is checked out: node_modules is on disk
        root = repo.checkout(project.from_commit)
        from_raw = collect_snapshot(root, project, self.nuget_collector, self.npm_collector)
        from_resolved = self._prepare_snapshot(project, from_raw, root)

        root = repo.checkout(project.to_commit)
        to_raw = collect_snapshot(root, project, self.nuget_collector, self.npm_collector)
        to_resolved = self._prepare_snapshot(project, to_raw, root)

        return self._build_result(project, from_resolved, to_resolved)

    def run(self, projects: Iterable[ProjectConfig], working_dir) -> List[ProjectResult]:
        """Process every project; a failing project is logged and skipped."""
        results = []
        for project in projects:
            try:
                logger.info(f"Processing '{project.name}'")
                results.append(self.process_project(project, working_dir))
                logger.info(f"'{project.name}' processed successfully")
            except (LicenseDiffError, OSError) as e:
                logger.error(f"Project '{project.name}' failed: {e}")
        return results

    def consolidate(self, results: Sequence[ProjectResult]) -> ConsolidatedView:
        return consolidate(results)


def _license_url_lookup(results: Sequence[ProjectResult]) -> Dict[IdentityKey, Optional[str]]:
    """First non-empty license URL per identity key across all to-snapshots."""
    lookup: Dict[IdentityKey, Optional[str]] = {}
    for result in results:
        for dep in result.to_dependencies:
            if dep.license_url and not lookup.get(dep.identity):
                lookup[dep.identity] = dep.license_url
    return lookup


def _consolidate_group(rows: List[PackageChangeSummary], url_lookup) -> ConsolidatedPackage:
    representative = next((s for s in rows if s.to_version), rows[0])

    versions = []
    for summary in rows:
        versions.extend(v for v in (summary.from_version, summary.to_version) if v)

    license_value = representative.to_license or ""
    key = IdentityKey(representative.ecosystem, representative.name, license_value)

    return ConsolidatedPackage(
        ecosystem=representative.ecosystem,
        name=representative.name,
        from_version=representative.from_version,
        to_version=representative.to_version,
        from_license=representative.from_license,
        to_license=representative.to_license,
        highest_version=VersionRanker.highest(versions),
        license=license_value,
        license_url=url_lookup.get(key),
        has_version_change=any(s.has_version_change for s in rows),
        has_license_change=any(s.has_license_change for s in rows),
    )


def consolidate(results: Sequence[ProjectResult]) -> ConsolidatedView:
    """
    Roll up all project results.

    Package summaries are grouped by (ecosystem, name, to-license), so a
    package seen under two licenses keeps two rows. The diff table lists
    every diff entry tagged with its project.
    """
    groups: Dict[IdentityKey, List[PackageChangeSummary]] = {}
    for result in results:
        for summary in result.package_summaries:
            key = IdentityKey(summary.ecosystem, summary.name, summary.to_license)
            groups.setdefault(key, []).append(summary)

    url_lookup = _license_url_lookup(results)
    packages = [_consolidate_group(rows, url_lookup) for rows in groups.values()]
    packages.sort(key=lambda p: (p.ecosystem.value, p.name.lower(), p.license.lower()))

    diffs = []
    for result in sorted(results, key=lambda r: r.project_name.lower()):
        for entry in sorted(result.diff_entries, key=lambda d: d.name.lower()):
            diffs.append(ProjectDiffRow(project_name=result.project_name, entry=entry))

    return ConsolidatedView(packages=tuple(packages), diffs=tuple(diffs))
