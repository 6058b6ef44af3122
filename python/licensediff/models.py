"""Core data models for licensediff."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Tuple

UNKNOWN_LICENSE = "UNKNOWN"


class Ecosystem(Enum):
    """Package manager namespace a dependency belongs to."""

    NUGET = "nuget"
    NPM = "npm"

    @classmethod
    def parse(cls, value) -> 'Ecosystem':
        """Parse an ecosystem name case-insensitively (e.g. "NuGet", "npm")."""
        if isinstance(value, Ecosystem):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown ecosystem: {value!r}") from None

    def __str__(self) -> str:
        return self.value


class IdentityKey(NamedTuple):
    """Identity of a dependency row: one row per (ecosystem, name, license)."""

    ecosystem: Ecosystem
    name: str
    license: str


@dataclass
class Dependency:
    """A third-party package observed in one snapshot of a project."""

    name: str
    version: str
    ecosystem: Ecosystem
    license: str = UNKNOWN_LICENSE
    license_url: Optional[str] = None

    def __post_init__(self):
        """Normalize the ecosystem to the enum."""
        self.ecosystem = Ecosystem.parse(self.ecosystem)

    @property
    def identity(self) -> IdentityKey:
        return IdentityKey(self.ecosystem, self.name, self.license or "")

    @property
    def package_key(self) -> Tuple[Ecosystem, str]:
        """Identity within one ecosystem, ignoring license."""
        return (self.ecosystem, self.name)

    @property
    def full_name(self) -> str:
        """Return the full package name in ecosystem:name:version format."""
        return f"{self.ecosystem.value}:{self.name}:{self.version}"

    def __str__(self) -> str:
        return self.full_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packageManager': self.ecosystem.value,
            'name': self.name,
            'version': self.version,
            'license': self.license,
            'licenseUrl': self.license_url,
        }


class ChangeType(Enum):
    """Kinds of entries in a sparse dependency diff."""

    ADDED = "Added"
    REMOVED = "Removed"
    LICENSE_CHANGED = "LicenseChanged"


@dataclass(frozen=True)
class DiffEntry:
    """One change between the from- and to-snapshot of a project."""

    from_dep: Optional[Dependency]
    to_dep: Optional[Dependency]
    change_type: ChangeType

    def __post_init__(self):
        if self.change_type is ChangeType.ADDED:
            valid = self.from_dep is None and self.to_dep is not None
        elif self.change_type is ChangeType.REMOVED:
            valid = self.from_dep is not None and self.to_dep is None
        else:
            valid = self.from_dep is not None and self.to_dep is not None
        if not valid:
            raise ValueError(f"Inconsistent sides for {self.change_type.value} diff entry")

    @property
    def dependency(self) -> Dependency:
        """The side that identifies the package (from-side when present)."""
        return self.from_dep if self.from_dep is not None else self.to_dep

    @property
    def name(self) -> str:
        return self.dependency.name

    @property
    def ecosystem(self) -> Ecosystem:
        return self.dependency.ecosystem

    @property
    def license_url(self) -> Optional[str]:
        return self.dependency.license_url

    def to_dict(self) -> Dict[str, Any]:
        return {
            'changeType': self.change_type.value,
            'from': self.from_dep.to_dict() if self.from_dep else None,
            'to': self.to_dep.to_dict() if self.to_dep else None,
        }


@dataclass(frozen=True)
class PackageChangeSummary:
    """Per-package state in both snapshots, including unchanged packages."""

    ecosystem: Ecosystem
    name: str
    from_version: str
    from_license: str
    to_version: str
    to_license: str
    has_version_change: bool
    has_license_change: bool
    license_url: Optional[str] = None

    @property
    def is_added(self) -> bool:
        return not self.from_version and not self.from_license and bool(self.to_version or self.to_license)

    @property
    def is_removed(self) -> bool:
        return not self.to_version and not self.to_license and bool(self.from_version or self.from_license)

    @property
    def status(self) -> str:
        """Row status: ADDED, REMOVED, LICENSE_CHANGED, VERSION_CHANGED or UNCHANGED."""
        if self.is_added:
            return "ADDED"
        if self.is_removed:
            return "REMOVED"
        if self.has_license_change:
            return "LICENSE_CHANGED"
        if self.has_version_change:
            return "VERSION_CHANGED"
        return "UNCHANGED"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packageManager': self.ecosystem.value,
            'name': self.name,
            'fromVersion': self.from_version,
            'fromLicense': self.from_license,
            'toVersion': self.to_version,
            'toLicense': self.to_license,
            'hasVersionChange': self.has_version_change,
            'hasLicenseChange': self.has_license_change,
            'licenseUrl': self.license_url,
        }


@dataclass(frozen=True)
class ProjectResult:
    """Outcome of reconciling one project. Immutable once built."""

    project_name: str
    from_dependencies: Tuple[Dependency, ...]
    to_dependencies: Tuple[Dependency, ...]
    diff_entries: Tuple[DiffEntry, ...]
    package_summaries: Tuple[PackageChangeSummary, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'appName': self.project_name,
            'fromDependencies': [d.to_dict() for d in self.from_dependencies],
            'toDependencies': [d.to_dict() for d in self.to_dependencies],
            'diffEntries': [d.to_dict() for d in self.diff_entries],
            'packageSummaries': [s.to_dict() for s in self.package_summaries],
        }


@dataclass(frozen=True)
class ConsolidatedPackage:
    """One row of the cross-project package table."""

    ecosystem: Ecosystem
    name: str
    from_version: str
    to_version: str
    from_license: str
    to_license: str
    highest_version: str
    license: str
    license_url: Optional[str]
    has_version_change: bool
    has_license_change: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packageManager': self.ecosystem.value,
            'name': self.name,
            'fromVersion': self.from_version,
            'toVersion': self.to_version,
            'fromLicense': self.from_license,
            'toLicense': self.to_license,
            'highestVersion': self.highest_version,
            'license': self.license,
            'licenseUrl': self.license_url,
            'hasVersionChange': self.has_version_change,
            'hasLicenseChange': self.has_license_change,
        }


@dataclass(frozen=True)
class ProjectDiffRow:
    """A diff entry tagged with the project it came from."""

    project_name: str
    entry: DiffEntry

    def to_dict(self) -> Dict[str, Any]:
        row = {'app': self.project_name}
        row.update(self.entry.to_dict())
        return row


@dataclass(frozen=True)
class ConsolidatedView:
    """Rollup of package summaries and diffs across all projects."""

    packages: Tuple[ConsolidatedPackage, ...] = field(default_factory=tuple)
    diffs: Tuple[ProjectDiffRow, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'consolidatedDependencies': [p.to_dict() for p in self.packages],
            'allDiffs': [d.to_dict() for d in self.diffs],
        }
