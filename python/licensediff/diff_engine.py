"""Diff and per-package summaries between two dependency snapshots.

Rows are matched across snapshots by (ecosystem, name, license). Rows left
over on both sides that belong to the same (ecosystem, name) are then paired
up, which is how a license change is recognised. Anything still unmatched was
added or removed.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .models import (
    ChangeType,
    Dependency,
    DiffEntry,
    IdentityKey,
    PackageChangeSummary,
)

logger = logging.getLogger(__name__)

Pair = Tuple[Optional[Dependency], Optional[Dependency]]


def _differs(a: str, b: str) -> bool:
    """Case-insensitive inequality."""
    return (a or "").casefold() != (b or "").casefold()


def index_by_identity(dependencies: Sequence[Dependency]) -> Dict[IdentityKey, Dependency]:
    """
    Map each (ecosystem, name, license) key to its first dependency.

    Duplicates (e.g. the same package resolved twice transitively) are
    dropped silently; the first one in listing order is kept.
    """
    index: Dict[IdentityKey, Dependency] = {}
    for dep in dependencies:
        index.setdefault(dep.identity, dep)
    return index


def pair_snapshots(from_deps: Sequence[Dependency], to_deps: Sequence[Dependency]) -> List[Pair]:
    """
    Line up the rows of two snapshots.

    Returns:
        (from, to) pairs in from-snapshot order followed by rows only found
        in the to-snapshot; a missing side is None
    """
    from_map = index_by_identity(from_deps)
    to_map = index_by_identity(to_deps)

    # to-only rows per package, in listing order, waiting for a partner
    unmatched_to: Dict[tuple, List[IdentityKey]] = {}
    for key, dep in to_map.items():
        if key not in from_map:
            unmatched_to.setdefault(dep.package_key, []).append(key)

    unmatched_from = [key for key in from_map if key not in to_map]
    partners: Dict[IdentityKey, IdentityKey] = {}

    # Rows of the same version pair up first, the rest in listing order
    for same_version in (True, False):
        for key in unmatched_from:
            candidates = unmatched_to.get(from_map[key].package_key)
            if key in partners or not candidates:
                continue
            for i, candidate in enumerate(candidates):
                if not same_version or not _differs(to_map[candidate].version, from_map[key].version):
                    partners[key] = candidates.pop(i)
                    break

    pairs: List[Pair] = []
    for key, from_dep in from_map.items():
        if key in to_map:
            pairs.append((from_dep, to_map[key]))
        elif key in partners:
            pairs.append((from_dep, to_map[partners[key]]))
        else:
            pairs.append((from_dep, None))

    consumed = set(partners.values())
    for key, to_dep in to_map.items():
        if key not in from_map and key not in consumed:
            pairs.append((None, to_dep))

    return pairs


def compute_diff(from_deps: Sequence[Dependency], to_deps: Sequence[Dependency]) -> List[DiffEntry]:
    """
    Compute the sparse delta between two snapshots.

    Packages unchanged in license produce no entry, whatever their version.
    License values are compared ignoring case.

    Args:
        from_deps: Resolved dependencies at the older commit
        to_deps: Resolved dependencies at the newer commit

    Returns:
        Added entries, then Removed entries, then LicenseChanged entries
    """
    added, removed, license_changed = [], [], []
    for from_dep, to_dep in pair_snapshots(from_deps, to_deps):
        if from_dep is None:
            added.append(DiffEntry(from_dep=None, to_dep=to_dep, change_type=ChangeType.ADDED))
        elif to_dep is None:
            removed.append(DiffEntry(from_dep=from_dep, to_dep=None, change_type=ChangeType.REMOVED))
        elif _differs(from_dep.license, to_dep.license):
            license_changed.append(
                DiffEntry(from_dep=from_dep, to_dep=to_dep, change_type=ChangeType.LICENSE_CHANGED)
            )

    logger.debug(
        f"Diff: {len(added)} added, {len(removed)} removed, {len(license_changed)} license changes"
    )
    return added + removed + license_changed


def build_package_summaries(
    from_deps: Sequence[Dependency],
    to_deps: Sequence[Dependency],
) -> List[PackageChangeSummary]:
    """
    Build one summary row per package in either snapshot, changed or not.

    Rows present in only one snapshot count as a version change and never as
    a license change.
    """
    summaries = []
    for from_dep, to_dep in pair_snapshots(from_deps, to_deps):
        base = to_dep if to_dep is not None else from_dep

        from_version = from_dep.version if from_dep else ""
        from_license = from_dep.license if from_dep else ""
        to_version = to_dep.version if to_dep else ""
        to_license = to_dep.license if to_dep else ""

        if from_dep is not None and to_dep is not None:
            has_version_change = _differs(from_version, to_version)
            has_license_change = _differs(from_license, to_license)
        else:
            has_version_change = True
            has_license_change = False

        license_url = (to_dep.license_url if to_dep else None) or (from_dep.license_url if from_dep else None)

        summaries.append(PackageChangeSummary(
            ecosystem=base.ecosystem,
            name=base.name,
            from_version=from_version,
            from_license=from_license,
            to_version=to_version,
            to_license=to_license,
            has_version_change=has_version_change,
            has_license_change=has_license_change,
            license_url=license_url,
        ))

    return summaries
