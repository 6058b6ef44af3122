"""Output formatters for reconciliation results."""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from packageurl import PackageURL
from cyclonedx.exception.model import InvalidUriException
from cyclonedx.model import ExternalReference, ExternalReferenceType, XsUri
from cyclonedx.model.bom import Bom
from cyclonedx.model.component import Component, ComponentType
from cyclonedx.model.license import DisjunctiveLicense
from cyclonedx.output.json import JsonV1Dot6

from .models import (
    UNKNOWN_LICENSE,
    ConsolidatedView,
    Dependency,
    Ecosystem,
    ProjectResult,
)

logger = logging.getLogger(__name__)

# Rows shown per section in the text summary
MAX_ROWS = 25


def _table(headers: List[str], rows: List[List[str]]) -> List[str]:
    """Left-aligned fixed-width table lines."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    lines = ["  " + "  ".join(f"{h:<{widths[i]}}" for i, h in enumerate(headers))]
    lines.append("  " + "  ".join('-' * w for w in widths))
    for row in rows:
        lines.append("  " + "  ".join(f"{cell:<{widths[i]}}" for i, cell in enumerate(row)))
    return lines


class OutputFormatter:
    """Formats project results and the consolidated view."""

    @staticmethod
    def format_project_summary(result: ProjectResult) -> str:
        """Human-readable comparison of one project's two snapshots."""
        counts: Dict[str, int] = {}
        for summary in result.package_summaries:
            counts[summary.status] = counts.get(summary.status, 0) + 1

        lines = [f"License Diff: {result.project_name}"]
        lines.append(f"  From: {len(result.from_dependencies)} dependencies")
        lines.append(f"  To:   {len(result.to_dependencies)} dependencies")
        lines.append("")
        for status in ("UNCHANGED", "VERSION_CHANGED", "LICENSE_CHANGED", "ADDED", "REMOVED"):
            lines.append(f"  {status.replace('_', ' ').capitalize()}: {counts.get(status, 0)}")

        changed = [s for s in result.package_summaries if s.status != "UNCHANGED"]
        if changed:
            changed.sort(key=lambda s: s.name.lower())
            rows = [
                [s.ecosystem.value, s.name, s.status, s.from_version, s.from_license,
                 s.to_version, s.to_license]
                for s in changed[:MAX_ROWS]
            ]
            lines.append("")
            lines.append("Changed packages:")
            lines.extend(_table(
                ["Manager", "Package", "Change", "From", "From license", "To", "To license"], rows
            ))
            if len(changed) > MAX_ROWS:
                lines.append(f"  ... and {len(changed) - MAX_ROWS} more")

        return "\n".join(lines) + "\n"

    @staticmethod
    def format_consolidated(view: ConsolidatedView) -> str:
        """Human-readable cross-project rollup."""
        lines = ["Consolidated dependencies:"]
        rows = [
            [p.ecosystem.value, p.name, p.highest_version, p.license,
             "Yes" if p.has_version_change else "No",
             "Yes" if p.has_license_change else "No"]
            for p in view.packages
        ]
        lines.extend(_table(["Manager", "Package", "Highest", "License", "Version chg", "License chg"], rows))

        if view.diffs:
            lines.append("")
            lines.append("All diffs:")
            rows = []
            for row in view.diffs:
                entry = row.entry
                rows.append([
                    row.project_name, entry.ecosystem.value, entry.name, entry.change_type.value,
                    entry.from_dep.license if entry.from_dep else "",
                    entry.to_dep.license if entry.to_dep else "",
                ])
            lines.extend(_table(["App", "Manager", "Package", "Change", "From license", "To license"], rows))

        return "\n".join(lines) + "\n"

    @staticmethod
    def format_as_json(results: Sequence[ProjectResult], view: Optional[ConsolidatedView] = None) -> str:
        """All results (and the rollup, if given) as one JSON document."""
        document = {'applications': [r.to_dict() for r in results]}
        if view is not None:
            document.update(view.to_dict())
        return json.dumps(document, indent=2)

    @staticmethod
    def format_as_sbom(result: ProjectResult) -> str:
        """CycloneDX SBOM of the project's dependencies at the newer commit."""
        from . import __version__

        bom = Bom()
        bom.serial_number = uuid4()

        tool_component = Component(
            name="licensediff",
            version=__version__,
            type=ComponentType.APPLICATION,
            bom_ref=f"licensediff@{__version__}",
        )
        bom.metadata.tools.components.add(tool_component)
        bom.metadata.timestamp = datetime.now(timezone.utc).replace(microsecond=0)
        bom.metadata.component = Component(
            name=result.project_name,
            type=ComponentType.APPLICATION,
            bom_ref=result.project_name,
        )

        seen = set()
        for dep in result.to_dependencies:
            purl = OutputFormatter._build_purl(dep)
            if purl in seen:
                continue
            seen.add(purl)
            bom.components.add(OutputFormatter._dependency_to_component(dep))

        return JsonV1Dot6(bom).output_as_string(indent=2)

    @staticmethod
    def _xs_uri(url: Optional[str]) -> Optional[XsUri]:
        if not url:
            return None
        try:
            return XsUri(url)
        except InvalidUriException:
            logger.debug(f"Skipping invalid URL {url!r}")
            return None

    @staticmethod
    def _dependency_to_component(dep: Dependency) -> Component:
        purl_str = OutputFormatter._build_purl(dep)
        url = OutputFormatter._xs_uri(dep.license_url)

        licenses = []
        external_references = []
        if dep.license and dep.license != UNKNOWN_LICENSE:
            licenses.append(DisjunctiveLicense(name=dep.license, url=url))
        elif url is not None:
            # No license known, keep the pointer for manual review
            external_references.append(ExternalReference(type=ExternalReferenceType.WEBSITE, url=url))

        if dep.ecosystem is Ecosystem.NPM and dep.name.startswith('@') and '/' in dep.name:
            group, name = dep.name.split('/', 1)
        else:
            group, name = None, dep.name

        return Component(
            name=name,
            group=group,
            version=dep.version,
            type=ComponentType.LIBRARY,
            purl=PackageURL.from_string(purl_str),
            bom_ref=purl_str,
            licenses=licenses,
            external_references=external_references,
        )

    @staticmethod
    def _build_purl(dep: Dependency) -> str:
        """Build a Package URL for a dependency."""
        if dep.ecosystem is Ecosystem.NPM and dep.name.startswith('@') and '/' in dep.name:
            namespace, name = dep.name.split('/', 1)
            purl = PackageURL(type='npm', namespace=namespace, name=name, version=dep.version)
        else:
            purl = PackageURL(type=dep.ecosystem.value, name=dep.name, version=dep.version)
        return purl.to_string()
