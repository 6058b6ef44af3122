"""Main CLI entry point for licensediff."""

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import DEFAULT_CONFIG_PATH, ProjectConfig, load_config
from .exceptions import LicenseDiffError
from .formatters import OutputFormatter
from .license_resolver import NugetPackageCache
from .models import Dependency
from .orchestrator import ReconciliationOrchestrator, consolidate
from .patterns import ExclusionRules

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_level: Optional[str] = None):
    """Configure logging based on verbosity flags."""
    if log_level:
        level = getattr(logging, log_level.upper(), logging.WARNING)
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s'
    )


def write_output(output: str, output_file: str) -> None:
    if output_file == '-':
        print(output, end='')
        return
    path = Path(output_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        f.write(output)
    logger.info(f"Output written to: {output_file}")
    print(f"Output written to: {output_file}")


def render(results, output_format: str) -> str:
    """Render results in the requested output format."""
    if output_format == 'json':
        return OutputFormatter.format_as_json(results, consolidate(results))
    if output_format == 'sbom':
        if len(results) != 1:
            raise LicenseDiffError("SBOM output needs exactly one application (use --app)")
        return OutputFormatter.format_as_sbom(results[0])

    parts = [OutputFormatter.format_project_summary(r) for r in results]
    if len(results) > 1:
        parts.append(OutputFormatter.format_consolidated(consolidate(results)))
    return "\n".join(parts)


def handle_run(args):
    """Handle the 'run' subcommand."""
    setup_logging(args.verbose, args.loglevel)

    try:
        config = load_config(args.config)
    except LicenseDiffError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    working_dir = Path(config.working_directory).resolve()
    working_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Working directory: {working_dir}")

    projects: List[ProjectConfig] = config.applications
    if args.app:
        projects = [p for p in projects if p.name.lower() == args.app.lower()]
        if not projects:
            print(f"No application named '{args.app}' in {args.config}", file=sys.stderr)
            return 1

    orchestrator = ReconciliationOrchestrator(resolver_workers=args.workers)
    try:
        results = orchestrator.run(projects, working_dir)
    finally:
        if not args.keep_workdir:
            try:
                logger.info(f"Removing working directory {working_dir}")
                shutil.rmtree(working_dir)
            except OSError as e:
                logger.warning(f"Could not remove working directory: {e}")

    if not results:
        print("No application could be processed", file=sys.stderr)
        return 1

    try:
        write_output(render(results, args.output_format), args.output)
    except (LicenseDiffError, OSError) as e:
        logger.error(f"Error writing output: {e}")
        print(f"Error writing output: {e}", file=sys.stderr)
        return 1
    return 0


def load_snapshot(path: str) -> List[Dependency]:
    """Read a snapshot file: a JSON list of {"name", "version", "ecosystem"} objects."""
    with open(path, 'r') as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise LicenseDiffError(f"{path}: expected a JSON list of dependencies")

    deps = []
    for entry in entries:
        try:
            deps.append(Dependency(
                name=entry['name'],
                version=entry['version'],
                ecosystem=entry.get('ecosystem') or entry.get('packageManager'),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise LicenseDiffError(f"{path}: invalid dependency entry {entry!r}") from e
    return deps


def handle_compare(args):
    """Handle the 'compare' subcommand."""
    setup_logging(args.verbose, args.loglevel)

    try:
        from_deps = load_snapshot(args.from_snapshot)
        to_deps = load_snapshot(args.to_snapshot)
    except (LicenseDiffError, OSError, ValueError) as e:
        logger.error(f"Error reading snapshots: {e}")
        print(f"Error reading snapshots: {e}", file=sys.stderr)
        return 1

    project = ProjectConfig(
        name=args.project_name,
        excludes=ExclusionRules(nuget=args.exclude_nuget, npm=args.exclude_npm),
    )
    nuget_cache = NugetPackageCache(args.nuget_cache) if args.nuget_cache else None
    orchestrator = ReconciliationOrchestrator(nuget_cache=nuget_cache, resolver_workers=args.workers)
    result = orchestrator.reconcile_project(
        project, from_deps, to_deps, from_root=args.root_from, to_root=args.root_to
    )

    try:
        write_output(render([result], args.output_format), args.output)
    except (LicenseDiffError, OSError) as e:
        logger.error(f"Error writing output: {e}")
        print(f"Error writing output: {e}", file=sys.stderr)
        return 1
    return 0


def _add_common_arguments(parser):
    parser.add_argument('-o', '--out', dest='output', default='-',
                        help='Output file (default: stdout, use - for stdout)')
    parser.add_argument('--format', dest='output_format', default='text',
                        choices=['text', 'json', 'sbom'],
                        help='Output format (text, json, sbom). Default: text')
    parser.add_argument('--workers', type=int, default=1,
                        help='Threads used for license lookups. Default: 1')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--loglevel', choices=['DEBUG', 'INFO', 'WARN', 'ERROR'],
                        help='Set log level')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='licensediff',
        description='NuGet/npm dependency and license diff between two commits'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Subcommands')

    run_parser = subparsers.add_parser('run', help='Compare all applications from a config file')
    run_parser.add_argument('-c', '--config', default=DEFAULT_CONFIG_PATH,
                            help=f'Path to the JSON config file. Default: {DEFAULT_CONFIG_PATH}')
    run_parser.add_argument('-a', '--app', help='Only process the application with this name')
    run_parser.add_argument('--keep-workdir', action='store_true',
                            help='Do not delete the working directory afterwards')
    _add_common_arguments(run_parser)
    run_parser.set_defaults(func=handle_run)

    compare_parser = subparsers.add_parser('compare', help='Compare two dependency snapshot files')
    compare_parser.add_argument('from_snapshot', help='Snapshot JSON at the older commit')
    compare_parser.add_argument('to_snapshot', help='Snapshot JSON at the newer commit')
    compare_parser.add_argument('--project-name', default='project', help='Name used in the output')
    compare_parser.add_argument('--root-from', help='Checkout holding node_modules for the older snapshot')
    compare_parser.add_argument('--root-to', help='Checkout holding node_modules for the newer snapshot')
    compare_parser.add_argument('--nuget-cache', help='NuGet global packages folder')
    compare_parser.add_argument('--exclude-nuget', action='append', default=[], metavar='PATTERN',
                                help='Exclude NuGet packages matching PATTERN (* wildcard, repeatable)')
    compare_parser.add_argument('--exclude-npm', action='append', default=[], metavar='PATTERN',
                                help='Exclude npm packages matching PATTERN (* wildcard, repeatable)')
    _add_common_arguments(compare_parser)
    compare_parser.set_defaults(func=handle_compare)

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
