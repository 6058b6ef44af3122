"""Exclusion patterns for filtering dependency snapshots.

A pattern is either an exact package name or contains ``*`` wildcards, each
matching any run of characters. Matching always covers the whole name and
ignores case, so ``Microsoft.*`` excludes ``microsoft.extensions.logging``
but not ``MyMicrosoft.Tools``.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterable, List, Pattern, Sequence, Tuple

from .models import Dependency, Ecosystem

logger = logging.getLogger(__name__)


def _pattern_to_regex(pattern: str) -> Pattern:
    """Translate one exclusion pattern into an anchored, case-insensitive regex."""
    if '*' in pattern:
        # e.g. "Microsoft.*" -> ^Microsoft\..*$
        expression = re.escape(pattern).replace(r'\*', '.*')
    else:
        expression = re.escape(pattern)
    return re.compile(f"^{expression}$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class CompiledRuleSet:
    """Compiled matchers for one ecosystem's exclusion list."""

    patterns: Tuple[str, ...] = ()
    matchers: Tuple[Pattern, ...] = ()

    def is_excluded(self, name: str) -> bool:
        return any(matcher.fullmatch(name) for matcher in self.matchers)

    def __bool__(self) -> bool:
        return bool(self.matchers)


def compile_patterns(patterns: Iterable[str]) -> CompiledRuleSet:
    """Compile raw patterns, dropping blank ones."""
    kept = tuple(p for p in (patterns or ()) if p and p.strip())
    return CompiledRuleSet(patterns=kept, matchers=tuple(_pattern_to_regex(p) for p in kept))


def is_excluded(name: str, rule_set: CompiledRuleSet) -> bool:
    """True if any pattern of the rule set matches the whole name."""
    if not rule_set:
        return False
    return rule_set.is_excluded(name)


@dataclass(frozen=True)
class CompiledExclusions:
    """Compiled rule sets keyed by ecosystem."""

    nuget: CompiledRuleSet = field(default_factory=CompiledRuleSet)
    npm: CompiledRuleSet = field(default_factory=CompiledRuleSet)

    def for_ecosystem(self, ecosystem: Ecosystem) -> CompiledRuleSet:
        if ecosystem is Ecosystem.NUGET:
            return self.nuget
        if ecosystem is Ecosystem.NPM:
            return self.npm
        return CompiledRuleSet()


@dataclass(frozen=True)
class ExclusionRules:
    """Raw exclusion patterns of a project, one list per ecosystem."""

    nuget: Tuple[str, ...] = ()
    npm: Tuple[str, ...] = ()

    def __post_init__(self):
        # Accept lists from config; keep the value immutable
        object.__setattr__(self, 'nuget', tuple(self.nuget or ()))
        object.__setattr__(self, 'npm', tuple(self.npm or ()))

    def compile(self) -> CompiledExclusions:
        return CompiledExclusions(nuget=compile_patterns(self.nuget), npm=compile_patterns(self.npm))

    @cached_property
    def compiled(self) -> CompiledExclusions:
        """Compiled form, built on first use and never changed afterwards."""
        return self.compile()


def filter_dependencies(
    dependencies: Sequence[Dependency],
    exclusions,
) -> List[Dependency]:
    """
    Drop every dependency whose ecosystem's rule set matches its name.

    Args:
        dependencies: Snapshot to filter (left untouched)
        exclusions: CompiledExclusions, or ExclusionRules to compile on demand

    Returns:
        New list with the remaining dependencies in their original order
    """
    if isinstance(exclusions, ExclusionRules):
        exclusions = exclusions.compiled

    kept = []
    for dep in dependencies:
        if is_excluded(dep.name, exclusions.for_ecosystem(dep.ecosystem)):
            logger.debug(f"Excluding {dep.full_name}")
            continue
        kept.append(dep)

    if len(kept) != len(dependencies):
        logger.info(f"Excluded {len(dependencies) - len(kept)} of {len(dependencies)} dependencies")
    return kept
