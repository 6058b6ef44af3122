"""Version ranking utilities for heterogeneous version strings."""

import re
from typing import Iterable, Tuple

# Components a version may carry: major.minor[.build[.revision]]
MIN_COMPONENTS = 2
MAX_COMPONENTS = 4

# Rank of a component that is not present, so "1.0" sorts below "1.0.0"
MISSING = -1

# Unparsable versions rank as 0.0.0
FLOOR: Tuple[int, ...] = (0, 0, 0, MISSING)


class VersionRanker:
    """Ranks version strings and picks the highest among candidates."""

    # Leading "v" and everything from the first "-" or "+" (pre-release, build metadata)
    DECORATION_PATTERN = re.compile(r'^v|[-+].*$')

    NUMERIC_COMPONENT = re.compile(r'^\s*\d+\s*$')

    @classmethod
    def strip(cls, version: str) -> str:
        """Remove a leading 'v' and any '-'/'+' suffix, e.g. v1.9.0-beta -> 1.9.0."""
        return cls.DECORATION_PATTERN.sub('', version or '')

    @classmethod
    def parse(cls, version: str) -> Tuple[int, ...]:
        """
        Parse a version into a comparable tuple.

        Accepts two to four dot-separated non-negative integers after
        stripping. Anything else ranks as 0.0.0.

        Args:
            version: The version string to parse

        Returns:
            Four-element tuple, absent components filled with -1
        """
        if not version:
            return FLOOR

        parts = cls.strip(version).split('.')
        if not MIN_COMPONENTS <= len(parts) <= MAX_COMPONENTS:
            return FLOOR
        if not all(cls.NUMERIC_COMPONENT.match(part) for part in parts):
            return FLOOR

        numbers = [int(part) for part in parts]
        numbers.extend([MISSING] * (MAX_COMPONENTS - len(numbers)))
        return tuple(numbers)

    @classmethod
    def compare(cls, v1: str, v2: str) -> int:
        """Returns >0 if v1 > v2, <0 if v1 < v2, 0 if they rank equal."""
        p1 = cls.parse(v1)
        p2 = cls.parse(v2)
        return (p1 > p2) - (p1 < p2)

    @classmethod
    def highest(cls, versions: Iterable[str]) -> str:
        """
        Pick the highest version among the candidates.

        The returned value is the candidate's original string, not the
        stripped form. Candidates that rank equal keep their input order, so
        the first one wins.

        Args:
            versions: Candidate version strings

        Returns:
            The top-ranked candidate, or "" when there are none
        """
        candidates = list(versions)
        if not candidates:
            return ""
        if len(candidates) == 1:
            return candidates[0]
        # max() returns the first maximal element
        return max(candidates, key=cls.parse)
