"""
Version comparison for release versions.

Versions are dot-separated integers ("2.3.0"). Comparison is component-wise
numeric with missing trailing components treated as zero, so "1.2" equals
"1.2.0" and "1.10.0" is newer than "1.9.9". A component with a non-numeric
tail ("3-beta") compares by its leading digits.
"""

from __future__ import annotations

import re
from itertools import zip_longest

_LEADING_DIGITS = re.compile(r"^\d+")


def parse_version_parts(version: str) -> list[int]:
    """
    Split a version string into integer components.

    Args:
        version: Version string (e.g., "1.2.3", "v2.0").

    Returns:
        List of integer components. Components without leading digits
        parse as 0.
    """
    version = version.strip()
    if version.startswith(("v", "V")):
        version = version[1:]

    parts: list[int] = []
    for component in version.split("."):
        match = _LEADING_DIGITS.match(component)
        parts.append(int(match.group()) if match else 0)
    return parts


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two versions component-wise, zero-padding the shorter one.

    Args:
        v1: First version string.
        v2: Second version string.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    for a, b in zip_longest(parse_version_parts(v1), parse_version_parts(v2), fillvalue=0):
        if a < b:
            return -1
        if a > b:
            return 1
    return 0


def is_newer_version(available: str, current: str) -> bool:
    """Return True if ``available`` is strictly newer than ``current``."""
    return compare_versions(available, current) > 0


def version_sort_key(version: str) -> tuple[int, ...]:
    """
    Sort key consistent with compare_versions.

    Trailing zero components are stripped so "1.2" and "1.2.0" share a key.
    """
    parts = parse_version_parts(version)
    while parts and parts[-1] == 0:
        parts.pop()
    return tuple(parts)
