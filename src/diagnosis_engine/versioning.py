"""Diagnosis version strings.

A version is ``"major.minor"`` where both parts are non-negative
integers.  Each committed change bumps the minor integer, so ordering is
numeric rather than decimal: ``"1.9"`` is followed by ``"1.10"``.
"""

from __future__ import annotations

import re

from diagnosis_engine.errors import ActionableError

INITIAL_VERSION = "1.0"

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)$")


def parse_version(version: str) -> tuple[int, int]:
    """Return ``(major, minor)``; a leading ``v`` is tolerated.

    Raises :class:`~diagnosis_engine.errors.ValidationError` when
    *version* is not two dot-separated integers.
    """
    match = _VERSION_RE.match(version.strip()) if isinstance(version, str) else None
    if match is None:
        raise ActionableError.validation(
            field_name="version",
            reason=f"'{version}' is not a 'major.minor' version string",
            suggestion="Versions look like '1.0', '1.9', '1.10'",
        )
    return int(match.group(1)), int(match.group(2))


def format_version(major: int, minor: int) -> str:
    return f"{major}.{minor}"


def increment_version(version: str | None) -> str:
    """Next version after *version*, or ``"1.0"`` when there is none."""
    if version is None:
        return INITIAL_VERSION
    major, minor = parse_version(version)
    return format_version(major, minor + 1)


def previous_version(version: str) -> str:
    """Version that preceded *version*.

    ``"1.10"`` → ``"1.9"``; at a major boundary the previous major is
    assumed: ``"2.0"`` → ``"1.0"``.  ``"1.0"`` has no predecessor and is
    returned unchanged.
    """
    major, minor = parse_version(version)
    if minor > 0:
        return format_version(major, minor - 1)
    if major > 1:
        return format_version(major - 1, 0)
    return format_version(major, minor)


def version_key(version: str) -> tuple[int, int]:
    """Sort key ordering versions numerically."""
    return parse_version(version)
