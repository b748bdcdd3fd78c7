"""Semantic version comparison and index version constraints."""

from __future__ import annotations

import re

_CONSTRAINT = re.compile(r"^\s*(==|>=|<=|!=|>|<|\^|~|=)?\s*v?([0-9][0-9A-Za-z.+-]*)\s*$")


def parse_version(version: str) -> tuple[tuple[int, ...], tuple[str, ...]]:
    """Split ``1.2.3-rc.1+build`` into ((1, 2, 3), ("rc", "1")).

    Raises:
        ValueError: Not a dotted numeric version.
    """
    core = version.strip().lstrip("v").split("+", 1)[0]
    core, _, pre = core.partition("-")
    numbers = tuple(int(part) for part in core.split("."))
    while len(numbers) < 3:
        numbers += (0,)
    return numbers, tuple(pre.split(".")) if pre else ()


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings.

    Returns:
        -1 if v1 < v2, 0 if equal, 1 if v1 > v2.
    """
    try:
        n1, pre1 = parse_version(v1)
        n2, pre2 = parse_version(v2)
    except ValueError:
        # Fallback to string comparison
        return -1 if v1 < v2 else (1 if v1 > v2 else 0)

    if n1 != n2:
        return -1 if n1 < n2 else 1
    # A release sorts after its pre-releases
    if pre1 == pre2:
        return 0
    if not pre1:
        return 1
    if not pre2:
        return -1
    key1 = [(0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre1]
    key2 = [(0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre2]
    return -1 if key1 < key2 else 1


def _satisfies_one(version: str, clause: str) -> bool:
    match = _CONSTRAINT.match(clause)
    if not match:
        raise ValueError(f"invalid version constraint: {clause!r}")
    op, wanted = match.group(1) or "==", match.group(2)
    cmp = compare_versions(version, wanted)

    if op in ("==", "="):
        return cmp == 0
    if op == "!=":
        return cmp != 0
    if op == ">=":
        return cmp >= 0
    if op == "<=":
        return cmp <= 0
    if op == ">":
        return cmp > 0
    if op == "<":
        return cmp < 0

    numbers, _ = parse_version(wanted)
    major, minor = numbers[0], numbers[1]
    if op == "^":
        upper = f"{major + 1}.0.0" if major > 0 else f"0.{minor + 1}.0"
    else:
        upper = f"{major}.{minor + 1}.0"
    return cmp >= 0 and compare_versions(version, upper) < 0


def version_satisfies(version: str, constraint: str | None) -> bool:
    """Check ``version`` against a constraint such as ``>=1.2, <2`` or ``^1.4.0``.

    A bare version means an exact pin. ``None``, ``""`` and ``*`` match anything.

    Raises:
        ValueError: The constraint cannot be parsed.
    """
    if constraint is None or constraint.strip() in ("", "*", "latest"):
        return True
    return all(_satisfies_one(version, clause) for clause in constraint.split(",") if clause.strip())
