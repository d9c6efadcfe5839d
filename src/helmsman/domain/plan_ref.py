"""
Plan references derived from plan file paths.

A plan reference (``02-01``, ``02.1-05``) is computed from the current
plan path every time it is needed and never stored on a run, so renaming
or renumbering a plan file cannot desynchronize run identity.
"""

import re
from pathlib import PurePath

_PLAN_FILENAME = re.compile(
    r"^([\d.]+(?:-[\d.]+)?)(?:-[A-Z]+)?-PLAN(?:\.skip)?\.md$", re.IGNORECASE
)

# 06.6-25, 06.6.-25, 06-6-25, 06.6.25
_DECIMAL_REFS = (
    re.compile(r"^(\d{1,2})\.(\d{1,2})-(\d{1,3})$"),
    re.compile(r"^(\d{1,2})\.(\d{1,2})\.-(\d{1,3})$"),
    re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{1,3})$"),
    re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{1,3})$"),
)
_INTEGER_REF = re.compile(r"^(\d{1,2})-(\d{1,3})$")


def parse_plan_ref(plan_path: str | None) -> str | None:
    """
    Extract the plan reference from a plan file path.

    Examples:
        >>> parse_plan_ref(".planning/phases/02.1-engine/02.1-05-PLAN.md")
        '02.1-05'
        >>> parse_plan_ref("plans/03.1-03-FIX-PLAN.md")
        '03.1-03'
        >>> parse_plan_ref("notes/README.md") is None
        True
    """
    if not plan_path:
        return None
    filename = plan_path.replace("\\", "/").rsplit("/", 1)[-1]
    match = _PLAN_FILENAME.match(filename)
    return match.group(1) if match else None


def normalize_plan_ref(ref: str) -> str | None:
    """Canonicalize a user-typed reference (``6.6-25`` -> ``06.6-25``)."""
    cleaned = ref.strip()
    for pattern in _DECIMAL_REFS:
        match = pattern.match(cleaned)
        if match:
            major, minor, plan = match.groups()
            return f"{major.zfill(2)}.{minor}-{plan.zfill(2)}"
    match = _INTEGER_REF.match(cleaned)
    if match:
        phase, plan = match.groups()
        return f"{phase.zfill(2)}-{plan.zfill(2)}"
    return None


def normalize_plan_path(plan_path: str, project_root: PurePath | None = None) -> str:
    """
    Store plan paths relative to the project root with forward slashes.

    Paths outside the root stay absolute.
    """
    if not plan_path:
        return plan_path
    path = PurePath(plan_path)
    if path.is_absolute() and project_root is not None:
        try:
            path = path.relative_to(project_root)
        except ValueError:
            return plan_path
    return path.as_posix()
