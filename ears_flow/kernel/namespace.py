# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Namespace Helper — Per-project key isolation.

Everything a project owns is addressed as ears:{project_id}:{resource_type}:{resource_id}
so two projects can never collide on a key.
"""

from __future__ import annotations

PROJECT_MARKER_PREFIX = "<!-- ears-flow project: "
PROJECT_MARKER_SUFFIX = " -->"


def get_key(project_id: str, resource_type: str, resource_id: str) -> str:
    """
    Build a project-scoped key.

    Examples:
        get_key("ab12-cd34", "memory", "lessons.md") -> "ears:ab12-cd34:memory:lessons.md"
        get_key("ab12-cd34", "session", "s1") -> "ears:ab12-cd34:session:s1"
    """
    return f"ears:{project_id}:{resource_type}:{resource_id}"


def parse_key(key: str) -> tuple[str, str, str]:
    """
    Split a key built by get_key into (project_id, resource_type, resource_id).

    Raises ValueError for anything else.
    """
    parts = key.split(":", 3)
    if len(parts) != 4 or parts[0] != "ears" or not all(parts[1:]):
        raise ValueError(f"Not a project-scoped key: '{key}'")
    return parts[1], parts[2], parts[3]


def project_marker(project_id: str) -> str:
    """
    The stamp written into a project's memory files.

    Example:
        project_marker("ab12-cd34") -> "<!-- ears-flow project: ab12-cd34 -->"
    """
    return f"{PROJECT_MARKER_PREFIX}{project_id}{PROJECT_MARKER_SUFFIX}"
