# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Installation Validator — Check a project's <AI_DIR> before a session uses it.

Every problem is reported individually with the path, key or skill involved:
missing directories and files, broken descriptor frontmatter, corrupted or
unreadable memory logs, unknown or circular skill dependencies and sub-skills
whose major version differs from the root descriptor.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.errors import (
    CircularDependencyError,
    DependencyMissingError,
    ErrorReport,
    ErrorType,
    MissingFilesError,
    OrchestratorError,
    VersionMismatchError,
    build_error_report,
)
from ears_flow.kernel.skill_loader import SKILL_FILE, discover_skills
from ears_flow.kernel.skill_registry import Skill
from ears_flow.memory.memory_logs import MEMORY_DIR, MEMORY_FILES, check_memory_file

logger = logging.getLogger("ears.installation")

REQUIRED_DIRS = ("", "skills", MEMORY_DIR, "templates")
REQUIRED_SKILLS = ("spec-forge", "planning", "work", "review", "git-worktree", "project-reset")


class Severity:
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


SEVERITY: Dict[str, str] = {
    ErrorType.MISSING_FILES: Severity.CRITICAL,
    ErrorType.PERMISSION_DENIED: Severity.CRITICAL,
    ErrorType.INVALID_YAML: Severity.HIGH,
    ErrorType.MISSING_FIELD: Severity.HIGH,
    ErrorType.DEPENDENCY_MISSING: Severity.HIGH,
    ErrorType.CIRCULAR_DEPENDENCY: Severity.HIGH,
    ErrorType.VERSION_MISMATCH: Severity.MEDIUM,
    ErrorType.CORRUPTED_MEMORY: Severity.MEDIUM,
}


class InstallationIssue(BaseModel):
    error_type: str
    severity: str
    message: str
    path: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: OrchestratorError, path: Optional[str] = None) -> InstallationIssue:
        return cls(
            error_type=error.error_type,
            severity=SEVERITY.get(error.error_type, Severity.HIGH),
            message=error.message,
            path=path or error.context.get("file") or error.context.get("path"),
            details=dict(error.context),
        )

    def to_report(self) -> ErrorReport:
        return build_error_report(self.error_type, self.details)


class InstallationReport(BaseModel):
    project_root: str
    valid: bool
    issues: List[InstallationIssue] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    summary: str = ""

    def of_type(self, error_type: str) -> List[InstallationIssue]:
        return [i for i in self.issues if i.error_type == error_type]


def find_cycles(graph: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """
    Every distinct dependency cycle, as an ordered path closing on its start.

    Example:
        find_cycles({"a": ["b"], "b": ["a"]}) -> [["a", "b", "a"]]
    """
    cycles: List[List[str]] = []
    seen = set()
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done
    stack: List[str] = []

    def visit(node: str) -> None:
        state[node] = 1
        stack.append(node)
        for dep in graph.get(node, ()):
            if dep not in graph:
                continue
            if state.get(dep) == 1:
                cycle = stack[stack.index(dep):]
                pivot = cycle.index(min(cycle))
                canonical = tuple(cycle[pivot:] + cycle[:pivot])
                if canonical not in seen:
                    seen.add(canonical)
                    cycles.append(list(canonical) + [canonical[0]])
            elif state.get(dep) is None:
                visit(dep)
        stack.pop()
        state[node] = 2

    for node in graph:
        if node not in state:
            visit(node)
    return cycles


def dependency_errors(skills: Sequence[Skill]) -> List[OrchestratorError]:
    """Unknown dependencies, cycles and major-version drift against the entry point."""
    errors: List[OrchestratorError] = []
    names = [s.name for s in skills]

    for skill in skills:
        missing = [d for d in skill.dependencies if d not in names]
        if missing:
            errors.append(DependencyMissingError(skill.name, missing, names))

    cycles = find_cycles({s.name: list(s.dependencies) for s in skills})
    if cycles:
        errors.append(CircularDependencyError(cycles))

    root = next((s for s in skills if s.is_entry_point), None)
    if root is not None:
        for skill in skills:
            if skill is not root and skill.major_version != root.major_version:
                errors.append(VersionMismatchError(skill.name, root.version, skill.version))
    return errors


def _summary(counts: Dict[str, int], valid: bool) -> str:
    if counts.get(Severity.CRITICAL):
        return f"Installation invalid: {counts[Severity.CRITICAL]} critical error(s) found"
    if counts.get(Severity.HIGH):
        return f"Installation issues: {counts[Severity.HIGH]} high-priority error(s) found"
    if counts.get(Severity.MEDIUM):
        return f"Installation warnings: {counts[Severity.MEDIUM]} medium-priority issue(s) found"
    return "Installation valid - all checks passed" if valid else "Installation invalid"


def validate_installation(
    project_root: str | Path,
    settings: Optional[EarsSettings] = None,
    required_skills: Sequence[str] = REQUIRED_SKILLS,
) -> InstallationReport:
    cfg = settings or default_settings
    root = Path(project_root)
    ai_dir = root / cfg.AI_DIR
    issues: List[InstallationIssue] = []

    for rel in REQUIRED_DIRS:
        path = ai_dir / rel if rel else ai_dir
        if not path.is_dir():
            issues.append(InstallationIssue.from_error(MissingFilesError([str(path)]), str(path)))

    required_files = [ai_dir / SKILL_FILE]
    required_files += [ai_dir / "skills" / name / SKILL_FILE for name in required_skills]
    required_files += [ai_dir / MEMORY_DIR / name for name in MEMORY_FILES]
    for path in required_files:
        if not path.is_file():
            issues.append(InstallationIssue.from_error(MissingFilesError([str(path)]), str(path)))

    # Missing descriptors are already reported above
    discovery = discover_skills(root, cfg)
    for error in discovery.errors:
        if error.error_type != ErrorType.MISSING_FILES:
            issues.append(InstallationIssue.from_error(error))

    for name in MEMORY_FILES:
        path = ai_dir / MEMORY_DIR / name
        if not path.is_file():
            continue
        try:
            check_memory_file(path)
        except OrchestratorError as e:
            issues.append(InstallationIssue.from_error(e, str(path)))

    for error in dependency_errors(discovery.skills):
        issues.append(InstallationIssue.from_error(error))

    counts = {
        sev: sum(1 for i in issues if i.severity == sev)
        for sev in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM)
    }
    valid = not issues
    report = InstallationReport(
        project_root=str(root),
        valid=valid,
        issues=issues,
        skills=[s.name for s in discovery.skills],
        counts=counts,
        summary=_summary(counts, valid),
    )
    logger.info("Installation check %s: %s", root, report.summary)
    return report
