# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Error Taxonomy — Typed failures and user-facing structured reports.

Components raise an OrchestratorError subclass at the point of detection.
Boundaries (router, phase context manager, installation validator, HTTP API)
convert it into an ErrorReport carrying the exact path / key / prerequisite
involved, troubleshooting steps and recovery actions.

BudgetInvariantError is not an OrchestratorError: it signals a programming
error and propagates.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field


class ErrorType:
    """Error type constants (wire values)."""

    MISSING_FILES = "missing-files"
    INVALID_YAML = "invalid-yaml"
    MISSING_FIELD = "missing-field"
    CORRUPTED_MEMORY = "corrupted-memory"
    PERMISSION_DENIED = "permission-denied"
    CONTEXT_OVERFLOW = "context-overflow"
    SEQUENCE_VIOLATION = "sequence-violation"
    DEPENDENCY_MISSING = "dependency-missing"
    VERSION_MISMATCH = "version-mismatch"
    ANALYSIS_ERROR = "analysis-error"
    CIRCULAR_DEPENDENCY = "circular-dependency"
    UNKNOWN_SKILL = "unknown-skill"


# ── Exceptions ──────────────────────────────────────────────────


class OrchestratorError(Exception):
    """Base class for recoverable orchestration failures."""

    error_type: str = "orchestrator-error"

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)

    def to_report(self) -> "ErrorReport":
        return build_error_report(self.error_type, self.context)


class MissingFilesError(OrchestratorError):
    error_type = ErrorType.MISSING_FILES

    def __init__(self, missing: Sequence[str]) -> None:
        missing = list(missing)
        super().__init__(f"Missing required file(s): {', '.join(missing)}", missing=missing)


class InvalidYAMLError(OrchestratorError):
    error_type = ErrorType.INVALID_YAML

    def __init__(self, file: str, yaml_error: str, line_number: Optional[int] = None) -> None:
        super().__init__(
            f"Invalid frontmatter in {file}: {yaml_error}",
            file=file, yaml_error=yaml_error, line_number=line_number,
        )


class MissingFieldError(InvalidYAMLError):
    error_type = ErrorType.MISSING_FIELD

    def __init__(self, file: str, field: str) -> None:
        super().__init__(file, f"Missing required field: {field}")
        self.context["field"] = field


class CorruptedMemoryError(OrchestratorError):
    error_type = ErrorType.CORRUPTED_MEMORY

    def __init__(self, file: str, details: str) -> None:
        super().__init__(f"Corrupted memory file {file}: {details}", file=file, details=details)


class PermissionDeniedError(OrchestratorError):
    error_type = ErrorType.PERMISSION_DENIED

    def __init__(self, path: str, operation: str = "read") -> None:
        super().__init__(f"Permission denied ({operation}): {path}", path=path, operation=operation)


class ContextOverflowError(OrchestratorError):
    error_type = ErrorType.CONTEXT_OVERFLOW

    def __init__(self, key: str, requested: int, token_count: int, limit: int) -> None:
        super().__init__(
            f"Cannot admit '{key}' ({requested} tokens): "
            f"{token_count} in use, limit {limit}, eviction could not free enough",
            key=key, requested=requested, token_count=token_count, limit=limit,
        )


class UnknownSkillError(OrchestratorError):
    error_type = ErrorType.UNKNOWN_SKILL

    def __init__(self, skill: str, available: Sequence[str] = ()) -> None:
        super().__init__(
            f"Skill '{skill}' not found",
            skill=skill, available_skills=list(available),
        )


class SequenceViolationError(OrchestratorError):
    error_type = ErrorType.SEQUENCE_VIOLATION

    def __init__(self, phase: str, missing_phases: Sequence[str]) -> None:
        missing_phases = list(missing_phases)
        super().__init__(
            f"Phase '{phase}' requires completing: {', '.join(missing_phases)}",
            phase=phase, missing_phases=missing_phases,
        )


class DependencyMissingError(OrchestratorError):
    error_type = ErrorType.DEPENDENCY_MISSING

    def __init__(self, skill: str, missing_deps: Sequence[str], available: Sequence[str] = ()) -> None:
        super().__init__(
            f"Skill '{skill}' depends on unavailable skill(s): {', '.join(missing_deps)}",
            skill=skill, missing_deps=list(missing_deps), available_skills=list(available),
        )


class VersionMismatchError(OrchestratorError):
    error_type = ErrorType.VERSION_MISMATCH

    def __init__(self, skill: str, expected_version: str, found_version: str) -> None:
        super().__init__(
            f"Skill '{skill}' version {found_version} is incompatible with {expected_version}",
            skill=skill, expected_version=expected_version, found_version=found_version,
        )


class CircularDependencyError(OrchestratorError):
    error_type = ErrorType.CIRCULAR_DEPENDENCY

    def __init__(self, cycles: Sequence[Sequence[str]]) -> None:
        cycles = [list(c) for c in cycles]
        super().__init__(
            "Circular dependencies: " + "; ".join(" -> ".join(c) for c in cycles),
            dependencies=cycles,
        )


class BudgetInvariantError(RuntimeError):
    """Tracked tokens exceeded the hard ceiling. Never recovered."""


# ── Structured reports ──────────────────────────────────────────


class ErrorReport(BaseModel):
    """User-facing, self-serve description of a failure."""

    error_type: str
    message: str
    troubleshooting: List[str] = Field(default_factory=list)
    recovery: List[str] = Field(default_factory=list)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
    )
    details: Dict[str, Any] = Field(default_factory=dict)


def _bullets(items: Sequence[Any]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _missing_files_message(ctx: Dict[str, Any]) -> str:
    missing = ctx.get("missing") or []
    return (
        "Activation Failed: Missing Files\n\n"
        "The skill package is incomplete. Missing:\n"
        f"{_bullets(missing) if missing else '- (no path reported)'}"
    )


def _invalid_yaml_message(ctx: Dict[str, Any]) -> str:
    line = f"\nLine: {ctx['line_number']}" if ctx.get("line_number") else ""
    return (
        "Activation Failed: Invalid Metadata\n\n"
        f"File: {ctx.get('file', 'unknown')}\n"
        f"Error: {ctx.get('yaml_error', 'YAML parsing failed')}{line}"
    )


def _missing_field_message(ctx: Dict[str, Any]) -> str:
    return (
        "Activation Failed: Missing Metadata Field\n\n"
        f"File: {ctx.get('file', 'unknown')}\n"
        f"Field: {ctx.get('field', 'unknown')} (required: name, description, version)"
    )


def _corrupted_memory_message(ctx: Dict[str, Any]) -> str:
    return (
        "Activation Failed: Corrupted Memory File\n\n"
        f"File: {ctx.get('file', 'unknown')}\n"
        f"Issue: {ctx.get('details', 'structural check failed')}\n\n"
        "Resetting the file loses accumulated lessons and decisions."
    )


def _permission_message(ctx: Dict[str, Any]) -> str:
    return (
        "Activation Failed: Permission Denied\n\n"
        f"Path: {ctx.get('path', 'unknown')}\n"
        f"Operation: {ctx.get('operation', 'read')}"
    )


def _context_overflow_message(ctx: Dict[str, Any]) -> str:
    return (
        "Activation Warning: Context Limit\n\n"
        f"Requested: {ctx.get('key', 'unknown')} ({ctx.get('requested', '?')} tokens)\n"
        f"Current tokens: {ctx.get('token_count', '?')}\n"
        f"Limit: {ctx.get('limit', '?')}"
    )


def _sequence_message(ctx: Dict[str, Any]) -> str:
    missing = ctx.get("missing_phases") or []
    return (
        "Phase Sequence Guidance\n\n"
        f"Requested phase: {ctx.get('phase', 'unknown')}\n"
        f"Missing phases: {' -> '.join(missing)}\n"
        f"Recommended next step: {missing[0] if missing else 'none'}"
    )


def _dependency_message(ctx: Dict[str, Any]) -> str:
    available = ", ".join(ctx.get("available_skills") or []) or "none detected"
    return (
        "Activation Failed: Missing Dependencies\n\n"
        f"Skill: {ctx.get('skill', 'unknown')}\n"
        f"{_bullets(ctx.get('missing_deps') or [])}\n\n"
        f"Available skills: {available}"
    )


def _version_message(ctx: Dict[str, Any]) -> str:
    return (
        "Activation Failed: Version Mismatch\n\n"
        f"Skill: {ctx.get('skill', 'unknown')}\n"
        f"Expected: {ctx.get('expected_version', 'unknown')}\n"
        f"Found: {ctx.get('found_version', 'unknown')}"
    )


def _circular_message(ctx: Dict[str, Any]) -> str:
    cycles = ctx.get("dependencies") or []
    return (
        "Activation Failed: Circular Dependencies\n\n"
        + _bullets(" -> ".join(c) for c in cycles)
    )


def _unknown_skill_message(ctx: Dict[str, Any]) -> str:
    available = ", ".join(ctx.get("available_skills") or []) or "none registered"
    return (
        f"Activation Failed: Unknown Skill '{ctx.get('skill', 'unknown')}'\n\n"
        f"Available skills: {available}"
    )


def _analysis_message(ctx: Dict[str, Any]) -> str:
    text = str(ctx.get("input", ""))
    snippet = text[:50] + ("..." if len(text) > 50 else "")
    return (
        "Activation Error: Failed to analyze input\n\n"
        f"Error: {ctx.get('error_message', 'unknown')}\n"
        f'Input: "{snippet}"'
    )


_MESSAGES: Dict[str, Callable[[Dict[str, Any]], str]] = {
    ErrorType.MISSING_FILES: _missing_files_message,
    ErrorType.INVALID_YAML: _invalid_yaml_message,
    ErrorType.MISSING_FIELD: _missing_field_message,
    ErrorType.CORRUPTED_MEMORY: _corrupted_memory_message,
    ErrorType.PERMISSION_DENIED: _permission_message,
    ErrorType.CONTEXT_OVERFLOW: _context_overflow_message,
    ErrorType.SEQUENCE_VIOLATION: _sequence_message,
    ErrorType.DEPENDENCY_MISSING: _dependency_message,
    ErrorType.VERSION_MISMATCH: _version_message,
    ErrorType.CIRCULAR_DEPENDENCY: _circular_message,
    ErrorType.UNKNOWN_SKILL: _unknown_skill_message,
    ErrorType.ANALYSIS_ERROR: _analysis_message,
}

_TROUBLESHOOTING: Dict[str, List[str]] = {
    ErrorType.MISSING_FILES: [
        "Verify the .ai directory exists in your project root",
        "Check that every listed SKILL.md file is present",
        "Run installation validation to list each missing entry",
    ],
    ErrorType.INVALID_YAML: [
        "Open the listed SKILL.md file",
        "Check frontmatter syntax: indentation (spaces, not tabs), quotes, brackets",
        "Frontmatter must start and end with a '---' line",
    ],
    ErrorType.MISSING_FIELD: [
        "Add the listed field to the SKILL.md frontmatter",
        "Required fields: name (kebab-case), description, version (x.y.z)",
    ],
    ErrorType.CORRUPTED_MEMORY: [
        "Open the listed memory file and check it is readable markdown",
        "Make sure it has a '#' title and is not empty",
    ],
    ErrorType.PERMISSION_DENIED: [
        "Check read permissions on the listed path",
        "Ensure your user can read the .ai directory",
    ],
    ErrorType.CONTEXT_OVERFLOW: [
        "Activate the specific sub-skill you need instead of the full workflow",
        "Deactivate skills you no longer use",
        "Unload supporting files that belong to earlier phases",
    ],
    ErrorType.SEQUENCE_VIOLATION: [
        "Complete the missing phases in order",
        "Start with the recommended next phase",
    ],
    ErrorType.DEPENDENCY_MISSING: [
        "Check that each dependency has a skills/<name>/SKILL.md",
        "Check for typos in the dependencies list",
    ],
    ErrorType.VERSION_MISMATCH: [
        "Compare the listed skill version with the root SKILL.md version",
    ],
    ErrorType.CIRCULAR_DEPENDENCY: [
        "Remove one edge from every listed cycle",
    ],
    ErrorType.UNKNOWN_SKILL: [
        "Use one of the available skill names",
        "Check that the skill's SKILL.md was discovered",
    ],
    ErrorType.ANALYSIS_ERROR: [
        "Try rephrasing your request",
        "Check the logs for the full stack trace",
    ],
}

_RECOVERY: Dict[str, List[str]] = {
    ErrorType.MISSING_FILES: [
        "Reinstall the complete skill package",
        "Copy the missing files from a working installation",
    ],
    ErrorType.INVALID_YAML: [
        "Fix the frontmatter manually",
        "Restore the file from a backup or template",
    ],
    ErrorType.MISSING_FIELD: [
        "Add the missing field and retry",
    ],
    ErrorType.CORRUPTED_MEMORY: [
        "Restore the memory file from backup",
        "Reset it to the template (loses history)",
    ],
    ErrorType.CONTEXT_OVERFLOW: [
        "Free context space and retry the activation",
    ],
    ErrorType.SEQUENCE_VIOLATION: [
        "Enter the suggested phase",
    ],
    ErrorType.ANALYSIS_ERROR: [
        "Retry with an explicit skill name (e.g. 'use spec-forge')",
    ],
}

_DEFAULT_TROUBLESHOOTING = [
    "Check the skill installation",
    "Verify all required files are present and readable",
]
_DEFAULT_RECOVERY = [
    "Retry the activation",
]


def build_error_report(
    error_type: str,
    context: Optional[Dict[str, Any]] = None,
) -> ErrorReport:
    """Build a structured report for an error type and its context."""
    ctx = dict(context or {})
    formatter = _MESSAGES.get(error_type)
    message = formatter(ctx) if formatter else f"Activation Failed: {error_type}"
    return ErrorReport(
        error_type=error_type,
        message=message,
        troubleshooting=list(_TROUBLESHOOTING.get(error_type, _DEFAULT_TROUBLESHOOTING)),
        recovery=list(_RECOVERY.get(error_type, _DEFAULT_RECOVERY)),
        details=ctx,
    )
