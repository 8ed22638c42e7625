# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Project Isolation — One identity per project directory.

Each project gets a ProjectRecord persisted as JSON in
<root>/<AI_DIR>/<PROJECT_STATE_FILE>. Its memory logs are stamped with the
project id so copied or shared memory can be detected:

    <!-- ears-flow project: 3f1c9a0d2b7e4c11-9a8b7c6d -->

Contamination between projects is any of:
  duplicate-project-id      two directories claim the same id
  shared-memory-content     byte-identical memory logs
  cross-project-reference   one project's memory mentions another's id
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.errors import PermissionDeniedError
from ears_flow.kernel.namespace import get_key, project_marker
from ears_flow.kernel.skill_loader import read_text
from ears_flow.memory.memory_logs import MemoryLogs

logger = logging.getLogger("ears.isolation")

_MARKER_RE = re.compile(r"<!-- ears-flow project: ([^\s>]+) -->\n?")


class ContaminationType:
    DUPLICATE_PROJECT_ID = "duplicate-project-id"
    SHARED_MEMORY_CONTENT = "shared-memory-content"
    CROSS_PROJECT_REFERENCE = "cross-project-reference"
    FOREIGN_STAMP = "foreign-stamp"
    MISSING_STAMP = "missing-stamp"
    MISSING_MEMORY_FILE = "missing-memory-file"
    PATH_MISMATCH = "path-mismatch"
    STATE_MISMATCH = "state-mismatch"
    CORRUPTED_MEMORY = "corrupted-memory"


class ProjectRecord(BaseModel):
    project_id: str
    project_path: str
    memory_files: List[str] = Field(default_factory=list)
    memory_file_fingerprints: Dict[str, str] = Field(default_factory=dict)
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class IsolationIssue(BaseModel):
    type: str
    message: str
    file: Optional[str] = None
    other_project: Optional[str] = None


class IsolationStatus(BaseModel):
    project_id: str
    project_path: str
    isolated: bool
    checks: Dict[str, bool]
    issues: List[IsolationIssue] = Field(default_factory=list)


class ContaminationReport(BaseModel):
    has_contamination: bool = False
    contamination_types: List[str] = Field(default_factory=list)
    affected_projects: List[str] = Field(default_factory=list)
    details: List[str] = Field(default_factory=list)

    def flag(self, kind: str, project: str, detail: str) -> None:
        self.has_contamination = True
        if kind not in self.contamination_types:
            self.contamination_types.append(kind)
        if project not in self.affected_projects:
            self.affected_projects.append(project)
        self.details.append(detail)


def generate_project_id(project_path: str | Path) -> str:
    """sha256 of the absolute path (16 hex) plus 8 random hex chars."""
    digest = hashlib.sha256(os.path.abspath(str(project_path)).encode("utf-8")).hexdigest()
    return f"{digest[:16]}-{secrets.token_hex(4)}"


def find_stamps(content: str) -> List[str]:
    return _MARKER_RE.findall(content)


def stamp_content(content: str, project_id: str) -> str:
    """Replace any project stamps with this project's, right after the first heading."""
    lines = _MARKER_RE.sub("", content).split("\n")
    insert_at = next((i + 1 for i, line in enumerate(lines) if line.startswith("#")), 0)
    lines.insert(insert_at, project_marker(project_id))
    return "\n".join(lines)


def _fingerprint(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ProjectIsolationManager:
    """Identity, stamping and contamination checks for one project directory."""

    def __init__(self, project_root: str | Path, settings: Optional[EarsSettings] = None) -> None:
        self._settings = settings or default_settings
        self.root = Path(project_root).resolve()
        self.ai_dir = self.root / self._settings.AI_DIR
        self.state_path = self.ai_dir / self._settings.PROJECT_STATE_FILE
        self.logs = MemoryLogs(self.ai_dir)
        self.record: Optional[ProjectRecord] = None

    @property
    def project_id(self) -> str:
        if self.record is None:
            raise RuntimeError("Project isolation not initialized. Call initialize() first.")
        return self.record.project_id

    # ── Persistence ─────────────────────────────────────────────

    def load_record(self) -> Optional[ProjectRecord]:
        """Stored record, or None when absent or unreadable as a ProjectRecord."""
        if not self.state_path.is_file():
            return None
        try:
            return ProjectRecord.model_validate_json(read_text(self.state_path))
        except ValidationError as e:
            logger.warning("Ignoring corrupt project state %s: %s", self.state_path, e.errors()[0]["msg"])
            return None
        except UnicodeDecodeError:
            logger.warning("Ignoring corrupt project state %s: not UTF-8", self.state_path)
            return None

    def _save(self) -> None:
        try:
            self.ai_dir.mkdir(parents=True, exist_ok=True)
            self.state_path.write_text(self.record.model_dump_json(indent=2), encoding="utf-8")
        except PermissionError as e:
            raise PermissionDeniedError(str(self.state_path), "write") from e

    def _stamp_memory(self) -> None:
        self.logs.ensure()
        files: List[str] = []
        fingerprints: Dict[str, str] = {}
        for path in self.logs.paths:
            original = self._read_log(path)
            if original is None:
                continue
            content = stamp_content(original, self.record.project_id)
            try:
                path.write_text(content, encoding="utf-8")
            except PermissionError as e:
                raise PermissionDeniedError(str(path), "write") from e
            rel = path.relative_to(self.root).as_posix()
            files.append(rel)
            fingerprints[rel] = _fingerprint(content)
        self.record = self.record.model_copy(update={
            "memory_files": files,
            "memory_file_fingerprints": fingerprints,
        })

    # ── Lifecycle ───────────────────────────────────────────────

    def initialize(self) -> ProjectRecord:
        """Load or create the project record, stamp the memory logs and persist."""
        self.record = self.load_record()
        if self.record is None:
            self.record = ProjectRecord(
                project_id=generate_project_id(self.root),
                project_path=str(self.root),
            )
            logger.info("New project identity %s for %s", self.record.project_id, self.root)
        self._stamp_memory()
        self._save()
        return self.record

    def reinitialize(self) -> ProjectRecord:
        """Issue a fresh id (e.g. after copying a project) and re-stamp everything."""
        old = self.record.project_id if self.record else None
        self.record = ProjectRecord(
            project_id=generate_project_id(self.root),
            project_path=str(self.root),
        )
        self._stamp_memory()
        self._save()
        logger.info("Project %s reinitialized as %s", old, self.record.project_id)
        return self.record

    def scoped_key(self, resource_type: str, resource_id: str) -> str:
        return get_key(self.project_id, resource_type, resource_id)

    def _read_log(self, path: Path) -> Optional[str]:
        """Log content, or None when the file is not valid UTF-8."""
        try:
            return read_text(path)
        except UnicodeDecodeError:
            logger.warning("Memory log %s is not valid UTF-8", path)
            return None

    def memory_contents(self) -> Dict[str, str]:
        """Memory log name -> content, for the logs that exist and decode."""
        contents: Dict[str, str] = {}
        for path in self.logs.paths:
            if path.is_file():
                text = self._read_log(path)
                if text is not None:
                    contents[path.name] = text
        return contents

    # ── Validation ──────────────────────────────────────────────

    def validate(self, others: Sequence[ProjectIsolationManager] = ()) -> IsolationStatus:
        pid = self.project_id
        issues: List[IsolationIssue] = []

        stored = self.load_record()
        state_ok = stored is not None and stored.project_id == pid
        if not state_ok:
            issues.append(IsolationIssue(
                type=ContaminationType.STATE_MISMATCH,
                message=f"Project state file missing or not owned by {pid}",
                file=str(self.state_path),
            ))

        path_ok = self.record.project_path == str(self.root)
        if not path_ok:
            issues.append(IsolationIssue(
                type=ContaminationType.PATH_MISMATCH,
                message=f"Record was created for {self.record.project_path}, project is at {self.root}",
            ))

        contents = self.memory_contents()
        memory_ok = True
        for path in self.logs.paths:
            content = contents.get(path.name)
            if content is None:
                memory_ok = False
                if path.is_file():
                    issues.append(IsolationIssue(
                        type=ContaminationType.CORRUPTED_MEMORY,
                        message=f"Memory file is not valid UTF-8: {path.name}", file=str(path),
                    ))
                else:
                    issues.append(IsolationIssue(
                        type=ContaminationType.MISSING_MEMORY_FILE,
                        message=f"Memory file missing: {path.name}", file=str(path),
                    ))
                continue
            stamps = find_stamps(content)
            if pid not in stamps:
                memory_ok = False
                issues.append(IsolationIssue(
                    type=ContaminationType.MISSING_STAMP,
                    message=f"{path.name} lacks this project's stamp", file=str(path),
                ))
            for foreign in sorted(set(stamps) - {pid}):
                memory_ok = False
                issues.append(IsolationIssue(
                    type=ContaminationType.FOREIGN_STAMP,
                    message=f"{path.name} carries the stamp of project {foreign}",
                    file=str(path), other_project=foreign,
                ))

        shared_ok = True
        for other in others:
            if other is self or other.root == self.root:
                continue
            for issue in self._compare(other, contents):
                shared_ok = False
                issues.append(issue)

        checks = {
            "state_file": state_ok,
            "project_path": path_ok,
            "memory_files": memory_ok,
            "no_shared_state": shared_ok,
        }
        status = IsolationStatus(
            project_id=pid,
            project_path=str(self.root),
            isolated=not issues,
            checks=checks,
            issues=issues,
        )
        if issues:
            logger.warning("Project %s isolation issues: %s", pid, ", ".join(i.type for i in issues))
        return status

    def _compare(self, other: ProjectIsolationManager, contents: Dict[str, str]) -> List[IsolationIssue]:
        issues: List[IsolationIssue] = []
        if other.record is None:
            return issues
        if other.project_id == self.project_id:
            issues.append(IsolationIssue(
                type=ContaminationType.DUPLICATE_PROJECT_ID,
                message=f"Project id {self.project_id} is also used by {other.root}",
                other_project=str(other.root),
            ))
        other_contents = other.memory_contents()
        for name, content in contents.items():
            if other_contents.get(name) == content:
                issues.append(IsolationIssue(
                    type=ContaminationType.SHARED_MEMORY_CONTENT,
                    message=f"Identical {name} content in {other.root}",
                    file=name, other_project=str(other.root),
                ))
            if other.project_id != self.project_id and other.project_id in content:
                issues.append(IsolationIssue(
                    type=ContaminationType.CROSS_PROJECT_REFERENCE,
                    message=f"{name} references project {other.project_id}",
                    file=name, other_project=other.project_id,
                ))
        return issues


def detect_contamination(managers: Iterable[ProjectIsolationManager]) -> ContaminationReport:
    """Cross-check a set of initialized projects against each other."""
    managers = list(managers)
    report = ContaminationReport()

    seen: Dict[str, Path] = {}
    for m in managers:
        if m.project_id in seen and seen[m.project_id] != m.root:
            report.flag(
                ContaminationType.DUPLICATE_PROJECT_ID, str(m.root),
                f"Duplicate project id {m.project_id} ({seen[m.project_id]} and {m.root})",
            )
        seen.setdefault(m.project_id, m.root)

    for i, m in enumerate(managers):
        contents = m.memory_contents()
        for other in managers[i + 1:]:
            if other.root == m.root:
                continue
            other_contents = other.memory_contents()
            for name, content in contents.items():
                if other_contents.get(name) == content:
                    report.flag(
                        ContaminationType.SHARED_MEMORY_CONTENT, str(m.root),
                        f"Identical {name} content between {m.root} and {other.root}",
                    )

    for m in managers:
        text = "\n".join(m.memory_contents().values())
        for other in managers:
            if other.project_id != m.project_id and other.project_id in text:
                report.flag(
                    ContaminationType.CROSS_PROJECT_REFERENCE, str(m.root),
                    f"Project {m.root} references {other.project_id}",
                )
    return report
