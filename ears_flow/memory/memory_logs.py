# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Memory Logs — Per-project lessons and decision records.

Two markdown files live under <AI_DIR>/memory/:

  lessons.md    "## Category" sections of
                "- When <action>, always <safeguard> to prevent <problem>."
  decisions.md  one "## Title" section per decision with
                **Status** / **Date** / **Context** / **Decision** / **Rationale**

They are append-only from the orchestrator's point of view.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ears_flow.core.errors import CorruptedMemoryError, PermissionDeniedError
from ears_flow.kernel.skill_loader import read_text

logger = logging.getLogger("ears.memory_logs")

MEMORY_DIR = "memory"
LESSONS_FILE = "lessons.md"
DECISIONS_FILE = "decisions.md"
MEMORY_FILES = (LESSONS_FILE, DECISIONS_FILE)

LESSONS_TEMPLATE = """# Lessons Learned

## How to Use This File

Each lesson follows the pattern:
"When <action>, always <safeguard> to prevent <problem>."

Add lessons under a category heading. Never rewrite existing lessons.

---

## Template for New Lessons

- When [doing X], always [ensure Y] to prevent [problem Z].
"""

DECISIONS_TEMPLATE = """# Architectural Decision Records

## How to Use This File

Record one decision per section with its status, date, context, decision
and rationale. Superseded decisions stay in place with an updated status.

---

## How to Add New Decisions

Copy the fields below into a new "## Title" section:

**Status**: Proposed | Accepted | Superseded
**Date**: YYYY-MM-DD
**Context**: ...
**Decision**: ...
**Rationale**: ...
"""

TEMPLATES = {LESSONS_FILE: LESSONS_TEMPLATE, DECISIONS_FILE: DECISIONS_TEMPLATE}

_TEMPLATE_SECTIONS = ("How to", "Template for")

_CATEGORY_RE = re.compile(r"^## (.+)$")
_LESSON_RE = re.compile(r"^- When (.+), always (.+) to prevent (.+)\.$")
_SECTION_SPLIT_RE = re.compile(r"^## ", re.MULTILINE)
_FIELD_RE = {
    name: re.compile(rf"\*\*{name.capitalize()}\*\*:\s*(.+)")
    for name in ("status", "date", "context", "decision", "rationale")
}


@dataclass(frozen=True)
class Lesson:
    category: str
    action: str
    safeguard: str
    prevention: str

    @property
    def text(self) -> str:
        return format_lesson(self.action, self.safeguard, self.prevention)


@dataclass(frozen=True)
class Decision:
    title: str
    status: Optional[str] = None
    date: Optional[str] = None
    context: Optional[str] = None
    decision: Optional[str] = None
    rationale: Optional[str] = None


def format_lesson(action: str, safeguard: str, prevention: str) -> str:
    return f"When {action}, always {safeguard} to prevent {prevention}."


def structural_issue(content: str) -> Optional[str]:
    """Why a memory file looks corrupted, or None when it passes."""
    if not content.strip():
        return "File is empty"
    if "#" not in content and len(content) > 100:
        return "No markdown headings found in a non-trivial file"
    return None


def check_memory_file(path: Path) -> str:
    """Read a memory file and return its content. Raises CorruptedMemoryError."""
    try:
        content = read_text(path)
    except UnicodeDecodeError as e:
        raise CorruptedMemoryError(str(path), "File is not valid UTF-8") from e
    issue = structural_issue(content)
    if issue:
        raise CorruptedMemoryError(str(path), issue)
    return content


def parse_lessons(content: str) -> List[Lesson]:
    lessons: List[Lesson] = []
    category: Optional[str] = None
    for line in content.splitlines():
        heading = _CATEGORY_RE.match(line)
        if heading:
            category = heading.group(1).strip()
            continue
        m = _LESSON_RE.match(line.rstrip())
        if m and category and not category.startswith(_TEMPLATE_SECTIONS):
            lessons.append(Lesson(category, m.group(1).strip(), m.group(2).strip(), m.group(3).strip()))
    return lessons


def parse_decisions(content: str) -> List[Decision]:
    """Sections carrying at least one decision field. Template sections are skipped."""
    decisions: List[Decision] = []
    for section in _SECTION_SPLIT_RE.split(content)[1:]:
        lines = section.splitlines()
        title = lines[0].strip() if lines else ""
        if not title or title.startswith(_TEMPLATE_SECTIONS):
            continue
        fields = {}
        for name, pattern in _FIELD_RE.items():
            for line in lines:
                m = pattern.search(line)
                if m:
                    fields[name] = m.group(1).strip()
                    break
        if fields:
            decisions.append(Decision(title=title, **fields))
    return decisions


def _write(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except PermissionError as e:
        raise PermissionDeniedError(str(path), "write") from e


class MemoryLogs:
    """Lessons and decisions of one installation."""

    def __init__(self, ai_dir: str | Path) -> None:
        self.memory_dir = Path(ai_dir) / MEMORY_DIR
        self.lessons_path = self.memory_dir / LESSONS_FILE
        self.decisions_path = self.memory_dir / DECISIONS_FILE

    @property
    def paths(self) -> List[Path]:
        return [self.lessons_path, self.decisions_path]

    def ensure(self) -> List[Path]:
        """Create missing memory files from templates. Returns the files created."""
        created = []
        try:
            self.memory_dir.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise PermissionDeniedError(str(self.memory_dir), "write") from e
        for path in self.paths:
            if not path.exists():
                _write(path, TEMPLATES[path.name])
                created.append(path)
                logger.info("Created memory file from template: %s", path)
        return created

    def load_lessons(self) -> List[Lesson]:
        return parse_lessons(check_memory_file(self.lessons_path))

    def load_decisions(self) -> List[Decision]:
        return parse_decisions(check_memory_file(self.decisions_path))

    def append_lesson(self, category: str, lesson: str) -> None:
        """Add a lesson line under `category`, creating the section when absent."""
        content = check_memory_file(self.lessons_path)
        header = f"## {category}"
        line = f"- {lesson}\n"

        start = content.find(header + "\n")
        if start < 0:
            block = f"{header}\n\n{line}\n---\n\n"
            anchor = content.find("## Template for New Lessons")
            if anchor >= 0:
                content = content[:anchor] + block + content[anchor:]
            else:
                content = content.rstrip("\n") + f"\n\n---\n\n{header}\n\n{line}"
        else:
            body_start = start + len(header)
            ends = [i for i in (content.find("\n## ", body_start), content.find("\n---\n", body_start)) if i >= 0]
            insert_at = min(ends) + 1 if ends else len(content)
            before = content[:insert_at].rstrip("\n") + "\n"
            rest = content[insert_at:]
            content = before + line + ("\n" + rest if rest else "")

        _write(self.lessons_path, content)
        logger.info("Lesson added to %s", category)

    def append_decision(
        self,
        title: str,
        status: str,
        date: str,
        context: str,
        decision: str,
        rationale: str,
    ) -> None:
        content = check_memory_file(self.decisions_path)
        entry = (
            f"## {title}\n\n"
            f"**Status**: {status}\n"
            f"**Date**: {date}\n"
            f"**Context**: {context}\n"
            f"**Decision**: {decision}\n"
            f"**Rationale**: {rationale}\n\n"
            "---\n\n"
        )
        anchor = -1
        for marker in ("## Maintenance", "## How to Add New Decisions"):
            anchor = content.find(marker)
            if anchor >= 0:
                break
        if anchor >= 0:
            content = content[:anchor] + entry + content[anchor:]
        else:
            content = content.rstrip("\n") + "\n\n" + entry
        _write(self.decisions_path, content)
        logger.info("Decision recorded: %s", title)
