# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Skill Loader — Parse SKILL.md descriptors into Skill records.

A descriptor is markdown with a YAML frontmatter block:

    ---
    name: spec-forge
    description: Use when turning an idea into EARS requirements ...
    version: 1.0.0
    phase: spec-forge
    triggers:
      - spec forge
      - {phrase: requirements, match: exact}
    dependencies: [ears-workflow]
    ---
    # body ...

The installation keeps the entry-point descriptor at <AI_DIR>/SKILL.md and one
sub-skill per directory at <AI_DIR>/skills/<name>/SKILL.md.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.errors import (
    InvalidYAMLError,
    MissingFieldError,
    MissingFilesError,
    OrchestratorError,
    PermissionDeniedError,
)
from ears_flow.kernel.skill_registry import Skill, Trigger
from ears_flow.routing.triggers import default_triggers_for

logger = logging.getLogger("ears.skill_loader")

REQUIRED_FIELDS = ("name", "description", "version")
SKILL_FILE = "SKILL.md"
UTILITY_PHASE = "utility"

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)


def estimate_tokens(text: Optional[str], chars_per_token: int = 4) -> int:
    """Rough token estimate: one token per `chars_per_token` characters."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def split_frontmatter(content: str, source: str = "unknown") -> Tuple[Dict[str, Any], str]:
    """
    Split a descriptor into (metadata, body).

    Raises InvalidYAMLError when the block is absent, unparsable or not a mapping.
    """
    content = content.replace("\r\n", "\n")
    match = _FRONTMATTER_RE.match(content)
    if not match:
        raise InvalidYAMLError(source, "No YAML frontmatter found (file must start with '---')")

    try:
        meta = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        # problem_mark is 0-based and the block starts on file line 2
        line = mark.line + 2 if mark is not None else None
        raise InvalidYAMLError(source, str(e).splitlines()[0], line) from e

    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise InvalidYAMLError(source, "Frontmatter must be a mapping of key: value pairs")

    return meta, content[match.end():].strip()


def _parse_triggers(raw: Any, source: str) -> Tuple[Trigger, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        raise InvalidYAMLError(source, "'triggers' must be a list")

    triggers: List[Trigger] = []
    for item in raw:
        try:
            if isinstance(item, str):
                triggers.append(Trigger(phrase=item))
            elif isinstance(item, dict):
                triggers.append(Trigger(
                    phrase=str(item.get("phrase", "")),
                    match_kind=item.get("match", item.get("match_kind", "hyphenated")),
                ))
            else:
                raise InvalidYAMLError(source, f"Unsupported trigger entry: {item!r}")
        except ValidationError as e:
            raise InvalidYAMLError(source, f"Invalid trigger {item!r}: {e.errors()[0]['msg']}") from e
    return tuple(triggers)


def _as_name_list(raw: Any, key: str, source: str) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, list) and all(isinstance(x, str) for x in raw):
        return tuple(raw)
    raise InvalidYAMLError(source, f"'{key}' must be a list of skill names")


def parse_skill_descriptor(
    content: str,
    source: str = "unknown",
    *,
    is_entry_point: bool = False,
    chars_per_token: int = 4,
) -> Skill:
    """Parse descriptor text into a Skill. Raises InvalidYAMLError / MissingFieldError."""
    meta, body = split_frontmatter(content, source)

    for key in REQUIRED_FIELDS:
        value = meta.get(key)
        if value is None or str(value).strip() == "":
            raise MissingFieldError(source, key)

    name = str(meta["name"]).strip()
    phase = meta.get("phase")
    utility = bool(meta.get("bypasses_sequencing") or meta.get("utility") or phase == UTILITY_PHASE)
    if phase == UTILITY_PHASE:
        phase = None

    triggers = _parse_triggers(meta.get("triggers"), source)
    if not triggers:
        triggers = default_triggers_for(name)

    try:
        return Skill(
            name=name,
            description=" ".join(str(meta["description"]).split()),
            version=str(meta["version"]).strip(),
            triggers=triggers,
            estimated_tokens=estimate_tokens(content, chars_per_token),
            phase=str(phase) if phase else None,
            bypasses_sequencing=utility,
            is_entry_point=is_entry_point,
            dependencies=_as_name_list(meta.get("dependencies"), "dependencies", source),
            body=body,
            source_path=source,
        )
    except ValidationError as e:
        first = e.errors()[0]
        raise InvalidYAMLError(source, f"{'.'.join(str(p) for p in first['loc'])}: {first['msg']}") from e


def read_text(path: Path) -> str:
    """Read a UTF-8 file, mapping OS failures onto the error taxonomy."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise MissingFilesError([str(path)]) from e
    except PermissionError as e:
        raise PermissionDeniedError(str(path), "read") from e


def load_skill_file(path: Path, *, is_entry_point: bool = False, chars_per_token: int = 4) -> Skill:
    try:
        content = read_text(path)
    except UnicodeDecodeError as e:
        raise InvalidYAMLError(str(path), "descriptor is not valid UTF-8") from e
    return parse_skill_descriptor(
        content, str(path),
        is_entry_point=is_entry_point, chars_per_token=chars_per_token,
    )


@dataclass
class DiscoveryResult:
    """Skills found under an installation, plus per-file failures."""

    skills: List[Skill] = field(default_factory=list)
    errors: List[OrchestratorError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def skill_dirs(ai_dir: Path) -> List[Path]:
    """Sub-skill directories holding a descriptor, sorted by name ('_' prefixed skipped)."""
    skills_root = ai_dir / "skills"
    if not skills_root.is_dir():
        return []
    return sorted(
        d for d in skills_root.iterdir()
        if d.is_dir() and not d.name.startswith("_") and (d / SKILL_FILE).is_file()
    )


def discover_skills(
    project_root: str | Path,
    settings: Optional[EarsSettings] = None,
) -> DiscoveryResult:
    """
    Load every descriptor of an installation.

    A broken descriptor is reported in `errors` and skipped; the remaining
    skills still load.
    """
    cfg = settings or default_settings
    ai_dir = Path(project_root) / cfg.AI_DIR
    result = DiscoveryResult()

    candidates: List[Tuple[Path, bool]] = [(ai_dir / SKILL_FILE, True)]
    candidates.extend((d / SKILL_FILE, False) for d in skill_dirs(ai_dir))

    for path, is_entry in candidates:
        try:
            skill = load_skill_file(path, is_entry_point=is_entry, chars_per_token=cfg.CHARS_PER_TOKEN)
        except OrchestratorError as e:
            logger.warning("Skipping skill descriptor %s: %s", path, e.message)
            result.errors.append(e)
            continue
        result.skills.append(skill)

    logger.info(
        "Discovered %d skill(s) under %s (%d error(s))",
        len(result.skills), ai_dir, len(result.errors),
    )
    return result
