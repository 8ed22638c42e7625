# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Shared test fixtures for all EARS-Flow tests.
"""

import uuid
from pathlib import Path

import pytest

from ears_flow.core.config import EarsSettings
from ears_flow.core.context import init_orchestrator_context
from ears_flow.core.metrics import session_metrics
from ears_flow.core.session import SessionState
from ears_flow.kernel.skill_registry import Skill
from ears_flow.memory.memory_logs import DECISIONS_TEMPLATE, LESSONS_TEMPLATE

ROOT_DESCRIPTOR = """---
name: ears-workflow
description: Use when the user asks for structured development with EARS requirements.
version: 1.0.0
---
# EARS Workflow

Orchestrates spec-forge, planning, work and review in sequence.
"""

SUB_SKILLS = {
    "spec-forge": "phase: spec-forge",
    "planning": "phase: planning",
    "work": "phase: work",
    "review": "phase: review",
    "git-worktree": "utility: true",
    "project-reset": "utility: true",
}


def sub_descriptor(name: str, extra: str, version: str = "1.0.0") -> str:
    return (
        "---\n"
        f"name: {name}\n"
        f"description: The {name} sub-skill.\n"
        f"version: {version}\n"
        f"{extra}\n"
        "---\n"
        f"# {name}\n\n"
        f"Instructions for {name}.\n"
    )


def write_installation(root: Path) -> Path:
    """Write a complete .ai installation under `root`."""
    ai = root / ".ai"
    (ai / "skills").mkdir(parents=True)
    (ai / "memory").mkdir()
    (ai / "templates").mkdir()
    (ai / "workflows").mkdir()

    (ai / "SKILL.md").write_text(ROOT_DESCRIPTOR, encoding="utf-8")
    for name, extra in SUB_SKILLS.items():
        d = ai / "skills" / name
        d.mkdir()
        (d / "SKILL.md").write_text(sub_descriptor(name, extra), encoding="utf-8")

    (ai / "memory" / "lessons.md").write_text(LESSONS_TEMPLATE, encoding="utf-8")
    (ai / "memory" / "decisions.md").write_text(DECISIONS_TEMPLATE, encoding="utf-8")

    (ai / "workflows" / "ears-workflow.md").write_text("# Workflow\n\n" + "step\n" * 40, encoding="utf-8")
    (ai / "templates" / "requirements-template.md").write_text(
        "# Requirements\n\nWHEN <trigger> THE SYSTEM SHALL <response>\n", encoding="utf-8",
    )
    return root


@pytest.fixture(autouse=True)
def reset_metrics():
    """Global metrics start empty for every test."""
    session_metrics.reset()
    yield
    session_metrics.reset()


@pytest.fixture
def ears_settings() -> EarsSettings:
    return EarsSettings(_env_file=None)


@pytest.fixture
def ears_project(tmp_path) -> Path:
    """A project directory with a full, valid installation."""
    project = tmp_path / "project"
    project.mkdir()
    return write_installation(project)


@pytest.fixture
def session(ears_project, ears_settings) -> SessionState:
    """A session over the fixture installation, with project isolation."""
    return SessionState.create(ears_project, ears_settings)


@pytest.fixture
def orchestrator(ears_settings):
    """Initialize the OrchestratorContext so API routes can resolve it."""
    return init_orchestrator_context(ears_settings)


@pytest.fixture
def make_skill():
    """Factory for in-memory skills."""

    def _make(name: str, tokens: int = 100, **kwargs) -> Skill:
        kwargs.setdefault("description", f"The {name} skill")
        kwargs.setdefault("body", f"# {name}")
        return Skill(name=name, estimated_tokens=tokens, **kwargs)

    return _make


@pytest.fixture
def mock_session_id() -> str:
    return str(uuid.uuid4())
