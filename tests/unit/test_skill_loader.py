# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.
"""Unit tests for SKILL.md parsing and discovery."""

import pytest

from ears_flow.core.errors import ErrorType, InvalidYAMLError, MissingFieldError, MissingFilesError
from ears_flow.kernel.skill_loader import (
    discover_skills,
    estimate_tokens,
    parse_skill_descriptor,
    read_text,
    split_frontmatter,
)

DESCRIPTOR = """---
name: spec-forge
description: >
  Use when turning an idea
  into EARS requirements.
version: 1.2.0
phase: spec-forge
triggers:
  - spec forge
  - {phrase: requirements, match: exact}
dependencies: [ears-workflow]
---
# Spec Forge

Body text.
"""


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0

    def test_rounds_up(self):
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcdef", chars_per_token=3) == 2


class TestSplitFrontmatter:
    def test_splits_meta_and_body(self):
        meta, body = split_frontmatter("---\nname: x\n---\n# Body\n")
        assert meta == {"name": "x"}
        assert body == "# Body"

    def test_crlf(self):
        meta, _ = split_frontmatter("---\r\nname: x\r\n---\r\nbody")
        assert meta["name"] == "x"

    def test_missing_block(self):
        with pytest.raises(InvalidYAMLError):
            split_frontmatter("# No frontmatter\n")

    def test_broken_yaml_reports_line(self):
        with pytest.raises(InvalidYAMLError) as exc:
            split_frontmatter("---\nname: x\ntriggers: [a, b\n---\n", "f.md")
        assert exc.value.context["file"] == "f.md"
        assert exc.value.context["line_number"] is not None

    def test_non_mapping(self):
        with pytest.raises(InvalidYAMLError):
            split_frontmatter("---\n- a\n- b\n---\n")


class TestParseSkillDescriptor:
    def test_full_descriptor(self):
        skill = parse_skill_descriptor(DESCRIPTOR, "skills/spec-forge/SKILL.md")
        assert skill.name == "spec-forge"
        assert skill.description == "Use when turning an idea into EARS requirements."
        assert skill.version == "1.2.0"
        assert skill.phase == "spec-forge"
        assert skill.dependencies == ("ears-workflow",)
        assert [(t.phrase, t.match_kind) for t in skill.triggers] == [
            ("spec forge", "hyphenated"),
            ("requirements", "exact"),
        ]
        assert skill.estimated_tokens == estimate_tokens(DESCRIPTOR)
        assert skill.body.startswith("# Spec Forge")
        assert not skill.is_entry_point

    def test_missing_required_field(self):
        with pytest.raises(MissingFieldError) as exc:
            parse_skill_descriptor("---\nname: work\ndescription: d\n---\n", "w.md")
        assert exc.value.context["field"] == "version"

    def test_default_triggers_when_none_declared(self):
        skill = parse_skill_descriptor("---\nname: review\ndescription: d\nversion: 1.0.0\n---\n")
        assert "code review" in [t.phrase for t in skill.triggers]

    def test_utility_flag(self):
        skill = parse_skill_descriptor(
            "---\nname: git-worktree\ndescription: d\nversion: 1.0.0\nphase: utility\n---\n"
        )
        assert skill.bypasses_sequencing
        assert skill.phase is None

    def test_bad_name_is_invalid_yaml(self):
        with pytest.raises(InvalidYAMLError) as exc:
            parse_skill_descriptor("---\nname: Bad Name\ndescription: d\nversion: 1.0.0\n---\n")
        assert exc.value.error_type == ErrorType.INVALID_YAML

    def test_bad_triggers_type(self):
        with pytest.raises(InvalidYAMLError):
            parse_skill_descriptor("---\nname: work\ndescription: d\nversion: 1.0.0\ntriggers: {a: 1}\n---\n")


class TestDiscovery:
    def test_read_text_missing(self, tmp_path):
        with pytest.raises(MissingFilesError):
            read_text(tmp_path / "absent.md")

    def test_discovers_installation(self, ears_project, ears_settings):
        result = discover_skills(ears_project, ears_settings)
        assert result.ok
        names = [s.name for s in result.skills]
        assert names[0] == "ears-workflow"
        assert result.skills[0].is_entry_point
        assert sorted(names[1:]) == names[1:]
        assert len(names) == 7

    def test_broken_descriptor_is_skipped(self, ears_project, ears_settings):
        path = ears_project / ".ai" / "skills" / "review" / "SKILL.md"
        path.write_text("no frontmatter", encoding="utf-8")
        result = discover_skills(ears_project, ears_settings)
        assert "review" not in [s.name for s in result.skills]
        assert len(result.skills) == 6
        assert [e.error_type for e in result.errors] == [ErrorType.INVALID_YAML]

    def test_non_utf8_descriptor_is_skipped(self, ears_project, ears_settings):
        path = ears_project / ".ai" / "skills" / "work" / "SKILL.md"
        path.write_bytes(b"\xff\xfe\x00garbage")
        result = discover_skills(ears_project, ears_settings)
        assert "work" not in [s.name for s in result.skills]
        assert [e.error_type for e in result.errors] == [ErrorType.INVALID_YAML]

    def test_missing_root_descriptor(self, ears_project, ears_settings):
        (ears_project / ".ai" / "SKILL.md").unlink()
        result = discover_skills(ears_project, ears_settings)
        assert result.errors[0].error_type == ErrorType.MISSING_FILES

    def test_underscore_dirs_skipped(self, ears_project, ears_settings):
        hidden = ears_project / ".ai" / "skills" / "_shared"
        hidden.mkdir()
        (hidden / "SKILL.md").write_text("broken", encoding="utf-8")
        assert discover_skills(ears_project, ears_settings).ok
