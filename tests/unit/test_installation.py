# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.
"""Unit tests for installation validation."""

import shutil

from ears_flow.core.errors import ErrorType, MissingFilesError
from ears_flow.kernel.installation import (
    InstallationIssue,
    Severity,
    find_cycles,
    validate_installation,
)


def write_skill(project, name, extra="", version="1.0.0"):
    path = project / ".ai" / "skills" / name / "SKILL.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"---\nname: {name}\ndescription: d\nversion: {version}\n{extra}---\n# {name}\n",
        encoding="utf-8",
    )


class TestFindCycles:
    def test_two_node_cycle(self):
        assert find_cycles({"a": ["b"], "b": ["a"]}) == [["a", "b", "a"]]

    def test_self_loop(self):
        assert find_cycles({"a": ["a"]}) == [["a", "a"]]

    def test_acyclic_and_unknown_deps(self):
        assert find_cycles({"a": ["b", "zzz"], "b": []}) == []

    def test_rotations_reported_once(self):
        cycles = find_cycles({"b": ["c"], "c": ["a"], "a": ["b"]})
        assert cycles == [["a", "b", "c", "a"]]


class TestValidateInstallation:
    def test_valid(self, ears_project, ears_settings):
        report = validate_installation(ears_project, ears_settings)
        assert report.valid
        assert report.issues == []
        assert report.summary == "Installation valid - all checks passed"
        assert len(report.skills) == 7

    def test_each_missing_entry_reported(self, ears_project, ears_settings):
        shutil.rmtree(ears_project / ".ai" / "templates")
        shutil.rmtree(ears_project / ".ai" / "skills" / "review")
        report = validate_installation(ears_project, ears_settings)
        missing = report.of_type(ErrorType.MISSING_FILES)
        assert len(missing) == 2
        assert missing[0].path.endswith("templates")
        assert missing[1].path.endswith("review/SKILL.md")
        assert report.counts[Severity.CRITICAL] == 2
        assert report.summary == "Installation invalid: 2 critical error(s) found"

    def test_empty_project(self, tmp_path, ears_settings):
        report = validate_installation(tmp_path, ears_settings)
        assert not report.valid
        # 4 dirs + root descriptor + 6 sub-skills + 2 memory files
        assert len(report.of_type(ErrorType.MISSING_FILES)) == 13

    def test_invalid_descriptor(self, ears_project, ears_settings):
        (ears_project / ".ai" / "skills" / "work" / "SKILL.md").write_text("nope", encoding="utf-8")
        report = validate_installation(ears_project, ears_settings)
        [issue] = report.issues
        assert issue.error_type == ErrorType.INVALID_YAML
        assert issue.severity == Severity.HIGH
        assert issue.path.endswith("work/SKILL.md")

    def test_missing_field(self, ears_project, ears_settings):
        path = ears_project / ".ai" / "skills" / "work" / "SKILL.md"
        path.write_text("---\nname: work\nversion: 1.0.0\n---\n", encoding="utf-8")
        [issue] = validate_installation(ears_project, ears_settings).issues
        assert issue.error_type == ErrorType.MISSING_FIELD
        assert issue.details["field"] == "description"

    def test_corrupted_memory(self, ears_project, ears_settings):
        (ears_project / ".ai" / "memory" / "lessons.md").write_text("", encoding="utf-8")
        report = validate_installation(ears_project, ears_settings)
        [issue] = report.issues
        assert issue.error_type == ErrorType.CORRUPTED_MEMORY
        assert report.summary == "Installation warnings: 1 medium-priority issue(s) found"

    def test_dependency_missing(self, ears_project, ears_settings):
        write_skill(ears_project, "planning", "phase: planning\ndependencies: [nonexistent]\n")
        [issue] = validate_installation(ears_project, ears_settings).issues
        assert issue.error_type == ErrorType.DEPENDENCY_MISSING
        assert issue.details["missing_deps"] == ["nonexistent"]

    def test_circular_dependency(self, ears_project, ears_settings):
        write_skill(ears_project, "planning", "dependencies: [work]\n")
        write_skill(ears_project, "work", "dependencies: [planning]\n")
        [issue] = validate_installation(ears_project, ears_settings).issues
        assert issue.error_type == ErrorType.CIRCULAR_DEPENDENCY
        assert issue.details["dependencies"] == [["planning", "work", "planning"]]

    def test_version_mismatch(self, ears_project, ears_settings):
        write_skill(ears_project, "review", version="2.0.0")
        [issue] = validate_installation(ears_project, ears_settings).issues
        assert issue.error_type == ErrorType.VERSION_MISMATCH
        assert issue.severity == Severity.MEDIUM
        assert issue.details["found_version"] == "2.0.0"

    def test_minor_version_drift_is_fine(self, ears_project, ears_settings):
        write_skill(ears_project, "review", version="1.4.2")
        assert validate_installation(ears_project, ears_settings).valid


class TestInstallationIssue:
    def test_to_report(self):
        issue = InstallationIssue.from_error(MissingFilesError([".ai/SKILL.md"]), ".ai/SKILL.md")
        report = issue.to_report()
        assert report.error_type == ErrorType.MISSING_FILES
        assert ".ai/SKILL.md" in report.message
