"""Tests for skill file parsing and discovery."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import REFACTORING_UI, write_plugin
from plugins.errors import InvalidFormat, MissingTriggerDescription
from plugins.manifest import load_manifest
from plugins.skill_files import discover_skills, validate_skill_descriptor


def _skill(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "refactoring-ui" / "SKILL.md"
    path.parent.mkdir(parents=True)
    path.write_text(text)
    return path


class TestValidateSkillDescriptor:
    def test_parses_front_matter_and_body(self, tmp_path: Path) -> None:
        path = _skill(
            tmp_path,
            "---\n"
            "name: refactoring-ui\n"
            "description: >\n"
            "  Use when refactoring\n"
            "  React components\n"
            "allowed-tools: [Read, Edit]\n"
            "---\n"
            "# Refactoring UI\n",
        )
        skill = validate_skill_descriptor(path, plugin_name="ui-polish")
        assert skill.skill_id == "refactoring-ui"
        assert skill.trigger_description == "Use when refactoring React components"
        assert skill.allowed_tools == frozenset({"Read", "Edit"})
        assert skill.body_content == "# Refactoring UI\n"
        assert skill.qualified_name == "ui-polish:refactoring-ui"

    def test_id_defaults_to_directory_name(self, tmp_path: Path) -> None:
        path = _skill(tmp_path, "---\ndescription: Polish layouts\n---\nbody\n")
        assert validate_skill_descriptor(path).skill_id == "refactoring-ui"

    def test_missing_description(self, tmp_path: Path) -> None:
        path = _skill(tmp_path, "---\nname: refactoring-ui\n---\nbody\n")
        with pytest.raises(MissingTriggerDescription):
            validate_skill_descriptor(path)

    def test_blank_description(self, tmp_path: Path) -> None:
        path = _skill(tmp_path, "---\nname: refactoring-ui\ndescription: '   '\n---\nbody\n")
        with pytest.raises(MissingTriggerDescription):
            validate_skill_descriptor(path)

    def test_no_front_matter(self, tmp_path: Path) -> None:
        path = _skill(tmp_path, "# Just markdown\n")
        with pytest.raises(InvalidFormat):
            validate_skill_descriptor(path)

    def test_unterminated_front_matter(self, tmp_path: Path) -> None:
        path = _skill(tmp_path, "---\nname: x\ndescription: y\n")
        with pytest.raises(InvalidFormat):
            validate_skill_descriptor(path)


class TestDiscoverSkills:
    def test_discovers_declared_skills_in_order(self, tmp_path: Path) -> None:
        root = write_plugin(
            tmp_path / "ui-polish",
            "ui-polish",
            skills={"typography": "Pick type scales", "refactoring-ui": REFACTORING_UI},
        )
        skills = discover_skills(root, load_manifest(root))
        assert [s.skill_id for s in skills] == ["refactoring-ui", "typography"]
        assert all(s.plugin_name == "ui-polish" for s in skills)

    def test_no_skills_capability(self, tmp_path: Path) -> None:
        root = write_plugin(tmp_path / "bare", "bare")
        (root / "skills" / "orphan").mkdir(parents=True)
        (root / "skills" / "orphan" / "SKILL.md").write_text("---\ndescription: x\n---\n")
        assert discover_skills(root, load_manifest(root)) == []

    def test_duplicate_skill_id(self, tmp_path: Path) -> None:
        root = write_plugin(tmp_path / "ui-polish", "ui-polish", skills={"a": "first"})
        (root / "skills" / "b.md").write_text("---\nname: a\ndescription: second\n---\n")
        with pytest.raises(InvalidFormat, match="duplicate"):
            discover_skills(root, load_manifest(root))
