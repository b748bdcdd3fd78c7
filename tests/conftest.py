"""
Pytest configuration and fixtures.

Plugins and marketplaces are built on disk under ``tmp_path``; every test
gets its own install root.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest

import settings.config

REFACTORING_UI = (
    "Use when designing or refactoring UI: React components, layouts, spacing, "
    "color and visual hierarchy."
)
STRAPI_PLUGIN_DEV = (
    "Use when building a Strapi v5 plugin with the Document Service API, "
    "content types and admin panel extensions."
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """No user config, env overrides or cached config leak into tests."""
    for var in (
        "SKILLMARKET_HOME",
        "SKILLMARKET_FETCH_TIMEOUT",
        "SKILLMARKET_FETCH_ATTEMPTS",
        "SKILLMARKET_MATCH_STRATEGY",
        "SKILLMARKET_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    monkeypatch.setattr(settings.config, "_config", None)


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    return tmp_path / "home"


def write_plugin(
    directory: Path,
    name: str,
    version: str = "1.0.0",
    skills: dict[str, str] | None = None,
    manifest: dict[str, Any] | None = None,
    bodies: dict[str, str] | None = None,
) -> Path:
    """Create a plugin bundle at ``directory``.

    Args:
        directory: Bundle root to create
        name: Plugin name
        version: Plugin version
        skills: skill id -> trigger description
        manifest: Extra manifest keys
        bodies: skill id -> body text (default: a one-line instruction)
    """
    skills = skills or {}
    bodies = bodies or {}
    directory.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {"name": name, "version": version}
    if skills:
        data["skills"] = {"directory": "skills", "auto_discover": True}
    data.update(manifest or {})

    (directory / ".claude-plugin").mkdir(exist_ok=True)
    (directory / ".claude-plugin" / "plugin.json").write_text(json.dumps(data, indent=2))

    for skill_id, description in skills.items():
        skill_dir = directory / "skills" / skill_id
        skill_dir.mkdir(parents=True, exist_ok=True)
        body = bodies.get(skill_id, f"# {skill_id}\n\nInstructions for {skill_id}.\n")
        (skill_dir / "SKILL.md").write_text(
            f"---\nname: {skill_id}\ndescription: {json.dumps(description)}\n"
            f"allowed-tools: Read, Edit\n---\n{body}"
        )
    return directory


def write_marketplace(directory: Path, entries: dict[str, dict[str, Any]]) -> Path:
    """Create a marketplace directory with a flat ``marketplace.json``."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "marketplace.json").write_text(json.dumps(entries, indent=2))
    return directory


@pytest.fixture
def make_plugin(tmp_path: Path) -> Callable[..., Path]:
    """Factory: ``make_plugin("ui-polish", skills={...})`` -> bundle path."""

    def factory(name: str, *, where: str = "src", **kwargs: Any) -> Path:
        return write_plugin(tmp_path / where / name, name, **kwargs)

    return factory


@pytest.fixture
def ui_polish(make_plugin: Callable[..., Path]) -> Path:
    return make_plugin(
        "ui-polish",
        skills={"refactoring-ui": REFACTORING_UI},
        bodies={"refactoring-ui": "# Refactoring UI\n\nUse spacing to build hierarchy.\n"},
    )


@pytest.fixture
def strapi_tools(make_plugin: Callable[..., Path]) -> Path:
    return make_plugin(
        "strapi-tools",
        skills={"strapi-plugin-dev": STRAPI_PLUGIN_DEV},
    )


@pytest.fixture
def marketplace_dir(tmp_path: Path) -> Path:
    """A local marketplace listing ui-polish and strapi-tools with relative sources."""
    root = tmp_path / "acme-marketplace"
    write_plugin(
        root / "plugins" / "ui-polish",
        "ui-polish",
        skills={"refactoring-ui": REFACTORING_UI},
    )
    write_plugin(
        root / "plugins" / "strapi-tools",
        "strapi-tools",
        skills={"strapi-plugin-dev": STRAPI_PLUGIN_DEV},
    )
    return write_marketplace(
        root,
        {
            "ui-polish": {"source": "./plugins/ui-polish", "version": "1.0.0"},
            "strapi-tools": {"source": "./plugins/strapi-tools"},
        },
    )
