"""End-to-end tests for the skillmarket CLI."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from cli.skillmarket import __version__
from cli.skillmarket.cli import app

runner = CliRunner()


def invoke(install_root: Path, *args: str):
    return runner.invoke(app, ["--install-root", str(install_root), *args])


@pytest.fixture
def acme(install_root: Path, marketplace_dir: Path) -> str:
    result = invoke(install_root, "marketplace", "add", str(marketplace_dir), "--name", "acme")
    assert result.exit_code == 0, result.output
    return "acme"


class TestMarketplaceCommands:
    def test_add_and_list(self, install_root: Path, acme: str) -> None:
        result = invoke(install_root, "marketplace", "list")
        assert result.exit_code == 0
        assert "acme" in result.output

    def test_add_invalid_index(self, install_root: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad"
        bad.mkdir()
        (bad / "marketplace.json").write_text("[]")
        result = invoke(install_root, "marketplace", "add", str(bad))
        assert result.exit_code == 1
        assert "InvalidIndexFormat:" in result.output

    def test_remove_unknown(self, install_root: Path) -> None:
        result = invoke(install_root, "marketplace", "remove", "nowhere")
        assert result.exit_code == 1
        assert "UnknownMarketplace:" in result.output


class TestPluginCommands:
    def test_install_list_remove(self, install_root: Path, acme: str) -> None:
        result = invoke(install_root, "plugin", "install", "ui-polish@acme")
        assert result.exit_code == 0, result.output
        assert "Installed ui-polish 1.0.0" in result.output

        result = invoke(install_root, "plugin", "list")
        assert "ui-polish" in result.output

        result = invoke(install_root, "plugin", "remove", "ui-polish")
        assert result.exit_code == 0
        assert not (install_root / "plugins" / "ui-polish").exists()

    def test_remove_not_installed(self, install_root: Path) -> None:
        result = invoke(install_root, "plugin", "remove", "ghost")
        assert result.exit_code == 1
        assert "NotInstalled: plugin 'ghost' is not installed" in result.output

    def test_batch_install_partial_failure(self, install_root: Path, acme: str) -> None:
        result = invoke(install_root, "plugin", "install", "ui-polish@acme", "ghost@acme")
        assert result.exit_code == 1
        assert "Installed ui-polish" in result.output
        assert "PluginNotListed:" in result.output
        assert (install_root / "plugins" / "ui-polish").is_dir()

    def test_update(self, install_root: Path, acme: str) -> None:
        invoke(install_root, "plugin", "install", "strapi-tools@acme")
        result = invoke(install_root, "plugin", "update", "strapi-tools")
        assert result.exit_code == 0, result.output
        assert "strapi-tools is at 1.0.0" in result.output


class TestSkillsCommands:
    def test_match_prints_relevant_skill_context(self, install_root: Path, acme: str) -> None:
        invoke(install_root, "plugin", "install", "ui-polish@acme", "strapi-tools@acme")

        result = invoke(
            install_root,
            "skills",
            "match",
            "refactor this React button component for visual hierarchy",
            "--body",
        )

        assert result.exit_code == 0, result.output
        assert "## Skill: ui-polish:refactoring-ui" in result.output
        assert "strapi-plugin-dev" not in result.output

    def test_match_nothing(self, install_root: Path, acme: str) -> None:
        invoke(install_root, "plugin", "install", "ui-polish@acme")
        result = invoke(install_root, "skills", "match", "bake sourdough bread")
        assert result.exit_code == 0
        assert "No installed skill matches" in result.output

    def test_unknown_strategy(self, install_root: Path) -> None:
        result = invoke(install_root, "skills", "match", "anything", "--strategy", "embeddings")
        assert result.exit_code == 1

    def test_list(self, install_root: Path, acme: str) -> None:
        invoke(install_root, "plugin", "install", "strapi-tools@acme")
        result = invoke(install_root, "skills", "list")
        assert result.exit_code == 0
        assert "strapi" in result.output


class TestConfigCommands:
    def test_init_set_show(self, install_root: Path) -> None:
        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 0
        assert Path("skillmarket.toml").is_file()

        result = runner.invoke(app, ["config", "set", "matching.strategy", "bm25"])
        assert result.exit_code == 0, result.output
        assert 'strategy = "bm25"' in Path("skillmarket.toml").read_text()

        result = runner.invoke(app, ["config", "show", "matching"])
        assert result.exit_code == 0
        assert "bm25" in result.output

    def test_init_refuses_to_overwrite(self) -> None:
        runner.invoke(app, ["config", "init"])
        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 1

    def test_set_unknown_key(self) -> None:
        runner.invoke(app, ["config", "init"])
        result = runner.invoke(app, ["config", "set", "matching.colour", "blue"])
        assert result.exit_code == 1


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output
