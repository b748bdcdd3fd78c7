"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from settings.config import Config, get_config, load_config, reload_config


class TestLoadConfig:
    def test_defaults(self) -> None:
        config = load_config()
        assert config.paths.install_root_path == Path("~/.skillmarket").expanduser()
        assert config.fetch.max_attempts == 3
        assert config.matching.strategy == "overlap"
        assert config.matching.threshold is None

    def test_reads_file_from_parent_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "skillmarket.toml").write_text(
            '[fetch]\nmax_attempts = 5\n\n[matching]\nstrategy = "bm25"\nthreshold = 0.3\n'
        )
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        config = load_config()

        assert config.fetch.max_attempts == 5
        assert config.matching.strategy == "bm25"
        assert config.matching.threshold == 0.3

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "custom.toml"
        path.write_text('[paths]\ninstall_root = "/srv/skills"\n')
        monkeypatch.setenv("SKILLMARKET_HOME", str(tmp_path / "env-home"))
        monkeypatch.setenv("SKILLMARKET_FETCH_ATTEMPTS", "7")
        monkeypatch.setenv("SKILLMARKET_FETCH_TIMEOUT", "not-a-number")

        config = load_config(path)

        assert config.paths.install_root_path == tmp_path / "env-home"
        assert config.fetch.max_attempts == 7
        assert config.fetch.timeout == 60.0

    def test_unknown_keys_are_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "skillmarket.toml"
        path.write_text("[fetch]\nretries = 9\n")
        assert load_config(path).fetch == Config().fetch

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "skillmarket.toml"
        path.write_text("[fetch\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_to_dict_drops_unset_values(self) -> None:
        data = Config().to_dict()
        assert "threshold" not in data["matching"]
        assert data["fetch"]["max_workers"] == 4


def test_get_config_caches_until_reload(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_config()
    assert get_config() is first
    monkeypatch.setenv("SKILLMARKET_MATCH_STRATEGY", "bm25")
    assert get_config().matching.strategy == "overlap"
    assert reload_config().matching.strategy == "bm25"
