"""Tests for the marketplace registry and the plugin manager."""

from __future__ import annotations

import json
import tarfile
from pathlib import Path

import httpx
import pytest

from conftest import REFACTORING_UI, write_marketplace, write_plugin
from marketplace.registry import MarketplaceRegistry
from plugins.errors import (
    InvalidIndexFormat,
    InvalidManifestFormat,
    NameCollision,
    NotFound,
    NotInstalled,
    PluginNotListed,
    UnknownMarketplace,
)
from plugins.fetcher import Fetcher
from plugins.manager import PluginManager


@pytest.fixture
def registry(install_root: Path) -> MarketplaceRegistry:
    return MarketplaceRegistry(install_root, Fetcher(install_root))


@pytest.fixture
def manager(install_root: Path) -> PluginManager:
    return PluginManager.from_root(install_root)


class TestMarketplaceRegistry:
    def test_add_local_directory(self, registry: MarketplaceRegistry, marketplace_dir: Path) -> None:
        known = registry.add(str(marketplace_dir))

        assert known.name == "acme-marketplace"
        assert known.plugin_count == 2
        assert [mp.name for mp in registry.list_marketplaces()] == ["acme-marketplace"]

        entry, marketplace = registry.resolve("ui-polish@acme-marketplace")
        assert marketplace == "acme-marketplace"
        assert entry.source == str((marketplace_dir / "plugins" / "ui-polish").resolve())

    def test_add_with_explicit_name(self, registry: MarketplaceRegistry, marketplace_dir: Path) -> None:
        registry.add(str(marketplace_dir), name="acme")
        assert registry.get("acme").ref == str(marketplace_dir)

    def test_name_taken_by_other_ref(
        self, registry: MarketplaceRegistry, marketplace_dir: Path, tmp_path: Path
    ) -> None:
        registry.add(str(marketplace_dir), name="acme")
        other = write_marketplace(tmp_path / "other", {"x": {"source": "./x"}})
        with pytest.raises(NameCollision):
            registry.add(str(other), name="acme")
        assert registry.get("acme").ref == str(marketplace_dir)

    def test_re_add_same_ref_refreshes(
        self, registry: MarketplaceRegistry, marketplace_dir: Path
    ) -> None:
        first = registry.add(str(marketplace_dir), name="acme")
        again = registry.add(str(marketplace_dir), name="acme")
        assert again.added_at == first.added_at
        assert again.updated_at is not None

    def test_invalid_index_is_not_registered(
        self, registry: MarketplaceRegistry, tmp_path: Path
    ) -> None:
        bad = tmp_path / "bad"
        bad.mkdir()
        (bad / "marketplace.json").write_text('{"ui-polish": {"version": "1.0.0"}}')
        with pytest.raises(InvalidIndexFormat):
            registry.add(str(bad))
        assert registry.list_marketplaces() == []

    def test_missing_path(self, registry: MarketplaceRegistry, tmp_path: Path) -> None:
        with pytest.raises(NotFound):
            registry.add(str(tmp_path / "nowhere"))

    def test_update_picks_up_new_entries(
        self, registry: MarketplaceRegistry, marketplace_dir: Path
    ) -> None:
        registry.add(str(marketplace_dir), name="acme")
        index = json.loads((marketplace_dir / "marketplace.json").read_text())
        index["new-plugin"] = {"source": "./plugins/new-plugin"}
        (marketplace_dir / "marketplace.json").write_text(json.dumps(index))

        with pytest.raises(PluginNotListed):
            registry.resolve("new-plugin@acme")
        refreshed = registry.update("acme")

        assert refreshed.plugin_count == 3
        assert registry.resolve("new-plugin@acme")[1] == "acme"

    def test_cached_index_is_stable_until_update(
        self, registry: MarketplaceRegistry, marketplace_dir: Path
    ) -> None:
        registry.add(str(marketplace_dir), name="acme")
        (marketplace_dir / "marketplace.json").write_text("{broken")
        assert "ui-polish" in registry.get_index("acme")
        with pytest.raises(InvalidIndexFormat):
            registry.update("acme")
        assert "ui-polish" in registry.get_index("acme")

    def test_resolve_errors(self, registry: MarketplaceRegistry, marketplace_dir: Path) -> None:
        with pytest.raises(UnknownMarketplace):
            registry.resolve("ui-polish@nowhere")
        registry.add(str(marketplace_dir), name="acme")
        with pytest.raises(PluginNotListed):
            registry.resolve("ghost@acme")
        with pytest.raises(PluginNotListed):
            registry.resolve("ghost")

    def test_bare_name_ambiguous_across_marketplaces(
        self, registry: MarketplaceRegistry, marketplace_dir: Path, tmp_path: Path
    ) -> None:
        registry.add(str(marketplace_dir), name="acme")
        assert registry.resolve("ui-polish")[1] == "acme"

        other = write_marketplace(tmp_path / "mirror", {"ui-polish": {"source": "./ui"}})
        registry.add(str(other), name="mirror")
        with pytest.raises(NameCollision):
            registry.resolve("ui-polish")

    def test_remove(self, registry: MarketplaceRegistry, marketplace_dir: Path, install_root: Path) -> None:
        registry.add(str(marketplace_dir), name="acme")
        registry.remove("acme")
        assert registry.list_marketplaces() == []
        assert not (install_root / "marketplaces" / "acme").exists()
        with pytest.raises(UnknownMarketplace):
            registry.remove("acme")

    def test_add_index_url(self, install_root: Path) -> None:
        body = json.dumps(
            {
                "name": "remote",
                "plugins": [{"name": "ui-polish", "source": "bundles/ui-polish.tar.gz"}],
            }
        ).encode()

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == "https://market.example.com/v1/marketplace.json"
            return httpx.Response(200, content=body)

        fetcher = Fetcher(install_root, transport=httpx.MockTransport(handler))
        registry = MarketplaceRegistry(install_root, fetcher)
        known = registry.add("https://market.example.com/v1/marketplace.json")

        assert known.name == "remote"
        entry, _ = registry.resolve("ui-polish@remote")
        assert entry.source == "https://market.example.com/v1/bundles/ui-polish.tar.gz"


class TestPluginManager:
    def test_install_from_marketplace(
        self, manager: PluginManager, marketplace_dir: Path, install_root: Path
    ) -> None:
        manager.registry.add(str(marketplace_dir), name="acme")

        results = manager.install(["ui-polish@acme"])

        assert [r.ok for r in results] == [True]
        record = results[0].record
        assert record.plugin_name == "ui-polish"
        assert record.installed_version == "1.0.0"
        assert record.marketplace == "acme"
        assert (install_root / "plugins" / "ui-polish" / "skills").is_dir()

    def test_batch_install_reports_each_plugin(
        self, manager: PluginManager, marketplace_dir: Path
    ) -> None:
        manager.registry.add(str(marketplace_dir), name="acme")

        results = manager.install(["ui-polish@acme", "ghost@acme", "strapi-tools@acme"])

        assert [r.ok for r in results] == [True, False, True]
        assert isinstance(results[1].error, PluginNotListed)
        assert [r.plugin_name for r in manager.list_installed()] == ["strapi-tools", "ui-polish"]

    def test_listed_version_must_match(
        self, manager: PluginManager, marketplace_dir: Path, install_root: Path
    ) -> None:
        index = json.loads((marketplace_dir / "marketplace.json").read_text())
        index["ui-polish"]["version"] = "^2.0.0"
        (marketplace_dir / "marketplace.json").write_text(json.dumps(index))
        manager.registry.add(str(marketplace_dir), name="acme")

        with pytest.raises(InvalidManifestFormat, match="does not satisfy"):
            manager.install_one("ui-polish@acme")
        assert manager.list_installed() == []
        assert list((install_root / ".staging").iterdir()) == []

    def test_collision_across_marketplaces_needs_force(
        self, manager: PluginManager, marketplace_dir: Path, tmp_path: Path
    ) -> None:
        manager.registry.add(str(marketplace_dir), name="acme")
        mirror = tmp_path / "mirror"
        write_plugin(mirror / "ui", "ui-polish", version="1.0.0", skills={"refactoring-ui": REFACTORING_UI})
        write_marketplace(mirror, {"ui-polish": {"source": "./ui"}})
        manager.registry.add(str(mirror), name="mirror")

        first = manager.install_one("ui-polish@acme")
        with pytest.raises(NameCollision):
            manager.install_one("ui-polish@mirror")
        assert manager.installer.get("ui-polish") == first

        replaced = manager.install_one("ui-polish@mirror", force=True)
        assert replaced.marketplace == "mirror"

    def test_update_uses_marketplace_entry(
        self, manager: PluginManager, marketplace_dir: Path
    ) -> None:
        manager.registry.add(str(marketplace_dir), name="acme")
        installed = manager.install_one("strapi-tools@acme")

        assert manager.update("strapi-tools") == installed

        write_plugin(marketplace_dir / "plugins" / "strapi-tools", "strapi-tools", version="1.1.0")
        assert manager.update("strapi-tools").installed_version == "1.1.0"

    def test_archive_marketplace_sources_survive_refresh(
        self, manager: PluginManager, marketplace_dir: Path, tmp_path: Path
    ) -> None:
        archive = tmp_path / "acme.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(marketplace_dir, arcname="acme-marketplace")
        manager.registry.add(str(archive), name="acme")
        installed = manager.install_one("ui-polish@acme")

        manager.registry.update("acme")

        assert Path(installed.source).is_dir()
        assert manager.install(["ui-polish@acme"])[0].record == installed
        assert manager.update("ui-polish") == installed
        cache = tmp_path / "home" / "marketplaces" / "acme"
        assert sorted(p.name for p in cache.iterdir()) == ["index.json", "tree"]

    def test_update_and_remove_not_installed(self, manager: PluginManager) -> None:
        with pytest.raises(NotInstalled):
            manager.update("ghost")
        with pytest.raises(NotInstalled):
            manager.remove("ghost")

    def test_update_all(self, manager: PluginManager, marketplace_dir: Path) -> None:
        manager.registry.add(str(marketplace_dir), name="acme")
        manager.install(["ui-polish@acme", "strapi-tools@acme"])
        results = manager.update_all()
        assert [(r.spec, r.ok) for r in results] == [("strapi-tools", True), ("ui-polish", True)]
