"""Marketplace-aware plugin operations.

``PluginManager`` is what the CLI drives: it resolves ``plugin@marketplace``
specs through the marketplace registry, fetches bundles in parallel and
installs them one at a time under the install lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from local_storage.records import InstallRecord
from marketplace.registry import MarketplaceRegistry
from plugins.errors import (
    InvalidManifestFormat,
    NotInstalled,
    SkillmarketError,
    UnknownMarketplace,
)
from plugins.fetcher import Fetcher, FetchRequest, StagedBundle
from plugins.installer import Installer
from plugins.manifest import IndexEntry
from plugins.versions import version_satisfies

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """Outcome of one plugin in a batch install."""

    spec: str
    record: InstallRecord | None = None
    error: SkillmarketError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PluginManager:
    """Install, update, remove and list marketplace plugins.

    Example:
        >>> manager = PluginManager.from_root(Path("~/.skillmarket").expanduser())
        >>> manager.registry.add("./my-marketplace")
        >>> [r.record.installed_version for r in manager.install(["ui-polish@my-marketplace"])]
        ['1.0.0']
    """

    def __init__(
        self,
        fetcher: Fetcher,
        installer: Installer,
        registry: MarketplaceRegistry,
        max_workers: int = 4,
    ):
        self.fetcher = fetcher
        self.installer = installer
        self.registry = registry
        self.max_workers = max_workers

    @classmethod
    def from_root(
        cls,
        install_root: Path,
        timeout: float = 60.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        max_workers: int = 4,
        transport=None,
    ) -> "PluginManager":
        """Build a manager whose state lives entirely under ``install_root``."""
        install_root = Path(install_root)
        fetcher = Fetcher(
            install_root,
            timeout=timeout,
            max_attempts=max_attempts,
            backoff_base=backoff_base,
            transport=transport,
        )
        return cls(
            fetcher=fetcher,
            installer=Installer(install_root),
            registry=MarketplaceRegistry(install_root, fetcher),
            max_workers=max_workers,
        )

    # -- install ------------------------------------------------------------

    def install(self, specs: list[str], force: bool = False) -> list[InstallResult]:
        """Install plugins named ``plugin@marketplace`` (or a bare name).

        Every spec is resolved first; bundles are then fetched in parallel
        and promoted sequentially. One failure does not stop the others.

        Returns:
            One result per spec, in order.
        """
        results = [InstallResult(spec=spec) for spec in specs]
        pending: list[tuple[InstallResult, IndexEntry, str]] = []

        for result in results:
            try:
                entry, marketplace = self.registry.resolve(result.spec)
            except SkillmarketError as e:
                result.error = e
                continue
            pending.append((result, entry, marketplace))

        requests = [
            FetchRequest(locator=entry.source, name=entry.name, sha256=entry.sha256)
            for _, entry, _ in pending
        ]
        fetched = self.fetcher.fetch_many(requests, max_workers=self.max_workers)

        for (result, entry, marketplace), outcome in zip(pending, fetched):
            if isinstance(outcome, SkillmarketError):
                result.error = outcome
                continue
            try:
                self._check_version(outcome, entry)
                result.record = self.installer.install(
                    outcome, force=force, marketplace=marketplace
                )
            except SkillmarketError as e:
                result.error = e
            finally:
                outcome.discard()

        for result in results:
            if result.error is not None:
                logger.warning("Install of %s failed: %s", result.spec, result.error)
        return results

    def install_one(self, spec: str, force: bool = False) -> InstallRecord:
        """Install a single plugin, raising its error on failure."""
        result = self.install([spec], force=force)[0]
        if result.error is not None:
            raise result.error
        return result.record

    # -- update / remove ----------------------------------------------------

    def update(self, name: str) -> InstallRecord:
        """Re-fetch a plugin and replace the live copy.

        The marketplace entry is used when the plugin came from a marketplace
        that still lists it; otherwise the recorded source is fetched again.
        Updating an unchanged plugin returns an identical record.

        Raises:
            NotInstalled: ``name`` is not installed.
        """
        record = self.installer.get(name)
        if record is None:
            raise NotInstalled(f"plugin '{name}' is not installed", name)

        entry = self._listed_entry(record)
        if entry is None:
            return self.installer.update(name, self.fetcher)

        staged = self.fetcher.fetch(entry.source, name=name, sha256=entry.sha256)
        try:
            self._check_version(staged, entry)
            return self.installer.install(staged, force=True, marketplace=record.marketplace)
        finally:
            staged.discard()

    def update_all(self) -> list[InstallResult]:
        results = []
        for record in self.installer.list_installed():
            result = InstallResult(spec=record.plugin_name)
            try:
                result.record = self.update(record.plugin_name)
            except SkillmarketError as e:
                result.error = e
            results.append(result)
        return results

    def remove(self, name: str) -> InstallRecord:
        return self.installer.remove(name)

    def list_installed(self) -> list[InstallRecord]:
        return self.installer.list_installed()

    # -- internals ----------------------------------------------------------

    def _listed_entry(self, record: InstallRecord) -> IndexEntry | None:
        if not record.marketplace:
            return None
        try:
            entry = self.registry.get_index(record.marketplace).get(record.plugin_name)
        except UnknownMarketplace:
            logger.warning(
                "Marketplace %s is gone; updating %s from %s",
                record.marketplace, record.plugin_name, record.source,
            )
            return None
        if entry is None:
            logger.warning(
                "%s is no longer listed in %s; updating from %s",
                record.plugin_name, record.marketplace, record.source,
            )
        return entry

    @staticmethod
    def _check_version(staged: StagedBundle, entry: IndexEntry) -> None:
        """The fetched manifest must satisfy the version the index lists."""
        if not version_satisfies(staged.manifest.version, entry.version):
            raise InvalidManifestFormat(
                f"plugin '{entry.name}' version {staged.manifest.version} "
                f"does not satisfy the listed version {entry.version}",
                entry.name,
            )
