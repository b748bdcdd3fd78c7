"""Plugin installer.

Promotes staged bundles into ``<install_root>/plugins/<name>`` and keeps the
install records in step. Promotion is a directory rename, never a
file-by-file overwrite:

    plugins/ui-polish                 (live)
        -> plugins/.ui-polish.backup-<token>
    .staging/ui-polish-<token>/bundle
        -> plugins/ui-polish
    installed_plugins.json            (atomic replace)
    plugins/.ui-polish.backup-<token> (deleted)

If the process dies part way through, ``recover()`` puts the directory
that matches the install record back in place.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from pathlib import Path

from local_storage.records import InstallRecord, InstallRecordStore, utcnow
from plugins.errors import NameCollision, NotInstalled
from plugins.fetcher import (
    OWNER_FILENAME,
    STAGING_DIRNAME,
    Fetcher,
    StagedBundle,
    tree_fingerprint,
    verify_bundle,
)
from plugins.manifest import PluginManifest, load_manifest

logger = logging.getLogger(__name__)

PLUGINS_DIRNAME = "plugins"
BACKUP_MARKER = ".backup-"
REMOVING_MARKER = ".removing-"


class Installer:
    """Install, update and remove plugins under an install root.

    Example:
        >>> installer = Installer(Path("~/.skillmarket").expanduser())
        >>> staged = Fetcher(installer.install_root).fetch("./ui-polish", name="ui-polish")
        >>> installer.install(staged).installed_version
        '1.0.0'
        >>> installer.remove("ui-polish")
    """

    def __init__(self, install_root: Path, store: InstallRecordStore | None = None):
        """Initialize the installer and recover from any interrupted run.

        Args:
            install_root: Root directory for plugins, records and staging.
            store: Record store (defaults to one rooted at ``install_root``).
        """
        self.install_root = Path(install_root)
        self.plugins_dir = self.install_root / PLUGINS_DIRNAME
        self.store = store or InstallRecordStore(self.install_root)
        self.recover()

    # -- queries ------------------------------------------------------------

    def list_installed(self) -> list[InstallRecord]:
        return self.store.list_records()

    def get(self, name: str) -> InstallRecord | None:
        return self.store.get(name)

    def get_manifest(self, name: str) -> PluginManifest:
        """Manifest of an installed plugin.

        Raises:
            NotInstalled: No record for ``name``.
        """
        record = self.get(name)
        if record is None:
            raise NotInstalled(f"plugin '{name}' is not installed", name)
        return load_manifest(record.path)

    # -- install ------------------------------------------------------------

    def install(
        self,
        staged: StagedBundle,
        force: bool = False,
        marketplace: str | None = None,
    ) -> InstallRecord:
        """Promote a staged bundle to a live install.

        The staged directory is consumed on success and discarded on failure.

        Args:
            staged: Bundle returned by ``Fetcher.fetch``.
            force: Replace an install of the same name from another source.
            marketplace: Marketplace the plugin was resolved through.

        Returns:
            The new (or unchanged) InstallRecord.

        Raises:
            NameCollision: Same name installed from a different source.
            InvalidFormat: The staged bundle no longer verifies.
        """
        try:
            manifest = verify_bundle(staged.path, expected_name=staged.name)
            name = manifest.name
            fingerprint = staged.fingerprint or tree_fingerprint(staged.path)
            target = self.plugins_dir / name

            with self.store.lock():
                records = self.store.load()
                existing = records.get(name)

                if existing is not None and existing.source != staged.source and not force:
                    raise NameCollision(
                        f"plugin '{name}' is already installed from {existing.source}; "
                        f"refusing to replace it with {staged.source} (use --force)",
                        name,
                    )

                if (
                    existing is not None
                    and existing.source == staged.source
                    and existing.fingerprint == fingerprint
                    and existing.installed_version == manifest.version
                    and target.is_dir()
                ):
                    logger.info("%s %s is already up to date", name, manifest.version)
                    return existing

                now = utcnow()
                same_source = existing is not None and existing.source == staged.source
                record = InstallRecord(
                    plugin_name=name,
                    installed_version=manifest.version,
                    install_path=str(target),
                    installed_at=existing.installed_at if same_source else now,
                    source=staged.source,
                    marketplace=marketplace or (existing.marketplace if same_source else None),
                    fingerprint=fingerprint,
                    updated_at=now if same_source else None,
                )

                backup = self._promote(staged.path, target, name)
                records[name] = record
                try:
                    self.store.save(records)
                except BaseException:
                    logger.error("Failed to record %s; rolling back promotion", name)
                    self._restore(target, backup)
                    raise

                if backup is not None:
                    shutil.rmtree(backup, ignore_errors=True)

            if existing is None:
                logger.info("Installed %s %s", name, manifest.version)
            else:
                logger.info(
                    "Updated %s %s -> %s", name, existing.installed_version, manifest.version
                )
            return record
        finally:
            staged.discard()

    def update(
        self,
        name: str,
        fetcher: Fetcher,
        locator: str | None = None,
        sha256: str | None = None,
    ) -> InstallRecord:
        """Re-fetch and reinstall a plugin, overwriting the live copy.

        Args:
            name: Installed plugin name.
            fetcher: Fetcher to stage the new bundle with.
            locator: New source (defaults to the recorded source).
            sha256: Expected checksum for the new bundle.

        Raises:
            NotInstalled: ``name`` is not installed.
        """
        record = self.get(name)
        if record is None:
            raise NotInstalled(f"plugin '{name}' is not installed", name)

        staged = fetcher.fetch(locator or record.source, name=name, sha256=sha256)
        return self.install(staged, force=True, marketplace=record.marketplace)

    def remove(self, name: str) -> InstallRecord:
        """Uninstall a plugin.

        Returns:
            The record that was removed.

        Raises:
            NotInstalled: ``name`` is not installed; records are untouched.
        """
        with self.store.lock():
            records = self.store.load()
            record = records.pop(name, None)
            if record is None:
                raise NotInstalled(f"plugin '{name}' is not installed", name)

            target = self.plugins_dir / name
            trash = self.plugins_dir / f".{name}{REMOVING_MARKER}{uuid.uuid4().hex[:12]}"
            if target.exists():
                os.rename(target, trash)
            try:
                self.store.save(records)
            except BaseException:
                if trash.exists():
                    os.rename(trash, target)
                raise
            shutil.rmtree(trash, ignore_errors=True)

        logger.info("Removed %s", name)
        return record

    # -- promotion ----------------------------------------------------------

    def _promote(self, source: Path, target: Path, name: str) -> Path | None:
        """Swap ``source`` into ``target``; returns the backup of the old copy."""
        self.plugins_dir.mkdir(parents=True, exist_ok=True)

        backup: Path | None = None
        if target.exists():
            backup = self.plugins_dir / f".{name}{BACKUP_MARKER}{uuid.uuid4().hex[:12]}"
            os.rename(target, backup)

        try:
            os.rename(source, target)
        except OSError:
            if backup is not None:
                os.rename(backup, target)
            raise
        logger.debug("Promoted %s into %s", source, target)
        return backup

    def _restore(self, target: Path, backup: Path | None) -> None:
        shutil.rmtree(target, ignore_errors=True)
        if backup is not None:
            os.rename(backup, target)

    # -- crash recovery -----------------------------------------------------

    def recover(self) -> None:
        """Clean up after an interrupted install or removal.

        - staging directories whose owning process is gone are discarded;
        - a backup is restored when the live copy is missing or does not
          match the install record, otherwise it is deleted;
        - a half-removed directory whose record still exists is put back,
          otherwise it is deleted along with unrecorded plugin directories.
        """
        self._discard_stale_staging()

        if not self.plugins_dir.is_dir():
            return

        with self.store.lock():
            records = self.store.load()

            for entry in sorted(self.plugins_dir.iterdir()):
                if not entry.name.startswith("."):
                    continue
                if BACKUP_MARKER in entry.name:
                    name = entry.name[1:].split(BACKUP_MARKER, 1)[0]
                    self._recover_backup(entry, self.plugins_dir / name, records.get(name))
                elif REMOVING_MARKER in entry.name:
                    name = entry.name[1:].split(REMOVING_MARKER, 1)[0]
                    target = self.plugins_dir / name
                    if name in records and not target.exists():
                        # Record was never dropped, so the removal did not happen
                        logger.warning("Undoing interrupted removal of %s", name)
                        os.rename(entry, target)
                    else:
                        logger.warning("Finishing interrupted removal: %s", entry.name)
                        shutil.rmtree(entry, ignore_errors=True)

            for entry in sorted(self.plugins_dir.iterdir()):
                if entry.name.startswith(".") or not entry.is_dir():
                    continue
                if entry.name not in records:
                    logger.warning("Discarding unrecorded plugin directory %s", entry)
                    shutil.rmtree(entry, ignore_errors=True)

    def _recover_backup(
        self, backup: Path, target: Path, record: InstallRecord | None
    ) -> None:
        if not target.exists():
            logger.warning("Restoring %s from interrupted install", target.name)
            os.rename(backup, target)
            return

        if record is not None and record.fingerprint:
            live_matches = tree_fingerprint(target) == record.fingerprint
            if not live_matches and tree_fingerprint(backup) == record.fingerprint:
                logger.warning("Rolling back unrecorded promotion of %s", target.name)
                shutil.rmtree(target)
                os.rename(backup, target)
                return

        shutil.rmtree(backup, ignore_errors=True)

    def _discard_stale_staging(self) -> None:
        staging_root = self.install_root / STAGING_DIRNAME
        if not staging_root.is_dir():
            return
        for entry in staging_root.iterdir():
            if _owner_alive(entry / OWNER_FILENAME):
                continue
            logger.warning("Discarding leftover staging directory %s", entry.name)
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
            else:
                entry.unlink(missing_ok=True)


def _owner_alive(owner_file: Path) -> bool:
    try:
        pid = int(owner_file.read_text().strip())
    except (OSError, ValueError):
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
