"""Known marketplaces.

A marketplace is added once from a reference (local directory or file,
index URL, or git repository), validated, and cached under
``<install_root>/marketplaces/<name>/``. The cached index is what plugin
installs resolve against until ``update`` refreshes it.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError

from local_storage.records import exclusive_lock, utcnow, write_json_atomic
from plugins.errors import (
    InvalidFormat,
    InvalidIndexFormat,
    NameCollision,
    NotFound,
    PluginNotListed,
    UnknownMarketplace,
)
from plugins.fetcher import Fetcher, Locator, LocatorKind
from plugins.manifest import (
    IndexEntry,
    MarketplaceIndex,
    find_index_file,
    load_index,
    parse_index,
    validate_name,
)

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = "known_marketplaces.json"
MARKETPLACES_DIRNAME = "marketplaces"
INDEX_CACHE_FILENAME = "index.json"
TREE_DIRNAME = "tree"


class KnownMarketplace(BaseModel):
    """A registered marketplace and where its cached index lives."""

    name: str
    ref: str
    index_path: str
    tree_path: str | None = None
    added_at: datetime
    updated_at: datetime | None = None
    plugin_count: int = 0


class MarketplaceRegistry:
    """Add, refresh and query marketplaces.

    Example:
        >>> registry = MarketplaceRegistry(root, Fetcher(root))
        >>> registry.add("github:acme/skills-marketplace")
        >>> entry, marketplace = registry.resolve("ui-polish@acme")
    """

    def __init__(self, install_root: Path, fetcher: Fetcher):
        self.install_root = Path(install_root)
        self.fetcher = fetcher
        self.path = self.install_root / REGISTRY_FILENAME
        self.cache_dir = self.install_root / MARKETPLACES_DIRNAME
        self.lock_path = self.install_root / ".lock"

    # -- persistence --------------------------------------------------------

    def _load(self) -> dict[str, KnownMarketplace]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return {
                name: KnownMarketplace.model_validate(raw)
                for name, raw in data.get("marketplaces", {}).items()
            }
        except (OSError, ValueError, AttributeError, ValidationError) as e:
            raise InvalidFormat(f"marketplace registry is unreadable: {e}", str(self.path))

    def _save(self, marketplaces: dict[str, KnownMarketplace]) -> None:
        write_json_atomic(
            self.path,
            {
                "marketplaces": {
                    name: mp.model_dump(mode="json")
                    for name, mp in sorted(marketplaces.items())
                }
            },
        )

    # -- queries ------------------------------------------------------------

    def list_marketplaces(self) -> list[KnownMarketplace]:
        return sorted(self._load().values(), key=lambda mp: mp.name)

    def get(self, name: str) -> KnownMarketplace:
        known = self._load().get(name)
        if known is None:
            raise UnknownMarketplace(f"marketplace '{name}' has not been added", name)
        return known

    def get_index(self, name: str) -> MarketplaceIndex:
        """Cached index of a known marketplace."""
        known = self.get(name)
        return load_index(Path(known.index_path))

    def resolve(self, spec: str) -> tuple[IndexEntry, str]:
        """Resolve ``plugin@marketplace`` (or a bare plugin name).

        Returns:
            ``(index entry, marketplace name)``.

        Raises:
            UnknownMarketplace: The named marketplace is not known.
            PluginNotListed: No marketplace lists the plugin.
            NameCollision: A bare name is listed by several marketplaces.
        """
        plugin, _, marketplace = spec.partition("@")
        if marketplace:
            entry = self.get_index(marketplace).get(plugin)
            if entry is None:
                raise PluginNotListed(
                    f"plugin '{plugin}' is not listed in marketplace '{marketplace}'",
                    plugin,
                )
            return entry, marketplace

        matches = []
        for known in self.list_marketplaces():
            entry = self.get_index(known.name).get(plugin)
            if entry is not None:
                matches.append((entry, known.name))

        if not matches:
            raise PluginNotListed(f"no known marketplace lists plugin '{plugin}'", plugin)
        if len(matches) > 1:
            names = ", ".join(mp for _, mp in matches)
            raise NameCollision(
                f"plugin '{plugin}' is listed by several marketplaces ({names}); "
                f"use {plugin}@<marketplace>",
                plugin,
            )
        return matches[0]

    # -- mutations ----------------------------------------------------------

    def add(self, ref: str, name: str | None = None) -> KnownMarketplace:
        """Register a marketplace.

        Re-adding the same reference under the same name refreshes it.

        Raises:
            NameCollision: ``name`` is already used by a different reference.
            InvalidFormat: The index is malformed.
            FetchError: The reference could not be retrieved.
        """
        existing = self._load()
        if name is not None and name in existing and existing[name].ref != ref:
            raise NameCollision(
                f"marketplace '{name}' already points at {existing[name].ref}", name
            )

        index, tree = self._retrieve(ref, name or _label_for_ref(ref))
        try:
            final_name = name or index.name or _label_for_ref(ref)
            try:
                validate_name(final_name)
            except ValueError as e:
                raise InvalidIndexFormat(str(e), final_name)

            with exclusive_lock(self.lock_path):
                marketplaces = self._load()
                current = marketplaces.get(final_name)
                if current is not None and current.ref != ref:
                    raise NameCollision(
                        f"marketplace '{final_name}' already points at {current.ref}",
                        final_name,
                    )
                known = self._store(final_name, ref, index, tree, current)
                marketplaces[final_name] = known
                self._save(marketplaces)
        finally:
            if tree is not None:
                shutil.rmtree(tree[0], ignore_errors=True)

        logger.info("Marketplace %s: %d plugins", final_name, known.plugin_count)
        return known

    def update(self, name: str) -> KnownMarketplace:
        """Re-fetch a marketplace index and replace the cached copy."""
        known = self.get(name)
        index, tree = self._retrieve(known.ref, name)
        try:
            with exclusive_lock(self.lock_path):
                marketplaces = self._load()
                current = marketplaces.get(name)
                if current is None:
                    raise UnknownMarketplace(f"marketplace '{name}' has not been added", name)
                refreshed = self._store(name, known.ref, index, tree, current)
                marketplaces[name] = refreshed
                self._save(marketplaces)
        finally:
            if tree is not None:
                shutil.rmtree(tree[0], ignore_errors=True)

        logger.info("Refreshed marketplace %s: %d plugins", name, refreshed.plugin_count)
        return refreshed

    def remove(self, name: str) -> KnownMarketplace:
        with exclusive_lock(self.lock_path):
            marketplaces = self._load()
            known = marketplaces.pop(name, None)
            if known is None:
                raise UnknownMarketplace(f"marketplace '{name}' has not been added", name)
            self._save(marketplaces)
        shutil.rmtree(self.cache_dir / name, ignore_errors=True)
        logger.info("Removed marketplace %s", name)
        return known

    # -- internals ----------------------------------------------------------

    def _retrieve(
        self, ref: str, label: str
    ) -> tuple[MarketplaceIndex, tuple[Path, Path] | None]:
        """Fetch and validate an index.

        Returns the index and, for repository/archive refs, the staged
        ``(staging_dir, tree_root)`` the index's relative sources point into.
        """
        locator = Locator.parse(ref)

        if locator.kind == LocatorKind.LOCAL:
            path = Path(locator.target)
            if not path.exists():
                raise NotFound(f"marketplace path does not exist: {path}", label)
            if path.is_dir() or path.suffix == ".json":
                return load_index(path), None

        if locator.kind == LocatorKind.ARCHIVE_URL and urlparse(locator.target).path.endswith(".json"):
            body = self.fetcher.fetch_bytes(locator.target, label)
            base = locator.target.rsplit("/", 1)[0]
            return load_index(body, base=base), None

        staging_dir, root = self.fetcher.fetch_tree(ref, label)
        try:
            index_file = find_index_file(root)
            if index_file is None:
                raise InvalidIndexFormat(f"no marketplace index found in {ref}", label)
            # Sources are rebased onto the cached tree in _store
            index = load_index(index_file.read_bytes())
        except BaseException:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        return index, (staging_dir, root)

    def _store(
        self,
        name: str,
        ref: str,
        index: MarketplaceIndex,
        tree: tuple[Path, Path] | None,
        current: KnownMarketplace | None,
    ) -> KnownMarketplace:
        """Write the cache for ``name``; caller holds the lock.

        Repository trees always live at ``marketplaces/<name>/tree`` so the
        plugin sources rebased onto them stay the same across refreshes.
        """
        target_dir = self.cache_dir / name
        target_dir.mkdir(parents=True, exist_ok=True)

        tree_path: str | None = None
        if tree is not None:
            _, root = tree
            live_tree = target_dir / TREE_DIRNAME
            old_tree: Path | None = None
            if live_tree.exists():
                old_tree = target_dir / f".{TREE_DIRNAME}.old-{uuid.uuid4().hex[:12]}"
                os.rename(live_tree, old_tree)
            try:
                os.rename(root, live_tree)
            except OSError:
                if old_tree is not None:
                    os.rename(old_tree, live_tree)
                raise
            if old_tree is not None:
                shutil.rmtree(old_tree, ignore_errors=True)
            tree_path = str(live_tree)
            index = parse_index(
                {"name": index.name, "plugins": [e.model_dump() for e in index.entries.values()]},
                base=_tree_base(live_tree),
                label=name,
            )

        index_path = target_dir / INDEX_CACHE_FILENAME
        write_json_atomic(
            index_path,
            {
                "name": name,
                "plugins": [
                    entry.model_dump(exclude_none=True)
                    for entry in sorted(index.entries.values(), key=lambda e: e.name)
                ],
            },
        )

        if current is not None and current.tree_path and current.tree_path != tree_path:
            shutil.rmtree(current.tree_path, ignore_errors=True)

        now = utcnow()
        return KnownMarketplace(
            name=name,
            ref=ref,
            index_path=str(index_path),
            tree_path=tree_path,
            added_at=current.added_at if current else now,
            updated_at=now if current else None,
            plugin_count=len(index),
        )


def _tree_base(tree: Path) -> Path:
    index_file = find_index_file(tree)
    if index_file is not None and index_file.parent.name == ".claude-plugin":
        return index_file.parent.parent
    return index_file.parent if index_file is not None else tree


def _label_for_ref(ref: str) -> str:
    locator = Locator.parse(ref)
    target = locator.target.rstrip("/")
    if locator.kind == LocatorKind.LOCAL:
        path = Path(target)
        if path.is_file():
            path = path.parent
            if path.name == ".claude-plugin":
                path = path.parent
        tail = path.name
    else:
        tail = target.split("/")[-1].split(":")[-1]
        for suffix in (".git", ".json", ".tar.gz", ".tgz", ".zip"):
            if tail.endswith(suffix):
                tail = tail[: -len(suffix)]
        if tail in ("marketplace", "index"):
            tail = target.split("/")[-2] if target.count("/") >= 1 else tail
    return "".join(c if c.isalnum() or c in "._-" else "-" for c in tail).strip(".-") or "marketplace"
