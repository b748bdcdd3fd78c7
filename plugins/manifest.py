"""Plugin manifest and marketplace index schemas.

Defines the structure and validation of the two JSON documents every
install starts from:

    marketplace.json                   plugin.json
    {                                  {
      "ui-polish": {                     "name": "ui-polish",
        "source": "./plugins/ui",        "version": "1.0.0",
        "version": "1.0.0"               "skills": {"auto_discover": true},
      }                                  "commands": {"directory": "cmds"}
    }                                  }

Both are validated completely before anything touches the install root.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

from pydantic import BaseModel, Field, ValidationError, field_validator

from plugins.errors import (
    DuplicatePluginName,
    InvalidIndexFormat,
    InvalidManifestFormat,
    UnsupportedCapabilityKind,
)
from plugins.versions import version_satisfies

NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
SEMVER_PATTERN = re.compile(
    r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)

MANIFEST_LOCATIONS = (Path(".claude-plugin") / "plugin.json", Path("plugin.json"))
INDEX_LOCATIONS = (
    Path("marketplace.json"),
    Path(".claude-plugin") / "marketplace.json",
    Path("index.json"),
)

# Top-level manifest keys that describe the plugin rather than a capability
METADATA_KEYS = frozenset(
    {
        "$schema",
        "name",
        "version",
        "description",
        "author",
        "license",
        "homepage",
        "repository",
        "keywords",
    }
)


class CapabilityKind(str, Enum):
    """Capability directories a plugin may ship."""

    SKILLS = "skills"
    COMMANDS = "commands"
    AGENTS = "agents"
    HOOKS = "hooks"


def validate_name(value: str) -> str:
    """Validate a plugin or marketplace name (also used as a directory name)."""
    if not isinstance(value, str) or not NAME_PATTERN.match(value) or ".." in value:
        raise ValueError(
            f"invalid name {value!r}: use letters, digits, dots, dashes and underscores"
        )
    return value


def _is_remote(source: str) -> bool:
    return bool(re.match(r"^[A-Za-z][A-Za-z0-9+.-]*:", source)) and not re.match(
        r"^[A-Za-z]:[\\/]", source
    )


class _PairsDict(dict):
    """dict that remembers keys seen more than once while decoding."""

    def __init__(self, pairs: list[tuple[str, Any]]):
        super().__init__(pairs)
        seen: set[str] = set()
        self.duplicates: list[str] = []
        for key, _ in pairs:
            if key in seen and key not in self.duplicates:
                self.duplicates.append(key)
            seen.add(key)


# ---------------------------------------------------------------------------
# Marketplace index
# ---------------------------------------------------------------------------


class IndexEntry(BaseModel):
    """One plugin listing in a marketplace index."""

    name: str
    source: str = Field(..., min_length=1, description="URL, git reference or path")
    version: str | None = None
    sha256: str | None = Field(None, description="Expected checksum of the bundle")
    description: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, v: str) -> str:
        return validate_name(v)

    @field_validator("version")
    @classmethod
    def _check_version_constraint(cls, v: str | None) -> str | None:
        if v is not None:
            version_satisfies("0.0.0", v)
        return v

    @field_validator("sha256", mode="before")
    @classmethod
    def _check_sha256(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not isinstance(v, str) or not re.fullmatch(r"[0-9a-fA-F]{64}", v):
            raise ValueError("sha256 must be 64 hex characters")
        return v.lower()


class MarketplaceIndex(BaseModel):
    """Mapping of plugin name to source locator."""

    name: str | None = None
    entries: dict[str, IndexEntry] = Field(default_factory=dict)

    def get(self, plugin_name: str) -> IndexEntry | None:
        return self.entries.get(plugin_name)

    def __contains__(self, plugin_name: str) -> bool:
        return plugin_name in self.entries

    def __len__(self) -> int:
        return len(self.entries)


def _source_from_object(source: dict[str, Any], plugin: str) -> str:
    """Flatten the ``{"source": "github", "repo": ...}`` form to a locator."""
    kind = source.get("source")
    if kind == "github" and isinstance(source.get("repo"), str):
        locator = f"github:{source['repo']}"
    elif kind in ("url", "git") and isinstance(source.get("url"), str):
        locator = source["url"]
    elif kind in ("path", "local") and isinstance(source.get("path"), str):
        locator = source["path"]
    else:
        raise InvalidIndexFormat(f"unrecognized source object {source!r}", plugin)

    ref = source.get("ref") or source.get("branch") or source.get("tag")
    if ref and "#" not in locator:
        locator = f"{locator}#{ref}"
    return locator


def _resolve_source(source: str, base: str | Path | None) -> str:
    if base is None or _is_remote(source) or Path(source).is_absolute():
        return source
    base_str = str(base)
    if _is_remote(base_str):
        return urljoin(base_str.rstrip("/") + "/", source)
    return str((Path(base_str) / source).resolve())


def _parse_entries(data: Any, label: str) -> tuple[str | None, list[dict[str, Any]]]:
    if not isinstance(data, dict):
        raise InvalidIndexFormat("index must be a JSON object", label)

    if isinstance(data.get("plugins"), list):
        name = data.get("name")
        raw_entries = []
        for position, item in enumerate(data["plugins"]):
            if not isinstance(item, dict):
                raise InvalidIndexFormat(f"plugins[{position}] must be an object", label)
            raw_entries.append(dict(item))
        return name, raw_entries

    duplicates = getattr(data, "duplicates", [])
    if duplicates:
        raise DuplicatePluginName(
            f"plugin name listed more than once: {', '.join(duplicates)}", label
        )
    raw_entries = []
    for plugin, item in data.items():
        if not isinstance(item, dict):
            raise InvalidIndexFormat(
                f"entry {plugin!r} must be an object with a 'source'", label
            )
        raw_entries.append({**item, "name": plugin})
    return None, raw_entries


def parse_index(
    data: Any, base: str | Path | None = None, label: str = "marketplace"
) -> MarketplaceIndex:
    """Validate an already-decoded index document.

    Raises:
        InvalidIndexFormat: Missing fields or wrong shapes.
        DuplicatePluginName: Two entries share a name.
    """
    name, raw_entries = _parse_entries(data, label)

    entries: dict[str, IndexEntry] = {}
    for raw in raw_entries:
        plugin = raw.get("name")
        if "source" not in raw:
            raise InvalidIndexFormat("entry is missing 'source'", plugin or label)
        if isinstance(raw["source"], dict):
            raw["source"] = _source_from_object(raw["source"], plugin or label)
        try:
            entry = IndexEntry(**raw)
        except ValidationError as e:
            raise InvalidIndexFormat(f"invalid entry: {_first_error(e)}", plugin or label)
        if entry.name in entries:
            raise DuplicatePluginName(
                f"plugin name listed more than once: {entry.name}", label
            )
        entry.source = _resolve_source(entry.source, base)
        entries[entry.name] = entry

    if name is not None:
        try:
            validate_name(name)
        except ValueError as e:
            raise InvalidIndexFormat(str(e), label)

    return MarketplaceIndex(name=name, entries=entries)


def find_index_file(directory: Path) -> Path | None:
    for candidate in INDEX_LOCATIONS:
        path = directory / candidate
        if path.is_file():
            return path
    return None


def load_index(
    source: str | bytes | Path, base: str | Path | None = None
) -> MarketplaceIndex:
    """Load a marketplace index.

    Args:
        source: Path to an index file or to a directory holding one, or the
            raw JSON document.
        base: Location relative sources resolve against. Defaults to the
            directory the index was read from.

    Returns:
        Parsed MarketplaceIndex.

    Raises:
        InvalidIndexFormat: File missing, not JSON, or entries malformed.
        DuplicatePluginName: Two entries collide.
    """
    label = "marketplace"
    if isinstance(source, Path) or (
        isinstance(source, str) and not source.lstrip().startswith("{")
    ):
        path = Path(source)
        if path.is_dir():
            found = find_index_file(path)
            if found is None:
                raise InvalidIndexFormat(f"no marketplace index found in {path}", label)
            path = found
        if not path.is_file():
            raise InvalidIndexFormat(f"index not found: {path}", label)
        text: str | bytes = path.read_bytes()
        if base is None:
            base = path.parent
            if base.name == ".claude-plugin":
                base = base.parent
        label = path.parent.name if path.parent.name != ".claude-plugin" else path.parent.parent.name
    else:
        text = source

    try:
        data = json.loads(text, object_pairs_hook=_PairsDict)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidIndexFormat(f"index is not valid JSON: {e}", label)

    return parse_index(data, base=base, label=label)


# ---------------------------------------------------------------------------
# Plugin manifest
# ---------------------------------------------------------------------------


class Author(BaseModel):
    name: str
    email: str | None = None
    url: str | None = None


class CapabilitySpec(BaseModel):
    """Declared capability directory."""

    directory: str
    auto_discover: bool = True

    @field_validator("directory", mode="before")
    @classmethod
    def _check_directory(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("directory must be a non-empty string")
        path = Path(v)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"directory {v!r} must stay inside the plugin")
        return v


class PluginManifest(BaseModel):
    """Plugin manifest schema (plugin.json)."""

    name: str = Field(..., description="Plugin name, equals its install directory")
    version: str = Field(..., description="Semantic version (e.g., 1.0.0)")
    description: str = ""
    author: Author | None = None
    license: str | None = None
    homepage: str | None = None
    repository: str | None = None
    keywords: list[str] = Field(default_factory=list)
    capabilities: dict[CapabilityKind, CapabilitySpec] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, v: str) -> str:
        return validate_name(v)

    @field_validator("version", mode="before")
    @classmethod
    def _check_version(cls, v: str) -> str:
        if not isinstance(v, str) or not SEMVER_PATTERN.match(v):
            raise ValueError("version must be semantic (e.g., 1.0.0)")
        return v

    @field_validator("author", mode="before")
    @classmethod
    def _coerce_author(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"name": v}
        return v

    @property
    def author_name(self) -> str:
        return self.author.name if self.author else ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], label: str = "plugin") -> PluginManifest:
        """Create manifest from a decoded plugin.json document.

        Raises:
            InvalidManifestFormat: Required fields missing or invalid.
            UnsupportedCapabilityKind: Unknown capability declared.
        """
        if not isinstance(data, dict):
            raise InvalidManifestFormat("manifest must be a JSON object", label)

        subject = data.get("name") if isinstance(data.get("name"), str) else label
        for required in ("name", "version"):
            if required not in data:
                raise InvalidManifestFormat(f"manifest is missing '{required}'", subject)

        known = {kind.value for kind in CapabilityKind}
        fields: dict[str, Any] = {}
        capabilities: dict[str, dict[str, Any]] = {}
        for key, value in data.items():
            if key in known:
                spec = _capability_spec(key, value, subject)
                if spec is not None:
                    capabilities[key] = spec
            elif key in METADATA_KEYS:
                if key != "$schema":
                    fields[key] = value
            elif isinstance(value, dict):
                raise UnsupportedCapabilityKind(
                    f"unsupported capability kind {key!r} "
                    f"(expected one of: {', '.join(sorted(known))})",
                    subject,
                )

        try:
            return cls(**fields, capabilities=capabilities)
        except ValidationError as e:
            raise InvalidManifestFormat(_first_error(e), subject)

    def to_dict(self) -> dict[str, Any]:
        """Convert back to the plugin.json shape."""
        result: dict[str, Any] = {"name": self.name, "version": self.version}
        if self.description:
            result["description"] = self.description
        if self.author:
            result["author"] = self.author.model_dump(exclude_none=True)
        if self.license:
            result["license"] = self.license
        for kind, spec in sorted(self.capabilities.items(), key=lambda kv: kv[0].value):
            result[kind.value] = spec.model_dump()
        return result


def _capability_spec(kind: str, value: Any, subject: str) -> dict[str, Any] | None:
    if value is None or value is False:
        return None
    if isinstance(value, str):
        return {"directory": value}
    if value is True:
        return {"directory": kind}
    if isinstance(value, dict):
        spec = dict(value)
        spec.setdefault("directory", kind)
        return {
            "directory": spec["directory"],
            "auto_discover": spec.get("auto_discover", True),
        }
    raise InvalidManifestFormat(
        f"capability {kind!r} must be an object or a directory name", subject
    )


def find_manifest_file(bundle_dir: Path) -> Path | None:
    for candidate in MANIFEST_LOCATIONS:
        path = bundle_dir / candidate
        if path.is_file():
            return path
    return None


def load_manifest(path: Path) -> PluginManifest:
    """Load a plugin manifest.

    Args:
        path: Plugin directory, or the plugin.json file itself.

    Returns:
        Parsed PluginManifest.

    Raises:
        InvalidManifestFormat: File missing, unreadable, or name/version invalid.
        UnsupportedCapabilityKind: Unrecognized capability directory declared.
    """
    path = Path(path)
    label = path.name
    if path.is_dir():
        found = find_manifest_file(path)
        if found is None:
            raise InvalidManifestFormat(f"no plugin.json found in {path}", label)
        path = found

    if not path.is_file():
        raise InvalidManifestFormat(f"manifest not found: {path}", label)

    try:
        data = json.loads(path.read_bytes())
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidManifestFormat(f"invalid JSON in {path}: {e}", label)

    return PluginManifest.from_dict(data, label=label)


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message
