"""Plugin bundles: manifests, fetching and installation.

A plugin is a directory with a manifest and capability directories:

    ui-polish/
    ├── .claude-plugin/plugin.json   # name, version, capabilities
    └── skills/
        └── refactoring-ui/
            └── SKILL.md             # YAML front-matter + instructions

Fetching and installing live in ``plugins.fetcher``, ``plugins.installer``
and ``plugins.manager``; import them from there.
"""

from .errors import SkillmarketError
from .manifest import CapabilityKind, MarketplaceIndex, PluginManifest, load_index, load_manifest

__all__ = [
    "CapabilityKind",
    "MarketplaceIndex",
    "PluginManifest",
    "SkillmarketError",
    "load_index",
    "load_manifest",
]
