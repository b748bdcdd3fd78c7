"""Skills of every installed plugin."""

from __future__ import annotations

import logging
from pathlib import Path

from local_storage.records import InstallRecord, InstallRecordStore
from plugins.errors import InvalidFormat
from plugins.manifest import CapabilityKind, load_manifest
from plugins.skill_files import SkillDescriptor, iter_skill_files, validate_skill_descriptor

logger = logging.getLogger(__name__)


class InstalledSkillCatalog:
    """Read-only view over the skills of installed plugins.

    A broken plugin or skill file is logged and skipped; the rest of the
    catalog still loads.
    """

    def __init__(self, install_root: Path, store: InstallRecordStore | None = None):
        self.install_root = Path(install_root)
        self.store = store or InstallRecordStore(self.install_root)

    def load(self) -> list[SkillDescriptor]:
        """All installed skills, ordered by (plugin, skill id)."""
        skills: list[SkillDescriptor] = []
        for record in self.store.list_records():
            skills.extend(self.load_plugin(record))
        return skills

    def load_plugin(self, record: InstallRecord) -> list[SkillDescriptor]:
        try:
            manifest = load_manifest(record.path)
        except InvalidFormat as e:
            logger.warning("Skipping plugin %s: %s", record.plugin_name, e)
            return []

        spec = manifest.capabilities.get(CapabilityKind.SKILLS)
        if spec is None or not spec.auto_discover:
            return []

        skills: dict[str, SkillDescriptor] = {}
        for skill_file in iter_skill_files(record.path / spec.directory):
            try:
                skill = validate_skill_descriptor(
                    skill_file,
                    plugin_name=record.plugin_name,
                    installed_at=record.installed_at,
                )
            except InvalidFormat as e:
                logger.warning("Skipping skill %s: %s", skill_file, e)
                continue
            if skill.skill_id in skills:
                logger.warning(
                    "Skipping skill %s: id %r already used in %s",
                    skill_file, skill.skill_id, record.plugin_name,
                )
                continue
            skills[skill.skill_id] = skill

        return sorted(skills.values(), key=lambda s: s.skill_id)

    def get(self, qualified_name: str) -> SkillDescriptor | None:
        """Look up ``plugin:skill`` (or a bare skill id if unambiguous)."""
        plugin, sep, skill_id = qualified_name.partition(":")
        if sep:
            candidates = [
                s for s in self.load() if s.plugin_name == plugin and s.skill_id == skill_id
            ]
        else:
            candidates = [s for s in self.load() if s.skill_id == qualified_name]
        return candidates[0] if len(candidates) == 1 else None
