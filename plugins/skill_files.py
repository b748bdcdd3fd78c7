"""Skill file parsing.

A skill is a Markdown file with a YAML front-matter block:

    ---
    name: refactoring-ui
    description: Use when designing or refactoring React components...
    allowed-tools: Read, Edit, Grep
    ---
    # Instructions
    ...

Skills live under the plugin's declared skills directory, either as
``<skills>/<skill-id>/SKILL.md`` or as ``<skills>/<skill-id>.md``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from plugins.errors import InvalidFormat, MissingTriggerDescription
from plugins.manifest import CapabilityKind, PluginManifest

logger = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"

_FRONT_MATTER = re.compile(r"\A(?:\ufeff)?---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


@dataclass(frozen=True)
class SkillDescriptor:
    """A parsed skill file.

    Attributes:
        skill_id: Identifier, unique within its plugin.
        trigger_description: Free text the matcher scores against. Never empty.
        allowed_tools: Capability names the skill may invoke.
        body_content: Instructional Markdown, opaque to matching.
        plugin_name: Owning plugin ("" for a stand-alone file).
        path: Source file.
        installed_at: Install time of the owning plugin, used for tie-breaking.
    """

    skill_id: str
    trigger_description: str
    allowed_tools: frozenset[str] = field(default_factory=frozenset)
    body_content: str = ""
    plugin_name: str = ""
    path: Path | None = None
    installed_at: datetime | None = None

    @property
    def qualified_name(self) -> str:
        if self.plugin_name:
            return f"{self.plugin_name}:{self.skill_id}"
        return self.skill_id


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Split a Markdown document into (front-matter mapping, body).

    Raises:
        InvalidFormat: No front-matter block, or it is not a YAML mapping.
    """
    match = _FRONT_MATTER.match(text)
    if not match:
        raise InvalidFormat("skill file has no '---' front-matter block")

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise InvalidFormat(f"invalid YAML front-matter: {e}")

    if not isinstance(meta, dict):
        raise InvalidFormat("front-matter must be a YAML mapping")

    return meta, text[match.end():].lstrip("\r\n")


def parse_allowed_tools(value: Any) -> frozenset[str]:
    """Accept ``"Read, Edit"`` or ``["Read", "Edit"]``."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise InvalidFormat(f"allowed-tools must be a string or list, got {type(value).__name__}")
    return frozenset(item.strip() for item in items if item.strip())


def _default_skill_id(skill_file: Path) -> str:
    if skill_file.name == SKILL_FILENAME:
        return skill_file.parent.name
    return skill_file.stem


def validate_skill_descriptor(
    skill_file: Path,
    plugin_name: str = "",
    installed_at: datetime | None = None,
) -> SkillDescriptor:
    """Parse and validate a single skill file.

    Args:
        skill_file: Path to the Markdown skill file.
        plugin_name: Owning plugin, recorded on the descriptor.
        installed_at: Install time of the owning plugin.

    Returns:
        SkillDescriptor for the file.

    Raises:
        MissingTriggerDescription: ``description`` absent or blank.
        InvalidFormat: Unreadable file or malformed front-matter.
    """
    skill_file = Path(skill_file)
    subject = f"{plugin_name}:{skill_file.parent.name}" if plugin_name else str(skill_file)
    try:
        text = skill_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidFormat(f"cannot read skill file {skill_file}: {e}", subject)

    try:
        meta, body = split_front_matter(text)
        allowed_tools = parse_allowed_tools(
            meta.get("allowed-tools", meta.get("allowed_tools"))
        )
    except InvalidFormat as e:
        raise InvalidFormat(f"{skill_file}: {e}", subject)

    skill_id = meta.get("name") or _default_skill_id(skill_file)
    if not isinstance(skill_id, str):
        raise InvalidFormat(f"{skill_file}: 'name' must be a string", subject)
    skill_id = skill_id.strip()
    subject = f"{plugin_name}:{skill_id}" if plugin_name else skill_id

    description = meta.get("description")
    if not isinstance(description, str) or not description.strip():
        raise MissingTriggerDescription(
            f"skill file {skill_file} has no 'description'; it can never be matched",
            subject,
        )

    return SkillDescriptor(
        skill_id=skill_id,
        trigger_description=" ".join(description.split()),
        allowed_tools=allowed_tools,
        body_content=body,
        plugin_name=plugin_name,
        path=skill_file,
        installed_at=installed_at,
    )


def iter_skill_files(skills_dir: Path) -> list[Path]:
    """Skill files under a skills directory, in a stable order."""
    if not skills_dir.is_dir():
        return []

    files: list[Path] = []
    for entry in sorted(skills_dir.iterdir(), key=lambda p: p.name):
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            skill_md = entry / SKILL_FILENAME
            if skill_md.is_file():
                files.append(skill_md)
        elif entry.is_file() and entry.suffix.lower() == ".md" and entry.name.upper() != "README.MD":
            files.append(entry)
    return files


def discover_skills(
    plugin_dir: Path,
    manifest: PluginManifest,
    installed_at: datetime | None = None,
) -> list[SkillDescriptor]:
    """Load every skill a plugin declares.

    Returns an empty list when the plugin declares no skills capability
    or disables auto discovery.

    Raises:
        InvalidFormat: A skill file is malformed or two skills share an id.
    """
    spec = manifest.capabilities.get(CapabilityKind.SKILLS)
    if spec is None or not spec.auto_discover:
        return []

    skills: list[SkillDescriptor] = []
    seen: dict[str, Path] = {}
    for skill_file in iter_skill_files(plugin_dir / spec.directory):
        descriptor = validate_skill_descriptor(
            skill_file, plugin_name=manifest.name, installed_at=installed_at
        )
        if descriptor.skill_id in seen:
            raise InvalidFormat(
                f"duplicate skill id {descriptor.skill_id!r} "
                f"({seen[descriptor.skill_id]} and {skill_file})",
                manifest.name,
            )
        seen[descriptor.skill_id] = skill_file
        skills.append(descriptor)

    logger.debug("Discovered %d skills in %s", len(skills), manifest.name)
    return skills
