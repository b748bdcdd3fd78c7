"""Skill activation.

Skills are description-tagged instruction files shipped by plugins. This
package scores installed skills against a task and renders the winners for
injection into an agent's context.
"""

from skills.catalog import InstalledSkillCatalog
from skills.matcher import (
    BM25Strategy,
    ScoringStrategy,
    SkillMatch,
    SkillMatcher,
    TermOverlapStrategy,
    get_strategy,
    render_context,
)

__all__ = [
    "BM25Strategy",
    "InstalledSkillCatalog",
    "ScoringStrategy",
    "SkillMatch",
    "SkillMatcher",
    "TermOverlapStrategy",
    "get_strategy",
    "render_context",
]
