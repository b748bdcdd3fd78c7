"""Skill activation: which installed skills fit a task?

Scoring is a pluggable strategy over the skills' trigger descriptions. The
matcher keeps every skill whose score clears the strategy's threshold and
orders them by:

1. score, highest first
2. specificity (distinct description terms), highest first
3. install time of the owning plugin, newest first
4. ``(plugin_name, skill_id)`` ascending

Matching never touches disk or install state.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from skills.bm25 import BM25
from skills.text import term_set
from plugins.skill_files import SkillDescriptor

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY = "overlap"

# Scores are rounded before comparison so that ties stay ties
SCORE_PRECISION = 9


class ScoringStrategy(Protocol):
    """Scores each skill's relevance to a task; higher is more relevant."""

    name: str
    default_threshold: float

    def score(self, task_text: str, skills: Sequence[SkillDescriptor]) -> list[float]:
        ...


class TermOverlapStrategy:
    """Binary cosine between task terms and description terms.

    ``|T ∩ D| / sqrt(|T| * |D|)``, so a long description is not favoured just
    for mentioning more words.
    """

    name = "overlap"
    default_threshold = 0.1

    def score(self, task_text: str, skills: Sequence[SkillDescriptor]) -> list[float]:
        task_terms = term_set(task_text)
        scores = []
        for skill in skills:
            desc_terms = term_set(skill.trigger_description)
            if not task_terms or not desc_terms:
                scores.append(0.0)
                continue
            shared = len(task_terms & desc_terms)
            scores.append(shared / math.sqrt(len(task_terms) * len(desc_terms)))
        return scores


class BM25Strategy:
    """BM25 over the installed skills' descriptions."""

    name = "bm25"
    default_threshold = 0.5

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        self.k1 = k1
        self.b = b

    def score(self, task_text: str, skills: Sequence[SkillDescriptor]) -> list[float]:
        index = BM25(k1=self.k1, b=self.b)
        for doc_id, skill in enumerate(skills):
            index.add_document(doc_id, skill.trigger_description)
        return [index.get_score(task_text, doc_id) for doc_id in range(len(skills))]


STRATEGIES: dict[str, type] = {
    TermOverlapStrategy.name: TermOverlapStrategy,
    BM25Strategy.name: BM25Strategy,
}


def get_strategy(name: str | None = None) -> ScoringStrategy:
    """Instantiate a built-in strategy by name.

    Raises:
        ValueError: Unknown strategy name.
    """
    key = (name or DEFAULT_STRATEGY).lower()
    if key not in STRATEGIES:
        available = ", ".join(sorted(STRATEGIES))
        raise ValueError(f"unknown matching strategy '{name}' (available: {available})")
    return STRATEGIES[key]()


@dataclass(frozen=True)
class SkillMatch:
    """A skill that cleared the threshold, with its ranking inputs."""

    skill: SkillDescriptor
    score: float
    specificity: int

    def sort_key(self) -> tuple:
        installed = self.skill.installed_at.timestamp() if self.skill.installed_at else 0.0
        return (
            -self.score,
            -self.specificity,
            -installed,
            self.skill.plugin_name,
            self.skill.skill_id,
        )


class SkillMatcher:
    """Select the installed skills relevant to a task.

    Example:
        >>> matcher = SkillMatcher()
        >>> matcher.match("refactor this React button component", catalog.load())
        [SkillDescriptor(skill_id='refactoring-ui', ...)]
    """

    def __init__(
        self,
        strategy: ScoringStrategy | str | None = None,
        threshold: float | None = None,
    ):
        """Initialize the matcher.

        Args:
            strategy: Strategy instance or built-in name (default: term overlap)
            threshold: Minimum score; defaults to the strategy's own threshold
        """
        if strategy is None or isinstance(strategy, str):
            strategy = get_strategy(strategy)
        self.strategy = strategy
        self.threshold = strategy.default_threshold if threshold is None else threshold

    def rank(
        self,
        task_text: str,
        skills: Sequence[SkillDescriptor],
        limit: int | None = None,
    ) -> list[SkillMatch]:
        """Score, filter and order ``skills`` for ``task_text``."""
        skills = list(skills)
        if not skills or not task_text.strip():
            return []

        scores = self.strategy.score(task_text, skills)
        matches = []
        for skill, raw in zip(skills, scores):
            score = round(raw, SCORE_PRECISION)
            if score <= 0 or score < self.threshold:
                continue
            specificity = len(term_set(skill.trigger_description))
            matches.append(SkillMatch(skill=skill, score=score, specificity=specificity))

        matches.sort(key=SkillMatch.sort_key)
        logger.debug(
            "Matched %d of %d skills with %s (threshold %.3f)",
            len(matches), len(skills), self.strategy.name, self.threshold,
        )
        if limit is not None:
            matches = matches[: max(limit, 0)]
        return matches

    def match(
        self,
        task_text: str,
        skills: Sequence[SkillDescriptor],
        limit: int | None = None,
    ) -> list[SkillDescriptor]:
        """Skills relevant to ``task_text``, most relevant first.

        Args:
            task_text: Free-text description of the current task
            skills: Candidate skills
            limit: Keep at most this many

        Returns:
            Matching skills; empty when none clears the threshold
        """
        return [m.skill for m in self.rank(task_text, skills, limit)]


def render_skill(skill: SkillDescriptor) -> str:
    body = skill.body_content.strip()
    header = f"## Skill: {skill.qualified_name}"
    return f"{header}\n\n{body}\n" if body else f"{header}\n"


def render_context(matches: Sequence[SkillDescriptor], max_chars: int | None = None) -> str:
    """Concatenate matched skill bodies for injection into an agent context.

    Skills are emitted in the given order. With ``max_chars`` the output stops
    before the first skill that would not fit; the first skill is always
    included, cut to ``max_chars`` if it alone is over budget.

    Args:
        matches: Skills, most relevant first
        max_chars: Character budget (None for unlimited)

    Returns:
        Rendered context ("" when there are no matches)
    """
    separator = "\n"
    parts: list[str] = []
    used = 0

    for skill in matches:
        block = render_skill(skill)
        extra = len(block) + (len(separator) if parts else 0)
        if max_chars is not None and used + extra > max_chars:
            if not parts:
                parts.append(block[: max(max_chars, 0)])
            break
        parts.append(block)
        used += extra

    return separator.join(parts)
