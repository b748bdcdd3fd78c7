"""Term extraction shared by the scoring strategies."""

from __future__ import annotations

import re

STOPWORDS = frozenset(
    """
    a about above after again all also an and any are as at be been before
    being below between both but by can could did do does doing down during
    each few for from further had has have having how i if in into is it its
    itself just me more most my no nor not now of off on once only or other
    our out over own same should so some such than that the their them then
    there these they this those through to too under until up use used uses
    using very was we were what when where which while who why will with
    would you your
    """.split()
)

_TOKEN = re.compile(r"[a-z0-9][a-z0-9_+#.]*[a-z0-9+#]|[a-z0-9]")


def stem(token: str) -> str:
    """Light suffix stripping so ``components`` meets ``component``."""
    if len(token) > 5 and token.endswith("ing"):
        return token[:-3]
    if len(token) > 4 and token.endswith("ied"):
        return token[:-3] + "y"
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 4 and token.endswith("ed"):
        return token[:-2]
    if token.endswith(("sses", "xes", "ches", "shes")):
        return token[:-2]
    if len(token) > 3 and token.endswith("s") and not token.endswith(("ss", "us", "is")):
        return token[:-1]
    return token


def tokenize(text: str) -> list[str]:
    """Lower-case, split, drop stop words and one-letter tokens, then stem.

    Args:
        text: Input text

    Returns:
        List of terms, in order, with repeats
    """
    tokens = _TOKEN.findall(text.lower())
    return [stem(t) for t in tokens if len(t) > 1 and t not in STOPWORDS]


def term_set(text: str) -> frozenset[str]:
    return frozenset(tokenize(text))
