"""BM25 ranking over skill trigger descriptions.

BM25 (Best Matching 25) extends TF-IDF with document length normalization.

Formula:
    score(D,Q) = Σ IDF(qi) * (f(qi,D) * (k1 + 1)) / (f(qi,D) + k1 * (1 - b + b * |D|/avgdl))

Where:
    - f(qi,D) = term frequency of qi in document D
    - |D| = length of document D
    - avgdl = average document length
    - k1 = term frequency saturation parameter (default: 1.5)
    - b = length normalization parameter (default: 0.75)

Each query term counts once, so repeating a word in the task text does not
inflate a skill's score.
"""

import math
from collections import Counter

from skills.text import tokenize


class BM25:
    """BM25 ranking with an inverted index.

    The index is rebuilt per match call; the installed-skill corpus is small.
    """

    def __init__(
        self,
        k1: float = 1.5,
        b: float = 0.75,
    ):
        """Initialize BM25.

        Args:
            k1: Term frequency saturation (higher = more weight to TF)
            b: Length normalization (0 = no normalization, 1 = full)
        """
        self.k1 = k1
        self.b = b

        self.documents: list[list[str]] = []
        self.doc_lengths: list[int] = []
        self.avgdl: float = 0.0
        self.doc_count: int = 0

        # term -> {doc_id -> frequency}
        self.inverted_index: dict[str, dict[int, int]] = {}
        self.doc_freqs: dict[str, int] = {}
        self._idf_cache: dict[str, float] = {}

    def add_document(self, doc_id: int, text: str) -> None:
        """Add a document to the index.

        Args:
            doc_id: Document ID (index in documents list)
            text: Document text
        """
        tokens = tokenize(text)

        while len(self.documents) <= doc_id:
            self.documents.append([])
            self.doc_lengths.append(0)

        self.documents[doc_id] = tokens
        self.doc_lengths[doc_id] = len(tokens)

        for term, count in Counter(tokens).items():
            postings = self.inverted_index.setdefault(term, {})
            if doc_id not in postings:
                self.doc_freqs[term] = self.doc_freqs.get(term, 0) + 1
            postings[doc_id] = count

        self.doc_count = len([d for d in self.documents if d])
        total_length = sum(self.doc_lengths)
        self.avgdl = total_length / self.doc_count if self.doc_count > 0 else 0

        self._idf_cache.clear()

    def _idf(self, term: str) -> float:
        if term in self._idf_cache:
            return self._idf_cache[term]

        df = self.doc_freqs.get(term, 0)
        if df == 0:
            idf = 0.0
        else:
            idf = math.log((self.doc_count - df + 0.5) / (df + 0.5) + 1)

        self._idf_cache[term] = idf
        return idf

    def _term_score(self, term: str, doc_id: int) -> float:
        tf = self.inverted_index[term][doc_id]
        doc_len = self.doc_lengths[doc_id]
        numerator = tf * (self.k1 + 1)
        denominator = tf + self.k1 * (1 - self.b + self.b * doc_len / self.avgdl)
        return self._idf(term) * numerator / denominator

    def search(self, query: str, top_k: int | None = None) -> list[tuple[int, float]]:
        """Score every document sharing a term with ``query``.

        Args:
            query: Search query
            top_k: Number of results to return (all when None)

        Returns:
            List of (doc_id, score) tuples sorted by score descending, then doc_id
        """
        if self.doc_count == 0:
            return []

        scores: dict[int, float] = {}
        for term in sorted(set(tokenize(query))):
            for doc_id in self.inverted_index.get(term, {}):
                scores[doc_id] = scores.get(doc_id, 0.0) + self._term_score(term, doc_id)

        results = sorted(scores.items(), key=lambda x: (-x[1], x[0]))
        return results if top_k is None else results[:top_k]

    def get_score(self, query: str, doc_id: int) -> float:
        """Get the BM25 score for a specific document.

        Args:
            query: Search query
            doc_id: Document ID

        Returns:
            BM25 score
        """
        if doc_id >= len(self.documents) or not self.documents[doc_id]:
            return 0.0

        score = 0.0
        for term in sorted(set(tokenize(query))):
            if doc_id in self.inverted_index.get(term, {}):
                score += self._term_score(term, doc_id)
        return score
