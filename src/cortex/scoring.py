"""
Composite relevance scoring for recall candidates.

score = decay_factor * weighted_mean(signals)

Signals, each in [0, 1]:
- recency:    recency_base ** hours since last access
- relevance:  stopword-filtered query terms matched on word boundaries,
              summary hits weighted above content hits
- tags:       overlap between requested tags (or query terms) and the
              memory's tags and concepts
- importance: the memory's importance
- vector:     cosine similarity, only when the embedding capability
              produced one

The mean is taken over the signals present, so scores with and without
vector similarity stay on the same scale. decay_factor gates the result:
a fully faded memory is suppressed however well it matches.
"""

import re
from datetime import datetime
from functools import lru_cache
from typing import FrozenSet, Iterable, Optional, Tuple

from .config import RetrievalConfig
from .options import RecallOptions
from .storage.models import Memory

STOPWORDS = frozenset("""
    a about above after again all am an and any are as at be because been before
    being below between both but by can could did do does doing down during each
    few for from further had has have having he her here hers him his how i if in
    into is it its itself just me more most my no nor not now of off on once only
    or other our ours out over own same she should so some such than that the their
    theirs them then there these they this those through to too under until up very
    was we were what when where which while who whom why will with would you your
    yours
""".split())

SUMMARY_HIT = 1.0
CONTENT_HIT = 0.5

_TERM = re.compile(r"[a-z0-9$@]+")


@lru_cache(maxsize=256)
def query_terms(text: Optional[str]) -> Tuple[str, ...]:
    """Lowercased, de-duplicated, stopword-filtered terms of length >= 3."""
    if not text:
        return ()
    terms = []
    for term in _TERM.findall(text.lower()):
        term = term.lstrip("$@")
        if len(term) >= 3 and term not in STOPWORDS and term not in terms:
            terms.append(term)
    return tuple(terms)


@lru_cache(maxsize=1024)
def _term_pattern(term: str) -> "re.Pattern":
    return re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE)


def keyword_relevance(terms: Iterable[str], summary: str, content: str) -> float:
    """
    Term overlap between a query and a memory's text.

    Each term scores SUMMARY_HIT if it appears in the summary, otherwise
    CONTENT_HIT if it appears in the content; the sum is normalised by
    the number of terms.
    """
    terms = list(terms)
    if not terms:
        return 0.0
    total = 0.0
    for term in terms:
        pattern = _term_pattern(term)
        if pattern.search(summary or ""):
            total += SUMMARY_HIT
        elif pattern.search(content or ""):
            total += CONTENT_HIT
    return min(1.0, total / len(terms))


def tag_overlap(wanted: FrozenSet[str], memory: Memory) -> float:
    """Fraction of wanted tags present among the memory's tags and concepts."""
    if not wanted:
        return 0.0
    have = {t.lower() for t in memory.tags} | {c.lower() for c in memory.concepts}
    return len(wanted & have) / len(wanted)


class MemoryScorer:
    """
    Pure scoring function over (memory, request).

    Usage:
        scorer = MemoryScorer(config.retrieval)
        score = scorer.score(memory, RecallOptions(query="SOL price"))
    """

    def __init__(self, config: Optional[RetrievalConfig] = None):
        self.config = config or RetrievalConfig()

    def recency(self, memory: Memory, now: Optional[datetime] = None) -> float:
        now = now or datetime.now()
        last = memory.last_accessed or memory.created_at or now
        hours = max(0.0, (now - last).total_seconds() / 3600)
        return self.config.recency_base ** hours

    def score(self,
              memory: Memory,
              request: RecallOptions,
              vector_similarity: Optional[float] = None,
              now: Optional[datetime] = None) -> float:
        """
        Composite score in [0, 1].

        Args:
            memory: Candidate memory
            request: The recall request
            vector_similarity: Cosine similarity, None when unavailable
            now: Reference time (defaults to now)
        """
        cfg = self.config
        terms = query_terms(request.query)
        wanted = frozenset(t.lower() for t in (request.tags or [])) or frozenset(terms)

        signals = [
            (cfg.weight_recency, self.recency(memory, now)),
            (cfg.weight_importance, max(0.0, min(1.0, memory.importance))),
        ]
        if terms:
            signals.append((cfg.weight_relevance, keyword_relevance(terms, memory.summary, memory.content)))
        if wanted:
            signals.append((cfg.weight_tags, tag_overlap(wanted, memory)))
        if vector_similarity is not None:
            signals.append((cfg.weight_vector, max(0.0, min(1.0, vector_similarity))))

        total_weight = sum(w for w, _ in signals)
        if total_weight <= 0:
            return 0.0
        combined = sum(w * s for w, s in signals) / total_weight

        return combined * max(0.0, min(1.0, memory.decay_factor))
