"""
Swappable rule-based classifiers.

Three strategy interfaces with default keyword/regex implementations:
- ConceptClassifier: controlled-vocabulary concepts for a memory
- EntityExtractor: named things mentioned in memory text
- LinkClassifier: link type between a new memory and a similar one

A learned or LLM-backed implementation can be passed to Cortex in place
of any of these without touching storage or retrieval.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from .storage.models import Memory

CONCEPTS = (
    "market_event",
    "holder_behavior",
    "self_insight",
    "social_interaction",
    "community_pattern",
    "token_economics",
    "sentiment_shift",
    "recurring_user",
    "whale_activity",
    "price_action",
    "engagement_pattern",
    "identity_evolution",
)

CONCEPT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "market_event": ("market", "listing", "launch", "volume", "liquidity", "ath", "crash"),
    "holder_behavior": ("holder", "holders", "holding", "hodl", "bought", "sold", "accumulate"),
    "self_insight": ("myself", "realize", "realized", "reflect", "noticed", "introspection"),
    "social_interaction": ("reply", "replied", "mention", "mentioned", "asked", "conversation", "said"),
    "community_pattern": ("community", "everyone", "people", "members", "crowd"),
    "token_economics": ("supply", "burn", "mint", "tokenomics", "emission", "staking"),
    "sentiment_shift": ("mood", "sentiment", "fear", "greed", "bullish", "bearish", "panic"),
    "recurring_user": ("again", "returning", "regular", "usual", "back"),
    "whale_activity": ("whale", "whales", "massive", "large"),
    "price_action": ("price", "pumped", "pump", "dumped", "dump", "rally", "dip", "%"),
    "engagement_pattern": ("likes", "retweet", "retweets", "engagement", "followers", "views"),
    "identity_evolution": ("identity", "become", "becoming", "evolve", "evolving", "who"),
}

SOURCE_CONCEPTS: Dict[str, str] = {
    "market": "market_event",
    "price": "price_action",
    "whale": "whale_activity",
    "mention": "social_interaction",
    "reply": "social_interaction",
    "dream": "self_insight",
    "reflection": "self_insight",
    "emergence": "identity_evolution",
}

_WORDS = re.compile(r"[a-z0-9%]+")


def _vocab_rank(concept: str) -> int:
    return CONCEPTS.index(concept) if concept in CONCEPTS else len(CONCEPTS)


class ConceptClassifier(ABC):
    @abstractmethod
    def infer(self, summary: str, source: Optional[str] = None,
              tags: Optional[Iterable[str]] = None) -> List[str]:
        """Return concepts from the controlled vocabulary, best first."""


class KeywordConceptClassifier(ConceptClassifier):
    """Concept inference from keyword hits over summary, source and tags."""

    def __init__(self, keywords: Optional[Dict[str, Tuple[str, ...]]] = None,
                 max_concepts: int = 4):
        self.keywords = keywords or CONCEPT_KEYWORDS
        self.max_concepts = max_concepts

    def infer(self, summary: str, source: Optional[str] = None,
              tags: Optional[Iterable[str]] = None) -> List[str]:
        tags = [t.lower() for t in (tags or [])]
        text = " ".join([summary or "", source or "", " ".join(tags)]).lower()
        words = set(_WORDS.findall(text))
        if "%" in text:
            words.add("%")

        hits: Dict[str, int] = {}
        for concept, keywords in self.keywords.items():
            count = sum(1 for k in keywords if k in words)
            if concept in tags:
                count += 2
            if count:
                hits[concept] = count

        source_key = (source or "").lower()
        for fragment, concept in SOURCE_CONCEPTS.items():
            if fragment in source_key:
                hits[concept] = hits.get(concept, 0) + 2

        ranked = sorted(hits.items(), key=lambda kv: (-kv[1], _vocab_rank(kv[0])))
        return [concept for concept, _ in ranked[:self.max_concepts]]


@dataclass(frozen=True)
class ExtractedEntity:
    name: str
    entity_type: str


class EntityExtractor(ABC):
    @abstractmethod
    def extract(self, text: str) -> List[ExtractedEntity]:
        """Return entities found in text, without duplicates."""


class RuleBasedEntityExtractor(EntityExtractor):
    """
    Regex extraction of handles, wallet addresses, tickers and proper nouns.

    - @handle                      -> person
    - base58 string of 32-44 chars -> wallet
    - $TICKER (2-10 capitals)      -> token
    - Capitalized Multi Word       -> concept
    """

    HANDLE = re.compile(r"@(\w+)")
    WALLET = re.compile(r"\b[1-9A-HJ-NP-Za-km-z]{32,44}\b")
    TICKER = re.compile(r"\$([A-Z]{2,10})\b")
    PROPER_NOUN = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)\b")

    def extract(self, text: str) -> List[ExtractedEntity]:
        entities: List[ExtractedEntity] = []
        seen = set()

        def add(name: str, entity_type: str) -> None:
            key = name.lower()
            if key not in seen:
                seen.add(key)
                entities.append(ExtractedEntity(name, entity_type))

        for name in self.HANDLE.findall(text):
            add(name, "person")
        for name in self.WALLET.findall(text):
            add(name, "wallet")
        for name in self.TICKER.findall(text):
            add(name, "token")
        for name in self.PROPER_NOUN.findall(text):
            if len(name) > 3:
                add(name, "concept")

        return entities


class LinkClassifier(ABC):
    @abstractmethod
    def classify(self, new: Memory, candidate: Memory,
                 similarity: Optional[float] = None) -> Optional[Tuple[str, float]]:
        """Return (link_type, strength) for new -> candidate, or None for no link."""


class HeuristicLinkClassifier(LinkClassifier):
    """
    Ordered rules:
    1. same related user, created within follow_window  -> follows
    2. valence divergence above threshold + shared concept -> contradicts
    3. semantic new memory, episodic candidate          -> elaborates
    4. enough concept overlap, or a vector match        -> relates
    """

    def __init__(self,
                 follow_window: timedelta = timedelta(hours=1),
                 valence_divergence: float = 1.0,
                 min_concept_overlap: int = 1):
        self.follow_window = follow_window
        self.valence_divergence = valence_divergence
        self.min_concept_overlap = min_concept_overlap

    def classify(self, new: Memory, candidate: Memory,
                 similarity: Optional[float] = None) -> Optional[Tuple[str, float]]:
        if new.id == candidate.id:
            return None

        overlap = len(set(new.concepts) & set(candidate.concepts))

        if (new.related_user and new.related_user == candidate.related_user
                and abs(new.created_at - candidate.created_at) <= self.follow_window):
            return "follows", 0.6

        if overlap and abs(new.emotional_valence - candidate.emotional_valence) > self.valence_divergence:
            return "contradicts", 0.7

        if new.memory_type == "semantic" and candidate.memory_type == "episodic":
            return "elaborates", 0.6

        if overlap >= self.min_concept_overlap:
            return "relates", min(0.8, 0.3 + 0.1 * overlap)

        if similarity is not None:
            return "relates", max(0.3, min(0.9, similarity))

        return None
