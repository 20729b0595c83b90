"""
Entity graph: named things mentioned across memories.

Entities are deduplicated by normalized name or alias. Each memory that
mentions an entity gets an EntityMention with a salience score, and every
pair of entities sharing a memory gets a strengthening co_occurs relation.
"""

import logging
import math
import re
from itertools import combinations
from typing import Any, Dict, List, Optional

from ..embeddings import Embedder
from ..heuristics import EntityExtractor, ExtractedEntity, RuleBasedEntityExtractor
from ..scoring import query_terms
from ..storage.backend import MemoryBackend
from ..storage.models import ENTITY_TYPES, Entity, EntityCooccurrence, Memory
from ..tasks import BackgroundTaskQueue

logger = logging.getLogger(__name__)

COOCCURRENCE_RELATION = "co_occurs"
MENTION_CONTEXT_CHARS = 200
GRAPH_MIN_SALIENCE = 0.3
SIMILAR_ENTITY_THRESHOLD = 0.3

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Case-folded, whitespace-collapsed name without a leading @ or $."""
    return _WHITESPACE.sub(" ", name.strip().lstrip("@$")).lower()


def mention_salience(name: str, text: str) -> float:
    """
    How central a name is to a text.

    Earlier first mentions score higher (0.8 within the first 100 chars,
    0.6 within 300, 0.4 after), plus 0.1 per occurrence up to 0.3.
    """
    lowered = text.lower()
    needle = name.lower()
    position = lowered.find(needle)
    if 0 <= position < 100:
        position_score = 0.8
    elif 0 <= position < 300:
        position_score = 0.6
    else:
        position_score = 0.4
    frequency_score = min(lowered.count(needle) * 0.1, 0.3) if needle else 0.0
    return min(1.0, position_score + frequency_score)


class EntityGraph:
    def __init__(self,
                 backend: MemoryBackend,
                 embedder: Optional[Embedder] = None,
                 extractor: Optional[EntityExtractor] = None,
                 tasks: Optional[BackgroundTaskQueue] = None,
                 similarity_threshold: float = SIMILAR_ENTITY_THRESHOLD):
        self.backend = backend
        self.embedder = embedder
        self.extractor = extractor or RuleBasedEntityExtractor()
        self.tasks = tasks
        self.similarity_threshold = similarity_threshold

    def find_or_create_entity(self, name: str, entity_type: str,
                              aliases: Optional[List[str]] = None,
                              description: Optional[str] = None,
                              metadata: Optional[Dict[str, Any]] = None) -> Optional[Entity]:
        """
        Look an entity up by normalized name or alias, creating it on a miss.

        A hit bumps mention_count and last_seen and merges new aliases.
        A new entity is embedded in the background when an embedder exists.
        """
        normalized = normalize_name(name)
        if not normalized:
            return None
        alias_keys = [normalize_name(a) for a in (aliases or []) if normalize_name(a)]

        if entity_type not in ENTITY_TYPES:
            logger.warning(f"Unknown entity type {entity_type!r} for {name!r}, using concept")
            entity_type = "concept"

        entity, created = self.backend.find_or_insert_entity(entity_type, name.strip(), normalized,
                                                             alias_keys, description, metadata)
        if created and self.embedder is not None:
            text = f"{name}: {description}" if description else name
            if self.tasks is not None:
                self.tasks.submit("entity_embed", self._embed_entity, entity.id, text)
            else:
                self._embed_entity(entity.id, text)

        return entity

    def _embed_entity(self, entity_id: int, text: str) -> None:
        vector = self.embedder.embed(text)
        if vector is not None:
            self.backend.update_entity_embedding(entity_id, vector)

    def extract_entities_from_text(self, text: str) -> List[ExtractedEntity]:
        return self.extractor.extract(text or "")

    def extract_and_link_entities(self, memory: Memory) -> List[int]:
        """
        Extract entities from a memory and record their mentions.

        The memory's related_user is always included as a person. Each
        pair of entities found together gets a co_occurs relation with the
        memory as evidence.

        Returns:
            Ids of the entities mentioned, in extraction order
        """
        text = f"{memory.summary} {memory.content}"
        extracted = self.extract_entities_from_text(text)
        if memory.related_user:
            known = {e.name.lower() for e in extracted}
            if memory.related_user.lower() not in known:
                extracted.append(ExtractedEntity(memory.related_user, "person"))

        context = memory.summary[:MENTION_CONTEXT_CHARS]
        entity_ids: List[int] = []
        for item in extracted:
            entity = self.find_or_create_entity(item.name, item.entity_type)
            if entity is None or entity.id in entity_ids:
                continue
            self.backend.upsert_mention(entity.id, memory.id, context,
                                        mention_salience(item.name, text))
            entity_ids.append(entity.id)

        for first, second in combinations(sorted(entity_ids), 2):
            self.backend.upsert_entity_relation(first, second, COOCCURRENCE_RELATION,
                                                evidence_memory_id=memory.id)

        logger.debug(f"Memory {memory.id}: linked {len(entity_ids)} entities")
        return entity_ids

    def create_entity_relation(self, source_entity_id: int, target_entity_id: int,
                               relation_type: str, strength: float = 0.5,
                               evidence_memory_id: Optional[int] = None) -> bool:
        return self.backend.upsert_entity_relation(source_entity_id, target_entity_id,
                                                   relation_type, strength, evidence_memory_id)

    def get_entity_cooccurrences(self, entity_id: int, min_cooccurrence: int = 2,
                                 limit: int = 10) -> List[EntityCooccurrence]:
        return self.backend.get_entity_cooccurrence(
            entity_id, min_cooccurrence=min_cooccurrence,
            min_salience=GRAPH_MIN_SALIENCE, limit=limit,
        )

    def get_memories_by_entity(self, entity_id: int, limit: int = 20) -> List[Memory]:
        return self.backend.get_memories_by_entity(entity_id, limit)

    def get_entities_in_memory(self, memory_id: int) -> List[Entity]:
        return self.backend.get_entities_in_memory(memory_id)

    def find_similar_entities(self, query: str, limit: int = 10,
                              entity_types: Optional[List[str]] = None) -> List[Entity]:
        """
        Entities related to a query.

        Uses vector similarity when an embedder is available; otherwise
        (or when embedding fails) exact matches on query terms.
        """
        if not query:
            return []
        if self.embedder is not None:
            vector = self.embedder.embed(query)
            if vector is not None:
                return self.backend.match_entities(vector, threshold=self.similarity_threshold,
                                                   limit=limit, entity_types=entity_types)
        terms = [normalize_name(t) for t in query.split()] + list(query_terms(query))
        entities = self.backend.search_entities_by_name(terms, limit=limit)
        if entity_types:
            entities = [e for e in entities if e.entity_type in entity_types]
        return entities

    def get_knowledge_graph(self, entity_types: Optional[List[str]] = None,
                            min_mentions: int = 1,
                            include_memories: bool = False,
                            include_links: bool = False,
                            limit: int = 100) -> Dict[str, List[Dict[str, Any]]]:
        """
        Node/edge projection for visualization. Read-only.

        Nodes are entities ('entity-<id>') and, with include_memories,
        memories mentioning them with salience >= 0.3 ('memory-<id>').
        include_links adds memory-to-memory association edges among the
        included memories.
        """
        entities = self.backend.list_entities(entity_types, min_mentions, limit)
        nodes: List[Dict[str, Any]] = []
        edges: List[Dict[str, Any]] = []

        for entity in entities:
            nodes.append({
                "id": f"entity-{entity.id}",
                "type": entity.entity_type,
                "label": entity.name,
                "size": math.log2(entity.mention_count + 1) * 10 + 5,
            })

        entity_ids = [e.id for e in entities]
        for relation in self.backend.get_entity_relations(entity_ids):
            edges.append({
                "source": f"entity-{relation.source_entity_id}",
                "target": f"entity-{relation.target_entity_id}",
                "type": relation.relation_type,
                "weight": relation.strength,
            })

        if include_memories and entity_ids:
            mentions = self.backend.get_mentions_for_entities(
                entity_ids, min_salience=GRAPH_MIN_SALIENCE, limit=limit * 2
            )
            memory_ids = list(dict.fromkeys(m.memory_id for m in mentions))
            memories = {m.id: m for m in self.backend.get_memories(memory_ids)}
            for memory_id in memory_ids:
                memory = memories.get(memory_id)
                if memory is None:
                    continue
                nodes.append({
                    "id": f"memory-{memory.id}",
                    "type": f"memory-{memory.memory_type}",
                    "label": memory.summary[:50],
                    "size": memory.importance * 15 + 3,
                })
            for mention in mentions:
                if mention.memory_id not in memories:
                    continue
                edges.append({
                    "source": f"entity-{mention.entity_id}",
                    "target": f"memory-{mention.memory_id}",
                    "type": "mentioned_in",
                    "weight": mention.salience,
                })

            if include_links and memories:
                included = set(memories)
                seen = set()
                for memory_id in memory_ids:
                    for link in self.backend.get_links(memory_id):
                        if link.source_id not in included or link.target_id not in included:
                            continue
                        key = (link.source_id, link.target_id, link.link_type)
                        if key in seen:
                            continue
                        seen.add(key)
                        edges.append({
                            "source": f"memory-{link.source_id}",
                            "target": f"memory-{link.target_id}",
                            "type": link.link_type,
                            "weight": link.strength,
                        })

        return {"nodes": nodes, "edges": edges}

    def get_graph_stats(self) -> Dict[str, Any]:
        counts = self.backend.get_graph_counts()
        top = self.backend.list_entities(limit=10)
        return {
            "entity_count": counts.get("entities", 0),
            "relation_count": counts.get("relations", 0),
            "mention_count": counts.get("mentions", 0),
            "link_count": counts.get("links", 0),
            "top_entities": [
                {"name": e.name, "type": e.entity_type, "mentions": e.mention_count}
                for e in top
            ],
        }
