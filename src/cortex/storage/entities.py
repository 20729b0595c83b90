"""
Entity Operations for the entity-mention graph

This module handles entities extracted from memory text:
- find_entity / insert_entity / touch_entity: Dedup by normalized name or alias
- find_or_insert_entity: Atomic lookup-or-create shared by concurrent extraction tasks
- upsert_mention: Entity <-> memory links with salience
- upsert_entity_relation: Entity <-> entity relations that strengthen with evidence
- get_entity_cooccurrence: Entities sharing memories with a given entity
- match_entities / search_entities_by_name: Similarity and lexical lookup
"""

import json
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .connection import SQLiteOperations, placeholders
from .crud import memory_columns, row_to_memory
from .embeddings import blob_to_embed, cosine_similarities, embed_to_blob
from .models import (
    ENTITY_TYPES,
    Entity,
    EntityCooccurrence,
    EntityMention,
    EntityRelation,
    Memory,
    parse_json,
    parse_timestamp,
)

ENTITY_COLUMNS = """
    id, entity_type, name, normalized_name, aliases, description, metadata,
    mention_count, first_seen, last_seen
"""

# Per-evidence strengthening of an existing relation
RELATION_INCREMENT = 0.1
MAX_CONTEXT_CHARS = 500


def _row_to_entity(row, embedding: Optional[bytes] = None) -> Entity:
    return Entity(
        id=row[0],
        entity_type=row[1],
        name=row[2],
        normalized_name=row[3],
        aliases=parse_json(row[4], []),
        description=row[5],
        metadata=parse_json(row[6], {}),
        mention_count=row[7],
        first_seen=parse_timestamp(row[8]),
        last_seen=parse_timestamp(row[9]),
        embedding=blob_to_embed(embedding) if embedding else None,
    )


class EntityOperations(SQLiteOperations):
    """
    Entity graph operations.

    Mentions are keyed by (entity, memory) and relations by
    (source, target, type); both are upserts, so duplicate extraction
    runs converge.
    """

    def find_entity(self, normalized_name: str) -> Optional[Entity]:
        row = self._fetchone(f"""
            SELECT {ENTITY_COLUMNS} FROM entities
            WHERE normalized_name = ?
               OR EXISTS (SELECT 1 FROM json_each(entities.aliases) WHERE json_each.value = ?)
            ORDER BY normalized_name = ? DESC
            LIMIT 1
        """, (normalized_name, normalized_name, normalized_name))
        return _row_to_entity(row) if row else None

    def insert_entity(self, entity_type: str, name: str, normalized_name: str,
                      aliases: Optional[List[str]] = None,
                      description: Optional[str] = None,
                      metadata: Optional[Dict] = None) -> int:
        """
        Create an entity with mention_count 1.

        Raises:
            ValueError: for an unknown entity type
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Invalid entity_type: {entity_type}. Must be one of: {ENTITY_TYPES}")

        now = datetime.now().isoformat()
        with self._db_lock:
            cursor = self._conn.execute("""
                INSERT INTO entities
                (entity_type, name, normalized_name, aliases, description, metadata,
                 mention_count, first_seen, last_seen)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
            """, (
                entity_type, name, normalized_name,
                json.dumps(aliases or []),
                description,
                json.dumps(metadata or {}),
                now, now,
            ))
            return cursor.lastrowid

    def find_or_insert_entity(self, entity_type: str, name: str, normalized_name: str,
                              aliases: Optional[List[str]] = None,
                              description: Optional[str] = None,
                              metadata: Optional[Dict] = None) -> Tuple[Entity, bool]:
        """
        Touch the entity matching normalized_name, or insert it, under one lock.

        Returns:
            (entity, created). A hit has mention_count and aliases updated.
        """
        alias_keys = list(dict.fromkeys(aliases or []))
        with self._db_lock:
            existing = self.find_entity(normalized_name)
            if existing is not None:
                new_aliases = [a for a in alias_keys
                               if a not in existing.aliases and a != existing.normalized_name]
                self.touch_entity(existing.id, new_aliases or None)
                existing.mention_count += 1
                existing.aliases.extend(new_aliases)
                return existing, False

            entity_id = self.insert_entity(entity_type, name, normalized_name,
                                           alias_keys, description, metadata)

        entity = Entity(
            id=entity_id,
            entity_type=entity_type,
            name=name,
            normalized_name=normalized_name,
            aliases=alias_keys,
            description=description,
            metadata=metadata or {},
        )
        return entity, True

    def touch_entity(self, entity_id: int, new_aliases: Optional[List[str]] = None) -> None:
        with self._db_lock:
            if new_aliases:
                row = self._conn.execute(
                    "SELECT aliases FROM entities WHERE id = ?", (entity_id,)
                ).fetchone()
                merged = list(dict.fromkeys(parse_json(row[0] if row else None, []) + new_aliases))
                self._conn.execute(
                    "UPDATE entities SET aliases = ? WHERE id = ?",
                    (json.dumps(merged), entity_id)
                )
            self._conn.execute("""
                UPDATE entities
                SET mention_count = mention_count + 1, last_seen = ?
                WHERE id = ?
            """, (datetime.now().isoformat(), entity_id))

    def update_entity_embedding(self, entity_id: int, embedding: List[float]) -> bool:
        return self._execute(
            "UPDATE entities SET embedding = ? WHERE id = ?",
            (embed_to_blob(embedding) if embedding else None, entity_id)
        ) > 0

    def upsert_mention(self, entity_id: int, memory_id: int, context: Optional[str],
                       salience: float) -> bool:
        """
        Link an entity to a memory with context and salience.

        Context is truncated and salience clamped to [0, 1].
        """
        salience = max(0.0, min(1.0, float(salience)))
        self._execute("""
            INSERT INTO entity_mentions (entity_id, memory_id, context, salience, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(entity_id, memory_id)
            DO UPDATE SET context = excluded.context, salience = excluded.salience
        """, (entity_id, memory_id, (context or "")[:MAX_CONTEXT_CHARS], salience,
              datetime.now().isoformat()))
        return True

    def upsert_entity_relation(self, source_entity_id: int, target_entity_id: int,
                               relation_type: str, strength: float = 0.5,
                               evidence_memory_id: Optional[int] = None) -> bool:
        """
        Create or strengthen a relationship between entities.

        A repeat adds RELATION_INCREMENT (capped at 1.0) and appends the
        evidence memory id.

        Returns:
            False for self-relations, True otherwise
        """
        if source_entity_id == target_entity_id:
            return False

        with self._db_lock:
            row = self._conn.execute("""
                SELECT id, strength, evidence_memory_ids FROM entity_relations
                WHERE source_entity_id = ? AND target_entity_id = ? AND relation_type = ?
            """, (source_entity_id, target_entity_id, relation_type)).fetchone()

            if row:
                evidence = parse_json(row[2], [])
                if evidence_memory_id is not None and evidence_memory_id not in evidence:
                    evidence.append(evidence_memory_id)
                self._conn.execute("""
                    UPDATE entity_relations SET strength = ?, evidence_memory_ids = ?
                    WHERE id = ?
                """, (min(1.0, row[1] + RELATION_INCREMENT), json.dumps(evidence), row[0]))
            else:
                evidence = [evidence_memory_id] if evidence_memory_id is not None else []
                self._conn.execute("""
                    INSERT INTO entity_relations
                    (source_entity_id, target_entity_id, relation_type, strength,
                     evidence_memory_ids, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (source_entity_id, target_entity_id, relation_type,
                      max(0.0, min(1.0, strength)), json.dumps(evidence),
                      datetime.now().isoformat()))
        return True

    def get_memories_by_entity(self, entity_id: int, limit: int = 20) -> List[Memory]:
        """Memories mentioning an entity, most salient first."""
        rows = self._fetchall(f"""
            SELECT {memory_columns('m')}
            FROM entity_mentions em
            JOIN memories m ON m.id = em.memory_id
            WHERE em.entity_id = ? AND m.compacted = 0
            ORDER BY em.salience DESC, m.id ASC
            LIMIT ?
        """, (entity_id, limit))
        return [row_to_memory(row) for row in rows]

    def get_entities_in_memory(self, memory_id: int) -> List[Entity]:
        cols = ", ".join(f"e.{c.strip()}" for c in ENTITY_COLUMNS.split(","))
        rows = self._fetchall(f"""
            SELECT {cols}
            FROM entity_mentions em
            JOIN entities e ON e.id = em.entity_id
            WHERE em.memory_id = ?
            ORDER BY em.salience DESC, e.id ASC
        """, (memory_id,))
        return [_row_to_entity(row) for row in rows]

    def get_entity_cooccurrence(self, entity_id: int, min_cooccurrence: int = 2,
                                min_salience: float = 0.3,
                                limit: int = 10) -> List[EntityCooccurrence]:
        """
        Entities mentioned alongside entity_id in at least min_cooccurrence memories.

        Both mentions must reach min_salience to count.
        """
        rows = self._fetchall("""
            SELECT other.entity_id,
                   COUNT(DISTINCT other.memory_id) AS cooccurrence_count,
                   AVG(other.salience) AS avg_salience
            FROM entity_mentions mine
            JOIN entity_mentions other
              ON other.memory_id = mine.memory_id AND other.entity_id != mine.entity_id
            WHERE mine.entity_id = ?
              AND mine.salience >= ?
              AND other.salience >= ?
            GROUP BY other.entity_id
            HAVING COUNT(DISTINCT other.memory_id) >= ?
            ORDER BY cooccurrence_count DESC, avg_salience DESC, other.entity_id ASC
            LIMIT ?
        """, (entity_id, min_salience, min_salience, min_cooccurrence, limit))
        return [EntityCooccurrence(row[0], row[1], row[2]) for row in rows]

    def match_entities(self, query_embedding: List[float], threshold: float = 0.3,
                       limit: int = 10,
                       entity_types: Optional[List[str]] = None) -> List[Entity]:
        """Entities by vector similarity, each carrying its similarity score."""
        if not query_embedding:
            return []

        sql = f"SELECT {ENTITY_COLUMNS}, embedding FROM entities WHERE embedding IS NOT NULL"
        params: list = []
        if entity_types:
            sql += f" AND entity_type IN ({placeholders(entity_types)})"
            params.extend(entity_types)
        rows = self._fetchall(sql, tuple(params))

        by_id = {row[0]: row for row in rows}
        scored = [
            (entity_id, sim)
            for entity_id, sim in cosine_similarities(
                query_embedding, [(row[0], row[10]) for row in rows])
            if sim >= threshold
        ]
        scored.sort(key=lambda x: (-x[1], x[0]))

        entities = []
        for entity_id, sim in scored[:limit]:
            entity = _row_to_entity(by_id[entity_id])
            entity.similarity = sim
            entities.append(entity)
        return entities

    def search_entities_by_name(self, terms: Sequence[str], limit: int = 10) -> List[Entity]:
        """Lexical fallback: entities whose normalized name or alias equals a term."""
        terms = list(dict.fromkeys(t.lower() for t in terms if t))
        if not terms:
            return []
        marks = placeholders(terms)
        rows = self._fetchall(f"""
            SELECT {ENTITY_COLUMNS} FROM entities
            WHERE normalized_name IN ({marks})
               OR EXISTS (SELECT 1 FROM json_each(entities.aliases)
                          WHERE json_each.value IN ({marks}))
            ORDER BY mention_count DESC, id ASC
            LIMIT ?
        """, (*terms, *terms, limit))
        return [_row_to_entity(row) for row in rows]

    def list_entities(self, entity_types: Optional[List[str]] = None, min_mentions: int = 1,
                      limit: int = 100) -> List[Entity]:
        sql = f"SELECT {ENTITY_COLUMNS} FROM entities WHERE mention_count >= ?"
        params: list = [min_mentions]
        if entity_types:
            sql += f" AND entity_type IN ({placeholders(entity_types)})"
            params.extend(entity_types)
        sql += " ORDER BY mention_count DESC, id ASC LIMIT ?"
        params.append(limit)
        return [_row_to_entity(row) for row in self._fetchall(sql, tuple(params))]

    def get_entity_relations(self, entity_ids: Sequence[int]) -> List[EntityRelation]:
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        marks = placeholders(ids)
        rows = self._fetchall(f"""
            SELECT source_entity_id, target_entity_id, relation_type, strength, evidence_memory_ids
            FROM entity_relations
            WHERE source_entity_id IN ({marks}) AND target_entity_id IN ({marks})
            ORDER BY strength DESC, id ASC
        """, (*ids, *ids))
        return [
            EntityRelation(row[0], row[1], row[2], row[3], parse_json(row[4], []))
            for row in rows
        ]

    def get_mentions_for_entities(self, entity_ids: Sequence[int], min_salience: float = 0.3,
                                  limit: int = 200) -> List[EntityMention]:
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        rows = self._fetchall(f"""
            SELECT entity_id, memory_id, context, salience
            FROM entity_mentions
            WHERE entity_id IN ({placeholders(ids)}) AND salience >= ?
            ORDER BY salience DESC, id ASC
            LIMIT ?
        """, (*ids, min_salience, limit))
        return [EntityMention(row[0], row[1], row[2], row[3]) for row in rows]
