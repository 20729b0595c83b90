"""
Database schema management for the memory palace.

This module handles:
- Table creation (memories, fragments, links, entities, mentions, relations)
- Dream session logs and rate limit windows
- Index creation for performance
- FTS5 virtual table setup for lexical candidate search
- WAL mode configuration
- Foreign key constraints
"""

import sqlite3


def init_database(conn: sqlite3.Connection, enable_wal: bool = True) -> None:
    """
    Initialize database schema with indexes and FTS5.

    Args:
        conn: SQLite connection object
        enable_wal: Enable WAL mode for concurrent writes (default: True)
    """
    if enable_wal:
        conn.execute("PRAGMA journal_mode=WAL")

    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS memories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            hash_id TEXT NOT NULL UNIQUE,
            memory_type TEXT NOT NULL CHECK(memory_type IN ('episodic','semantic','procedural','self_model')),
            content TEXT NOT NULL,
            summary TEXT NOT NULL,
            tags TEXT DEFAULT '[]',          -- JSON array
            concepts TEXT DEFAULT '[]',      -- JSON array
            emotional_valence REAL DEFAULT 0 CHECK(emotional_valence >= -1 AND emotional_valence <= 1),
            importance REAL DEFAULT 0.5 CHECK(importance >= 0 AND importance <= 1),
            access_count INTEGER DEFAULT 0,
            source TEXT,
            source_id TEXT,
            related_user TEXT,
            related_wallet TEXT,
            metadata TEXT DEFAULT '{}',      -- JSON object
            created_at TIMESTAMP NOT NULL,
            last_accessed TIMESTAMP NOT NULL,
            decay_factor REAL DEFAULT 1.0,
            evidence_ids TEXT DEFAULT '[]',  -- JSON array of memory ids
            compacted INTEGER DEFAULT 0,
            compacted_into TEXT,             -- hash_id of the summarizing memory
            ledger_signature TEXT,
            embedding BLOB                   -- float32 summary vector
        );

        CREATE TABLE IF NOT EXISTS memory_fragments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            memory_id INTEGER NOT NULL,
            fragment_type TEXT NOT NULL CHECK(fragment_type IN ('summary','content_chunk','tag_context')),
            content TEXT NOT NULL,
            embedding BLOB,
            created_at TIMESTAMP NOT NULL,
            FOREIGN KEY (memory_id) REFERENCES memories(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS memory_links (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_id INTEGER NOT NULL,
            target_id INTEGER NOT NULL,
            link_type TEXT NOT NULL CHECK(link_type IN ('follows','relates','elaborates','contradicts','supports','causes')),
            strength REAL DEFAULT 0.5 CHECK(strength >= 0 AND strength <= 1),
            created_at TIMESTAMP NOT NULL,
            UNIQUE(source_id, target_id, link_type),
            CHECK(source_id != target_id),
            FOREIGN KEY (source_id) REFERENCES memories(id) ON DELETE CASCADE,
            FOREIGN KEY (target_id) REFERENCES memories(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS entities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity_type TEXT NOT NULL CHECK(entity_type IN ('person','project','concept','token','wallet','location','event')),
            name TEXT NOT NULL,
            normalized_name TEXT NOT NULL UNIQUE,
            aliases TEXT DEFAULT '[]',       -- JSON array of normalized aliases
            description TEXT,
            metadata TEXT DEFAULT '{}',
            mention_count INTEGER DEFAULT 1,
            first_seen TIMESTAMP NOT NULL,
            last_seen TIMESTAMP NOT NULL,
            embedding BLOB
        );

        CREATE TABLE IF NOT EXISTS entity_mentions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity_id INTEGER NOT NULL,
            memory_id INTEGER NOT NULL,
            context TEXT,
            salience REAL DEFAULT 0.5 CHECK(salience >= 0 AND salience <= 1),
            created_at TIMESTAMP NOT NULL,
            UNIQUE(entity_id, memory_id),
            FOREIGN KEY (entity_id) REFERENCES entities(id) ON DELETE CASCADE,
            FOREIGN KEY (memory_id) REFERENCES memories(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS entity_relations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_entity_id INTEGER NOT NULL,
            target_entity_id INTEGER NOT NULL,
            relation_type TEXT NOT NULL,
            strength REAL DEFAULT 0.5 CHECK(strength >= 0 AND strength <= 1),
            evidence_memory_ids TEXT DEFAULT '[]',
            created_at TIMESTAMP NOT NULL,
            UNIQUE(source_entity_id, target_entity_id, relation_type),
            CHECK(source_entity_id != target_entity_id),
            FOREIGN KEY (source_entity_id) REFERENCES entities(id) ON DELETE CASCADE,
            FOREIGN KEY (target_entity_id) REFERENCES entities(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS dream_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_type TEXT NOT NULL CHECK(session_type IN ('consolidation','reflection','emergence','compaction')),
            input_memory_ids TEXT DEFAULT '[]',
            output TEXT NOT NULL,
            new_memories_created TEXT DEFAULT '[]',
            created_at TIMESTAMP NOT NULL
        );

        CREATE TABLE IF NOT EXISTS rate_limits (
            key TEXT PRIMARY KEY,
            count INTEGER NOT NULL DEFAULT 0,
            window_start TIMESTAMP NOT NULL
        );

        -- Indexes for performance
        CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type);
        CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance DESC);
        CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(related_user);
        CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_memories_last_accessed ON memories(last_accessed);
        CREATE INDEX IF NOT EXISTS idx_memories_decay ON memories(decay_factor);
        CREATE INDEX IF NOT EXISTS idx_memories_compaction ON memories(memory_type, compacted, decay_factor, importance, created_at);
        CREATE INDEX IF NOT EXISTS idx_fragments_memory_id ON memory_fragments(memory_id);
        CREATE INDEX IF NOT EXISTS idx_links_source ON memory_links(source_id);
        CREATE INDEX IF NOT EXISTS idx_links_target ON memory_links(target_id);
        CREATE INDEX IF NOT EXISTS idx_links_strength ON memory_links(strength DESC);
        CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(entity_type);
        CREATE INDEX IF NOT EXISTS idx_mentions_entity ON entity_mentions(entity_id);
        CREATE INDEX IF NOT EXISTS idx_mentions_memory ON entity_mentions(memory_id);
        CREATE INDEX IF NOT EXISTS idx_relations_source ON entity_relations(source_entity_id);
        CREATE INDEX IF NOT EXISTS idx_relations_target ON entity_relations(target_entity_id);
        CREATE INDEX IF NOT EXISTS idx_dream_logs_type ON dream_logs(session_type);
    """)

    # Standalone FTS5 table: rows are written alongside memories by MemoryCRUD
    conn.execute("""
        CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
            memory_id UNINDEXED,
            summary,
            content
        )
    """)

    conn.commit()
