"""SQLite storage layer for the entity graph.

Single-file database with:
* ``entities`` -- canonical records (aliases/metadata as JSON text)
* ``entity_relationships`` -- unique per (source, target, type)
* ``entity_mentions`` -- unique per (entity, source_type, source_id)
* ``entity_processing_log`` -- unique per (source_type, source_id)
* Auto-create schema on first use

Uniqueness is enforced by the schema, so relationship, mention and
processing-log writes are single upsert statements. Every ``sqlite3.Error``
leaves this module as :class:`StorageUnavailable` (or :class:`NotFound` for
foreign-key violations).
"""

from __future__ import annotations

import functools
import json
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar

from .errors import NotFound, StorageUnavailable
from .models import Entity, Mention, ProcessingRecord, Relationship

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# SQLite's default host-parameter limit is 999 on older builds.
_IN_CHUNK = 500

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
-- Knowledge graph: entities
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    aliases TEXT DEFAULT '[]',
    email TEXT,
    description TEXT,
    notes TEXT,
    metadata TEXT DEFAULT '{}',
    first_seen_at REAL,
    last_seen_at REAL,
    mention_count INTEGER DEFAULT 0,
    is_important INTEGER DEFAULT 0,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type);
CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(name);
CREATE INDEX IF NOT EXISTS idx_entities_email ON entities(email);
CREATE INDEX IF NOT EXISTS idx_entities_important ON entities(is_important);
CREATE INDEX IF NOT EXISTS idx_entities_last_seen ON entities(last_seen_at);

-- Knowledge graph: relationships
CREATE TABLE IF NOT EXISTS entity_relationships (
    id TEXT PRIMARY KEY,
    source_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    target_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    relationship_type TEXT NOT NULL,
    confidence REAL DEFAULT 1.0,
    metadata TEXT DEFAULT '{}',
    created_at REAL NOT NULL,
    UNIQUE (source_entity_id, target_entity_id, relationship_type)
);

CREATE INDEX IF NOT EXISTS idx_rel_source ON entity_relationships(source_entity_id);
CREATE INDEX IF NOT EXISTS idx_rel_target ON entity_relationships(target_entity_id);

-- Provenance: where an entity was seen
CREATE TABLE IF NOT EXISTS entity_mentions (
    id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    context TEXT,
    confidence REAL DEFAULT 1.0,
    created_at REAL NOT NULL,
    UNIQUE (entity_id, source_type, source_id)
);

CREATE INDEX IF NOT EXISTS idx_mentions_entity ON entity_mentions(entity_id);
CREATE INDEX IF NOT EXISTS idx_mentions_source ON entity_mentions(source_type, source_id);

-- Which source records were already scanned
CREATE TABLE IF NOT EXISTS entity_processing_log (
    id TEXT PRIMARY KEY,
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    processed_at REAL NOT NULL,
    entities_found INTEGER DEFAULT 0,
    relationships_found INTEGER DEFAULT 0,
    error TEXT,
    UNIQUE (source_type, source_id)
)
"""

_ENTITY_COLUMNS = {
    "type", "name", "aliases", "email", "description", "notes",
    "metadata", "is_important",
}

_ALIAS_EQUALS = (
    "EXISTS (SELECT 1 FROM json_each(entities.aliases) a WHERE pylower(a.value) = ?)"
)
_ALIAS_CONTAINS = (
    "EXISTS (SELECT 1 FROM json_each(entities.aliases) a WHERE instr(pylower(a.value), ?) > 0)"
)


def _pylower(value: Optional[str]) -> Optional[str]:
    # SQLite's lower() only folds ASCII; keep SQL and Python comparisons identical.
    return value.lower() if isinstance(value, str) else value


def _new_id() -> str:
    return uuid.uuid4().hex


def _storage_op(fn: F) -> F:
    """Translate sqlite3 errors into the graph's error taxonomy."""

    @functools.wraps(fn)
    def wrapper(self: "GraphStorage", *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(self, *args, **kwargs)
        except sqlite3.IntegrityError as exc:
            self._rollback()
            raise NotFound(f"{fn.__name__}: {exc}") from exc
        except sqlite3.Error as exc:
            self._rollback()
            raise StorageUnavailable(f"{fn.__name__}: {exc}") from exc

    return wrapper  # type: ignore[return-value]


class GraphStorage:
    """SQLite-backed repository for entities, relationships, mentions and the processing log."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path is None:
            from .config import load_config

            db_path = load_config().db_path
        self.db_path = db_path

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn: Optional[sqlite3.Connection] = None
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.create_function("pylower", 1, _pylower, deterministic=True)
        return self._conn

    def _rollback(self) -> None:
        if self._conn is not None and self._conn.in_transaction:
            try:
                self._conn.rollback()
            except sqlite3.Error as exc:
                logger.debug("Rollback failed: %s", exc)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Schema bootstrap
    # ------------------------------------------------------------------

    @_storage_op
    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        for stmt in _SCHEMA_SQL.split(";"):
            stmt = stmt.strip()
            if stmt:
                conn.execute(stmt)
        conn.commit()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def _fetch_entities(self, sql: str, params: Iterable[Any] = ()) -> List[Entity]:
        rows = self._get_conn().execute(sql, tuple(params)).fetchall()
        return [Entity.from_row(r) for r in rows]

    @_storage_op
    def insert_entity(
        self,
        entity_type: str,
        name: str,
        aliases: Optional[List[str]] = None,
        email: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Entity:
        """Insert a new entity with zero mentions. Returns the stored row."""
        conn = self._get_conn()
        eid = _new_id()
        now = time.time()
        conn.execute(
            """INSERT INTO entities (id, type, name, aliases, email, description, notes,
                                     metadata, first_seen_at, last_seen_at, mention_count,
                                     is_important, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, 0, 0, ?, ?)""",
            (
                eid,
                entity_type,
                name,
                json.dumps(aliases or []),
                email,
                description,
                notes,
                json.dumps(metadata or {}),
                now,
                now,
                now,
            ),
        )
        conn.commit()
        return self.get_entity(eid)  # type: ignore[return-value]

    @_storage_op
    def update_entity(self, entity_id: str, **fields: Any) -> Optional[Entity]:
        """Update the given columns and ``updated_at``. Returns None if no such row."""
        unknown = set(fields) - _ENTITY_COLUMNS
        if unknown:
            raise ValueError(f"Unknown entity columns: {sorted(unknown)}")

        updates: list[str] = []
        params: list[Any] = []
        for col, val in fields.items():
            if col in ("aliases", "metadata"):
                val = json.dumps(val)
            elif col == "is_important":
                val = 1 if val else 0
            updates.append(f"{col} = ?")
            params.append(val)
        updates.append("updated_at = ?")
        params.append(time.time())
        params.append(entity_id)

        conn = self._get_conn()
        cur = conn.execute(
            f"UPDATE entities SET {', '.join(updates)} WHERE id = ?", params
        )
        conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get_entity(entity_id)

    @_storage_op
    def get_entity(self, entity_id: str) -> Optional[Entity]:
        """Return entity or None."""
        rows = self._fetch_entities("SELECT * FROM entities WHERE id = ?", (entity_id,))
        return rows[0] if rows else None

    @_storage_op
    def find_entities_by_name(self, name: str) -> List[Entity]:
        """Case-insensitive exact name match, oldest first."""
        return self._fetch_entities(
            "SELECT * FROM entities WHERE pylower(name) = ? ORDER BY created_at, rowid",
            (name.lower(),),
        )

    @_storage_op
    def find_entities_by_alias(self, alias: str) -> List[Entity]:
        """Case-insensitive exact alias match, oldest first."""
        return self._fetch_entities(
            f"SELECT * FROM entities WHERE {_ALIAS_EQUALS} ORDER BY created_at, rowid",
            (alias.lower(),),
        )

    @_storage_op
    def find_entities_by_email(self, email: str) -> List[Entity]:
        """Case-insensitive exact email match, oldest first."""
        return self._fetch_entities(
            "SELECT * FROM entities WHERE email IS NOT NULL AND pylower(email) = ? "
            "ORDER BY created_at, rowid",
            (email.lower(),),
        )

    @_storage_op
    def find_entities_name_containing(self, fragment: str, limit: int = 20) -> List[Entity]:
        """Entities whose name contains *fragment* (case-insensitive)."""
        return self._fetch_entities(
            """SELECT * FROM entities WHERE instr(pylower(name), ?) > 0
               ORDER BY mention_count DESC, created_at, rowid LIMIT ?""",
            (fragment.lower(), limit),
        )

    @_storage_op
    def search_entities(self, query: str, limit: int = 10) -> List[Entity]:
        """Entities whose name or any alias contains *query* (case-insensitive)."""
        q = query.lower()
        return self._fetch_entities(
            f"""SELECT * FROM entities
                WHERE instr(pylower(name), ?) > 0 OR {_ALIAS_CONTAINS}
                ORDER BY mention_count DESC, created_at, rowid LIMIT ?""",
            (q, q, limit),
        )

    @_storage_op
    def list_entities(
        self,
        entity_type: Optional[str] = None,
        important_only: bool = False,
        order_by: str = "mentions",
        limit: Optional[int] = None,
    ) -> List[Entity]:
        """List entities, ordered by mention count or by last sighting (never-seen last)."""
        where: list[str] = []
        params: list[Any] = []
        if entity_type is not None:
            where.append("type = ?")
            params.append(entity_type)
        if important_only:
            where.append("is_important = 1")

        if order_by == "mentions":
            order = "mention_count DESC, created_at, rowid"
        elif order_by == "last_seen":
            order = "last_seen_at IS NULL, last_seen_at DESC, created_at, rowid"
        else:
            raise ValueError(f"Unknown order_by: {order_by}")

        sql = "SELECT * FROM entities"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += f" ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return self._fetch_entities(sql, params)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    @_storage_op
    def upsert_relationship(
        self,
        source_entity_id: str,
        target_entity_id: str,
        relationship_type: str,
        confidence: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Relationship:
        """Insert an edge, or overwrite confidence/metadata of the existing one."""
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO entity_relationships
                   (id, source_entity_id, target_entity_id, relationship_type,
                    confidence, metadata, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (source_entity_id, target_entity_id, relationship_type)
               DO UPDATE SET confidence = excluded.confidence,
                             metadata = excluded.metadata""",
            (
                _new_id(),
                source_entity_id,
                target_entity_id,
                relationship_type,
                confidence,
                json.dumps(metadata or {}),
                time.time(),
            ),
        )
        conn.commit()
        row = conn.execute(
            """SELECT * FROM entity_relationships
               WHERE source_entity_id = ? AND target_entity_id = ? AND relationship_type = ?""",
            (source_entity_id, target_entity_id, relationship_type),
        ).fetchone()
        return Relationship.from_row(row)

    @_storage_op
    def list_relationships(self, entity_id: str) -> List[Relationship]:
        """All edges touching *entity_id*, either direction."""
        rows = self._get_conn().execute(
            """SELECT * FROM entity_relationships
               WHERE source_entity_id = ? OR target_entity_id = ?
               ORDER BY created_at, rowid""",
            (entity_id, entity_id),
        ).fetchall()
        return [Relationship.from_row(r) for r in rows]

    def _related(self, key_col: str, join_col: str, entity_id: str) -> List[Tuple[str, float, Entity]]:
        rows = self._get_conn().execute(
            f"""SELECT r.relationship_type AS relationship_type,
                       r.confidence AS confidence,
                       e.*
                  FROM entity_relationships r
                  JOIN entities e ON e.id = r.{join_col}
                 WHERE r.{key_col} = ?
                 ORDER BY r.created_at, r.rowid""",
            (entity_id,),
        ).fetchall()
        return [(r["relationship_type"], float(r["confidence"]), Entity.from_row(r)) for r in rows]

    @_storage_op
    def outgoing_relationships(self, entity_id: str) -> List[Tuple[str, float, Entity]]:
        """(type, confidence, target entity) for edges starting at *entity_id*."""
        return self._related("source_entity_id", "target_entity_id", entity_id)

    @_storage_op
    def incoming_relationships(self, entity_id: str) -> List[Tuple[str, float, Entity]]:
        """(type, confidence, source entity) for edges ending at *entity_id*."""
        return self._related("target_entity_id", "source_entity_id", entity_id)

    # ------------------------------------------------------------------
    # Mentions
    # ------------------------------------------------------------------

    @_storage_op
    def upsert_mention(
        self,
        entity_id: str,
        source_type: str,
        source_id: str,
        context: Optional[str] = None,
        confidence: float = 1.0,
    ) -> Mention:
        """Record a mention; the first insert bumps the entity's sighting stats."""
        conn = self._get_conn()
        now = time.time()
        with conn:
            cur = conn.execute(
                """INSERT INTO entity_mentions
                       (id, entity_id, source_type, source_id, context, confidence, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (entity_id, source_type, source_id) DO NOTHING""",
                (_new_id(), entity_id, source_type, source_id, context, confidence, now),
            )
            if cur.rowcount == 1:
                conn.execute(
                    """UPDATE entities
                          SET last_seen_at = ?,
                              first_seen_at = COALESCE(first_seen_at, ?),
                              mention_count = mention_count + 1,
                              updated_at = ?
                        WHERE id = ?""",
                    (now, now, now, entity_id),
                )
            else:
                conn.execute(
                    """UPDATE entity_mentions SET context = ?, confidence = ?
                        WHERE entity_id = ? AND source_type = ? AND source_id = ?""",
                    (context, confidence, entity_id, source_type, source_id),
                )
        row = conn.execute(
            """SELECT * FROM entity_mentions
               WHERE entity_id = ? AND source_type = ? AND source_id = ?""",
            (entity_id, source_type, source_id),
        ).fetchone()
        return Mention.from_row(row)

    @_storage_op
    def list_mentions(self, entity_id: str, limit: int = 20) -> List[Mention]:
        """Mentions of an entity, newest first."""
        rows = self._get_conn().execute(
            """SELECT * FROM entity_mentions WHERE entity_id = ?
               ORDER BY created_at DESC, rowid DESC LIMIT ?""",
            (entity_id, limit),
        ).fetchall()
        return [Mention.from_row(r) for r in rows]

    @_storage_op
    def entities_for_source(self, source_type: str, source_id: str) -> List[Entity]:
        """Entities mentioned in one source record, in recording order."""
        return self._fetch_entities(
            """SELECT e.* FROM entity_mentions m
               JOIN entities e ON e.id = m.entity_id
               WHERE m.source_type = ? AND m.source_id = ?
               ORDER BY m.created_at, m.rowid""",
            (source_type, source_id),
        )

    # ------------------------------------------------------------------
    # Processing log
    # ------------------------------------------------------------------

    @_storage_op
    def get_processing_record(self, source_type: str, source_id: str) -> Optional[ProcessingRecord]:
        row = self._get_conn().execute(
            "SELECT * FROM entity_processing_log WHERE source_type = ? AND source_id = ?",
            (source_type, source_id),
        ).fetchone()
        return ProcessingRecord.from_row(row) if row else None

    @_storage_op
    def upsert_processing_record(
        self,
        source_type: str,
        source_id: str,
        entities_found: int = 0,
        relationships_found: int = 0,
        error: Optional[str] = None,
    ) -> ProcessingRecord:
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO entity_processing_log
                   (id, source_type, source_id, processed_at,
                    entities_found, relationships_found, error)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (source_type, source_id)
               DO UPDATE SET processed_at = excluded.processed_at,
                             entities_found = excluded.entities_found,
                             relationships_found = excluded.relationships_found,
                             error = excluded.error""",
            (_new_id(), source_type, source_id, time.time(),
             entities_found, relationships_found, error),
        )
        conn.commit()
        return self.get_processing_record(source_type, source_id)  # type: ignore[return-value]

    @_storage_op
    def processed_source_ids(self, source_type: str, source_ids: List[str]) -> Set[str]:
        """Subset of *source_ids* already present in the processing log."""
        conn = self._get_conn()
        found: Set[str] = set()
        for i in range(0, len(source_ids), _IN_CHUNK):
            chunk = source_ids[i:i + _IN_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"""SELECT source_id FROM entity_processing_log
                    WHERE source_type = ? AND source_id IN ({placeholders})""",
                (source_type, *chunk),
            ).fetchall()
            found.update(r["source_id"] for r in rows)
        return found

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @_storage_op
    def stats(self) -> Dict[str, Any]:
        conn = self._get_conn()
        by_type = {
            r["type"]: r["c"]
            for r in conn.execute(
                "SELECT type, COUNT(*) AS c FROM entities GROUP BY type"
            ).fetchall()
        }
        return {
            "entities": sum(by_type.values()),
            "by_type": by_type,
            "relationships": conn.execute(
                "SELECT COUNT(*) AS c FROM entity_relationships").fetchone()["c"],
            "mentions": conn.execute(
                "SELECT COUNT(*) AS c FROM entity_mentions").fetchone()["c"],
            "processed_sources": conn.execute(
                "SELECT COUNT(*) AS c FROM entity_processing_log").fetchone()["c"],
            "db_path": self.db_path,
        }
