"""Typed records for the entity graph.

Four persisted record sets:
* ``Entity`` -- one real-world person, organization, project or deal
* ``Relationship`` -- directed, typed edge between two entities
* ``Mention`` -- provenance link from an entity to one source record
* ``ProcessingRecord`` -- marks a source record as already scanned

Rows come back from SQLite as ``sqlite3.Row``; ``from_row`` decodes the
JSON columns (aliases, metadata) into Python values.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

ENTITY_TYPES: Tuple[str, ...] = ("person", "organization", "project", "deal")

RELATIONSHIP_TYPES: Tuple[str, ...] = (
    "works_at",     # person -> organization
    "owns",         # person -> organization
    "client_of",    # organization -> user (or org -> org)
    "vendor_of",    # organization -> user (or org -> org)
    "involved_in",  # person -> project/deal
    "related_to",   # generic
)

SOURCE_TYPES: Tuple[str, ...] = ("email", "task", "calendar_event", "kb_document")

DIRECTIONS: Tuple[str, ...] = ("outgoing", "incoming")


def _json_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    value = json.loads(raw)
    return [str(v) for v in value] if isinstance(value, list) else []


def _json_dict(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    value = json.loads(raw)
    return value if isinstance(value, dict) else {}


@dataclass
class Entity:
    """A deduplicated real-world thing."""
    id: str
    type: str
    name: str
    aliases: List[str] = field(default_factory=list)
    email: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    first_seen_at: Optional[float] = None
    last_seen_at: Optional[float] = None
    mention_count: int = 0
    is_important: bool = False
    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def role(self) -> Optional[str]:
        return self.metadata.get("role")

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Entity":
        return cls(
            id=row["id"],
            type=row["type"],
            name=row["name"],
            aliases=_json_list(row["aliases"]),
            email=row["email"],
            description=row["description"],
            notes=row["notes"],
            metadata=_json_dict(row["metadata"]),
            first_seen_at=row["first_seen_at"],
            last_seen_at=row["last_seen_at"],
            mention_count=int(row["mention_count"] or 0),
            is_important=bool(row["is_important"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Relationship:
    id: str
    source_entity_id: str
    target_entity_id: str
    type: str
    confidence: float = 1.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Relationship":
        return cls(
            id=row["id"],
            source_entity_id=row["source_entity_id"],
            target_entity_id=row["target_entity_id"],
            type=row["relationship_type"],
            confidence=float(row["confidence"]),
            metadata=_json_dict(row["metadata"]),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Mention:
    id: str
    entity_id: str
    source_type: str
    source_id: str
    context: Optional[str] = None
    confidence: float = 1.0
    created_at: float = 0.0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Mention":
        return cls(
            id=row["id"],
            entity_id=row["entity_id"],
            source_type=row["source_type"],
            source_id=row["source_id"],
            context=row["context"],
            confidence=float(row["confidence"]),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProcessingRecord:
    """Presence means the source was scanned, whether or not anything was found."""
    id: str
    source_type: str
    source_id: str
    processed_at: float
    entities_found: int = 0
    relationships_found: int = 0
    error: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProcessingRecord":
        return cls(
            id=row["id"],
            source_type=row["source_type"],
            source_id=row["source_id"],
            processed_at=row["processed_at"],
            entities_found=int(row["entities_found"] or 0),
            relationships_found=int(row["relationships_found"] or 0),
            error=row["error"],
        )


@dataclass
class RelatedEntity:
    """One edge seen from a given entity: the entity on the other end."""
    entity: Entity
    type: str
    direction: str  # outgoing | incoming
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "type": self.type,
            "direction": self.direction,
            "confidence": self.confidence,
        }


@dataclass
class EntityContext:
    """Everything known about one entity, assembled for interactive callers."""
    entity: Entity
    relationships: List[RelatedEntity] = field(default_factory=list)
    recent_mentions: List[Mention] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "relationships": [r.to_dict() for r in self.relationships],
            "recent_mentions": [m.to_dict() for m in self.recent_mentions],
        }
