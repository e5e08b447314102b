"""Relationship graph: directed, typed, confidence-scored edges.

One edge per (source, target, type); writing the same triple again
overwrites confidence and metadata in place.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from .errors import NotFound, StorageUnavailable, ValidationFailed
from .extraction import ExtractedRelationship
from .models import RELATIONSHIP_TYPES, Entity, RelatedEntity, Relationship
from .storage import GraphStorage

logger = logging.getLogger(__name__)


def lookup_batch_entity(name: str, entity_map: Mapping[str, Entity]) -> Optional[Entity]:
    """Find *name* among the entities upserted in the current batch."""
    if name in entity_map:
        return entity_map[name]
    key = name.strip().lower()
    for candidate_name, entity in entity_map.items():
        if candidate_name.strip().lower() == key:
            return entity
    return None


class RelationshipGraph:
    def __init__(self, storage: GraphStorage) -> None:
        self.storage = storage
        self.last_error: Optional[StorageUnavailable] = None

    def upsert(
        self,
        source_entity_id: str,
        target_entity_id: str,
        relationship_type: str,
        confidence: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Relationship]:
        """Insert or update the edge for the triple.

        Returns None (and logs) if storage fails or an endpoint does not exist.
        """
        if relationship_type not in RELATIONSHIP_TYPES:
            raise ValidationFailed(f"unknown relationship type: {relationship_type!r}")
        if not 0.0 <= confidence <= 1.0:
            raise ValidationFailed(f"confidence out of range: {confidence!r}")

        self.last_error = None
        try:
            return self.storage.upsert_relationship(
                source_entity_id, target_entity_id, relationship_type, confidence, metadata,
            )
        except NotFound as exc:
            logger.error("Cannot link %s -> %s: %s", source_entity_id, target_entity_id, exc)
            return None
        except StorageUnavailable as exc:
            logger.error("Error upserting relationship %s -[%s]-> %s: %s",
                         source_entity_id, relationship_type, target_entity_id, exc)
            self.last_error = exc
            return None

    def get_relationships(self, entity_id: str) -> List[RelatedEntity]:
        """Outgoing edges first, then incoming, each in creation order."""
        self.last_error = None
        try:
            outgoing = self.storage.outgoing_relationships(entity_id)
            incoming = self.storage.incoming_relationships(entity_id)
        except StorageUnavailable as exc:
            logger.error("Error getting relationships for %s: %s", entity_id, exc)
            self.last_error = exc
            return []

        related = [
            RelatedEntity(entity=e, type=t, direction="outgoing", confidence=c)
            for t, c, e in outgoing
        ]
        related.extend(
            RelatedEntity(entity=e, type=t, direction="incoming", confidence=c)
            for t, c, e in incoming
        )
        return related

    def create_from_extracted(
        self,
        relationship: ExtractedRelationship,
        entity_map: Mapping[str, Entity],
    ) -> Optional[Relationship]:
        """Write an extracted edge whose endpoints are names from the same batch."""
        self.last_error = None
        source = lookup_batch_entity(relationship.source_entity, entity_map)
        target = lookup_batch_entity(relationship.target_entity, entity_map)
        if source is None or target is None:
            logger.warning(
                "Could not find entities for relationship: %s -> %s",
                relationship.source_entity, relationship.target_entity,
            )
            return None

        metadata = {"context": relationship.context} if relationship.context else {}
        return self.upsert(
            source.id, target.id, relationship.type, relationship.confidence, metadata,
        )
