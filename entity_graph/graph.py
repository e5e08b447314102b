"""KnowledgeGraph: one object wiring the graph components over a shared storage.

Batch jobs call ``apply_extraction`` with an extractor's output; interactive
callers (a chat handler, the CLI scripts) use the lookups and
``get_entity_context`` to pull everything known about an entity at once.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import Config, load_config
from .cursor import ProcessingCursor
from .entities import EntityStore
from .errors import StorageUnavailable
from .extraction import ExtractedEntity, ExtractedRelationship, ExtractionResult
from .mentions import MentionLedger
from .models import Entity, EntityContext, Mention, ProcessingRecord, RelatedEntity, Relationship
from .relationships import RelationshipGraph
from .resolver import NameResolver
from .sources import SourceCatalog, SQLiteSourceCatalog
from .storage import GraphStorage

logger = logging.getLogger(__name__)


class KnowledgeGraph:
    def __init__(
        self,
        storage: GraphStorage,
        catalog: Optional[SourceCatalog] = None,
        config: Optional[Config] = None,
    ) -> None:
        self.config = config or Config(db_path=storage.db_path)
        self.storage = storage
        self.resolver = NameResolver(storage, pool_size=self.config.resolver_pool_size)
        self.entities = EntityStore(storage, self.resolver)
        self.relationships = RelationshipGraph(storage)
        self.mentions = MentionLedger(storage)
        self.cursor = ProcessingCursor(storage, catalog or SQLiteSourceCatalog(storage))

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "KnowledgeGraph":
        config = config or load_config()
        return cls(GraphStorage(config.db_path), config=config)

    def close(self) -> None:
        self.storage.close()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def upsert_entity(self, candidate: ExtractedEntity) -> Optional[Entity]:
        return self.entities.upsert(candidate)

    def find_entity_by_name(self, name: str) -> Optional[Entity]:
        return self.entities.find_by_name(name)

    def find_entity_by_email(self, email: str) -> Optional[Entity]:
        return self.entities.find_by_email(email)

    def get_entity_by_id(self, entity_id: str) -> Optional[Entity]:
        return self.entities.get_by_id(entity_id)

    def get_entities_by_type(self, entity_type: str, limit: int = 50) -> List[Entity]:
        return self.entities.get_by_type(entity_type, limit)

    def get_important_entities(self) -> List[Entity]:
        return self.entities.get_important()

    def mark_entity_important(self, entity_id: str, important: bool = True) -> bool:
        return self.entities.mark_important(entity_id, important)

    def rename_entity(self, entity_id: str, new_name: str) -> Optional[Entity]:
        return self.entities.rename(entity_id, new_name)

    def search_entities(self, query: str, limit: int = 10) -> List[Entity]:
        return self.entities.search(query, limit)

    def get_recent_entities(self, limit: int = 10) -> List[Entity]:
        return self.entities.get_recent(limit)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def upsert_relationship(
        self,
        source_entity_id: str,
        target_entity_id: str,
        relationship_type: str,
        confidence: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Relationship]:
        return self.relationships.upsert(
            source_entity_id, target_entity_id, relationship_type, confidence, metadata,
        )

    def get_entity_relationships(self, entity_id: str) -> List[RelatedEntity]:
        return self.relationships.get_relationships(entity_id)

    def create_relationship_from_extracted(
        self,
        relationship: ExtractedRelationship,
        entity_map: Mapping[str, Entity],
    ) -> Optional[Relationship]:
        return self.relationships.create_from_extracted(relationship, entity_map)

    # ------------------------------------------------------------------
    # Mentions
    # ------------------------------------------------------------------

    def create_entity_mention(
        self,
        entity_id: str,
        source_type: str,
        source_id: str,
        context: Optional[str] = None,
        confidence: float = 1.0,
    ) -> Optional[Mention]:
        return self.mentions.record(entity_id, source_type, source_id, context, confidence)

    def get_entity_mentions(self, entity_id: str, limit: int = 20) -> List[Mention]:
        return self.mentions.get_mentions(entity_id, limit)

    def get_entities_for_source(self, source_type: str, source_id: str) -> List[Entity]:
        return self.mentions.get_entities_for_source(source_type, source_id)

    # ------------------------------------------------------------------
    # Processing log
    # ------------------------------------------------------------------

    def is_source_processed(self, source_type: str, source_id: str) -> bool:
        return self.cursor.is_processed(source_type, source_id)

    def mark_source_processed(
        self,
        source_type: str,
        source_id: str,
        entities_found: int = 0,
        relationships_found: int = 0,
        error: Optional[str] = None,
    ) -> Optional[ProcessingRecord]:
        return self.cursor.mark_processed(
            source_type, source_id, entities_found, relationships_found, error,
        )

    def get_unprocessed_sources(self, source_type: str, limit: int = 50) -> List[str]:
        return self.cursor.get_unprocessed_sources(source_type, limit)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def apply_extraction(
        self,
        result: ExtractionResult,
        source_type: Optional[str] = None,
        source_id: Optional[str] = None,
    ) -> Tuple[List[Entity], List[Relationship]]:
        """Upsert extracted entities, record mentions, then link the batch.

        Relationship endpoints are looked up only among this batch's entities,
        keyed by the names the extractor used. A candidate that fails to
        upsert is skipped; the rest of the batch still goes through.
        """
        entity_map: Dict[str, Entity] = {}
        upserted: List[Entity] = []

        for candidate in result.entities:
            entity = self.entities.upsert(candidate)
            if entity is None:
                logger.warning("Skipping entity %r: upsert failed", candidate.name)
                continue
            entity_map[candidate.name] = entity
            if entity.id not in {e.id for e in upserted}:
                upserted.append(entity)

            if source_type and source_id:
                self.mentions.record(
                    entity.id, source_type, source_id,
                    context=candidate.context, confidence=candidate.confidence,
                )

        created: List[Relationship] = []
        for rel in result.relationships:
            relationship = self.relationships.create_from_extracted(rel, entity_map)
            if relationship is not None:
                created.append(relationship)

        logger.info(
            "Applied extraction%s: %d entities, %d relationships",
            f" for {source_type}/{source_id}" if source_type and source_id else "",
            len(upserted), len(created),
        )
        return upserted, created

    def get_entity_context(self, entity_id: str, mention_limit: Optional[int] = None) -> Optional[EntityContext]:
        """Entity plus its relationships and most recent mentions, or None."""
        entity = self.entities.get_by_id(entity_id)
        if entity is None:
            return None
        limit = mention_limit if mention_limit is not None else self.config.mention_context_limit
        return EntityContext(
            entity=entity,
            relationships=self.relationships.get_relationships(entity_id),
            recent_mentions=self.mentions.get_mentions(entity_id, limit),
        )

    def find_entity_contexts(self, names: Iterable[str]) -> List[EntityContext]:
        """Contexts for every resolvable name, one per entity, in input order."""
        contexts: List[EntityContext] = []
        seen = set()
        for name in names:
            entity = self.entities.find_by_name(name)
            if entity is None or entity.id in seen:
                continue
            seen.add(entity.id)
            context = self.get_entity_context(entity.id)
            if context is not None:
                contexts.append(context)
        return contexts

    def stats(self) -> Dict[str, Any]:
        try:
            return self.storage.stats()
        except StorageUnavailable as exc:
            logger.error("Error reading graph stats: %s", exc)
            return {"db_path": self.storage.db_path, "error": str(exc)}
