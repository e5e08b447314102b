"""Mention ledger: provenance links from entities to source records."""

from __future__ import annotations

import logging
from typing import List, Optional

from .errors import NotFound, StorageUnavailable, ValidationFailed
from .models import SOURCE_TYPES, Entity, Mention
from .storage import GraphStorage

logger = logging.getLogger(__name__)


class MentionLedger:
    def __init__(self, storage: GraphStorage) -> None:
        self.storage = storage
        self.last_error: Optional[StorageUnavailable] = None

    def record(
        self,
        entity_id: str,
        source_type: str,
        source_id: str,
        context: Optional[str] = None,
        confidence: float = 1.0,
    ) -> Optional[Mention]:
        """Upsert the mention for (entity, source). Only the first sighting bumps entity stats."""
        if source_type not in SOURCE_TYPES:
            raise ValidationFailed(f"unknown source type: {source_type!r}")
        if not 0.0 <= confidence <= 1.0:
            raise ValidationFailed(f"confidence out of range: {confidence!r}")

        self.last_error = None
        try:
            return self.storage.upsert_mention(entity_id, source_type, source_id, context, confidence)
        except NotFound as exc:
            logger.error("Cannot record mention of unknown entity %s: %s", entity_id, exc)
            return None
        except StorageUnavailable as exc:
            logger.error("Error recording mention %s in %s/%s: %s",
                         entity_id, source_type, source_id, exc)
            self.last_error = exc
            return None

    def get_mentions(self, entity_id: str, limit: int = 20) -> List[Mention]:
        self.last_error = None
        try:
            return self.storage.list_mentions(entity_id, limit)
        except StorageUnavailable as exc:
            logger.error("Error getting mentions for %s: %s", entity_id, exc)
            self.last_error = exc
            return []

    def get_entities_for_source(self, source_type: str, source_id: str) -> List[Entity]:
        self.last_error = None
        try:
            return self.storage.entities_for_source(source_type, source_id)
        except StorageUnavailable as exc:
            logger.error("Error getting entities for %s/%s: %s", source_type, source_id, exc)
            self.last_error = exc
            return []
