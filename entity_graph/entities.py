"""Entity store: the only writer of entity rows.

An incoming candidate is matched to an existing entity by email first, then
by name/alias through :class:`NameResolver`. A match is merged in place:

* aliases -- union of old aliases, new aliases and the candidate's name,
  de-duplicated case-insensitively, never containing the canonical name
* email / description / role -- newest non-empty value wins
* notes -- appended, never overwritten

Renames keep history: the old canonical name becomes an alias.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .errors import StorageUnavailable, ValidationFailed
from .extraction import ExtractedEntity
from .models import ENTITY_TYPES, Entity
from .resolver import NameResolver
from .storage import GraphStorage

logger = logging.getLogger(__name__)

NOTES_SEPARATOR = "\n"


def merge_aliases(name: str, *alias_lists: Iterable[str]) -> List[str]:
    """Combine alias lists, first spelling wins, dropping blanks and *name* itself."""
    seen = {name.strip().lower()}
    merged: List[str] = []
    for aliases in alias_lists:
        for alias in aliases:
            alias = alias.strip()
            key = alias.lower()
            if alias and key not in seen:
                seen.add(key)
                merged.append(alias)
    return merged


def merge_notes(existing: Optional[str], incoming: Optional[str]) -> Optional[str]:
    if not incoming:
        return existing
    if not existing:
        return incoming
    if incoming in existing:
        return existing
    return f"{existing}{NOTES_SEPARATOR}{incoming}"


class EntityStore:
    """Resolve-or-create entities and serve entity read paths.

    Storage failures never propagate: reads return None/[] and writes return
    the pre-existing entity (or None). ``last_error`` tells a degraded call
    apart from a genuine miss.
    """

    def __init__(
        self,
        storage: GraphStorage,
        resolver: Optional[NameResolver] = None,
    ) -> None:
        self.storage = storage
        self.resolver = resolver or NameResolver(storage)
        self.last_error: Optional[StorageUnavailable] = None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def find_by_name(self, name: str) -> Optional[Entity]:
        entity = self.resolver.resolve(name)
        self.last_error = self.resolver.last_error
        return entity

    def find_by_email(self, email: str) -> Optional[Entity]:
        entity = self.resolver.find_by_email(email)
        self.last_error = self.resolver.last_error
        return entity

    def _match(self, candidate: ExtractedEntity) -> Optional[Entity]:
        if candidate.email:
            existing = self.find_by_email(candidate.email)
            if existing is not None or self.last_error is not None:
                return existing
        return self.find_by_name(candidate.name)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, candidate: ExtractedEntity) -> Optional[Entity]:
        """Merge *candidate* into its matching entity, or create a new one."""
        existing = self._match(candidate)
        if self.last_error is not None:
            logger.error("Skipping upsert of %r: entity lookup degraded", candidate.name)
            return None

        if existing is not None:
            return self._merge(existing, candidate)
        return self._create(candidate)

    def _merge(self, existing: Entity, candidate: ExtractedEntity) -> Entity:
        extra_names = [] if candidate.name.lower() == existing.name.lower() else [candidate.name]
        aliases = merge_aliases(existing.name, existing.aliases, candidate.aliases, extra_names)

        metadata = dict(existing.metadata)
        if candidate.role:
            metadata["role"] = candidate.role

        try:
            updated = self.storage.update_entity(
                existing.id,
                aliases=aliases,
                email=candidate.email or existing.email,
                description=candidate.description or existing.description,
                notes=merge_notes(existing.notes, candidate.notes),
                metadata=metadata,
            )
        except StorageUnavailable as exc:
            logger.error("Error updating entity %s: %s", existing.id, exc)
            self.last_error = exc
            return existing

        if updated is None:
            logger.warning("Entity %s vanished during merge", existing.id)
            return existing

        logger.debug("Merged %r into entity %s (%r)", candidate.name, updated.id, updated.name)
        return updated

    def _create(self, candidate: ExtractedEntity) -> Optional[Entity]:
        try:
            entity = self.storage.insert_entity(
                entity_type=candidate.type,
                name=candidate.name,
                aliases=merge_aliases(candidate.name, candidate.aliases),
                email=candidate.email,
                description=candidate.description,
                notes=candidate.notes,
                metadata={"role": candidate.role} if candidate.role else {},
            )
        except StorageUnavailable as exc:
            logger.error("Error creating entity %r: %s", candidate.name, exc)
            self.last_error = exc
            return None

        logger.info("Created %s entity %r (%s)", entity.type, entity.name, entity.id)
        return entity

    def rename(self, entity_id: str, new_name: str) -> Optional[Entity]:
        """Make *new_name* canonical; the old name is kept as an alias."""
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValidationFailed("new entity name must not be empty")

        existing = self.get_by_id(entity_id)
        if existing is None:
            if self.last_error is None:
                logger.error("Entity not found for rename: %s", entity_id)
            return None

        if existing.name.lower() == new_name.lower():
            return existing

        aliases = merge_aliases(new_name, existing.aliases, [existing.name])
        try:
            updated = self.storage.update_entity(entity_id, name=new_name, aliases=aliases)
        except StorageUnavailable as exc:
            logger.error("Error renaming entity %s: %s", entity_id, exc)
            self.last_error = exc
            return existing

        if updated is None:
            return existing
        logger.info("Renamed entity from %r to %r", existing.name, new_name)
        return updated

    def mark_important(self, entity_id: str, important: bool) -> bool:
        """Set the user's importance flag. Returns True if the entity was updated."""
        self.last_error = None
        try:
            return self.storage.update_entity(entity_id, is_important=important) is not None
        except StorageUnavailable as exc:
            logger.error("Error marking entity %s important: %s", entity_id, exc)
            self.last_error = exc
            return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, entity_id: str) -> Optional[Entity]:
        self.last_error = None
        try:
            return self.storage.get_entity(entity_id)
        except StorageUnavailable as exc:
            logger.error("Error getting entity %s: %s", entity_id, exc)
            self.last_error = exc
            return None

    def _list(self, what: str, **kwargs) -> List[Entity]:
        self.last_error = None
        try:
            return self.storage.list_entities(**kwargs)
        except StorageUnavailable as exc:
            logger.error("Error getting %s: %s", what, exc)
            self.last_error = exc
            return []

    def get_by_type(self, entity_type: str, limit: int = 50) -> List[Entity]:
        """Entities of one type, most mentioned first."""
        if entity_type not in ENTITY_TYPES:
            raise ValidationFailed(f"unknown entity type: {entity_type!r}")
        return self._list("entities by type", entity_type=entity_type,
                          order_by="mentions", limit=limit)

    def get_important(self) -> List[Entity]:
        """User-flagged entities, most recently seen first."""
        return self._list("important entities", important_only=True, order_by="last_seen")

    def get_recent(self, limit: int = 10) -> List[Entity]:
        return self._list("recent entities", order_by="last_seen", limit=limit)

    def search(self, query: str, limit: int = 10) -> List[Entity]:
        """Name-or-alias substring search, most mentioned first."""
        self.last_error = None
        query = (query or "").strip()
        if not query:
            return []
        try:
            return self.storage.search_entities(query, limit)
        except StorageUnavailable as exc:
            logger.error("Error searching entities for %r: %s", query, exc)
            self.last_error = exc
            return []
