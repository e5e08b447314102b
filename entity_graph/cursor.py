"""Processing cursor: which source records have already been scanned.

A record is marked processed whether extraction found anything, nothing, or
failed (the error text is kept), so the batch job never rescans it.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .errors import StorageUnavailable
from .models import ProcessingRecord
from .sources import SourceCatalog
from .storage import GraphStorage

logger = logging.getLogger(__name__)

# Fetch this many times the limit so already-processed ids can be skipped.
OVERFETCH_FACTOR = 2


class ProcessingCursor:
    def __init__(self, storage: GraphStorage, catalog: SourceCatalog) -> None:
        self.storage = storage
        self.catalog = catalog
        self.last_error: Optional[StorageUnavailable] = None

    def is_processed(self, source_type: str, source_id: str) -> bool:
        return self.get_record(source_type, source_id) is not None

    def get_record(self, source_type: str, source_id: str) -> Optional[ProcessingRecord]:
        self.last_error = None
        try:
            return self.storage.get_processing_record(source_type, source_id)
        except StorageUnavailable as exc:
            logger.error("Error checking %s/%s: %s", source_type, source_id, exc)
            self.last_error = exc
            return None

    def mark_processed(
        self,
        source_type: str,
        source_id: str,
        entities_found: int = 0,
        relationships_found: int = 0,
        error: Optional[str] = None,
    ) -> Optional[ProcessingRecord]:
        self.last_error = None
        try:
            return self.storage.upsert_processing_record(
                source_type, source_id, entities_found, relationships_found, error,
            )
        except StorageUnavailable as exc:
            logger.error("Error marking %s/%s processed: %s", source_type, source_id, exc)
            self.last_error = exc
            return None

    def get_unprocessed_sources(self, source_type: str, limit: int = 50) -> List[str]:
        """Up to *limit* recent source ids not yet in the processing log, newest first."""
        self.last_error = None
        if limit <= 0:
            return []
        try:
            candidates = self.catalog.recent_source_ids(source_type, limit * OVERFETCH_FACTOR)
        except StorageUnavailable as exc:
            logger.error("Error listing %s sources: %s", source_type, exc)
            self.last_error = exc
            return []

        if not candidates:
            return []

        try:
            processed = self.storage.processed_source_ids(source_type, candidates)
        except StorageUnavailable as exc:
            logger.error("Error reading processing log for %s: %s", source_type, exc)
            self.last_error = exc
            return candidates[:limit]

        return [sid for sid in candidates if sid not in processed][:limit]
