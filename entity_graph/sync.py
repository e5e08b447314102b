"""Batch entity sync.

For each source type, pull a few unprocessed records, run the extractor on
their text and apply the result to the graph. Every record ends up in the
processing log (with counts, or with the error message), so a record that
keeps failing is not retried forever and one bad record never stops the
batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import NotFound
from .extraction import Extractor
from .graph import KnowledgeGraph
from .sources import SourceCatalog

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TYPES: Tuple[str, ...] = ("email", "calendar_event", "task")


@dataclass
class SyncReport:
    processed: Dict[str, int] = field(default_factory=dict)
    entities_extracted: int = 0
    relationships_created: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return sum(self.processed.values())

    def to_dict(self) -> Dict[str, object]:
        return {
            "processed": dict(self.processed),
            "total_processed": self.total_processed,
            "entities_extracted": self.entities_extracted,
            "relationships_created": self.relationships_created,
            "errors": list(self.errors),
        }


class EntitySync:
    def __init__(
        self,
        graph: KnowledgeGraph,
        extractor: Extractor,
        catalog: Optional[SourceCatalog] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self.graph = graph
        self.extractor = extractor
        self.catalog = catalog or graph.cursor.catalog
        self.batch_size = batch_size or graph.config.sync_batch_size

    def process_source(self, source_type: str, source_id: str) -> Tuple[int, int]:
        """Extract and apply one record. Returns (entities found, relationships created)."""
        text = self.catalog.load_text(source_type, source_id)
        if not text:
            raise NotFound(f"{source_type} {source_id} not found")

        result = self.extractor.extract(text, source_type)
        entities, relationships = self.graph.apply_extraction(result, source_type, source_id)
        return len(entities), len(relationships)

    def run(self, source_types: Sequence[str] = DEFAULT_SOURCE_TYPES) -> SyncReport:
        report = SyncReport()

        for source_type in source_types:
            pending = self.graph.get_unprocessed_sources(source_type, self.batch_size)
            report.processed[source_type] = 0
            logger.info("Found %d unprocessed %s records", len(pending), source_type)

            for source_id in pending:
                try:
                    found, linked = self.process_source(source_type, source_id)
                except Exception as exc:
                    logger.error("Error processing %s %s: %s", source_type, source_id, exc)
                    report.errors.append(f"{source_type} {source_id}: {exc}")
                    self.graph.mark_source_processed(source_type, source_id, 0, 0, str(exc))
                    continue

                self.graph.mark_source_processed(source_type, source_id, found, linked)
                report.processed[source_type] += 1
                report.entities_extracted += found
                report.relationships_created += linked

        logger.info(
            "Entity sync complete: %d processed, %d entities, %d relationships, %d errors",
            report.total_processed, report.entities_extracted,
            report.relationships_created, len(report.errors),
        )
        return report
