"""Test helpers shared across modules: direct inserts, candidates, a fake extractor."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from entity_graph.extraction import ExtractedEntity, ExtractionResult
from entity_graph.storage import GraphStorage


def make_entity(storage: GraphStorage, name: str, entity_type: str = "person",
                mention_count: int = 0, **fields):
    """Insert an entity directly, optionally with a preset mention count."""
    entity = storage.insert_entity(entity_type=entity_type, name=name, **fields)
    if mention_count:
        conn = storage._get_conn()
        conn.execute("UPDATE entities SET mention_count = ? WHERE id = ?",
                     (mention_count, entity.id))
        conn.commit()
        entity = storage.get_entity(entity.id)
    return entity


def set_last_seen(storage: GraphStorage, entity_id: str, last_seen_at: Optional[float]) -> None:
    conn = storage._get_conn()
    conn.execute("UPDATE entities SET last_seen_at = ? WHERE id = ?", (last_seen_at, entity_id))
    conn.commit()


def candidate(name: str, **fields) -> ExtractedEntity:
    return ExtractedEntity(name=name, **fields)


class FakeExtractor:
    """Returns canned results keyed by a marker substring of the text.

    Text containing any ``fail_on`` marker raises, to exercise per-record
    failure handling.
    """

    def __init__(
        self,
        results: Optional[Dict[str, ExtractionResult]] = None,
        fail_on: Iterable[str] = (),
    ) -> None:
        self.results = results or {}
        self.fail_on = tuple(fail_on)
        self.calls: List[Tuple[str, str]] = []

    def extract(self, text: str, source_type: str) -> ExtractionResult:
        self.calls.append((text, source_type))
        for marker in self.fail_on:
            if marker in text:
                raise RuntimeError(f"extractor failed on {marker}")
        for marker, result in self.results.items():
            if marker in text:
                return result
        return ExtractionResult()
