"""Tests for the relationship graph."""

from unittest import mock

import pytest

from entity_graph.errors import StorageUnavailable, ValidationFailed
from entity_graph.extraction import ExtractedRelationship
from entity_graph.relationships import RelationshipGraph, lookup_batch_entity

from helpers import make_entity


@pytest.fixture
def rel_graph(tmp_storage):
    return RelationshipGraph(tmp_storage)


@pytest.fixture
def jen_and_acme(tmp_storage):
    return (
        make_entity(tmp_storage, "Jennifer Smith"),
        make_entity(tmp_storage, "Acme Corp", "organization"),
    )


class TestUpsert:
    def test_one_edge_per_triple(self, rel_graph, tmp_storage, jen_and_acme):
        jen, acme = jen_and_acme
        rel_graph.upsert(jen.id, acme.id, "works_at", 0.9)
        rel = rel_graph.upsert(jen.id, acme.id, "works_at", 0.5)
        assert rel.confidence == 0.5
        assert tmp_storage.stats()["relationships"] == 1

    def test_different_type_is_new_edge(self, rel_graph, tmp_storage, jen_and_acme):
        jen, acme = jen_and_acme
        rel_graph.upsert(jen.id, acme.id, "works_at")
        rel_graph.upsert(jen.id, acme.id, "owns")
        assert tmp_storage.stats()["relationships"] == 2

    def test_rejects_unknown_type(self, rel_graph, jen_and_acme):
        jen, acme = jen_and_acme
        with pytest.raises(ValidationFailed):
            rel_graph.upsert(jen.id, acme.id, "married_to")

    @pytest.mark.parametrize("confidence", [-0.1, 1.5])
    def test_rejects_confidence_out_of_range(self, rel_graph, jen_and_acme, confidence):
        jen, acme = jen_and_acme
        with pytest.raises(ValidationFailed):
            rel_graph.upsert(jen.id, acme.id, "works_at", confidence)

    def test_missing_entity_returns_none(self, rel_graph, jen_and_acme):
        jen, _ = jen_and_acme
        assert rel_graph.upsert(jen.id, "missing", "works_at") is None

    def test_storage_failure(self, rel_graph, tmp_storage, jen_and_acme):
        jen, acme = jen_and_acme
        with mock.patch.object(tmp_storage, "upsert_relationship",
                               side_effect=StorageUnavailable("locked")):
            assert rel_graph.upsert(jen.id, acme.id, "works_at") is None
        assert rel_graph.last_error is not None


class TestGetRelationships:
    def test_outgoing_then_incoming(self, rel_graph, tmp_storage, jen_and_acme):
        jen, acme = jen_and_acme
        bob = make_entity(tmp_storage, "Bob Lee")
        rel_graph.upsert(jen.id, acme.id, "works_at", 0.9)
        rel_graph.upsert(bob.id, jen.id, "related_to", 0.4)

        related = rel_graph.get_relationships(jen.id)
        assert [(r.entity.id, r.type, r.direction, r.confidence) for r in related] == [
            (acme.id, "works_at", "outgoing", 0.9),
            (bob.id, "related_to", "incoming", 0.4),
        ]

    def test_no_edges(self, rel_graph, jen_and_acme):
        jen, _ = jen_and_acme
        assert rel_graph.get_relationships(jen.id) == []

    def test_storage_failure(self, rel_graph, tmp_storage, jen_and_acme):
        jen, _ = jen_and_acme
        with mock.patch.object(tmp_storage, "incoming_relationships",
                               side_effect=StorageUnavailable("down")):
            assert rel_graph.get_relationships(jen.id) == []
        assert rel_graph.last_error is not None


class TestCreateFromExtracted:
    def test_links_batch_entities(self, rel_graph, jen_and_acme):
        jen, acme = jen_and_acme
        rel = rel_graph.create_from_extracted(
            ExtractedRelationship(source_entity="Jennifer Smith", target_entity="Acme Corp",
                                  type="works_at", confidence=0.9, context="CFO at Acme"),
            {"Jennifer Smith": jen, "Acme Corp": acme},
        )
        assert rel.source_entity_id == jen.id
        assert rel.target_entity_id == acme.id
        assert rel.metadata == {"context": "CFO at Acme"}

    def test_case_insensitive_fallback(self, rel_graph, jen_and_acme):
        jen, acme = jen_and_acme
        rel = rel_graph.create_from_extracted(
            ExtractedRelationship(source_entity="jennifer smith", target_entity="ACME CORP",
                                  type="works_at"),
            {"Jennifer Smith": jen, "Acme Corp": acme},
        )
        assert rel is not None
        assert rel.metadata == {}

    def test_missing_endpoint_skipped(self, rel_graph, tmp_storage, jen_and_acme):
        jen, acme = jen_and_acme
        rel = rel_graph.create_from_extracted(
            ExtractedRelationship(source_entity="Jennifer Smith", target_entity="Globex",
                                  type="works_at"),
            {"Jennifer Smith": jen, "Acme Corp": acme},
        )
        assert rel is None
        assert tmp_storage.stats()["relationships"] == 0

    def test_does_not_resolve_outside_batch(self, rel_graph, jen_and_acme):
        jen, _ = jen_and_acme
        # Acme Corp exists in storage but was not part of this batch.
        rel = rel_graph.create_from_extracted(
            ExtractedRelationship(source_entity="Jennifer Smith", target_entity="Acme Corp",
                                  type="works_at"),
            {"Jennifer Smith": jen},
        )
        assert rel is None


class TestLookupBatchEntity:
    def test_exact_key_preferred(self, tmp_storage):
        upper = make_entity(tmp_storage, "ACME")
        lower = make_entity(tmp_storage, "acme")
        assert lookup_batch_entity("acme", {"ACME": upper, "acme": lower}).id == lower.id
