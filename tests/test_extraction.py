"""Tests for extractor output validation and chat name spotting."""

import pytest

from entity_graph.extraction import (
    DEFAULT_CONTEXT,
    ExtractedEntity,
    ExtractedRelationship,
    extract_entity_names_from_message,
    parse_extraction_response,
    parse_extraction_result,
)


class TestExtractedEntity:
    def test_coercion(self):
        e = ExtractedEntity.model_validate({
            "type": "Organisation", "name": "  Acme Corp ", "aliases": ["Acme", "", None],
            "email": " Sales@ACME.com ", "role": "", "confidence": 3,
        })
        assert e.type == "person"
        assert e.name == "Acme Corp"
        assert e.aliases == ["Acme"]
        assert e.email == "sales@acme.com"
        assert e.role is None
        assert e.confidence == 1.0
        assert e.context == DEFAULT_CONTEXT

    @pytest.mark.parametrize("raw", [None, "high", True, [0.4]])
    def test_non_numeric_confidence_defaults(self, raw):
        assert ExtractedEntity(name="Acme", confidence=raw).confidence == 0.5

    def test_negative_confidence_clamped(self):
        assert ExtractedEntity(name="Acme", confidence=-2).confidence == 0.0


class TestExtractedRelationship:
    def test_accepts_both_key_styles(self):
        a = ExtractedRelationship.model_validate(
            {"sourceEntityName": "Jen", "targetEntityName": "Acme", "type": "works_at"})
        b = ExtractedRelationship.model_validate(
            {"sourceEntity": "Jen", "targetEntity": "Acme", "type": "works_at"})
        c = ExtractedRelationship(source_entity="Jen", target_entity="Acme", type="works_at")
        assert (a.source_entity, a.target_entity) == (b.source_entity, b.target_entity) == \
            (c.source_entity, c.target_entity) == ("Jen", "Acme")

    def test_unknown_type_defaults(self):
        r = ExtractedRelationship(source_entity="Jen", target_entity="Acme", type="manages")
        assert r.type == "related_to"
        assert r.confidence == 0.5
        assert r.context is None


class TestParseExtractionResult:
    def test_filters_malformed(self):
        result = parse_extraction_result({
            "entities": [
                {"type": "person", "name": "Jennifer Smith"},
                {"type": "person"},
                {"name": "No Type"},
                {"type": "person", "name": "   "},
                "garbage",
            ],
            "relationships": [
                {"sourceEntityName": "Jennifer Smith", "targetEntityName": "Acme", "type": "works_at"},
                {"sourceEntityName": "Jennifer Smith", "type": "works_at"},
                {"sourceEntityName": "Jennifer Smith", "targetEntityName": "Acme"},
            ],
        })
        assert [e.name for e in result.entities] == ["Jennifer Smith"]
        assert len(result.relationships) == 1

    def test_not_a_dict(self):
        result = parse_extraction_result(["entities"])
        assert result.entities == [] and result.relationships == []

    def test_missing_sections(self):
        result = parse_extraction_result({"entities": None})
        assert result.entities == [] and result.relationships == []


class TestParseExtractionResponse:
    def test_json_wrapped_in_prose(self):
        reply = (
            "Here is what I found:\n```json\n"
            '{"entities": [{"type": "organization", "name": "Acme Corp", "confidence": 0.9}],'
            ' "relationships": []}\n```\nLet me know!'
        )
        result = parse_extraction_response(reply)
        assert [(e.type, e.name, e.confidence) for e in result.entities] == \
            [("organization", "Acme Corp", 0.9)]

    @pytest.mark.parametrize("reply", ["", "no json here", "{not: valid json}"])
    def test_unparsable_is_empty(self, reply):
        result = parse_extraction_response(reply)
        assert result.entities == [] and result.relationships == []


class TestNameSpotting:
    def test_preposition_names(self):
        names = extract_entity_names_from_message("Any updates from Jennifer Smith about Acme?")
        assert names[:2] == ["Jennifer Smith", "Acme"]

    def test_stop_words_skipped(self):
        names = extract_entity_names_from_message("What did Bob say on Monday?")
        assert "What" not in names
        assert "Monday" not in names
        assert "Bob" in names

    def test_deduplicated(self):
        names = extract_entity_names_from_message("Meeting with Acme, then lunch with Acme")
        assert names.count("Acme") == 1
