"""Extractor boundary: schemas and parsing for candidate entities.

The language-model extractor lives outside this package. It hands back an
``ExtractionResult``; everything here is about accepting that output safely:

* pydantic models that coerce sloppy values (unknown type -> safe default,
  confidence clamped to [0, 1], emails lower-cased)
* ``parse_extraction_result`` / ``parse_extraction_response`` which drop
  malformed candidates instead of failing the batch
* ``extract_entity_names_from_message`` -- cheap name spotting for chat
  lookups that do not warrant a model call
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import ENTITY_TYPES, RELATIONSHIP_TYPES

logger = logging.getLogger(__name__)

DEFAULT_ENTITY_TYPE = "person"
DEFAULT_RELATIONSHIP_TYPE = "related_to"
DEFAULT_CONFIDENCE = 0.5
DEFAULT_CONTEXT = "Extracted from text"


def coerce_entity_type(value: Any) -> str:
    normalized = str(value).strip().lower()
    return normalized if normalized in ENTITY_TYPES else DEFAULT_ENTITY_TYPE


def coerce_relationship_type(value: Any) -> str:
    normalized = str(value).strip().lower()
    return normalized if normalized in RELATIONSHIP_TYPES else DEFAULT_RELATIONSHIP_TYPE


def coerce_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def _optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    text = str(value).strip()
    return text or None


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ExtractedEntity(BaseModel):
    """A candidate entity proposed by the extractor."""

    type: str = DEFAULT_ENTITY_TYPE
    name: str = Field(..., min_length=1)
    aliases: List[str] = Field(default_factory=list)
    email: Optional[str] = None
    role: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    confidence: float = DEFAULT_CONFIDENCE
    context: str = DEFAULT_CONTEXT

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return coerce_entity_type(v)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("aliases", mode="before")
    @classmethod
    def _aliases(cls, v: Any) -> List[str]:
        if not isinstance(v, (list, tuple)):
            return []
        return [str(a).strip() for a in v if a is not None and str(a).strip()]

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Optional[str]:
        text = _optional_text(v)
        return text.lower() if text else None

    @field_validator("role", "description", "notes", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        return coerce_confidence(v)

    @field_validator("context", mode="before")
    @classmethod
    def _context(cls, v: Any) -> str:
        return _optional_text(v) or DEFAULT_CONTEXT


class ExtractedRelationship(BaseModel):
    """A candidate edge; endpoints are names used in the same extraction batch."""

    model_config = ConfigDict(populate_by_name=True)

    source_entity: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("source_entity", "sourceEntityName", "sourceEntity"),
    )
    target_entity: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("target_entity", "targetEntityName", "targetEntity"),
    )
    type: str = DEFAULT_RELATIONSHIP_TYPE
    confidence: float = DEFAULT_CONFIDENCE
    context: Optional[str] = None

    @field_validator("source_entity", "target_entity", mode="before")
    @classmethod
    def _endpoint(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return coerce_relationship_type(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        return coerce_confidence(v)

    @field_validator("context", mode="before")
    @classmethod
    def _context(cls, v: Any) -> Optional[str]:
        return _optional_text(v)


class ExtractionResult(BaseModel):
    entities: List[ExtractedEntity] = Field(default_factory=list)
    relationships: List[ExtractedRelationship] = Field(default_factory=list)


class Extractor(Protocol):
    """Reads free text and proposes candidate entities and relationships."""

    def extract(self, text: str, source_type: str) -> ExtractionResult:
        ...


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key):
            return raw[key]
    return None


def parse_extraction_result(data: Any) -> ExtractionResult:
    """Validate extractor output, dropping malformed candidates. Never raises."""
    if not isinstance(data, dict):
        logger.warning("Extraction payload is not an object: %r", type(data).__name__)
        return ExtractionResult()

    entities: List[ExtractedEntity] = []
    for raw in data.get("entities") or []:
        if not isinstance(raw, dict) or not raw.get("name") or not raw.get("type"):
            logger.debug("Skipping malformed entity: %r", raw)
            continue
        try:
            entities.append(ExtractedEntity.model_validate(raw))
        except ValidationError as exc:
            logger.debug("Skipping invalid entity %r: %s", raw, exc)

    relationships: List[ExtractedRelationship] = []
    for raw in data.get("relationships") or []:
        if (
            not isinstance(raw, dict)
            or not _first(raw, "sourceEntityName", "sourceEntity", "source_entity")
            or not _first(raw, "targetEntityName", "targetEntity", "target_entity")
            or not raw.get("type")
        ):
            logger.debug("Skipping malformed relationship: %r", raw)
            continue
        try:
            relationships.append(ExtractedRelationship.model_validate(raw))
        except ValidationError as exc:
            logger.debug("Skipping invalid relationship %r: %s", raw, exc)

    return ExtractionResult(entities=entities, relationships=relationships)


def parse_extraction_response(response: str) -> ExtractionResult:
    """Pull the JSON object out of a model's free-text reply and validate it."""
    match = _JSON_OBJECT_RE.search(response or "")
    if not match:
        logger.warning("No JSON found in extraction response")
        return ExtractionResult()
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse extraction response: %s", exc)
        return ExtractionResult()
    return parse_extraction_result(data)


# ---------------------------------------------------------------------------
# Chat name spotting
# ---------------------------------------------------------------------------

_PREPOSITION_NAME_RE = re.compile(
    r"(?:about|with|from|to)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"
)
_CAPITALIZED_RE = re.compile(r"(?:^|\s)([A-Z][a-z]{2,}(?:\s+[A-Z][a-z]+)?)")

_COMMON_WORDS = {
    "The", "What", "When", "Where", "Why", "How", "Can", "Could", "Would", "Should",
    "Will", "Tell", "Show", "Find", "Get", "Give", "Today", "Tomorrow", "Monday",
    "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
}


def extract_entity_names_from_message(message: str) -> List[str]:
    """Candidate entity names in a chat message, in order of appearance."""
    names: List[str] = []

    for match in _PREPOSITION_NAME_RE.finditer(message):
        names.append(match.group(1))

    for match in _CAPITALIZED_RE.finditer(message):
        name = match.group(1).strip()
        if name not in _COMMON_WORDS and name not in names:
            names.append(name)

    return list(dict.fromkeys(names))
