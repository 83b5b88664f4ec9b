"""Boundary schema for LLM extraction output.

Raw model output is parsed into these models or rejected with an
``ExtractionParseError``; nothing downstream sees unvalidated fields.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from src.storage.schemas import EntityType, EvidencePosition, TemporalBound
from src.utils.errors import ExtractionParseError

# Common off-schema types returned by models, mapped onto the supported ones.
ENTITY_TYPE_ALIASES: Dict[str, EntityType] = {
    "group": EntityType.CONCEPT,
    "organization": EntityType.CONCEPT,
    "faction": EntityType.CONCEPT,
    "creature": EntityType.CHARACTER,
    "animal": EntityType.CHARACTER,
    "person": EntityType.CHARACTER,
    "place": EntityType.LOCATION,
    "area": EntityType.LOCATION,
    "region": EntityType.LOCATION,
    "object": EntityType.ITEM,
    "artifact": EntityType.ITEM,
    "weapon": EntityType.ITEM,
    "tool": EntityType.ITEM,
    "idea": EntityType.CONCEPT,
    "theme": EntityType.CONCEPT,
    "occurrence": EntityType.EVENT,
    "incident": EntityType.EVENT,
}

DEFAULT_FACT_CONFIDENCE = 0.8


def normalize_entity_type(raw_type: Any) -> EntityType:
    value = str(raw_type or "").strip().lower()
    try:
        return EntityType(value)
    except ValueError:
        return ENTITY_TYPE_ALIASES.get(value, EntityType.CONCEPT)


def _join_evidence(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(str(part) for part in value)
    return str(value)


class _ExtractionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ExtractedEntity(_ExtractionModel):
    """An entity mention as returned by the model."""

    name: str = Field(..., min_length=1)
    type: EntityType
    description: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> EntityType:
        return normalize_entity_type(v)

    @field_validator("aliases", mode="before")
    @classmethod
    def coerce_aliases(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v.strip()] if v.strip() else []
        if isinstance(v, list):
            return [str(a).strip() for a in v if str(a).strip()]
        raise ValueError("aliases must be a list of strings")


class ExtractedFact(_ExtractionModel):
    """A subject/predicate/object statement attached to one entity."""

    entity_name: str = Field(..., alias="entityName", min_length=1)
    subject: str
    predicate: str
    object: str
    confidence: float = DEFAULT_FACT_CONFIDENCE
    evidence: str = ""
    evidence_position: Optional[EvidencePosition] = Field(default=None, alias="evidencePosition")
    temporal_bound: Optional[TemporalBound] = Field(default=None, alias="temporalBound")

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        if v is None:
            return DEFAULT_FACT_CONFIDENCE
        try:
            score = float(v)
        except (TypeError, ValueError):
            raise ValueError("confidence must be a number") from None
        return max(0.0, min(score, 1.0))

    @field_validator("evidence", mode="before")
    @classmethod
    def join_evidence(cls, v: Any) -> str:
        return _join_evidence(v)

    @field_validator("temporal_bound", mode="before")
    @classmethod
    def drop_incomplete_bound(cls, v: Any) -> Any:
        if isinstance(v, dict) and not (v.get("type") and v.get("value")):
            return None
        return v


class ExtractedRelationship(_ExtractionModel):
    """A typed link between two extracted entities."""

    source_entity: str = Field(..., alias="sourceEntity", min_length=1)
    target_entity: str = Field(..., alias="targetEntity", min_length=1)
    relationship_type: str = Field(..., alias="relationshipType", min_length=1)
    evidence: str = ""
    evidence_position: Optional[EvidencePosition] = Field(default=None, alias="evidencePosition")

    @field_validator("evidence", mode="before")
    @classmethod
    def join_evidence(cls, v: Any) -> str:
        return _join_evidence(v)


class ExtractionResult(_ExtractionModel):
    """Structured output of one extraction call."""

    entities: List[ExtractedEntity] = Field(default_factory=list)
    facts: List[ExtractedFact] = Field(default_factory=list)
    relationships: List[ExtractedRelationship] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.entities or self.facts or self.relationships)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict using the wire (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# JSON schema sent with the request so providers that support structured output
# constrain the response.
EXTRACTION_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "entities": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "type": {"enum": [t.value for t in EntityType]},
                    "description": {"type": "string"},
                    "aliases": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["name", "type"],
                "additionalProperties": False,
            },
        },
        "facts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "entityName": {"type": "string"},
                    "subject": {"type": "string"},
                    "predicate": {"type": "string"},
                    "object": {"type": "string"},
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    "evidence": {"type": "string"},
                    "temporalBound": {
                        "type": "object",
                        "properties": {
                            "type": {"enum": ["point", "range", "relative"]},
                            "value": {"type": "string"},
                        },
                    },
                },
                "required": [
                    "entityName",
                    "subject",
                    "predicate",
                    "object",
                    "confidence",
                    "evidence",
                ],
                "additionalProperties": False,
            },
        },
        "relationships": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "sourceEntity": {"type": "string"},
                    "targetEntity": {"type": "string"},
                    "relationshipType": {"type": "string"},
                    "evidence": {"type": "string"},
                },
                "required": ["sourceEntity", "targetEntity", "relationshipType", "evidence"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["entities", "facts", "relationships"],
    "additionalProperties": False,
}


_FENCE_START = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_END = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_END.sub("", _FENCE_START.sub("", text))
    return text


def _section_items(
    data: Dict[str, Any], key: str, *, keyed_by: Tuple[str, ...] = ()
) -> List[Dict[str, Any]]:
    """Return a section as a list of dicts.

    Models occasionally return ``{"Jon Snow": {...}}`` instead of a list; when
    ``keyed_by`` is given the mapping key is folded into each item.
    """
    section = data.get(key)
    if section is None:
        return []
    if isinstance(section, dict):
        if not keyed_by:
            raise ExtractionParseError(f"'{key}' must be a list")
        items = []
        for name, item in section.items():
            if not isinstance(item, dict):
                raise ExtractionParseError(f"'{key}.{name}' must be an object")
            items.append({**item, **{field: item.get(field) or name for field in keyed_by}})
        return items
    if not isinstance(section, list):
        raise ExtractionParseError(f"'{key}' must be a list")
    for index, item in enumerate(section):
        if not isinstance(item, dict):
            raise ExtractionParseError(f"'{key}[{index}]' must be an object")
    return section


def parse_extraction_payload(data: Any) -> ExtractionResult:
    """Validate an already-decoded payload against the extraction schema.

    Raises:
        ExtractionParseError: If the payload does not match the schema
    """
    if not isinstance(data, dict):
        raise ExtractionParseError("top-level value must be an object")

    normalized = {
        "entities": _section_items(data, "entities", keyed_by=("name",)),
        "facts": _section_items(data, "facts", keyed_by=("entityName", "subject")),
        "relationships": _section_items(data, "relationships"),
    }
    try:
        return ExtractionResult.model_validate(normalized)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ExtractionParseError(
            f"{location}: {first.get('msg', 'invalid value')}",
            {"error_count": exc.error_count()},
        ) from exc


def parse_extraction_response(text: str) -> ExtractionResult:
    """Parse raw model text (optionally wrapped in a Markdown fence).

    Raises:
        ExtractionParseError: If the text is not JSON or does not match the schema
    """
    if not text or not text.strip():
        raise ExtractionParseError("empty response")
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        raise ExtractionParseError(f"invalid JSON ({exc.msg})") from exc
    return parse_extraction_payload(data)
