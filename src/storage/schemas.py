"""Pydantic models for the records held in the canon document store."""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid4())


class ProjectType(str, Enum):
    """Kind of project; TTRPG projects can hide entities from players."""

    GENERAL = "general"
    TTRPG = "ttrpg"


class ContentType(str, Enum):
    TEXT = "text"
    MARKDOWN = "markdown"
    FILE = "file"


class ProcessingStatus(str, Enum):
    """Extraction state of a document."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EntityType(str, Enum):
    """Entity types tracked in a canon."""

    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    CONCEPT = "concept"
    EVENT = "event"


class EntityStatus(str, Enum):
    """Entity review status. There is no way back from confirmed."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


class FactStatus(str, Enum):
    """Fact review status. Only non-rejected facts count toward project stats."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class EvidencePosition(BaseModel):
    """Character span of the evidence inside the source document."""

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_span(self) -> "EvidencePosition":
        if self.end < self.start:
            raise ValueError("Evidence end must not precede start")
        return self


class TemporalBound(BaseModel):
    type: Literal["point", "range", "relative"]
    value: str


class ProjectStats(BaseModel):
    """Denormalized per-project counters."""

    document_count: int = Field(default=0, ge=0)
    entity_count: int = Field(default=0, ge=0)
    fact_count: int = Field(default=0, ge=0)
    alert_count: int = Field(default=0, ge=0)
    note_count: int = Field(default=0, ge=0)


class Project(BaseModel):
    id: str = Field(default_factory=new_id, description="Unique project identifier")
    user_id: str = Field(..., description="Owner identity")
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    project_type: ProjectType = ProjectType.GENERAL
    reveal_to_players: bool = False
    stats: Optional[ProjectStats] = Field(
        default=None, description="Counters; absent means all zero"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Document(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    title: str
    content: Optional[str] = None
    storage_id: Optional[str] = Field(default=None, description="Opaque blob reference")
    content_type: ContentType = ContentType.TEXT
    order_index: int = Field(default=0, ge=0)
    word_count: int = Field(default=0, ge=0)
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_source(self) -> "Document":
        if self.content is not None and self.storage_id is not None:
            raise ValueError("A document holds either text content or a file, not both")
        return self


class Entity(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    name: str
    type: EntityType
    description: Optional[str] = None
    aliases: list[str] = Field(default_factory=list)
    status: EntityStatus = EntityStatus.PENDING
    first_mentioned_in: Optional[str] = Field(default=None, description="Document id")
    revealed_to_viewers: Optional[bool] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Entity name cannot be empty")
        return v.strip()

    def names(self) -> list[str]:
        """Name followed by aliases; the strings used for matching."""
        return [self.name, *self.aliases]


class Fact(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    entity_id: Optional[str] = None
    document_id: Optional[str] = None
    subject: str
    predicate: str
    object: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence_snippet: str = ""
    evidence_position: Optional[EvidencePosition] = None
    temporal_bound: Optional[TemporalBound] = None
    status: FactStatus = FactStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def counts_toward_stats(self) -> bool:
        return self.status != FactStatus.REJECTED


class LLMCacheEntry(BaseModel):
    """Cached extraction response keyed by (input hash, prompt version)."""

    id: Optional[int] = None
    input_hash: str
    prompt_version: str
    model_id: str
    response: str = Field(..., description="JSON-serialized extraction response")
    created_at: int = Field(..., description="Epoch milliseconds")
    expires_at: int = Field(..., description="Epoch milliseconds")

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at < now_ms
