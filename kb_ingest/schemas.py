"""Data schemas for KB Ingest."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChunkStatus(str, Enum):
    """Lifecycle status of a chunk."""
    ACTIVE = "active"
    REVIEW = "review"
    DEPRECATED = "deprecated"


class ExtractionProfile(str, Enum):
    """Kind of knowledge a source document holds."""
    PROCEDURE = "procedure"
    QNA = "qna"


class BreakerState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class PageRange(BaseModel):
    """Inclusive 1-based page span."""
    model_config = ConfigDict(frozen=True)

    start: int
    end: int


class Segment(BaseModel):
    """A structurally bounded slice of a document, produced before generation."""
    model_config = ConfigDict(frozen=True)

    index: int
    heading_path: List[str]
    content: str
    page_range: PageRange
    stable_id: str


class Chunk(BaseModel):
    """Represents a single retrievable unit of knowledge."""
    chunk_id: str = Field(min_length=1)
    source: str = "unknown"
    topic: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    triggers: List[str] = Field(min_length=1)
    has_conditions: bool = False
    escalation: Optional[str] = None
    related_chunks: List[str] = Field(default_factory=list)
    status: ChunkStatus = ChunkStatus.ACTIVE
    context: str = Field(min_length=1)
    conditions: Optional[str] = None
    constraints: Optional[str] = None
    response: str = Field(min_length=1)
    escalation_detail: Optional[str] = None

    @field_validator("triggers")
    @classmethod
    def _strip_triggers(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("at least one non-empty trigger is required")
        return cleaned

    @field_validator("related_chunks")
    @classmethod
    def _normalize_related(cls, value: List[str]) -> List[str]:
        return normalize_related_ids(value)


class GuideEntry(BaseModel):
    """One entry of the guide index, mirroring a chunk's front matter."""
    chunk_id: str
    source: str
    topic: str
    summary: str
    triggers: List[str] = Field(default_factory=list)
    has_conditions: bool = False
    escalation: Optional[str] = None
    related_chunks: List[str] = Field(default_factory=list)
    status: ChunkStatus = ChunkStatus.ACTIVE
    file: str

    @classmethod
    def from_chunk(cls, chunk: Chunk, file: str) -> "GuideEntry":
        return cls(
            chunk_id=chunk.chunk_id,
            source=chunk.source,
            topic=chunk.topic,
            summary=chunk.summary,
            triggers=list(chunk.triggers),
            has_conditions=chunk.has_conditions,
            escalation=chunk.escalation,
            related_chunks=list(chunk.related_chunks),
            status=chunk.status,
            file=file,
        )


class SourceManifestEntry(BaseModel):
    """Provenance record of the most recent successful extraction of a source."""
    content_hash: str
    extracted_at: str
    produced_chunk_ids: List[str] = Field(default_factory=list)
    size_bytes: int


class CircuitBreakerSnapshot(BaseModel):
    """Point-in-time view of a circuit breaker, for health checks."""
    name: str
    state: BreakerState
    consecutive_failures: int
    opened_at: Optional[datetime] = None


class IngestResult(BaseModel):
    """Outcome of ingesting one source."""
    source: str
    produced_chunk_ids: List[str] = Field(default_factory=list)
    skipped: bool = False


class StepResult(BaseModel):
    """Outcome of one orchestrator stage."""
    step: str
    success: bool
    duration_ms: int
    error: Optional[str] = None


class IngestReport(BaseModel):
    """Structured report of an ingestion run."""
    started_at: str
    sources: List[str] = Field(default_factory=list)
    results: List[IngestResult] = Field(default_factory=list)
    failed_sources: List[str] = Field(default_factory=list)
    steps: List[StepResult] = Field(default_factory=list)
    active_chunks: int = 0
    total_duration_ms: int = 0
    success: bool = False


def normalize_related_ids(ids: List[str]) -> List[str]:
    """Strip stray ``chunk_id:`` prefixes and drop blanks and duplicates."""
    seen: List[str] = []
    for raw in ids:
        value = str(raw).strip()
        if value.lower().startswith("chunk_id:"):
            value = value[len("chunk_id:"):].strip()
        if value and value not in seen:
            seen.append(value)
    return seen
