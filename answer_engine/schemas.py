from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AskRequest(BaseModel):
    user_id: str
    question: str
    plan: str = 'free'
    platform: str | None = None
    version: str | None = None
    uploaded_file_id: UUID | None = None


class AskResponse(BaseModel):
    answer: str
    answer_id: UUID
    cache_hit: bool
    canonical_id: str
    sources: list[dict[str, Any]] = Field(default_factory=list)
    quality_confidence: str
    context_quality: float = 0.0
    explanation: str = ''
    popularity: int = 1
    model_used: str | None = None
    total_tokens: int = 0
    latency_ms: int = 0
    degraded: bool = False


class VoteRequest(BaseModel):
    user_id: str
    vote: str
    reason: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)


class VoteResponse(BaseModel):
    answer_id: UUID
    ups: int
    downs: int
    quality_score: float
    user_vote: str


class MyVoteResponse(BaseModel):
    answer_id: UUID
    vote: str | None = None
    reason: str | None = None
    notes: str | None = None


class AnswerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    answer_id: UUID
    canonical_id: str
    platform: str
    version: str | None = None
    question: str
    popularity: int
    ups: int
    downs: int
    quality_score: float
    published_url: str | None = None
    created_at: datetime


class ComponentsPayload(BaseModel):
    file_type: str
    parts: list[dict[str, Any]] = Field(default_factory=list)
    parameters: list[dict[str, Any]] = Field(default_factory=list)
    constraints: list[dict[str, Any]] = Field(default_factory=list)
    broken_logic: list[dict[str, Any]] = Field(default_factory=list)


class DocumentCreateRequest(BaseModel):
    owner_id: str
    title: str
    content: str
    source_category: str = 'user_upload'
    file_type: str | None = None
    tags: list[str] = Field(default_factory=list)
    components: ComponentsPayload | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    defer: bool = False


class IngestResponse(BaseModel):
    document_id: UUID
    status: str
    chunk_count: int = 0
    failed_embeddings: list[int] = Field(default_factory=list)
    error: str | None = None


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    title: str
    source_category: str
    file_type: str | None = None
    tags: list[str] = Field(default_factory=list)
    status: str
    error: str | None = None
    embedding_model: str | None = None
    uploaded_at: datetime


class SearchRequest(BaseModel):
    user_id: str
    query: str
    limit: int = Field(default=10, ge=1, le=50)
    categories: list[str] | None = None
    file_types: list[str] | None = None
    tags: list[str] | None = None
    uploaded_after: datetime | None = None
    uploaded_before: datetime | None = None
    include_knowledge_base: bool = False


class SearchHit(BaseModel):
    document_id: UUID
    title: str
    chunk_index: int
    similarity_score: float
    content_snippet: str
    context: str
    section_title: str | None = None
    category: str
    scale: str
