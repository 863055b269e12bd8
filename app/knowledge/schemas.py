"""Pydantic schemas for knowledge entries, search and rebuilds."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    FAQ = "faq"
    DOCUMENT = "document"


class KnowledgeEntry(BaseModel):
    id: UUID
    bot_config_id: UUID
    source_kind: SourceKind
    text: str
    embedding: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SearchResult(BaseModel):
    id: UUID
    text: str
    similarity: float
    source_label: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    bot_config_id: UUID | None = None
    limit: int = Field(default=5, ge=1, le=50)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult]


class DocumentChunk(BaseModel):
    page: int | None = None
    content: str
    embedding: list[float] | None = None


class SourceDocument(BaseModel):
    id: UUID
    bot_config_id: UUID
    file_name: str | None = None
    text: str | None = None
    chunks: list[DocumentChunk] = Field(default_factory=list)
    created_at: datetime


class RebuildSummary(BaseModel):
    bot_config_id: UUID
    total_entries: int
    faq_entries: int
    document_entries: int
    failed_entries: int
    faqs: int
    documents: int
    rebuilt_at: datetime
