"""Storage for knowledge entries and the documents they are built from."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from uuid import UUID, uuid4

import numpy as np
from psycopg.types.json import Jsonb

from app.core.db import ConnectionFactory, dict_cursor

from . import schemas


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors (0.0 for degenerate input)."""

    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class KnowledgeRepository(Protocol):
    def list_entries(self, bot_config_id: Optional[UUID] = None) -> List[schemas.KnowledgeEntry]: ...

    def similar(
        self,
        embedding: Sequence[float],
        *,
        bot_config_id: Optional[UUID],
        threshold: float,
        limit: int,
    ) -> List[Tuple[schemas.KnowledgeEntry, float]]: ...

    def delete_for_config(self, bot_config_id: UUID) -> int: ...

    def add_entry(
        self,
        bot_config_id: UUID,
        source_kind: schemas.SourceKind,
        text: str,
        embedding: Sequence[float],
        metadata: Dict[str, Any],
    ) -> schemas.KnowledgeEntry: ...


class DocumentRepository(Protocol):
    def list_documents(self, bot_config_id: UUID) -> List[schemas.SourceDocument]: ...

    def add_document(
        self,
        bot_config_id: UUID,
        *,
        file_name: Optional[str],
        text: Optional[str] = None,
        chunks: Optional[List[schemas.DocumentChunk]] = None,
    ) -> schemas.SourceDocument: ...


# ----------------------------------------------------------------------
# PostgreSQL (pgvector)


class PostgresKnowledgeRepository:
    """pgvector-backed entries; requires :func:`pgvector.psycopg.register_vector`."""

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

    def _cursor(self):
        return dict_cursor(self._connect)

    @staticmethod
    def _hydrate(row: dict) -> schemas.KnowledgeEntry:
        embedding = row["embedding"]
        if hasattr(embedding, "tolist"):
            embedding = embedding.tolist()
        return schemas.KnowledgeEntry(
            id=row["id"],
            bot_config_id=row["bot_config_id"],
            source_kind=row["source_kind"],
            text=row["text"],
            embedding=list(embedding),
            metadata=row.get("metadata") or {},
            created_at=row["created_at"],
        )

    def list_entries(self, bot_config_id: Optional[UUID] = None) -> List[schemas.KnowledgeEntry]:
        with self._cursor() as cur:
            if bot_config_id is None:
                cur.execute("SELECT * FROM knowledge_entries ORDER BY created_at ASC, id ASC")
            else:
                cur.execute(
                    "SELECT * FROM knowledge_entries WHERE bot_config_id = %s ORDER BY created_at ASC, id ASC",
                    (bot_config_id,),
                )
            rows = cur.fetchall()
        return [self._hydrate(row) for row in rows]

    def similar(
        self,
        embedding: Sequence[float],
        *,
        bot_config_id: Optional[UUID],
        threshold: float,
        limit: int,
    ) -> List[Tuple[schemas.KnowledgeEntry, float]]:
        vector = np.asarray(embedding, dtype=np.float32)
        scope_sql = " AND bot_config_id = %s" if bot_config_id is not None else ""
        scope_params: list[object] = [bot_config_id] if bot_config_id is not None else []
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT *, 1 - (embedding <=> %s) AS similarity
                FROM knowledge_entries
                WHERE 1 - (embedding <=> %s) >= %s
                """
                + scope_sql
                + " ORDER BY embedding <=> %s, id LIMIT %s",
                (vector, vector, threshold, *scope_params, vector, limit),
            )
            rows = cur.fetchall()
        return [(self._hydrate(row), float(row["similarity"])) for row in rows]

    def delete_for_config(self, bot_config_id: UUID) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM knowledge_entries WHERE bot_config_id = %s", (bot_config_id,))
            return cur.rowcount or 0

    def add_entry(
        self,
        bot_config_id: UUID,
        source_kind: schemas.SourceKind,
        text: str,
        embedding: Sequence[float],
        metadata: Dict[str, Any],
    ) -> schemas.KnowledgeEntry:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO knowledge_entries
                    (id, bot_config_id, source_kind, text, embedding, metadata, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(),
                    bot_config_id,
                    schemas.SourceKind(source_kind).value,
                    text,
                    np.asarray(embedding, dtype=np.float32),
                    Jsonb(metadata),
                    datetime.now(timezone.utc),
                ),
            )
            row = cur.fetchone()
        return self._hydrate(row)


class PostgresDocumentRepository:
    """Documents and chunks written by the upload pipeline."""

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

    def _cursor(self):
        return dict_cursor(self._connect)

    def list_documents(self, bot_config_id: UUID) -> List[schemas.SourceDocument]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM documents WHERE bot_config_id = %s ORDER BY created_at ASC, id ASC",
                (bot_config_id,),
            )
            documents = cur.fetchall()
            result: List[schemas.SourceDocument] = []
            for doc in documents:
                cur.execute(
                    """
                    SELECT page, content, embedding FROM document_chunks
                    WHERE document_id = %s
                    ORDER BY chunk_index ASC
                    """,
                    (doc["id"],),
                )
                chunks = []
                for row in cur.fetchall():
                    embedding = row["embedding"]
                    if embedding is not None and hasattr(embedding, "tolist"):
                        embedding = embedding.tolist()
                    chunks.append(
                        schemas.DocumentChunk(page=row["page"], content=row["content"], embedding=embedding)
                    )
                result.append(
                    schemas.SourceDocument(
                        id=doc["id"],
                        bot_config_id=doc["bot_config_id"],
                        file_name=doc["file_name"],
                        text=doc["text"],
                        chunks=chunks,
                        created_at=doc["created_at"],
                    )
                )
        return result

    def add_document(
        self,
        bot_config_id: UUID,
        *,
        file_name: Optional[str],
        text: Optional[str] = None,
        chunks: Optional[List[schemas.DocumentChunk]] = None,
    ) -> schemas.SourceDocument:
        document_id = uuid4()
        now = datetime.now(timezone.utc)
        chunks = chunks or []
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO documents (id, bot_config_id, file_name, text, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (document_id, bot_config_id, file_name, text, now),
            )
            for index, chunk in enumerate(chunks):
                cur.execute(
                    """
                    INSERT INTO document_chunks (id, document_id, chunk_index, page, content, embedding)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        uuid4(),
                        document_id,
                        index,
                        chunk.page,
                        chunk.content,
                        np.asarray(chunk.embedding, dtype=np.float32) if chunk.embedding else None,
                    ),
                )
        return schemas.SourceDocument(
            id=document_id,
            bot_config_id=bot_config_id,
            file_name=file_name,
            text=text,
            chunks=chunks,
            created_at=now,
        )


# ----------------------------------------------------------------------
# In-memory


class InMemoryKnowledgeRepository(KnowledgeRepository):
    def __init__(self) -> None:
        self._entries: Dict[UUID, schemas.KnowledgeEntry] = {}

    def list_entries(self, bot_config_id: Optional[UUID] = None) -> List[schemas.KnowledgeEntry]:
        return [
            e.model_copy(deep=True)
            for e in self._entries.values()
            if bot_config_id is None or e.bot_config_id == bot_config_id
        ]

    def similar(
        self,
        embedding: Sequence[float],
        *,
        bot_config_id: Optional[UUID],
        threshold: float,
        limit: int,
    ) -> List[Tuple[schemas.KnowledgeEntry, float]]:
        scored = [(entry, cosine_similarity(embedding, entry.embedding)) for entry in self.list_entries(bot_config_id)]
        kept = [(entry, score) for entry, score in scored if score >= threshold]
        kept.sort(key=lambda pair: (-pair[1], str(pair[0].id)))
        return kept[:limit]

    def delete_for_config(self, bot_config_id: UUID) -> int:
        doomed = [eid for eid, e in self._entries.items() if e.bot_config_id == bot_config_id]
        for eid in doomed:
            del self._entries[eid]
        return len(doomed)

    def add_entry(
        self,
        bot_config_id: UUID,
        source_kind: schemas.SourceKind,
        text: str,
        embedding: Sequence[float],
        metadata: Dict[str, Any],
    ) -> schemas.KnowledgeEntry:
        entry = schemas.KnowledgeEntry(
            id=uuid4(),
            bot_config_id=bot_config_id,
            source_kind=schemas.SourceKind(source_kind),
            text=text,
            embedding=list(embedding),
            metadata=dict(metadata),
            created_at=datetime.now(timezone.utc),
        )
        self._entries[entry.id] = entry
        return entry.model_copy(deep=True)


class InMemoryDocumentRepository(DocumentRepository):
    def __init__(self) -> None:
        self._documents: Dict[UUID, List[schemas.SourceDocument]] = {}

    def list_documents(self, bot_config_id: UUID) -> List[schemas.SourceDocument]:
        return [d.model_copy(deep=True) for d in self._documents.get(bot_config_id, [])]

    def add_document(
        self,
        bot_config_id: UUID,
        *,
        file_name: Optional[str],
        text: Optional[str] = None,
        chunks: Optional[List[schemas.DocumentChunk]] = None,
    ) -> schemas.SourceDocument:
        document = schemas.SourceDocument(
            id=uuid4(),
            bot_config_id=bot_config_id,
            file_name=file_name,
            text=text,
            chunks=list(chunks or []),
            created_at=datetime.now(timezone.utc),
        )
        self._documents.setdefault(bot_config_id, []).append(document)
        return document.model_copy(deep=True)


__all__ = [
    "DocumentRepository",
    "InMemoryDocumentRepository",
    "InMemoryKnowledgeRepository",
    "KnowledgeRepository",
    "PostgresDocumentRepository",
    "PostgresKnowledgeRepository",
    "cosine_similarity",
]
