"""
Document persistence and similarity search.

Documents are stored with their raw content, ordered chunks and one embedding
per chunk. Search is exhaustive: every chunk of every candidate document is
scored against the query vector, which keeps results exact for any embedding
dimension. Component search scores the structured records produced by the
specialized-file parsers lexically, and tags those results ``lexical`` so they
are never mistaken for cosine scores.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterator

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from answer_engine.chunking import TextChunker, sha256_text
from answer_engine.config import get_settings
from answer_engine.db.models import Chunk, Document, DocumentStatus, Embedding
from answer_engine.errors import (
    DimensionMismatchError,
    EmbeddingError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from answer_engine.services.canonical_service import jaccard, keyword_set, question_keywords
from answer_engine.services.embedding_service import EmbeddingService, cosine_similarity

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200
CONTEXT_NEIGHBOR_CHARS = 100
COMPONENT_TYPES = ('parts', 'parameters', 'constraints', 'broken_logic')
_COMPONENT_TEXT_FIELDS = ('name', 'type', 'description', 'value', 'unit', 'issue_type', 'suggested_fix')

Enqueue = Callable[[uuid.UUID], Awaitable[None]]


@dataclass
class SpecializedContext:
    """Structured output of a specialized-file parser attached to a document."""

    file_type: str
    parts: list[dict] = field(default_factory=list)
    parameters: list[dict] = field(default_factory=list)
    constraints: list[dict] = field(default_factory=list)
    broken_logic: list[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> SpecializedContext | None:
        if not data:
            return None
        if not isinstance(data, dict):
            raise InvalidInputError('components must be an object')
        lists = {}
        for key in COMPONENT_TYPES:
            value = data.get(key) or []
            if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
                raise InvalidInputError(f'components.{key} must be a list of objects')
            lists[key] = value
        return cls(file_type=str(data.get('file_type') or 'unknown'), **lists)

    def to_dict(self) -> dict:
        return {
            'file_type': self.file_type,
            'parts': self.parts,
            'parameters': self.parameters,
            'constraints': self.constraints,
            'broken_logic': self.broken_logic,
        }

    def records(self, component_types: list[str] | None = None) -> Iterator[tuple[str, int, dict]]:
        for ctype in component_types or COMPONENT_TYPES:
            for index, record in enumerate(getattr(self, ctype, [])):
                yield ctype, index, record


@dataclass
class NewDocument:
    owner_id: str
    title: str
    content: str
    source_category: str = 'user_upload'
    file_type: str | None = None
    tags: list[str] = field(default_factory=list)
    components: SpecializedContext | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class DocumentUpdate:
    title: str | None = None
    content: str | None = None
    tags: list[str] | None = None
    file_type: str | None = None
    components: SpecializedContext | None = None
    metadata: dict | None = None


@dataclass
class IngestResult:
    document_id: uuid.UUID
    status: DocumentStatus
    chunk_count: int = 0
    failed_embeddings: list[int] = field(default_factory=list)
    error: str | None = None


@dataclass
class SearchFilters:
    owner_id: str | None = None
    categories: list[str] | None = None
    exclude_categories: list[str] | None = None
    file_types: list[str] | None = None
    tags: list[str] | None = None
    uploaded_after: datetime | None = None
    uploaded_before: datetime | None = None
    document_ids: list[uuid.UUID] | None = None

    def validate(self) -> None:
        if self.uploaded_after and self.uploaded_before and self.uploaded_after > self.uploaded_before:
            raise InvalidInputError('uploaded_after must not be later than uploaded_before')


@dataclass
class SearchResult:
    document_id: uuid.UUID
    title: str
    chunk_index: int
    similarity_score: float
    content_snippet: str
    context: str
    category: str
    section_title: str | None = None
    file_type: str | None = None
    chunk_id: uuid.UUID | None = None
    scale: str = 'cosine'
    component_type: str | None = None


def create_snippet(text: str, max_length: int = SNIPPET_CHARS) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + '...'


def extract_section_title(text: str) -> str | None:
    for line in text.split('\n'):
        trimmed = line.strip()
        if not trimmed:
            continue
        if trimmed.startswith('#') or (len(trimmed) < 80 and '.' not in trimmed):
            return trimmed.lstrip('#').strip() or trimmed
    return None


def build_context_window(texts: list[str], index: int) -> str:
    parts: list[str] = []
    if index > 0:
        parts.append(create_snippet(texts[index - 1], CONTEXT_NEIGHBOR_CHARS))
    parts.append(texts[index])
    if index + 1 < len(texts):
        parts.append(create_snippet(texts[index + 1], CONTEXT_NEIGHBOR_CHARS))
    return ' ... '.join(parts)


def component_text(record: dict) -> str:
    values: list[str] = []
    for key in _COMPONENT_TEXT_FIELDS:
        value = record.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        values.append(str(value))
    return ' '.join(values)


def _component_label(record: dict) -> str:
    return str(record.get('name') or record.get('id') or record.get('part_id') or 'Unknown')


def _tags_match(doc: Document, tags: list[str] | None) -> bool:
    if not tags:
        return True
    return bool(set(doc.tags or []) & set(tags))


def _apply_filters(stmt, filters: SearchFilters):
    if filters.owner_id is not None:
        stmt = stmt.where(Document.owner_id == filters.owner_id)
    if filters.categories:
        stmt = stmt.where(Document.source_category.in_(filters.categories))
    if filters.exclude_categories:
        stmt = stmt.where(Document.source_category.not_in(filters.exclude_categories))
    if filters.file_types:
        stmt = stmt.where(Document.file_type.in_(filters.file_types))
    if filters.uploaded_after is not None:
        stmt = stmt.where(Document.uploaded_at >= filters.uploaded_after)
    if filters.uploaded_before is not None:
        stmt = stmt.where(Document.uploaded_at <= filters.uploaded_before)
    if filters.document_ids:
        stmt = stmt.where(Document.id.in_(filters.document_ids))
    return stmt


class VectorStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embeddings: EmbeddingService,
        chunker: TextChunker | None = None,
        enqueue: Enqueue | None = None,
        similarity_threshold: float | None = None,
        component_threshold: float | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.embeddings = embeddings
        self.chunker = chunker or TextChunker()
        self.enqueue = enqueue
        self.similarity_threshold = (
            settings.similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self.component_threshold = (
            settings.component_similarity_threshold if component_threshold is None else component_threshold
        )

    async def add_document(self, new: NewDocument, defer: bool = False) -> IngestResult:
        if not new.owner_id or not new.owner_id.strip():
            raise InvalidInputError('owner_id is required')
        if not new.title or not new.title.strip():
            raise InvalidInputError('title is required')

        async with self.session_factory() as session:
            doc = Document(
                owner_id=new.owner_id,
                title=new.title.strip(),
                content=new.content or '',
                source_category=new.source_category,
                file_type=new.file_type,
                tags=list(new.tags),
                components=new.components.to_dict() if new.components else None,
                metadata_json=dict(new.metadata),
                status=DocumentStatus.processing,
            )
            session.add(doc)
            await session.commit()
            document_id = doc.id

        logger.info('Document stored', extra={'document_id': str(document_id), 'user_id': new.owner_id})
        return await self._index_or_enqueue(document_id, defer)

    async def _index_or_enqueue(self, document_id: uuid.UUID, defer: bool) -> IngestResult:
        if defer and self.enqueue is not None:
            await self.enqueue(document_id)
            return IngestResult(document_id=document_id, status=DocumentStatus.processing)
        return await self.process_document(document_id)

    async def process_document(self, document_id: uuid.UUID) -> IngestResult:
        """Chunk and embed a stored document, replacing any previous index."""
        async with self.session_factory() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                raise NotFoundError('document not found', 'document', document_id)
            content = doc.content

        chunks = self.chunker.chunk_text(content)
        if not chunks:
            return await self._mark_error(document_id, 'content shorter than minimum chunk size')

        try:
            batch = await self.embeddings.embed_documents([c.text for c in chunks])
        except EmbeddingError as exc:
            return await self._mark_error(document_id, exc.message)

        async with self.session_factory() as session:
            async with session.begin():
                doc = await session.get(Document, document_id)
                if doc is None:
                    raise NotFoundError('document not found', 'document', document_id)
                await self._delete_index(session, document_id)

                rows = [
                    Chunk(
                        id=uuid.UUID(c.id),
                        document_id=document_id,
                        position=c.index,
                        text=c.text,
                        token_count=c.token_count,
                        start_offset=c.start,
                        end_offset=c.end,
                        is_complete_section=c.is_complete_section,
                        heading=c.heading,
                        text_hash=sha256_text(c.text),
                    )
                    for c in chunks
                ]
                session.add_all(rows)
                await session.flush()
                session.add_all(
                    Embedding(chunk_id=row.id, model=batch.model, vector=vec)
                    for row, vec in zip(rows, batch.vectors)
                )

                doc.status = DocumentStatus.ready
                doc.error = None
                doc.embedding_model = batch.model
                doc.embedding_dim = batch.dimension
                doc.updated_at = datetime.utcnow()

        if batch.failed:
            logger.warning(
                'Document indexed with %s zero-vector chunks',
                len(batch.failed),
                extra={'document_id': str(document_id)},
            )
        logger.info('Document ready with %s chunks', len(chunks), extra={'document_id': str(document_id)})
        return IngestResult(
            document_id=document_id,
            status=DocumentStatus.ready,
            chunk_count=len(chunks),
            failed_embeddings=batch.failed,
        )

    async def _mark_error(self, document_id: uuid.UUID, message: str) -> IngestResult:
        async with self.session_factory() as session:
            async with session.begin():
                doc = await session.get(Document, document_id)
                if doc is None:
                    raise NotFoundError('document not found', 'document', document_id)
                await self._delete_index(session, document_id)
                doc.status = DocumentStatus.error
                doc.error = message
                doc.embedding_model = None
                doc.embedding_dim = None
                doc.updated_at = datetime.utcnow()
        logger.warning('Document indexing failed: %s', message, extra={'document_id': str(document_id)})
        return IngestResult(document_id=document_id, status=DocumentStatus.error, error=message)

    async def _delete_index(self, session: AsyncSession, document_id: uuid.UUID) -> None:
        chunk_ids = select(Chunk.id).where(Chunk.document_id == document_id)
        await session.execute(delete(Embedding).where(Embedding.chunk_id.in_(chunk_ids)))
        await session.execute(delete(Chunk).where(Chunk.document_id == document_id))

    async def _owned(self, session: AsyncSession, document_id: uuid.UUID, owner_id: str) -> Document:
        doc = await session.get(Document, document_id)
        if doc is None:
            raise NotFoundError('document not found', 'document', document_id)
        if doc.owner_id != owner_id:
            raise ForbiddenError('document belongs to another user', {'document_id': str(document_id)})
        return doc

    async def get_document(self, document_id: uuid.UUID, owner_id: str) -> Document:
        async with self.session_factory() as session:
            return await self._owned(session, document_id, owner_id)

    async def get_document_chunks(self, document_id: uuid.UUID, owner_id: str) -> list[tuple[Chunk, list[float]]]:
        async with self.session_factory() as session:
            await self._owned(session, document_id, owner_id)
            rows = await session.execute(
                select(Chunk, Embedding.vector)
                .join(Embedding, Embedding.chunk_id == Chunk.id)
                .where(Chunk.document_id == document_id)
                .order_by(Chunk.position.asc())
            )
            return [(chunk, [float(v) for v in vec]) for chunk, vec in rows.all()]

    async def update_document(
        self, document_id: uuid.UUID, owner_id: str, update: DocumentUpdate, defer: bool = False
    ) -> IngestResult:
        async with self.session_factory() as session:
            doc = await self._owned(session, document_id, owner_id)
            reindex = update.content is not None and update.content != doc.content
            if update.title is not None:
                if not update.title.strip():
                    raise InvalidInputError('title must not be empty')
                doc.title = update.title.strip()
            if update.tags is not None:
                doc.tags = list(update.tags)
            if update.file_type is not None:
                doc.file_type = update.file_type
            if update.components is not None:
                doc.components = update.components.to_dict()
            if update.metadata is not None:
                doc.metadata_json = dict(update.metadata)
            if reindex:
                doc.content = update.content
                doc.status = DocumentStatus.processing
            doc.updated_at = datetime.utcnow()
            await session.commit()
            status = doc.status

        if reindex:
            return await self._index_or_enqueue(document_id, defer)
        return IngestResult(document_id=document_id, status=status)

    async def delete_document(self, document_id: uuid.UUID, owner_id: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                doc = await self._owned(session, document_id, owner_id)
                await self._delete_index(session, document_id)
                await session.delete(doc)
        logger.info('Document deleted', extra={'document_id': str(document_id), 'user_id': owner_id})

    async def list_documents(
        self,
        owner_id: str,
        category: str | None = None,
        status: DocumentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Document]:
        stmt = select(Document).where(Document.owner_id == owner_id)
        if category:
            stmt = stmt.where(Document.source_category == category)
        if status is not None:
            stmt = stmt.where(Document.status == status)
        stmt = stmt.order_by(Document.uploaded_at.desc()).limit(limit).offset(offset)
        async with self.session_factory() as session:
            return list((await session.scalars(stmt)).all())

    async def search(self, query: str, filters: SearchFilters | None = None, limit: int = 10) -> list[SearchResult]:
        if not query or not query.strip():
            raise InvalidInputError('query must not be empty')
        filters = filters or SearchFilters()
        filters.validate()
        vector = await self.embeddings.embed_query(query)
        return await self.search_by_vector(vector, filters, limit)

    async def search_by_vector(
        self, vector: list[float], filters: SearchFilters | None = None, limit: int = 10
    ) -> list[SearchResult]:
        filters = filters or SearchFilters()
        filters.validate()
        if limit <= 0:
            return []

        async with self.session_factory() as session:
            stmt = _apply_filters(select(Document).where(Document.status == DocumentStatus.ready), filters)
            docs = [d for d in (await session.scalars(stmt)).all() if _tags_match(d, filters.tags)]

            candidates: dict[uuid.UUID, Document] = {}
            for doc in docs:
                if doc.embedding_model != self.embeddings.model:
                    logger.warning(
                        'Skipping document embedded with %s, current model is %s',
                        doc.embedding_model,
                        self.embeddings.model,
                        extra={'document_id': str(doc.id)},
                    )
                    continue
                if doc.embedding_dim is not None and doc.embedding_dim != len(vector):
                    logger.warning(
                        'Skipping document with dimension %s, query has %s',
                        doc.embedding_dim,
                        len(vector),
                        extra={'document_id': str(doc.id)},
                    )
                    continue
                candidates[doc.id] = doc
            if not candidates:
                return []

            rows = await session.execute(
                select(Chunk.id, Chunk.document_id, Chunk.position, Chunk.text, Chunk.heading, Embedding.vector)
                .join(Embedding, Embedding.chunk_id == Chunk.id)
                .where(Chunk.document_id.in_(list(candidates)))
                .order_by(Chunk.document_id, Chunk.position.asc())
            )
            by_doc: dict[uuid.UUID, list[Any]] = {}
            for row in rows.all():
                by_doc.setdefault(row.document_id, []).append(row)

        results: list[SearchResult] = []
        for document_id, chunk_rows in by_doc.items():
            doc = candidates[document_id]
            texts = [r.text for r in chunk_rows]
            for i, row in enumerate(chunk_rows):
                try:
                    score = cosine_similarity(vector, [float(v) for v in row.vector])
                except DimensionMismatchError:
                    logger.warning('Skipping chunk with mismatched dimension', extra={'document_id': str(document_id)})
                    continue
                if score <= self.similarity_threshold:
                    continue
                results.append(
                    SearchResult(
                        document_id=document_id,
                        chunk_id=row.id,
                        title=doc.title,
                        chunk_index=row.position,
                        similarity_score=score,
                        content_snippet=create_snippet(row.text),
                        context=build_context_window(texts, i),
                        section_title=row.heading or extract_section_title(row.text),
                        category=doc.source_category,
                        file_type=doc.file_type,
                    )
                )

        results.sort(key=lambda r: r.similarity_score, reverse=True)
        return results[:limit]

    async def search_specialized_components(
        self,
        query: str,
        owner_id: str | None = None,
        component_types: list[str] | None = None,
        document_ids: list[uuid.UUID] | None = None,
        limit: int = 10,
    ) -> list[SearchResult]:
        if component_types:
            unknown = set(component_types) - set(COMPONENT_TYPES)
            if unknown:
                raise InvalidInputError('unknown component types', {'component_types': sorted(unknown)})
        terms = set(question_keywords(query))
        if not terms or limit <= 0:
            return []

        stmt = select(Document).where(Document.status == DocumentStatus.ready, Document.components.is_not(None))
        if owner_id is not None:
            stmt = stmt.where(Document.owner_id == owner_id)
        if document_ids:
            stmt = stmt.where(Document.id.in_(document_ids))
        async with self.session_factory() as session:
            docs = list((await session.scalars(stmt)).all())

        results: list[SearchResult] = []
        for doc in docs:
            ctx = SpecializedContext.from_dict(doc.components)
            if ctx is None:
                continue
            for ctype, index, record in ctx.records(component_types):
                text = component_text(record)
                score = jaccard(terms, keyword_set(text))
                if score <= self.component_threshold:
                    continue
                label = _component_label(record)
                results.append(
                    SearchResult(
                        document_id=doc.id,
                        title=doc.title,
                        chunk_index=index,
                        similarity_score=score,
                        content_snippet=create_snippet(text),
                        context=f'{ctype}: {label}',
                        section_title=label,
                        category=doc.source_category,
                        file_type=ctx.file_type,
                        scale='lexical',
                        component_type=ctype,
                    )
                )

        results.sort(key=lambda r: r.similarity_score, reverse=True)
        return results[:limit]

    async def stats(self) -> dict:
        async with self.session_factory() as session:
            total_documents = await session.scalar(select(func.count(Document.id)))
            total_owners = await session.scalar(select(func.count(func.distinct(Document.owner_id))))
            total_chunks = await session.scalar(select(func.count(Chunk.id)))
            total_vectors = await session.scalar(select(func.count(Embedding.id)))
            by_status = await session.execute(select(Document.status, func.count(Document.id)).group_by(Document.status))
        return {
            'total_documents': total_documents or 0,
            'total_owners': total_owners or 0,
            'total_chunks': total_chunks or 0,
            'total_vectors': total_vectors or 0,
            'documents_by_status': {status.value: count for status, count in by_status.all()},
        }
