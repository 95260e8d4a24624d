from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from answer_engine.db.models import Document
from answer_engine.dependencies import get_orchestrator
from answer_engine.schemas import (
    DocumentCreateRequest,
    DocumentOut,
    IngestResponse,
    SearchHit,
    SearchRequest,
)
from answer_engine.services.ask_service import AnswerOrchestrator
from answer_engine.services.vector_store import IngestResult, NewDocument, SearchFilters, SpecializedContext

router = APIRouter()


def _document_out(doc: Document) -> DocumentOut:
    return DocumentOut(
        id=doc.id,
        owner_id=doc.owner_id,
        title=doc.title,
        source_category=doc.source_category,
        file_type=doc.file_type,
        tags=list(doc.tags or []),
        status=doc.status.value,
        error=doc.error,
        embedding_model=doc.embedding_model,
        uploaded_at=doc.uploaded_at,
    )


def _ingest_out(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        document_id=result.document_id,
        status=result.status.value,
        chunk_count=result.chunk_count,
        failed_embeddings=result.failed_embeddings,
        error=result.error,
    )


@router.post('/documents', response_model=IngestResponse, status_code=201)
async def create_document(
    req: DocumentCreateRequest, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)
) -> IngestResponse:
    components = SpecializedContext.from_dict(req.components.model_dump()) if req.components else None
    result = await orchestrator.ingest(
        NewDocument(
            owner_id=req.owner_id,
            title=req.title,
            content=req.content,
            source_category=req.source_category,
            file_type=req.file_type,
            tags=req.tags,
            components=components,
            metadata=req.metadata,
        ),
        defer=req.defer,
    )
    return _ingest_out(result)


@router.get('/documents', response_model=list[DocumentOut])
async def list_documents(
    owner_id: str,
    category: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    orchestrator: AnswerOrchestrator = Depends(get_orchestrator),
) -> list[DocumentOut]:
    docs = await orchestrator.store.list_documents(owner_id, category=category, limit=limit, offset=offset)
    return [_document_out(d) for d in docs]


@router.get('/documents/{document_id}', response_model=DocumentOut)
async def get_document(
    document_id: UUID, owner_id: str, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)
) -> DocumentOut:
    return _document_out(await orchestrator.store.get_document(document_id, owner_id))


@router.delete('/documents/{document_id}', status_code=204)
async def delete_document(
    document_id: UUID, owner_id: str, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)
) -> Response:
    await orchestrator.store.delete_document(document_id, owner_id)
    return Response(status_code=204)


@router.post('/search', response_model=list[SearchHit])
async def search(req: SearchRequest, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)) -> list[SearchHit]:
    store = orchestrator.store
    filters = SearchFilters(
        owner_id=req.user_id,
        categories=req.categories,
        file_types=req.file_types,
        tags=req.tags,
        uploaded_after=req.uploaded_after,
        uploaded_before=req.uploaded_before,
    )
    results = await store.search(req.query, filters, req.limit)
    if req.include_knowledge_base:
        knowledge = SearchFilters(categories=[orchestrator.fusion.knowledge_category])
        seen = {(r.document_id, r.chunk_index) for r in results}
        for r in await store.search(req.query, knowledge, req.limit):
            if (r.document_id, r.chunk_index) not in seen:
                results.append(r)
        results.sort(key=lambda r: r.similarity_score, reverse=True)
        results = results[: req.limit]
    return [
        SearchHit(
            document_id=r.document_id,
            title=r.title,
            chunk_index=r.chunk_index,
            similarity_score=r.similarity_score,
            content_snippet=r.content_snippet,
            context=r.context,
            section_title=r.section_title,
            category=r.category,
            scale=r.scale,
        )
        for r in results
    ]
