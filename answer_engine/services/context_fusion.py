from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from answer_engine.config import get_settings
from answer_engine.services.embedding_service import EmbeddingService
from answer_engine.services.vector_store import SearchFilters, SearchResult, VectorStore

logger = logging.getLogger(__name__)

USER_DOCUMENT = 'user_document'
KNOWLEDGE_BASE = 'knowledge_base'
COMPONENT = 'component'

CURATED = 'curated'
COMMUNITY = 'community'

DIVERSITY_BONUS = 0.2
DIVERSITY_SATURATION = 5

_CURATED_MARKERS = ('Best practices:', 'Guidelines:', 'Common parameter types')
_PLATFORM_MARKERS = (
    ('YouTube', ('YouTube', 'video')),
    ('Community Forum', ('forum', 'discussion')),
    ('Documentation', ('documentation', 'guide')),
    ('Blog', ('blog', 'article')),
)


class ProvenanceClassifier(Protocol):
    def classify(self, text: str) -> str: ...

    def source_platform(self, text: str) -> str | None: ...


class HeuristicProvenanceClassifier:
    """Labels knowledge-base text by its shape. Best effort, not authoritative."""

    def classify(self, text: str) -> str:
        if any(marker in text for marker in _CURATED_MARKERS):
            return CURATED
        return COMMUNITY

    def source_platform(self, text: str) -> str | None:
        for platform, markers in _PLATFORM_MARKERS:
            if any(marker in text for marker in markers):
                return platform
        return None


@dataclass
class ContextItem:
    partition: str
    document_id: uuid.UUID
    title: str
    snippet: str
    context: str
    similarity_score: float
    chunk_index: int
    scale: str = 'cosine'
    section_title: str | None = None
    provenance: str | None = None
    source_platform: str | None = None
    component_type: str | None = None

    def as_source(self) -> dict:
        source = {
            'partition': self.partition,
            'document_id': str(self.document_id),
            'title': self.title,
            'chunk_index': self.chunk_index,
            'similarity_score': round(self.similarity_score, 4),
            'scale': self.scale,
        }
        if self.section_title:
            source['section_title'] = self.section_title
        if self.provenance:
            source['provenance'] = self.provenance
        if self.source_platform:
            source['source_platform'] = self.source_platform
        if self.component_type:
            source['component_type'] = self.component_type
        return source


@dataclass
class ContextBundle:
    user_documents: list[ContextItem] = field(default_factory=list)
    knowledge_base: list[ContextItem] = field(default_factory=list)
    components: list[ContextItem] = field(default_factory=list)
    ranked: list[ContextItem] = field(default_factory=list)
    quality: float = 0.0
    confidence: str = 'low'
    explanation: str = ''
    degraded: bool = False

    @property
    def total_sources(self) -> int:
        return len(self.user_documents) + len(self.knowledge_base) + len(self.components)

    @classmethod
    def empty(cls, degraded: bool = False) -> ContextBundle:
        bundle = cls(degraded=degraded)
        bundle.explanation = build_explanation(bundle)
        return bundle


def context_quality(scores: list[float]) -> float:
    if not scores:
        return 0.0
    average = sum(scores) / len(scores)
    diversity = min(len(scores) / DIVERSITY_SATURATION, 1.0)
    return max(0.0, min(1.0, average + diversity * DIVERSITY_BONUS))


def confidence_bucket(quality: float, source_count: int) -> str:
    if quality > 0.8 and source_count >= 3:
        return 'high'
    if quality > 0.5 and source_count >= 2:
        return 'medium'
    return 'low'


def _plural(count: int, singular: str, plural: str) -> str:
    return f'{count} {singular if count == 1 else plural}'


def build_explanation(bundle: ContextBundle) -> str:
    parts: list[str] = []
    if bundle.user_documents:
        parts.append(f'{len(bundle.user_documents)} of your uploaded documents')
    if bundle.knowledge_base:
        parts.append(_plural(len(bundle.knowledge_base), 'knowledge base resource', 'knowledge base resources'))
    if bundle.components:
        parts.append(
            _plural(len(bundle.components), 'specialized component', 'specialized components') + ' from your files'
        )
    if not parts:
        if bundle.degraded:
            return 'Context retrieval was unavailable; answer uses general expertise'
        return 'No matching context found; answer uses general expertise'

    if bundle.quality > 0.8:
        note = 'high-quality context match'
    elif bundle.quality > 0.5:
        note = 'moderate context match'
    else:
        note = 'limited context match'
    return f"Answer drawn from {', '.join(parts)} ({note})"


def rank_items(bundle: ContextBundle) -> list[ContextItem]:
    # cosine and lexical scores are not comparable; components rank after vector hits
    vector_items = sorted(bundle.user_documents + bundle.knowledge_base, key=lambda i: i.similarity_score, reverse=True)
    component_items = sorted(bundle.components, key=lambda i: i.similarity_score, reverse=True)
    return vector_items + component_items


def _to_item(result: SearchResult, partition: str) -> ContextItem:
    return ContextItem(
        partition=partition,
        document_id=result.document_id,
        title=result.title,
        snippet=result.content_snippet,
        context=result.context,
        similarity_score=result.similarity_score,
        chunk_index=result.chunk_index,
        scale=result.scale,
        section_title=result.section_title,
        component_type=result.component_type,
    )


class ContextFusionEngine:
    def __init__(
        self,
        store: VectorStore,
        embeddings: EmbeddingService,
        classifier: ProvenanceClassifier | None = None,
        user_limit: int | None = None,
        knowledge_limit: int | None = None,
        component_limit: int | None = None,
        knowledge_category: str | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.embeddings = embeddings
        self.classifier = classifier or HeuristicProvenanceClassifier()
        self.user_limit = user_limit or settings.user_results_limit
        self.knowledge_limit = knowledge_limit or settings.knowledge_results_limit
        self.component_limit = component_limit or settings.component_results_limit
        self.knowledge_category = knowledge_category or settings.knowledge_category

    async def fuse(self, query: str, user_id: str, uploaded_file_id: uuid.UUID | None = None) -> ContextBundle:
        vector = await self.embeddings.embed_query(query)
        return await self.fuse_with_vector(query, vector, user_id, uploaded_file_id)

    async def fuse_with_vector(
        self,
        query: str,
        vector: list[float],
        user_id: str,
        uploaded_file_id: uuid.UUID | None = None,
    ) -> ContextBundle:
        user_filters = SearchFilters(owner_id=user_id, exclude_categories=[self.knowledge_category])
        knowledge_filters = SearchFilters(categories=[self.knowledge_category])
        component_docs = [uploaded_file_id] if uploaded_file_id else None

        user_hits, knowledge_hits, component_hits = await asyncio.gather(
            self.store.search_by_vector(vector, user_filters, self.user_limit),
            self.store.search_by_vector(vector, knowledge_filters, self.knowledge_limit),
            self.store.search_specialized_components(
                query, owner_id=user_id, document_ids=component_docs, limit=self.component_limit
            ),
        )

        bundle = ContextBundle(
            user_documents=[_to_item(r, USER_DOCUMENT) for r in user_hits[: self.user_limit]],
            knowledge_base=[self._knowledge_item(r) for r in knowledge_hits[: self.knowledge_limit]],
            components=[_to_item(r, COMPONENT) for r in component_hits[: self.component_limit]],
        )
        bundle.ranked = rank_items(bundle)
        bundle.quality = context_quality([item.similarity_score for item in bundle.ranked])
        bundle.confidence = confidence_bucket(bundle.quality, bundle.total_sources)
        bundle.explanation = build_explanation(bundle)
        logger.info(
            'Context fused: %s user, %s knowledge, %s component items, quality %.3f',
            len(bundle.user_documents),
            len(bundle.knowledge_base),
            len(bundle.components),
            bundle.quality,
            extra={'user_id': user_id},
        )
        return bundle

    def _knowledge_item(self, result: SearchResult) -> ContextItem:
        item = _to_item(result, KNOWLEDGE_BASE)
        item.provenance = self.classifier.classify(result.context)
        item.source_platform = self.classifier.source_platform(result.context)
        return item
