from __future__ import annotations

from functools import lru_cache

from redis.asyncio import Redis

from answer_engine.chunking import ChunkingConfig, TextChunker
from answer_engine.config import get_settings
from answer_engine.db.session import get_session_factory
from answer_engine.queue.sqs_client import enqueue_ingest_job_async
from answer_engine.services.ask_service import AnswerOrchestrator
from answer_engine.services.cache_service import AnswerCacheService
from answer_engine.services.context_fusion import ContextFusionEngine
from answer_engine.services.embedding_service import EmbeddingService, OllamaEmbeddingClient
from answer_engine.services.llm_service import OllamaChatClient
from answer_engine.services.usage_gate import RedisUsageGate
from answer_engine.services.vector_store import VectorStore


@lru_cache
def get_redis() -> Redis:
    return Redis.from_url(get_settings().redis_url, decode_responses=True)


def build_vector_store() -> VectorStore:
    settings = get_settings()
    chunker = TextChunker(
        ChunkingConfig(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            min_chunk_size=settings.min_chunk_size,
            max_chunk_size=settings.max_chunk_size,
        )
    )
    embeddings = EmbeddingService(OllamaEmbeddingClient(), redis=get_redis())
    enqueue = enqueue_ingest_job_async if settings.sqs_ingest_queue_url else None
    return VectorStore(get_session_factory(), embeddings, chunker, enqueue=enqueue)


@lru_cache
def get_orchestrator() -> AnswerOrchestrator:
    store = build_vector_store()
    return AnswerOrchestrator(
        cache=AnswerCacheService(get_session_factory()),
        fusion=ContextFusionEngine(store, store.embeddings),
        llm=OllamaChatClient(),
        store=store,
        usage_gate=RedisUsageGate(get_redis()),
    )
