"""
Shared fixtures: a file-backed sqlite database per test, a deterministic
bag-of-words embedder, a scripted language model and an in-memory async Redis.
"""

from __future__ import annotations

import hashlib
import re

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from answer_engine.chunking import TextChunker
from answer_engine.db import models  # noqa: F401
from answer_engine.db.session import create_tables
from answer_engine.errors import EmbeddingError, GenerationError
from answer_engine.services.ask_service import AnswerOrchestrator
from answer_engine.services.cache_service import AnswerCacheService
from answer_engine.services.context_fusion import ContextFusionEngine
from answer_engine.services.embedding_service import EmbeddingService
from answer_engine.services.llm_service import LlmAnswer, TokenUsage
from answer_engine.services.usage_gate import RedisUsageGate
from answer_engine.services.vector_store import VectorStore

TOKEN_RE = re.compile(r'[a-z0-9]+')


class HashingEmbeddingProvider:
    """Each distinct word hashes to one axis, so shared vocabulary means high cosine."""

    def __init__(self, dim: int = 1024, model: str = 'hash-bow-v1'):
        self.dim = dim
        self.model = model
        self.single_calls = 0
        self.batch_calls = 0
        self.fail_batches = False
        self.fail_texts: set[str] = set()

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for word in TOKEN_RE.findall(text.lower()):
            idx = int(hashlib.md5(word.encode('utf-8')).hexdigest(), 16) % self.dim
            vec[idx] += 1.0
        return vec

    async def embed(self, text: str) -> list[float]:
        self.single_calls += 1
        if text in self.fail_texts:
            raise EmbeddingError('item rejected')
        return self.vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        if self.fail_batches:
            raise EmbeddingError('batch rejected')
        return [self.vector(t) for t in texts]


class FakeLanguageModel:
    def __init__(self, reply: str = 'Set the edge banding thickness in the material settings.'):
        self.reply = reply
        self.fail = False
        self.calls: list[dict] = []

    async def generate(self, messages: list[dict], model: str, max_tokens: int, temperature: float) -> LlmAnswer:
        self.calls.append({'messages': messages, 'model': model, 'max_tokens': max_tokens, 'temperature': temperature})
        if self.fail:
            raise GenerationError('model unavailable')
        return LlmAnswer(text=self.reply, model=model, usage=TokenUsage(prompt_tokens=120, completion_tokens=40))


class FakeRedis:
    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def incr(self, key):
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def decr(self, key):
        value = int(self.data.get(key, 0)) - 1
        self.data[key] = str(value)
        return value

    async def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f'sqlite+aiosqlite:///{tmp_path / "engine.db"}')
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def provider():
    return HashingEmbeddingProvider()


@pytest.fixture
def embedding_service(provider, fake_redis):
    return EmbeddingService(provider, redis=fake_redis, batch_size=4, batch_delay_seconds=0)


@pytest.fixture
def store(session_factory, embedding_service):
    return VectorStore(session_factory, embedding_service, TextChunker())


@pytest.fixture
def cache(session_factory):
    return AnswerCacheService(session_factory)


@pytest.fixture
def fake_llm():
    return FakeLanguageModel()


@pytest.fixture
def fusion(store, embedding_service):
    return ContextFusionEngine(store, embedding_service)


@pytest.fixture
def orchestrator(cache, fusion, fake_llm, store, fake_redis):
    return AnswerOrchestrator(cache, fusion, fake_llm, store, usage_gate=RedisUsageGate(fake_redis))


def make_document(min_chars: int = 5000, prefix: str = 'term') -> str:
    """Prose with a unique vocabulary per word position, split into paragraphs."""
    paragraphs: list[str] = []
    i = 0
    while len('\n\n'.join(paragraphs)) < min_chars:
        words = [f'{prefix}{i + k}' for k in range(12)]
        i += 12
        paragraphs.append(' '.join(words).capitalize() + '.')
    return '\n\n'.join(paragraphs)


@pytest.fixture
def document_factory():
    return make_document
