from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from answer_engine.config import get_settings
from answer_engine.errors import DimensionMismatchError, EmbeddingError

logger = logging.getLogger(__name__)

MAX_EMBED_INPUT_CHARS = 8000


class EmbeddingProvider(Protocol):
    model: str

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class OllamaEmbeddingClient:
    """Embedding provider backed by an Ollama server."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ollama_base_url).rstrip('/')
        self.model = model or settings.ollama_embed_model
        self.timeout = timeout or settings.embed_timeout_seconds
        self._transport = transport

    async def _post(self, path: str, body: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f'{self.base_url}{path}', json=body)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPError as exc:
            raise EmbeddingError(f'embedding request failed: {exc}', {'model': self.model}) from exc

    async def embed(self, text: str) -> list[float]:
        data = await self._post('/api/embeddings', {'model': self.model, 'prompt': text[:MAX_EMBED_INPUT_CHARS]})
        vec = data.get('embedding') or []
        if not vec:
            raise EmbeddingError('provider returned an empty embedding', {'model': self.model})
        return [float(v) for v in vec]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        body = {'model': self.model, 'input': [t[:MAX_EMBED_INPUT_CHARS] for t in texts]}
        data = await self._post('/api/embed', body)
        vectors = data.get('embeddings') or []
        if len(vectors) != len(texts):
            raise EmbeddingError(
                'provider returned a partial batch',
                {'model': self.model, 'expected': len(texts), 'received': len(vectors)},
            )
        return [[float(v) for v in vec] for vec in vectors]


@dataclass
class EmbeddingBatchResult:
    vectors: list[list[float]]
    model: str
    failed: list[int] = field(default_factory=list)

    @property
    def dimension(self) -> int:
        return len(self.vectors[0]) if self.vectors else 0


def is_zero_vector(vec: list[float]) -> bool:
    return not any(abs(v) > 1e-12 for v in vec)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise DimensionMismatchError(
            'cannot compare vectors of different dimensions', {'left': len(a), 'right': len(b)}
        )
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a <= 0.0 or norm_b <= 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def _query_cache_key(model: str, text: str) -> str:
    digest = hashlib.sha256(f'{model}:{text}'.encode('utf-8')).hexdigest()
    return f'query_embed:{digest}'


class EmbeddingService:
    def __init__(
        self,
        provider: EmbeddingProvider,
        redis: Redis | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        cache_ttl_seconds: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.provider = provider
        self.redis = redis
        self.batch_size = batch_size or settings.embed_batch_size
        self.batch_delay_seconds = (
            settings.embed_batch_delay_seconds if batch_delay_seconds is None else batch_delay_seconds
        )
        self.cache_ttl_seconds = cache_ttl_seconds or settings.query_embed_cache_ttl_seconds
        self._sleep = sleep

    @property
    def model(self) -> str:
        return self.provider.model

    async def embed_documents(self, texts: list[str]) -> EmbeddingBatchResult:
        """
        Embed chunk texts in batches.

        A failed batch is retried item by item; an item that still fails gets a
        zero vector and its index is reported in ``failed``. Zero vectors carry
        no signal and never score above zero in similarity search.
        """
        if not texts:
            return EmbeddingBatchResult(vectors=[], model=self.model)

        slots: list[list[float] | None] = []
        failed: list[int] = []
        for start in range(0, len(texts), self.batch_size):
            if start > 0 and self.batch_delay_seconds > 0:
                await self._sleep(self.batch_delay_seconds)
            batch = texts[start:start + self.batch_size]
            try:
                slots.extend(await self.provider.embed_batch(batch))
                continue
            except EmbeddingError as exc:
                logger.warning('Embedding batch at %s failed, retrying per item: %s', start, exc.message)

            for offset, text in enumerate(batch):
                try:
                    slots.append(await self.provider.embed(text))
                except EmbeddingError as exc:
                    logger.warning('Embedding item %s failed, using zero vector: %s', start + offset, exc.message)
                    slots.append(None)
                    failed.append(start + offset)

        dims = {len(vec) for vec in slots if vec is not None}
        if not dims:
            raise EmbeddingError('every embedding request failed', {'model': self.model, 'count': len(texts)})
        if len(dims) > 1:
            raise DimensionMismatchError('provider returned vectors of mixed dimensions', {'dims': sorted(dims)})
        dim = dims.pop()
        vectors = [vec if vec is not None else [0.0] * dim for vec in slots]
        return EmbeddingBatchResult(vectors=vectors, model=self.model, failed=failed)

    async def embed_query(self, text: str) -> list[float]:
        text = text.strip()
        key = _query_cache_key(self.model, text)
        cached = await self._cache_get(key)
        if cached is not None:
            return cached

        vec = await self.provider.embed(text)
        if is_zero_vector(vec):
            raise EmbeddingError('query embedding carries no signal', {'model': self.model})

        await self._cache_set(key, vec)
        return vec

    async def _cache_get(self, key: str) -> list[float] | None:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(key)
        except RedisError as exc:
            logger.warning('Query embedding cache read failed: %s', exc)
            return None
        if not raw:
            return None
        try:
            return [float(v) for v in json.loads(raw)]
        except (TypeError, ValueError):
            logger.warning('Discarding malformed cached embedding %s', key)
            return None

    async def _cache_set(self, key: str, vec: list[float]) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.setex(key, self.cache_ttl_seconds, json.dumps(vec))
        except RedisError as exc:
            logger.warning('Query embedding cache write failed: %s', exc)
