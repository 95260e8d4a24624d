import json
import math

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from answer_engine.errors import DimensionMismatchError, EmbeddingError
from answer_engine.services.embedding_service import (
    EmbeddingService,
    OllamaEmbeddingClient,
    cosine_similarity,
    is_zero_vector,
)


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError('redis down')

    async def setex(self, key, ttl, value):
        raise RedisConnectionError('redis down')


def test_cosine_identical_is_one():
    v = [0.3, -1.2, 4.0]
    assert math.isclose(cosine_similarity(v, v), 1.0)


def test_cosine_orthogonal_is_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 2.0]) == 0.0


def test_cosine_is_symmetric():
    a, b = [1.0, 2.0, 3.0], [-2.0, 0.5, 1.0]
    assert math.isclose(cosine_similarity(a, b), cosine_similarity(b, a))


def test_cosine_zero_norm_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_dimension_mismatch():
    with pytest.raises(DimensionMismatchError):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_is_zero_vector():
    assert is_zero_vector([0.0, 0.0])
    assert not is_zero_vector([0.0, 0.1])


@pytest.mark.asyncio
async def test_embed_documents_in_batches(provider):
    service = EmbeddingService(provider, batch_size=2, batch_delay_seconds=0)
    result = await service.embed_documents(['alpha beta', 'gamma', 'delta', 'epsilon'])

    assert provider.batch_calls == 2
    assert len(result.vectors) == 4
    assert result.dimension == provider.dim
    assert result.failed == []
    assert result.model == provider.model


@pytest.mark.asyncio
async def test_batch_delay_between_batches(provider):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    service = EmbeddingService(provider, batch_size=1, batch_delay_seconds=0.25, sleep=fake_sleep)
    await service.embed_documents(['one', 'two', 'three'])
    assert delays == [0.25, 0.25]


@pytest.mark.asyncio
async def test_failed_batch_falls_back_to_items(provider):
    provider.fail_batches = True
    provider.fail_texts = {'broken'}
    service = EmbeddingService(provider, batch_size=8, batch_delay_seconds=0)

    result = await service.embed_documents(['fine text', 'broken', 'more text'])

    assert provider.single_calls == 3
    assert result.failed == [1]
    assert is_zero_vector(result.vectors[1])
    assert len(result.vectors[1]) == provider.dim
    assert not is_zero_vector(result.vectors[0])


@pytest.mark.asyncio
async def test_every_item_failing_raises(provider):
    provider.fail_batches = True
    provider.fail_texts = {'a', 'b'}
    service = EmbeddingService(provider, batch_delay_seconds=0)
    with pytest.raises(EmbeddingError):
        await service.embed_documents(['a', 'b'])


@pytest.mark.asyncio
async def test_mixed_dimensions_raise():
    class Ragged:
        model = 'ragged'

        async def embed(self, text):
            return [1.0]

        async def embed_batch(self, texts):
            return [[1.0] * (i + 1) for i, _ in enumerate(texts)]

    service = EmbeddingService(Ragged(), batch_delay_seconds=0)
    with pytest.raises(DimensionMismatchError):
        await service.embed_documents(['x', 'y'])


@pytest.mark.asyncio
async def test_query_embedding_is_cached(provider, fake_redis):
    service = EmbeddingService(provider, redis=fake_redis, batch_delay_seconds=0)

    first = await service.embed_query('Edge banding thickness')
    second = await service.embed_query('  Edge banding thickness \n')

    assert first == second
    assert provider.single_calls == 1
    [key] = fake_redis.data
    assert key.startswith('query_embed:')
    assert fake_redis.ttls[key] == 3600


@pytest.mark.asyncio
async def test_query_cache_keeps_case_distinct(provider, fake_redis):
    service = EmbeddingService(provider, redis=fake_redis, batch_delay_seconds=0)

    await service.embed_query('Edge banding thickness')
    await service.embed_query('EDGE BANDING THICKNESS')

    assert provider.single_calls == 2
    assert len(fake_redis.data) == 2


@pytest.mark.asyncio
async def test_query_cache_outage_is_not_fatal(provider):
    service = EmbeddingService(provider, redis=BrokenRedis(), batch_delay_seconds=0)
    vec = await service.embed_query('edge banding')
    assert not is_zero_vector(vec)


@pytest.mark.asyncio
async def test_zero_query_vector_is_an_error(provider):
    service = EmbeddingService(provider, batch_delay_seconds=0)
    with pytest.raises(EmbeddingError):
        # no alphanumeric tokens, so the hashing provider returns all zeros
        await service.embed_query('?!')


@pytest.mark.asyncio
async def test_ollama_client_batch_and_single():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append((request.url.path, body))
        if request.url.path == '/api/embed':
            return httpx.Response(200, json={'embeddings': [[0.1, 0.2] for _ in body['input']]})
        return httpx.Response(200, json={'embedding': [0.5, 0.5]})

    client = OllamaEmbeddingClient(
        base_url='http://ollama.test/', model='nomic-embed-text', transport=httpx.MockTransport(handler)
    )

    assert await client.embed_batch(['a', 'b']) == [[0.1, 0.2], [0.1, 0.2]]
    assert await client.embed('c') == [0.5, 0.5]
    assert seen[0] == ('/api/embed', {'model': 'nomic-embed-text', 'input': ['a', 'b']})
    assert seen[1] == ('/api/embeddings', {'model': 'nomic-embed-text', 'prompt': 'c'})


@pytest.mark.asyncio
async def test_ollama_client_errors_become_embedding_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == '/api/embed':
            return httpx.Response(200, json={'embeddings': [[0.1]]})
        return httpx.Response(500, json={'error': 'boom'})

    client = OllamaEmbeddingClient(base_url='http://ollama.test', model='m', transport=httpx.MockTransport(handler))

    with pytest.raises(EmbeddingError):
        await client.embed_batch(['a', 'b'])
    with pytest.raises(EmbeddingError) as info:
        await client.embed('a')
    assert info.value.retryable is True
