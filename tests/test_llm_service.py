import json

import httpx
import pytest

from answer_engine.errors import GenerationError
from answer_engine.services.llm_service import OllamaChatClient

MESSAGES = [{'role': 'system', 'content': 'be brief'}, {'role': 'user', 'content': 'hi'}]


def _client(handler):
    return OllamaChatClient(base_url='http://ollama.test', timeout=5, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_generate_sends_options_and_reads_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen['path'] = request.url.path
        seen['body'] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                'model': 'llama3.1:8b',
                'message': {'role': 'assistant', 'content': '  Use the banding tab.  '},
                'prompt_eval_count': 210,
                'eval_count': 35,
            },
        )

    answer = await _client(handler).generate(MESSAGES, 'llama3.1:8b', max_tokens=500, temperature=0.7)

    assert seen['path'] == '/api/chat'
    assert seen['body']['options'] == {'temperature': 0.7, 'num_predict': 500}
    assert seen['body']['stream'] is False
    assert seen['body']['messages'] == MESSAGES
    assert answer.text == 'Use the banding tab.'
    assert answer.usage.total_tokens == 245


@pytest.mark.asyncio
async def test_http_error_is_generation_error():
    client = _client(lambda request: httpx.Response(503, text='busy'))
    with pytest.raises(GenerationError) as info:
        await client.generate(MESSAGES, 'm', 100, 0.2)
    assert info.value.retryable is True


@pytest.mark.asyncio
async def test_timeout_is_generation_error():
    def handler(request):
        raise httpx.ReadTimeout('slow', request=request)

    with pytest.raises(GenerationError, match='timed out'):
        await _client(handler).generate(MESSAGES, 'm', 100, 0.2)


@pytest.mark.asyncio
async def test_empty_or_malformed_reply():
    with pytest.raises(GenerationError, match='empty'):
        await _client(lambda r: httpx.Response(200, json={'message': {'content': '  '}})).generate(MESSAGES, 'm', 1, 0)
    with pytest.raises(GenerationError, match='malformed'):
        await _client(lambda r: httpx.Response(200, text='not json')).generate(MESSAGES, 'm', 1, 0)
