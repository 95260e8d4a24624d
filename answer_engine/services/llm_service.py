from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from answer_engine.config import get_settings
from answer_engine.errors import GenerationError


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class LlmAnswer:
    text: str
    model: str
    usage: TokenUsage


class LanguageModel(Protocol):
    async def generate(
        self, messages: list[dict], model: str, max_tokens: int, temperature: float
    ) -> LlmAnswer: ...


class OllamaChatClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ollama_base_url).rstrip('/')
        self.timeout = timeout or settings.llm_timeout_seconds
        self._transport = transport

    async def generate(self, messages: list[dict], model: str, max_tokens: int, temperature: float) -> LlmAnswer:
        body = {
            'model': model,
            'stream': False,
            'messages': messages,
            'options': {
                'temperature': temperature,
                'num_predict': max_tokens,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f'{self.base_url}/api/chat', json=body)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as exc:
            raise GenerationError(f'model call timed out after {self.timeout}s', {'model': model}) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f'model call failed: {exc}', {'model': model}) from exc
        except ValueError as exc:
            raise GenerationError('model returned malformed JSON', {'model': model}) from exc

        content = str((data.get('message') or {}).get('content') or '').strip()
        if not content:
            raise GenerationError('model returned an empty answer', {'model': model})

        return LlmAnswer(
            text=content,
            model=str(data.get('model') or model),
            usage=TokenUsage(
                prompt_tokens=int(data.get('prompt_eval_count') or 0),
                completion_tokens=int(data.get('eval_count') or 0),
            ),
        )
