from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field

from answer_engine.config import get_settings
from answer_engine.errors import EmbeddingError, ForbiddenError, GenerationError, InvalidInputError, UsageLimitError
from answer_engine.services.cache_service import AnswerCacheService, NewAnswer, VoteTally
from answer_engine.services.canonical_service import CanonicalKeys, canonical_keys
from answer_engine.services.context_fusion import COMPONENT, ContextBundle, ContextFusionEngine, ContextItem
from answer_engine.services.llm_service import LanguageModel
from answer_engine.services.policy_engine import FILE_UPLOAD, PlanPolicy, get_policy, model_for_tier
from answer_engine.services.usage_gate import UsageDecision, UsageGate
from answer_engine.services.vector_store import IngestResult, NewDocument, VectorStore

logger = logging.getLogger(__name__)

PROMPT_SNIPPET_CHARS = 600


@dataclass
class AnswerRequest:
    question: str
    user_id: str
    plan: str = 'free'
    platform: str | None = None
    version: str | None = None
    uploaded_file_id: uuid.UUID | None = None


@dataclass
class AnswerResult:
    text: str
    answer_id: uuid.UUID
    cache_hit: bool
    canonical_id: str
    sources: list[dict] = field(default_factory=list)
    quality_confidence: str = 'low'
    context_quality: float = 0.0
    explanation: str = ''
    popularity: int = 1
    model_used: str | None = None
    total_tokens: int = 0
    latency_ms: int = 0
    degraded: bool = False


def _validate_question(question: str | None, max_chars: int) -> str:
    if question is None or not question.strip():
        raise InvalidInputError('question must not be empty')
    question = question.strip()
    if len(question) > max_chars:
        raise InvalidInputError(f'question exceeds {max_chars} characters', {'length': len(question)})
    return question


def _format_item(index: int, item: ContextItem) -> list[str]:
    label = item.title if item.partition != COMPONENT else f'{item.component_type}: {item.section_title or item.title}'
    measure = 'keyword match' if item.scale == 'lexical' else 'relevant'
    lines = [f'{index}. {label} ({item.similarity_score * 100:.1f}% {measure})']
    if item.source_platform or item.provenance:
        lines.append(f'   Source: {item.source_platform or item.provenance}')
    lines.append(f'   {item.context[:PROMPT_SNIPPET_CHARS]}')
    return lines


def build_system_prompt(bundle: ContextBundle, policy: PlanPolicy, platform: str) -> str:
    lines = [
        f'You are an expert assistant for {platform} design and manufacturing software.',
        '',
        'KNOWLEDGE SOURCES AVAILABLE:',
        f"1. User's uploaded documents: {len(bundle.user_documents)} relevant excerpts",
        f'2. Knowledge base: {len(bundle.knowledge_base)} expert resources',
        f'3. Specialized components: {len(bundle.components)} technical records',
        '',
        f'CONTEXT QUALITY: {bundle.quality * 100:.1f}%',
    ]
    sections = (
        ("USER'S DOCUMENTS:", bundle.user_documents),
        ('KNOWLEDGE BASE:', bundle.knowledge_base),
        ('SPECIALIZED COMPONENTS:', bundle.components),
    )
    for heading, items in sections:
        if not items:
            continue
        lines.extend(['', heading])
        for i, item in enumerate(items, start=1):
            lines.extend(_format_item(i, item))
    lines.extend(
        [
            '',
            'RESPONSE GUIDELINES:',
            "1. Prefer the user's own documents when they answer the question.",
            '2. Use the knowledge base for best practices and background.',
            '3. Use specialized components for exact part, parameter and constraint details.',
            '4. Say which sources informed the answer.',
            '5. If context is limited, say so and give general guidance.',
            policy.verbosity,
        ]
    )
    return '\n'.join(lines)


def build_messages(question: str, bundle: ContextBundle, policy: PlanPolicy, platform: str) -> list[dict]:
    return [
        {'role': 'system', 'content': build_system_prompt(bundle, policy, platform)},
        {'role': 'user', 'content': question},
    ]


class AnswerOrchestrator:
    def __init__(
        self,
        cache: AnswerCacheService,
        fusion: ContextFusionEngine,
        llm: LanguageModel,
        store: VectorStore,
        usage_gate: UsageGate | None = None,
        max_question_chars: int | None = None,
    ):
        settings = get_settings()
        self.cache = cache
        self.fusion = fusion
        self.llm = llm
        self.store = store
        self.usage_gate = usage_gate
        self.max_question_chars = max_question_chars or settings.max_question_chars

    async def _consume_usage(self, req: AnswerRequest) -> UsageDecision:
        if self.usage_gate is None:
            policy = get_policy(req.plan)
            return UsageDecision(allowed=True, plan=policy.plan, model_tier=policy.model_tier, features=policy.features)
        decision = await self.usage_gate.check_and_consume(req.user_id, req.plan)
        if not decision.allowed:
            raise UsageLimitError(f'usage limit reached for the {decision.plan} plan', decision.details())
        return decision

    async def answer(self, req: AnswerRequest) -> AnswerResult:
        if not req.user_id:
            raise InvalidInputError('user_id is required')
        question = _validate_question(req.question, self.max_question_chars)
        keys = canonical_keys(question, req.platform, req.version)
        # rejected requests never move a usage counter
        policy = get_policy(req.plan)
        if req.uploaded_file_id is not None and FILE_UPLOAD not in policy.features:
            raise ForbiddenError('file context requires a paid plan', {'plan': policy.plan})

        decision = await self._consume_usage(req)

        entry = await self.cache.lookup(keys)
        if entry is not None:
            popularity = await self.cache.record_hit(entry.answer_id)
            logger.info(
                'Answer cache hit',
                extra={'answer_id': str(entry.answer_id), 'canonical_id': entry.canonical_id, 'user_id': req.user_id},
            )
            return AnswerResult(
                text=entry.answer_text,
                answer_id=entry.answer_id,
                cache_hit=True,
                canonical_id=entry.canonical_id,
                sources=list(entry.sources or []),
                quality_confidence=entry.confidence,
                context_quality=entry.context_quality,
                popularity=popularity,
                model_used=entry.model_used,
                total_tokens=entry.total_tokens,
                latency_ms=entry.latency_ms,
            )

        return await self._generate(question, keys, req, decision)

    async def _fuse(self, question: str, req: AnswerRequest) -> ContextBundle:
        try:
            return await self.fusion.fuse(question, req.user_id, req.uploaded_file_id)
        except EmbeddingError as exc:
            logger.warning('Query embedding failed, answering without context: %s', exc.message, extra={'user_id': req.user_id})
            return ContextBundle.empty(degraded=True)

    async def _generate(
        self, question: str, keys: CanonicalKeys, req: AnswerRequest, decision: UsageDecision
    ) -> AnswerResult:
        policy = get_policy(decision.plan)
        bundle = await self._fuse(question, req)
        model = model_for_tier(decision.model_tier)
        messages = build_messages(question, bundle, policy, keys.platform)

        started = time.perf_counter()
        try:
            reply = await self.llm.generate(messages, model, policy.max_tokens, policy.temperature)
        except GenerationError:
            logger.warning('Generation failed, nothing cached', extra={'canonical_id': keys.versioned, 'user_id': req.user_id})
            raise
        latency_ms = int((time.perf_counter() - started) * 1000)

        entry = await self.cache.store(
            NewAnswer(
                canonical_id=keys.versioned,
                platform=keys.platform,
                version=keys.version,
                question=question,
                answer_text=reply.text,
                sources=[item.as_source() for item in bundle.ranked],
                model_used=reply.model,
                prompt_tokens=reply.usage.prompt_tokens,
                completion_tokens=reply.usage.completion_tokens,
                latency_ms=latency_ms,
                context_quality=bundle.quality,
                confidence=bundle.confidence,
            )
        )
        return AnswerResult(
            text=entry.answer_text,
            answer_id=entry.answer_id,
            cache_hit=False,
            canonical_id=entry.canonical_id,
            sources=list(entry.sources),
            quality_confidence=bundle.confidence,
            context_quality=bundle.quality,
            explanation=bundle.explanation,
            popularity=entry.popularity,
            model_used=entry.model_used,
            total_tokens=entry.total_tokens,
            latency_ms=latency_ms,
            degraded=bundle.degraded,
        )

    async def vote(
        self,
        answer_id: uuid.UUID,
        user_id: str,
        vote: str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> VoteTally:
        return await self.cache.vote(answer_id, user_id, vote, reason, notes)

    async def ingest(self, document: NewDocument, defer: bool = False) -> IngestResult:
        return await self.store.add_document(document, defer=defer)
