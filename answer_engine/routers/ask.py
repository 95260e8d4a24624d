from fastapi import APIRouter, Depends

from answer_engine.dependencies import get_orchestrator
from answer_engine.schemas import AskRequest, AskResponse
from answer_engine.services.ask_service import AnswerOrchestrator, AnswerRequest

router = APIRouter()


@router.post('/ask', response_model=AskResponse)
async def ask(req: AskRequest, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)) -> AskResponse:
    result = await orchestrator.answer(
        AnswerRequest(
            question=req.question,
            user_id=req.user_id,
            plan=req.plan,
            platform=req.platform,
            version=req.version,
            uploaded_file_id=req.uploaded_file_id,
        )
    )
    return AskResponse(
        answer=result.text,
        answer_id=result.answer_id,
        cache_hit=result.cache_hit,
        canonical_id=result.canonical_id,
        sources=result.sources,
        quality_confidence=result.quality_confidence,
        context_quality=result.context_quality,
        explanation=result.explanation,
        popularity=result.popularity,
        model_used=result.model_used,
        total_tokens=result.total_tokens,
        latency_ms=result.latency_ms,
        degraded=result.degraded,
    )
