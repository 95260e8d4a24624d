from uuid import UUID

from fastapi import APIRouter, Depends, Query

from answer_engine.dependencies import get_orchestrator
from answer_engine.schemas import AnswerSummary, MyVoteResponse, VoteRequest, VoteResponse
from answer_engine.services.ask_service import AnswerOrchestrator
from answer_engine.services.canonical_service import normalize_platform

router = APIRouter(prefix='/answers')


@router.get('/top', response_model=list[AnswerSummary])
async def top_answers(
    platform: str | None = None,
    min_ups: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    orchestrator: AnswerOrchestrator = Depends(get_orchestrator),
) -> list[AnswerSummary]:
    rows = await orchestrator.cache.top_answers(
        platform=normalize_platform(platform) if platform else None, min_ups=min_ups, limit=limit
    )
    return [AnswerSummary.model_validate(row) for row in rows]


@router.get('/{answer_id}/stats')
async def answer_stats(answer_id: UUID, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)) -> dict:
    return await orchestrator.cache.stats(answer_id)


@router.post('/{answer_id}/vote', response_model=VoteResponse)
async def vote(
    answer_id: UUID, req: VoteRequest, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)
) -> VoteResponse:
    tally = await orchestrator.vote(answer_id, req.user_id, req.vote, req.reason, req.notes)
    return VoteResponse(
        answer_id=tally.answer_id,
        ups=tally.ups,
        downs=tally.downs,
        quality_score=tally.quality_score,
        user_vote=tally.user_vote.value,
    )


@router.get('/{answer_id}/my-vote', response_model=MyVoteResponse)
async def my_vote(
    answer_id: UUID, user_id: str, orchestrator: AnswerOrchestrator = Depends(get_orchestrator)
) -> MyVoteResponse:
    existing = await orchestrator.cache.user_vote(answer_id, user_id)
    if existing is None:
        return MyVoteResponse(answer_id=answer_id)
    return MyVoteResponse(
        answer_id=answer_id, vote=existing.vote.value, reason=existing.reason, notes=existing.notes
    )
