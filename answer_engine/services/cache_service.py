"""
Canonical answer cache.

Entries are keyed by canonical id, and the newest row for an id owns the slot.
Popularity, views and vote tallies are only ever changed with SQL-side
arithmetic inside a transaction, so concurrent hits and votes cannot lose
updates.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Float, case, cast, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from answer_engine.db.models import AnswerCacheEntry, Vote, VoteValue
from answer_engine.errors import InvalidInputError, NotFoundError
from answer_engine.services.canonical_service import CanonicalKeys

logger = logging.getLogger(__name__)

PUBLISH_MIN_UPS = 3
PUBLISH_MAX_DOWN_RATIO = 0.25
PUBLISH_MIN_POPULARITY = 5
VOTE_ATTEMPTS = 3


@dataclass
class NewAnswer:
    canonical_id: str
    platform: str
    version: str | None
    question: str
    answer_text: str
    sources: list[dict] = field(default_factory=list)
    model_used: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0
    context_quality: float = 0.0
    confidence: str = 'low'


@dataclass
class VoteTally:
    answer_id: uuid.UUID
    ups: int
    downs: int
    quality_score: float
    user_vote: VoteValue


def quality_score(ups: int, downs: int) -> float:
    total = ups + downs
    return ups / total if total > 0 else 0.0


def publishing_criteria(ups: int, downs: int, popularity: int) -> dict[str, bool]:
    total = ups + downs
    down_ratio = downs / total if total > 0 else 0.0
    return {
        'min_ups': ups >= PUBLISH_MIN_UPS,
        'max_down_ratio': down_ratio <= PUBLISH_MAX_DOWN_RATIO,
        'min_popularity': popularity >= PUBLISH_MIN_POPULARITY,
    }


def is_eligible_for_publishing(ups: int, downs: int, popularity: int) -> bool:
    return all(publishing_criteria(ups, downs, popularity).values())


def _shifted(column, delta: int):
    if delta == 0:
        return column
    return case((column + delta < 0, 0), else_=column + delta)


def _parse_vote(vote: VoteValue | str) -> VoteValue:
    try:
        return VoteValue(vote)
    except ValueError as exc:
        raise InvalidInputError("vote must be 'up' or 'down'", {'vote': str(vote)}) from exc


class AnswerCacheService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def lookup(self, keys: CanonicalKeys) -> AnswerCacheEntry | None:
        async with self.session_factory() as session:
            for canonical_id in keys.lookup_order():
                entry = await session.scalar(
                    select(AnswerCacheEntry)
                    .where(AnswerCacheEntry.canonical_id == canonical_id)
                    .order_by(AnswerCacheEntry.created_at.desc(), AnswerCacheEntry.id.desc())
                    .limit(1)
                )
                if entry is not None:
                    return entry
        return None

    async def record_hit(self, answer_id: uuid.UUID) -> int:
        """Atomically bump popularity and views; returns the new popularity."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(AnswerCacheEntry)
                    .where(AnswerCacheEntry.answer_id == answer_id)
                    .values(
                        popularity=AnswerCacheEntry.popularity + 1,
                        views=AnswerCacheEntry.views + 1,
                        updated_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise NotFoundError('answer not found', 'answer', answer_id)
                popularity = await session.scalar(
                    select(AnswerCacheEntry.popularity).where(AnswerCacheEntry.answer_id == answer_id)
                )
        return int(popularity)

    async def store(self, new: NewAnswer) -> AnswerCacheEntry:
        entry = AnswerCacheEntry(
            canonical_id=new.canonical_id,
            platform=new.platform,
            version=new.version,
            question=new.question,
            answer_text=new.answer_text,
            sources=list(new.sources),
            popularity=1,
            views=0,
            ups=0,
            downs=0,
            quality_score=0.0,
            model_used=new.model_used,
            prompt_tokens=new.prompt_tokens,
            completion_tokens=new.completion_tokens,
            total_tokens=new.prompt_tokens + new.completion_tokens,
            latency_ms=new.latency_ms,
            context_quality=new.context_quality,
            confidence=new.confidence,
        )
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()
        logger.info(
            'Answer cached',
            extra={'answer_id': str(entry.answer_id), 'canonical_id': entry.canonical_id},
        )
        return entry

    async def get_entry(self, answer_id: uuid.UUID) -> AnswerCacheEntry:
        async with self.session_factory() as session:
            entry = await session.scalar(select(AnswerCacheEntry).where(AnswerCacheEntry.answer_id == answer_id))
        if entry is None:
            raise NotFoundError('answer not found', 'answer', answer_id)
        return entry

    async def vote(
        self,
        answer_id: uuid.UUID,
        user_id: str,
        vote: VoteValue | str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> VoteTally:
        value = _parse_vote(vote)
        if not user_id:
            raise InvalidInputError('user_id is required')

        attempt = 0
        while True:
            try:
                return await self._apply_vote(answer_id, user_id, value, reason, notes)
            except IntegrityError:
                # another request inserted this user's vote first; re-read it as a change
                attempt += 1
                if attempt >= VOTE_ATTEMPTS:
                    raise
                logger.info('Vote insert raced, retrying', extra={'answer_id': str(answer_id), 'user_id': user_id})

    async def _apply_vote(
        self, answer_id: uuid.UUID, user_id: str, value: VoteValue, reason: str | None, notes: str | None
    ) -> VoteTally:
        async with self.session_factory() as session:
            async with session.begin():
                found = await session.scalar(
                    select(AnswerCacheEntry.id).where(AnswerCacheEntry.answer_id == answer_id).with_for_update()
                )
                if found is None:
                    raise NotFoundError('answer not found', 'answer', answer_id)

                existing = await session.scalar(
                    select(Vote).where(Vote.user_id == user_id, Vote.answer_id == answer_id).with_for_update()
                )
                deltas = {VoteValue.up: 0, VoteValue.down: 0}
                now = datetime.utcnow()
                if existing is None:
                    session.add(Vote(user_id=user_id, answer_id=answer_id, vote=value, reason=reason, notes=notes))
                    deltas[value] += 1
                    await session.flush()
                else:
                    if existing.vote != value:
                        deltas[existing.vote] -= 1
                        deltas[value] += 1
                        existing.vote = value
                    existing.reason = reason
                    existing.notes = notes
                    existing.updated_at = now

                if deltas[VoteValue.up] or deltas[VoteValue.down]:
                    where = AnswerCacheEntry.answer_id == answer_id
                    await session.execute(
                        update(AnswerCacheEntry)
                        .where(where)
                        .values(
                            ups=_shifted(AnswerCacheEntry.ups, deltas[VoteValue.up]),
                            downs=_shifted(AnswerCacheEntry.downs, deltas[VoteValue.down]),
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    total = AnswerCacheEntry.ups + AnswerCacheEntry.downs
                    await session.execute(
                        update(AnswerCacheEntry)
                        .where(where)
                        .values(quality_score=case((total > 0, cast(AnswerCacheEntry.ups, Float) / total), else_=0.0))
                        .execution_options(synchronize_session=False)
                    )

                row = (
                    await session.execute(
                        select(AnswerCacheEntry.ups, AnswerCacheEntry.downs, AnswerCacheEntry.quality_score).where(
                            AnswerCacheEntry.answer_id == answer_id
                        )
                    )
                ).one()

        logger.info('Vote recorded: %s', value.value, extra={'answer_id': str(answer_id), 'user_id': user_id})
        return VoteTally(
            answer_id=answer_id,
            ups=row.ups,
            downs=row.downs,
            quality_score=float(row.quality_score),
            user_vote=value,
        )

    async def user_vote(self, answer_id: uuid.UUID, user_id: str) -> Vote | None:
        async with self.session_factory() as session:
            return await session.scalar(select(Vote).where(Vote.user_id == user_id, Vote.answer_id == answer_id))

    async def stats(self, answer_id: uuid.UUID) -> dict:
        entry = await self.get_entry(answer_id)
        criteria = publishing_criteria(entry.ups, entry.downs, entry.popularity)
        return {
            'answer_id': str(entry.answer_id),
            'canonical_id': entry.canonical_id,
            'popularity': entry.popularity,
            'views': entry.views,
            'ups': entry.ups,
            'downs': entry.downs,
            'total_votes': entry.ups + entry.downs,
            'quality_score': entry.quality_score,
            'published_url': entry.published_url,
            'eligible_for_publishing': all(criteria.values()),
            'criteria_met': criteria,
        }

    async def top_answers(
        self, platform: str | None = None, min_ups: int = 0, limit: int = 10
    ) -> list[AnswerCacheEntry]:
        stmt = select(AnswerCacheEntry).where(AnswerCacheEntry.ups >= min_ups)
        if platform:
            stmt = stmt.where(AnswerCacheEntry.platform == platform)
        stmt = stmt.order_by(AnswerCacheEntry.ups.desc(), AnswerCacheEntry.popularity.desc()).limit(limit)
        async with self.session_factory() as session:
            return list((await session.scalars(stmt)).all())

    async def set_published_url(self, answer_id: uuid.UUID, url: str) -> AnswerCacheEntry:
        async with self.session_factory() as session:
            async with session.begin():
                entry = await session.scalar(
                    select(AnswerCacheEntry).where(AnswerCacheEntry.answer_id == answer_id).with_for_update()
                )
                if entry is None:
                    raise NotFoundError('answer not found', 'answer', answer_id)
                if not is_eligible_for_publishing(entry.ups, entry.downs, entry.popularity):
                    raise InvalidInputError('answer is not eligible for publishing', {'answer_id': str(answer_id)})
                entry.published_url = url
                entry.updated_at = datetime.utcnow()
        return entry
