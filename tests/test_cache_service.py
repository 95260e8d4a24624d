import asyncio
import uuid

import pytest

from answer_engine.db.models import VoteValue
from answer_engine.errors import InvalidInputError, NotFoundError
from answer_engine.services.cache_service import (
    NewAnswer,
    is_eligible_for_publishing,
    publishing_criteria,
    quality_score,
)
from answer_engine.services.canonical_service import canonical_keys


def _answer(canonical_id='mozaik:12:set-edge-banding', text='Use the banding tab.', platform='mozaik', version='12'):
    return NewAnswer(
        canonical_id=canonical_id,
        platform=platform,
        version=version,
        question='How do I set edge banding?',
        answer_text=text,
        sources=[{'partition': 'user_document', 'title': 'Manual'}],
        model_used='llama3.1:8b',
        prompt_tokens=100,
        completion_tokens=20,
        latency_ms=42,
        context_quality=0.8,
        confidence='medium',
    )


@pytest.mark.parametrize(
    'ups,downs,popularity,eligible',
    [
        (3, 0, 5, True),
        (3, 1, 5, True),
        (3, 2, 5, False),
        (2, 0, 9, False),
        (10, 0, 4, False),
    ],
)
def test_publishing_eligibility(ups, downs, popularity, eligible):
    assert is_eligible_for_publishing(ups, downs, popularity) is eligible


def test_publishing_criteria_detail():
    assert publishing_criteria(3, 2, 5) == {'min_ups': True, 'max_down_ratio': False, 'min_popularity': True}


def test_quality_score():
    assert quality_score(0, 0) == 0.0
    assert quality_score(3, 1) == 0.75


@pytest.mark.asyncio
async def test_store_and_lookup(cache):
    stored = await cache.store(_answer())
    assert stored.popularity == 1
    assert stored.total_tokens == 120

    found = await cache.lookup(canonical_keys('How do I set edge banding?', 'mozaik', '12'))
    assert found.answer_id == stored.answer_id
    assert found.answer_text == 'Use the banding tab.'


@pytest.mark.asyncio
async def test_lookup_falls_back_to_versionless_entry(cache):
    stored = await cache.store(_answer(canonical_id='mozaik::set-edge-banding', version=None))

    found = await cache.lookup(canonical_keys('How do I set edge banding?', 'mozaik', '13'))
    assert found is not None and found.answer_id == stored.answer_id


@pytest.mark.asyncio
async def test_versioned_entry_is_not_served_without_version(cache):
    await cache.store(_answer())
    assert await cache.lookup(canonical_keys('How do I set edge banding?', 'mozaik')) is None


@pytest.mark.asyncio
async def test_lookup_prefers_newest_row(cache):
    await cache.store(_answer(text='old answer'))
    newest = await cache.store(_answer(text='new answer'))

    found = await cache.lookup(canonical_keys('How do I set edge banding?', 'mozaik', '12'))
    assert found.answer_id == newest.answer_id


@pytest.mark.asyncio
async def test_record_hit_increments(cache):
    stored = await cache.store(_answer())
    assert await cache.record_hit(stored.answer_id) == 2
    assert await cache.record_hit(stored.answer_id) == 3

    entry = await cache.get_entry(stored.answer_id)
    assert entry.views == 2


@pytest.mark.asyncio
async def test_concurrent_hits_are_not_lost(cache):
    stored = await cache.store(_answer())
    await asyncio.gather(*(cache.record_hit(stored.answer_id) for _ in range(8)))

    entry = await cache.get_entry(stored.answer_id)
    assert entry.popularity == 9


@pytest.mark.asyncio
async def test_record_hit_unknown_answer(cache):
    with pytest.raises(NotFoundError):
        await cache.record_hit(uuid.uuid4())


@pytest.mark.asyncio
async def test_vote_switch_moves_the_tally(cache):
    stored = await cache.store(_answer())

    tally = await cache.vote(stored.answer_id, 'user-1', 'up')
    assert (tally.ups, tally.downs, tally.quality_score) == (1, 0, 1.0)

    tally = await cache.vote(stored.answer_id, 'user-1', 'down', reason='wrong_version')
    assert (tally.ups, tally.downs, tally.quality_score) == (0, 1, 0.0)
    assert tally.user_vote == VoteValue.down

    vote = await cache.user_vote(stored.answer_id, 'user-1')
    assert vote.vote == VoteValue.down
    assert vote.reason == 'wrong_version'


@pytest.mark.asyncio
async def test_repeated_vote_changes_nothing_but_reason(cache):
    stored = await cache.store(_answer())
    await cache.vote(stored.answer_id, 'user-1', 'up')
    tally = await cache.vote(stored.answer_id, 'user-1', 'up', notes='still right')

    assert (tally.ups, tally.downs) == (1, 0)
    vote = await cache.user_vote(stored.answer_id, 'user-1')
    assert vote.notes == 'still right'


@pytest.mark.asyncio
async def test_votes_from_many_users(cache):
    stored = await cache.store(_answer())
    for user in ('a', 'b', 'c'):
        await cache.vote(stored.answer_id, user, 'up')
    tally = await cache.vote(stored.answer_id, 'd', 'down')

    assert (tally.ups, tally.downs) == (3, 1)
    assert tally.quality_score == pytest.approx(0.75)


@pytest.mark.asyncio
async def test_invalid_votes(cache):
    stored = await cache.store(_answer())
    with pytest.raises(InvalidInputError):
        await cache.vote(stored.answer_id, 'user-1', 'sideways')
    with pytest.raises(InvalidInputError):
        await cache.vote(stored.answer_id, '', 'up')
    with pytest.raises(NotFoundError):
        await cache.vote(uuid.uuid4(), 'user-1', 'up')


@pytest.mark.asyncio
async def test_stats_and_publishing(cache):
    stored = await cache.store(_answer())
    for _ in range(4):
        await cache.record_hit(stored.answer_id)
    for user in ('a', 'b', 'c'):
        await cache.vote(stored.answer_id, user, 'up')

    stats = await cache.stats(stored.answer_id)
    assert stats['popularity'] == 5
    assert stats['total_votes'] == 3
    assert stats['eligible_for_publishing'] is True

    entry = await cache.set_published_url(stored.answer_id, 'https://example.com/answers/edge-banding')
    assert entry.published_url == 'https://example.com/answers/edge-banding'


@pytest.mark.asyncio
async def test_ineligible_answer_cannot_be_published(cache):
    stored = await cache.store(_answer())
    stats = await cache.stats(stored.answer_id)
    assert stats['criteria_met'] == {'min_ups': False, 'max_down_ratio': True, 'min_popularity': False}

    with pytest.raises(InvalidInputError):
        await cache.set_published_url(stored.answer_id, 'https://example.com/x')


@pytest.mark.asyncio
async def test_top_answers(cache):
    low = await cache.store(_answer(canonical_id='mozaik::a'))
    high = await cache.store(_answer(canonical_id='mozaik::b'))
    await cache.store(_answer(canonical_id='vcarve::c', platform='vcarve'))
    for user in ('a', 'b'):
        await cache.vote(high.answer_id, user, 'up')
    await cache.vote(low.answer_id, 'a', 'up')

    top = await cache.top_answers(platform='mozaik', min_ups=1)
    assert [e.answer_id for e in top] == [high.answer_id, low.answer_id]
