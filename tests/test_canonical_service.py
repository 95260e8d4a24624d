import pytest

from answer_engine.errors import InvalidInputError
from answer_engine.services.canonical_service import (
    MAX_SLUG_CHARS,
    canonical_keys,
    find_similar_questions,
    keyword_similarity,
    make_canonical_id,
    normalize_platform,
    normalize_version,
    question_keywords,
    slugify,
)


def test_canonical_id_is_deterministic():
    a = make_canonical_id('How do I set edge banding?', 'Mozaik', '12')
    b = make_canonical_id('How do I set edge banding?', 'Mozaik', '12')
    assert a == b == 'mozaik:12:set-edge-banding'


def test_case_whitespace_and_punctuation_do_not_matter():
    a = make_canonical_id('How do I set EDGE banding?', 'mozaik')
    b = make_canonical_id('  how   do i set edge-banding ', 'MOZAIK')
    assert a == b


def test_different_questions_differ():
    assert make_canonical_id('set edge banding') != make_canonical_id('remove edge banding')


@pytest.mark.parametrize(
    'raw,expected',
    [
        ('Mozaik', 'mozaik'),
        ('cab', 'mozaik'),
        ('VCarve  Pro', 'vcarve'),
        ('Fusion 360', 'fusion360'),
        ('Cabinet Vision', 'microvellum'),
        ('something else', 'generic'),
        (None, 'generic'),
        ('', 'generic'),
    ],
)
def test_normalize_platform(raw, expected):
    assert normalize_platform(raw) == expected


@pytest.mark.parametrize(
    'raw,expected',
    [
        ('12', '12'),
        ('v12', '12'),
        ('Version 12.1', '12.1'),
        ('ver 3', '3'),
        ('  ', None),
        (None, None),
        ('beta', 'beta'),
    ],
)
def test_normalize_version(raw, expected):
    assert normalize_version(raw) == expected


def test_keys_carry_versioned_and_fallback():
    keys = canonical_keys('How do I set edge banding?', 'mozaik', 'v12')
    assert keys.versioned == 'mozaik:12:set-edge-banding'
    assert keys.fallback == 'mozaik::set-edge-banding'
    assert keys.lookup_order() == [keys.versioned, keys.fallback]
    assert keys.platform == 'mozaik'
    assert keys.version == '12'


def test_keys_without_version_collapse_to_one_lookup():
    keys = canonical_keys('set edge banding', 'mozaik')
    assert keys.lookup_order() == ['mozaik::set-edge-banding']


@pytest.mark.parametrize('question', ['', '   ', None])
def test_empty_question_rejected(question):
    with pytest.raises(InvalidInputError):
        canonical_keys(question)


def test_stop_word_only_question_keeps_words():
    assert slugify('What is it?') == 'what-is-it'


def test_punctuation_only_question_gets_hash_slug():
    cid = make_canonical_id('???', 'mozaik')
    prefix, _, slug = cid.rpartition(':')
    assert prefix == 'mozaik:'
    assert len(slug) == 12


def test_long_slug_is_truncated_with_digest():
    question = ' '.join(f'word{i}' for i in range(60))
    slug = slugify(question)
    assert len(slug) <= MAX_SLUG_CHARS
    assert slug != slugify(question + ' extra')


def test_question_keywords_filters_short_and_stop_words():
    assert question_keywords('How do I set up the edge banding on a cabinet?') == [
        'set', 'edge', 'banding', 'cabinet',
    ]


def test_keyword_similarity():
    assert keyword_similarity('edge banding setup', 'setup edge banding') == 1.0
    assert keyword_similarity('edge banding', 'door hinges') == 0.0
    assert keyword_similarity('???', '!!!') == 0.0


def test_find_similar_questions_sorted():
    results = find_similar_questions(
        'edge banding thickness',
        ['edge banding thickness setting', 'door hinge spacing', 'edge banding thickness'],
        threshold=0.5,
    )
    assert [q for q, _ in results] == ['edge banding thickness', 'edge banding thickness setting']
