"""
Deterministic cache keys for questions.

A canonical id has the shape ``platform:version:slug``. The version segment is
empty for the version-agnostic fallback key, so ``mozaik::edge-banding`` is
shared by every request for that question on that platform without a version.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from answer_engine.errors import InvalidInputError

STOP_WORDS = frozenset(
    {
        'the', 'a', 'an', 'to', 'for', 'in', 'of', 'and', 'or', 'on', 'my', 'your', 'our',
        'is', 'are', 'with', 'by', 'at', 'from', 'up', 'down', 'out', 'off', 'over', 'under',
        'this', 'that', 'these', 'those', 'i', 'you', 'he', 'she', 'it', 'we', 'they',
        'me', 'him', 'her', 'us', 'them', 'myself', 'yourself', 'himself', 'herself',
        'itself', 'ourselves', 'yourselves', 'themselves', 'what', 'when', 'where', 'who',
        'whom', 'which', 'whose', 'why', 'how', 'can', 'could', 'will', 'would', 'should',
        'may', 'might', 'must', 'shall', 'do', 'does', 'did', 'have', 'has', 'had', 'am',
        'was', 'were', 'be', 'been', 'being', 'get', 'gets', 'got', 'getting',
    }
)

PLATFORM_ALIASES: dict[str, tuple[str, ...]] = {
    'mozaik': ('mozaik', 'moz', 'cabinet', 'cab'),
    'vcarve': ('vcarve', 'vcarve pro', 'vcarve desktop', 'vcarve aspire'),
    'fusion360': ('fusion', 'fusion 360', 'autodesk fusion', 'fusion360'),
    'microvellum': ('microvellum', 'mv', 'cabinet vision'),
    'sketchup': ('sketchup', 'sketch up', 'google sketchup'),
    'solidworks': ('solidworks', 'solid works', 'sw'),
    'rhino': ('rhino', 'rhinoceros', 'rhino 3d'),
    'generic': ('generic', 'general', 'other'),
}
DEFAULT_PLATFORM = 'generic'
_ALIAS_TO_PLATFORM = {alias: key for key, aliases in PLATFORM_ALIASES.items() for alias in aliases}

MAX_SLUG_CHARS = 120
MAX_KEYWORDS = 10
WHITESPACE_RE = re.compile(r'\s+')
NON_ALNUM_RE = re.compile(r'[^a-z0-9\s]')
VERSION_PREFIX_RE = re.compile(r'^(?:version|ver|v)\s*(?=\d)')


@dataclass(frozen=True)
class CanonicalKeys:
    versioned: str
    fallback: str
    platform: str
    version: str | None

    def lookup_order(self) -> list[str]:
        if self.versioned == self.fallback:
            return [self.versioned]
        return [self.versioned, self.fallback]


def normalize_question(question: str) -> str:
    return WHITESPACE_RE.sub(' ', NON_ALNUM_RE.sub(' ', question.lower())).strip()


def normalize_platform(platform: str | None) -> str:
    if not platform:
        return DEFAULT_PLATFORM
    value = WHITESPACE_RE.sub(' ', platform.strip().lower())
    return _ALIAS_TO_PLATFORM.get(value, DEFAULT_PLATFORM)


def normalize_version(version: str | None) -> str | None:
    if version is None:
        return None
    value = VERSION_PREFIX_RE.sub('', version.strip().lower())
    value = WHITESPACE_RE.sub('', value)
    return value or None


def slugify(question: str) -> str:
    words = normalize_question(question).split()
    kept = [w for w in words if w not in STOP_WORDS]
    # a question made only of stop words still needs a distinct key
    slug = '-'.join(kept or words)
    if len(slug) > MAX_SLUG_CHARS:
        digest = hashlib.sha256(slug.encode('utf-8')).hexdigest()[:12]
        slug = f'{slug[:MAX_SLUG_CHARS - 13].rstrip("-")}-{digest}'
    return slug


def _require_question(question: str | None) -> str:
    if question is None or not question.strip():
        raise InvalidInputError('question must not be empty')
    return question


def make_canonical_id(question: str, platform: str | None = None, version: str | None = None) -> str:
    _require_question(question)
    slug = slugify(question)
    if not slug:
        # punctuation-only questions
        slug = hashlib.sha256(question.strip().encode('utf-8')).hexdigest()[:12]
    return f'{normalize_platform(platform)}:{normalize_version(version) or ""}:{slug}'


def canonical_keys(question: str, platform: str | None = None, version: str | None = None) -> CanonicalKeys:
    _require_question(question)
    return CanonicalKeys(
        versioned=make_canonical_id(question, platform, version),
        fallback=make_canonical_id(question, platform, None),
        platform=normalize_platform(platform),
        version=normalize_version(version),
    )


def question_keywords(question: str) -> list[str]:
    words = [w for w in normalize_question(question).split() if len(w) > 2 and w not in STOP_WORDS]
    return words[:MAX_KEYWORDS]


def keyword_set(text: str) -> set[str]:
    """Unbounded keyword set for longer texts such as component records."""
    return {w for w in normalize_question(text).split() if len(w) > 2 and w not in STOP_WORDS}


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def keyword_similarity(a: str, b: str) -> float:
    return jaccard(set(question_keywords(a)), set(question_keywords(b)))


def find_similar_questions(question: str, candidates: list[str], threshold: float = 0.7) -> list[tuple[str, float]]:
    scored = [(c, keyword_similarity(question, c)) for c in candidates]
    scored = [item for item in scored if item[1] >= threshold]
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored
