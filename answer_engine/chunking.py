"""
Section-aware text chunking.

Text is first cut at heading lines into sections. Sections that fit the target
size become one chunk each; larger ones are split at the best natural break
point searched backward from the target offset, with ``chunk_overlap``
characters repeated at the start of the following chunk. Offsets always refer
to the original text, so ``text[chunk.start:chunk.end]`` is the raw span.
"""

from __future__ import annotations

import hashlib
import math
import re
import uuid
from dataclasses import dataclass, field
from typing import Callable

from answer_engine.errors import InvalidInputError

SEPARATORS = ('\n\n', '\n', '. ', '! ', '? ', '; ', ', ', ' ')
BREAK_FLOOR = 0.7
MARKDOWN_HEADER_RE = re.compile(r'^#{1,6}\s')
UPPER_RE = re.compile(r'[A-Z]')

HeaderDetector = Callable[[str], bool]


@dataclass(frozen=True)
class ChunkingConfig:
    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_size: int = 100
    max_chunk_size: int = 2000
    preserve_sections: bool = True

    def validate(self) -> None:
        if self.min_chunk_size < 1:
            raise InvalidInputError('min_chunk_size must be positive')
        if self.chunk_size * BREAK_FLOOR < self.min_chunk_size:
            raise InvalidInputError('chunk_size is too small for min_chunk_size')
        if self.max_chunk_size < self.chunk_size:
            raise InvalidInputError('max_chunk_size must be >= chunk_size')
        if self.chunk_overlap < 0 or self.chunk_overlap >= int(self.chunk_size * BREAK_FLOOR):
            raise InvalidInputError('chunk_overlap must be below 70% of chunk_size')


@dataclass
class TextChunk:
    text: str
    start: int
    end: int
    index: int
    token_count: int
    is_complete_section: bool
    heading: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class _Span:
    start: int
    end: int
    heading: str | None

    @property
    def length(self) -> int:
        return self.end - self.start

    def content_length(self, text: str) -> int:
        return len(text[self.start:self.end].strip())


def sha256_text(value: str) -> str:
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def is_header(line: str) -> bool:
    if not line or len(line) > 100:
        return False
    if MARKDOWN_HEADER_RE.match(line):
        return True
    # short all-caps line
    if len(line) < 50 and line.upper() == line and UPPER_RE.search(line):
        return True
    # title case without sentence punctuation
    if len(line) < 80 and '.' not in line and line[0].isupper():
        words = line.split()
        capitalized = [w for w in words if w[:1].isupper()]
        return len(capitalized) >= len(words) * 0.7
    return False


class TextChunker:
    def __init__(self, config: ChunkingConfig | None = None, header_detector: HeaderDetector = is_header):
        self.config = config or ChunkingConfig()
        self.config.validate()
        self.header_detector = header_detector

    def chunk_text(self, text: str, config: ChunkingConfig | None = None) -> list[TextChunk]:
        cfg = config or self.config
        if config is not None:
            cfg.validate()
        if len(text) < cfg.min_chunk_size:
            return []

        if cfg.preserve_sections:
            spans = self._merge_small_spans(text, self._section_spans(text), cfg)
        else:
            spans = [_Span(0, len(text), None)]

        pieces: list[tuple[_Span, bool]] = []
        for span in spans:
            if span.length <= cfg.chunk_size:
                pieces.append((span, cfg.preserve_sections))
                continue
            pieces.extend((piece, False) for piece in self._split_span(text, span, cfg))

        chunks: list[TextChunk] = []
        for span, complete in pieces:
            raw = text[span.start:span.end]
            content = raw.strip()
            if not content:
                continue
            chunks.append(
                TextChunk(
                    text=content,
                    start=span.start,
                    end=span.end,
                    index=len(chunks),
                    token_count=estimate_tokens(content),
                    is_complete_section=complete,
                    heading=span.heading,
                )
            )
        return chunks

    def _section_spans(self, text: str) -> list[_Span]:
        spans: list[_Span] = []
        start = 0
        pos = 0
        heading: str | None = None
        for line in text.splitlines(keepends=True):
            stripped = line.strip()
            if self.header_detector(stripped):
                if pos > start:
                    spans.append(_Span(start, pos, heading))
                start = pos
                heading = stripped.lstrip('#').strip() or stripped
            pos += len(line)
        if pos > start:
            spans.append(_Span(start, pos, heading))
        return spans

    def _merge_small_spans(self, text: str, spans: list[_Span], cfg: ChunkingConfig) -> list[_Span]:
        merged: list[_Span] = []
        pending: _Span | None = None
        for span in spans:
            if pending is not None:
                span = _Span(pending.start, span.end, pending.heading)
                pending = None
            if span.content_length(text) < cfg.min_chunk_size:
                pending = span
                continue
            merged.append(span)
        if pending is not None:
            if merged:
                last = merged.pop()
                merged.append(_Span(last.start, pending.end, last.heading))
            else:
                merged.append(pending)
        return merged

    def _split_span(self, text: str, span: _Span, cfg: ChunkingConfig) -> list[_Span]:
        pieces: list[_Span] = []
        pos = span.start
        while span.end - pos > cfg.chunk_size:
            split = self._find_split(text, pos, cfg)
            pieces.append(_Span(pos, split, span.heading))
            pos = split - cfg.chunk_overlap
        pieces.append(_Span(pos, span.end, span.heading))

        if len(pieces) > 1 and pieces[-1].content_length(text) < cfg.min_chunk_size:
            tail = pieces.pop()
            prev = pieces.pop()
            if tail.end - prev.start <= cfg.max_chunk_size:
                pieces.append(_Span(prev.start, tail.end, span.heading))
            else:
                pieces.extend([prev, tail])
        return pieces

    def _find_split(self, text: str, pos: int, cfg: ChunkingConfig) -> int:
        target = pos + cfg.chunk_size
        floor = pos + int(cfg.chunk_size * BREAK_FLOOR)
        for separator in SEPARATORS:
            idx = text.rfind(separator, pos, target)
            if idx < 0:
                continue
            split = idx + len(separator)
            if split >= floor:
                return split
        return min(target, pos + cfg.max_chunk_size)


def chunking_stats(chunks: list[TextChunk]) -> dict:
    if not chunks:
        return {
            'total_chunks': 0,
            'average_chunk_size': 0,
            'total_tokens': 0,
            'average_tokens': 0,
            'complete_sections': 0,
        }
    total_size = sum(c.length for c in chunks)
    total_tokens = sum(c.token_count for c in chunks)
    return {
        'total_chunks': len(chunks),
        'average_chunk_size': round(total_size / len(chunks)),
        'total_tokens': total_tokens,
        'average_tokens': round(total_tokens / len(chunks)),
        'complete_sections': sum(1 for c in chunks if c.is_complete_section),
    }
