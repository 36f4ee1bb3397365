"""
Cut extracted document text down to the model's input budget.

Strategies, each tried only if the previous one is not enough:
1. asIs          - text already fits
2. numericFilter - keep only lines that look numeric/tabular
3. aiSummarize   - ask the model to condense the numeric lines (only path that calls the network)
4. bestChunks    - score sentence-bounded chunks by data density and keep the best that fit

After reduce() the content always fits safe_text_limit: when not even the single
best chunk fits, it is cut at a line boundary (residual overflow case).
"""

import logging
import re
from typing import List, Optional

from .config import TokenBudget
from .errors import GatewayError
from .llm_client import ModelGateway
from .patterns import count_numeric_matches, is_numeric_line, is_table_like_line
from .schemas import Chunk, ReducedText, ReductionStrategy
from .utils import CHARS_PER_TOKEN, estimate_tokens, render_prompt

logger = logging.getLogger(__name__)

CHUNK_TARGET_CHARS = 4500
SUMMARY_INPUT_CHARS = 6000
TABLE_LINE_WEIGHT = 3
CHUNK_SEPARATOR = "\n\n"

# Whitespace after sentence punctuation, or a line break. "3.5" is not a boundary.
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n")


def split_sentences(text: str, max_chars: int = CHUNK_TARGET_CHARS) -> List[str]:
    """
    Split text into sentence-sized segments that keep their trailing separator,
    so "".join(segments) == text. Segments longer than max_chars are hard-split.
    """
    segments = []
    start = 0
    for match in _SENTENCE_BOUNDARY.finditer(text):
        segments.append(text[start:match.end()])
        start = match.end()
    if start < len(text):
        segments.append(text[start:])

    bounded = []
    for segment in segments:
        while len(segment) > max_chars:
            bounded.append(segment[:max_chars])
            segment = segment[max_chars:]
        if segment:
            bounded.append(segment)
    return bounded


def score_chunk(content: str) -> float:
    """Pattern hits plus a bonus for each table-like line."""
    table_lines = sum(1 for line in content.splitlines() if is_table_like_line(line))
    return float(count_numeric_matches(content) + TABLE_LINE_WEIGHT * table_lines)


def build_chunks(text: str, target_chars: int = CHUNK_TARGET_CHARS, overlap_chars: int = 0) -> List[Chunk]:
    """
    Join sentences until a chunk reaches target_chars. The next chunk starts with
    the trailing sentences of the previous one, up to overlap_chars.
    """
    chunks = []
    current: List[str] = []
    size = 0
    for sentence in split_sentences(text, target_chars):
        if current and size + len(sentence) > target_chars:
            content = "".join(current).strip()
            if content:
                chunks.append(Chunk(content=content, score=score_chunk(content)))
            carried: List[str] = []
            carried_size = 0
            for previous in reversed(current):
                if carried_size + len(previous) > overlap_chars:
                    break
                carried.insert(0, previous)
                carried_size += len(previous)
            current, size = carried, carried_size
        current.append(sentence)
        size += len(sentence)

    content = "".join(current).strip()
    if content:
        chunks.append(Chunk(content=content, score=score_chunk(content)))
    return chunks


def _cut_to_chars(text: str, limit: int) -> str:
    """Cut at the last line break before `limit` when there is one."""
    if len(text) <= limit:
        return text
    cut = text[:limit]
    newline = cut.rfind("\n")
    if newline > 0:
        cut = cut[:newline]
    return cut.rstrip()


class TextBudgetReducer:
    """Deterministic apart from the AI summarization step."""

    def __init__(self, budget: TokenBudget, gateway: Optional[ModelGateway] = None):
        self.budget = budget
        self.gateway = gateway

    def fits(self, text: str) -> bool:
        # inclusive boundary
        return estimate_tokens(text) <= self.budget.safe_text_limit

    def reduce(self, text: str) -> ReducedText:
        if not text or self.fits(text):
            return ReducedText(content=text or "", was_reduced=False, strategy=ReductionStrategy.AS_IS)

        logger.info(
            f"Text of ~{estimate_tokens(text)} tokens exceeds limit of {self.budget.safe_text_limit}, reducing"
        )

        filtered = self.filter_numeric_lines(text)
        if filtered and self.fits(filtered):
            logger.info(f"Numeric filter kept {len(filtered)} of {len(text)} characters")
            return ReducedText(content=filtered, was_reduced=True, strategy=ReductionStrategy.NUMERIC_FILTER)

        if filtered:
            summary = self.summarize(filtered)
            if summary:
                return ReducedText(content=summary, was_reduced=True, strategy=ReductionStrategy.AI_SUMMARIZE)

        content = self.select_best_chunks(text)
        logger.info(f"Best-chunk selection kept {len(content)} of {len(text)} characters")
        return ReducedText(content=content, was_reduced=True, strategy=ReductionStrategy.BEST_CHUNKS)

    def filter_numeric_lines(self, text: str) -> str:
        kept = [line for line in text.splitlines() if line.strip() and is_numeric_line(line)]
        return "\n".join(kept)

    def summarize(self, text: str) -> Optional[str]:
        """
        Ask the model to condense numeric content. Returns None on any gateway
        failure or unusable summary so the caller falls back to chunk selection.
        """
        if self.gateway is None or not self.gateway.is_configured:
            return None

        prompt = render_prompt("summarize.txt", document_text=text[:SUMMARY_INPUT_CHARS])
        try:
            summary = self.gateway.complete(
                prompt, max_output_tokens=self.budget.summary_tokens, temperature=0.0
            ).strip()
        except GatewayError as e:
            logger.warning(f"AI summarization failed, falling back to chunk selection: {e}")
            return None

        if not summary or not self.fits(summary):
            logger.warning(
                f"AI summary unusable (~{estimate_tokens(summary)} tokens), falling back to chunk selection"
            )
            return None
        logger.info(f"AI summarization reduced {len(text)} characters to {len(summary)}")
        return summary

    def select_best_chunks(self, text: str) -> str:
        overlap_chars = self.budget.chunk_overlap * CHARS_PER_TOKEN
        chunks = build_chunks(text, CHUNK_TARGET_CHARS, overlap_chars)
        if not chunks:
            return ""

        # sorted() is stable: equal scores keep document order
        ranked = sorted(chunks, key=lambda c: c.score, reverse=True)
        selected: List[str] = []
        for chunk in ranked:
            candidate = CHUNK_SEPARATOR.join(selected + [chunk.content])
            if self.fits(candidate):
                selected.append(chunk.content)

        if not selected:
            limit = self.budget.safe_text_limit * CHARS_PER_TOKEN
            logger.warning(f"No chunk fits the budget on its own, truncating best chunk to {limit} characters")
            return _cut_to_chars(ranked[0].content, limit)

        logger.debug(f"Selected {len(selected)} of {len(chunks)} chunks")
        return CHUNK_SEPARATOR.join(selected)
