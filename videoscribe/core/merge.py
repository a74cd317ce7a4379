"""
Merge chunk transcripts into a single text.
Ordering is always by chunk index, never by completion order.
"""

import re
import logging
from collections import Counter

from videoscribe.core.constants import GAP_MARKER_TEMPLATE, BASELINE_LANGUAGE

logger = logging.getLogger(__name__)

_SPACE_BEFORE_PUNCT_RE = re.compile(r'\s+([.,!?;:])')
_MISSING_SPACE_AFTER_PUNCT_RE = re.compile(r'([.,!?;:])([A-Za-z])')
_WHITESPACE_RE = re.compile(r'\s+')


def format_timestamp(seconds: float) -> str:
    seconds = int(round(seconds))
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"


def gap_marker(start_sec: float, end_sec: float) -> str:
    return GAP_MARKER_TEMPLATE.format(start=format_timestamp(start_sec),
                                      end=format_timestamp(end_sec))


def clean_merged_text(text: str) -> str:
    """Collapse whitespace and tidy spacing around punctuation at chunk seams."""
    text = _WHITESPACE_RE.sub(' ', text)
    text = _SPACE_BEFORE_PUNCT_RE.sub(r'\1', text)
    text = _MISSING_SPACE_AFTER_PUNCT_RE.sub(r'\1 \2', text)
    return text.strip()


def merge_transcripts(texts: list[str]) -> str:
    """Merge already-ordered transcript texts, skipping empty ones."""
    parts = [t.strip() for t in texts if t and t.strip()]
    if not parts:
        return ""
    return clean_merged_text(' '.join(parts))


def merge_indexed_texts(texts_by_index: dict[int, str | None],
                        total: int,
                        spans: dict[int, tuple[float, float]] | None = None) -> str:
    """
    Merge texts keyed by chunk index in index order.
    A missing/None entry is a failed chunk: it becomes a gap marker when its
    time span is known, otherwise it is skipped.
    """
    ordered = []
    for idx in range(total):
        text = texts_by_index.get(idx)
        if text is None:
            if spans and idx in spans:
                ordered.append(gap_marker(*spans[idx]))
            logger.debug("Chunk %d missing from merge", idx)
            continue
        ordered.append(text)
    return merge_transcripts(ordered)


def dominant_language(codes: list[str | None], default: str = BASELINE_LANGUAGE) -> str:
    """Most common language code; ties go to the earliest chunk."""
    codes = [c for c in codes if c]
    if not codes:
        return default
    counts = Counter(codes)
    best = max(counts.values())
    for code in codes:
        if counts[code] == best:
            return code
    return default
