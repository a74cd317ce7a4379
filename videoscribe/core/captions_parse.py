"""
VTT captions parsing → plain text.
Removes timestamps, cue numbers, styling/markup and the rolling-line
repetition auto-generated captions carry.
"""

import re
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Regex patterns for VTT cleanup
_TIMESTAMP_RE = re.compile(
    r'^(?:\d{2}:)?\d{2}:\d{2}\.\d{3}\s*-->\s*((?:\d{2}:)?\d{2}:\d{2}\.\d{3}).*$',
    re.MULTILINE,
)
_CUE_ID_RE = re.compile(r'^\d+\s*$', re.MULTILINE)
_WEBVTT_HEADER_RE = re.compile(r'^WEBVTT.*$', re.MULTILINE)
_KIND_RE = re.compile(r'^Kind:.*$', re.MULTILINE)
_LANGUAGE_RE = re.compile(r'^Language:.*$', re.MULTILINE)
_NOTE_RE = re.compile(r'^NOTE\s.*$', re.MULTILINE)
_HTML_TAG_RE = re.compile(r'<[^>]+>')
_POSITION_RE = re.compile(r'\b(?:position|align|size|line):\S+', re.IGNORECASE)
_ENTITY_MAP = {'&amp;': '&', '&lt;': '<', '&gt;': '>', '&nbsp;': ' ', '&#39;': "'", '&quot;': '"'}
_WHITESPACE_RE = re.compile(r'\s+')


def _timestamp_to_seconds(ts: str) -> float:
    parts = ts.split(':')
    seconds = float(parts[-1])
    minutes = int(parts[-2]) if len(parts) >= 2 else 0
    hours = int(parts[-3]) if len(parts) >= 3 else 0
    return hours * 3600 + minutes * 60 + seconds


def vtt_duration(content: str) -> float:
    """End time of the last cue, in seconds (0.0 if none)."""
    ends = _TIMESTAMP_RE.findall(content)
    if not ends:
        return 0.0
    return max(_timestamp_to_seconds(ts) for ts in ends)


def vtt_to_segments(content: str) -> list[str]:
    """Return caption text lines with markup removed and repeats dropped."""
    # Remove WEBVTT header and metadata
    content = _WEBVTT_HEADER_RE.sub('', content)
    content = _KIND_RE.sub('', content)
    content = _LANGUAGE_RE.sub('', content)
    content = _NOTE_RE.sub('', content)

    content = _TIMESTAMP_RE.sub('', content)
    content = _CUE_ID_RE.sub('', content)
    content = _POSITION_RE.sub('', content)
    content = _HTML_TAG_RE.sub('', content)
    for entity, char in _ENTITY_MAP.items():
        content = content.replace(entity, char)

    segments = []
    seen_recent: list[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        # Auto captions repeat the previous line as the first line of the next cue
        if stripped in seen_recent:
            continue
        segments.append(stripped)
        seen_recent = (seen_recent + [stripped])[-2:]

    return segments


def parse_vtt_to_text(vtt_path: Path) -> str:
    """
    Convert a VTT subtitle file to clean single-spaced plain text.
    """
    content = vtt_path.read_text(encoding='utf-8', errors='replace')
    text = ' '.join(vtt_to_segments(content))
    return _WHITESPACE_RE.sub(' ', text).strip()
