"""
Data models (plain dataclasses) for videoscribe.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from videoscribe.core.constants import (
    JobStatus, ChunkStatus, TranscriptSource,
    MIN_TRANSCRIPT_CHARS, MIN_TRANSCRIPT_WORDS, GAP_MARKER_PATTERN,
)

_GAP_MARKER_RE = re.compile(GAP_MARKER_PATTERN)


def spoken_text(text: str | None) -> str:
    """Text with gap markers for failed chunks removed."""
    return ' '.join(_GAP_MARKER_RE.sub(' ', text or "").split())


def count_words(text: str | None) -> int:
    return len(spoken_text(text).split())


def is_valid_transcript(text: str | None, word_count: int | None = None) -> bool:
    """
    Validity threshold: at least 50 characters and 10 words of transcribed
    speech. Gap markers count toward neither.
    """
    text = spoken_text(text)
    if word_count is None:
        word_count = count_words(text)
    return len(text) >= MIN_TRANSCRIPT_CHARS and word_count >= MIN_TRANSCRIPT_WORDS


@dataclass
class TranscriptionJob:
    id: str                          # UUID
    video_id: str
    source_url: str
    status: str = JobStatus.PENDING
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class AudioChunk:
    job_id: str
    index: int
    start_time: float
    end_time: float
    local_path: Path
    status: str = ChunkStatus.PENDING

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class RemoteTranscriptionTask:
    chunk_index: int
    external_task_id: Optional[str] = None
    attempts: int = 0
    retries: int = 0
    last_polled_at: Optional[float] = None
    text: Optional[str] = None
    language_code: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RemoteResult:
    """Completed remote task payload."""
    task_id: str
    text: str
    language_code: Optional[str] = None
    audio_duration: float = 0.0
    summary: str = ""
    highlights: list = field(default_factory=list)


@dataclass
class Transcript:
    video_id: str
    text: str
    language: str
    word_count: int
    duration_seconds: float
    source: str = TranscriptSource.PRIMARY
    last_used_at: Optional[str] = None
    created_at: Optional[str] = None
    partial: bool = False
    summary: str = ""
    highlights: list = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return is_valid_transcript(self.text, self.word_count)

    def as_dict(self) -> dict:
        data = {
            'video_id': self.video_id,
            'text': self.text,
            'language': self.language,
            'word_count': self.word_count,
            'duration_seconds': self.duration_seconds,
            'source': self.source,
            'partial': self.partial,
            'last_used_at': self.last_used_at,
        }
        if self.summary:
            data['summary'] = self.summary
        if self.highlights:
            data['highlights'] = self.highlights
        return data


@dataclass
class CacheVerification:
    exists: bool
    video_id: str
    text_length: int = 0
    word_count: int = 0
    language: Optional[str] = None
    source: Optional[str] = None
    created_at: Optional[str] = None
    last_used_at: Optional[str] = None
    is_valid: bool = False
    issues: list[str] = field(default_factory=list)


@dataclass
class CacheStats:
    total_transcripts: int = 0
    total_words: int = 0
    # source -> {"count", "total_words", "avg_words"}
    by_source: dict = field(default_factory=dict)
    # most recently used first: {"video_id", "source", "last_used_at"}
    recent: list[dict] = field(default_factory=list)
