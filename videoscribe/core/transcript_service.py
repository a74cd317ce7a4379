"""
Transcript service: the single entry point callers use.

cache → (single-flight) → primary pipeline
    extract → probe → chunk → worker pool → merge → detect language → validate
  → caption fallback on any primary failure
  → cache valid, complete results
The per-job workspace is removed on every exit path.
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from videoscribe.core.config import AppConfig
from videoscribe.core.constants import JobStatus, TranscriptSource, ChunkFailurePolicy, ErrorCode
from videoscribe.core.error_codes import (
    JobError, ChunkingError, ValidationError, NoFallbackError, ToolUnavailableError,
)
from videoscribe.core.models import Transcript, CacheStats, count_words, spoken_text
from videoscribe.core.url_parse import validate_video_id, watch_url
from videoscribe.core.security_utils import safe_job_dir
from videoscribe.core.toolchain import ToolchainPath, ToolchainResolver
from videoscribe.core.download_audio import AudioExtractor
from videoscribe.core.chunking_timebased import AudioChunker, needs_chunking
from videoscribe.core.transcribe_assemblyai import AssemblyAIClient
from videoscribe.core.worker_pool import TranscriptionWorkerPool
from videoscribe.core.captions_fetch import CaptionFallbackProvider
from videoscribe.core.language import LanguageDetector, CharacterRangeDetector
from videoscribe.core.db_sqlite import TranscriptCache
from videoscribe.core.singleflight import SingleFlight
from videoscribe.core.cleanup import cleanup_job_artifacts

logger = logging.getLogger(__name__)


class TranscriptService:
    """
    Owns one cache, one remote client and one single-flight table.
    Safe to call from many threads at once.
    """

    def __init__(self, config: AppConfig, cache: TranscriptCache,
                 client: AssemblyAIClient | None = None,
                 toolchain: ToolchainPath | None = None,
                 extractor: AudioExtractor | None = None,
                 chunker: AudioChunker | None = None,
                 fallback: CaptionFallbackProvider | None = None,
                 detector: LanguageDetector | None = None,
                 worker_pool: TranscriptionWorkerPool | None = None):
        self.config = config
        self.cache = cache
        self.client = client
        self.toolchain = toolchain
        self.detector = detector or CharacterRangeDetector()
        self.extractor = extractor or AudioExtractor(
            toolchain, config.cookies_mode, config.cookies_path,
            timeout=config.get('extract_timeout_sec'),
        )
        if chunker is None and toolchain is not None:
            chunker = AudioChunker(toolchain, config.get('chunk_bitrate'))
        self.chunker = chunker
        self.fallback = fallback or CaptionFallbackProvider(
            self.detector,
            languages=config.get('caption_languages'),
            cookies_mode=config.cookies_mode,
            cookies_path=config.cookies_path,
        )
        if worker_pool is None and client is not None:
            worker_pool = TranscriptionWorkerPool(
                client,
                max_workers=config.get('max_workers'),
                failure_policy=config.get('chunk_failure_policy', ChunkFailurePolicy.DEGRADE),
                deadline_sec=config.get('job_deadline_sec', 0),
            )
        self.worker_pool = worker_pool
        self._flight = SingleFlight()

    @classmethod
    def from_config(cls, config: AppConfig) -> "TranscriptService":
        """Wire the default components from configuration."""
        try:
            toolchain = ToolchainResolver(config.toolchain_dirs).require()
        except ToolUnavailableError as e:
            logger.warning("%s — chunking disabled", e.message)
            toolchain = None

        client = None
        if config.has_api_key:
            client = AssemblyAIClient(
                config.api_key,
                base_url=config.get('base_url'),
                poll_interval=config.get('poll_interval_sec'),
                poll_timeout=config.get('poll_timeout_sec'),
                upload_timeout=config.get('upload_timeout_sec'),
            )
        else:
            logger.warning("No AssemblyAI API key — running in captions-only mode")

        cache = TranscriptCache(config.db_path)
        return cls(config, cache, client=client, toolchain=toolchain)

    @property
    def chunk_minutes(self) -> float:
        return self.config.get('chunk_minutes')

    @property
    def temp_root(self) -> Path:
        return self.config.temp_root

    def close(self):
        self.cache.close()

    # ── Public API ────────────────────────────────────────────────────

    def get_transcript(self, value: str) -> Transcript:
        """
        Return a transcript for a video id or URL.

        Raises InvalidVideoIdError for unusable input and NoFallbackError
        when neither the primary pipeline nor captions produce a valid
        transcript; the error carries any below-threshold text in .transcript.
        """
        video_id = validate_video_id(value)

        cached = self._lookup_cache(video_id)
        if cached is not None:
            return cached

        result, shared = self._flight.do(video_id, lambda: self._produce(video_id))
        if shared:
            logger.info("Served %s from a coalesced in-flight job", video_id)
        return result

    def verify(self, value: str):
        return self.cache.verify(validate_video_id(value))

    def list_cached(self, page: int = 1, limit: int = 20, source: str | None = None) -> list[Transcript]:
        return self.cache.list_entries(page=page, limit=limit, source=source)

    def delete_cached(self, value: str) -> bool:
        """Drop a cached transcript. Returns False when nothing was cached."""
        video_id = validate_video_id(value)
        deleted = self.cache.delete(video_id)
        logger.info("Cache delete for %s: %s", video_id, "removed" if deleted else "not found")
        return deleted

    def stats(self) -> CacheStats:
        return self.cache.stats()

    # ── Cache helpers ─────────────────────────────────────────────────

    def _lookup_cache(self, video_id: str) -> Transcript | None:
        try:
            cached = self.cache.get(video_id)
            if cached is None:
                return None
            cached.last_used_at = self.cache.touch(video_id)
        except sqlite3.Error as e:
            logger.error("Cache read failed for %s: %s", video_id, e)
            return None
        cached.source = TranscriptSource.CACHE
        logger.info("Cache hit for %s (%d words)", video_id, cached.word_count)
        return cached

    def _store(self, transcript: Transcript):
        """
        Persist a result. Failures never fail the request.
        Partial (gap-marked) results are returned but not cached, so a later
        request can produce the complete transcript.
        """
        if transcript.partial:
            logger.info("Not caching partial transcript for %s", transcript.video_id)
            return
        try:
            self.cache.put(transcript)
        except (sqlite3.Error, ValidationError) as e:
            logger.error("Cache write failed for %s: %s", transcript.video_id, e)

    # ── Job audit ─────────────────────────────────────────────────────

    def _start_job(self, video_id: str) -> str:
        try:
            return self.cache.create_job(video_id, watch_url(video_id)).id
        except sqlite3.Error as e:
            logger.error("Could not record job for %s: %s", video_id, e)
            return str(uuid.uuid4())

    def _set_status(self, job_id: str, status: str, **extra):
        try:
            self.cache.update_job_status(job_id, status, **extra)
        except sqlite3.Error as e:
            logger.error("Could not update job %s to %s: %s", job_id, status, e)

    # ── Pipeline ──────────────────────────────────────────────────────

    def _produce(self, video_id: str) -> Transcript:
        # A leader that finished just before we took the flight may have cached it
        cached = self._lookup_cache(video_id)
        if cached is not None:
            return cached

        job_id = self._start_job(video_id)
        workspace = safe_job_dir(self.temp_root, job_id)
        logger.info("Job %s started for %s", job_id, video_id)

        try:
            transcript = self._run(job_id, video_id, workspace)
        except JobError as e:
            self._set_status(job_id, JobStatus.FAILED,
                             error_code=e.code, error_message=e.message[:2000])
            raise
        except Exception as e:
            logger.error("Unexpected error in job %s: %s", job_id, e, exc_info=True)
            self._set_status(job_id, JobStatus.FAILED,
                             error_code=ErrorCode.UNEXPECTED, error_message=str(e)[:2000])
            raise
        else:
            self._set_status(job_id, JobStatus.COMPLETED)
            return transcript
        finally:
            cleanup_job_artifacts(workspace, self.config.keep_debug_artifacts)

    def _run(self, job_id: str, video_id: str, workspace: Path) -> Transcript:
        primary = None
        if self.client is None:
            primary_reason = "no API key configured"
            logger.info("Skipping primary pipeline for %s: %s", video_id, primary_reason)
        else:
            try:
                primary = self._run_primary(job_id, video_id, workspace)
            except JobError as e:
                primary_reason = f"{e.code}: {e.message}"
                logger.warning("Primary pipeline failed for %s: %s", video_id, primary_reason)
            except Exception as e:
                logger.error("Unexpected error in primary pipeline for %s: %s", video_id, e, exc_info=True)
                primary_reason = f"{ErrorCode.UNEXPECTED}: {type(e).__name__}: {e}"
            else:
                primary_reason = (f"transcript below validity threshold "
                                  f"({len(spoken_text(primary.text))} chars, {primary.word_count} words)")

        if primary is not None and primary.is_valid:
            self._store(primary)
            return primary

        if primary is not None:
            logger.warning("Primary result for %s rejected: %s", video_id, primary_reason)

        short_primary = primary if primary is not None and primary.text else None

        try:
            captions = self.fallback.fetch_captions(video_id, workspace / "captions")
        except NoFallbackError as e:
            raise NoFallbackError(e.fallback_reason, primary_reason,
                                  transcript=short_primary) from e

        if captions.is_valid:
            self._store(captions)
            return captions

        best = captions
        if short_primary is not None and len(short_primary.text) > len(captions.text):
            best = short_primary
        raise NoFallbackError(
            f"captions below validity threshold ({len(captions.text)} chars, "
            f"{captions.word_count} words)",
            primary_reason, transcript=best)

    def _probe_duration(self, audio_path: Path) -> float:
        if self.chunker is None:
            return 0.0
        try:
            return self.chunker.probe(audio_path)
        except ChunkingError as e:
            logger.warning("Duration probe failed (%s) — transcribing as a single file", e.message)
            return 0.0

    def _run_primary(self, job_id: str, video_id: str, workspace: Path) -> Transcript:
        self._set_status(job_id, JobStatus.EXTRACTING)
        audio_path = self.extractor.extract(video_id, workspace / "source")

        duration = self._probe_duration(audio_path)
        chunk_sec = self.chunk_minutes * 60
        summary, highlights = "", []

        if self.chunker is not None and needs_chunking(duration, chunk_sec):
            self._set_status(job_id, JobStatus.CHUNKING)
            chunks = self.chunker.chunk(audio_path, self.chunk_minutes, job_id, duration)
            logger.info("Split %s (%.0fs) into %d chunks", video_id, duration, len(chunks))

            self._set_status(job_id, JobStatus.TRANSCRIBING)
            pooled = self.worker_pool.transcribe(chunks)

            self._set_status(job_id, JobStatus.MERGING)
            text = pooled.text
            language = pooled.language or self.detector.detect(text)
            partial = pooled.partial
            if partial:
                logger.warning("Transcript for %s is partial: %d/%d chunks",
                               video_id, pooled.completed, pooled.total)
        else:
            self._set_status(job_id, JobStatus.TRANSCRIBING)
            result = self.client.transcribe_file(audio_path, auxiliary=True)
            text = result.text.strip()
            language = result.language_code or self.detector.detect(text)
            duration = duration or result.audio_duration
            summary, highlights = result.summary, result.highlights
            partial = False

        return Transcript(
            video_id=video_id,
            text=text,
            language=language,
            word_count=count_words(text),
            duration_seconds=duration,
            source=TranscriptSource.PRIMARY,
            created_at=datetime.now(timezone.utc).isoformat(),
            partial=partial,
            summary=summary,
            highlights=highlights,
        )
