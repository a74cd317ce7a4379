#!/usr/bin/env python3
"""
Unit tests for videoscribe core modules.
Tests cover: video id parsing, security utils, errors, captions parsing,
chunk arithmetic, merge, language detection, config, toolchain, cache.
"""

import sys
import os
import stat
import tempfile
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from videoscribe.core.constants import (
    ErrorCode, ExtractionReason, TranscriptSource, JobStatus,
    ENV_API_KEY, ENV_TOOLCHAIN_DIRS, ENV_DB_PATH, ChunkFailurePolicy,
)
from videoscribe.core.url_parse import (
    extract_video_id, validate_video_id, watch_url, parse_input_lines,
)
from videoscribe.core.security_utils import safe_job_dir, redact, run_subprocess
from videoscribe.core.error_codes import (
    JobError, ExtractionError, NoFallbackError, AggregateTranscriptionError,
    TranscriptionError, InvalidVideoIdError, ValidationError, is_retryable,
)
from videoscribe.core.captions_parse import parse_vtt_to_text, vtt_duration
from videoscribe.core.chunking_timebased import needs_chunking, create_chunk_manifest
from videoscribe.core.merge import (
    merge_transcripts, merge_indexed_texts, dominant_language, format_timestamp, gap_marker,
)
from videoscribe.core.language import CharacterRangeDetector
from videoscribe.core.config import AppConfig
from videoscribe.core.toolchain import ToolchainResolver
from videoscribe.core.models import Transcript, count_words, is_valid_transcript, spoken_text
from videoscribe.core.db_sqlite import TranscriptCache

VALID_TEXT = ("This is a perfectly ordinary transcript with more than ten words "
              "and well over fifty characters in it.")


class TestVideoIdParsing(unittest.TestCase):
    """Test video id and URL parsing."""

    def test_bare_id(self):
        self.assertEqual(extract_video_id("dQw4w9WgXcQ"), "dQw4w9WgXcQ")

    def test_standard_url(self):
        self.assertEqual(
            extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ"),
            "dQw4w9WgXcQ",
        )

    def test_short_url(self):
        self.assertEqual(
            extract_video_id("https://youtu.be/dQw4w9WgXcQ"),
            "dQw4w9WgXcQ",
        )

    def test_shorts_url(self):
        self.assertEqual(
            extract_video_id("https://www.youtube.com/shorts/dQw4w9WgXcQ"),
            "dQw4w9WgXcQ",
        )

    def test_url_with_params(self):
        self.assertEqual(
            extract_video_id("https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ&t=120"),
            "dQw4w9WgXcQ",
        )

    def test_invalid(self):
        self.assertIsNone(extract_video_id("https://www.google.com"))
        self.assertIsNone(extract_video_id("not an id"))
        self.assertIsNone(extract_video_id(""))
        self.assertIsNone(extract_video_id(None))

    def test_validate_raises_on_invalid(self):
        with self.assertRaises(InvalidVideoIdError) as ctx:
            validate_video_id("https://example.com/video")
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_VIDEO_ID)

    def test_watch_url(self):
        self.assertEqual(watch_url("dQw4w9WgXcQ"), "https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    def test_parse_input_lines(self):
        text = """
        # a comment
        https://www.youtube.com/watch?v=dQw4w9WgXcQ

        https://youtu.be/abc123def45
        garbage line
        """
        self.assertEqual(parse_input_lines(text), ["dQw4w9WgXcQ", "abc123def45"])


class TestSecurityUtils(unittest.TestCase):
    """Test path safety and secret handling."""

    def test_safe_job_dir_normal(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            path = safe_job_dir(root, "3f2b-job_1")
            self.assertEqual(path, root / "3f2b-job_1")

    def test_safe_job_dir_rejects_traversal(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                safe_job_dir(Path(tmpdir), "../escape")
            with self.assertRaises(ValueError):
                safe_job_dir(Path(tmpdir), "")

    def test_redact(self):
        self.assertEqual(redact("key=sekrit failed", "sekrit"), "key=*** failed")
        self.assertEqual(redact("nothing here", None), "nothing here")

    def test_shell_forbidden(self):
        with mock.patch("videoscribe.core.security_utils.subprocess.run") as run:
            run_subprocess(["echo", "hi"], shell=True)
        self.assertFalse(run.call_args.kwargs["shell"])
        with self.assertRaises(TypeError):
            run_subprocess("echo hi")


class TestErrorCodes(unittest.TestCase):
    """Test error codes and retryability."""

    def test_retryable_errors(self):
        self.assertTrue(is_retryable(ErrorCode.UPLOAD_FAILED))
        self.assertTrue(is_retryable(ErrorCode.TRANSCRIBE_TIMEOUT))
        self.assertTrue(is_retryable(ErrorCode.NETWORK_TRANSIENT))

    def test_non_retryable_errors(self):
        self.assertFalse(is_retryable(ErrorCode.INVALID_VIDEO_ID))
        self.assertFalse(is_retryable(ErrorCode.NO_FALLBACK))
        self.assertFalse(is_retryable(ErrorCode.VALIDATION))

    def test_job_error_auto_retryable(self):
        self.assertTrue(JobError(ErrorCode.UPLOAD_FAILED, "test").retryable)
        self.assertFalse(JobError(ErrorCode.INVALID_VIDEO_ID, "test").retryable)

    def test_extraction_error_reason(self):
        err = ExtractionError(ExtractionReason.PRIVATE, "Private video")
        self.assertEqual(err.reason, ExtractionReason.PRIVATE)
        self.assertFalse(err.retryable)
        self.assertTrue(ExtractionError(ExtractionReason.UNKNOWN, "boom").retryable)

    def test_no_fallback_message_names_both_reasons(self):
        err = NoFallbackError("no captions available", "ERR_EXTRACTION: private: Private video")
        self.assertIn("Private video", err.message)
        self.assertIn("no captions available", err.message)
        self.assertEqual(err.code, ErrorCode.NO_FALLBACK)

    def test_aggregate_error(self):
        err = AggregateTranscriptionError(
            {2: TranscriptionError("late"), 0: TranscriptionError("first")}, 3)
        self.assertEqual(err.code, ErrorCode.CHUNKS_FAILED)
        self.assertIn("2/3", err.message)
        self.assertIn("first", err.message)


class TestCaptionsParsing(unittest.TestCase):
    """Test VTT caption parsing."""

    def _parse(self, content: str) -> str:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "captions.vtt"
            path.write_text(content, encoding="utf-8")
            return parse_vtt_to_text(path)

    def test_parse_vtt_basic(self):
        result = self._parse("""WEBVTT
Kind: captions
Language: en

1
00:00:00.000 --> 00:00:05.000
Hello, welcome to this video.

2
00:00:05.000 --> 00:00:10.000 align:start position:0%
Today we'll be talking about Python.
""")
        self.assertEqual(result, "Hello, welcome to this video. Today we'll be talking about Python.")
        self.assertNotIn("-->", result)
        self.assertNotIn("align", result)

    def test_parse_vtt_removes_markup(self):
        result = self._parse("""WEBVTT

00:00:00.000 --> 00:00:05.000
<b>Bold text</b> and <c.colorE5E5E5>coloured</c> text &amp; more.
""")
        self.assertEqual(result, "Bold text and coloured text & more.")

    def test_rolling_auto_captions_deduplicated(self):
        result = self._parse("""WEBVTT

00:00:00.000 --> 00:00:02.000
so today we are

00:00:02.000 --> 00:00:04.000
so today we are
going to talk

00:00:04.000 --> 00:00:06.000
going to talk
""")
        self.assertEqual(result, "so today we are going to talk")

    def test_vtt_duration(self):
        content = "WEBVTT\n\n00:00.000 --> 00:05.000\nhi\n\n01:00:01.500 --> 01:00:03.250\nbye\n"
        self.assertAlmostEqual(vtt_duration(content), 3603.25)
        self.assertEqual(vtt_duration("WEBVTT\n"), 0.0)


class TestChunking(unittest.TestCase):
    """Test chunk arithmetic."""

    def test_needs_chunking(self):
        self.assertFalse(needs_chunking(300, 720))
        self.assertFalse(needs_chunking(720, 720))
        self.assertTrue(needs_chunking(721, 720))

    def test_long_audio_three_equal_chunks(self):
        manifest = create_chunk_manifest(2160, 720)
        self.assertEqual(
            [(e['idx'], e['start_sec'], e['end_sec']) for e in manifest],
            [(0, 0.0, 720.0), (1, 720.0, 1440.0), (2, 1440.0, 2160.0)],
        )

    def test_short_audio_single_chunk(self):
        manifest = create_chunk_manifest(300, 720)
        self.assertEqual(len(manifest), 1)
        self.assertEqual(manifest[0]['end_sec'], 300.0)

    def test_last_chunk_truncated(self):
        manifest = create_chunk_manifest(1500, 720)
        self.assertEqual(len(manifest), 3)
        self.assertEqual(manifest[-1]['start_sec'], 1440.0)
        self.assertEqual(manifest[-1]['end_sec'], 1500.0)
        # contiguous, no overlap
        for prev, cur in zip(manifest, manifest[1:]):
            self.assertEqual(prev['end_sec'], cur['start_sec'])

    def test_zero_duration(self):
        self.assertEqual(create_chunk_manifest(0, 720), [])
        with self.assertRaises(ValueError):
            create_chunk_manifest(100, 0)


class TestMerge(unittest.TestCase):
    """Test transcript merging."""

    def test_merge_multiple(self):
        self.assertEqual(merge_transcripts(["Hello world.", "  How are you?  "]),
                         "Hello world. How are you?")

    def test_merge_empty(self):
        self.assertEqual(merge_transcripts([]), "")
        self.assertEqual(merge_transcripts(["", "   "]), "")

    def test_merge_indexed_uses_index_order(self):
        # insertion order mimics completion order 2, 0, 1
        texts = {2: "third.", 0: "first.", 1: "second."}
        self.assertEqual(merge_indexed_texts(texts, 3), "first. second. third.")

    def test_missing_chunk_becomes_gap_marker(self):
        texts = {0: "first.", 2: "third."}
        spans = {0: (0, 720), 1: (720, 1440), 2: (1440, 2160)}
        self.assertEqual(
            merge_indexed_texts(texts, 3, spans),
            "first. [transcription unavailable: 00:12:00-00:24:00] third.",
        )

    def test_missing_chunk_without_span_is_skipped(self):
        self.assertEqual(merge_indexed_texts({1: "only."}, 2), "only.")

    def test_format_timestamp(self):
        self.assertEqual(format_timestamp(3725), "01:02:05")

    def test_dominant_language(self):
        self.assertEqual(dominant_language(["en", "es", "es", None]), "es")
        self.assertEqual(dominant_language(["fr", "en"]), "fr")
        self.assertEqual(dominant_language([None, None]), "en")
        self.assertIsNone(dominant_language([], default=None))


class TestLanguageDetection(unittest.TestCase):
    """Test character-range language detection."""

    def setUp(self):
        self.detector = CharacterRangeDetector()

    def test_english(self):
        self.assertEqual(self.detector.detect("Hello world, this is a test."), "en")

    def test_scripts(self):
        self.assertEqual(self.detector.detect("नमस्ते दुनिया"), "hi")
        self.assertEqual(self.detector.detect("Привет мир"), "ru")
        self.assertEqual(self.detector.detect("こんにちは"), "ja")
        self.assertEqual(self.detector.detect("안녕하세요"), "ko")

    def test_empty_returns_default(self):
        self.assertEqual(self.detector.detect(""), "en")
        self.assertEqual(self.detector.detect("12345 !!!"), "en")
        self.assertEqual(CharacterRangeDetector(default="xx").detect(""), "xx")


class TestConfig(unittest.TestCase):
    """Test configuration defaults, clamping and env overrides."""

    def test_defaults(self):
        cfg = AppConfig.from_dict({})
        self.assertEqual(cfg.get('chunk_minutes'), 12)
        self.assertEqual(cfg.get('max_workers'), 5)
        self.assertEqual(cfg.get('chunk_failure_policy'), ChunkFailurePolicy.DEGRADE)
        self.assertFalse(cfg.has_api_key)

    def test_clamping(self):
        cfg = AppConfig.from_dict({'chunk_minutes': 500, 'max_workers': 0,
                                   'poll_interval_sec': 'soon',
                                   'chunk_failure_policy': 'explode'})
        self.assertEqual(cfg.get('chunk_minutes'), 120)
        self.assertEqual(cfg.get('max_workers'), 1)
        self.assertEqual(cfg.get('poll_interval_sec'), 5)
        self.assertEqual(cfg.get('chunk_failure_policy'), ChunkFailurePolicy.DEGRADE)

    def test_env_overrides(self):
        env = {ENV_API_KEY: " secret-key ", ENV_TOOLCHAIN_DIRS: os.pathsep.join(["/a", "/b"]),
               ENV_DB_PATH: "/tmp/x.db"}
        cfg = AppConfig.from_dict({}, environ=env)
        self.assertEqual(cfg.api_key, "secret-key")
        self.assertEqual(cfg.toolchain_dirs, ["/a", "/b"])
        self.assertEqual(cfg.db_path, Path("/tmp/x.db"))
        self.assertEqual(cfg.as_dict()['api_key'], '***')

    def test_file_round_trip_excludes_secret(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            cfg = AppConfig(config_path=path, environ={ENV_API_KEY: "k"})
            cfg.set('max_workers', 8)
            self.assertNotIn('"k"', path.read_text())
            reloaded = AppConfig(config_path=path, environ={})
            self.assertEqual(reloaded.get('max_workers'), 8)
            self.assertIsNone(reloaded.api_key)


class TestToolchainResolver(unittest.TestCase):
    """Test ffmpeg lookup over candidate directories."""

    def _make_exe(self, path: Path):
        path.write_text("#!/bin/sh\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)

    def test_resolves_from_candidate_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            self._make_exe(d / "ffmpeg")
            self._make_exe(d / "ffprobe")
            resolver = ToolchainResolver([str(d)], binary="ffmpeg",
                                         probe_binary="ffprobe", use_path=False)
            tc = resolver.resolve()
            self.assertIsNotNone(tc)
            self.assertEqual(tc.ffmpeg, d / "ffmpeg")
            self.assertTrue(tc.can_probe)

    def test_missing_returns_none(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            resolver = ToolchainResolver([tmpdir], binary="ffmpeg", use_path=False)
            self.assertIsNone(resolver.resolve())
            with self.assertRaises(JobError) as ctx:
                resolver.require()
            self.assertEqual(ctx.exception.code, ErrorCode.TOOL_UNAVAILABLE)


class TestValidity(unittest.TestCase):

    def test_threshold(self):
        self.assertTrue(is_valid_transcript(VALID_TEXT))
        self.assertFalse(is_valid_transcript("too short"))
        # enough characters, too few words
        self.assertFalse(is_valid_transcript("supercalifragilisticexpialidocious " * 3))
        self.assertEqual(count_words("  a b\nc "), 3)

    def test_gap_markers_are_not_speech(self):
        text = "Hi. " + " ".join(gap_marker(i * 720, (i + 1) * 720) for i in range(1, 5))
        self.assertEqual(spoken_text(text), "Hi.")
        self.assertEqual(count_words(text), 1)
        self.assertFalse(is_valid_transcript(text))
        self.assertTrue(is_valid_transcript(VALID_TEXT + " " + gap_marker(0, 720)))


class TestTranscriptCache(unittest.TestCase):
    """Test SQLite cache and job audit operations."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.cache = TranscriptCache(Path(self.tmpdir.name) / "cache.db")

    def tearDown(self):
        self.cache.close()
        self.tmpdir.cleanup()

    def _transcript(self, video_id="abc123def45", text=VALID_TEXT, source=TranscriptSource.PRIMARY):
        return Transcript(video_id=video_id, text=text, language="en",
                          word_count=count_words(text), duration_seconds=60.0, source=source)

    def test_miss(self):
        self.assertIsNone(self.cache.get("abc123def45"))

    def test_put_then_get(self):
        self.cache.put(self._transcript())
        hit = self.cache.get("abc123def45")
        self.assertIsNotNone(hit)
        self.assertEqual(hit.text, VALID_TEXT)
        self.assertEqual(hit.source, TranscriptSource.PRIMARY)

    def test_invalid_never_persisted(self):
        with self.assertRaises(ValidationError):
            self.cache.put(self._transcript(text="too short"))
        self.assertEqual(self.cache.count(), 0)

    def test_cache_source_never_persisted(self):
        with self.assertRaises(ValidationError):
            self.cache.put(self._transcript(source=TranscriptSource.CACHE))

    def test_upsert_last_write_wins(self):
        self.cache.put(self._transcript())
        replacement = VALID_TEXT.replace("ordinary", "updated")
        self.cache.put(self._transcript(text=replacement, source=TranscriptSource.FALLBACK))
        self.assertEqual(self.cache.count(), 1)
        hit = self.cache.get("abc123def45")
        self.assertEqual(hit.text, replacement)
        self.assertEqual(hit.source, TranscriptSource.FALLBACK)

    def test_touch_advances_last_used(self):
        stamps = ["2026-01-01T00:00:00+00:00", "2026-01-02T00:00:00+00:00"]
        with mock.patch.object(TranscriptCache, '_now', side_effect=stamps):
            self.cache.put(self._transcript())
            self.cache.touch("abc123def45")
        self.assertEqual(self.cache.get("abc123def45").last_used_at, stamps[1])

    def test_verify(self):
        missing = self.cache.verify("abc123def45")
        self.assertFalse(missing.exists)
        self.cache.put(self._transcript())
        report = self.cache.verify("abc123def45")
        self.assertTrue(report.exists)
        self.assertTrue(report.is_valid)
        self.assertEqual(report.issues, [])

    def test_list_entries_paginates(self):
        for i in range(3):
            self.cache.put(self._transcript(video_id=f"video{i:06d}"))
        self.assertEqual(len(self.cache.list_entries(page=1, limit=2)), 2)
        self.assertEqual(len(self.cache.list_entries(page=2, limit=2)), 1)
        self.assertEqual(self.cache.list_entries(source=TranscriptSource.FALLBACK), [])

    def test_delete(self):
        self.cache.put(self._transcript())
        self.assertTrue(self.cache.delete("abc123def45"))
        self.assertFalse(self.cache.delete("abc123def45"))

    def test_stats_grouped_by_source(self):
        self.cache.put(self._transcript(video_id="video000001"))
        self.cache.put(self._transcript(video_id="video000002"))
        self.cache.put(self._transcript(video_id="video000003", source=TranscriptSource.FALLBACK))
        words = count_words(VALID_TEXT)
        stats = self.cache.stats(recent_limit=2)
        self.assertEqual(stats.total_transcripts, 3)
        self.assertEqual(stats.total_words, 3 * words)
        self.assertEqual(stats.by_source[TranscriptSource.PRIMARY],
                         {"count": 2, "total_words": 2 * words, "avg_words": float(words)})
        self.assertEqual(stats.by_source[TranscriptSource.FALLBACK]["count"], 1)
        self.assertEqual(len(stats.recent), 2)

    def test_stats_empty(self):
        stats = self.cache.stats()
        self.assertEqual((stats.total_transcripts, stats.total_words), (0, 0))
        self.assertEqual(stats.by_source, {})

    def test_job_audit(self):
        job = self.cache.create_job("abc123def45", watch_url("abc123def45"))
        self.assertEqual(job.status, JobStatus.PENDING)
        self.cache.update_job_status(job.id, JobStatus.EXTRACTING)
        self.assertEqual(self.cache.get_job(job.id).status, JobStatus.EXTRACTING)
        self.assertIsNone(self.cache.get_job(job.id).completed_at)
        self.cache.update_job_status(job.id, JobStatus.FAILED,
                                     error_code=ErrorCode.NO_FALLBACK, error_message="both failed")
        fetched = self.cache.get_job(job.id)
        self.assertIsNotNone(fetched.completed_at)
        self.assertEqual(fetched.error_code, ErrorCode.NO_FALLBACK)
        self.assertEqual(len(self.cache.get_jobs_for_video("abc123def45")), 1)


if __name__ == "__main__":
    unittest.main()
