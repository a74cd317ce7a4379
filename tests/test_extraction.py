#!/usr/bin/env python3
"""
Tests for the subprocess-driven stages: audio extraction, chunk slicing and
caption fallback. yt-dlp/ffmpeg are replaced with fakes that write files.
"""

import sys
import json
import subprocess
import tempfile
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from videoscribe.core.constants import (
    ExtractionReason, RAW_FORMAT_SELECTOR, TranscriptSource, CookiesMode,
)
from videoscribe.core.error_codes import ExtractionError, ChunkingError, NoFallbackError
from videoscribe.core.toolchain import ToolchainPath
from videoscribe.core.download_audio import (
    AudioExtractor, build_ytdlp_args, classify_extraction_failure, find_audio_file,
)
from videoscribe.core.chunking_timebased import (
    AudioChunker, split_audio_into_chunks, create_chunk_manifest, get_audio_duration,
)
from videoscribe.core.captions_fetch import CaptionFallbackProvider

VIDEO_ID = "abc123def45"
TOOLCHAIN = ToolchainPath(directory=Path("/opt/ff"), ffmpeg=Path("/opt/ff/ffmpeg"),
                          ffprobe=Path("/opt/ff/ffprobe"))

CAPTIONS_VTT = """WEBVTT
Kind: captions
Language: en

00:00:00.000 --> 00:00:04.000
Welcome back everyone, today we look at the new release

00:00:04.000 --> 00:01:30.500
and walk through every feature it ships with in detail.
"""


def _completed(args, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


def _output_dir(args) -> Path:
    return Path(args[args.index("-o") + 1]).parent


class TestExtractionArgs(unittest.TestCase):

    def test_with_toolchain_converts_to_mp3(self):
        args = build_ytdlp_args(VIDEO_ID, Path("/w"), TOOLCHAIN)
        self.assertIn("--extract-audio", args)
        self.assertEqual(args[args.index("--ffmpeg-location") + 1], "/opt/ff")
        self.assertEqual(args[-1], "https://www.youtube.com/watch?v=abc123def45")

    def test_without_toolchain_requests_raw_audio(self):
        args = build_ytdlp_args(VIDEO_ID, Path("/w"), None)
        self.assertNotIn("--extract-audio", args)
        self.assertNotIn("--ffmpeg-location", args)
        self.assertEqual(args[args.index("-f") + 1], RAW_FORMAT_SELECTOR)

    def test_cookies_only_when_file_exists(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cookies = Path(tmpdir) / "cookies.txt"
            args = build_ytdlp_args(VIDEO_ID, Path("/w"), None, CookiesMode.USE_FILE, cookies)
            self.assertNotIn("--cookies", args)
            cookies.write_text("# Netscape HTTP Cookie File\n")
            args = build_ytdlp_args(VIDEO_ID, Path("/w"), None, CookiesMode.USE_FILE, cookies)
            self.assertIn("--cookies", args)


class TestDiagnosticClassification(unittest.TestCase):

    def test_reasons(self):
        self.assertEqual(classify_extraction_failure("ERROR: [youtube] x: Private video. Sign in"),
                         ExtractionReason.PRIVATE)
        self.assertEqual(classify_extraction_failure("Sign in to confirm your age"),
                         ExtractionReason.AGE_RESTRICTED)
        self.assertEqual(classify_extraction_failure("ERROR: Video unavailable"),
                         ExtractionReason.UNAVAILABLE)
        self.assertEqual(classify_extraction_failure("HTTP Error 503"), ExtractionReason.UNKNOWN)
        self.assertEqual(classify_extraction_failure(""), ExtractionReason.UNKNOWN)


class TestAudioExtractor(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.out = Path(self.tmpdir.name) / "source"

    def tearDown(self):
        self.tmpdir.cleanup()

    def _fake_ytdlp(self, ext=".mp3", returncode=0, stderr=""):
        def run(args, timeout=None):
            if ext:
                (_output_dir(args) / f"{VIDEO_ID}{ext}").write_bytes(b"audio")
            return _completed(args, returncode, stderr=stderr)
        return run

    def test_exit_code_is_not_authoritative(self):
        fake = self._fake_ytdlp(returncode=1, stderr="ERROR: Postprocessing: audio conversion failed")
        with mock.patch("videoscribe.core.download_audio.run_subprocess_capture", side_effect=fake):
            path = AudioExtractor(TOOLCHAIN).extract(VIDEO_ID, self.out)
        self.assertEqual(path, self.out / f"{VIDEO_ID}.mp3")

    def test_without_toolchain_accepts_raw_container(self):
        fake = self._fake_ytdlp(ext=".m4a")
        with mock.patch("videoscribe.core.download_audio.run_subprocess_capture",
                        side_effect=fake) as run:
            path = AudioExtractor(None).extract(VIDEO_ID, self.out)
        self.assertEqual(path.suffix, ".m4a")
        self.assertIn(RAW_FORMAT_SELECTOR, run.call_args.args[0])

    def test_no_file_raises_with_reason(self):
        fake = self._fake_ytdlp(ext=None, returncode=1,
                                stderr="ERROR: [youtube] abc123def45: Private video")
        with mock.patch("videoscribe.core.download_audio.run_subprocess_capture", side_effect=fake):
            with self.assertRaises(ExtractionError) as ctx:
                AudioExtractor(TOOLCHAIN).extract(VIDEO_ID, self.out)
        self.assertEqual(ctx.exception.reason, ExtractionReason.PRIVATE)
        self.assertFalse(ctx.exception.retryable)

    def test_missing_downloader(self):
        with mock.patch("videoscribe.core.download_audio.run_subprocess_capture",
                        side_effect=FileNotFoundError("yt-dlp")):
            with self.assertRaises(ExtractionError) as ctx:
                AudioExtractor(None).extract(VIDEO_ID, self.out)
        self.assertEqual(ctx.exception.reason, ExtractionReason.UNKNOWN)

    def test_timeout_prefers_unconverted_download(self):
        def run(args, timeout=None):
            out = _output_dir(args)
            (out / f"{VIDEO_ID}.webm").write_bytes(b"complete download")
            (out / f"{VIDEO_ID}.mp3").write_bytes(b"half")
            raise subprocess.TimeoutExpired(args, timeout)

        with mock.patch("videoscribe.core.download_audio.run_subprocess_capture", side_effect=run):
            path = AudioExtractor(TOOLCHAIN, timeout=5).extract(VIDEO_ID, self.out)
        self.assertEqual(path, self.out / f"{VIDEO_ID}.webm")

    def test_timeout_after_conversion_uses_target(self):
        def run(args, timeout=None):
            (_output_dir(args) / f"{VIDEO_ID}.mp3").write_bytes(b"converted")
            raise subprocess.TimeoutExpired(args, timeout)

        with mock.patch("videoscribe.core.download_audio.run_subprocess_capture", side_effect=run):
            path = AudioExtractor(TOOLCHAIN, timeout=5).extract(VIDEO_ID, self.out)
        self.assertEqual(path.suffix, ".mp3")

    def test_timeout_without_audio(self):
        with mock.patch("videoscribe.core.download_audio.run_subprocess_capture",
                        side_effect=subprocess.TimeoutExpired(["yt-dlp"], 5)):
            with self.assertRaises(ExtractionError) as ctx:
                AudioExtractor(TOOLCHAIN, timeout=5).extract(VIDEO_ID, self.out)
        self.assertIn("timed out", ctx.exception.message)

    def test_empty_file_ignored(self):
        self.out.mkdir(parents=True)
        (self.out / f"{VIDEO_ID}.mp3").write_bytes(b"")
        (self.out / f"{VIDEO_ID}.webm").write_bytes(b"data")
        self.assertEqual(find_audio_file(self.out, VIDEO_ID), self.out / f"{VIDEO_ID}.webm")


class TestChunkSlicing(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.audio = Path(self.tmpdir.name) / "source" / f"{VIDEO_ID}.mp3"
        self.audio.parent.mkdir(parents=True)
        self.audio.write_bytes(b"audio")

    def tearDown(self):
        self.tmpdir.cleanup()

    @staticmethod
    def _fake_ffmpeg(args, timeout=None):
        Path(args[-1]).write_bytes(b"chunk")
        return _completed(args)

    def test_split_writes_chunks_and_manifest(self):
        chunks_dir = self.audio.parent / "chunks"
        manifest = create_chunk_manifest(2160, 720)
        with mock.patch("videoscribe.core.chunking_timebased.run_subprocess_capture",
                        side_effect=self._fake_ffmpeg) as run:
            paths = split_audio_into_chunks(self.audio, chunks_dir, manifest, "/opt/ff/ffmpeg")

        self.assertEqual([p.name for p in paths],
                         [f"{VIDEO_ID}_chunk_000.mp3", f"{VIDEO_ID}_chunk_001.mp3",
                          f"{VIDEO_ID}_chunk_002.mp3"])
        second = run.call_args_list[1].args[0]
        self.assertEqual(second[second.index("-ss") + 1], "720.000")
        self.assertEqual(second[second.index("-t") + 1], "720.000")
        written = json.loads((chunks_dir / "manifest.json").read_text())
        self.assertEqual(len(written["chunks"]), 3)

    def test_chunker_builds_audio_chunks(self):
        with mock.patch("videoscribe.core.chunking_timebased.run_subprocess_capture",
                        side_effect=self._fake_ffmpeg):
            chunks = AudioChunker(TOOLCHAIN).chunk(self.audio, 12, job_id="job-1", duration_sec=1500)
        self.assertEqual([c.index for c in chunks], [0, 1, 2])
        self.assertEqual(chunks[-1].duration, 60.0)
        self.assertTrue(all(c.job_id == "job-1" for c in chunks))

    def test_ffmpeg_failure(self):
        with mock.patch("videoscribe.core.chunking_timebased.run_subprocess_capture",
                        return_value=_completed([], 1, stderr="Invalid data")):
            with self.assertRaises(ChunkingError):
                split_audio_into_chunks(self.audio, self.audio.parent / "chunks",
                                        create_chunk_manifest(100, 720))

    def test_probe(self):
        with mock.patch("videoscribe.core.chunking_timebased.run_subprocess_capture",
                        return_value=_completed([], 0, stdout="2160.052\n")):
            self.assertAlmostEqual(get_audio_duration(self.audio), 2160.052)
        with mock.patch("videoscribe.core.chunking_timebased.run_subprocess_capture",
                        return_value=_completed([], 0, stdout="N/A\n")):
            with self.assertRaises(ChunkingError):
                get_audio_duration(self.audio)


class TestCaptionFallback(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.work = Path(self.tmpdir.name) / "captions"

    def tearDown(self):
        self.tmpdir.cleanup()

    def _fake_ytdlp(self, creator=None, auto=None):
        def run(args, timeout=None):
            content = creator if "--write-subs" in args else auto
            if content is not None:
                (_output_dir(args) / f"{VIDEO_ID}.en.vtt").write_text(content, encoding="utf-8")
            return _completed(args)
        return run

    def test_auto_captions_tagged_as_fallback(self):
        fake = self._fake_ytdlp(auto=CAPTIONS_VTT)
        with mock.patch("videoscribe.core.captions_fetch.run_subprocess_capture", side_effect=fake):
            transcript = CaptionFallbackProvider().fetch_captions(VIDEO_ID, self.work)
        self.assertEqual(transcript.source, TranscriptSource.FALLBACK)
        self.assertEqual(transcript.language, "en")
        self.assertTrue(transcript.is_valid)
        self.assertAlmostEqual(transcript.duration_seconds, 90.5)
        self.assertTrue(transcript.text.startswith("Welcome back everyone"))

    def test_creator_captions_preferred(self):
        creator = CAPTIONS_VTT.replace("Welcome back", "Hello again")
        fake = self._fake_ytdlp(creator=creator, auto=CAPTIONS_VTT)
        with mock.patch("videoscribe.core.captions_fetch.run_subprocess_capture",
                        side_effect=fake) as run:
            transcript = CaptionFallbackProvider().fetch_captions(VIDEO_ID, self.work)
        self.assertTrue(transcript.text.startswith("Hello again"))
        # auto captions are never requested when creator subtitles exist
        self.assertEqual(run.call_count, 1)

    def test_no_captions(self):
        with mock.patch("videoscribe.core.captions_fetch.run_subprocess_capture",
                        side_effect=self._fake_ytdlp()):
            with self.assertRaises(NoFallbackError) as ctx:
                CaptionFallbackProvider().fetch_captions(VIDEO_ID, self.work)
        self.assertIn("no captions available", ctx.exception.message)

    def test_empty_captions(self):
        with mock.patch("videoscribe.core.captions_fetch.run_subprocess_capture",
                        side_effect=self._fake_ytdlp(auto="WEBVTT\n\n")):
            with self.assertRaises(NoFallbackError):
                CaptionFallbackProvider().fetch_captions(VIDEO_ID, self.work)

    def test_short_captions_returned(self):
        short = "WEBVTT\n\n00:00:00.000 --> 00:00:01.000\nhi there\n"
        with mock.patch("videoscribe.core.captions_fetch.run_subprocess_capture",
                        side_effect=self._fake_ytdlp(auto=short)):
            transcript = CaptionFallbackProvider().fetch_captions(VIDEO_ID, self.work)
        self.assertEqual(transcript.text, "hi there")
        self.assertFalse(transcript.is_valid)


if __name__ == "__main__":
    unittest.main()
