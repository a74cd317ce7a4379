"""
Audio extraction via yt-dlp.

With ffmpeg available the audio is converted to a single mp3 target; without
it the best unconverted audio-only stream is taken as-is.
"""

import logging
import subprocess
from pathlib import Path

from videoscribe.core.security_utils import run_subprocess_capture
from videoscribe.core.error_codes import ExtractionError
from videoscribe.core.toolchain import ToolchainPath
from videoscribe.core.url_parse import watch_url
from videoscribe.core.constants import (
    ExtractionReason, EXTRACTION_DIAGNOSTICS, CookiesMode, DEFAULT_COOKIES_PATH,
    YTDLP_BINARY, TARGET_AUDIO_FORMAT, RAW_FORMAT_SELECTOR, AUDIO_EXTENSIONS,
    EXTRACT_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)


def classify_extraction_failure(diagnostics: str) -> str:
    """Map downloader diagnostic text to an ExtractionReason."""
    lowered = (diagnostics or '').lower()
    for needle, reason in EXTRACTION_DIAGNOSTICS:
        if needle in lowered:
            return reason
    return ExtractionReason.UNKNOWN


def find_audio_file(output_dir: Path, base_name: str, prefer_raw: bool = False) -> Path | None:
    """
    Return the produced audio file, honouring extension preference order.
    With prefer_raw the conversion target is tried last: after an interrupted
    run it may be half-written while the downloaded container is complete.
    """
    extensions = list(AUDIO_EXTENSIONS)
    if prefer_raw:
        target = f".{TARGET_AUDIO_FORMAT}"
        extensions = [e for e in extensions if e != target] + [target]
    for ext in extensions:
        candidate = output_dir / f"{base_name}{ext}"
        if candidate.exists() and candidate.stat().st_size > 0:
            return candidate
    return None


def build_ytdlp_args(video_id: str, output_dir: Path,
                     toolchain: ToolchainPath | None,
                     cookies_mode: str = CookiesMode.OFF,
                     cookies_path: Path | None = None) -> list[str]:
    output_template = str(output_dir / f"{video_id}.%(ext)s")

    args = [
        YTDLP_BINARY,
        "--no-playlist",
        "--no-progress",
        "-o", output_template,
    ]

    if toolchain is not None:
        args.extend([
            "-f", "bestaudio/best",
            "--extract-audio",
            "--audio-format", TARGET_AUDIO_FORMAT,
            "--ffmpeg-location", str(toolchain.directory),
        ])
    else:
        # No converter: take an audio-only container the provider can ingest directly
        args.extend(["-f", RAW_FORMAT_SELECTOR])

    if cookies_mode == CookiesMode.USE_FILE:
        cp = cookies_path or DEFAULT_COOKIES_PATH
        if cp.exists():
            args.extend(["--cookies", str(cp)])

    args.append(watch_url(video_id))
    return args


class AudioExtractor:
    """Downloads a video's audio track into a job workspace."""

    def __init__(self, toolchain: ToolchainPath | None,
                 cookies_mode: str = CookiesMode.OFF,
                 cookies_path: Path | None = None,
                 timeout: int = EXTRACT_TIMEOUT_SEC):
        self.toolchain = toolchain
        self.cookies_mode = cookies_mode
        self.cookies_path = cookies_path
        self.timeout = timeout

    def extract(self, video_id: str, output_dir: Path) -> Path:
        """
        Download audio for video_id into output_dir.
        Returns path to the audio file; raises ExtractionError.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        args = build_ytdlp_args(video_id, output_dir, self.toolchain,
                                self.cookies_mode, self.cookies_path)

        if self.toolchain is None:
            logger.info("ffmpeg unavailable — requesting unconverted audio for %s", video_id)

        try:
            result = run_subprocess_capture(args, timeout=self.timeout)
        except FileNotFoundError:
            raise ExtractionError(ExtractionReason.UNKNOWN, f"{YTDLP_BINARY} is not installed")
        except subprocess.TimeoutExpired:
            # The download stage may have finished before the timeout hit
            produced = find_audio_file(output_dir, video_id, prefer_raw=True)
            if produced:
                logger.warning("yt-dlp timed out after producing %s — using it", produced.name)
                return produced
            raise ExtractionError(ExtractionReason.UNKNOWN,
                                  f"yt-dlp timed out after {self.timeout}s")

        produced = find_audio_file(output_dir, video_id)
        if produced:
            if result.returncode != 0:
                # Typically a post-processing failure after a good download
                logger.warning("yt-dlp exited rc=%s but produced %s — using it",
                               result.returncode, produced.name)
            logger.info("Extracted audio: %s", produced)
            return produced

        diagnostics = "\n".join(filter(None, [result.stderr, result.stdout]))
        reason = classify_extraction_failure(diagnostics)
        tail = (result.stderr or result.stdout or "no output").strip()[-300:]
        raise ExtractionError(reason, f"yt-dlp produced no audio (rc={result.returncode}): {tail}")
