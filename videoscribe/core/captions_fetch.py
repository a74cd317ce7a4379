"""
Fallback caption provider: platform-native captions via yt-dlp.

Creator-provided subtitles are preferred; auto-generated captions are
accepted when nothing else exists. Only used when the primary pipeline fails.
"""

import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from videoscribe.core.security_utils import run_subprocess_capture
from videoscribe.core.error_codes import NoFallbackError
from videoscribe.core.captions_parse import parse_vtt_to_text, vtt_duration
from videoscribe.core.language import LanguageDetector, CharacterRangeDetector
from videoscribe.core.models import Transcript, count_words
from videoscribe.core.url_parse import watch_url
from videoscribe.core.constants import (
    CookiesMode, DEFAULT_COOKIES_PATH, TranscriptSource,
    YTDLP_BINARY, CAPTION_LANGUAGES, CAPTIONS_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)


def _pick_caption_file(candidates: list[Path], auto_dir: Path) -> Path | None:
    """Prefer creator subtitles (fetched into the main dir) over auto captions."""
    creator = sorted(p for p in candidates if p.parent != auto_dir)
    if creator:
        return creator[0]
    auto = sorted(p for p in candidates if p.parent == auto_dir)
    return auto[0] if auto else None


class CaptionFallbackProvider:

    def __init__(self, detector: LanguageDetector | None = None,
                 languages: str = CAPTION_LANGUAGES,
                 cookies_mode: str = CookiesMode.OFF,
                 cookies_path: Path | None = None,
                 timeout: int = CAPTIONS_TIMEOUT_SEC):
        self.detector = detector or CharacterRangeDetector()
        self.languages = languages
        self.cookies_mode = cookies_mode
        self.cookies_path = cookies_path
        self.timeout = timeout

    def _build_args(self, video_id: str, out_dir: Path, auto: bool) -> list[str]:
        args = [
            YTDLP_BINARY,
            "--skip-download",
            "--write-auto-subs" if auto else "--write-subs",
            "--sub-langs", self.languages,
            "--sub-format", "vtt",
            "--no-playlist",
            "-o", str(out_dir / "%(id)s.%(ext)s"),
        ]
        if self.cookies_mode == CookiesMode.USE_FILE:
            cp = self.cookies_path or DEFAULT_COOKIES_PATH
            if cp.exists():
                args.extend(["--cookies", str(cp)])
        args.append(watch_url(video_id))
        return args

    def _download(self, video_id: str, out_dir: Path, auto: bool) -> list[Path]:
        out_dir.mkdir(parents=True, exist_ok=True)
        try:
            result = run_subprocess_capture(self._build_args(video_id, out_dir, auto),
                                            timeout=self.timeout)
        except FileNotFoundError:
            raise NoFallbackError(f"{YTDLP_BINARY} is not installed")
        except subprocess.TimeoutExpired:
            logger.warning("Caption fetch timed out for %s (auto=%s)", video_id, auto)
            return []

        found = sorted(out_dir.glob(f"{video_id}*.vtt"))
        if not found and result.returncode != 0:
            logger.info("Caption fetch rc=%s for %s: %s", result.returncode, video_id,
                        (result.stderr or '').strip()[-200:])
        return found

    def fetch_vtt(self, video_id: str, work_dir: Path) -> Path | None:
        """Download the best caption file for video_id, or None."""
        creator = self._download(video_id, work_dir, auto=False)
        if creator:
            return _pick_caption_file(creator, work_dir / "auto")
        auto = self._download(video_id, work_dir / "auto", auto=True)
        return _pick_caption_file(auto, work_dir / "auto")

    def fetch_captions(self, video_id: str, work_dir: Path) -> Transcript:
        """
        Return captions as a Transcript tagged fallback-provider.
        The text is not checked against the validity threshold here; the
        caller decides whether it may be cached. Raises NoFallbackError.
        """
        vtt_path = self.fetch_vtt(video_id, work_dir)
        if vtt_path is None:
            raise NoFallbackError("no captions available")

        try:
            text = parse_vtt_to_text(vtt_path)
            duration = vtt_duration(vtt_path.read_text(encoding='utf-8', errors='replace'))
        except OSError as e:
            raise NoFallbackError(f"caption file unreadable: {e}")

        if not text:
            raise NoFallbackError("captions contained no text")

        logger.info("Fallback captions for %s: %d chars from %s", video_id, len(text), vtt_path.name)
        return Transcript(
            video_id=video_id,
            text=text,
            language=self.detector.detect(text),
            word_count=count_words(text),
            duration_seconds=duration,
            source=TranscriptSource.FALLBACK,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
