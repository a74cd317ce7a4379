"""
Shared constants for videoscribe.
Single source of truth, imported by every other module.
"""

import os
import sys
import pathlib
import tempfile

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "videoscribe"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

if sys.platform == "darwin":
    APP_SUPPORT_DIR = HOME / "Library" / "Application Support" / APP_NAME
    APP_LOG_DIR = HOME / "Library" / "Logs" / APP_NAME
elif os.name == "nt":
    APP_SUPPORT_DIR = pathlib.Path(os.environ.get("APPDATA", HOME)) / APP_NAME
    APP_LOG_DIR = APP_SUPPORT_DIR / "logs"
else:
    APP_SUPPORT_DIR = pathlib.Path(
        os.environ.get("XDG_DATA_HOME", HOME / ".local" / "share")) / APP_NAME
    APP_LOG_DIR = APP_SUPPORT_DIR / "logs"

DB_PATH = APP_SUPPORT_DIR / "transcripts.db"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
DEFAULT_TEMP_ROOT = pathlib.Path(tempfile.gettempdir()) / APP_NAME / "jobs"

# Cookies
DEFAULT_COOKIES_PATH = APP_SUPPORT_DIR / "youtube_cookies.txt"

# ── Environment variables ────────────────────────────────────────────
ENV_API_KEY = "ASSEMBLYAI_API_KEY"
ENV_BASE_URL = "ASSEMBLYAI_BASE_URL"
ENV_TOOLCHAIN_DIRS = "VIDEOSCRIBE_FFMPEG_DIRS"
ENV_TEMP_ROOT = "VIDEOSCRIBE_TEMP_ROOT"
ENV_DB_PATH = "VIDEOSCRIBE_DB_PATH"

# ── Job status values (ordered) ──────────────────────────────────────
class JobStatus:
    PENDING = "pending"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    TRANSCRIBING = "transcribing"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"

TERMINAL_JOB_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}

# ── Chunk status ──────────────────────────────────────────────────────
class ChunkStatus:
    PENDING = "pending"
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    FAILED = "failed"

# ── Transcript sources ───────────────────────────────────────────────
class TranscriptSource:
    CACHE = "cache"
    PRIMARY = "primary-provider"
    FALLBACK = "fallback-provider"

PERSISTED_SOURCES = (TranscriptSource.PRIMARY, TranscriptSource.FALLBACK)

# ── Extraction failure reasons ───────────────────────────────────────
class ExtractionReason:
    PRIVATE = "private"
    UNAVAILABLE = "unavailable"
    AGE_RESTRICTED = "age-restricted"
    UNKNOWN = "unknown"

# Diagnostic substrings (lowercased) → reason, checked in order
EXTRACTION_DIAGNOSTICS = [
    ("private video", ExtractionReason.PRIVATE),
    ("this video is private", ExtractionReason.PRIVATE),
    ("sign in to confirm your age", ExtractionReason.AGE_RESTRICTED),
    ("age-restricted", ExtractionReason.AGE_RESTRICTED),
    ("age restricted", ExtractionReason.AGE_RESTRICTED),
    ("inappropriate for some users", ExtractionReason.AGE_RESTRICTED),
    ("video unavailable", ExtractionReason.UNAVAILABLE),
    ("has been removed", ExtractionReason.UNAVAILABLE),
    ("is not available", ExtractionReason.UNAVAILABLE),
    ("no longer available", ExtractionReason.UNAVAILABLE),
    ("does not exist", ExtractionReason.UNAVAILABLE),
]

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    INVALID_VIDEO_ID = "ERR_INVALID_VIDEO_ID"
    TOOL_UNAVAILABLE = "ERR_TOOL_UNAVAILABLE"
    EXTRACTION = "ERR_EXTRACTION"
    CHUNKING = "ERR_CHUNKING"
    VALIDATION = "ERR_VALIDATION"
    NO_FALLBACK = "ERR_NO_FALLBACK"
    API_KEY_MISSING = "ERR_API_KEY_MISSING"
    TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    UNEXPECTED = "ERR_UNEXPECTED"

    # Retryable
    UPLOAD_FAILED = "ERR_UPLOAD_FAILED"
    TRANSCRIBE_FAILED = "ERR_TRANSCRIBE_FAILED"
    TRANSCRIBE_TIMEOUT = "ERR_TRANSCRIBE_TIMEOUT"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"
    CHUNKS_FAILED = "ERR_CHUNKS_FAILED"

RETRYABLE_ERRORS = {
    ErrorCode.UPLOAD_FAILED,
    ErrorCode.TRANSCRIBE_FAILED,
    ErrorCode.TRANSCRIBE_TIMEOUT,
    ErrorCode.NETWORK_TRANSIENT,
    ErrorCode.CHUNKS_FAILED,
}

# ── Validity threshold ───────────────────────────────────────────────
MIN_TRANSCRIPT_CHARS = 50
MIN_TRANSCRIPT_WORDS = 10

# ── Toolchain ────────────────────────────────────────────────────────
FFMPEG_BINARY = "ffmpeg.exe" if os.name == "nt" else "ffmpeg"
FFPROBE_BINARY = "ffprobe.exe" if os.name == "nt" else "ffprobe"
YTDLP_BINARY = "yt-dlp"

if os.name == "nt":
    DEFAULT_TOOLCHAIN_DIRS = [
        r"C:\ffmpeg\bin",
        r"C:\Program Files\ffmpeg\bin",
        os.path.expandvars(r"%LOCALAPPDATA%\Microsoft\WinGet\Links"),
        os.path.expanduser(r"~\scoop\shims"),
        r"C:\ProgramData\chocolatey\bin",
    ]
elif sys.platform == "darwin":
    DEFAULT_TOOLCHAIN_DIRS = [
        "/opt/homebrew/bin",          # Apple Silicon default
        "/usr/local/bin",             # Intel Mac default
        "/opt/local/bin",             # MacPorts
    ]
else:
    DEFAULT_TOOLCHAIN_DIRS = [
        "/usr/local/bin",
        "/usr/bin",
        "/snap/bin",
        "/opt/ffmpeg/bin",
    ]

# ── Audio extraction ─────────────────────────────────────────────────
TARGET_AUDIO_FORMAT = "mp3"
# Unconverted audio-only formats, tried in preference order
RAW_FORMAT_SELECTOR = "bestaudio[ext=m4a]/bestaudio[ext=webm]/bestaudio[ext=mp3]/bestaudio"
# Extensions accepted after the downloader exits, in preference order
AUDIO_EXTENSIONS = (".mp3", ".m4a", ".webm", ".opus", ".ogg", ".wav", ".aac")
EXTRACT_TIMEOUT_SEC = 900

# ── Chunking ─────────────────────────────────────────────────────────
CHUNK_MINUTES = 12
CHUNK_BITRATE = "32k"
CHUNK_SAMPLE_RATE = 16000
CHUNK_TIMEOUT_SEC = 180

# ── Worker pool ──────────────────────────────────────────────────────
MAX_WORKERS = 5

class ChunkFailurePolicy:
    DEGRADE = "degrade"
    FAIL_FAST = "fail_fast"

GAP_MARKER_TEMPLATE = "[transcription unavailable: {start}-{end}]"
GAP_MARKER_PATTERN = r"\[transcription unavailable: [0-9:]+-[0-9:]+\]"

# ── AssemblyAI ────────────────────────────────────────────────────────
ASSEMBLYAI_API_BASE = "https://api.assemblyai.com/v2"
POLL_INTERVAL_SEC = 5
POLL_TIMEOUT_SEC = 600
UPLOAD_TIMEOUT_SEC = 300
REQUEST_TIMEOUT_SEC = 30

# ── Captions ─────────────────────────────────────────────────────────
CAPTION_LANGUAGES = "en.*"
CAPTIONS_TIMEOUT_SEC = 60

# ── Language detection ───────────────────────────────────────────────
BASELINE_LANGUAGE = "en"

# ── Cookies ───────────────────────────────────────────────────────────
class CookiesMode:
    OFF = "OFF"
    USE_FILE = "USE_FILE"

# ── Misc ──────────────────────────────────────────────────────────────
VIDEO_ID_RE = r'^[a-zA-Z0-9_-]{11}$'
YOUTUBE_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.)?youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?youtu\.be/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/embed/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/v/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/shorts/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/live/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?m\.youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
]
WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
