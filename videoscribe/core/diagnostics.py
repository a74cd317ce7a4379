"""
Diagnostics: tool version detection and system checks.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from videoscribe.core.security_utils import run_subprocess_capture
from videoscribe.core.config import AppConfig
from videoscribe.core.toolchain import ToolchainResolver, ToolchainPath
from videoscribe.core.constants import YTDLP_BINARY, DEFAULT_COOKIES_PATH
from videoscribe.core.transcribe_assemblyai import AssemblyAIClient

logger = logging.getLogger(__name__)


def _first_line_version(args: list[str]) -> str:
    try:
        result = run_subprocess_capture(args, timeout=10)
        if result.returncode == 0:
            lines = result.stdout.strip().splitlines()
            return lines[0] if lines else "Unknown"
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def get_ytdlp_version() -> str:
    """Return yt-dlp version string, or error message."""
    return _first_line_version([YTDLP_BINARY, "--version"])


def get_ffmpeg_version(toolchain: ToolchainPath | None) -> str:
    """Return ffmpeg version line for the resolved toolchain, or error message."""
    if toolchain is None:
        return "Not installed"
    return _first_line_version([str(toolchain.ffmpeg), "-version"])


def check_cookies_file(cookies_path: Path | None = None) -> dict:
    """Check if cookies.txt exists and return info."""
    path = cookies_path or DEFAULT_COOKIES_PATH
    info = {"detected": False, "path": str(path), "last_modified": None}
    if path.exists():
        info["detected"] = True
        stat = path.stat()
        info["last_modified"] = datetime.fromtimestamp(
            stat.st_mtime, tz=timezone.utc
        ).isoformat()
    return info


def check_cache(db_path: Path) -> dict:
    info = {"path": str(db_path), "exists": db_path.exists(), "entries": 0}
    if not info["exists"]:
        return info
    try:
        conn = sqlite3.connect(str(db_path))
        try:
            info["entries"] = conn.execute("SELECT COUNT(*) FROM transcripts").fetchone()[0]
        finally:
            conn.close()
    except sqlite3.Error as e:
        info["error"] = str(e)
    return info


def check_api_key(config: AppConfig) -> dict:
    if not config.has_api_key:
        return {"ok": False, "message": "No API key configured"}
    client = AssemblyAIClient(config.api_key, base_url=config.get('base_url'))
    ok, message = client.verify_api_key()
    return {"ok": ok, "message": message}


def get_diagnostics(config: AppConfig, verify_key: bool = False) -> dict:
    """Gather all diagnostic information. verify_key makes one network request."""
    toolchain = ToolchainResolver(config.toolchain_dirs).resolve()
    info = {
        "ytdlp_version": get_ytdlp_version(),
        "ffmpeg_version": get_ffmpeg_version(toolchain),
        "toolchain_dir": str(toolchain.directory) if toolchain else None,
        "can_probe": bool(toolchain and toolchain.can_probe),
        "api_key_configured": config.has_api_key,
        "base_url": config.get('base_url'),
        "temp_root": str(config.temp_root),
        "cache": check_cache(config.db_path),
        "cookies": check_cookies_file(config.cookies_path),
    }
    if verify_key:
        info["api_key_check"] = check_api_key(config)
    return info
