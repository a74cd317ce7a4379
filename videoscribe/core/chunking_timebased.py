"""
Time-based audio chunking using ffmpeg.
Chunks are contiguous, non-overlapping and cover [0, duration) exactly.
"""

import json
import math
import logging
import subprocess
from pathlib import Path

from videoscribe.core.security_utils import run_subprocess_capture
from videoscribe.core.error_codes import ChunkingError
from videoscribe.core.toolchain import ToolchainPath
from videoscribe.core.models import AudioChunk
from videoscribe.core.constants import (
    CHUNK_MINUTES, CHUNK_BITRATE, CHUNK_SAMPLE_RATE, CHUNK_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)


def get_audio_duration(audio_path: Path, ffprobe: Path | str = "ffprobe") -> float:
    """Get audio duration in seconds using ffprobe. Raises ChunkingError."""
    args = [
        str(ffprobe),
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(audio_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ChunkingError(f"ffprobe failed: {e}")

    if result.returncode != 0:
        raise ChunkingError(f"ffprobe failed (rc={result.returncode}): {(result.stderr or '')[:200]}")

    try:
        duration = float(result.stdout.strip())
    except ValueError:
        raise ChunkingError(f"ffprobe returned no duration: {result.stdout[:100]!r}")

    if not math.isfinite(duration) or duration <= 0:
        raise ChunkingError(f"Invalid audio duration: {duration}")
    return duration


def needs_chunking(duration_sec: float, chunk_duration_sec: float) -> bool:
    """Audio longer than a single chunk is split."""
    return duration_sec > chunk_duration_sec


def create_chunk_manifest(duration_sec: float, chunk_duration_sec: float) -> list[dict]:
    """
    Create chunk manifest entries based on duration.
    n = ceil(D / L); chunk i spans [i*L, min((i+1)*L, D)).
    """
    if duration_sec <= 0:
        return []
    if chunk_duration_sec <= 0:
        raise ValueError("chunk_duration_sec must be positive")

    count = math.ceil(duration_sec / chunk_duration_sec)
    return [
        {
            'idx': i,
            'start_sec': float(i * chunk_duration_sec),
            'end_sec': float(min((i + 1) * chunk_duration_sec, duration_sec)),
        }
        for i in range(count)
    ]


def chunk_file_name(base_name: str, idx: int) -> str:
    return f"{base_name}_chunk_{idx:03d}.mp3"


def split_audio_into_chunks(audio_path: Path, chunks_dir: Path,
                            manifest_entries: list[dict],
                            ffmpeg: Path | str = "ffmpeg",
                            bitrate: str = CHUNK_BITRATE) -> list[Path]:
    """
    Split audio into independent chunk files with a low-bitrate re-encode.
    Returns list of chunk file paths in index order.
    """
    chunks_dir.mkdir(parents=True, exist_ok=True)
    base_name = audio_path.stem
    chunk_paths = []

    for entry in manifest_entries:
        idx = entry['idx']
        start = entry['start_sec']
        duration = entry['end_sec'] - start

        chunk_file = chunks_dir / chunk_file_name(base_name, idx)

        args = [
            str(ffmpeg),
            "-y",
            "-v", "error",
            "-ss", f"{start:.3f}",
            "-t", f"{duration:.3f}",
            "-i", str(audio_path),
            "-vn",
            "-ac", "1",
            "-ar", str(CHUNK_SAMPLE_RATE),
            "-b:a", bitrate,
            "-codec:a", "libmp3lame",
            str(chunk_file),
        ]

        try:
            result = run_subprocess_capture(args, timeout=CHUNK_TIMEOUT_SEC)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ChunkingError(f"Chunk {idx} creation failed: {e}")

        if result.returncode != 0:
            raise ChunkingError(
                f"ffmpeg chunk {idx} failed: {result.stderr[:200] if result.stderr else 'unknown error'}")

        if not chunk_file.exists():
            raise ChunkingError(f"Chunk file {idx} not created")

        chunk_paths.append(chunk_file)

    manifest = {
        'chunking_mode': 'time_based',
        'source': audio_path.name,
        'bitrate': bitrate,
        'chunks': [
            {
                'idx': e['idx'],
                'file': chunk_file_name(base_name, e['idx']),
                'start_sec': e['start_sec'],
                'end_sec': e['end_sec'],
            }
            for e in manifest_entries
        ],
    }

    with open(chunks_dir / "manifest.json", 'w') as f:
        json.dump(manifest, f, indent=2)

    logger.info("Created %d chunks in %s", len(chunk_paths), chunks_dir)
    return chunk_paths


def create_audio_chunks(job_id: str, manifest_entries: list[dict],
                        chunk_paths: list[Path]) -> list[AudioChunk]:
    """Create AudioChunk objects from manifest entries."""
    return [
        AudioChunk(
            job_id=job_id,
            index=e['idx'],
            start_time=e['start_sec'],
            end_time=e['end_sec'],
            local_path=path,
        )
        for e, path in zip(manifest_entries, chunk_paths)
    ]


class AudioChunker:
    """Probe + slice. Requires a resolved toolchain."""

    def __init__(self, toolchain: ToolchainPath, bitrate: str = CHUNK_BITRATE):
        self.toolchain = toolchain
        self.bitrate = bitrate

    def probe(self, audio_path: Path) -> float:
        ffprobe = self.toolchain.ffprobe or "ffprobe"
        return get_audio_duration(audio_path, ffprobe)

    def chunk(self, audio_path: Path, chunk_minutes: float = CHUNK_MINUTES,
              job_id: str = "", duration_sec: float | None = None) -> list[AudioChunk]:
        """Slice audio_path into chunks under <audio dir>/chunks/."""
        if duration_sec is None:
            duration_sec = self.probe(audio_path)
        manifest = create_chunk_manifest(duration_sec, chunk_minutes * 60)
        chunks_dir = audio_path.parent / "chunks"
        paths = split_audio_into_chunks(audio_path, chunks_dir, manifest,
                                        self.toolchain.ffmpeg, self.bitrate)
        return create_audio_chunks(job_id, manifest, paths)
