"""
Cleanup: delete per-job audio artifacts on every exit path.
Errors are logged, never raised.
"""

import shutil
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def remove_path(path: Path) -> bool:
    """Delete a file or directory tree. Returns True if nothing is left."""
    if not path.exists():
        return True
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        logger.debug("Deleted: %s", path)
        return True
    except OSError as e:
        logger.warning("Failed to delete %s: %s", path, e)
        return False


def cleanup_chunk_files(chunk_paths: list[Path]) -> int:
    """Delete chunk files. Returns the number that could not be removed."""
    failures = 0
    for path in chunk_paths:
        if not remove_path(path):
            failures += 1
    return failures


def cleanup_job_artifacts(job_workspace: Path, keep_debug: bool = False):
    """
    Delete job artifacts after completion (success or failure).

    Deletes audio and chunks/. If keep_debug is True the chunk manifest is
    preserved; audio is always removed.
    """
    if not job_workspace.exists():
        return

    if not keep_debug:
        remove_path(job_workspace)
        return

    # Debug mode: drop audio, keep the manifest for inspection
    for path in job_workspace.rglob('*'):
        if path.is_file() and path.name != 'manifest.json':
            remove_path(path)
