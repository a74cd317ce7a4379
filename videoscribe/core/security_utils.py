"""
Security utilities for videoscribe.
- Safe subprocess execution (argument arrays only, kill on timeout)
- Job workspace path containment
- Secret redaction for log output
"""

import re
import subprocess
import pathlib
import logging

logger = logging.getLogger(__name__)

_JOB_DIR_RE = re.compile(r'^[A-Za-z0-9_-]{1,64}$')


# ── Path safety ───────────────────────────────────────────────────────

def safe_job_dir(temp_root: pathlib.Path, job_id: str) -> pathlib.Path:
    """
    Build the per-job workspace path.  Enforces that the job id is a plain
    token and that realpath(result) stays under realpath(temp_root).
    """
    if not _JOB_DIR_RE.match(job_id or ''):
        raise ValueError(f"Unsafe job id: {job_id!r}")

    candidate = temp_root / job_id
    real_root = temp_root.resolve(strict=False)
    real_candidate = candidate.resolve(strict=False)
    if real_root not in real_candidate.parents:
        raise ValueError("Path traversal detected")
    return candidate


def redact(text: str, secret: str | None) -> str:
    """Remove a secret from text destined for logs or error messages."""
    if not text or not secret:
        return text
    return text.replace(secret, '***')


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False: drop any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """
    Run subprocess and capture stdout/stderr.
    On timeout the child is killed and subprocess.TimeoutExpired propagates.
    """
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        errors='replace',
        timeout=timeout,
        **kwargs,
    )
