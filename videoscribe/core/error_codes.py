"""
Standardised error handling for videoscribe.

Every pipeline failure is a JobError carrying a stable error code; the
subclasses below let the orchestrator route failures (fallback, cache skip,
terminal error) without string matching.
"""

from videoscribe.core.constants import ErrorCode, ExtractionReason, RETRYABLE_ERRORS


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else is_retryable(code)
        super().__init__(f"[{code}] {message}")


class InvalidVideoIdError(JobError):
    def __init__(self, value: str):
        super().__init__(ErrorCode.INVALID_VIDEO_ID, f"Not a valid video id or URL: {value!r}")


class ToolUnavailableError(JobError):
    """Conversion toolchain not found. Changes strategy, never aborts a job."""

    def __init__(self, binary: str, searched: list[str] | None = None):
        self.binary = binary
        self.searched = list(searched or [])
        super().__init__(ErrorCode.TOOL_UNAVAILABLE,
                         f"{binary} not found on PATH or in {len(self.searched)} candidate dirs")


class ExtractionError(JobError):
    def __init__(self, reason: str, message: str):
        self.reason = reason
        # private/unavailable/age-restricted will not fix themselves
        super().__init__(ErrorCode.EXTRACTION, f"{reason}: {message}",
                         retryable=reason == ExtractionReason.UNKNOWN)


class ChunkingError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.CHUNKING, message)


class UploadError(JobError):
    def __init__(self, message: str, code: str = ErrorCode.UPLOAD_FAILED):
        super().__init__(code, message)


class TranscriptionError(JobError):
    def __init__(self, message: str, code: str = ErrorCode.TRANSCRIBE_FAILED):
        super().__init__(code, message)


class PollTimeoutError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.TRANSCRIBE_TIMEOUT, message)


class AggregateTranscriptionError(JobError):
    """One or more chunks failed and the failure policy was not satisfied."""

    def __init__(self, failures: dict[int, JobError], total: int):
        self.failures = dict(failures)
        self.total = total
        first = failures[min(failures)] if failures else None
        detail = f"; first: {first.message}" if first else ""
        super().__init__(ErrorCode.CHUNKS_FAILED,
                         f"{len(failures)}/{total} chunks failed{detail}")


class ValidationError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.VALIDATION, message)


class NoFallbackError(JobError):
    """Terminal failure: the primary pipeline and the caption fallback both failed."""

    def __init__(self, fallback_reason: str, primary_reason: str | None = None,
                 transcript=None):
        self.fallback_reason = fallback_reason
        self.primary_reason = primary_reason
        # Best below-threshold text, if any; callers may show it but it is never cached
        self.transcript = transcript
        if primary_reason:
            message = f"Primary pipeline failed ({primary_reason}); fallback failed ({fallback_reason})"
        else:
            message = f"Fallback failed ({fallback_reason})"
        super().__init__(ErrorCode.NO_FALLBACK, message)
