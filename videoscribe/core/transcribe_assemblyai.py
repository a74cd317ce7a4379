"""
AssemblyAI speech-to-text integration (upload → create task → poll).
Includes exponential backoff for rate-limit (429) responses.
"""

import json
import logging
import random
import threading
import time
from pathlib import Path

import requests

from videoscribe.core.error_codes import (
    JobError, UploadError, TranscriptionError, PollTimeoutError,
)
from videoscribe.core.models import RemoteResult, RemoteTranscriptionTask
from videoscribe.core.security_utils import redact
from videoscribe.core.constants import (
    ErrorCode, ASSEMBLYAI_API_BASE, POLL_INTERVAL_SEC, POLL_TIMEOUT_SEC,
    UPLOAD_TIMEOUT_SEC, REQUEST_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)

_MAX_RATE_LIMIT_RETRIES = 4
_RATE_LIMIT_BASE_DELAY = 2.0   # seconds, doubled on each retry with jitter
_TRANSIENT_STATUS = {429, 500, 502, 503, 504}


class AssemblyAIClient:
    """Thin protocol client. One instance is shared by all worker threads."""

    def __init__(self, api_key: str, base_url: str = ASSEMBLYAI_API_BASE,
                 poll_interval: float = POLL_INTERVAL_SEC,
                 poll_timeout: float = POLL_TIMEOUT_SEC,
                 upload_timeout: float = UPLOAD_TIMEOUT_SEC,
                 session: requests.Session | None = None,
                 sleep=time.sleep, clock=time.monotonic):
        if not api_key:
            raise JobError(ErrorCode.API_KEY_MISSING, "AssemblyAI API key not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.upload_timeout = upload_timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

    def _headers(self, content_type: str | None = None) -> dict:
        headers = {"Authorization": self.api_key}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _error_body(self, resp) -> str:
        # Sanitize error message (never log API key)
        body = resp.text[:300] if resp.text else "No response body"
        return redact(body, self.api_key)

    def _backoff(self, attempt: int, what: str):
        # Exponential backoff with jitter: 2s, 4s, 8s, 16s (+/- 10%)
        delay = _RATE_LIMIT_BASE_DELAY * (2 ** attempt)
        delay *= 1 + random.uniform(-0.1, 0.1)
        logger.warning("%s rate limited (429) — retrying in %.1fs (attempt %d/%d)",
                       what, delay, attempt + 1, _MAX_RATE_LIMIT_RETRIES)
        self._sleep(delay)

    # ── Upload ────────────────────────────────────────────────────────

    def upload(self, audio_path: Path) -> str:
        """Upload raw audio bytes. Returns the provider-side upload URL."""
        try:
            file_size = audio_path.stat().st_size
        except OSError as e:
            raise UploadError(f"Cannot read {audio_path.name}: {e}")
        # Adaptive timeout: ~1 min per 10MB on top of the configured floor
        timeout_sec = max(self.upload_timeout, int(file_size / (10 * 1024 * 1024) * 60) + 60)

        for attempt in range(_MAX_RATE_LIMIT_RETRIES + 1):
            try:
                with open(audio_path, 'rb') as f:
                    resp = self.session.post(
                        f"{self.base_url}/upload",
                        headers=self._headers("application/octet-stream"),
                        data=f,
                        timeout=timeout_sec,
                    )
            except requests.exceptions.Timeout:
                raise UploadError(f"Upload of {audio_path.name} timed out after {timeout_sec}s")
            except requests.exceptions.RequestException as e:
                raise UploadError(f"Upload of {audio_path.name} failed: {type(e).__name__}",
                                  code=ErrorCode.NETWORK_TRANSIENT)
            except OSError as e:
                raise UploadError(f"Cannot read {audio_path.name}: {e}")

            if resp.status_code == 429 and attempt < _MAX_RATE_LIMIT_RETRIES:
                self._backoff(attempt, "Upload")
                continue

            if resp.status_code != 200:
                raise UploadError(f"Upload returned {resp.status_code}: {self._error_body(resp)}")

            try:
                upload_url = resp.json().get('upload_url')
            except (json.JSONDecodeError, ValueError, AttributeError):
                upload_url = None
            if not upload_url:
                raise UploadError("Upload response did not contain upload_url")

            logger.info("Uploaded %s (%d bytes)", audio_path.name, file_size)
            return upload_url

        raise UploadError(f"Upload rate limited (429) after {_MAX_RATE_LIMIT_RETRIES} retries")

    # ── Create task ───────────────────────────────────────────────────

    @staticmethod
    def build_task_payload(upload_url: str, auxiliary: bool = False) -> dict:
        payload = {
            "audio_url": upload_url,
            "language_detection": True,
        }
        if auxiliary:
            payload.update({
                "summarization": True,
                "summary_model": "informative",
                "summary_type": "paragraph",
                "auto_highlights": True,
                "sentiment_analysis": True,
            })
        return payload

    def create_task(self, upload_url: str, auxiliary: bool = False) -> str:
        """Request transcription with language auto-detection. Returns task id."""
        payload = self.build_task_payload(upload_url, auxiliary)

        for attempt in range(_MAX_RATE_LIMIT_RETRIES + 1):
            try:
                resp = self.session.post(
                    f"{self.base_url}/transcript",
                    headers=self._headers("application/json"),
                    json=payload,
                    timeout=REQUEST_TIMEOUT_SEC,
                )
            except requests.exceptions.RequestException as e:
                raise TranscriptionError(f"Create task failed: {type(e).__name__}",
                                         code=ErrorCode.NETWORK_TRANSIENT)

            if resp.status_code == 429 and attempt < _MAX_RATE_LIMIT_RETRIES:
                self._backoff(attempt, "Create task")
                continue

            if resp.status_code not in (200, 201):
                raise TranscriptionError(
                    f"Create task returned {resp.status_code}: {self._error_body(resp)}")

            try:
                task_id = resp.json().get('id')
            except (json.JSONDecodeError, ValueError, AttributeError):
                task_id = None
            if not task_id:
                raise TranscriptionError("Create task response did not contain an id")

            logger.info("Transcription task created: %s", task_id)
            return task_id

        raise TranscriptionError(f"Create task rate limited (429) after {_MAX_RATE_LIMIT_RETRIES} retries")

    # ── Poll ──────────────────────────────────────────────────────────

    def _poll_once(self, task_id: str) -> dict | None:
        """One status request. Returns None for transient failures."""
        try:
            resp = self.session.get(
                f"{self.base_url}/transcript/{task_id}",
                headers=self._headers(),
                timeout=REQUEST_TIMEOUT_SEC,
            )
        except requests.exceptions.RequestException as e:
            logger.debug("Transient poll error for %s: %s", task_id, type(e).__name__)
            return None

        if resp.status_code == 404:
            raise TranscriptionError(f"Task {task_id} not found", code=ErrorCode.TASK_NOT_FOUND)
        if resp.status_code in _TRANSIENT_STATUS:
            logger.debug("Transient poll status %s for %s", resp.status_code, task_id)
            return None
        if resp.status_code != 200:
            raise TranscriptionError(
                f"Poll returned {resp.status_code}: {self._error_body(resp)}")

        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            logger.debug("Unparseable poll response for %s", task_id)
            return None
        if not isinstance(data, dict):
            raise TranscriptionError(
                f"Poll for {task_id} returned {type(data).__name__}, expected an object")
        return data

    def poll(self, task_id: str, task: RemoteTranscriptionTask | None = None,
             abort: threading.Event | None = None) -> RemoteResult:
        """
        Poll every poll_interval seconds until the task completes.
        Raises PollTimeoutError past poll_timeout, TranscriptionError on
        provider-reported failure or unknown task id, or when abort is set
        (checked once per poll).
        """
        deadline = self._clock() + self.poll_timeout
        attempts = 0

        while True:
            if abort is not None and abort.is_set():
                raise TranscriptionError(f"Polling for task {task_id} abandoned after {attempts} polls")
            attempts += 1
            data = self._poll_once(task_id)
            if task is not None:
                task.attempts = attempts
                task.last_polled_at = time.time()

            if data is not None:
                status = data.get('status')
                if status == 'completed':
                    return parse_remote_result(task_id, data)
                if status == 'error':
                    raise TranscriptionError(f"Transcription failed: {data.get('error') or 'unknown error'}")
                logger.debug("Task %s status=%s (poll %d)", task_id, status, attempts)

            if self._clock() + self.poll_interval > deadline:
                raise PollTimeoutError(
                    f"Task {task_id} not completed after {self.poll_timeout:.0f}s ({attempts} polls)")
            self._sleep(self.poll_interval)

    # ── Convenience ───────────────────────────────────────────────────

    def transcribe_file(self, audio_path: Path, auxiliary: bool = False,
                        task: RemoteTranscriptionTask | None = None) -> RemoteResult:
        upload_url = self.upload(audio_path)
        task_id = self.create_task(upload_url, auxiliary=auxiliary)
        if task is not None:
            task.external_task_id = task_id
        return self.poll(task_id, task)

    def verify_api_key(self) -> tuple[bool, str]:
        """
        Verify the API key with a lightweight request.
        Returns (success: bool, message: str).
        """
        try:
            resp = self.session.get(
                f"{self.base_url}/transcript",
                headers=self._headers(),
                params={"limit": 1},
                timeout=10,
            )
        except requests.exceptions.ConnectionError:
            return False, "Network error — could not reach AssemblyAI"
        except requests.exceptions.Timeout:
            return False, "Network error — request timed out"
        except requests.exceptions.RequestException as e:
            return False, f"Network error: {type(e).__name__}"

        if resp.status_code == 200:
            return True, "Key verified"
        if resp.status_code in (401, 403):
            return False, "Key invalid or rejected"
        return False, f"Unexpected response: {resp.status_code}"


def parse_remote_result(task_id: str, data: dict) -> RemoteResult:
    """Build a RemoteResult from a completed task payload."""
    highlights = data.get('auto_highlights_result') or {}
    return RemoteResult(
        task_id=task_id,
        text=(data.get('text') or '').strip(),
        language_code=data.get('language_code'),
        audio_duration=float(data.get('audio_duration') or 0),
        summary=data.get('summary') or '',
        highlights=highlights.get('results') or [] if isinstance(highlights, dict) else [],
    )
