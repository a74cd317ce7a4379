"""
Transcription worker pool.
Dispatches chunks concurrently (upload → create task → poll) and merges the
results by chunk index once every dispatched task has resolved.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field

from videoscribe.core.constants import ChunkStatus, ChunkFailurePolicy, ErrorCode, MAX_WORKERS
from videoscribe.core.error_codes import (
    JobError, TranscriptionError, PollTimeoutError, AggregateTranscriptionError,
)
from videoscribe.core.models import AudioChunk, RemoteTranscriptionTask, RemoteResult
from videoscribe.core.merge import merge_indexed_texts, dominant_language
from videoscribe.core.cleanup import cleanup_chunk_files
from videoscribe.core.transcribe_assemblyai import AssemblyAIClient

logger = logging.getLogger(__name__)


@dataclass
class PoolResult:
    text: str
    language: str | None
    total: int
    tasks: dict[int, RemoteTranscriptionTask] = field(default_factory=dict)
    failures: dict[int, JobError] = field(default_factory=dict)

    @property
    def completed(self) -> int:
        return self.total - len(self.failures)

    @property
    def partial(self) -> bool:
        return bool(self.failures)


class TranscriptionWorkerPool:

    def __init__(self, client: AssemblyAIClient, max_workers: int = MAX_WORKERS,
                 failure_policy: str = ChunkFailurePolicy.DEGRADE,
                 deadline_sec: float = 0):
        self.client = client
        self.max_workers = max(1, max_workers)
        self.failure_policy = failure_policy
        self.deadline_sec = deadline_sec

    def transcribe(self, chunks: list[AudioChunk]) -> PoolResult:
        """
        Transcribe all chunks. Chunk files are deleted before this returns
        or raises, whatever the outcome.
        """
        try:
            return self._run(chunks)
        finally:
            failed = cleanup_chunk_files([c.local_path for c in chunks])
            if failed:
                logger.warning("%d chunk files could not be removed", failed)

    def _transcribe_chunk(self, chunk: AudioChunk, task: RemoteTranscriptionTask,
                          abort: threading.Event) -> RemoteResult:
        try:
            return self._attempt_chunk(chunk, task, abort)
        except JobError as e:
            # Auto-retry once for retryable errors; a timed-out poll is not retried
            if not e.retryable or e.code == ErrorCode.TRANSCRIBE_TIMEOUT or abort.is_set():
                raise
            logger.info("Retrying chunk %d after %s: %s", chunk.index, e.code, e.message)
            task.retries += 1
            return self._attempt_chunk(chunk, task, abort)

    def _attempt_chunk(self, chunk: AudioChunk, task: RemoteTranscriptionTask,
                       abort: threading.Event) -> RemoteResult:
        if abort.is_set():
            raise TranscriptionError(f"Chunk {chunk.index} skipped after earlier failure")

        upload_url = self.client.upload(chunk.local_path)
        chunk.status = ChunkStatus.UPLOADED

        if abort.is_set():
            raise TranscriptionError(f"Chunk {chunk.index} skipped after earlier failure")

        # Chunk-level tasks never request the expensive auxiliary analyses
        task.external_task_id = self.client.create_task(upload_url, auxiliary=False)
        chunk.status = ChunkStatus.TRANSCRIBING

        return self.client.poll(task.external_task_id, task, abort=abort)

    def _run(self, chunks: list[AudioChunk]) -> PoolResult:
        total = len(chunks)
        if total == 0:
            raise AggregateTranscriptionError({}, 0)

        tasks = {c.index: RemoteTranscriptionTask(chunk_index=c.index) for c in chunks}
        texts: dict[int, str | None] = {}
        languages: dict[int, str | None] = {}
        failures: dict[int, JobError] = {}
        abort = threading.Event()
        fail_fast = self.failure_policy == ChunkFailurePolicy.FAIL_FAST
        timeout = self.deadline_sec or None
        started = time.monotonic()

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, total),
                                      thread_name_prefix="stt-worker")
        futures = {
            executor.submit(self._transcribe_chunk, chunk, tasks[chunk.index], abort): chunk
            for chunk in chunks
        }
        logger.info("Dispatched %d chunks to %d workers", total, min(self.max_workers, total))

        try:
            for future in as_completed(futures, timeout=timeout):
                chunk = futures[future]
                task = tasks[chunk.index]
                if future.cancelled():
                    chunk.status = ChunkStatus.FAILED
                    failures[chunk.index] = TranscriptionError(f"Chunk {chunk.index} cancelled")
                    continue
                try:
                    result = future.result()
                except JobError as e:
                    error = e
                except Exception as e:
                    logger.error("Unexpected error on chunk %d: %s", chunk.index, e, exc_info=True)
                    error = TranscriptionError(f"Chunk {chunk.index} crashed: {type(e).__name__}: {e}")
                else:
                    chunk.status = ChunkStatus.COMPLETED
                    task.text = result.text
                    task.language_code = result.language_code
                    texts[chunk.index] = result.text
                    languages[chunk.index] = result.language_code
                    logger.info("Chunk %d/%d completed (%d chars)", chunk.index + 1, total, len(result.text))
                    continue

                chunk.status = ChunkStatus.FAILED
                task.error = error.message
                failures[chunk.index] = error
                logger.warning("Chunk %d/%d failed: %s", chunk.index + 1, total, error.message)
                if fail_fast and not abort.is_set():
                    abort.set()
                    for pending in futures:
                        pending.cancel()
        except FuturesTimeout:
            abort.set()
            raise PollTimeoutError(
                f"Job deadline of {self.deadline_sec:.0f}s exceeded with "
                f"{len(texts)}/{total} chunks done")
        finally:
            # Workers see abort before their next poll, so this returns within one poll interval
            executor.shutdown(wait=True, cancel_futures=True)

        logger.info("Worker pool finished in %.1fs: %d/%d chunks ok",
                    time.monotonic() - started, total - len(failures), total)

        if failures and (fail_fast or len(failures) == total):
            raise AggregateTranscriptionError(failures, total)

        spans = {c.index: (c.start_time, c.end_time) for c in chunks}
        text = merge_indexed_texts(texts, total, spans)
        language = dominant_language([languages.get(i) for i in range(total)], default=None)
        return PoolResult(text=text, language=language, total=total,
                          tasks=tasks, failures=failures)
