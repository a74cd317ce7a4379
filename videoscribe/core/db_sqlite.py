"""
SQLite persistence for videoscribe: the transcript cache and a job audit log.
Thread-safe via check_same_thread=False + explicit locking.
"""

import sqlite3
import threading
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path

from videoscribe.core.constants import (
    DB_PATH, JobStatus, TERMINAL_JOB_STATUSES, TranscriptSource, PERSISTED_SOURCES,
    MIN_TRANSCRIPT_CHARS, MIN_TRANSCRIPT_WORDS,
)
from videoscribe.core.error_codes import ValidationError
from videoscribe.core.models import (
    Transcript, TranscriptionJob, CacheVerification, CacheStats, is_valid_transcript,
)

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS transcripts (
    video_id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    language TEXT NOT NULL DEFAULT 'en',
    word_count INTEGER NOT NULL DEFAULT 0,
    duration_seconds REAL NOT NULL DEFAULT 0,
    source TEXT NOT NULL,
    created_at TEXT,
    updated_at TEXT,
    last_used_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_transcripts_last_used ON transcripts(last_used_at DESC);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    video_id TEXT NOT NULL,
    source_url TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    error_code TEXT,
    error_message TEXT,
    created_at TEXT,
    updated_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_video_id ON jobs(video_id);
"""

_TRANSCRIPT_COLUMNS = (
    "video_id, text, language, word_count, duration_seconds, source, created_at, last_used_at"
)


class TranscriptCache:
    """Transcript cache keyed by video_id (read-before-write, upsert)."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._lock = threading.Lock()
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        if str(self.db_path) != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _ensure_dirs(self):
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_transcript(row: sqlite3.Row) -> Transcript:
        return Transcript(
            video_id=row['video_id'],
            text=row['text'],
            language=row['language'],
            word_count=row['word_count'],
            duration_seconds=row['duration_seconds'],
            source=row['source'],
            created_at=row['created_at'],
            last_used_at=row['last_used_at'],
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> TranscriptionJob:
        return TranscriptionJob(**dict(row))

    def _fetch_row(self, video_id: str) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(
                f"SELECT {_TRANSCRIPT_COLUMNS} FROM transcripts WHERE video_id = ?",
                (video_id,),
            ).fetchone()

    # ── Transcript cache ──────────────────────────────────────────────

    def get(self, video_id: str) -> Transcript | None:
        """
        Return the cached transcript or None on a miss. Rows that do not
        meet the validity threshold are treated as misses.
        """
        row = self._fetch_row(video_id)
        if row is None:
            return None
        transcript = self._row_to_transcript(row)
        if not transcript.is_valid:
            logger.warning("Ignoring invalid cache row for %s", video_id)
            return None
        return transcript

    def touch(self, video_id: str) -> str:
        """Refresh last_used_at. Returns the new timestamp."""
        now = self._now()
        with self._lock:
            self.conn.execute(
                "UPDATE transcripts SET last_used_at = ? WHERE video_id = ?",
                (now, video_id),
            )
            self.conn.commit()
        return now

    def put(self, transcript: Transcript) -> None:
        """Upsert keyed by video_id; last write wins. Invalid text is rejected."""
        if not is_valid_transcript(transcript.text, transcript.word_count):
            raise ValidationError(
                f"Refusing to cache {transcript.video_id}: {len(transcript.text)} chars, "
                f"{transcript.word_count} words")
        if transcript.source not in PERSISTED_SOURCES:
            raise ValidationError(f"Refusing to cache source {transcript.source!r}")

        now = self._now()
        with self._lock:
            with self.conn:
                self.conn.execute(
                    """INSERT INTO transcripts
                       (video_id, text, language, word_count, duration_seconds,
                        source, created_at, updated_at, last_used_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(video_id) DO UPDATE SET
                         text = excluded.text,
                         language = excluded.language,
                         word_count = excluded.word_count,
                         duration_seconds = excluded.duration_seconds,
                         source = excluded.source,
                         updated_at = excluded.updated_at,
                         last_used_at = excluded.last_used_at""",
                    (transcript.video_id, transcript.text, transcript.language,
                     transcript.word_count, transcript.duration_seconds,
                     transcript.source, transcript.created_at or now, now, now),
                )
        logger.info("Cached transcript for %s (%d words, %s)",
                    transcript.video_id, transcript.word_count, transcript.source)

    def delete(self, video_id: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM transcripts WHERE video_id = ?", (video_id,))
            self.conn.commit()
            return cur.rowcount > 0

    def count(self, source: str | None = None) -> int:
        with self._lock:
            if source:
                row = self.conn.execute(
                    "SELECT COUNT(*) FROM transcripts WHERE source = ?", (source,)).fetchone()
            else:
                row = self.conn.execute("SELECT COUNT(*) FROM transcripts").fetchone()
        return row[0]

    def stats(self, recent_limit: int = 10) -> CacheStats:
        """Counts and word totals per source, plus the most recently used entries."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT source, COUNT(*), COALESCE(SUM(word_count), 0), AVG(word_count) "
                "FROM transcripts GROUP BY source ORDER BY source"
            ).fetchall()
            recent = self.conn.execute(
                "SELECT video_id, source, last_used_at FROM transcripts "
                "ORDER BY last_used_at DESC, created_at DESC LIMIT ?",
                (recent_limit,),
            ).fetchall()

        stats = CacheStats()
        for source, count, words, avg in rows:
            stats.by_source[source] = {
                "count": count,
                "total_words": words,
                "avg_words": round(avg or 0, 1),
            }
            stats.total_transcripts += count
            stats.total_words += words
        stats.recent = [
            {"video_id": r[0], "source": r[1], "last_used_at": r[2]} for r in recent
        ]
        return stats

    def list_entries(self, page: int = 1, limit: int = 20,
                     source: str | None = None) -> list[Transcript]:
        """Most recently used first; text included."""
        page = max(1, page)
        limit = max(1, min(limit, 500))
        sql = f"SELECT {_TRANSCRIPT_COLUMNS} FROM transcripts"
        params: list = []
        if source:
            sql += " WHERE source = ?"
            params.append(source)
        sql += " ORDER BY last_used_at DESC, created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, (page - 1) * limit])
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_transcript(r) for r in rows]

    def verify(self, video_id: str) -> CacheVerification:
        """Check a cached transcript's presence and integrity."""
        row = self._fetch_row(video_id)
        if row is None:
            return CacheVerification(exists=False, video_id=video_id,
                                     issues=["Transcript not found in cache"])

        transcript = self._row_to_transcript(row)
        issues = []
        if len(transcript.text) < MIN_TRANSCRIPT_CHARS:
            issues.append("Transcript too short")
        if transcript.word_count < MIN_TRANSCRIPT_WORDS:
            issues.append("Word count too low")
        if not transcript.language:
            issues.append("Language not detected")
        if transcript.source not in PERSISTED_SOURCES:
            issues.append(f"Unexpected source {transcript.source!r}")

        return CacheVerification(
            exists=True,
            video_id=video_id,
            text_length=len(transcript.text),
            word_count=transcript.word_count,
            language=transcript.language,
            source=transcript.source,
            created_at=transcript.created_at,
            last_used_at=transcript.last_used_at,
            is_valid=transcript.is_valid,
            issues=issues,
        )

    # ── Job audit log ─────────────────────────────────────────────────

    def create_job(self, video_id: str, source_url: str) -> TranscriptionJob:
        now = self._now()
        job = TranscriptionJob(
            id=str(uuid.uuid4()),
            video_id=video_id,
            source_url=source_url,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.conn.execute(
                """INSERT INTO jobs (id, video_id, source_url, status, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (job.id, job.video_id, job.source_url, job.status, job.created_at, job.updated_at),
            )
            self.conn.commit()
        return job

    def get_job(self, job_id: str) -> TranscriptionJob | None:
        with self._lock:
            row = self.conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def get_jobs_for_video(self, video_id: str) -> list[TranscriptionJob]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM jobs WHERE video_id = ? ORDER BY created_at DESC",
                (video_id,),
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def update_job_status(self, job_id: str, status: str, **extra):
        fields = {'status': status, 'updated_at': self._now()}
        if status in TERMINAL_JOB_STATUSES:
            fields['completed_at'] = fields['updated_at']
        fields.update(extra)
        sets = ', '.join(f"{k} = ?" for k in fields)
        vals = list(fields.values()) + [job_id]
        with self._lock:
            self.conn.execute(f"UPDATE jobs SET {sets} WHERE id = ?", vals)
            self.conn.commit()
