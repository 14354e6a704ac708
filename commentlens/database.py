"""SQLite database layer for Comment Lens.

This module handles all database operations including:
- Schema creation
- Posts and comments (the read-only input of the pipeline)
- Analysis job records (persisted on every state transition)
- Analysis results (the persisted tier of the result cache)
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator

from commentlens.models import AnalysisJob, AnalysisResult, Comment, JobStatus, Post


# SQL Schema
SCHEMA = """
-- Posts owned by users
CREATE TABLE IF NOT EXISTS posts (
    post_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    platform TEXT NOT NULL DEFAULT 'generic',
    title TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

-- Comments for posts
CREATE TABLE IF NOT EXISTS comments (
    comment_id TEXT PRIMARY KEY,
    post_id TEXT NOT NULL,
    text TEXT NOT NULL,
    like_count INTEGER DEFAULT 0,
    author TEXT NOT NULL DEFAULT '',
    published_at REAL NOT NULL,
    FOREIGN KEY (post_id) REFERENCES posts(post_id)
);

-- Analysis jobs
CREATE TABLE IF NOT EXISTS analysis_jobs (
    job_id TEXT PRIMARY KEY,
    post_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    comment_ids_json TEXT NOT NULL,
    status TEXT NOT NULL,
    progress INTEGER DEFAULT 0,
    current_step INTEGER DEFAULT 0,
    total_steps INTEGER DEFAULT 5,
    step_description TEXT,
    error_message TEXT,
    attempts INTEGER DEFAULT 0,
    max_attempts INTEGER DEFAULT 3,
    result_id TEXT,
    created_at REAL NOT NULL,
    started_at REAL,
    completed_at REAL
);

-- Analysis results (immutable, one per successful job)
CREATE TABLE IF NOT EXISTS analysis_results (
    result_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    post_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    quality_score REAL NOT NULL,
    result_json TEXT NOT NULL,
    analyzed_at REAL NOT NULL
);

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_comments_post_id ON comments(post_id);
CREATE INDEX IF NOT EXISTS idx_jobs_user_id ON analysis_jobs(user_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON analysis_jobs(status);
CREATE INDEX IF NOT EXISTS idx_results_post_id ON analysis_results(post_id, analyzed_at);
CREATE INDEX IF NOT EXISTS idx_results_job_id ON analysis_results(job_id);
CREATE INDEX IF NOT EXISTS idx_results_user_id ON analysis_results(user_id);
"""

JOB_COLUMNS = (
    "job_id", "post_id", "user_id", "comment_ids_json", "status", "progress",
    "current_step", "total_steps", "step_description", "error_message",
    "attempts", "max_attempts", "result_id", "created_at", "started_at",
    "completed_at",
)


class Database:
    """SQLite database manager for Comment Lens."""

    def __init__(self, db_path: str | Path = "./comment_lens.db"):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = Path(db_path)
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections.

        Yields:
            SQLite connection with row factory set.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the schema if it does not exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # -------------------------------------------------------------------------
    # Post operations
    # -------------------------------------------------------------------------

    def insert_post(self, post: Post) -> None:
        """Insert or update a post."""
        with self.connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO posts
                (post_id, user_id, platform, title, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (post.post_id, post.user_id, post.platform, post.title, post.created_at),
            )

    def get_post(self, post_id: str) -> Post | None:
        """Get a post by ID.

        Args:
            post_id: Post ID.

        Returns:
            Post if found, None otherwise.
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM posts WHERE post_id = ?", (post_id,)
            ).fetchone()
            if row:
                return Post(**dict(row))
            return None

    def list_posts(self, user_id: str | None = None) -> list[Post]:
        """List posts, optionally for a single user."""
        with self.connection() as conn:
            if user_id is None:
                rows = conn.execute(
                    "SELECT * FROM posts ORDER BY created_at DESC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM posts WHERE user_id = ? ORDER BY created_at DESC",
                    (user_id,),
                ).fetchall()
            return [Post(**dict(row)) for row in rows]

    # -------------------------------------------------------------------------
    # Comment operations
    # -------------------------------------------------------------------------

    def insert_comments(self, comments: list[Comment]) -> None:
        """Insert or update multiple comments."""
        with self.connection() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO comments
                (comment_id, post_id, text, like_count, author, published_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (c.comment_id, c.post_id, c.text, c.like_count, c.author, c.published_at)
                    for c in comments
                ],
            )

    def find_comments(self, post_id: str) -> list[Comment]:
        """Get all comments of a post, oldest first."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT comment_id, post_id, text, like_count, author, published_at
                FROM comments WHERE post_id = ?
                ORDER BY published_at ASC, comment_id ASC
                """,
                (post_id,),
            ).fetchall()
            return [Comment(**dict(row)) for row in rows]

    def get_comments(self, comment_ids: list[str]) -> list[Comment]:
        """Get comments by ID, in the order the IDs were given.

        Unknown IDs are skipped.
        """
        if not comment_ids:
            return []
        placeholders = ",".join("?" * len(comment_ids))
        with self.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT comment_id, post_id, text, like_count, author, published_at
                FROM comments WHERE comment_id IN ({placeholders})
                """,
                comment_ids,
            ).fetchall()
        by_id = {row["comment_id"]: Comment(**dict(row)) for row in rows}
        return [by_id[cid] for cid in comment_ids if cid in by_id]

    def count_comments(self, post_id: str) -> int:
        """Count the comments of a post."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM comments WHERE post_id = ?", (post_id,)
            ).fetchone()
            return row["count"]

    # -------------------------------------------------------------------------
    # Job operations
    # -------------------------------------------------------------------------

    def save_job(self, job: AnalysisJob) -> None:
        """Insert or update a job record."""
        placeholders = ", ".join("?" * len(JOB_COLUMNS))
        with self.connection() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO analysis_jobs ({', '.join(JOB_COLUMNS)}) "
                f"VALUES ({placeholders})",
                (
                    job.job_id,
                    job.post_id,
                    job.user_id,
                    json.dumps(job.comment_ids),
                    job.status.value,
                    job.progress,
                    job.current_step,
                    job.total_steps,
                    job.step_description,
                    job.error_message,
                    job.attempts,
                    job.max_attempts,
                    job.result_id,
                    job.created_at,
                    job.started_at,
                    job.completed_at,
                ),
            )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> AnalysisJob:
        data = dict(row)
        data["comment_ids"] = json.loads(data.pop("comment_ids_json") or "[]")
        data["status"] = JobStatus(data["status"])
        return AnalysisJob(**data)

    def get_job(self, job_id: str) -> AnalysisJob | None:
        """Get a job by ID."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM analysis_jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
            if row:
                return self._row_to_job(row)
            return None

    def list_jobs(self, user_id: str | None = None, limit: int = 20) -> list[AnalysisJob]:
        """List jobs newest first, optionally for a single user."""
        with self.connection() as conn:
            if user_id is None:
                rows = conn.execute(
                    "SELECT * FROM analysis_jobs ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM analysis_jobs WHERE user_id = ?
                    ORDER BY created_at DESC LIMIT ?
                    """,
                    (user_id, limit),
                ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def delete_finished_jobs(self, older_than: float) -> int:
        """Delete terminal job records completed before a timestamp.

        Args:
            older_than: Unix timestamp cutoff.

        Returns:
            Number of job records deleted.
        """
        terminal = [JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value]
        with self.connection() as conn:
            cursor = conn.execute(
                """
                DELETE FROM analysis_jobs
                WHERE status IN (?, ?, ?) AND completed_at IS NOT NULL AND completed_at < ?
                """,
                (*terminal, older_than),
            )
            return cursor.rowcount

    # -------------------------------------------------------------------------
    # Result operations
    # -------------------------------------------------------------------------

    def save_analysis_result(self, result: AnalysisResult) -> None:
        """Persist an analysis result."""
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO analysis_results
                (result_id, job_id, post_id, user_id, quality_score, result_json, analyzed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.result_id,
                    result.job_id,
                    result.post_id,
                    result.user_id,
                    result.quality_score,
                    json.dumps(result.to_dict()),
                    result.analyzed_at,
                ),
            )

    def find_latest_result(self, post_id: str) -> AnalysisResult | None:
        """Get the most recent result for a post."""
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT result_json FROM analysis_results WHERE post_id = ?
                ORDER BY analyzed_at DESC LIMIT 1
                """,
                (post_id,),
            ).fetchone()
            if row:
                return AnalysisResult.from_dict(json.loads(row["result_json"]))
            return None

    def get_result_by_job(self, job_id: str) -> AnalysisResult | None:
        """Get the result produced by a job."""
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT result_json FROM analysis_results WHERE job_id = ?
                ORDER BY analyzed_at DESC LIMIT 1
                """,
                (job_id,),
            ).fetchone()
            if row:
                return AnalysisResult.from_dict(json.loads(row["result_json"]))
            return None

    def delete_result(self, result_id: str) -> bool:
        """Delete one result.

        Returns:
            True if a row was deleted.
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM analysis_results WHERE result_id = ?", (result_id,)
            )
            return cursor.rowcount > 0

    def list_results(self, user_id: str, limit: int = 10) -> list[AnalysisResult]:
        """List a user's results, newest first."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT result_json FROM analysis_results WHERE user_id = ?
                ORDER BY analyzed_at DESC LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
            return [AnalysisResult.from_dict(json.loads(row["result_json"])) for row in rows]

    def delete_results_older_than(self, days: int) -> int:
        """Delete results analyzed more than N days ago.

        Args:
            days: Number of days to keep.

        Returns:
            Number of results deleted.
        """
        cutoff = datetime.now().timestamp() - (days * 24 * 60 * 60)
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM analysis_results WHERE analyzed_at < ?", (cutoff,)
            )
            return cursor.rowcount

    # -------------------------------------------------------------------------
    # Utility operations
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get database statistics.

        Returns:
            Dictionary with counts for each table.
        """
        stats = {}
        tables = ["posts", "comments", "analysis_jobs", "analysis_results"]

        with self.connection() as conn:
            for table in tables:
                try:
                    row = conn.execute(f"SELECT COUNT(*) as count FROM {table}").fetchone()
                    stats[table] = row["count"]
                except sqlite3.OperationalError:
                    stats[table] = 0  # Table may not exist yet

        return stats


def get_database(db_path: str | Path | None = None) -> Database:
    """Get a database instance.

    Args:
        db_path: Optional path to database file.

    Returns:
        Database instance.
    """
    if db_path is None:
        from commentlens.config import get_config
        config = get_config()
        db_path = config.database.path

    return Database(db_path)
