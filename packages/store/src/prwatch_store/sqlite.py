"""SQLiteStore — file-based store for single-process deployments.

Schema:
  reviews                 — one row per pull request under review
  submissions             — versioned code snapshots, many per review
  feedback                — engine findings, many per submission
  pull_request_trackers   — one row per (project, repository, PR); the review
                            history and processed comment ids are JSON columns
                            so a tracker update is a single-row write.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime

from prwatch_store.base import BaseStore, StoreError
from prwatch_store.models import (
    FeedbackItem,
    FeedbackPriority,
    HistoryEntry,
    Review,
    ReviewStatus,
    Submission,
    SubmissionStatus,
    TrackerKey,
    TrackerRecord,
    utcnow,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS reviews (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    host                TEXT NOT NULL,
    project_key         TEXT NOT NULL,
    repository_name     TEXT NOT NULL,
    pull_request_id     INTEGER NOT NULL,
    title               TEXT,
    description         TEXT,
    status              TEXT NOT NULL,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    UNIQUE (host, project_key, repository_name, pull_request_id)
);
CREATE TABLE IF NOT EXISTS submissions (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    review_id           INTEGER NOT NULL REFERENCES reviews (id),
    code_content        TEXT NOT NULL,
    expectation         TEXT,
    status              TEXT NOT NULL,
    version             INTEGER NOT NULL DEFAULT 1,
    created_at          TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS feedback (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    submission_id       INTEGER NOT NULL REFERENCES submissions (id),
    problem_point       TEXT NOT NULL,
    suggestion          TEXT,
    priority            TEXT NOT NULL,
    code_snippet        TEXT,
    reference_url       TEXT,
    category            TEXT
);
CREATE TABLE IF NOT EXISTS pull_request_trackers (
    project_key             TEXT NOT NULL,
    repository_name         TEXT NOT NULL,
    pull_request_id         INTEGER NOT NULL,
    processed_at            TEXT NOT NULL,
    last_review_at          TEXT,
    review_count            INTEGER NOT NULL DEFAULT 0,
    review_history          TEXT NOT NULL DEFAULT '[]',
    processed_comment_ids   TEXT NOT NULL DEFAULT '[]',
    description_processed   INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (project_key, repository_name, pull_request_id)
);
CREATE INDEX IF NOT EXISTS idx_submissions_review ON submissions (review_id);
CREATE INDEX IF NOT EXISTS idx_feedback_submission ON feedback (submission_id);
"""


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore(BaseStore):
    """Stores reviews and tracker state in a local SQLite database file.

    The path defaults to `.prwatch.db` in the working directory. Configure via
    .prwatch.yml: `store: sqlite` and `store_path: /path/to/prwatch.db`.
    One connection is shared across threads and serialized with a lock.
    """

    def __init__(self, db_path: str = ".prwatch.db"):
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    def get_or_create_review(
        self,
        host: str,
        project_key: str,
        repository_name: str,
        pull_request_id: int,
        title: str,
        description: str = "",
    ) -> tuple[Review, bool]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM reviews WHERE host=? AND project_key=? AND repository_name=? AND pull_request_id=?",
                (host, project_key, repository_name, pull_request_id),
            ).fetchone()
            if row is not None:
                return self._row_to_review(row), False

            now = utcnow().isoformat()
            with self._conn:
                cursor = self._conn.execute(
                    """
                    INSERT INTO reviews
                      (host, project_key, repository_name, pull_request_id,
                       title, description, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        host,
                        project_key,
                        repository_name,
                        pull_request_id,
                        title,
                        description,
                        ReviewStatus.PENDING.value,
                        now,
                        now,
                    ),
                )
            row = self._conn.execute("SELECT * FROM reviews WHERE id=?", (cursor.lastrowid,)).fetchone()
            return self._row_to_review(row), True

    def get_review(self, review_id: int) -> Review | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM reviews WHERE id=?", (review_id,)).fetchone()
        return self._row_to_review(row) if row else None

    def save_review(self, review: Review) -> None:
        review.updated_at = utcnow()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE reviews SET title=?, description=?, status=?, updated_at=? WHERE id=?",
                (
                    review.title,
                    review.description,
                    review.status.value,
                    review.updated_at.isoformat(),
                    review.review_id,
                ),
            )
        if cursor.rowcount == 0:
            raise StoreError(f"Review {review.review_id} does not exist")

    def set_review_status(self, review_id: int, status: ReviewStatus) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE reviews SET status=?, updated_at=? WHERE id=?",
                (status.value, utcnow().isoformat(), review_id),
            )
        if cursor.rowcount == 0:
            raise StoreError(f"Review {review_id} does not exist")

    # ------------------------------------------------------------------ #
    # Submissions                                                          #
    # ------------------------------------------------------------------ #

    def create_submission(self, review_id: int, code_content: str, expectation: str = "") -> Submission:
        with self._lock, self._conn:
            latest = self._conn.execute(
                "SELECT MAX(version) AS v FROM submissions WHERE review_id=?", (review_id,)
            ).fetchone()["v"]
            cursor = self._conn.execute(
                """
                INSERT INTO submissions (review_id, code_content, expectation, status, version, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    review_id,
                    code_content,
                    expectation,
                    SubmissionStatus.SUBMITTED.value,
                    (latest or 0) + 1,
                    utcnow().isoformat(),
                ),
            )
            row = self._conn.execute("SELECT * FROM submissions WHERE id=?", (cursor.lastrowid,)).fetchone()
        return self._row_to_submission(row)

    def get_submission(self, submission_id: int) -> Submission | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM submissions WHERE id=?", (submission_id,)).fetchone()
        return self._row_to_submission(row) if row else None

    def set_submission_status(self, submission_id: int, status: SubmissionStatus) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute("UPDATE submissions SET status=? WHERE id=?", (status.value, submission_id))
        if cursor.rowcount == 0:
            raise StoreError(f"Submission {submission_id} does not exist")

    # ------------------------------------------------------------------ #
    # Feedback                                                             #
    # ------------------------------------------------------------------ #

    def save_feedback(self, submission_id: int, items: list[FeedbackItem]) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM feedback WHERE submission_id = ?", (submission_id,))
            self._conn.executemany(
                """
                INSERT INTO feedback
                  (submission_id, problem_point, suggestion, priority, code_snippet, reference_url, category)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        submission_id,
                        item.problem_point,
                        item.suggestion,
                        item.priority.value,
                        item.code_snippet,
                        item.reference_url,
                        item.category,
                    )
                    for item in items
                ],
            )

    def list_feedback(self, submission_id: int) -> list[FeedbackItem]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM feedback WHERE submission_id=? ORDER BY id", (submission_id,)
            ).fetchall()
        return [
            FeedbackItem(
                problem_point=r["problem_point"],
                suggestion=r["suggestion"] or "",
                priority=FeedbackPriority(r["priority"]),
                code_snippet=r["code_snippet"] or "",
                reference_url=r["reference_url"] or "",
                category=r["category"] or "",
            )
            for r in rows
        ]

    # ------------------------------------------------------------------ #
    # Pull request trackers                                                #
    # ------------------------------------------------------------------ #

    def get_tracker_record(self, key: TrackerKey) -> TrackerRecord | None:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT * FROM pull_request_trackers
                WHERE project_key=? AND repository_name=? AND pull_request_id=?
                """,
                (key.project_key, key.repository_name, key.pull_request_id),
            ).fetchone()
        return self._row_to_tracker(row) if row else None

    def save_tracker_record(self, record: TrackerRecord) -> None:
        history_json = json.dumps(
            [
                {
                    "review_id": e.review_id,
                    "date": e.date.isoformat(),
                    "comments_count": e.comments_count,
                    "comment_id": e.comment_id,
                }
                for e in record.review_history
            ]
        )
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO pull_request_trackers
                  (project_key, repository_name, pull_request_id, processed_at, last_review_at,
                   review_count, review_history, processed_comment_ids, description_processed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.key.project_key,
                    record.key.repository_name,
                    record.key.pull_request_id,
                    record.processed_at.isoformat(),
                    record.last_review_at.isoformat() if record.last_review_at else None,
                    record.review_count,
                    history_json,
                    json.dumps(sorted(record.processed_comment_ids)),
                    int(record.description_processed),
                ),
            )

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_review(row: sqlite3.Row) -> Review:
        return Review(
            review_id=row["id"],
            host=row["host"],
            project_key=row["project_key"],
            repository_name=row["repository_name"],
            pull_request_id=row["pull_request_id"],
            title=row["title"] or "",
            description=row["description"] or "",
            status=ReviewStatus(row["status"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @staticmethod
    def _row_to_submission(row: sqlite3.Row) -> Submission:
        return Submission(
            submission_id=row["id"],
            review_id=row["review_id"],
            code_content=row["code_content"],
            expectation=row["expectation"] or "",
            status=SubmissionStatus(row["status"]),
            version=row["version"],
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_tracker(row: sqlite3.Row) -> TrackerRecord:
        try:
            history_data = json.loads(row["review_history"] or "[]")
            comment_ids = json.loads(row["processed_comment_ids"] or "[]")
        except json.JSONDecodeError as e:
            raise StoreError(f"Corrupt tracker row for PR #{row['pull_request_id']}: {e}") from e
        return TrackerRecord(
            key=TrackerKey(row["project_key"], row["repository_name"], row["pull_request_id"]),
            processed_at=_dt(row["processed_at"]),
            last_review_at=_dt(row["last_review_at"]),
            review_count=row["review_count"],
            review_history=[
                HistoryEntry(
                    review_id=h.get("review_id"),
                    date=_dt(h.get("date")),
                    comments_count=h.get("comments_count", 0),
                    comment_id=h.get("comment_id"),
                )
                for h in history_data
            ],
            processed_comment_ids=set(comment_ids),
            description_processed=bool(row["description_processed"]),
        )
