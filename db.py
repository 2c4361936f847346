"""SQLite persistence for enrollments, attempts and certifications.

Every read-check-write sequence (attempt start, response recording,
grading) runs inside one ``BEGIN IMMEDIATE`` transaction so concurrent
requests for the same enrollment are applied one at a time.
"""

import logging
import os
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from db_pool import SQLiteConnectionPool
from schemas import AttemptRecord, AttemptState, EnrollmentRecord, GradedOutcome

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

AttemptStarter = Callable[[EnrollmentRecord, List[AttemptRecord]], Tuple[EnrollmentRecord, AttemptRecord]]
AttemptMutator = Callable[[AttemptRecord], AttemptRecord]
AttemptGrader = Callable[[AttemptRecord, EnrollmentRecord], GradedOutcome]


class RecordNotFound(LookupError):
    """Raised when an attempt or enrollment does not exist."""


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS enrollments (
              learner_id        TEXT NOT NULL,
              topic_id          TEXT NOT NULL,
              proof_validated   INTEGER NOT NULL DEFAULT 0,
              attempt_count     INTEGER NOT NULL DEFAULT 0,
              best_score        INTEGER NOT NULL DEFAULT 0,
              locked            INTEGER NOT NULL DEFAULT 0,
              certification_id  TEXT UNIQUE,
              certified_at      TEXT,
              updated_at        TEXT NOT NULL,
              PRIMARY KEY (learner_id, topic_id)
            );

            CREATE TABLE IF NOT EXISTS attempts (
              attempt_id   TEXT PRIMARY KEY,
              learner_id   TEXT NOT NULL,
              topic_id     TEXT NOT NULL,
              ordinal      INTEGER NOT NULL,
              state        TEXT NOT NULL,
              total_score  INTEGER,
              payload      TEXT NOT NULL,
              started_at   TEXT NOT NULL,
              completed_at TEXT,
              FOREIGN KEY (learner_id, topic_id) REFERENCES enrollments(learner_id, topic_id)
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_enrollment
              ON attempts(learner_id, topic_id, ordinal);
            """
        )
        con.commit()


# ---------------------------------------------------------------------------
# row mapping
# ---------------------------------------------------------------------------
def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _enrollment_from_row(row: sqlite3.Row) -> EnrollmentRecord:
    return EnrollmentRecord(
        learner_id=row["learner_id"],
        topic_id=row["topic_id"],
        proof_validated=bool(row["proof_validated"]),
        attempt_count=int(row["attempt_count"]),
        best_score=int(row["best_score"]),
        locked=bool(row["locked"]),
        certification_id=row["certification_id"],
        certified_at=row["certified_at"],
        updated_at=row["updated_at"],
    )


def _fetch_enrollment(con: sqlite3.Connection, learner_id: str, topic_id: str) -> Optional[EnrollmentRecord]:
    row = con.execute(
        "SELECT * FROM enrollments WHERE learner_id = ? AND topic_id = ?",
        (learner_id, topic_id),
    ).fetchone()
    return _enrollment_from_row(row) if row else None


def _write_enrollment(con: sqlite3.Connection, enrollment: EnrollmentRecord) -> None:
    # An issued certification id is never replaced or cleared.
    con.execute(
        """
        INSERT INTO enrollments (learner_id, topic_id, proof_validated, attempt_count, best_score,
                                 locked, certification_id, certified_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(learner_id, topic_id) DO UPDATE SET
          proof_validated  = excluded.proof_validated,
          attempt_count    = excluded.attempt_count,
          best_score       = MAX(enrollments.best_score, excluded.best_score),
          locked           = excluded.locked,
          certification_id = COALESCE(enrollments.certification_id, excluded.certification_id),
          certified_at     = COALESCE(enrollments.certified_at, excluded.certified_at),
          updated_at       = excluded.updated_at
        """,
        (
            enrollment.learner_id,
            enrollment.topic_id,
            int(enrollment.proof_validated),
            enrollment.attempt_count,
            enrollment.best_score,
            int(enrollment.locked),
            enrollment.certification_id,
            _iso(enrollment.certified_at),
            _iso(enrollment.updated_at),
        ),
    )


def _fetch_attempt(con: sqlite3.Connection, attempt_id: str) -> Optional[AttemptRecord]:
    row = con.execute("SELECT payload FROM attempts WHERE attempt_id = ?", (attempt_id,)).fetchone()
    return AttemptRecord.model_validate_json(row["payload"]) if row else None


def _fetch_attempts(con: sqlite3.Connection, learner_id: str, topic_id: str) -> List[AttemptRecord]:
    rows = con.execute(
        "SELECT payload FROM attempts WHERE learner_id = ? AND topic_id = ? ORDER BY ordinal",
        (learner_id, topic_id),
    ).fetchall()
    return [AttemptRecord.model_validate_json(row["payload"]) for row in rows]


def _write_attempt(con: sqlite3.Connection, attempt: AttemptRecord) -> None:
    con.execute(
        """
        INSERT INTO attempts (attempt_id, learner_id, topic_id, ordinal, state, total_score,
                              payload, started_at, completed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(attempt_id) DO UPDATE SET
          state        = excluded.state,
          total_score  = excluded.total_score,
          payload      = excluded.payload,
          completed_at = excluded.completed_at
        """,
        (
            attempt.attempt_id,
            attempt.learner_id,
            attempt.topic_id,
            attempt.ordinal,
            attempt.state.value,
            attempt.total_score,
            attempt.model_dump_json(),
            _iso(attempt.started_at),
            _iso(attempt.completed_at),
        ),
    )


def _new_enrollment(learner_id: str, topic_id: str) -> EnrollmentRecord:
    return EnrollmentRecord(learner_id=learner_id, topic_id=topic_id)


# ---------------------------------------------------------------------------
# enrollments
# ---------------------------------------------------------------------------
def get_enrollment(learner_id: str, topic_id: str) -> Optional[EnrollmentRecord]:
    with _conn() as con:
        return _fetch_enrollment(con, learner_id, topic_id)


def save_enrollment(enrollment: EnrollmentRecord) -> None:
    with _pool.transaction() as con:
        _write_enrollment(con, enrollment)


def list_enrollments(learner_id: str) -> List[EnrollmentRecord]:
    rows = _query(
        "SELECT * FROM enrollments WHERE learner_id = ? ORDER BY topic_id",
        (learner_id,),
    )
    return [_enrollment_from_row(row) for row in rows]


def update_enrollment(
    learner_id: str,
    topic_id: str,
    change: Callable[[EnrollmentRecord], EnrollmentRecord],
    *,
    create: bool = False,
) -> EnrollmentRecord:
    """Apply ``change`` to the stored enrollment inside one write transaction."""

    with _pool.transaction() as con:
        current = _fetch_enrollment(con, learner_id, topic_id)
        if current is None:
            if not create:
                raise RecordNotFound(f"No enrollment for {learner_id}/{topic_id}")
            current = _new_enrollment(learner_id, topic_id)
        updated = change(current)
        _write_enrollment(con, updated)
    return updated


def find_certification(certification_id: str) -> Optional[EnrollmentRecord]:
    rows = _query("SELECT * FROM enrollments WHERE certification_id = ?", (certification_id,))
    return _enrollment_from_row(rows[0]) if rows else None


# ---------------------------------------------------------------------------
# attempts
# ---------------------------------------------------------------------------
def begin_attempt(learner_id: str, topic_id: str, starter: AttemptStarter) -> Tuple[EnrollmentRecord, AttemptRecord]:
    """Check eligibility, consume an attempt and store the new attempt atomically.

    ``starter`` receives the current enrollment and prior attempts and
    raises to reject the start; nothing is written in that case.
    """

    with _pool.transaction() as con:
        enrollment = _fetch_enrollment(con, learner_id, topic_id) or _new_enrollment(learner_id, topic_id)
        previous = _fetch_attempts(con, learner_id, topic_id)
        updated, attempt = starter(enrollment, previous)
        _write_enrollment(con, updated)
        _write_attempt(con, attempt)
    return updated, attempt


def get_attempt(attempt_id: str) -> Optional[AttemptRecord]:
    with _conn() as con:
        return _fetch_attempt(con, attempt_id)


def list_attempts(learner_id: str, topic_id: str) -> List[AttemptRecord]:
    with _conn() as con:
        return _fetch_attempts(con, learner_id, topic_id)


def update_attempt(attempt_id: str, mutate: AttemptMutator) -> AttemptRecord:
    with _pool.transaction() as con:
        attempt = _fetch_attempt(con, attempt_id)
        if attempt is None:
            raise RecordNotFound(f"No attempt {attempt_id}")
        updated = mutate(attempt)
        _write_attempt(con, updated)
    return updated


def finalize_attempt(attempt_id: str, grade: AttemptGrader) -> GradedOutcome:
    """Grade an attempt and persist the graded attempt and enrollment together."""

    with _pool.transaction() as con:
        attempt = _fetch_attempt(con, attempt_id)
        if attempt is None:
            raise RecordNotFound(f"No attempt {attempt_id}")
        enrollment = _fetch_enrollment(con, attempt.learner_id, attempt.topic_id)
        if enrollment is None:
            raise RecordNotFound(f"No enrollment for {attempt.learner_id}/{attempt.topic_id}")
        outcome = grade(attempt, enrollment)
        if outcome.attempt.state is not AttemptState.COMPLETED:
            raise ValueError(f"Grader left attempt {attempt_id} in state {outcome.attempt.state.value}")
        _write_attempt(con, outcome.attempt)
        _write_enrollment(con, outcome.enrollment)
    logger.debug("Persisted graded attempt %s", attempt_id)
    return outcome
