"""
SQLite persistence for tutoring sessions: state snapshots, chat log and
evaluation records. A turn is committed in a single transaction.
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from lesson_tutor.session.state import SessionState
from lesson_tutor.shared.config import settings
from lesson_tutor.shared.exceptions import SessionConflictError, SessionNotFoundError
from lesson_tutor.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChatMessage:
    role: str  # "user" or "assistant"
    content: str
    moment_id: int


@dataclass
class EvaluationRecord:
    moment_id: int
    question: str
    answer: str
    is_evaluated: bool
    is_correct: bool
    score: Optional[float]
    feedback: str
    turn_intent: str
    attempt: int
    mastery_delta: float = 0.0
    tags: List[str] = field(default_factory=list)
    hints: List[str] = field(default_factory=list)
    raw_response: Optional[Dict[str, Any]] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteSessionStore:
    """Session persistence with optimistic concurrency on the state snapshot."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or settings.session.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS lesson_sessions (
                    session_id TEXT PRIMARY KEY,
                    learner_id TEXT NOT NULL,
                    lesson_id TEXT NOT NULL,
                    is_completed BOOLEAN DEFAULT 0,
                    state_json TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS chat_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    moment_id INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (session_id, sequence),
                    FOREIGN KEY (session_id) REFERENCES lesson_sessions(session_id)
                );

                CREATE TABLE IF NOT EXISTS evaluations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    moment_id INTEGER NOT NULL,
                    question TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    is_evaluated BOOLEAN NOT NULL,
                    is_correct BOOLEAN NOT NULL,
                    score REAL,
                    feedback TEXT,
                    hints_json TEXT,
                    tags_json TEXT,
                    mastery_delta REAL,
                    attempt INTEGER NOT NULL,
                    turn_intent TEXT NOT NULL,
                    raw_json TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES lesson_sessions(session_id)
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_learner ON lesson_sessions(learner_id, lesson_id);
                CREATE INDEX IF NOT EXISTS idx_messages_session ON chat_messages(session_id, sequence);
                CREATE INDEX IF NOT EXISTS idx_evaluations_session ON evaluations(session_id);
            """)

    @contextmanager
    def _get_connection(self):
        """Get database connection; commits on success, rolls back on error."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create_session(
        self,
        state: SessionState,
        opening_messages: Optional[List[ChatMessage]] = None
    ) -> SessionState:
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO lesson_sessions
                   (session_id, learner_id, lesson_id, is_completed, state_json, version, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    state.session_id,
                    state.learner_id,
                    state.lesson_id,
                    int(state.is_completed),
                    state.to_json(),
                    state.version,
                    state.created_at,
                    state.updated_at,
                )
            )
            self._append_messages(conn, state.session_id, opening_messages or [])

        logger.info(
            f"Created session {state.session_id}",
            extra={"session_id": state.session_id, "action": "session.created"},
        )
        return state

    def load_state(self, session_id: str) -> SessionState:
        """
        Load a session snapshot.

        Raises:
            SessionNotFoundError if the session does not exist
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT state_json, version FROM lesson_sessions WHERE session_id = ?",
                (session_id,)
            ).fetchone()

        if row is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

        state = SessionState.from_json(row["state_json"])
        state.version = row["version"]
        return state

    def find_active_session(self, learner_id: str, lesson_id: str) -> Optional[SessionState]:
        """Most recent non-completed session for a learner on a lesson."""
        with self._get_connection() as conn:
            row = conn.execute(
                """SELECT state_json, version FROM lesson_sessions
                   WHERE learner_id = ? AND lesson_id = ? AND is_completed = 0
                   ORDER BY created_at DESC LIMIT 1""",
                (learner_id, lesson_id)
            ).fetchone()

        if row is None:
            return None
        state = SessionState.from_json(row["state_json"])
        state.version = row["version"]
        return state

    def commit_turn(
        self,
        state: SessionState,
        messages: List[ChatMessage],
        evaluation: Optional[EvaluationRecord] = None
    ) -> SessionState:
        """
        Persist a processed turn atomically.

        The snapshot is written only if the stored version still matches the
        version the turn was computed from; the stored version is then bumped.

        Raises:
            SessionConflictError if another writer committed in between
        """
        expected_version = state.version
        state.touch()

        with self._get_connection() as conn:
            new_state = state.model_copy(update={"version": expected_version + 1})
            cursor = conn.execute(
                """UPDATE lesson_sessions
                   SET state_json = ?, version = ?, is_completed = ?, updated_at = ?
                   WHERE session_id = ? AND version = ?""",
                (
                    new_state.to_json(),
                    new_state.version,
                    int(new_state.is_completed),
                    new_state.updated_at,
                    state.session_id,
                    expected_version,
                )
            )
            if cursor.rowcount != 1:
                raise SessionConflictError(
                    f"Session {state.session_id} changed since version {expected_version}"
                )

            self._append_messages(conn, state.session_id, messages)
            if evaluation is not None:
                self._insert_evaluation(conn, state.session_id, evaluation)

        return new_state

    def _append_messages(self, conn: sqlite3.Connection, session_id: str, messages: List[ChatMessage]):
        row = conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) AS last FROM chat_messages WHERE session_id = ?",
            (session_id,)
        ).fetchone()
        sequence = row["last"]

        for message in messages:
            sequence += 1
            conn.execute(
                """INSERT INTO chat_messages (session_id, sequence, role, content, moment_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (session_id, sequence, message.role, message.content, message.moment_id, _now())
            )

    def _insert_evaluation(self, conn: sqlite3.Connection, session_id: str, evaluation: EvaluationRecord):
        conn.execute(
            """INSERT INTO evaluations
               (session_id, moment_id, question, answer, is_evaluated, is_correct, score, feedback,
                hints_json, tags_json, mastery_delta, attempt, turn_intent, raw_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                session_id,
                evaluation.moment_id,
                evaluation.question,
                evaluation.answer,
                int(evaluation.is_evaluated),
                int(evaluation.is_correct),
                evaluation.score,
                evaluation.feedback,
                json.dumps(evaluation.hints, ensure_ascii=False),
                json.dumps(evaluation.tags),
                evaluation.mastery_delta,
                evaluation.attempt,
                evaluation.turn_intent,
                json.dumps(evaluation.raw_response, ensure_ascii=False) if evaluation.raw_response else None,
                _now(),
            )
        )

    def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Chat log in order; the last `limit` messages when given."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT sequence, role, content, moment_id, created_at FROM chat_messages
                   WHERE session_id = ? ORDER BY sequence""",
                (session_id,)
            ).fetchall()

        messages = [dict(row) for row in rows]
        if limit:
            return messages[-limit:]
        return messages

    def get_evaluations(self, session_id: str, evaluated_only: bool = False) -> List[Dict[str, Any]]:
        query = "SELECT * FROM evaluations WHERE session_id = ?"
        if evaluated_only:
            query += " AND is_evaluated = 1"
        query += " ORDER BY id"

        with self._get_connection() as conn:
            rows = conn.execute(query, (session_id,)).fetchall()

        evaluations = []
        for row in rows:
            record = dict(row)
            record["is_evaluated"] = bool(record["is_evaluated"])
            record["is_correct"] = bool(record["is_correct"])
            record["hints"] = json.loads(record.pop("hints_json") or "[]")
            record["tags"] = json.loads(record.pop("tags_json") or "[]")
            raw = record.pop("raw_json")
            record["raw_response"] = json.loads(raw) if raw else None
            evaluations.append(record)
        return evaluations
