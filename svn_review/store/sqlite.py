"""SQLite-backed review store.

Schema:
  review_sessions  one row per review run; commit ids stored as a JSON list
  review_findings  one row per finding, keyed back to its session
  review_rules     reviewer rules included in every prompt while enabled
  system_prompts   reviewer personas; at most one is active
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from svn_review.models import (
    Finding,
    ReviewFinding,
    ReviewRule,
    ReviewSession,
    SessionStatus,
    Severity,
    SystemPrompt,
)
from svn_review.store.base import BaseReviewStore, DuplicateRecordError, SessionStateError, new_id, utcnow

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS review_sessions (
    id             TEXT PRIMARY KEY,
    commit_ids     TEXT NOT NULL DEFAULT '[]',
    provider_name  TEXT NOT NULL,
    model          TEXT NOT NULL,
    status         TEXT NOT NULL,
    started_at     TEXT NOT NULL,
    completed_at   TEXT,
    error          TEXT
);
CREATE TABLE IF NOT EXISTS review_findings (
    id           TEXT PRIMARY KEY,
    session_id   TEXT NOT NULL REFERENCES review_sessions (id),
    seq          INTEGER NOT NULL,
    commit_id    TEXT NOT NULL,
    severity     TEXT NOT NULL,
    category     TEXT NOT NULL,
    title        TEXT NOT NULL,
    description  TEXT NOT NULL,
    file_path    TEXT,
    line_number  INTEGER,
    suggestion   TEXT,
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_findings_session ON review_findings (session_id, seq);
CREATE TABLE IF NOT EXISTS review_rules (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL UNIQUE,
    rule         TEXT NOT NULL,
    description  TEXT,
    enabled      INTEGER NOT NULL DEFAULT 1,
    created_at   TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS system_prompts (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL UNIQUE,
    prompt      TEXT NOT NULL,
    is_active   INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL
);
"""


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteReviewStore(BaseReviewStore):
    """Stores review history in a local SQLite database file.

    One connection is shared across threads; every statement runs under a lock
    so conflicting writes are serialized.
    """

    def __init__(self, db_path: str = "svn_review.db") -> None:
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.info("SQLite review store opened at %s", db_path)

    def create_session(self, commit_ids: List[str], provider_name: str, model: str) -> ReviewSession:
        session = ReviewSession(
            id=new_id(),
            commit_ids=list(commit_ids),
            provider_name=provider_name,
            model=model,
            status=SessionStatus.IN_PROGRESS,
            started_at=utcnow(),
        )
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO review_sessions (id, commit_ids, provider_name, model, status, started_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    json.dumps(session.commit_ids),
                    session.provider_name,
                    session.model,
                    session.status.value,
                    session.started_at.isoformat(),
                ),
            )
            self._conn.commit()
        return session

    def _terminate(self, session_id: str, status: SessionStatus, completed_at: datetime, error: Optional[str]) -> None:
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE review_sessions SET status=?, completed_at=?, error=?
                WHERE id=? AND status=?
                """,
                (status.value, completed_at.isoformat(), error, session_id, SessionStatus.IN_PROGRESS.value),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise SessionStateError(f"Review session {session_id} is unknown or already terminated")

    def complete_session(self, session_id: str, completed_at: datetime) -> None:
        self._terminate(session_id, SessionStatus.COMPLETED, completed_at, None)

    def fail_session(self, session_id: str, error: str, completed_at: datetime) -> None:
        self._terminate(session_id, SessionStatus.FAILED, completed_at, error)

    def add_finding(self, session_id: str, finding: Finding) -> ReviewFinding:
        record = ReviewFinding(
            id=new_id(),
            session_id=session_id,
            commit_id=finding.commit_id,
            severity=finding.severity,
            category=finding.category,
            title=finding.title,
            description=finding.description,
            file_path=finding.file_path,
            line_number=finding.line_number,
            suggestion=finding.suggestion,
            created_at=utcnow(),
        )
        with self._lock:
            seq = self._conn.execute(
                "SELECT COUNT(*) FROM review_findings WHERE session_id=?", (session_id,)
            ).fetchone()[0]
            self._conn.execute(
                """
                INSERT INTO review_findings
                  (id, session_id, seq, commit_id, severity, category, title,
                   description, file_path, line_number, suggestion, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    session_id,
                    seq,
                    record.commit_id,
                    record.severity.value,
                    record.category,
                    record.title,
                    record.description,
                    record.file_path,
                    record.line_number,
                    record.suggestion,
                    record.created_at.isoformat(),
                ),
            )
            self._conn.commit()
        return record

    def get_session(self, session_id: str) -> Optional[ReviewSession]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM review_sessions WHERE id=?", (session_id,)).fetchone()
            if row is None:
                return None
            finding_rows = self._conn.execute(
                "SELECT * FROM review_findings WHERE session_id=? ORDER BY seq", (session_id,)
            ).fetchall()
        session = self._row_to_session(row)
        session.findings = [self._row_to_finding(r) for r in finding_rows]
        return session

    def list_sessions(self) -> List[ReviewSession]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM review_sessions ORDER BY started_at DESC, rowid DESC").fetchall()
        return [self._row_to_session(r) for r in rows]

    def add_rule(self, name: str, rule: str, description: Optional[str] = None, enabled: bool = True) -> ReviewRule:
        record = ReviewRule(id=new_id(), name=name, rule=rule, description=description, enabled=enabled)
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO review_rules (id, name, rule, description, enabled, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (record.id, name, rule, description, int(enabled), utcnow().isoformat()),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(f"Rule name already exists: {name}") from exc
        return record

    def list_rules(self) -> List[ReviewRule]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM review_rules ORDER BY rowid").fetchall()
        return [self._row_to_rule(r) for r in rows]

    def update_rule(
        self,
        rule_id: str,
        *,
        name: Optional[str] = None,
        rule: Optional[str] = None,
        description: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Optional[ReviewRule]:
        changes = {
            "name": name,
            "rule": rule,
            "description": description,
            "enabled": None if enabled is None else int(enabled),
        }
        row = self._update_row("review_rules", rule_id, changes, f"Rule name already exists: {name}")
        return self._row_to_rule(row) if row is not None else None

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM review_rules WHERE id=?", (rule_id,))
        return cursor.rowcount > 0

    def add_prompt(self, name: str, prompt: str, is_active: bool = False) -> SystemPrompt:
        record = SystemPrompt(id=new_id(), name=name, prompt=prompt, is_active=is_active)
        try:
            # One transaction, so a duplicate name leaves the active prompt untouched.
            with self._lock, self._conn:
                if is_active:
                    self._conn.execute("UPDATE system_prompts SET is_active=0")
                self._conn.execute(
                    "INSERT INTO system_prompts (id, name, prompt, is_active, created_at) VALUES (?, ?, ?, ?, ?)",
                    (record.id, name, prompt, int(is_active), utcnow().isoformat()),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(f"Prompt name already exists: {name}") from exc
        return record

    def list_prompts(self) -> List[SystemPrompt]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM system_prompts ORDER BY rowid").fetchall()
        return [self._row_to_prompt(r) for r in rows]

    def update_prompt(
        self,
        prompt_id: str,
        *,
        name: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> Optional[SystemPrompt]:
        changes = {"name": name, "prompt": prompt}
        row = self._update_row("system_prompts", prompt_id, changes, f"Prompt name already exists: {name}")
        return self._row_to_prompt(row) if row is not None else None

    def delete_prompt(self, prompt_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM system_prompts WHERE id=?", (prompt_id,))
        return cursor.rowcount > 0

    def activate_prompt(self, prompt_id: str) -> Optional[SystemPrompt]:
        with self._lock, self._conn:
            if self._conn.execute("SELECT 1 FROM system_prompts WHERE id=?", (prompt_id,)).fetchone() is None:
                return None
            self._conn.execute("UPDATE system_prompts SET is_active = (id = ?)", (prompt_id,))
            row = self._conn.execute("SELECT * FROM system_prompts WHERE id=?", (prompt_id,)).fetchone()
        return self._row_to_prompt(row)

    def _update_row(self, table: str, row_id: str, changes: Dict[str, Any], conflict: str) -> Optional[sqlite3.Row]:
        # Column names come from the callers above, never from input.
        assignments = {column: value for column, value in changes.items() if value is not None}
        try:
            with self._lock, self._conn:
                if assignments:
                    clause = ", ".join(f"{column}=?" for column in assignments)
                    self._conn.execute(
                        f"UPDATE {table} SET {clause} WHERE id=?",
                        (*assignments.values(), row_id),
                    )
                return self._conn.execute(f"SELECT * FROM {table} WHERE id=?", (row_id,)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(conflict) from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> ReviewSession:
        return ReviewSession(
            id=row["id"],
            commit_ids=json.loads(row["commit_ids"] or "[]"),
            provider_name=row["provider_name"],
            model=row["model"],
            status=SessionStatus(row["status"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
            error=row["error"],
        )

    @staticmethod
    def _row_to_finding(row: sqlite3.Row) -> ReviewFinding:
        return ReviewFinding(
            id=row["id"],
            session_id=row["session_id"],
            commit_id=row["commit_id"],
            severity=Severity.parse(row["severity"]),
            category=row["category"],
            title=row["title"],
            description=row["description"],
            file_path=row["file_path"],
            line_number=row["line_number"],
            suggestion=row["suggestion"],
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> ReviewRule:
        return ReviewRule(
            id=row["id"],
            name=row["name"],
            rule=row["rule"],
            description=row["description"],
            enabled=bool(row["enabled"]),
        )

    @staticmethod
    def _row_to_prompt(row: sqlite3.Row) -> SystemPrompt:
        return SystemPrompt(id=row["id"], name=row["name"], prompt=row["prompt"], is_active=bool(row["is_active"]))
