from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from svn_review.models import (
    Finding,
    ReviewFinding,
    ReviewRule,
    ReviewSession,
    SessionStatus,
    SystemPrompt,
)
from svn_review.store.base import BaseReviewStore, DuplicateRecordError, SessionStateError, new_id, utcnow


class InMemoryReviewStore(BaseReviewStore):
    """Process-local store used when no database path is configured, and in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, ReviewSession] = {}
        self._findings: Dict[str, List[ReviewFinding]] = {}
        self._rules: List[ReviewRule] = []
        self._prompts: List[SystemPrompt] = []

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
            self._sessions[session.id] = session
            self._findings[session.id] = []
        return replace(session, commit_ids=list(session.commit_ids))

    def _terminate(self, session_id: str, status: SessionStatus, completed_at: datetime, error: Optional[str]) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionStateError(f"Unknown review session: {session_id}")
            if session.is_terminal:
                raise SessionStateError(f"Review session {session_id} is already {session.status.value}")
            session.status = status
            session.completed_at = completed_at
            session.error = error

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
            if session_id not in self._sessions:
                raise SessionStateError(f"Unknown review session: {session_id}")
            self._findings[session_id].append(record)
        return record

    def get_session(self, session_id: str) -> Optional[ReviewSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            return replace(session, commit_ids=list(session.commit_ids), findings=list(self._findings[session_id]))

    def list_sessions(self) -> List[ReviewSession]:
        with self._lock:
            sessions = [replace(s, commit_ids=list(s.commit_ids)) for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.started_at, reverse=True)

    def add_rule(self, name: str, rule: str, description: Optional[str] = None, enabled: bool = True) -> ReviewRule:
        record = ReviewRule(id=new_id(), name=name, rule=rule, description=description, enabled=enabled)
        with self._lock:
            if any(existing.name == name for existing in self._rules):
                raise DuplicateRecordError(f"Rule name already exists: {name}")
            self._rules.append(record)
        return replace(record)

    def list_rules(self) -> List[ReviewRule]:
        with self._lock:
            return [replace(rule) for rule in self._rules]

    def add_prompt(self, name: str, prompt: str, is_active: bool = False) -> SystemPrompt:
        record = SystemPrompt(id=new_id(), name=name, prompt=prompt, is_active=is_active)
        with self._lock:
            if any(existing.name == name for existing in self._prompts):
                raise DuplicateRecordError(f"Prompt name already exists: {name}")
            if is_active:
                for existing in self._prompts:
                    existing.is_active = False
            self._prompts.append(record)
        return replace(record)

    def list_prompts(self) -> List[SystemPrompt]:
        with self._lock:
            return [replace(prompt) for prompt in self._prompts]

    def update_rule(
        self,
        rule_id: str,
        *,
        name: Optional[str] = None,
        rule: Optional[str] = None,
        description: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Optional[ReviewRule]:
        with self._lock:
            record = next((existing for existing in self._rules if existing.id == rule_id), None)
            if record is None:
                return None
            if name is not None and any(e.name == name and e.id != rule_id for e in self._rules):
                raise DuplicateRecordError(f"Rule name already exists: {name}")
            if name is not None:
                record.name = name
            if rule is not None:
                record.rule = rule
            if description is not None:
                record.description = description
            if enabled is not None:
                record.enabled = enabled
            return replace(record)

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            remaining = [rule for rule in self._rules if rule.id != rule_id]
            deleted = len(remaining) != len(self._rules)
            self._rules = remaining
        return deleted

    def update_prompt(
        self,
        prompt_id: str,
        *,
        name: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> Optional[SystemPrompt]:
        with self._lock:
            record = next((existing for existing in self._prompts if existing.id == prompt_id), None)
            if record is None:
                return None
            if name is not None and any(e.name == name and e.id != prompt_id for e in self._prompts):
                raise DuplicateRecordError(f"Prompt name already exists: {name}")
            if name is not None:
                record.name = name
            if prompt is not None:
                record.prompt = prompt
            return replace(record)

    def delete_prompt(self, prompt_id: str) -> bool:
        with self._lock:
            remaining = [prompt for prompt in self._prompts if prompt.id != prompt_id]
            deleted = len(remaining) != len(self._prompts)
            self._prompts = remaining
        return deleted

    def activate_prompt(self, prompt_id: str) -> Optional[SystemPrompt]:
        with self._lock:
            record = next((existing for existing in self._prompts if existing.id == prompt_id), None)
            if record is None:
                return None
            for existing in self._prompts:
                existing.is_active = existing.id == prompt_id
            return replace(record)
