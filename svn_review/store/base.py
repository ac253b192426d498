"""Persistence interface for review sessions, findings, rules and prompts.

The review service depends on BaseReviewStore only, so backends are swappable.
Session status moves from in_progress to a terminal state once; backends
refuse a second terminal update.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from svn_review.models import Finding, ReviewFinding, ReviewRule, ReviewSession, SystemPrompt


class SessionStateError(RuntimeError):
    """Raised on an illegal session status transition."""


class DuplicateRecordError(ValueError):
    """Raised when a rule or prompt name is already taken."""


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseReviewStore(ABC):
    @abstractmethod
    def create_session(self, commit_ids: List[str], provider_name: str, model: str) -> ReviewSession:
        """Persist a new session in the in_progress state."""

    @abstractmethod
    def complete_session(self, session_id: str, completed_at: datetime) -> None:
        """Move an in_progress session to completed."""

    @abstractmethod
    def fail_session(self, session_id: str, error: str, completed_at: datetime) -> None:
        """Move an in_progress session to failed, recording the error."""

    @abstractmethod
    def add_finding(self, session_id: str, finding: Finding) -> ReviewFinding:
        """Persist one finding for a session."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[ReviewSession]:
        """Return the session with its findings, or None."""

    @abstractmethod
    def list_sessions(self) -> List[ReviewSession]:
        """Return all sessions, newest first, without findings."""

    @abstractmethod
    def add_rule(self, name: str, rule: str, description: Optional[str] = None, enabled: bool = True) -> ReviewRule:
        ...

    @abstractmethod
    def list_rules(self) -> List[ReviewRule]:
        ...

    @abstractmethod
    def add_prompt(self, name: str, prompt: str, is_active: bool = False) -> SystemPrompt:
        """Persist a prompt. Activating it deactivates every other prompt."""

    @abstractmethod
    def list_prompts(self) -> List[SystemPrompt]:
        ...

    @abstractmethod
    def update_rule(
        self,
        rule_id: str,
        *,
        name: Optional[str] = None,
        rule: Optional[str] = None,
        description: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Optional[ReviewRule]:
        """Change the given fields of a rule; ``None`` leaves a field as is. Returns None for an unknown id."""

    @abstractmethod
    def delete_rule(self, rule_id: str) -> bool:
        ...

    @abstractmethod
    def update_prompt(
        self,
        prompt_id: str,
        *,
        name: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> Optional[SystemPrompt]:
        ...

    @abstractmethod
    def delete_prompt(self, prompt_id: str) -> bool:
        ...

    @abstractmethod
    def activate_prompt(self, prompt_id: str) -> Optional[SystemPrompt]:
        """Make one prompt the only active prompt. Unknown ids change nothing and return None."""

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> Optional[ReviewRule]:
        return self.update_rule(rule_id, enabled=enabled)

    def list_enabled_rules(self) -> List[ReviewRule]:
        return [rule for rule in self.list_rules() if rule.enabled]

    def get_active_prompt(self) -> Optional[SystemPrompt]:
        return next((prompt for prompt in self.list_prompts() if prompt.is_active), None)

    def close(self) -> None:
        """Release held resources. No-op by default."""
