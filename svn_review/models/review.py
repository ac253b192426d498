from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Severity(str, Enum):
    """Finding severity, declared from most to least urgent."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @classmethod
    def parse(cls, value: object) -> Severity:
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.INFO


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class CommitData:
    """A commit resolved for review: metadata plus the full diff text."""

    id: str
    message: str
    author: str
    timestamp: datetime
    diff: str


@dataclass(slots=True)
class ReviewRule:
    id: str
    name: str
    rule: str
    description: Optional[str] = None
    enabled: bool = True


@dataclass(slots=True)
class SystemPrompt:
    id: str
    name: str
    prompt: str
    is_active: bool = False


@dataclass(slots=True)
class Finding:
    """A finding as produced by a provider, before it is persisted."""

    commit_id: str
    severity: Severity
    category: str
    title: str
    description: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    suggestion: Optional[str] = None


@dataclass(slots=True)
class ReviewRequest:
    commit_ids: List[str]
    system_prompt: str
    rules: List[ReviewRule]
    commits: List[CommitData]


@dataclass(slots=True)
class ReviewResponse:
    findings: List[Finding] = field(default_factory=list)
    summary: str = ""


@dataclass(slots=True, frozen=True)
class ReviewFinding:
    """A persisted finding; ``session_id`` refers back to its session."""

    id: str
    session_id: str
    commit_id: str
    severity: Severity
    category: str
    title: str
    description: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    suggestion: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(slots=True)
class ReviewSession:
    """One end-to-end review run over a fixed set of commit ids."""

    id: str
    commit_ids: List[str]
    provider_name: str
    model: str
    status: SessionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    findings: List[ReviewFinding] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status is not SessionStatus.IN_PROGRESS
