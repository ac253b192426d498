from __future__ import annotations

from svn_review.models.commit import (
    ChangeAction,
    Commit,
    CommitDetail,
    CommitFilters,
    Diff,
    FileChange,
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    RepositoryInfo,
)
from svn_review.models.review import (
    CommitData,
    Finding,
    ReviewFinding,
    ReviewRequest,
    ReviewResponse,
    ReviewRule,
    ReviewSession,
    SessionStatus,
    Severity,
    SystemPrompt,
)

__all__ = [
    "ChangeAction",
    "Commit",
    "CommitData",
    "CommitDetail",
    "CommitFilters",
    "Diff",
    "FileChange",
    "Finding",
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "RepositoryInfo",
    "ReviewFinding",
    "ReviewRequest",
    "ReviewResponse",
    "ReviewRule",
    "ReviewSession",
    "SessionStatus",
    "Severity",
    "SystemPrompt",
]
