from __future__ import annotations

from svn_review.commit_ingest.executor import CommandExecutor, SvnCliExecutor, run_command
from svn_review.commit_ingest.svn_repository import (
    REVISION_PATTERN,
    SvnRepository,
    build_revision_range,
    filter_commits,
)

__all__ = [
    "CommandExecutor",
    "REVISION_PATTERN",
    "SvnCliExecutor",
    "SvnRepository",
    "build_revision_range",
    "filter_commits",
    "run_command",
]
