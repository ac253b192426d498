from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from svn_review.commit_ingest.executor import CommandExecutor, run_command
from svn_review.commit_ingest.parsers import (
    extract_log_entries,
    join_diffs,
    parse_file_changes,
    parse_log_entry,
    parse_repository_info,
    split_diff,
)
from svn_review.errors import SvnNotFoundError
from svn_review.models import (
    Commit,
    CommitData,
    CommitDetail,
    CommitFilters,
    Diff,
    PaginatedResponse,
    PaginationParams,
    RepositoryInfo,
)

logger = logging.getLogger(__name__)

REVISION_PATTERN = re.compile(r"^\d+$", re.ASCII)


def build_revision_range(filters: CommitFilters) -> str:
    """Translate revision bounds into an SVN ``-r`` range, newest first."""
    start, end = filters.start_revision, filters.end_revision
    if start and end:
        return f"{end}:{start}"
    if start:
        return f"HEAD:{start}"
    if end:
        return f"{end}:1"
    return "HEAD:1"


def filter_commits(commits: Iterable[Commit], filters: CommitFilters) -> List[Commit]:
    """Apply keyword and author filters.

    The keyword matches message or author as a case-insensitive substring.
    The author filter is a case-insensitive exact match.
    """
    result = list(commits)
    if filters.keyword:
        keyword = filters.keyword.lower()
        result = [c for c in result if keyword in c.message.lower() or keyword in c.author.lower()]
    if filters.author:
        author = filters.author.lower()
        result = [c for c in result if c.author.lower() == author]
    return result


class SvnRepository:
    """Normalized, paginated view of SVN history over an opaque command executor."""

    def __init__(
        self,
        url: str,
        executor: CommandExecutor,
        *,
        timeout_ms: int = 30000,
        default_page_size: int = 20,
        max_page_size: int = 100,
    ) -> None:
        self.url = url
        self._executor = executor
        self._timeout = timeout_ms / 1000
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        logger.info("SVN repository adapter initialized for %s", url)

    async def _execute(self, command: str, options: Dict[str, Any]) -> Any:
        return await run_command(self._executor, command, self.url, options, timeout=self._timeout)

    async def get_commits(
        self,
        filters: Optional[CommitFilters] = None,
        pagination: Optional[PaginationParams] = None,
    ) -> PaginatedResponse[Commit]:
        """
        Return one page of commits matching ``filters``.

        The log request over-fetches ``page_size * page + page_size`` entries
        and filtering runs over that whole window, so the pagination metadata
        describes the fetched window rather than the full history.
        """
        filters = filters or CommitFilters()
        pagination = (pagination or PaginationParams(page_size=self._default_page_size)).capped(self._max_page_size)
        logger.info("Fetching commits filters=%s pagination=%s", filters, pagination)

        raw_log = await self._execute(
            "log",
            {
                "revision": build_revision_range(filters),
                "limit": pagination.page_size * pagination.page + pagination.page_size,
                "verbose": True,
            },
        )
        commits = [parse_log_entry(entry) for entry in extract_log_entries(raw_log)]
        return PaginatedResponse.from_items(filter_commits(commits, filters), pagination)

    async def get_commit_detail(self, revision: int) -> CommitDetail:
        logger.info("Fetching commit detail for r%s", revision)
        raw_log = await self._execute("log", {"revision": f"{revision}:{revision}", "verbose": True})

        entries = extract_log_entries(raw_log)
        if not entries:
            raise SvnNotFoundError(f"Commit not found: {revision}", {"revision": revision})

        entry = entries[0]
        commit = parse_log_entry(entry)
        return CommitDetail(
            revision=commit.revision,
            author=commit.author,
            timestamp=commit.timestamp,
            message=commit.message,
            changed_files=parse_file_changes(entry),
        )

    async def get_commit_diff(self, revision: int) -> List[Diff]:
        logger.info("Fetching commit diff for r%s", revision)
        diff_output = await self._execute("diff", {"revision": f"{revision - 1}:{revision}"})
        return split_diff(diff_output)

    async def get_repository_info(self) -> RepositoryInfo:
        logger.info("Fetching repository info")
        info = await self._execute("info", {})
        return parse_repository_info(info, self.url)

    async def get_review_commits(self, commit_ids: Iterable[str]) -> List[CommitData]:
        """
        Resolve commit ids into review inputs with their full diff text.

        Ids that are not revision numbers, or that the repository does not
        know, are skipped. Other adapter failures propagate.
        """
        commits: List[CommitData] = []
        for commit_id in commit_ids:
            if not REVISION_PATTERN.match(commit_id) or int(commit_id) < 1:
                logger.warning("Skipping commit id %r: not a revision number", commit_id)
                continue

            revision = int(commit_id)
            try:
                detail = await self.get_commit_detail(revision)
            except SvnNotFoundError:
                logger.warning("Skipping r%s: not found in repository", revision)
                continue

            diffs = await self.get_commit_diff(revision)
            commits.append(
                CommitData(
                    id=commit_id,
                    message=detail.message,
                    author=detail.author,
                    timestamp=detail.timestamp,
                    diff=join_diffs(diffs),
                )
            )
        return commits
