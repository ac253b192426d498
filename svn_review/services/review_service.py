from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Protocol

from rich.console import Console  # type: ignore[import]
from rich.table import Table  # type: ignore[import]

from svn_review.errors import ReviewError
from svn_review.models import CommitData, ReviewRequest, ReviewSession, SystemPrompt
from svn_review.review import DEFAULT_SYSTEM_PROMPT, BaseReviewProvider
from svn_review.store import BaseReviewStore
from svn_review.store.base import utcnow

logger = logging.getLogger(__name__)

_FALLBACK_PROMPT = SystemPrompt(id="default", name="Default", prompt=DEFAULT_SYSTEM_PROMPT, is_active=True)


class CommitSource(Protocol):
    async def get_review_commits(self, commit_ids: Iterable[str]) -> List[CommitData]:
        ...


class ReviewService:
    """Runs review sessions: resolves commits, calls the provider, records the outcome.

    A session is created in_progress and receives exactly one terminal update,
    completed or failed. One call to ``review_commits`` owns its session id.
    """

    def __init__(self, provider: BaseReviewProvider, commits: CommitSource, store: BaseReviewStore) -> None:
        self._provider = provider
        self._commits = commits
        self._store = store

    async def review_commits(self, commit_ids: List[str]) -> str:
        """
        Review the given commits and return the session id.

        Args:
            commit_ids: Revision identifiers to review together.

        Returns:
            The id of the completed session.

        Raises:
            Whatever failed during the run. The session is marked failed first,
            and findings persisted before the failure are kept. Cancellation
            is recorded as "Review cancelled" before it propagates.
        """
        session = self._store.create_session(commit_ids, self._provider.name, self._provider.model)
        logger.info("Started review session %s for %d commit(s)", session.id, len(commit_ids))

        try:
            commits = await self._commits.get_review_commits(commit_ids)
            if not commits:
                raise ReviewError("No commits found for the provided IDs")

            request = ReviewRequest(
                commit_ids=list(commit_ids),
                system_prompt=self.get_active_system_prompt().prompt,
                rules=self._store.list_enabled_rules(),
                commits=commits,
            )
            response = await self._provider.generate_review(request)

            for finding in response.findings:
                self._store.add_finding(session.id, finding)

            self._store.complete_session(session.id, utcnow())
        except asyncio.CancelledError:
            logger.warning("Review session %s cancelled", session.id)
            self._store.fail_session(session.id, "Review cancelled", utcnow())
            raise
        except Exception as exc:
            logger.error("Review session %s failed: %s", session.id, exc)
            self._store.fail_session(session.id, str(exc) or exc.__class__.__name__, utcnow())
            raise

        logger.info("Review session %s completed with %d finding(s)", session.id, len(response.findings))
        return session.id

    def get_review_session(self, session_id: str) -> Optional[ReviewSession]:
        return self._store.get_session(session_id)

    def list_review_sessions(self) -> List[ReviewSession]:
        return self._store.list_sessions()

    def get_active_system_prompt(self) -> SystemPrompt:
        return self._store.get_active_prompt() or _FALLBACK_PROMPT

    @staticmethod
    def render_session_summary(session: ReviewSession, *, console: Optional[Console] = None) -> None:
        console = console or Console()
        title = f"[bold cyan]Review {session.id[:8]}[/bold cyan] - {session.status.value}"
        console.rule(title)
        console.print(f"Commits: {', '.join(session.commit_ids)}  Provider: {session.provider_name} ({session.model})")

        if session.error:
            console.print(f"[red]{session.error}[/red]")

        if not session.findings:
            console.print("[green]No findings recorded.[/green]")
            return

        table = Table("Severity", "Commit", "Title", "File", show_header=True, header_style="bold magenta")
        for finding in session.findings:
            location = finding.file_path or ""
            if finding.file_path and finding.line_number:
                location = f"{finding.file_path}:{finding.line_number}"
            table.add_row(finding.severity.value, finding.commit_id, finding.title, location)
        console.print(table)
