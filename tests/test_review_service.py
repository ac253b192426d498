from __future__ import annotations

import asyncio
import io
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import pytest  # type: ignore[import]
from rich.console import Console  # type: ignore[import]

from svn_review.errors import ProviderError, ReviewError, SvnConnectionError
from svn_review.models import (
    CommitData,
    Finding,
    ReviewRequest,
    ReviewResponse,
    SessionStatus,
    Severity,
)
from svn_review.review import DEFAULT_SYSTEM_PROMPT, BaseReviewProvider, MockReviewProvider
from svn_review.services.review_service import ReviewService
from svn_review.store import InMemoryReviewStore


class DummyCommitSource:
    def __init__(self, commits: List[CommitData], error: Optional[Exception] = None) -> None:
        self._commits = commits
        self._error = error
        self.requested: List[str] = []

    async def get_review_commits(self, commit_ids: Iterable[str]) -> List[CommitData]:  # noqa: D401 - simple stub
        self.requested = list(commit_ids)
        if self._error is not None:
            raise self._error
        wanted = set(self.requested)
        return [c for c in self._commits if c.id in wanted]


class DummyProvider(BaseReviewProvider):
    model = "dummy-model"

    def __init__(self, findings: int = 0) -> None:
        self._findings = findings
        self.requests: List[ReviewRequest] = []

    @property
    def name(self) -> str:
        return "dummy"

    async def generate_review(self, request: ReviewRequest) -> ReviewResponse:  # noqa: D401 - simple stub
        self.requests.append(request)
        return ReviewResponse(
            findings=[
                Finding(
                    commit_id=request.commits[0].id,
                    severity=Severity.MEDIUM,
                    category="Code Quality",
                    title=f"Finding {i}",
                    description="Looks risky",
                )
                for i in range(self._findings)
            ],
            summary="done",
        )


@pytest.fixture()
def sample_commit() -> CommitData:
    return CommitData(
        id="101",
        message="fix",
        author="jane",
        timestamp=datetime(2024, 1, 15, tzinfo=timezone.utc),
        diff="Index: app.js\n===\n+console.log('x')\n",
    )


@pytest.mark.asyncio
async def test_review_completes_with_provider_findings(sample_commit: CommitData) -> None:
    store = InMemoryReviewStore()
    provider = DummyProvider(findings=3)
    service = ReviewService(provider, DummyCommitSource([sample_commit]), store)

    session_id = await service.review_commits(["101"])

    session = service.get_review_session(session_id)
    assert session.status is SessionStatus.COMPLETED
    assert session.completed_at is not None
    assert session.error is None
    assert session.provider_name == "dummy"
    assert session.model == "dummy-model"
    assert [f.title for f in session.findings] == ["Finding 0", "Finding 1", "Finding 2"]
    assert all(f.session_id == session_id for f in session.findings)


@pytest.mark.asyncio
async def test_review_request_uses_active_prompt_and_enabled_rules(sample_commit: CommitData) -> None:
    store = InMemoryReviewStore()
    store.add_rule("no-debug", "Remove debug output")
    store.add_rule("disabled", "Ignored", enabled=False)
    store.add_prompt("house", "Review like a maintainer.", is_active=True)
    provider = DummyProvider()
    service = ReviewService(provider, DummyCommitSource([sample_commit]), store)

    await service.review_commits(["101"])

    request = provider.requests[0]
    assert request.system_prompt == "Review like a maintainer."
    assert [r.name for r in request.rules] == ["no-debug"]
    assert request.commit_ids == ["101"]
    assert [c.id for c in request.commits] == ["101"]


@pytest.mark.asyncio
async def test_default_prompt_used_when_none_active(sample_commit: CommitData) -> None:
    provider = DummyProvider()
    service = ReviewService(provider, DummyCommitSource([sample_commit]), InMemoryReviewStore())

    await service.review_commits(["101"])

    assert provider.requests[0].system_prompt == DEFAULT_SYSTEM_PROMPT


@pytest.mark.asyncio
async def test_provider_failure_marks_session_failed(sample_commit: CommitData) -> None:
    store = InMemoryReviewStore()
    service = ReviewService(
        MockReviewProvider(should_fail=True, delay=0),
        DummyCommitSource([sample_commit]),
        store,
    )

    with pytest.raises(ProviderError):
        await service.review_commits(["101"])

    [session] = service.list_review_sessions()
    assert session.status is SessionStatus.FAILED
    assert session.error == "Mock AI provider failure"
    assert session.completed_at is not None
    assert store.get_session(session.id).findings == []


@pytest.mark.asyncio
async def test_no_resolvable_commits_fails_session() -> None:
    service = ReviewService(DummyProvider(), DummyCommitSource([]), InMemoryReviewStore())

    with pytest.raises(ReviewError, match="No commits found for the provided IDs"):
        await service.review_commits([])

    [session] = service.list_review_sessions()
    assert session.status is SessionStatus.FAILED
    assert session.error == "No commits found for the provided IDs"


@pytest.mark.asyncio
async def test_adapter_failure_propagates_and_fails_session(sample_commit: CommitData) -> None:
    source = DummyCommitSource([sample_commit], error=SvnConnectionError("SVN connection failed"))
    service = ReviewService(DummyProvider(), source, InMemoryReviewStore())

    with pytest.raises(SvnConnectionError):
        await service.review_commits(["101"])

    [session] = service.list_review_sessions()
    assert session.status is SessionStatus.FAILED
    assert session.error == "SVN connection failed"


@pytest.mark.asyncio
async def test_each_run_gets_its_own_session(sample_commit: CommitData) -> None:
    service = ReviewService(DummyProvider(findings=1), DummyCommitSource([sample_commit]), InMemoryReviewStore())

    first = await service.review_commits(["101"])
    second = await service.review_commits(["101"])

    assert first != second
    assert len(service.get_review_session(first).findings) == 1
    assert len(service.get_review_session(second).findings) == 1


@pytest.mark.asyncio
async def test_render_session_summary_lists_findings(sample_commit: CommitData) -> None:
    service = ReviewService(MockReviewProvider(delay=0), DummyCommitSource([sample_commit]), InMemoryReviewStore())
    session_id = await service.review_commits(["101"])
    buffer = io.StringIO()

    ReviewService.render_session_summary(
        service.get_review_session(session_id),
        console=Console(file=buffer, width=120, force_terminal=False),
    )

    output = buffer.getvalue()
    assert "completed" in output
    assert "Debug statement detected" in output
    assert "Short commit message" in output


class SlowProvider(DummyProvider):
    async def generate_review(self, request: ReviewRequest) -> ReviewResponse:  # noqa: D401 - simple stub
        await asyncio.sleep(10)
        return ReviewResponse()


class FlakyFindingStore(InMemoryReviewStore):
    """Persists the first finding, then fails on the next one."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def add_finding(self, session_id: str, finding: Finding):
        self.calls += 1
        if self.calls == 2:
            raise RuntimeError("disk full")
        return super().add_finding(session_id, finding)


@pytest.mark.asyncio
async def test_cancelled_review_marks_session_failed(sample_commit: CommitData) -> None:
    store = InMemoryReviewStore()
    service = ReviewService(SlowProvider(), DummyCommitSource([sample_commit]), store)

    task = asyncio.create_task(service.review_commits(["101"]))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    [session] = store.list_sessions()
    assert session.status is SessionStatus.FAILED
    assert session.error == "Review cancelled"
    assert session.completed_at is not None


@pytest.mark.asyncio
async def test_failure_while_persisting_keeps_earlier_findings(sample_commit: CommitData) -> None:
    store = FlakyFindingStore()
    service = ReviewService(DummyProvider(findings=3), DummyCommitSource([sample_commit]), store)

    with pytest.raises(RuntimeError, match="disk full"):
        await service.review_commits(["101"])

    [listed] = store.list_sessions()
    session = store.get_session(listed.id)
    assert session.status is SessionStatus.FAILED
    assert session.error == "disk full"
    assert [f.title for f in session.findings] == ["Finding 0"]
