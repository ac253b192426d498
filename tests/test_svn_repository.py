from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest  # type: ignore[import]

from svn_review.commit_ingest import SvnRepository, build_revision_range, filter_commits
from svn_review.errors import (
    SvnAuthenticationError,
    SvnConnectionError,
    SvnError,
    SvnNotFoundError,
    SvnTimeoutError,
)
from svn_review.models import Commit, CommitFilters, PaginationParams

REPO_URL = "https://svn.example.com/repo"


def _log_entry(revision: int, author: str = "alice", msg: str = "Change") -> Dict[str, Any]:
    return {
        "$": {"revision": str(revision)},
        "author": [author],
        "date": ["2024-01-15T10:30:00.000000Z"],
        "msg": [msg],
        "paths": [{"path": [{"$": {"action": "M"}, "_": f"/trunk/file{revision}.py"}]}],
    }


def _log(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"log": {"logentry": entries}}


class FakeExecutor:
    """Answers each command from ``responses``; values may be callables of the options."""

    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        *,
        error: Optional[BaseException] = None,
        respond: bool = True,
    ) -> None:
        self.responses = responses or {}
        self.error = error
        self.respond = respond
        self.calls: List[tuple] = []
        self.pending: List[Callable[..., None]] = []

    def __call__(self, command: str, target: str, options: Dict[str, Any], callback) -> None:
        self.calls.append((command, target, dict(options)))
        if not self.respond:
            self.pending.append(callback)
            return
        if self.error is not None:
            callback(self.error, None)
            return
        response = self.responses.get(command)
        if callable(response):
            response = response(options)
        callback(None, response)


def _repository(executor: FakeExecutor, **kwargs: Any) -> SvnRepository:
    return SvnRepository(REPO_URL, executor, **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "total, page_size, page",
    [(50, 10, 1), (50, 10, 2), (7, 5, 2), (3, 5, 1), (0, 5, 1), (12, 5, 4)],
)
async def test_pagination_metadata_matches_page_slice(total: int, page_size: int, page: int) -> None:
    executor = FakeExecutor({"log": _log([_log_entry(rev) for rev in range(total, 0, -1)])})
    repo = _repository(executor)

    result = await repo.get_commits(pagination=PaginationParams(page=page, page_size=page_size))

    start = (page - 1) * page_size
    expected = max(0, min(page_size, total - start))
    assert len(result.data) == expected
    assert result.pagination.page == page
    assert result.pagination.page_size == page_size
    assert result.pagination.total_items == total
    assert result.pagination.total_pages == -(-total // page_size)
    if expected:
        assert result.data[0].revision == total - start


@pytest.mark.asyncio
async def test_get_commits_requests_verbose_log_with_overfetch_limit() -> None:
    executor = FakeExecutor({"log": _log([])})
    repo = _repository(executor)

    await repo.get_commits(
        CommitFilters(start_revision=10, end_revision=20),
        PaginationParams(page=2, page_size=10),
    )

    command, target, options = executor.calls[0]
    assert command == "log"
    assert target == REPO_URL
    assert options == {"revision": "20:10", "limit": 30, "verbose": True}


@pytest.mark.asyncio
async def test_get_commits_caps_page_size() -> None:
    executor = FakeExecutor({"log": _log([_log_entry(rev) for rev in range(30, 0, -1)])})
    repo = _repository(executor, max_page_size=5)

    result = await repo.get_commits(pagination=PaginationParams(page=1, page_size=50))

    assert result.pagination.page_size == 5
    assert len(result.data) == 5


@pytest.mark.asyncio
async def test_get_commits_with_empty_log_returns_empty_page() -> None:
    repo = _repository(FakeExecutor({"log": {"log": ""}}))

    result = await repo.get_commits()

    assert result.data == []
    assert result.pagination.total_items == 0
    assert result.pagination.total_pages == 0


@pytest.mark.parametrize(
    "filters, expected",
    [
        (CommitFilters(start_revision=10, end_revision=20), "20:10"),
        (CommitFilters(start_revision=10), "HEAD:10"),
        (CommitFilters(end_revision=20), "20:1"),
        (CommitFilters(), "HEAD:1"),
    ],
)
def test_build_revision_range(filters: CommitFilters, expected: str) -> None:
    assert build_revision_range(filters) == expected


def _commits() -> List[Commit]:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        Commit(revision=3, author="Alice", timestamp=ts, message="Fix login bug"),
        Commit(revision=2, author="bob", timestamp=ts, message="Refactor alice's helper"),
        Commit(revision=1, author="alicea", timestamp=ts, message="Initial import"),
    ]


def test_keyword_filter_matches_message_or_author_case_insensitively() -> None:
    result = filter_commits(_commits(), CommitFilters(keyword="ALICE"))

    assert [c.revision for c in result] == [3, 2, 1]
    assert [c.revision for c in filter_commits(_commits(), CommitFilters(keyword="login"))] == [3]


def test_author_filter_is_exact_and_case_insensitive() -> None:
    result = filter_commits(_commits(), CommitFilters(author="alice"))

    assert [c.revision for c in result] == [3]


def test_filtering_is_idempotent() -> None:
    filters = CommitFilters(keyword="a", author="bob")
    once = filter_commits(_commits(), filters)

    assert filter_commits(once, filters) == once


@pytest.mark.asyncio
async def test_get_commit_detail_returns_changed_files() -> None:
    executor = FakeExecutor({"log": _log([_log_entry(42, msg="Add feature")])})
    repo = _repository(executor)

    detail = await repo.get_commit_detail(42)

    assert detail.revision == 42
    assert detail.message == "Add feature"
    assert [c.path for c in detail.changed_files] == ["/trunk/file42.py"]
    assert executor.calls[0][2] == {"revision": "42:42", "verbose": True}


@pytest.mark.asyncio
async def test_get_commit_detail_missing_revision_raises_not_found() -> None:
    repo = _repository(FakeExecutor({"log": {"log": ""}}))

    with pytest.raises(SvnNotFoundError) as excinfo:
        await repo.get_commit_detail(999)

    assert excinfo.value.message == "Commit not found: 999"
    assert excinfo.value.code == "SVN_NOT_FOUND"


@pytest.mark.asyncio
async def test_get_commit_diff_uses_previous_revision_range() -> None:
    executor = FakeExecutor({"diff": "Index: trunk/a.py\n====\n+x\n"})
    repo = _repository(executor)

    diffs = await repo.get_commit_diff(10)

    assert executor.calls[0][2] == {"revision": "9:10"}
    assert [d.path for d in diffs] == ["trunk/a.py"]


@pytest.mark.asyncio
async def test_get_commit_diff_empty_output() -> None:
    repo = _repository(FakeExecutor({"diff": ""}))

    assert await repo.get_commit_diff(10) == []


@pytest.mark.asyncio
async def test_get_repository_info_defaults_when_fields_missing() -> None:
    repo = _repository(FakeExecutor({"info": {}}))

    info = await repo.get_repository_info()

    assert info.url == REPO_URL
    assert info.revision == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw, expected_type, expected_message",
    [
        (RuntimeError("E170001: Authentication failed"), SvnAuthenticationError, "SVN authentication failed"),
        (RuntimeError("Authorization failed"), SvnAuthenticationError, "SVN authentication failed"),
        (RuntimeError("Unable to connect: connection refused"), SvnConnectionError, "SVN connection failed"),
        (RuntimeError("network unreachable"), SvnConnectionError, "SVN connection failed"),
        (RuntimeError("path not found"), SvnNotFoundError, "Requested resource not found"),
        (RuntimeError("E160013: No such revision"), SvnNotFoundError, "Requested resource not found"),
        (RuntimeError("something odd"), SvnConnectionError, "something odd"),
    ],
)
async def test_executor_errors_are_classified(raw, expected_type, expected_message) -> None:
    repo = _repository(FakeExecutor(error=raw))

    with pytest.raises(expected_type) as excinfo:
        await repo.get_repository_info()

    assert excinfo.value.message == expected_message
    assert excinfo.value.details is raw


@pytest.mark.asyncio
async def test_timeout_raises_and_late_callback_is_discarded() -> None:
    executor = FakeExecutor(respond=False)
    repo = _repository(executor, timeout_ms=20)

    with pytest.raises(SvnTimeoutError) as excinfo:
        await repo.get_repository_info()

    assert "timed out after 20ms" in excinfo.value.message
    assert isinstance(excinfo.value, SvnError)

    executor.pending[0](None, {"info": {}})
    await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_callback_from_another_thread_resolves_result() -> None:
    payload = _log([_log_entry(5)])

    def threaded_executor(command, target, options, callback) -> None:
        threading.Timer(0.01, callback, args=(None, payload)).start()

    repo = SvnRepository(REPO_URL, threaded_executor)

    detail = await repo.get_commit_detail(5)

    assert detail.revision == 5


@pytest.mark.asyncio
async def test_get_review_commits_skips_invalid_and_missing_ids() -> None:
    def log_response(options: Dict[str, Any]) -> Dict[str, Any]:
        if options["revision"] == "404:404":
            return {"log": ""}
        revision = int(options["revision"].split(":")[0])
        return _log([_log_entry(revision, author="carol", msg=f"Commit {revision}")])

    def diff_response(options: Dict[str, Any]) -> str:
        revision = options["revision"].split(":")[1]
        return f"Index: trunk/r{revision}.py\n====\n+line\n"

    repo = _repository(FakeExecutor({"log": log_response, "diff": diff_response}))

    commits = await repo.get_review_commits(["101", "abc", "404", "0", "102"])

    assert [c.id for c in commits] == ["101", "102"]
    assert commits[0].author == "carol"
    assert commits[0].message == "Commit 101"
    assert commits[0].diff == "Index: trunk/r101.py\n====\n+line\n"


@pytest.mark.asyncio
async def test_get_review_commits_propagates_connection_errors() -> None:
    repo = _repository(FakeExecutor(error=RuntimeError("connection refused")))

    with pytest.raises(SvnConnectionError):
        await repo.get_review_commits(["1"])
