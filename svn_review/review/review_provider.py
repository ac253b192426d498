from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

import openai  # type: ignore[import]
from langchain_core.messages import HumanMessage  # type: ignore[import]
from langchain_openai import ChatOpenAI  # type: ignore[import]

from svn_review.errors import ProviderError, ProviderTimeoutError
from svn_review.models import Finding, ReviewRequest, ReviewResponse, Severity
from svn_review.review.prompt import build_prompt
from svn_review.review.response_parser import parse_review_response

if TYPE_CHECKING:
    from svn_review.config import Settings


logger = logging.getLogger(__name__)


class BaseReviewProvider(ABC):
    """Interface for review providers."""

    model: str = "default"

    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def generate_review(self, request: ReviewRequest) -> ReviewResponse:
        raise NotImplementedError

    def supports_streaming(self) -> bool:
        return False


class RemoteCompletionProvider(BaseReviewProvider):
    """Sends the rendered prompt to an OpenAI-compatible chat completion endpoint.

    One attempt per review, bounded by a single timeout. Failures are raised
    as :class:`ProviderError`; nothing is retried here.
    """

    TEMPERATURE = 0.3
    MAX_TOKENS = 4096

    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str = "gpt-4",
        api_base_url: str = "https://api.openai.com/v1",
        timeout_ms: int = 30000,
        llm: Optional[ChatOpenAI] = None,
    ) -> None:
        self.model = model
        self._timeout = timeout_ms / 1000
        self._llm = llm or ChatOpenAI(
            model=model,
            api_key=api_key,
            base_url=api_base_url,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            timeout=self._timeout,
            max_retries=0,
        )

    @property
    def name(self) -> str:
        return "openai"

    def supports_streaming(self) -> bool:
        return True

    async def generate_review(self, request: ReviewRequest) -> ReviewResponse:
        prompt = build_prompt(request)

        try:
            result = await asyncio.wait_for(
                self._llm.agenerate([[HumanMessage(content=prompt)]]),
                self._timeout,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError):
            raise ProviderTimeoutError("AI request timed out") from None
        except openai.APIStatusError as exc:
            body = exc.response.text
            raise ProviderError(
                f"OpenAI API error ({exc.status_code}): {body}",
                status_code=exc.status_code,
                body=body,
            ) from exc
        except openai.APIConnectionError as exc:
            raise ProviderError(f"OpenAI API connection failed: {exc}") from exc

        generations = result.generations[0] if result.generations else []
        if not generations:
            raise ProviderError("No response from OpenAI")

        return parse_review_response(generations[0].text)


class MockReviewProvider(BaseReviewProvider):
    """Deterministic offline provider that derives findings from simple diff heuristics."""

    LARGE_COMMIT_LINES = 100
    SHORT_MESSAGE_CHARS = 10
    DEBUG_MARKERS = ("console.log", "pdb.set_trace", "breakpoint()")
    TODO_MARKERS = ("TODO", "FIXME")

    def __init__(self, should_fail: bool = False, delay: float = 0.1) -> None:
        self.model = "mock"
        self._should_fail = should_fail
        self._delay = delay

    @property
    def name(self) -> str:
        return "mock"

    async def generate_review(self, request: ReviewRequest) -> ReviewResponse:
        await asyncio.sleep(self._delay)

        if self._should_fail:
            raise ProviderError("Mock AI provider failure")

        findings: List[Finding] = []
        for commit in request.commits:
            added_lines = sum(1 for line in commit.diff.split("\n") if line.startswith("+"))

            if added_lines > self.LARGE_COMMIT_LINES:
                findings.append(
                    Finding(
                        commit_id=commit.id,
                        severity=Severity.MEDIUM,
                        category="Code Quality",
                        title="Large commit detected",
                        description=(
                            f"This commit adds {added_lines} lines. "
                            "Consider breaking it into smaller, more focused commits."
                        ),
                        suggestion="Split the commit into logical units of work.",
                    )
                )

            if len(commit.message) < self.SHORT_MESSAGE_CHARS:
                findings.append(
                    Finding(
                        commit_id=commit.id,
                        severity=Severity.LOW,
                        category="Documentation",
                        title="Short commit message",
                        description=(
                            "The commit message is too brief. "
                            "A more descriptive message would improve project history."
                        ),
                        suggestion="Write commit messages that explain the what and why of your changes.",
                    )
                )

            if any(marker in commit.diff for marker in self.DEBUG_MARKERS):
                findings.append(
                    Finding(
                        commit_id=commit.id,
                        severity=Severity.LOW,
                        category="Code Quality",
                        title="Debug statement detected",
                        description="Found a debug statement in the code. Remove debug statements before committing.",
                        suggestion="Use a proper logging library or remove debug statements.",
                    )
                )

            if any(marker in commit.diff for marker in self.TODO_MARKERS):
                findings.append(
                    Finding(
                        commit_id=commit.id,
                        severity=Severity.INFO,
                        category="Documentation",
                        title="TODO/FIXME comment found",
                        description="Found TODO or FIXME comments in the code.",
                        suggestion="Consider creating tickets for these items or addressing them before committing.",
                    )
                )

        if not findings:
            findings.append(
                Finding(
                    commit_id=request.commits[0].id if request.commits else "unknown",
                    severity=Severity.INFO,
                    category="General",
                    title="No issues found",
                    description="The code looks good! No significant issues detected.",
                    suggestion="Keep up the good work!",
                )
            )

        return ReviewResponse(
            findings=findings,
            summary=(
                f"Reviewed {len(request.commits)} commit(s) and found {len(findings)} finding(s). "
                "This is a mock review generated for testing purposes."
            ),
        )


def create_review_provider(cfg: Settings) -> BaseReviewProvider:
    provider_name = "mock" if cfg.use_mock_ai else cfg.ai_provider
    if provider_name == "mock":
        return MockReviewProvider()
    if provider_name == "openai":
        return RemoteCompletionProvider(
            api_key=cfg.openai_api_key,
            model=cfg.openai_model,
            api_base_url=cfg.openai_api_base_url,
            timeout_ms=cfg.ai_request_timeout,
        )
    raise ValueError(f"Unknown AI provider: {provider_name}")
