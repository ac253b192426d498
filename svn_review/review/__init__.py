from __future__ import annotations

from svn_review.review.prompt import DEFAULT_SYSTEM_PROMPT, build_prompt
from svn_review.review.response_parser import parse_review_response
from svn_review.review.review_provider import (
    BaseReviewProvider,
    MockReviewProvider,
    RemoteCompletionProvider,
    create_review_provider,
)

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "BaseReviewProvider",
    "MockReviewProvider",
    "RemoteCompletionProvider",
    "build_prompt",
    "create_review_provider",
    "parse_review_response",
]
