from __future__ import annotations

from svn_review.store.base import BaseReviewStore, DuplicateRecordError, SessionStateError
from svn_review.store.memory import InMemoryReviewStore
from svn_review.store.sqlite import SQLiteReviewStore

__all__ = [
    "BaseReviewStore",
    "DuplicateRecordError",
    "InMemoryReviewStore",
    "SQLiteReviewStore",
    "SessionStateError",
]
