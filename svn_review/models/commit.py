from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class ChangeAction(str, Enum):
    """Action SVN recorded for a changed path."""

    ADDED = "A"
    MODIFIED = "M"
    DELETED = "D"
    REPLACED = "R"


@dataclass(slots=True, frozen=True)
class Commit:
    """A single revision as reported by the SVN log."""

    revision: int
    author: str
    timestamp: datetime
    message: str


@dataclass(slots=True, frozen=True)
class FileChange:
    """Represents a single path touched by a revision."""

    path: str
    action: ChangeAction
    copy_from_path: Optional[str] = None
    copy_from_revision: Optional[int] = None


@dataclass(slots=True, frozen=True)
class CommitDetail:
    """Commit metadata plus the changed paths, in log order."""

    revision: int
    author: str
    timestamp: datetime
    message: str
    changed_files: List[FileChange] = field(default_factory=list)

    @property
    def commit(self) -> Commit:
        return Commit(
            revision=self.revision,
            author=self.author,
            timestamp=self.timestamp,
            message=self.message,
        )


@dataclass(slots=True, frozen=True)
class Diff:
    """Unified diff text for one path of a revision."""

    path: str
    diff: str


@dataclass(slots=True, frozen=True)
class RepositoryInfo:
    url: str
    uuid: Optional[str] = None
    revision: Optional[int] = None


@dataclass(slots=True)
class CommitFilters:
    keyword: Optional[str] = None
    author: Optional[str] = None
    start_revision: Optional[int] = None
    end_revision: Optional[int] = None


@dataclass(slots=True)
class PaginationParams:
    page: int = 1
    page_size: int = 20

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")

    def capped(self, max_page_size: int) -> PaginationParams:
        """Return a copy whose page size does not exceed ``max_page_size``."""
        return PaginationParams(page=self.page, page_size=min(self.page_size, max_page_size))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(slots=True)
class PaginationMeta:
    page: int
    page_size: int
    total_items: int
    total_pages: int


@dataclass(slots=True)
class PaginatedResponse(Generic[T]):
    data: List[T]
    pagination: PaginationMeta

    @classmethod
    def from_items(cls, items: List[T], params: PaginationParams) -> PaginatedResponse[T]:
        """Slice ``items`` to the requested page and compute page metadata."""
        total_items = len(items)
        start = params.offset
        return cls(
            data=items[start : start + params.page_size],
            pagination=PaginationMeta(
                page=params.page,
                page_size=params.page_size,
                total_items=total_items,
                total_pages=math.ceil(total_items / params.page_size),
            ),
        )
