from __future__ import annotations

from svn_review.services.review_service import ReviewService

__all__ = ["ReviewService"]
