from __future__ import annotations

from typing import Any, Optional


class SvnError(RuntimeError):
    """Base class for failures raised by the SVN adapter."""

    code = "SVN_ERROR"

    def __init__(self, message: str, details: Any = None, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code


class SvnConnectionError(SvnError):
    code = "SVN_CONNECTION_ERROR"


class SvnAuthenticationError(SvnError):
    code = "SVN_AUTHENTICATION_ERROR"


class SvnTimeoutError(SvnError):
    code = "SVN_TIMEOUT_ERROR"


class SvnNotFoundError(SvnError):
    code = "SVN_NOT_FOUND"


class ValidationError(ValueError):
    """Raised when request input is malformed. Never retried."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ProviderError(RuntimeError):
    """Raised when the completion backend call fails."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class ProviderTimeoutError(ProviderError):
    code = "PROVIDER_TIMEOUT"


class ReviewError(RuntimeError):
    """Raised when a review run cannot proceed."""

    code = "REVIEW_ERROR"


def classify_svn_error(exc: BaseException) -> SvnError:
    """Map a raw executor error onto the adapter's error taxonomy.

    Matching is on the lower-cased message. Unrecognized errors are treated as
    connection failures and keep their original message.
    """
    if isinstance(exc, SvnError):
        return exc

    message = str(exc)
    lowered = message.lower()
    if "authentication" in lowered or "authorization" in lowered:
        return SvnAuthenticationError("SVN authentication failed", exc)
    if "connection" in lowered or "network" in lowered:
        return SvnConnectionError("SVN connection failed", exc)
    if "not found" in lowered or "no such" in lowered:
        return SvnNotFoundError("Requested resource not found", exc)
    return SvnConnectionError(message, exc)
