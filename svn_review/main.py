from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from io import StringIO
from typing import Annotated, Any, AsyncIterator, List, Optional, Type

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from rich.console import Console

from svn_review.commit_ingest import REVISION_PATTERN, SvnCliExecutor, SvnRepository
from svn_review.config import Settings, settings, validate_settings
from svn_review.errors import (
    ProviderError,
    ProviderTimeoutError,
    ReviewError,
    SvnAuthenticationError,
    SvnConnectionError,
    SvnError,
    SvnNotFoundError,
    SvnTimeoutError,
    ValidationError,
)
from svn_review.models import (
    ChangeAction,
    CommitFilters,
    PaginationParams,
    SessionStatus,
    Severity,
)
from svn_review.review import BaseReviewProvider, create_review_provider
from svn_review.services import ReviewService
from svn_review.store import BaseReviewStore, DuplicateRecordError, InMemoryReviewStore, SQLiteReviewStore
from svn_review.utils import RateLimiter

logger = logging.getLogger(__name__)

MAX_COMMITS_PER_REVIEW = 50


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CommitOut(ApiModel):
    revision: int
    author: str
    timestamp: datetime
    message: str


class FileChangeOut(ApiModel):
    path: str
    action: ChangeAction
    copy_from_path: Optional[str] = None
    copy_from_revision: Optional[int] = None


class CommitDetailOut(CommitOut):
    changed_files: List[FileChangeOut]


class DiffOut(ApiModel):
    path: str
    diff: str


class CommitDiffResponse(ApiModel):
    revision: int
    diffs: List[DiffOut]


class PaginationOut(ApiModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int


class CommitListResponse(ApiModel):
    data: List[CommitOut]
    pagination: PaginationOut


class RepositoryInfoOut(ApiModel):
    url: str
    uuid: Optional[str] = None
    revision: Optional[int] = None


class ReviewSubmission(ApiModel):
    commit_ids: List[Annotated[str, StringConstraints(min_length=1)]] = Field(
        ...,
        min_length=1,
        max_length=MAX_COMMITS_PER_REVIEW,
        description="Revisions to review together",
    )

    model_config = ConfigDict(json_schema_extra={"example": {"commitIds": ["1234", "1235"]}})


class FindingOut(ApiModel):
    id: str
    session_id: str
    commit_id: str
    severity: Severity
    category: str
    title: str
    description: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    suggestion: Optional[str] = None


class SessionOut(ApiModel):
    id: str
    commit_ids: List[str]
    provider_name: str
    model: str
    status: SessionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    findings: List[FindingOut] = Field(default_factory=list)


class ReviewSubmissionResponse(ApiModel):
    success: bool
    session_id: str
    session: Optional[SessionOut] = None


class ReviewSessionResponse(ApiModel):
    success: bool
    session: SessionOut


class TextReviewResponse(ApiModel):
    success: bool
    output: str


class ReviewSessionListResponse(ApiModel):
    success: bool
    sessions: List[SessionOut]


class RuleIn(ApiModel):
    name: str = Field(..., min_length=1)
    rule: str = Field(..., min_length=1)
    description: Optional[str] = None
    enabled: bool = True


class RuleOut(RuleIn):
    id: str


class PromptIn(ApiModel):
    name: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    is_active: bool = False


class PromptOut(PromptIn):
    id: str


class RuleUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    rule: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    enabled: Optional[bool] = None


class PromptUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    prompt: Optional[str] = Field(None, min_length=1)


def _error_response(status_code: int, message: str, code: str, details: Any = None) -> JSONResponse:
    body: dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        body["details"] = str(details) if isinstance(details, BaseException) else jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content={"error": body})


_SVN_STATUS: dict[Type[SvnError], int] = {
    SvnAuthenticationError: 401,
    SvnNotFoundError: 404,
    SvnTimeoutError: 504,
    SvnConnectionError: 503,
}


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SvnError)
    async def _svn_error(request: Request, exc: SvnError) -> JSONResponse:
        logger.error("SVN request %s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
        status_code = next((code for cls, code in _SVN_STATUS.items() if isinstance(exc, cls)), 500)
        return _error_response(status_code, exc.message, exc.code, exc.details)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(400, "Validation error", exc.code, exc.details or exc.message)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, "Validation error", ValidationError.code, exc.errors())

    @app.exception_handler(ProviderError)
    async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error("Completion provider failed: %s", exc.message)
        status_code = 504 if isinstance(exc, ProviderTimeoutError) else 502
        return _error_response(status_code, exc.message, exc.code)

    @app.exception_handler(ReviewError)
    async def _review_error(request: Request, exc: ReviewError) -> JSONResponse:
        logger.error("Review failed: %s", exc)
        return _error_response(500, f"Review failed: {exc}", ReviewError.code)


def _parse_revision(revision: str) -> int:
    if not REVISION_PATTERN.match(revision):
        raise ValidationError(
            "Revision must be a positive integer",
            [{"loc": ["path", "revision"], "msg": "Revision must be a positive integer"}],
        )
    return int(revision)


def _client_identifier(request: Request) -> str:
    return request.client.host if request.client else "unknown"


router = APIRouter()


@router.get("/")
async def root():
    return {
        "message": "SVN Commit Review API",
        "version": "1.0.0",
        "endpoints": {
            "GET /commits": "List commits with keyword/author/revision filters and pagination",
            "GET /commits/{revision}": "Commit metadata and changed paths",
            "GET /commits/{revision}/diff": "Per-file diffs of a revision",
            "GET /info": "Repository information",
            "POST /review": "Review a set of commits",
            "GET /review/{sessionId}": "Fetch a review session and its findings",
            "GET /reviews": "List review sessions",
            "GET|POST /rules, PATCH|DELETE /rules/{ruleId}": "Manage review rules",
            "GET|POST /prompts, PATCH|DELETE /prompts/{promptId}": "Manage system prompts",
            "POST /prompts/{promptId}/activate": "Make a prompt the active one",
            "GET /health": "Check API health",
        },
    }


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/info", response_model=RepositoryInfoOut)
async def repository_info(request: Request):
    repository: SvnRepository = request.app.state.repository
    return RepositoryInfoOut.model_validate(await repository.get_repository_info())


@router.get("/commits", response_model=CommitListResponse)
async def list_commits(
    request: Request,
    keyword: Optional[str] = Query(None),
    author: Optional[str] = Query(None),
    start_revision: Optional[int] = Query(None, ge=1, alias="startRevision"),
    end_revision: Optional[int] = Query(None, ge=1, alias="endRevision"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, alias="pageSize"),
):
    cfg: Settings = request.app.state.settings
    repository: SvnRepository = request.app.state.repository

    filters = CommitFilters(
        keyword=keyword or None,
        author=author or None,
        start_revision=start_revision,
        end_revision=end_revision,
    )
    pagination = PaginationParams(page=page, page_size=page_size or cfg.default_page_size).capped(cfg.max_page_size)
    result = await repository.get_commits(filters, pagination)
    return CommitListResponse.model_validate(result)


@router.get("/commits/{revision}", response_model=CommitDetailOut)
async def commit_detail(revision: str, request: Request):
    repository: SvnRepository = request.app.state.repository
    detail = await repository.get_commit_detail(_parse_revision(revision))
    return CommitDetailOut.model_validate(detail)


@router.get("/commits/{revision}/diff", response_model=CommitDiffResponse)
async def commit_diff(revision: str, request: Request):
    repository: SvnRepository = request.app.state.repository
    revision_number = _parse_revision(revision)
    diffs = await repository.get_commit_diff(revision_number)
    return CommitDiffResponse(revision=revision_number, diffs=[DiffOut.model_validate(d) for d in diffs])


@router.post("/review", response_model=ReviewSubmissionResponse)
async def review_commits(request: Request):
    """
    Review the submitted commits with the configured provider.

    The rate limit is checked before the body is validated, so rejected
    requests still count against the caller's window.
    """
    limiter: RateLimiter = request.app.state.rate_limiter
    verdict = limiter.check(_client_identifier(request))
    if not verdict.allowed:
        reset_time = (
            datetime.fromtimestamp(verdict.reset_time, tz=timezone.utc).isoformat()
            if verdict.reset_time is not None
            else "unknown"
        )
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too many requests",
                "message": f"Rate limit exceeded. Try again after {reset_time}",
                "resetTime": reset_time,
            },
        )

    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None
    try:
        submission = ReviewSubmission.model_validate(payload)
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    service: ReviewService = request.app.state.review_service
    session_id = await service.review_commits(submission.commit_ids)
    session = service.get_review_session(session_id)

    return ReviewSubmissionResponse(
        success=True,
        session_id=session_id,
        session=SessionOut.model_validate(session) if session else None,
    )


@router.get("/review/{session_id}")
async def get_review_session(
    session_id: str,
    request: Request,
    format: str = Query("json", description="Output format: 'json' or 'text'"),
):
    service: ReviewService = request.app.state.review_service
    session = service.get_review_session(session_id)
    if session is None:
        return _error_response(404, "Review session not found", "NOT_FOUND")

    if format.lower() == "text":
        cfg: Settings = request.app.state.settings
        output = StringIO()
        console = Console(file=output, width=cfg.console_width, force_terminal=False)
        service.render_session_summary(session, console=console)
        return TextReviewResponse(success=True, output=output.getvalue())

    return ReviewSessionResponse(success=True, session=SessionOut.model_validate(session))


@router.get("/reviews", response_model=ReviewSessionListResponse)
async def list_review_sessions(request: Request):
    service: ReviewService = request.app.state.review_service
    sessions = [SessionOut.model_validate(s) for s in service.list_review_sessions()]
    return ReviewSessionListResponse(success=True, sessions=sessions)


@router.get("/rules", response_model=List[RuleOut])
async def list_rules(request: Request):
    store: BaseReviewStore = request.app.state.store
    return [RuleOut.model_validate(rule) for rule in store.list_rules()]


@router.post("/rules", response_model=RuleOut, status_code=201)
async def create_rule(rule: RuleIn, request: Request):
    store: BaseReviewStore = request.app.state.store
    try:
        created = store.add_rule(rule.name, rule.rule, description=rule.description, enabled=rule.enabled)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return RuleOut.model_validate(created)


@router.get("/prompts", response_model=List[PromptOut])
async def list_prompts(request: Request):
    store: BaseReviewStore = request.app.state.store
    return [PromptOut.model_validate(prompt) for prompt in store.list_prompts()]


@router.post("/prompts", response_model=PromptOut, status_code=201)
async def create_prompt(prompt: PromptIn, request: Request):
    store: BaseReviewStore = request.app.state.store
    try:
        created = store.add_prompt(prompt.name, prompt.prompt, is_active=prompt.is_active)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return PromptOut.model_validate(created)


def _not_found(kind: str, record_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind} not found: {record_id}")


@router.patch("/rules/{rule_id}", response_model=RuleOut)
async def update_rule(rule_id: str, changes: RuleUpdate, request: Request):
    store: BaseReviewStore = request.app.state.store
    try:
        updated = store.update_rule(
            rule_id,
            name=changes.name,
            rule=changes.rule,
            description=changes.description,
            enabled=changes.enabled,
        )
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if updated is None:
        raise _not_found("Rule", rule_id)
    return RuleOut.model_validate(updated)


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(rule_id: str, request: Request):
    store: BaseReviewStore = request.app.state.store
    if not store.delete_rule(rule_id):
        raise _not_found("Rule", rule_id)
    return Response(status_code=204)


@router.patch("/prompts/{prompt_id}", response_model=PromptOut)
async def update_prompt(prompt_id: str, changes: PromptUpdate, request: Request):
    store: BaseReviewStore = request.app.state.store
    try:
        updated = store.update_prompt(prompt_id, name=changes.name, prompt=changes.prompt)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if updated is None:
        raise _not_found("Prompt", prompt_id)
    return PromptOut.model_validate(updated)


@router.post("/prompts/{prompt_id}/activate", response_model=PromptOut)
async def activate_prompt(prompt_id: str, request: Request):
    store: BaseReviewStore = request.app.state.store
    activated = store.activate_prompt(prompt_id)
    if activated is None:
        raise _not_found("Prompt", prompt_id)
    return PromptOut.model_validate(activated)


@router.delete("/prompts/{prompt_id}", status_code=204)
async def delete_prompt(prompt_id: str, request: Request):
    store: BaseReviewStore = request.app.state.store
    if not store.delete_prompt(prompt_id):
        raise _not_found("Prompt", prompt_id)
    return Response(status_code=204)


def _configure_logging(cfg: Settings) -> None:
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_repository(cfg: Settings) -> SvnRepository:
    if not cfg.svn_repo_url:
        raise ValueError("SVN_REPO_URL is required")
    executor = SvnCliExecutor(
        username=cfg.svn_username,
        password=cfg.svn_password,
        timeout_ms=cfg.svn_timeout_ms,
    )
    return SvnRepository(
        cfg.svn_repo_url,
        executor,
        timeout_ms=cfg.svn_timeout_ms,
        default_page_size=cfg.default_page_size,
        max_page_size=cfg.max_page_size,
    )


def _build_store(cfg: Settings) -> BaseReviewStore:
    if cfg.database_path:
        return SQLiteReviewStore(cfg.database_path)
    logger.warning("DATABASE_PATH is not set; review history is kept in memory only")
    return InMemoryReviewStore()


def create_app(
    cfg: Optional[Settings] = None,
    *,
    repository: Optional[SvnRepository] = None,
    store: Optional[BaseReviewStore] = None,
    provider: Optional[BaseReviewProvider] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Build the application. Collaborators not passed in are created from ``cfg`` at startup."""
    cfg = cfg if cfg is not None else settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _configure_logging(cfg)
        if provider is None:
            validate_settings(cfg)

        app.state.settings = cfg
        app.state.repository = repository if repository is not None else _build_repository(cfg)
        app.state.store = store if store is not None else _build_store(cfg)
        review_provider = provider if provider is not None else create_review_provider(cfg)
        app.state.review_service = ReviewService(review_provider, app.state.repository, app.state.store)
        if rate_limiter is not None:
            app.state.rate_limiter = rate_limiter
        else:
            app.state.rate_limiter = RateLimiter(
                cfg.rate_limit_max_requests,
                cfg.rate_limit_window_ms,
                sweep_interval_ms=cfg.rate_limit_sweep_ms,
            )
        app.state.rate_limiter.start()
        logger.info("Review API ready (provider=%s)", review_provider.name)

        try:
            yield
        finally:
            app.state.rate_limiter.stop()
            if store is None:
                app.state.store.close()

    app = FastAPI(
        title="SVN Commit Review API",
        description="Browse SVN history and review commits with an LLM",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
