from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterator

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
try:
    from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
except Exception:  # noqa: BLE001
    ProxyHeadersMiddleware = None
from pydantic import BaseModel
from starlette.exceptions import HTTPException

from .config import (
    Config,
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    load_runtime_config,
    set_runtime_config,
)
from .db import DBConn
from .errors import Conflict, DealDeskError, InvalidInput, NotFound, ValidationFailed
from .models import AuthContext
from .services.banks_service import create_bank, delete_bank, get_bank, list_banks, update_bank
from .services.card_configs_service import (
    create_card_config,
    delete_card_config,
    get_card_config,
    list_card_configs,
    update_card_config,
)
from .services.categories_service import (
    create_category,
    delete_category,
    list_categories,
    update_category,
)
from .services.comments_service import create_comment, list_comments
from .services.posts_service import (
    create_admin_post,
    create_post,
    delete_post,
    get_post,
    list_admin_posts,
    list_posts,
    update_admin_post,
    update_post,
)
from .services.programs_service import (
    create_program,
    delete_program,
    get_program,
    list_programs,
    update_program,
)
from .services.review_service import (
    approve_pending,
    count_by_status,
    create_manual_entry,
    create_pending_post,
    get_pending,
    list_pending,
    reject_pending,
    update_pending,
)
from .services.tweets_service import (
    import_tweets,
    list_raw_tweets,
    parse_csv,
    tweet_from_payload,
)
from .services.users_service import (
    authenticate,
    create_session,
    delete_session,
    ensure_admin,
    ensure_user,
    get_user,
    resolve_session,
)
from .storage import init_db
from .utils import configure_logging, log_event

app = FastAPI(title="DealDesk API")

SESSION_COOKIE_NAME = "dd_session"

if ProxyHeadersMiddleware:
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


def _logger() -> logging.Logger:
    return logging.getLogger("dealdesk.api")


@app.exception_handler(DealDeskError)
async def _dealdesk_error(request: Request, exc: DealDeskError) -> JSONResponse:
    body: dict[str, object] = {"error": exc.message}
    if isinstance(exc, ValidationFailed):
        body["errors"] = exc.errors
    if isinstance(exc, Conflict):
        body.update(exc.extra)
    return JSONResponse(body, status_code=exc.status_code)


@app.exception_handler(ConfigError)
async def _config_error(request: Request, exc: ConfigError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()]
    message = "Invalid request"
    if any(fields):
        message = f"Invalid request: {', '.join(field for field in fields if field)}"
    return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    log_event(
        _logger(),
        logging.ERROR,
        "unhandled_error",
        path=request.url.path,
        error=repr(exc),
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def get_conn() -> Iterator[DBConn]:
    conn = init_db()
    try:
        bootstrap_runtime_config(conn)
        yield conn
    finally:
        conn.close()


def get_config(conn: DBConn = Depends(get_conn)) -> Config:
    return load_runtime_config(conn)


def get_auth_context(request: Request, conn: DBConn = Depends(get_conn)) -> AuthContext | None:
    return resolve_session(conn, _session_token(request))


def require_user(ctx: AuthContext | None = Depends(get_auth_context)) -> AuthContext:
    return ensure_user(ctx)


def require_admin(ctx: AuthContext | None = Depends(get_auth_context)) -> AuthContext:
    return ensure_admin(ctx)


def _session_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE_NAME)


def _is_secure_request(request: Request) -> bool:
    forwarded_proto = request.headers.get("x-forwarded-proto", "").lower()
    if forwarded_proto:
        return forwarded_proto == "https"
    return request.url.scheme == "https"


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class RejectRequest(BaseModel):
    reason: str | None = None


class ReviewUpdateRequest(BaseModel):
    extractedData: dict[str, object] | None = None
    category: str | None = None
    expectedVersion: int | None = None


class ApproveRequest(BaseModel):
    expectedVersion: int | None = None


class ExtractionRequest(BaseModel):
    category: str | None = None
    extractedData: dict[str, object] | None = None
    confidence: float | None = None
    lowConfidenceFields: list[str] | None = None
    reviewerNotes: str | None = None


class TweetImportRequest(BaseModel):
    tweets: list[dict[str, object]] | None = None
    csv: str | None = None


class PostRequest(BaseModel):
    title: str | None = None
    slug: str | None = None
    excerpt: str | None = None
    content: list[dict[str, object]] | str | None = None
    categories: list[str] | str | None = None
    categoryType: str | None = None
    categoryData: dict[str, object] | None = None
    published: bool | None = None
    status: str | None = None
    bankId: str | None = None
    programId: str | None = None
    expiryDateTime: str | None = None
    detailsContent: str | None = None
    ctaUrl: str | None = None


class CategoryRequest(BaseModel):
    name: str | None = None
    slug: str | None = None
    label: str | None = None
    description: str | None = None
    color: str | None = None
    parentId: str | None = None


class BankRequest(BaseModel):
    name: str | None = None
    slug: str | None = None
    logo: str | None = None
    brandColor: str | None = None
    description: str | None = None


class ProgramRequest(BaseModel):
    name: str | None = None
    slug: str | None = None
    type: str | None = None
    logo: str | None = None
    brandColor: str | None = None
    description: str | None = None


class CardConfigRequest(BaseModel):
    categoryType: str | None = None
    displayName: str | None = None
    description: str | None = None
    formSchema: dict[str, object] | None = None
    renderConfig: dict[str, object] | None = None
    requiresBank: bool | None = None
    requiresExpiry: bool | None = None
    supportsVerification: bool | None = None
    supportsActive: bool | None = None
    supportsAuthor: bool | None = None
    cardLayout: str | None = None
    sortOrder: int | None = None
    isEnabled: bool | None = None


class CommentRequest(BaseModel):
    postId: str | None = None
    content: str | None = None


class RuntimeConfigRequest(BaseModel):
    config: dict


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "DealDesk API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.on_event("startup")
def _startup() -> None:
    conn = init_db()
    try:
        bootstrap_runtime_config(conn)
    finally:
        conn.close()


auth_router = APIRouter(prefix="/api/auth")


@auth_router.post("/login")
def auth_login(
    payload: LoginRequest,
    request: Request,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> JSONResponse:
    user = authenticate(conn, payload.email or "", payload.password or "")
    if not user:
        log_event(_logger(), logging.WARNING, "login_failed", email=payload.email or "-")
        return JSONResponse({"error": "Invalid email or password"}, status_code=401)
    ttl_hours = config.auth.session_ttl_hours
    token = create_session(conn, user["id"], ttl_hours)
    log_event(_logger(), logging.INFO, "login_ok", user_id=user["id"])
    response = JSONResponse({"ok": True, "token": token, "user": user})
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        httponly=True,
        secure=_is_secure_request(request),
        samesite="lax",
        max_age=ttl_hours * 3600,
    )
    return response


@auth_router.post("/logout")
def auth_logout(request: Request, conn: DBConn = Depends(get_conn)) -> JSONResponse:
    token = _session_token(request)
    if token:
        delete_session(conn, token)
    response = JSONResponse({"ok": True})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@auth_router.get("/session")
def auth_session(
    ctx: AuthContext = Depends(require_user), conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    return {"user": get_user(conn, ctx.user_id)}


review_router = APIRouter(prefix="/api/admin/review-queue")


@review_router.get("")
def review_queue_list(
    status: str | None = None,
    category: str | None = None,
    counts: bool = False,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    if counts:
        return {"success": True, "counts": count_by_status(conn, ctx)}
    posts = list_pending(
        conn, ctx, status=status, category=category, default_status=config.review.default_status
    )
    return {"success": True, "posts": posts}


@review_router.get("/{pending_id}")
def review_queue_read(
    pending_id: str,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    return {"success": True, "post": get_pending(conn, ctx, pending_id)}


@review_router.post("/{pending_id}/reject")
def review_queue_reject(
    pending_id: str,
    payload: RejectRequest | None = None,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    reason = payload.reason if payload else None
    post = reject_pending(conn, ctx, pending_id, reason, config.review.reject_note)
    return {"success": True, "post": post}


@review_router.put("/{pending_id}/update")
def review_queue_update(
    pending_id: str,
    payload: ReviewUpdateRequest,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    post = update_pending(
        conn,
        ctx,
        pending_id,
        payload.extractedData,
        category=payload.category,
        expected_version=payload.expectedVersion,
    )
    return {"success": True, "post": post}


@review_router.post("/{pending_id}/approve")
def review_queue_approve(
    pending_id: str,
    payload: ApproveRequest | None = None,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    post = approve_pending(
        conn,
        ctx,
        pending_id,
        config.review.approve_note,
        expected_version=payload.expectedVersion if payload else None,
    )
    return {"success": True, "post": post}


tweets_router = APIRouter(
    prefix="/api/admin/sources/tweets", dependencies=[Depends(require_admin)]
)


@tweets_router.get("")
def tweets_list(
    processed: bool | None = None, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    return {"success": True, "tweets": list_raw_tweets(conn, processed=processed)}


@tweets_router.post("/import")
def tweets_import(payload: TweetImportRequest, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    errors: list[str] = []
    warnings: list[str] = []
    if payload.csv is not None:
        tweets, errors, warnings = parse_csv(payload.csv)
        if not tweets:
            raise InvalidInput("; ".join(errors) or "No valid tweets found in CSV")
    elif payload.tweets:
        tweets = []
        for index, item in enumerate(payload.tweets):
            try:
                tweets.append(tweet_from_payload(item))
            except InvalidInput as exc:
                errors.append(f"Tweet {index + 1}: {exc.message}")
    else:
        raise InvalidInput("No tweets provided")

    result = import_tweets(conn, tweets)
    log_event(
        _logger(),
        logging.INFO,
        "tweets_imported",
        count=result["count"],
        skipped=result["skipped"],
        errors=len(errors),
    )
    response: dict[str, object] = {"success": True, **result}
    if errors:
        response["errors"] = errors
    if warnings:
        response["warnings"] = warnings
    return response


@tweets_router.post("/{raw_tweet_id}/manual-entry")
def tweets_manual_entry(
    raw_tweet_id: str,
    ctx: AuthContext = Depends(require_admin),
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    post = create_manual_entry(conn, ctx, raw_tweet_id, config.review)
    return {"success": True, "post": post}


@tweets_router.post("/{raw_tweet_id}/pending-post")
def tweets_pending_post(
    raw_tweet_id: str,
    payload: ExtractionRequest,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    if not payload.category:
        raise InvalidInput("category is required")
    if payload.extractedData is None:
        raise InvalidInput("extractedData must be an object")
    post = create_pending_post(
        conn,
        raw_tweet_id,
        payload.category,
        payload.extractedData,
        config.review,
        confidence=payload.confidence,
        low_confidence_fields=payload.lowConfidenceFields,
        reviewer_notes=payload.reviewerNotes,
    )
    return {"success": True, "post": post}


posts_router = APIRouter(prefix="/api/posts")


@posts_router.get("")
def posts_list(
    categoryType: str | None = None,
    status: str | None = None,
    conn: DBConn = Depends(get_conn),
) -> list[dict[str, object]]:
    return list_posts(conn, category_type=categoryType, status=status)


@posts_router.post("/create")
def posts_create(
    payload: PostRequest,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    return create_post(
        conn, ctx, payload.model_dump(exclude_unset=True), config.posts.default_category
    )


@posts_router.get("/{id_or_slug}")
def posts_read(id_or_slug: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    post = get_post(conn, id_or_slug)
    if not post:
        raise NotFound("Post not found")
    return post


@posts_router.put("/{post_id}")
def posts_update(
    post_id: str,
    payload: PostRequest,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    return update_post(conn, ctx, post_id, payload.model_dump(exclude_unset=True))


@posts_router.delete("/{post_id}")
def posts_delete(
    post_id: str,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    delete_post(conn, ctx, post_id)
    return {"success": True}


@posts_router.get("/{post_id}/comments")
def posts_comments(post_id: str, conn: DBConn = Depends(get_conn)) -> list[dict[str, object]]:
    return list_comments(conn, post_id)


admin_posts_router = APIRouter(prefix="/api/admin/posts")


@admin_posts_router.get("")
def admin_posts_list(
    categoryType: str | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int | None = None,
    _: AuthContext = Depends(require_admin),
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    return list_admin_posts(
        conn,
        category_type=categoryType,
        status=status,
        page=page,
        limit=limit or config.posts.page_size,
        max_limit=config.posts.max_page_size,
    )


@admin_posts_router.post("")
def admin_posts_create(
    payload: PostRequest,
    ctx: AuthContext = Depends(require_admin),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    return create_admin_post(conn, ctx, payload.model_dump(exclude_unset=True))


@admin_posts_router.get("/{post_id}")
def admin_posts_read(
    post_id: str,
    _: AuthContext = Depends(require_admin),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    post = get_post(conn, post_id)
    if not post:
        raise NotFound("Post not found")
    return post


@admin_posts_router.put("/{post_id}")
def admin_posts_update(
    post_id: str,
    payload: PostRequest,
    ctx: AuthContext = Depends(require_admin),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    return update_admin_post(conn, ctx, post_id, payload.model_dump(exclude_unset=True))


@admin_posts_router.delete("/{post_id}")
def admin_posts_delete(
    post_id: str,
    ctx: AuthContext = Depends(require_admin),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    delete_post(conn, ctx, post_id)
    return {"success": True}


categories_router = APIRouter(prefix="/api/categories")


@categories_router.get("")
def categories_list(conn: DBConn = Depends(get_conn)) -> list[dict[str, object]]:
    return list_categories(conn)


@categories_router.post("", dependencies=[Depends(require_admin)])
def categories_create(
    payload: CategoryRequest,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    return create_category(
        conn,
        payload.model_dump(exclude_unset=True),
        max_depth=config.categories.max_depth,
        default_color=config.categories.default_color,
    )


@categories_router.put("/{category_id}", dependencies=[Depends(require_admin)])
def categories_update(
    category_id: str,
    payload: CategoryRequest,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> dict[str, object]:
    return update_category(
        conn,
        category_id,
        payload.model_dump(exclude_unset=True),
        max_depth=config.categories.max_depth,
        default_color=config.categories.default_color,
    )


@categories_router.delete("/{category_id}", dependencies=[Depends(require_admin)])
def categories_delete(category_id: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    delete_category(conn, category_id)
    return {"success": True}


banks_router = APIRouter(prefix="/api/admin/banks")


@banks_router.get("")
def banks_list(stats: bool = False, conn: DBConn = Depends(get_conn)) -> list[dict[str, object]]:
    return list_banks(conn, include_stats=stats)


@banks_router.get("/{bank_id}")
def banks_read(bank_id: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    bank = get_bank(conn, bank_id, include_stats=True)
    if not bank:
        raise NotFound("Bank not found")
    return bank


@banks_router.post("", dependencies=[Depends(require_admin)])
def banks_create(payload: BankRequest, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    bank = create_bank(conn, payload.model_dump(exclude_unset=True))
    log_event(_logger(), logging.INFO, "bank_created", id=bank["id"], slug=bank["slug"])
    return bank


@banks_router.put("/{bank_id}", dependencies=[Depends(require_admin)])
def banks_update(
    bank_id: str, payload: BankRequest, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    return update_bank(conn, bank_id, payload.model_dump(exclude_unset=True))


@banks_router.delete("/{bank_id}", dependencies=[Depends(require_admin)])
def banks_delete(bank_id: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    return delete_bank(conn, bank_id)


programs_router = APIRouter(prefix="/api/admin/programs")


@programs_router.get("")
def programs_list(
    stats: bool = False,
    program_type: str | None = Query(None, alias="type"),
    conn: DBConn = Depends(get_conn),
) -> list[dict[str, object]]:
    return list_programs(conn, program_type=program_type, include_stats=stats)


@programs_router.get("/{program_id}")
def programs_read(program_id: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    program = get_program(conn, program_id, include_stats=True)
    if not program:
        raise NotFound("Program not found")
    return program


@programs_router.post("", dependencies=[Depends(require_admin)])
def programs_create(
    payload: ProgramRequest, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    program = create_program(conn, payload.model_dump(exclude_unset=True))
    log_event(
        _logger(), logging.INFO, "program_created", id=program["id"], type=program["type"]
    )
    return program


@programs_router.put("/{program_id}", dependencies=[Depends(require_admin)])
def programs_update(
    program_id: str, payload: ProgramRequest, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    return update_program(conn, program_id, payload.model_dump(exclude_unset=True))


@programs_router.delete("/{program_id}", dependencies=[Depends(require_admin)])
def programs_delete(program_id: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    return delete_program(conn, program_id)


card_configs_router = APIRouter(prefix="/api/admin/card-configs")


@card_configs_router.get("")
def card_configs_list(
    include_disabled: bool = Query(False, alias="all"),
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
) -> list[dict[str, object]]:
    if include_disabled:
        ensure_admin(ctx)
    return list_card_configs(conn, enabled_only=not include_disabled)


@card_configs_router.get("/{category_type}")
def card_configs_read(category_type: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    config = get_card_config(conn, category_type)
    if not config:
        raise NotFound("Card config not found")
    return config


@card_configs_router.post("", dependencies=[Depends(require_admin)])
def card_configs_create(
    payload: CardConfigRequest, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    return create_card_config(conn, payload.model_dump(exclude_unset=True))


@card_configs_router.put("/{category_type}", dependencies=[Depends(require_admin)])
def card_configs_update(
    category_type: str, payload: CardConfigRequest, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    return update_card_config(conn, category_type, payload.model_dump(exclude_unset=True))


@card_configs_router.delete("/{category_type}", dependencies=[Depends(require_admin)])
def card_configs_delete(category_type: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    delete_card_config(conn, category_type)
    return {"success": True}


comments_router = APIRouter(prefix="/api/comments")


@comments_router.post("")
def comments_create(
    payload: CommentRequest,
    ctx: AuthContext | None = Depends(get_auth_context),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    return create_comment(conn, ctx, payload.model_dump(exclude_unset=True))


config_router = APIRouter(prefix="/api/admin/config", dependencies=[Depends(require_admin)])


@config_router.get("/runtime")
def runtime_config_get(conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    return {"config": get_runtime_config(conn)}


@config_router.put("/runtime")
def runtime_config_set(
    payload: RuntimeConfigRequest, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    set_runtime_config(conn, payload.config)
    log_event(_logger(), logging.INFO, "runtime_config_updated")
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(review_router)
app.include_router(tweets_router)
app.include_router(posts_router)
app.include_router(admin_posts_router)
app.include_router(categories_router)
app.include_router(banks_router)
app.include_router(programs_router)
app.include_router(card_configs_router)
app.include_router(comments_router)
app.include_router(config_router)


def _setup_logging() -> None:
    configure_logging("dealdesk.api")


_setup_logging()


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("dealdesk")
    except Exception:  # noqa: BLE001
        return "unknown"
