#!/usr/bin/env python3
import logging
from typing import Optional
from fastapi import FastAPI, Depends, File, Form, Request, Response, UploadFile
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, FileResponse
from starlette.middleware.base import BaseHTTPMiddleware
from board import Board, MediaUpload
from config import (SECRET_KEY, DB_PATH, UPLOAD_DIR, MODERATOR_PASSWORD, MODERATOR_LOCK_BYPASS,
                    MAX_REQUEST_SIZE_MB, HTTP_BAD_REQUEST, HTTP_REQUEST_ENTITY_TOO_LARGE,
                    HTTP_INTERNAL_SERVER_ERROR, CACHE_MAX_AGE_24H, SESSION_EXPIRE_HOURS, SECONDS_PER_HOUR,
                    SESSION_COOKIE, MODERATOR_COOKIE, CSRF_HEADER)
from database import DatabaseManager, timestamp
from exceptions import BoardError, ForbiddenError
from media import MediaGate
from models import (BoardPageResponse, CreatedResponse, ErrorResponse, ModerationEdit,
                    ModerationResponse, ModeratorLogin, ReplyResponse, SessionResponse,
                    ThreadDetailResponse, ThreadPreview, ThreadResponse)
from moderation import CallerContext, ModerationAction, ModerationPolicy
from security import SecurityManager

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Request size limit (upload ceiling plus form overhead)
        content_length = request.headers.get("content-length")
        try:
            declared_size = int(content_length) if content_length else 0
        except ValueError:
            return JSONResponse(
                status_code=HTTP_BAD_REQUEST,
                content=ErrorResponse(error="ValidationError", message="Invalid Content-Length header").model_dump()
            )
        if declared_size > MAX_REQUEST_SIZE_MB * 1024 * 1024:
            return JSONResponse(
                status_code=HTTP_REQUEST_ENTITY_TOO_LARGE,
                content=ErrorResponse(error="CapacityError", message="Request entity too large").model_dump()
            )

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.path.startswith("/api/"):
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return response


app = FastAPI(title="Board API", description="Anonymous message board", version="1.0.0")

security_manager = SecurityManager(secret_key=SECRET_KEY, moderator_password=MODERATOR_PASSWORD)
board = Board(DatabaseManager(DB_PATH), MediaGate(UPLOAD_DIR), ModerationPolicy(MODERATOR_LOCK_BYPASS))

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)


async def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("cf-connecting-ip")
    if forwarded:
        return forwarded.strip()
    return request.client.host if request.client else "[unknown]"


async def get_caller(request: Request) -> CallerContext:
    client_ip = await get_client_ip(request)
    return CallerContext(
        is_moderator=security_manager.is_moderator_token(request.cookies.get(MODERATOR_COOKIE)),
        fingerprint=security_manager.fingerprint(client_ip),
    )


async def verify_csrf_token(request: Request, caller: CallerContext = Depends(get_caller)) -> CallerContext:
    csrf_token = request.headers.get(CSRF_HEADER)
    if not csrf_token:
        raise ForbiddenError("CSRF token required")

    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        raise ForbiddenError("Session required")

    stored_csrf_token = await board.db.get_session_csrf_token(session_id)
    if not security_manager.verify_csrf_token(csrf_token, stored_csrf_token):
        logger.warning("Invalid CSRF token from %s", caller.fingerprint)
        raise ForbiddenError("Invalid CSRF token")

    return caller


async def verify_csrf_moderator(caller: CallerContext = Depends(verify_csrf_token)) -> CallerContext:
    board.policy.require_moderator(caller)
    return caller


def thread_response(thread, caller: CallerContext) -> ThreadResponse:
    return ThreadResponse(
        thread_id=thread.thread_id,
        title=thread.title,
        body=thread.body,
        author_name=thread.author_name,
        media_ref=thread.media_ref,
        created_at=thread.created_at,
        last_activity_at=thread.last_activity_at,
        reply_count=thread.reply_count,
        sticky=thread.sticky,
        locked=thread.locked,
        deleted=thread.deleted,
        edited_at=thread.edited_at,
        poster_fingerprint=thread.poster_fingerprint if caller.is_moderator else None,
    )


def reply_response(reply, caller: CallerContext) -> ReplyResponse:
    return ReplyResponse(
        reply_id=reply.reply_id,
        thread_id=reply.thread_id,
        body=reply.body,
        author_name=reply.author_name,
        created_at=reply.created_at,
        deleted=reply.deleted,
        edited_at=reply.edited_at,
        poster_fingerprint=reply.poster_fingerprint if caller.is_moderator else None,
    )


def board_page_response(page, caller: CallerContext) -> BoardPageResponse:
    return BoardPageResponse(
        page=page.page,
        total_pages=page.total_pages,
        posting_locked=page.posting_locked,
        threads=[
            ThreadPreview(
                **thread_response(summary.thread, caller).model_dump(),
                omitted_replies=summary.omitted_replies,
                latest_replies=[reply_response(r, caller) for r in summary.latest_replies],
            )
            for summary in page.threads
        ],
    )


@app.get("/api/session", response_model=SessionResponse)
async def get_session(request: Request, response: Response, caller: CallerContext = Depends(get_caller)):
    session_id = request.cookies.get(SESSION_COOKIE)
    csrf_token = await board.db.get_session_csrf_token(session_id) if session_id else None

    if not csrf_token:
        csrf_token = security_manager.generate_csrf_token()
        session_id = await board.db.create_session(csrf_token)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=session_id,
            max_age=SESSION_EXPIRE_HOURS * SECONDS_PER_HOUR,
            httponly=True,
            secure=False,  # Set to True in production with HTTPS
            samesite="strict"
        )

    return SessionResponse(
        csrf_token=csrf_token,
        is_moderator=caller.is_moderator,
        posting_locked=await board.is_posting_locked(),
    )


@app.get("/api/threads", response_model=BoardPageResponse)
async def get_threads(page: int = 1, caller: CallerContext = Depends(get_caller)):
    return board_page_response(await board.board_page(caller, page), caller)


@app.post("/api/threads", response_model=CreatedResponse)
async def create_thread(
    title: str = Form(""),
    body: str = Form(""),
    name: str = Form(""),
    file: Optional[UploadFile] = File(None),
    caller: CallerContext = Depends(verify_csrf_token),
):
    upload = None
    if file is not None and file.filename:
        data = await file.read()
        upload = MediaUpload(data=data, content_type=file.content_type or "", size=file.size or len(data))

    thread_id = await board.post_thread(caller, title, body, name, upload)
    return CreatedResponse(id=thread_id, thread_id=thread_id)


@app.get("/api/threads/{thread_id}", response_model=ThreadDetailResponse)
async def get_thread(thread_id: int, rpage: int = 1, caller: CallerContext = Depends(get_caller)):
    view = await board.thread_view(caller, thread_id, rpage)
    return ThreadDetailResponse(
        thread=thread_response(view.thread, caller),
        reply_page=view.reply_page,
        total_reply_pages=view.total_reply_pages,
        replies=[reply_response(r, caller) for r in view.replies],
    )


@app.post("/api/threads/{thread_id}/replies", response_model=CreatedResponse)
async def create_reply(
    thread_id: int,
    body: str = Form(""),
    name: str = Form(""),
    caller: CallerContext = Depends(verify_csrf_token),
):
    reply_id = await board.post_reply(caller, thread_id, body, name)
    return CreatedResponse(id=reply_id, thread_id=thread_id)


@app.post("/api/mod/login")
async def moderator_login(login_data: ModeratorLogin, response: Response,
                          caller: CallerContext = Depends(verify_csrf_token)):
    if not security_manager.check_moderator_password(login_data.password):
        logger.warning("Failed moderator login from %s", caller.fingerprint)
        raise ForbiddenError("Wrong password")

    response.set_cookie(
        key=MODERATOR_COOKIE,
        value=security_manager.create_moderator_token(),
        max_age=security_manager.moderator_token_expire_minutes * 60,
        httponly=True,
        secure=False,  # Set to True in production with HTTPS
        samesite="strict"
    )
    return {"message": "Logged in"}


@app.post("/api/mod/logout")
async def moderator_logout(response: Response, caller: CallerContext = Depends(verify_csrf_token)):
    response.delete_cookie(MODERATOR_COOKIE)
    return {"message": "Logged out"}


@app.get("/api/mod/threads", response_model=BoardPageResponse)
async def get_overview(page: int = 1, caller: CallerContext = Depends(get_caller)):
    return board_page_response(await board.overview_page(caller, page), caller)


@app.get("/api/mod/log")
async def get_moderation_log(page: int = 1, caller: CallerContext = Depends(get_caller)):
    board.policy.require_moderator(caller)
    return await board.db.get_moderation_log(page)


@app.post("/api/mod/board-lock", response_model=ModerationResponse)
async def toggle_board_lock(caller: CallerContext = Depends(verify_csrf_moderator)):
    locked = await board.toggle_posting_lock(caller)
    return ModerationResponse(
        action="board_lock",
        target_id=0,
        message=f"Posting {'locked' if locked else 'unlocked'}",
        value=int(locked),
    )


@app.post("/api/mod/{action}/{target_id}", response_model=ModerationResponse)
async def moderate(
    action: ModerationAction,
    target_id: int,
    edit: Optional[ModerationEdit] = None,
    caller: CallerContext = Depends(verify_csrf_moderator),
):
    edit = edit or ModerationEdit()
    value = await board.moderate(caller, action, target_id, title=edit.title, body=edit.body)
    return ModerationResponse(
        action=action.value,
        target_id=target_id,
        message=f"{action.value} applied to {action.target_type} {target_id}",
        value=value,
    )


@app.get("/media/{ref}")
async def serve_media(ref: str):
    return FileResponse(
        board.media.path_for(ref),
        headers={"Cache-Control": f"public, max-age={CACHE_MAX_AGE_24H}"}
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": timestamp()}


@app.exception_handler(BoardError)
async def board_exception_handler(request: Request, exc: BoardError):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.__class__.__name__, message=exc.detail).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=HTTP_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="InternalServerError", message="An unexpected error occurred").model_dump()
    )


@app.on_event("startup")
async def startup_event():
    await board.init()

