from pydantic import BaseModel, field_validator
from typing import Optional, List
from config import (THREAD_TITLE_MIN_LENGTH, THREAD_TITLE_MAX_LENGTH, POST_BODY_MIN_LENGTH,
                    POST_BODY_MAX_LENGTH, AUTHOR_NAME_MAX_LENGTH, DEFAULT_AUTHOR_NAME)
from exceptions import ValidationError


def clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if len(title) < THREAD_TITLE_MIN_LENGTH or len(title) > THREAD_TITLE_MAX_LENGTH:
        raise ValidationError(f"Title must be {THREAD_TITLE_MIN_LENGTH}-{THREAD_TITLE_MAX_LENGTH} characters")
    return title


def clean_body(body: Optional[str]) -> str:
    body = (body or "").strip()
    if len(body) < POST_BODY_MIN_LENGTH or len(body) > POST_BODY_MAX_LENGTH:
        raise ValidationError(f"Comment must be {POST_BODY_MIN_LENGTH}-{POST_BODY_MAX_LENGTH} characters")
    return body


def clean_author(name: Optional[str]) -> str:
    """Blank names fall back to the default poster name."""
    name = (name or "").strip()
    if not name:
        return DEFAULT_AUTHOR_NAME
    if len(name) > AUTHOR_NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be at most {AUTHOR_NAME_MAX_LENGTH} characters")
    return name


class ModeratorLogin(BaseModel):
    password: str


class ModerationEdit(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None

    @field_validator('title', 'body')
    @classmethod
    def strip_blank(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class SessionResponse(BaseModel):
    csrf_token: str
    is_moderator: bool
    posting_locked: bool


class ReplyResponse(BaseModel):
    reply_id: int
    thread_id: int
    body: str
    author_name: str
    created_at: float
    deleted: bool
    edited_at: Optional[float] = None
    poster_fingerprint: Optional[str] = None


class ThreadResponse(BaseModel):
    thread_id: int
    title: str
    body: str
    author_name: str
    media_ref: Optional[str]
    created_at: float
    last_activity_at: float
    reply_count: int
    sticky: bool
    locked: bool
    deleted: bool
    edited_at: Optional[float] = None
    poster_fingerprint: Optional[str] = None


class ThreadPreview(ThreadResponse):
    """Thread as shown on the board index, with its latest replies"""
    omitted_replies: int
    latest_replies: List[ReplyResponse]


class BoardPageResponse(BaseModel):
    page: int
    total_pages: int
    posting_locked: bool
    threads: List[ThreadPreview]


class ThreadDetailResponse(BaseModel):
    thread: ThreadResponse
    reply_page: int
    total_reply_pages: int
    replies: List[ReplyResponse]


class CreatedResponse(BaseModel):
    id: int
    thread_id: int


class ModerationResponse(BaseModel):
    action: str
    target_id: int
    message: str
    value: Optional[int] = None


class ErrorResponse(BaseModel):
    error: str
    message: str
