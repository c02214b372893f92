import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from config import DEFAULT_AUTHOR_NAME
from exceptions import ForbiddenError, LockedError, NotFoundError

REDACTED_TEXT = "Deleted"


@dataclass(frozen=True, slots=True)
class CallerContext:
    is_moderator: bool = False
    fingerprint: str = ""


PUBLIC = CallerContext()
MODERATOR = CallerContext(is_moderator=True)


class ModerationAction(str, Enum):
    LOCK = "lock"
    STICKY = "sticky"
    DELETE = "delete"
    PURGE = "purge"
    RECOUNT = "recount"
    EDIT = "edit"
    DELETE_REPLY = "delete_reply"
    EDIT_REPLY = "edit_reply"

    @property
    def target_type(self) -> str:
        return "reply" if self in (ModerationAction.DELETE_REPLY, ModerationAction.EDIT_REPLY) else "thread"


def is_thread_visible(thread) -> bool:
    return thread is not None and not thread.deleted


def is_reply_visible(reply, thread) -> bool:
    """A reply is visible only while both it and its thread are live."""
    return not reply.deleted and is_thread_visible(thread)


def redact_thread(thread):
    if is_thread_visible(thread):
        return thread
    return dataclasses.replace(thread, title=REDACTED_TEXT, body=REDACTED_TEXT,
                               author_name=DEFAULT_AUTHOR_NAME, media_ref=None)


def redact_reply(reply, thread):
    if is_reply_visible(reply, thread):
        return reply
    return dataclasses.replace(reply, body=REDACTED_TEXT, author_name=DEFAULT_AUTHOR_NAME)


class ModerationPolicy:
    """
    Write gates for threads and replies.

    Flags are independent except `deleted`, which is terminal: once a thread is
    deleted every write against it or its replies is refused as not found.
    """

    def __init__(self, moderator_lock_bypass: bool = True):
        self.moderator_lock_bypass = moderator_lock_bypass

    def require_moderator(self, caller: CallerContext):
        if not caller.is_moderator:
            raise ForbiddenError("Moderator privileges required")

    def check_thread_writable(self, thread: Optional[object]):
        if not is_thread_visible(thread):
            raise NotFoundError("Thread not found")

    def may_bypass_lock(self, caller: CallerContext) -> bool:
        return caller.is_moderator and self.moderator_lock_bypass

    def check_reply_allowed(self, caller: CallerContext, thread: Optional[object]):
        self.check_thread_writable(thread)
        if thread.locked and not self.may_bypass_lock(caller):
            raise LockedError("Thread is locked")

    def check_posting_open(self, caller: CallerContext, posting_locked: bool):
        if posting_locked and not caller.is_moderator:
            raise LockedError("Submissions are currently locked")
