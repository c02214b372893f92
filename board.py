import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union
from config import THREADS_PER_PAGE, REPLIES_PER_PAGE, PREVIEW_REPLIES, MODERATOR_PAGE_SIZE
from database import DatabaseManager
from exceptions import NotFoundError, ValidationError
from media import MediaGate
from models import clean_author, clean_body, clean_title
from moderation import (CallerContext, ModerationAction, ModerationPolicy,
                        is_thread_visible, redact_thread)
from ordering import paginate
from replies import Reply, ReplyOrder, ReplyStore
from threads import Thread, ThreadStore

logger = logging.getLogger(__name__)

POSTING_LOCKED_FLAG = "posting_locked"


@dataclass(slots=True)
class MediaUpload:
    data: bytes
    content_type: str
    size: int


@dataclass(slots=True)
class ThreadSummary:
    thread: Thread
    latest_replies: List[Reply] = field(default_factory=list)
    omitted_replies: int = 0


@dataclass(slots=True)
class BoardPage:
    page: int
    total_pages: int
    posting_locked: bool
    threads: List[ThreadSummary]


@dataclass(slots=True)
class ThreadView:
    thread: Thread
    replies: List[Reply]
    reply_page: int
    total_reply_pages: int


class Board:
    """Main Board class that orchestrates all components."""

    def __init__(self, db: DatabaseManager, media: MediaGate, policy: ModerationPolicy = None,
                 threads_per_page: int = THREADS_PER_PAGE, replies_per_page: int = REPLIES_PER_PAGE,
                 preview_replies: int = PREVIEW_REPLIES):
        self.db = db
        self.media = media
        self.policy = policy or ModerationPolicy()
        self.threads = ThreadStore(db, media, self.policy)
        self.replies = ReplyStore(db, self.threads, self.policy)
        self.threads_per_page = threads_per_page
        self.replies_per_page = replies_per_page
        self.preview_replies = preview_replies

    async def init(self):
        await self.db.init_db()

    async def is_posting_locked(self) -> bool:
        return await self.db.get_flag(POSTING_LOCKED_FLAG)

    async def toggle_posting_lock(self, caller: CallerContext) -> bool:
        self.policy.require_moderator(caller)
        locked = await self.db.toggle_flag(POSTING_LOCKED_FLAG, log_actions=("lock_posting", "unlock_posting"))
        logger.info("Board posting %s", "locked" if locked else "unlocked")
        return locked

    # Public write paths
    async def post_thread(self, caller: CallerContext, title: str, body: str, author_name: str = "",
                          upload: Optional[MediaUpload] = None) -> int:
        """Create a new thread, storing its media first."""
        self.policy.check_posting_open(caller, await self.is_posting_locked())
        # Reject bad text before anything touches the disk
        title = clean_title(title)
        body = clean_body(body)
        author_name = clean_author(author_name)

        media_ref = None
        if upload is not None and upload.data:
            media_ref = await asyncio.to_thread(self.media.store, upload.data, upload.content_type, upload.size)

        try:
            return await self.threads.create_thread(title, body, author_name, media_ref, caller.fingerprint)
        except Exception:
            if media_ref:
                logger.warning("Thread insert failed; removing uploaded media %s", media_ref)
                try:
                    await asyncio.to_thread(self.media.release, media_ref)
                except OSError:
                    logger.warning("Could not remove orphaned media %s", media_ref, exc_info=True)
            raise

    async def post_reply(self, caller: CallerContext, thread_id: int, body: str, author_name: str = "") -> int:
        """Reply to an existing thread."""
        self.policy.check_posting_open(caller, await self.is_posting_locked())
        return await self.replies.create_reply(caller, thread_id, body, author_name, caller.fingerprint)

    # Read paths
    async def board_page(self, caller: CallerContext, page: int = 1) -> BoardPage:
        threads, page, total_pages = await self.threads.list_page(page, self.threads_per_page)
        summaries = [await self._summarize(thread, include_deleted=False) for thread in threads]
        return BoardPage(page, total_pages, await self.is_posting_locked(), summaries)

    async def overview_page(self, caller: CallerContext, page: int = 1) -> BoardPage:
        """Moderator listing: every thread in board order, deleted ones redacted."""
        self.policy.require_moderator(caller)
        threads, page, total_pages = await self.threads.list_all_page(page, MODERATOR_PAGE_SIZE)
        summaries = [await self._summarize(thread, include_deleted=True) for thread in threads]
        return BoardPage(page, total_pages, await self.is_posting_locked(), summaries)

    async def _summarize(self, thread: Thread, include_deleted: bool) -> ThreadSummary:
        latest = await self.replies.list_for_thread(
            thread.thread_id, ReplyOrder.RECENT_FIRST, self.preview_replies, include_deleted=include_deleted
        )
        # Shown oldest to newest under the opening post
        latest.reverse()
        omitted = max(thread.reply_count - len(latest), 0) if not include_deleted else 0
        return ThreadSummary(redact_thread(thread), latest, omitted)

    async def thread_view(self, caller: CallerContext, thread_id: int, reply_page: int = 1) -> ThreadView:
        thread = await self.threads.get(thread_id)
        if thread is None or (not is_thread_visible(thread) and not caller.is_moderator):
            raise NotFoundError("Thread not found")

        include_deleted = caller.is_moderator
        total = await self.replies.count_visible(thread_id, include_deleted=include_deleted)
        window = paginate(total, reply_page, self.replies_per_page)
        replies = await self.replies.list_for_thread(
            thread_id, ReplyOrder.CHRONOLOGICAL, window.limit, window.offset, include_deleted=include_deleted
        )
        return ThreadView(redact_thread(thread), replies, window.page, window.total_pages)

    # Moderation
    async def moderate(self, caller: CallerContext, action: Union[ModerationAction, str], target_id: int,
                       title: Optional[str] = None, body: Optional[str] = None) -> Optional[int]:
        """
        Apply a moderation action. The moderation log entry commits in the
        same transaction as the change.
        Returns the resulting flag or count where the action has one.
        """
        self.policy.require_moderator(caller)
        try:
            action = ModerationAction(action)
        except ValueError:
            raise NotFoundError(f"Unknown moderation action: {action}") from None

        result = None
        if action == ModerationAction.LOCK:
            result = int(await self.threads.toggle_locked(target_id, audit=action))
        elif action == ModerationAction.STICKY:
            result = int(await self.threads.toggle_sticky(target_id, audit=action))
        elif action == ModerationAction.DELETE:
            result = int(await self.threads.soft_delete(target_id, audit=action))
        elif action == ModerationAction.PURGE:
            await self.threads.hard_delete(target_id, audit=action)
        elif action == ModerationAction.RECOUNT:
            result = await self.threads.recount(target_id, audit=action)
        elif action == ModerationAction.EDIT:
            if title is None and body is None:
                raise ValidationError("Nothing to edit")
            await self.threads.edit(target_id, title=title, body=body, audit=action)
        elif action == ModerationAction.DELETE_REPLY:
            result = int(await self.replies.soft_delete(target_id, audit=action))
        elif action == ModerationAction.EDIT_REPLY:
            if body is None:
                raise ValidationError("Nothing to edit")
            await self.replies.edit(target_id, body, audit=action)

        logger.info("Moderation %s on %s %s -> %s", action.value, action.target_type, target_id, result)
        return result
