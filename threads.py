import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple
from database import DatabaseManager, timestamp
from exceptions import NotFoundError
from models import clean_author, clean_body, clean_title
from moderation import ModerationAction, ModerationPolicy
from ordering import THREAD_ORDER_SQL, paginate

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Thread:
    thread_id: int
    title: str
    body: str
    author_name: str
    media_ref: Optional[str]
    created_at: float
    last_activity_at: float
    reply_count: int = 0
    sticky: bool = False
    locked: bool = False
    deleted: bool = False
    poster_fingerprint: str = ""
    edited_at: Optional[float] = None

    @classmethod
    def from_row(cls, row) -> "Thread":
        return cls(
            thread_id=row["id"],
            title=row["title"],
            body=row["body"],
            author_name=row["author_name"],
            media_ref=row["media_ref"],
            created_at=row["created_at"],
            last_activity_at=row["last_activity_at"],
            reply_count=row["reply_count"],
            sticky=bool(row["sticky"]),
            locked=bool(row["locked"]),
            deleted=bool(row["deleted"]),
            poster_fingerprint=row["poster_fingerprint"],
            edited_at=row["edited_at"],
        )


async def fetch_thread(conn, thread_id: int) -> Optional[Thread]:
    cursor = await conn.execute("SELECT * FROM threads WHERE id = ?", (thread_id,))
    row = await cursor.fetchone()
    await cursor.close()
    return Thread.from_row(row) if row else None


async def record_action(db: DatabaseManager, conn, action: Optional[ModerationAction], target_id: int) -> None:
    """Write the moderation log entry on the connection of the change it records."""
    if action is not None:
        await db.log_moderation_action(action.value, action.target_type, target_id, conn=conn)


class ThreadStore:
    def __init__(self, db: DatabaseManager, media=None, policy: ModerationPolicy = None) -> None:
        self.db = db
        self.media = media
        self.policy = policy or ModerationPolicy()

    async def create_thread(self, title: str, body: str, author_name: str = "",
                            media_ref: Optional[str] = None, poster_fingerprint: str = "") -> int:
        """Create a new thread; it starts at the top of the bump order."""
        title = clean_title(title)
        body = clean_body(body)
        author_name = clean_author(author_name)
        current_time = timestamp()

        async with self.db.transaction() as conn:
            cursor = await conn.execute("""
                INSERT INTO threads (title, body, author_name, media_ref, created_at,
                                     last_activity_at, reply_count, poster_fingerprint)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
            """, (title, body, author_name, media_ref, current_time, current_time, poster_fingerprint))
            thread_id = cursor.lastrowid

        logger.debug("Created thread %s", thread_id)
        return thread_id

    async def bump_on_reply(self, conn, thread_id: int) -> None:
        """
        Count a new reply and bump the thread.

        Must run on the connection of the transaction that inserted the reply.
        The activity timestamp always moves forward, even if the clock did not.
        """
        cursor = await conn.execute("""
            UPDATE threads
            SET reply_count = reply_count + 1,
                last_activity_at = MAX(?, last_activity_at + 0.000001)
            WHERE id = ? AND deleted = 0
        """, (timestamp(), thread_id))
        if cursor.rowcount == 0:
            raise NotFoundError("Thread not found")

    async def get(self, thread_id: int) -> Optional[Thread]:
        row = await self.db.execute_query(
            "SELECT * FROM threads WHERE id = ?",
            (thread_id,),
            fetch_one=True
        )
        return Thread.from_row(row) if row else None

    async def soft_delete(self, thread_id: int, audit: Optional[ModerationAction] = None) -> bool:
        """
        Delete a thread and all its replies. Returns False if it was already deleted.
        The media file is released only after the delete has committed.
        """
        async with self.db.transaction() as conn:
            thread = await fetch_thread(conn, thread_id)
            if thread is None:
                raise NotFoundError("Thread not found")
            await record_action(self.db, conn, audit, thread_id)
            if thread.deleted:
                return False

            await conn.execute("""
                UPDATE threads
                SET deleted = 1, reply_count = 0, media_ref = NULL
                WHERE id = ?
            """, (thread_id,))
            await conn.execute(
                "UPDATE replies SET deleted = 1 WHERE thread_id = ?",
                (thread_id,)
            )

        await self._release_media(thread.media_ref)
        return True

    async def hard_delete(self, thread_id: int, audit: Optional[ModerationAction] = None) -> None:
        """Physically remove a thread; its replies go with it through the foreign key."""
        async with self.db.transaction() as conn:
            thread = await fetch_thread(conn, thread_id)
            if thread is None:
                raise NotFoundError("Thread not found")
            await conn.execute("DELETE FROM threads WHERE id = ?", (thread_id,))
            await record_action(self.db, conn, audit, thread_id)

        await self._release_media(thread.media_ref)

    async def toggle_sticky(self, thread_id: int, audit: Optional[ModerationAction] = None) -> bool:
        return await self._toggle(thread_id, "sticky", audit)

    async def toggle_locked(self, thread_id: int, audit: Optional[ModerationAction] = None) -> bool:
        return await self._toggle(thread_id, "locked", audit)

    async def _toggle(self, thread_id: int, column: str, audit: Optional[ModerationAction] = None) -> bool:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE threads SET {column} = 1 - {column} WHERE id = ? AND deleted = 0",
                (thread_id,)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Thread not found")
            await record_action(self.db, conn, audit, thread_id)
            thread = await fetch_thread(conn, thread_id)
        return getattr(thread, column)

    async def recount(self, thread_id: int, audit: Optional[ModerationAction] = None) -> int:
        """Recompute reply_count from the live replies and store it."""
        async with self.db.transaction() as conn:
            cursor = await conn.execute("""
                UPDATE threads
                SET reply_count = (
                    SELECT COUNT(*) FROM replies WHERE thread_id = ? AND deleted = 0
                )
                WHERE id = ?
            """, (thread_id, thread_id))
            if cursor.rowcount == 0:
                raise NotFoundError("Thread not found")
            await record_action(self.db, conn, audit, thread_id)
            thread = await fetch_thread(conn, thread_id)

        if thread.deleted and thread.reply_count:
            logger.warning("Deleted thread %s still has %s live replies", thread_id, thread.reply_count)
        return thread.reply_count

    async def edit(self, thread_id: int, title: Optional[str] = None, body: Optional[str] = None,
                   audit: Optional[ModerationAction] = None) -> None:
        """Moderator edit. Does not bump the thread."""
        title = clean_title(title) if title is not None else None
        body = clean_body(body) if body is not None else None

        async with self.db.transaction() as conn:
            self.policy.check_thread_writable(await fetch_thread(conn, thread_id))
            await conn.execute("""
                UPDATE threads
                SET title = COALESCE(?, title),
                    body = COALESCE(?, body),
                    edited_at = ?
                WHERE id = ?
            """, (title, body, timestamp(), thread_id))
            await record_action(self.db, conn, audit, thread_id)

    async def list_page(self, page: int, page_size: int) -> Tuple[List[Thread], int, int]:
        """Live threads in board order. Returns (threads, clamped page, total pages)."""
        return await self._page("WHERE deleted = 0", page, page_size)

    async def list_all_page(self, page: int, page_size: int) -> Tuple[List[Thread], int, int]:
        """Same as list_page but including deleted threads, for moderators."""
        return await self._page("", page, page_size)

    async def _page(self, where: str, page: int, page_size: int) -> Tuple[List[Thread], int, int]:
        async with self.db.connection() as conn:
            cursor = await conn.execute(f"SELECT COUNT(*) AS count FROM threads {where}")
            total = (await cursor.fetchone())["count"]
            window = paginate(total, page, page_size)
            cursor = await conn.execute(f"""
                SELECT * FROM threads {where}
                ORDER BY {THREAD_ORDER_SQL}
                LIMIT ? OFFSET ?
            """, (window.limit, window.offset))
            rows = await cursor.fetchall()

        return [Thread.from_row(row) for row in rows], window.page, window.total_pages

    async def _release_media(self, media_ref: Optional[str]) -> None:
        if not media_ref or self.media is None:
            return
        try:
            await asyncio.to_thread(self.media.release, media_ref)
        except OSError:
            # The row no longer points at the file; an orphan is the safe outcome
            logger.warning("Could not release media %s; leaving orphaned file", media_ref, exc_info=True)
