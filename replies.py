import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
from database import DatabaseManager, timestamp
from exceptions import NotFoundError
from models import clean_author, clean_body
from moderation import CallerContext, ModerationAction, ModerationPolicy, is_reply_visible, redact_reply
from threads import ThreadStore, fetch_thread, record_action

logger = logging.getLogger(__name__)


class ReplyOrder(str, Enum):
    CHRONOLOGICAL = "asc"
    RECENT_FIRST = "desc"


@dataclass(slots=True)
class Reply:
    reply_id: int
    thread_id: int
    body: str
    author_name: str
    created_at: float
    deleted: bool = False
    poster_fingerprint: str = ""
    edited_at: Optional[float] = None

    @classmethod
    def from_row(cls, row) -> "Reply":
        return cls(
            reply_id=row["id"],
            thread_id=row["thread_id"],
            body=row["body"],
            author_name=row["author_name"],
            created_at=row["created_at"],
            deleted=bool(row["deleted"]),
            poster_fingerprint=row["poster_fingerprint"],
            edited_at=row["edited_at"],
        )


class ReplyStore:
    def __init__(self, db: DatabaseManager, threads: ThreadStore, policy: ModerationPolicy = None) -> None:
        self.db = db
        self.threads = threads
        self.policy = policy or threads.policy

    async def create_reply(self, caller: CallerContext, thread_id: int, body: str,
                           author_name: str = "", poster_fingerprint: str = "") -> int:
        """Insert a reply and bump its thread in the same transaction."""
        body = clean_body(body)
        author_name = clean_author(author_name)

        async with self.db.transaction() as conn:
            thread = await fetch_thread(conn, thread_id)
            self.policy.check_reply_allowed(caller, thread)

            cursor = await conn.execute("""
                INSERT INTO replies (thread_id, body, author_name, created_at, poster_fingerprint)
                VALUES (?, ?, ?, ?, ?)
            """, (thread_id, body, author_name, timestamp(), poster_fingerprint))
            reply_id = cursor.lastrowid
            await self.threads.bump_on_reply(conn, thread_id)

        logger.debug("Created reply %s in thread %s", reply_id, thread_id)
        return reply_id

    async def get(self, reply_id: int) -> Optional[Reply]:
        row = await self.db.execute_query(
            "SELECT * FROM replies WHERE id = ?",
            (reply_id,),
            fetch_one=True
        )
        return Reply.from_row(row) if row else None

    async def soft_delete(self, reply_id: int, audit: Optional[ModerationAction] = None) -> bool:
        """
        Hide a reply and take it out of its thread's reply_count atomically.
        Returns False if the reply was already deleted.
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT * FROM replies WHERE id = ?", (reply_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError("Reply not found")
            await record_action(self.db, conn, audit, reply_id)
            if row["deleted"]:
                return False

            await conn.execute("UPDATE replies SET deleted = 1 WHERE id = ?", (reply_id,))
            await conn.execute("""
                UPDATE threads
                SET reply_count = MAX(reply_count - 1, 0)
                WHERE id = ? AND deleted = 0
            """, (row["thread_id"],))
        return True

    async def edit(self, reply_id: int, body: str, audit: Optional[ModerationAction] = None) -> None:
        """Moderator edit of a reply body. Never bumps the thread."""
        body = clean_body(body)

        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT thread_id FROM replies WHERE id = ?", (reply_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError("Reply not found")
            self.policy.check_thread_writable(await fetch_thread(conn, row["thread_id"]))
            await conn.execute(
                "UPDATE replies SET body = ?, edited_at = ? WHERE id = ?",
                (body, timestamp(), reply_id)
            )
            await record_action(self.db, conn, audit, reply_id)

    async def list_for_thread(self, thread_id: int, order: ReplyOrder, limit: int,
                              offset: int = 0, include_deleted: bool = False) -> List[Reply]:
        """
        Replies of a thread in the requested order.

        Public listings drop anything not visible, which is every reply of a
        deleted thread. With include_deleted the hidden replies stay in place
        but come back redacted.
        """
        direction = "ASC" if order == ReplyOrder.CHRONOLOGICAL else "DESC"
        async with self.db.connection() as conn:
            thread = await fetch_thread(conn, thread_id)
            if thread is None:
                return []
            if include_deleted:
                cursor = await conn.execute(f"""
                    SELECT * FROM replies WHERE thread_id = ?
                    ORDER BY id {direction}
                    LIMIT ? OFFSET ?
                """, (thread_id, limit, offset))
            else:
                if thread.deleted:
                    return []
                cursor = await conn.execute(f"""
                    SELECT * FROM replies WHERE thread_id = ? AND deleted = 0
                    ORDER BY id {direction}
                    LIMIT ? OFFSET ?
                """, (thread_id, limit, offset))
            rows = await cursor.fetchall()

        replies = [Reply.from_row(row) for row in rows]
        if include_deleted:
            return [redact_reply(reply, thread) for reply in replies]
        return [reply for reply in replies if is_reply_visible(reply, thread)]

    async def count_visible(self, thread_id: int, include_deleted: bool = False) -> int:
        if include_deleted:
            query = "SELECT COUNT(*) AS count FROM replies WHERE thread_id = ?"
        else:
            query = """
                SELECT COUNT(*) AS count FROM replies r
                JOIN threads t ON r.thread_id = t.id
                WHERE r.thread_id = ? AND r.deleted = 0 AND t.deleted = 0
            """
        row = await self.db.execute_query(query, (thread_id,), fetch_one=True)
        return row["count"]
