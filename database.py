import aiosqlite
import logging
import secrets
from contextlib import asynccontextmanager
from typing import List, Dict, Optional, Tuple
from datetime import datetime, timezone
from config import (DB_BUSY_TIMEOUT, SESSION_EXPIRE_HOURS, SESSION_TOKEN_BYTES,
                    SECONDS_PER_HOUR, MODERATOR_PAGE_SIZE)
from exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


def timestamp() -> float:
    return datetime.now(timezone.utc).timestamp()


SCHEMA = """
CREATE TABLE IF NOT EXISTS threads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    body TEXT NOT NULL,
    author_name TEXT NOT NULL DEFAULT 'Anonymous',
    media_ref TEXT,
    created_at REAL NOT NULL,
    last_activity_at REAL NOT NULL,
    reply_count INTEGER NOT NULL DEFAULT 0,
    sticky INTEGER NOT NULL DEFAULT 0,
    locked INTEGER NOT NULL DEFAULT 0,
    deleted INTEGER NOT NULL DEFAULT 0,
    poster_fingerprint TEXT NOT NULL DEFAULT '',
    edited_at REAL
);

CREATE TABLE IF NOT EXISTS replies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id INTEGER NOT NULL,
    body TEXT NOT NULL,
    author_name TEXT NOT NULL DEFAULT 'Anonymous',
    created_at REAL NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    poster_fingerprint TEXT NOT NULL DEFAULT '',
    edited_at REAL,
    FOREIGN KEY (thread_id) REFERENCES threads(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sessions (
    session_id TEXT PRIMARY KEY,
    csrf_token TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS board_flags (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS moderation_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    target_type TEXT NOT NULL,
    target_id INTEGER NOT NULL,
    timestamp REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_threads_order ON threads(deleted, sticky DESC, last_activity_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_replies_thread ON replies(thread_id, deleted, id);
CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at);
"""


def _is_busy(exc: Exception) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class DatabaseManager:
    def __init__(self, db_path: str, busy_timeout: float = DB_BUSY_TIMEOUT):
        self.db_path = db_path
        self.busy_timeout = busy_timeout

    @asynccontextmanager
    async def connection(self):
        """Open a connection in autocommit mode with the board's pragmas applied"""
        async with aiosqlite.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None) as conn:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            await conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}")
            yield conn

    @asynccontextmanager
    async def transaction(self):
        """
        Run the enclosed statements as one atomic unit.
        BEGIN IMMEDIATE takes the write lock up front so concurrent writers queue
        on the busy timeout instead of failing halfway through.
        """
        try:
            async with self.connection() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT")
        except aiosqlite.OperationalError as e:
            if _is_busy(e):
                logger.warning("Store busy after %.1fs: %s", self.busy_timeout, e)
                raise StoreUnavailableError() from e
            raise

    async def init_db(self):
        """Create tables and indexes if they do not exist"""
        async with self.connection() as conn:
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.executescript(SCHEMA)
        logger.info("Database ready at %s", self.db_path)

    async def execute_query(self, query: str, params: tuple = (), fetch_one: bool = False):
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                if fetch_one:
                    result = await cursor.fetchone()
                else:
                    result = await cursor.fetchall()
                await cursor.close()
                return result
        except aiosqlite.OperationalError as e:
            if _is_busy(e):
                logger.warning("Store busy on query: %s", e)
                raise StoreUnavailableError() from e
            raise

    async def execute_insert(self, query: str, params: tuple = ()) -> int:
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                lastrowid = cursor.lastrowid
                await cursor.close()
                return lastrowid
        except aiosqlite.OperationalError as e:
            if _is_busy(e):
                logger.warning("Store busy on insert: %s", e)
                raise StoreUnavailableError() from e
            raise

    async def create_session(self, csrf_token: str) -> str:
        """Create a new anonymous session bound to a CSRF token"""
        session_id = secrets.token_urlsafe(SESSION_TOKEN_BYTES)
        current_time = timestamp()
        expires_at = current_time + (SESSION_EXPIRE_HOURS * SECONDS_PER_HOUR)

        await self.execute_insert("""
            INSERT INTO sessions (session_id, csrf_token, created_at, expires_at)
            VALUES (?, ?, ?, ?)
        """, (session_id, csrf_token, current_time, expires_at))
        await self.execute_query("DELETE FROM sessions WHERE expires_at <= ?", (current_time,))

        return session_id

    async def get_session_csrf_token(self, session_id: str) -> Optional[str]:
        """Get CSRF token for a live session"""
        result = await self.execute_query("""
            SELECT csrf_token FROM sessions
            WHERE session_id = ? AND expires_at > ?
        """, (session_id, timestamp()), fetch_one=True)

        return result["csrf_token"] if result else None

    async def get_flag(self, name: str) -> bool:
        row = await self.execute_query(
            "SELECT value FROM board_flags WHERE name = ?",
            (name,),
            fetch_one=True
        )
        return bool(row["value"]) if row else False

    async def toggle_flag(self, name: str, log_actions: Optional[Tuple[str, str]] = None) -> bool:
        """
        Flip a board-wide flag and return its new value.
        log_actions is the (on, off) pair of moderation log entries to write.
        """
        async with self.transaction() as conn:
            await conn.execute(
                "INSERT OR IGNORE INTO board_flags (name, value) VALUES (?, 0)",
                (name,)
            )
            await conn.execute(
                "UPDATE board_flags SET value = 1 - value WHERE name = ?",
                (name,)
            )
            cursor = await conn.execute("SELECT value FROM board_flags WHERE name = ?", (name,))
            row = await cursor.fetchone()
            value = bool(row["value"])
            if log_actions:
                await self.log_moderation_action(log_actions[0] if value else log_actions[1], "board", 0, conn=conn)
        return value

    async def log_moderation_action(self, action: str, target_type: str, target_id: int, conn=None):
        """
        Log moderation action.
        Pass the connection of an open transaction to commit the entry together
        with the change it records.
        """
        query = """
            INSERT INTO moderation_log (action, target_type, target_id, timestamp)
            VALUES (?, ?, ?, ?)
        """
        params = (action, target_type, target_id, timestamp())
        if conn is None:
            await self.execute_insert(query, params)
        else:
            await conn.execute(query, params)

    async def get_moderation_log(self, page: int = 1, per_page: int = MODERATOR_PAGE_SIZE) -> List[Dict]:
        """Get moderation log with pagination"""
        offset = (max(page, 1) - 1) * per_page
        logs = await self.execute_query("""
            SELECT * FROM moderation_log
            ORDER BY timestamp DESC, id DESC
            LIMIT ? OFFSET ?
        """, (per_page, offset))

        return [dict(log) for log in logs]
