import pytest

from database import DatabaseManager
from exceptions import StoreUnavailableError


async def test_busy_store_raises_unavailable(db):
    impatient = DatabaseManager(db.db_path, busy_timeout=0.2)

    async with db.transaction() as conn:
        await conn.execute("INSERT INTO board_flags (name, value) VALUES ('held', 1)")
        with pytest.raises(StoreUnavailableError):
            async with impatient.transaction() as other:
                await other.execute("INSERT INTO board_flags (name, value) VALUES ('blocked', 1)")

    assert await db.get_flag("held") is True
    assert await db.get_flag("blocked") is False


async def test_failed_transaction_rolls_back(db):
    with pytest.raises(RuntimeError):
        async with db.transaction() as conn:
            await conn.execute("INSERT INTO board_flags (name, value) VALUES ('partial', 1)")
            raise RuntimeError("boom")

    assert await db.get_flag("partial") is False


async def test_toggle_flag_logs_in_same_transaction(db):
    assert await db.toggle_flag("posting_locked", log_actions=("lock_posting", "unlock_posting")) is True
    assert await db.toggle_flag("posting_locked", log_actions=("lock_posting", "unlock_posting")) is False

    log = await db.get_moderation_log(1, 10)
    assert [(entry["action"], entry["target_type"]) for entry in log] == [
        ("unlock_posting", "board"), ("lock_posting", "board")]


async def test_sessions_bind_csrf_tokens(db):
    session_id = await db.create_session("token-a")
    assert await db.get_session_csrf_token(session_id) == "token-a"
    assert await db.get_session_csrf_token("no-such-session") is None
