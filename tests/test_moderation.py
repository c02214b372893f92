import pytest

from exceptions import ForbiddenError, LockedError, NotFoundError, ValidationError
from moderation import (MODERATOR, PUBLIC, REDACTED_TEXT, CallerContext, ModerationAction,
                        ModerationPolicy, is_reply_visible, is_thread_visible, redact_reply,
                        redact_thread)
from replies import Reply
from threads import Thread


def make_thread(**overrides):
    fields = dict(thread_id=1, title="title", body="body", author_name="alice",
                  media_ref="abc.png", created_at=1.0, last_activity_at=2.0)
    fields.update(overrides)
    return Thread(**fields)


def make_reply(**overrides):
    fields = dict(reply_id=7, thread_id=1, body="reply", author_name="bob", created_at=3.0)
    fields.update(overrides)
    return Reply(**fields)


def test_visibility():
    live, gone = make_thread(), make_thread(deleted=True)

    assert is_thread_visible(live)
    assert not is_thread_visible(gone)
    assert not is_thread_visible(None)
    assert is_reply_visible(make_reply(), live)
    assert not is_reply_visible(make_reply(deleted=True), live)
    assert not is_reply_visible(make_reply(), gone)


def test_redaction_leaves_live_content_alone():
    thread = make_thread()
    assert redact_thread(thread) is thread
    reply = make_reply()
    assert redact_reply(reply, thread) is reply


def test_redaction_blanks_deleted_content():
    thread = redact_thread(make_thread(deleted=True))
    assert (thread.title, thread.body, thread.author_name, thread.media_ref) == (
        REDACTED_TEXT, REDACTED_TEXT, "Anonymous", None)
    assert thread.deleted

    reply = redact_reply(make_reply(), make_thread(deleted=True))
    assert (reply.body, reply.author_name) == (REDACTED_TEXT, "Anonymous")


def test_require_moderator():
    policy = ModerationPolicy()
    policy.require_moderator(MODERATOR)
    with pytest.raises(ForbiddenError):
        policy.require_moderator(PUBLIC)


def test_reply_gate():
    policy = ModerationPolicy()
    strict = ModerationPolicy(moderator_lock_bypass=False)
    locked = make_thread(locked=True)

    policy.check_reply_allowed(PUBLIC, make_thread())
    policy.check_reply_allowed(MODERATOR, locked)
    with pytest.raises(LockedError):
        policy.check_reply_allowed(PUBLIC, locked)
    with pytest.raises(LockedError):
        strict.check_reply_allowed(MODERATOR, locked)
    with pytest.raises(NotFoundError):
        policy.check_reply_allowed(MODERATOR, make_thread(deleted=True))
    with pytest.raises(NotFoundError):
        policy.check_reply_allowed(PUBLIC, None)


def test_posting_lock_gate():
    policy = ModerationPolicy()
    policy.check_posting_open(PUBLIC, False)
    policy.check_posting_open(MODERATOR, True)
    with pytest.raises(LockedError):
        policy.check_posting_open(CallerContext(fingerprint="abc"), True)


def test_action_targets():
    assert ModerationAction("delete_reply").target_type == "reply"
    assert ModerationAction.EDIT_REPLY.target_type == "reply"
    assert ModerationAction.PURGE.target_type == "thread"


async def test_moderate_requires_moderator(board):
    thread_id = await board.threads.create_thread("t", "b")
    with pytest.raises(ForbiddenError):
        await board.moderate(PUBLIC, "delete", thread_id)
    assert not (await board.threads.get(thread_id)).deleted


async def test_moderate_dispatches_and_logs(board):
    thread_id = await board.threads.create_thread("t", "b")
    reply_id = await board.post_reply(PUBLIC, thread_id, "r")

    assert await board.moderate(MODERATOR, "sticky", thread_id) == 1
    assert await board.moderate(MODERATOR, ModerationAction.LOCK, thread_id) == 1
    assert await board.moderate(MODERATOR, "recount", thread_id) == 1
    await board.moderate(MODERATOR, "edit", thread_id, title="new title")
    await board.moderate(MODERATOR, "edit_reply", reply_id, body="new body")
    assert await board.moderate(MODERATOR, "delete_reply", reply_id) == 1

    thread = await board.threads.get(thread_id)
    assert (thread.title, thread.sticky, thread.locked, thread.reply_count) == ("new title", True, True, 0)
    assert (await board.replies.get(reply_id)).body == "new body"

    log = await board.db.get_moderation_log(1, 50)
    assert [entry["action"] for entry in log] == [
        "delete_reply", "edit_reply", "edit", "recount", "lock", "sticky"]


async def test_moderate_rejects_unknown_and_empty_requests(board):
    thread_id = await board.threads.create_thread("t", "b")
    with pytest.raises(NotFoundError):
        await board.moderate(MODERATOR, "undelete", thread_id)
    with pytest.raises(ValidationError):
        await board.moderate(MODERATOR, "edit", thread_id)


async def test_delete_is_terminal(board):
    thread_id = await board.threads.create_thread("t", "b")
    await board.moderate(MODERATOR, "delete", thread_id)

    assert await board.moderate(MODERATOR, "delete", thread_id) == 0
    for action in ("lock", "sticky"):
        with pytest.raises(NotFoundError):
            await board.moderate(MODERATOR, action, thread_id)
    with pytest.raises(NotFoundError):
        await board.moderate(MODERATOR, "edit", thread_id, body="resurrect")

    await board.moderate(MODERATOR, "purge", thread_id)
    assert await board.threads.get(thread_id) is None


async def test_posting_lock(board):
    assert not await board.is_posting_locked()
    with pytest.raises(ForbiddenError):
        await board.toggle_posting_lock(PUBLIC)

    assert await board.toggle_posting_lock(MODERATOR) is True
    with pytest.raises(LockedError):
        await board.post_thread(PUBLIC, "t", "b")
    thread_id = await board.post_thread(MODERATOR, "announcement", "b")
    with pytest.raises(LockedError):
        await board.post_reply(PUBLIC, thread_id, "r")

    assert await board.toggle_posting_lock(MODERATOR) is False
    await board.post_reply(PUBLIC, thread_id, "r")


async def test_board_page_previews(board):
    thread_id = await board.post_thread(PUBLIC, "t", "b")
    reply_ids = [await board.post_reply(PUBLIC, thread_id, f"r{i}") for i in range(8)]

    page = await board.board_page(PUBLIC, 1)
    summary = page.threads[0]

    assert [r.reply_id for r in summary.latest_replies] == reply_ids[-5:]
    assert summary.omitted_replies == 3
    assert (page.page, page.total_pages, page.posting_locked) == (1, 1, False)


async def test_thread_view_for_deleted_thread(board):
    thread_id = await board.post_thread(PUBLIC, "secret", "b")
    await board.post_reply(PUBLIC, thread_id, "r")
    await board.moderate(MODERATOR, "delete", thread_id)

    with pytest.raises(NotFoundError):
        await board.thread_view(PUBLIC, thread_id)

    view = await board.thread_view(MODERATOR, thread_id)
    assert view.thread.title == REDACTED_TEXT
    assert [r.body for r in view.replies] == [REDACTED_TEXT]

    overview = await board.overview_page(MODERATOR, 1)
    assert [s.thread.thread_id for s in overview.threads] == [thread_id]
    assert (await board.board_page(PUBLIC, 1)).threads == []
