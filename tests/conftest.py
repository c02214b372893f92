import io
import pytest
from fastapi.testclient import TestClient
from PIL import Image

import app as app_module
from board import Board
from database import DatabaseManager
from media import MediaGate
from moderation import ModerationPolicy


def make_png(size=(4, 4), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def upload_dir(tmp_path):
    return str(tmp_path / "uploads")


@pytest.fixture
def media(upload_dir):
    return MediaGate(upload_dir)


@pytest.fixture
async def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / "board.db"))
    await manager.init_db()
    return manager


@pytest.fixture
async def board(db, media):
    return Board(db, media, ModerationPolicy(moderator_lock_bypass=True))


@pytest.fixture
async def strict_board(db, media):
    return Board(db, media, ModerationPolicy(moderator_lock_bypass=False))


@pytest.fixture
def client(tmp_path, upload_dir, monkeypatch):
    test_board = Board(
        DatabaseManager(str(tmp_path / "api.db")),
        MediaGate(upload_dir),
        ModerationPolicy(moderator_lock_bypass=True),
    )
    monkeypatch.setattr(app_module, "board", test_board)
    with TestClient(app_module.app) as test_client:
        yield test_client


@pytest.fixture
def csrf(client) -> dict:
    token = client.get("/api/session").json()["csrf_token"]
    return {"X-CSRF-Token": token}


@pytest.fixture
def moderator(client, csrf) -> dict:
    response = client.post("/api/mod/login", json={"password": app_module.MODERATOR_PASSWORD}, headers=csrf)
    assert response.status_code == 200
    return csrf
