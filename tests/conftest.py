import os
import tempfile
from pathlib import Path

import pytest

_TMP = Path(tempfile.mkdtemp(prefix="smartinterview-tests-"))
DB_FILE = _TMP / "test.db"

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{DB_FILE}"
os.environ["GEMINI_API_KEY"] = ""
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["MEDIA_DIR"] = str(_TMP / "media")
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from media_store import MediaStore  # noqa: E402

# Small budgets so eviction paths are reachable with tiny payloads.
GLOBAL_BUDGET = 10_000
CANDIDATE_BUDGET = 4_000
MAX_ASSET = 3_000


@pytest.fixture
def store(tmp_path, monkeypatch):
    media = MediaStore(str(tmp_path / "media"), GLOBAL_BUDGET, CANDIDATE_BUDGET, MAX_ASSET)
    monkeypatch.setattr(main, "media_store", media)
    return media


@pytest.fixture
def client(store):
    if DB_FILE.exists():
        DB_FILE.unlink()
    with TestClient(main.app) as c:
        yield c


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def login(client):
    def _login(username: str, password: str = "12345") -> dict:
        r = client.post("/api/auth/login", json={"username": username, "password": password})
        assert r.status_code == 200, r.text
        return bearer(r.json()["token"])
    return _login


@pytest.fixture
def admin(login):
    return login("admin")


@pytest.fixture
def demo(client):
    r = client.post("/api/auth/demo")
    assert r.status_code == 200, r.text
    return bearer(r.json()["token"])


@pytest.fixture
def demo_interview_id(client, demo):
    r = client.get("/api/me/interviews", headers=demo)
    assert r.status_code == 200
    return r.json()[0]["id"]
