import io
import os
import threading
import time
import uuid

import pytest
from PIL import Image

from app import create_app
from services.cache_service import CacheService
from utils.config import Settings


class FakeObjectStore:
    """In-memory stand-in for the S3 store: records keys, can be told to fail."""

    def __init__(self):
        self.keys = []
        self.fail = False
        self._lock = threading.Lock()

    def upload(self, path, key, deadline=None):
        if deadline is not None:
            deadline.check()
        if self.fail:
            raise RuntimeError(f"upload refused: {key}")
        assert os.path.exists(path), f"temp file missing during upload: {path}"
        with self._lock:
            self.keys.append(key)
        return f"https://bucket.example/{key}"


class FakeRedis:
    """Dict backed client exposing the few redis-py calls CacheService makes."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self._expires = {}

    def get(self, key):
        expires = self._expires.get(key)
        if expires is not None and time.monotonic() >= expires:
            self.data.pop(key, None)
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        self._expires[key] = time.monotonic() + ex if ex is not None else None
        return True

    def delete(self, key):
        self.data.pop(key, None)
        return 1

    def ping(self):
        return True


def make_png_bytes(color=(0, 128, 0)):
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL="sqlite://",
        TOKEN_SECRET="test-secret",
        REDISHOST="",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def app(settings, object_store, fake_redis):
    app = create_app(settings, object_store=object_store, cache=CacheService(fake_redis, ttl=60))
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _expect_status(resp, code, msg=""):
    """Helper to assert expected HTTP status code."""
    assert resp.status_code == code, f"{msg} expected {code}, got {resp.status_code}, body={resp.get_data(as_text=True)}"


def register_and_login(client, prefix="user"):
    """
    Creates a user and logs it in.
    Returns a dict with: user_id, email, password, headers
    """
    suffix = uuid.uuid4().hex[:8]
    email = f"{prefix}_{suffix}@example.com"
    password = "Secret123!"
    r = client.post("/api/v1/user", json={
        "email": email, "password": password, "username": f"{prefix}_{suffix}", "name": "Test User",
    })
    _expect_status(r, 201, "/user")

    r = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    _expect_status(r, 200, "/auth/login")
    body = r.get_json()
    assert body.get("access_token"), "missing access_token from /auth/login"
    return {
        "user_id": body["user_id"],
        "email": email,
        "password": password,
        "refresh_token": body["refresh_token"],
        "headers": {"Authorization": f"Bearer {body['access_token']}"},
    }


def create_plant(client, user, n_images=0, **fields):
    data = {"common_name": "Monstera", "scientific_name": "Monstera deliciosa", **fields}
    for i in range(n_images):
        data[f"image{i}"] = (io.BytesIO(make_png_bytes()), f"leaf{i}.png")
    return client.post(
        "/api/v1/plant",
        data=data,
        headers=user["headers"],
        content_type="multipart/form-data",
    )


@pytest.fixture
def user(client):
    return register_and_login(client)


@pytest.fixture
def other_user(client):
    return register_and_login(client, prefix="other")
