import time

import pytest
import redis

from conftest import FakeRedis
from services.auth_service import AuthService
from services.cache_service import CacheService
from services.errors import CacheError
from utils.jwt_helper import generate_token


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def set(self, key, value, ex=None):
        raise redis.ConnectionError("connection refused")

    def delete(self, key):
        raise redis.ConnectionError("connection refused")

    def ping(self):
        raise redis.ConnectionError("connection refused")


def test_get_missing_key_is_not_an_error():
    cache = CacheService(FakeRedis())
    assert cache.get("nope") == (None, False)


def test_set_returns_none_and_stores_with_ttl():
    client = FakeRedis()
    cache = CacheService(client, ttl=42)
    assert cache.set("k", "v") is None
    assert cache.get("k") == ("v", True)
    assert client.ttls["k"] == 42


def test_bytes_values_are_decoded():
    client = FakeRedis()
    client.data["k"] = b"v"
    assert CacheService(client).get("k") == ("v", True)


@pytest.mark.parametrize("call", [
    lambda c: c.get("k"),
    lambda c: c.set("k", "v"),
    lambda c: c.delete("k"),
    lambda c: c.ping(),
])
def test_backend_errors_are_wrapped(call):
    with pytest.raises(CacheError):
        call(CacheService(BrokenRedis()))


class _Settings:
    TOKEN_SECRET = "s3cret"
    JWT_EXPIRE_MINUTES = 5
    REFRESH_TTL_DAYS = 1


def test_authenticate_memoizes_verified_token():
    client = FakeRedis()
    auth = AuthService(repo=None, settings=_Settings(), cache=CacheService(client))
    token = generate_token("user-1", "s3cret")

    assert auth.authenticate(token).user_id == "user-1"
    assert list(client.data.values()) == ["user-1"]
    # the cache key never contains the raw token
    assert all(token not in key for key in client.data)


def test_authenticate_survives_cache_outage():
    auth = AuthService(repo=None, settings=_Settings(), cache=CacheService(BrokenRedis()))
    token = generate_token("user-2", "s3cret")
    assert auth.authenticate(token).user_id == "user-2"


def test_authenticate_rejects_bad_token():
    auth = AuthService(repo=None, settings=_Settings(), cache=CacheService(FakeRedis()))
    assert auth.authenticate("not-a-jwt") is None
    assert auth.authenticate(generate_token("u", "other-secret")) is None
    assert auth.authenticate(None) is None


def test_set_with_explicit_ttl():
    client = FakeRedis()
    CacheService(client, ttl=300).set("k", "v", ttl=7)
    assert client.ttls["k"] == 7


def test_memoized_token_stops_working_when_it_expires():
    client = FakeRedis()
    auth = AuthService(repo=None, settings=_Settings(), cache=CacheService(client, ttl=300))
    token = generate_token("u1", "s3cret", expire_minutes=3 / 60)

    assert auth.authenticate(token).user_id == "u1"
    assert all(ttl <= 3 for ttl in client.ttls.values())

    time.sleep(3.5)
    assert auth.authenticate(token) is None


def test_memo_ttl_is_capped_by_cache_ttl():
    client = FakeRedis()
    auth = AuthService(repo=None, settings=_Settings(), cache=CacheService(client, ttl=42))
    auth.authenticate(generate_token("u1", "s3cret", expire_minutes=60))
    assert list(client.ttls.values()) == [42]
