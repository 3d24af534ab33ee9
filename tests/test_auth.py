from conftest import _expect_status, register_and_login


def test_login_ok(client):
    u = register_and_login(client)
    assert u["user_id"]
    assert u["refresh_token"]


def test_login_sets_refresh_cookie(client, user):
    r = client.post("/api/v1/auth/login", json={"email": user["email"], "password": user["password"]})
    _expect_status(r, 200, "/auth/login")
    assert "refresh_token=" in r.headers.get("Set-Cookie", "")
    assert "HttpOnly" in r.headers.get("Set-Cookie", "")


def test_login_wrong_password(client, user):
    r = client.post("/api/v1/auth/login", json={"email": user["email"], "password": "nope"})
    _expect_status(r, 401, "wrong password")


def test_login_unknown_email(client):
    r = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "x"})
    _expect_status(r, 401, "unknown email")


def test_login_missing_fields(client):
    r = client.post("/api/v1/auth/login", json={"email": ""})
    _expect_status(r, 400, "missing fields")


def test_protected_route_requires_token(client, user):
    r = client.get(f"/api/v1/user/{user['user_id']}")
    _expect_status(r, 401, "no token")


def test_protected_route_rejects_garbage_token(client, user):
    r = client.get(f"/api/v1/user/{user['user_id']}", headers={"Authorization": "Bearer not.a.jwt"})
    _expect_status(r, 401, "garbage token")


def test_raw_token_without_bearer_prefix_is_accepted(client, user):
    raw = user["headers"]["Authorization"].split(" ", 1)[1]
    r = client.get(f"/api/v1/user/{user['user_id']}", headers={"Authorization": raw})
    _expect_status(r, 200, "raw token")


def test_verified_token_is_cached(client, user, fake_redis):
    r = client.get(f"/api/v1/user/{user['user_id']}", headers=user["headers"])
    _expect_status(r, 200)
    assert user["user_id"] in fake_redis.data.values()


def test_refresh_issues_new_access_token(client, user):
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": user["refresh_token"]})
    _expect_status(r, 200, "/auth/refresh")
    body = r.get_json()
    assert body["user_id"] == user["user_id"]

    headers = {"Authorization": f"Bearer {body['access_token']}"}
    r = client.get(f"/api/v1/user/{user['user_id']}", headers=headers)
    _expect_status(r, 200, "refreshed token")


def test_refresh_with_unknown_token(client):
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": "bogus"})
    _expect_status(r, 401, "unknown refresh")


def test_refresh_without_token(client):
    r = client.post("/api/v1/auth/refresh", json={})
    _expect_status(r, 401, "missing refresh")


def test_logout_revokes_refresh_token(client, user):
    r = client.post("/api/v1/auth/logout", json={"refresh_token": user["refresh_token"]})
    _expect_status(r, 200, "/auth/logout")

    r = client.post("/api/v1/auth/refresh", json={"refresh_token": user["refresh_token"]})
    _expect_status(r, 401, "refresh after logout")


def test_missing_token_body(client, user):
    r = client.get(f"/api/v1/user/{user['user_id']}")
    assert r.get_json() == {"error": "Missing or invalid JWT token"}


def test_login_rejects_non_string_fields(client):
    r = client.post("/api/v1/auth/login", json={"email": 5, "password": "x"})
    _expect_status(r, 400, "numeric email")
    r = client.post("/api/v1/auth/login", json={"email": "a@b.co", "password": 123})
    _expect_status(r, 400, "numeric password")
