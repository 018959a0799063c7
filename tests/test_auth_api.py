"""End-to-end tests for the /api/auth endpoints."""

import json
import time
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from booking.auth.throttle import AUTHENTICATION, PROFILE_WRITE, RequestThrottle, ThrottleRule
from booking.auth.tokens import create_refresh_token
from booking.config import settings
from booking.main import app
from booking.schemas import UserIdentity
from booking.services.users import find_or_create_account

from conftest import make_init_data


def _login(client, user: dict | None = None, **body):
    return client.post("/api/auth/telegram", json={"initData": make_init_data(user=user), **body})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _claims(token: str) -> dict:
    return jwt.decode(token, settings.JWT_ACCESS_SECRET, algorithms=[settings.JWT_ALG])


class TestTelegramLogin:
    def test_creates_account_and_sets_cookie(self, client):
        resp = _login(client, {"id": 123, "first_name": "A"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["firstName"] == "A"
        assert _claims(body["accessToken"])["userId"] == body["user"]["id"]

        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith("refreshToken=")
        assert "HttpOnly" in set_cookie
        assert "SameSite=strict" in set_cookie or "SameSite=Strict" in set_cookie
        assert "Path=/" in set_cookie
        assert "Secure" not in set_cookie

    def test_second_login_updates_same_account(self, client):
        first = _login(client, {"id": 123, "first_name": "A"}).json()
        second = _login(client, {"id": 123, "first_name": "B"}).json()
        assert second["user"]["id"] == first["user"]["id"]
        assert second["user"]["firstName"] == "B"

    def test_real_names(self, client):
        body = _login(client, {"id": 5, "first_name": "A"}, real_name="Иван", real_lastname="Петров").json()
        assert body["user"]["realName"] == "Иван"
        assert body["user"]["realLastName"] == "Петров"

        body = _login(client, {"id": 5, "first_name": "A"}, real_name="").json()
        assert body["user"]["realName"] == "Иван"

    def test_invalid_signature(self, client):
        init_data = make_init_data(tamper_hash="0" * 64)
        resp = client.post("/api/auth/telegram", json={"initData": init_data})
        assert resp.status_code == 401
        assert resp.json() == {
            "success": False,
            "error": "Invalid Telegram data",
            "errorType": "InvalidTelegramData",
        }
        assert "set-cookie" not in resp.headers

    def test_stale_init_data(self, client):
        init_data = make_init_data(auth_date=int(time.time()) - 2 * 86400)
        resp = client.post("/api/auth/telegram", json={"initData": init_data})
        assert resp.status_code == 401
        assert resp.json()["errorType"] == "InvalidTelegramData"

    @pytest.mark.parametrize("body", [{}, {"initData": 123}, {"initData": None}])
    def test_missing_or_mistyped_init_data(self, client, body):
        resp = client.post("/api/auth/telegram", json=body)
        assert resp.status_code == 401
        assert resp.json() == {
            "success": False,
            "error": "Invalid Telegram data",
            "errorType": "InvalidTelegramData",
        }

    def test_huge_auth_date(self, client):
        params = {"user": json.dumps({"id": 1}), "auth_date": "1" + "0" * 400, "hash": "0" * 64}
        resp = client.post("/api/auth/telegram", json={"initData": urlencode(params)})
        assert resp.status_code == 401
        assert resp.json()["errorType"] == "InvalidTelegramData"

    def test_rate_limited(self, client):
        app.state.throttle = RequestThrottle({AUTHENTICATION: ThrottleRule(2, 60)})
        assert _login(client).status_code == 200
        ok = _login(client)
        assert ok.headers["X-RateLimit-Remaining"] == "0"
        resp = _login(client)
        assert resp.status_code == 429
        body = resp.json()
        assert body["success"] is False
        assert body["errorType"] == "RateLimited"
        assert body["retryAfter"] > 0
        assert int(resp.headers["Retry-After"]) == body["retryAfter"]


class TestRefreshToken:
    def test_exchange(self, client):
        login = _login(client, {"id": 123, "first_name": "A"}).json()
        resp = client.post("/api/auth/refresh-token")
        assert resp.status_code == 200
        access_token = resp.json()["accessToken"]
        assert _claims(access_token)["userId"] == login["user"]["id"]
        assert client.get("/api/auth/me", headers=_bearer(access_token)).status_code == 200

    def test_without_cookie(self, client):
        resp = client.post("/api/auth/refresh-token")
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_unknown_auth_record(self, client, db):
        u = find_or_create_account(db, UserIdentity(id=321, first_name="A"))
        with TestClient(app) as fresh:
            fresh.cookies.set("refreshToken", create_refresh_token(u.id))
            resp = fresh.post("/api/auth/refresh-token")
        assert resp.status_code == 401
        assert "accessToken" not in resp.json()


class TestLogout:
    def test_without_cookie(self, client):
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Already logged out"}

    def test_revokes_refresh_token(self, client):
        _login(client)
        refresh_token = client.cookies.get("refreshToken")
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Successfully logged out"}
        assert "refreshToken=" in resp.headers["set-cookie"]

        with TestClient(app) as fresh:
            fresh.cookies.set("refreshToken", refresh_token)
            assert fresh.post("/api/auth/refresh-token").status_code == 401

    def test_garbage_cookie(self, client):
        client.cookies.set("refreshToken", "garbage")
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Successfully logged out"}


class TestCheckUser:
    def test_unknown_user(self, client):
        resp = client.post("/api/auth/check-user", json={"telegram_data": {"id": 999}, "action": "login"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["exists"] is False
        assert body["telegramId"] == "999"
        assert body["success"] is True
        assert body["isFullyAuthorized"] is False
        assert body["timestamp"]

    def test_existing_user_with_init_data(self, client):
        _login(client, {"id": 123, "first_name": "A"})
        body = client.post("/api/auth/check-user", json={
            "telegram_data": {"id": 123},
            "action": "login",
            "initData": make_init_data(user={"id": 123, "first_name": "A"}),
        }).json()
        assert body["exists"] is True
        assert body["isFullyAuthorized"] is True

    def test_init_data_for_other_user(self, client):
        _login(client, {"id": 123, "first_name": "A"})
        body = client.post("/api/auth/check-user", json={
            "telegram_data": {"id": 123},
            "initData": make_init_data(user={"id": 124, "first_name": "A"}),
        }).json()
        assert body["exists"] is True
        assert body["isFullyAuthorized"] is False

    def test_invalid_ids_never_fail(self, client):
        for payload in ({"telegram_data": {"id": "undefined"}}, {"telegram_data": {}}, {}, [1, 2]):
            resp = client.post("/api/auth/check-user", json=payload)
            assert resp.status_code == 200
            assert resp.json()["exists"] is False


class TestGatedRoutes:
    def test_me(self, client):
        token = _login(client, {"id": 123, "first_name": "A"}).json()["accessToken"]
        resp = client.get("/api/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["user"]["firstName"] == "A"

    def test_me_requires_token(self, client):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Authorization required"

    def test_me_rejects_temporary_token(self, client):
        token = _login(client, {"id": 9}).json()["accessToken"]
        resp = client.get("/api/auth/me", headers=_bearer(token))
        assert resp.status_code == 401
        assert resp.json()["error"] == "Permanent token required"

    def test_profile_update(self, client):
        token = _login(client, {"id": 1, "first_name": "A"}, real_name="Иван").json()["accessToken"]
        resp = client.put("/api/auth/profile", headers=_bearer(token),
                          json={"real_name": "", "real_patronymic": "Сергеевич"})
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["realName"] == "Иван"
        assert user["realPatronymic"] == "Сергеевич"

    def test_profile_rate_limited(self, client):
        app.state.throttle = RequestThrottle({
            AUTHENTICATION: ThrottleRule(15, 60),
            PROFILE_WRITE: ThrottleRule(1, 60),
        })
        token = _login(client, {"id": 1, "first_name": "A"}).json()["accessToken"]
        assert client.put("/api/auth/profile", headers=_bearer(token), json={}).status_code == 200
        assert client.put("/api/auth/profile", headers=_bearer(token), json={}).status_code == 429

    def test_profile_bad_body(self, client):
        token = _login(client, {"id": 1, "first_name": "A"}).json()["accessToken"]
        resp = client.put("/api/auth/profile", headers=_bearer(token), json={"real_name": 5})
        assert resp.status_code == 422
        assert resp.json() == {
            "success": False,
            "error": "Invalid request body",
            "errorType": "InvalidRequest",
        }


def test_ping(client):
    assert client.get("/ping").json() == {"status": "ok"}
