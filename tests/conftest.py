"""Shared fixtures: test settings, an in-memory database and an API client."""

import os

# Настройки читаются при импорте booking.config, поэтому окружение задаём до импортов пакета
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:ABC-DEF1234ghIkl-zyx57W2v1u123ew11"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["ALLOW_UNVERIFIED_FALLBACK"] = "false"
os.environ["STRICT_SESSION_GATE"] = "true"
os.environ.pop("REDIS_URL", None)

import json
import time
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from booking.auth.telegram import build_data_check_string, compute_init_data_hash
from booking.auth.throttle import build_throttle
from booking.config import settings
from booking.db import Base, SessionLocal, engine, init_db
from booking.main import app


BOT_TOKEN = os.environ["TELEGRAM_BOT_TOKEN"]


def make_init_data(
    user: dict | None = None,
    auth_date: int | None = None,
    extra_params: dict | None = None,
    bot_token: str = BOT_TOKEN,
    tamper_hash: str | None = None,
) -> str:
    """Build a signed initData string the way the Telegram client does."""
    if auth_date is None:
        auth_date = int(time.time())
    if user is None:
        user = {"id": 12345, "first_name": "Test", "username": "testuser"}
    params = {"query_id": "AAHdF_8gAAAAANwX_yDK2aQu", "user": json.dumps(user), "auth_date": str(auth_date)}
    if extra_params:
        params.update(extra_params)
    params["hash"] = tamper_hash or compute_init_data_hash(bot_token, build_data_check_string(params))
    return urlencode(params)



@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    app.state.throttle = build_throttle(
        auth_limit=settings.AUTH_RATE_LIMIT,
        auth_window=settings.AUTH_RATE_WINDOW_SEC,
        profile_limit=settings.PROFILE_RATE_LIMIT,
        profile_window=settings.PROFILE_RATE_WINDOW_SEC,
    )
    with TestClient(app) as c:
        yield c
    Base.metadata.drop_all(bind=engine)
