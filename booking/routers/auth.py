# booking/routers/auth.py
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Cookie, Depends, Response
from sqlalchemy.orm import Session

from ..auth.telegram import read_init_data
from ..auth.throttle import AUTHENTICATION, PROFILE_WRITE
from ..auth.tokens import (
    decode_refresh_token, exchange_refresh_token, invalidate_refresh_token, issue_tokens,
)
from ..config import settings
from ..db import get_db
from ..deps import get_current_account, rate_limit
from ..errors import InvalidTelegramData, Unauthorized
from ..models.user import User
from ..schemas import ProfileUpdateRequest, TelegramAuthRequest
from ..services.users import account_exists, find_or_create_account, update_real_names

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        settings.COOKIE_NAME,
        refresh_token,
        max_age=settings.REFRESH_TOKEN_TTL_SEC,
        path="/",
        domain=settings.COOKIE_DOMAIN,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _read_init_data(init_data: str):
    return read_init_data(
        init_data,
        settings.TELEGRAM_BOT_TOKEN,
        max_age_seconds=settings.INIT_DATA_MAX_AGE_SEC,
        allow_unverified_fallback=settings.ALLOW_UNVERIFIED_FALLBACK,
    )


@router.post("/telegram", dependencies=[Depends(rate_limit(AUTHENTICATION))])
def telegram_auth(
    body: TelegramAuthRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    """
    Принимает Telegram.WebApp.initData, проверяет подпись, заводит/обновляет пользователя.
    Access-токен — в теле ответа, refresh-токен — в HttpOnly-куке.
    """
    data = _read_init_data(body.initData)
    u = find_or_create_account(db, data.user, body.overrides(), auth_date=data.auth_date)
    tokens = issue_tokens(db, u)

    _set_refresh_cookie(response, tokens.refresh_token)
    response.headers["Cache-Control"] = "no-store"
    return {"accessToken": tokens.access_token, "user": u.to_public()}


@router.post("/check-user")
def check_user(payload: Any = Body(None), db: Session = Depends(get_db)):
    """
    Есть ли пользователь с таким telegram_id. Всегда 200: ошибки не уходят клиенту.
    isFullyAuthorized — пользователь есть и прислал валидный initData на тот же id.
    """
    telegram_id = None
    exists = False
    fully_authorized = False
    success = True
    try:
        data = payload if isinstance(payload, dict) else {}
        tg = data.get("telegram_data")
        telegram_id = tg.get("id") if isinstance(tg, dict) else None
        logger.debug("check-user telegram_id=%s action=%s", telegram_id, data.get("action"))

        exists = account_exists(db, telegram_id)
        init_data = data.get("initData")
        if exists and isinstance(init_data, str) and init_data:
            try:
                verified = _read_init_data(init_data)
                fully_authorized = str(verified.user.telegram_id) == str(telegram_id).strip()
            except InvalidTelegramData as e:
                logger.info("check-user: initData rejected: %s", e.message)
    except Exception:
        logger.exception("check-user failed for telegram_id=%s", telegram_id)
        success = False
        exists = False
        fully_authorized = False

    return {
        "exists": exists,
        "telegramId": None if telegram_id is None else str(telegram_id),
        "success": success,
        "isFullyAuthorized": fully_authorized,
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
    }


@router.post("/refresh-token")
def refresh_token(
    refresh_cookie: Optional[str] = Cookie(None, alias=settings.COOKIE_NAME),
    db: Session = Depends(get_db),
):
    _, access_token = exchange_refresh_token(db, refresh_cookie or "")
    return {"accessToken": access_token}


@router.post("/logout")
def logout(
    response: Response,
    refresh_cookie: Optional[str] = Cookie(None, alias=settings.COOKIE_NAME),
    db: Session = Depends(get_db),
):
    if not refresh_cookie:
        return {"message": "Already logged out"}

    try:
        invalidate_refresh_token(db, decode_refresh_token(refresh_cookie))
    except Unauthorized:
        # невалидный токен: в БД отзывать нечего, просто чистим куку
        logger.info("Logout with undecodable refresh token")

    response.delete_cookie(settings.COOKIE_NAME, path="/", domain=settings.COOKIE_DOMAIN)
    return {"message": "Successfully logged out"}


@router.get("/me")
def me(u: User = Depends(get_current_account)):
    return {"success": True, "user": u.to_public()}


@router.put("/profile", dependencies=[Depends(rate_limit(PROFILE_WRITE))])
def update_profile(
    body: ProfileUpdateRequest,
    u: User = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    u = update_real_names(db, u, body.overrides())
    return {"success": True, "user": u.to_public()}
