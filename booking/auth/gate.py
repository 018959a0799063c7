# booking/auth/gate.py
from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import Unauthorized
from ..models.auth import UserSession
from ..models.user import User
from ..services.users import get_account
from .tokens import TemporaryCredential, decode_access_token


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Authorization required")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Bad authorization format")
    return token


def authenticate(db: Session, authorization: Optional[str], *, strict: bool = True) -> User:
    """
    Проверяет заголовок Authorization: Bearer <accessToken> и возвращает пользователя.

    Строгий режим дополнительно требует постоянный (не temp) токен
    и живую запись в sessions для пары (token, user_id). Ничего не меняет в БД.
    """
    token = _bearer_token(authorization)
    credential = decode_access_token(token)

    if not strict:
        u = get_account(db, credential.user_id)
        if u is None:
            raise Unauthorized("Invalid or expired token")
        return u

    if isinstance(credential, TemporaryCredential):
        raise Unauthorized("Permanent token required")

    now = dt.datetime.now(dt.timezone.utc)
    session = db.execute(
        select(UserSession).where(
            UserSession.token == token,
            UserSession.user_id == credential.user_id,
            UserSession.expires_at > now,
        )
    ).scalar_one_or_none()
    if session is None or session.user is None:
        raise Unauthorized("Session missing or expired")
    return session.user
