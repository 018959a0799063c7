"""
Access- и refresh-токены: выпуск, хранение, отзыв и обмен.

Access-токен живёт 15 минут и подкреплён записью в sessions.
Refresh-токен живёт неделю, подписан отдельным секретом; у пользователя
в auth_records хранится ровно один, новый молча отзывает предыдущий.
"""
from __future__ import annotations

import datetime as dt
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Tuple, Union

from jose import jwt, JWTError
from jose.exceptions import JOSEError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import TokenGenerationError, Unauthorized
from ..models.auth import AuthRecord, UserSession
from ..models.user import User
from ..services.users import get_account

logger = logging.getLogger(__name__)

REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class TemporaryCredential:
    """Пользователь без профиля (ни имени, ни username)."""
    user_id: int


@dataclass(frozen=True)
class FullCredential:
    user_id: int
    telegram_id: str
    profile: dict = field(default_factory=dict, compare=False)


Credential = Union[TemporaryCredential, FullCredential]


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _encode(claims: dict, secret: str, ttl_sec: int) -> str:
    iat = int(time.time())
    payload = {**claims, "iat": iat, "exp": iat + ttl_sec, "jti": uuid.uuid4().hex}
    try:
        return jwt.encode(payload, secret, algorithm=settings.JWT_ALG)
    except JOSEError as e:
        raise TokenGenerationError(f"Failed to sign token: {e}") from e


def credential_for(u: User) -> Credential:
    if not u.has_profile:
        return TemporaryCredential(user_id=u.id)
    return FullCredential(
        user_id=u.id,
        telegram_id=u.telegram_id,
        profile={"username": u.username, "firstName": u.first_name, "lastName": u.last_name},
    )


def _claims(credential: Credential) -> dict:
    if isinstance(credential, TemporaryCredential):
        return {"userId": credential.user_id, "temp": True}
    return {"userId": credential.user_id, "telegramId": credential.telegram_id, **credential.profile}


def create_access_token(db: Session, u: User) -> str:
    """Подписывает access-токен и заводит под него запись в sessions."""
    token = _encode(_claims(credential_for(u)), settings.JWT_ACCESS_SECRET, settings.ACCESS_TOKEN_TTL_SEC)
    expires_at = _now() + dt.timedelta(seconds=settings.ACCESS_TOKEN_TTL_SEC)
    try:
        db.add(UserSession(token=token, user_id=u.id, expires_at=expires_at))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise TokenGenerationError(f"Failed to save session: {e}") from e
    return token


def create_refresh_token(user_id: int) -> str:
    return _encode(
        {"userId": user_id, "tokenType": REFRESH_TOKEN_TYPE},
        settings.JWT_REFRESH_SECRET,
        settings.REFRESH_TOKEN_TTL_SEC,
    )


def save_refresh_token(db: Session, user_id: int, refresh_token: str) -> AuthRecord:
    try:
        rec = db.execute(select(AuthRecord).where(AuthRecord.user_id == user_id)).scalar_one_or_none()
        if rec is None:
            rec = AuthRecord(user_id=user_id)
            db.add(rec)
        rec.refresh_token = refresh_token
        rec.updated_at = _now()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise TokenGenerationError(f"Failed to save refresh token: {e}") from e
    return rec


def issue_tokens(db: Session, u: User) -> TokenPair:
    access_token = create_access_token(db, u)
    refresh_token = create_refresh_token(u.id)
    save_refresh_token(db, u.id, refresh_token)
    return TokenPair(access_token=access_token, refresh_token=refresh_token)


def invalidate_refresh_token(db: Session, user_id: int) -> None:
    rec = db.execute(select(AuthRecord).where(AuthRecord.user_id == user_id)).scalar_one_or_none()
    if rec is None:
        return
    rec.refresh_token = None
    rec.updated_at = _now()
    db.commit()


def _user_id_from(payload: dict, reason: str) -> int:
    user_id = payload.get("userId")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise Unauthorized(reason)
    return user_id


def decode_access_token(token: str) -> Credential:
    try:
        payload = jwt.decode(token, settings.JWT_ACCESS_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    if payload.get("tokenType") == REFRESH_TOKEN_TYPE:
        raise Unauthorized("Invalid or expired token")

    user_id = _user_id_from(payload, "Invalid or expired token")
    if payload.get("temp"):
        return TemporaryCredential(user_id=user_id)
    return FullCredential(
        user_id=user_id,
        telegram_id=str(payload.get("telegramId") or ""),
        profile={k: payload.get(k) for k in ("username", "firstName", "lastName")},
    )


def decode_refresh_token(token: str) -> int:
    try:
        payload = jwt.decode(token, settings.JWT_REFRESH_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise Unauthorized("Invalid refresh token")
    if payload.get("tokenType") != REFRESH_TOKEN_TYPE:
        raise Unauthorized("Invalid refresh token")
    return _user_id_from(payload, "Invalid refresh token")


def exchange_refresh_token(db: Session, refresh_token: str) -> Tuple[User, str]:
    """
    Меняет refresh-токен из куки на новый access-токен.
    Любой провал (подпись, тип, отозванный или ротированный токен) даёт одинаковый 401.
    """
    if not refresh_token:
        raise Unauthorized("Invalid refresh token")
    try:
        user_id = decode_refresh_token(refresh_token)
    except Unauthorized:
        logger.info("Refresh rejected: bad signature, type or expiry")
        raise

    rec = db.execute(select(AuthRecord).where(AuthRecord.user_id == user_id)).scalar_one_or_none()
    if rec is None or rec.refresh_token is None or rec.refresh_token != refresh_token:
        logger.info("Refresh rejected for user_id=%s: token revoked or rotated", user_id)
        raise Unauthorized("Invalid refresh token")

    u = get_account(db, user_id)
    if u is None:
        raise Unauthorized("Invalid refresh token")
    return u, create_access_token(db, u)
