from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import UserCreationError
from ..models.user import User
from ..schemas import RealNameOverrides, UserIdentity

logger = logging.getLogger(__name__)

# Значения, которые фронт присылает вместо отсутствующего id
_INVALID_TELEGRAM_IDS = {"", "undefined", "null"}


def placeholder_email(telegram_id: str) -> str:
    return f"{telegram_id}@telegram.user"


def _apply_identity(u: User, identity: UserIdentity) -> None:
    # видимые поля всегда берём из последнего initData
    u.username = identity.username or ""
    u.first_name = identity.first_name or ""
    u.last_name = identity.last_name or ""
    u.photo_url = identity.photo_url


def _apply_overrides(u: User, overrides: Optional[RealNameOverrides]) -> None:
    # пустые значения не затирают уже сохранённые настоящие ФИО
    if overrides is None:
        return
    for field in ("real_name", "real_last_name", "real_patronymic"):
        value = (getattr(overrides, field) or "").strip()
        if value:
            setattr(u, field, value)


def get_account(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def get_account_by_telegram_id(db: Session, telegram_id: str) -> Optional[User]:
    return db.execute(select(User).where(User.telegram_id == telegram_id)).scalar_one_or_none()


def account_exists(db: Session, telegram_id) -> bool:
    tgid = str(telegram_id).strip() if telegram_id is not None else ""
    if tgid in _INVALID_TELEGRAM_IDS:
        return False
    return get_account_by_telegram_id(db, tgid) is not None


def find_or_create_account(
    db: Session,
    identity: UserIdentity,
    overrides: Optional[RealNameOverrides] = None,
    auth_date: Optional[int] = None,
) -> User:
    """
    Ищет пользователя по telegram_id; если нет — создаёт.
    Существующему обновляет username/имя/фамилию/фото, ФИО — только непустыми значениями.
    """
    tgid = str(identity.telegram_id)
    try:
        try:
            return _upsert(db, tgid, identity, overrides, auth_date)
        except IntegrityError:
            # параллельный первый вход с тем же telegram_id: запись уже создана соседом
            db.rollback()
            logger.info("Concurrent insert for telegram_id=%s, retrying as update", tgid)
            return _upsert(db, tgid, identity, overrides, auth_date)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to create/update user telegram_id=%s: %s", tgid, e)
        raise UserCreationError(f"Failed to create/update user: {e}") from e


def _upsert(
    db: Session,
    tgid: str,
    identity: UserIdentity,
    overrides: Optional[RealNameOverrides],
    auth_date: Optional[int],
) -> User:
    u = get_account_by_telegram_id(db, tgid)
    created = u is None
    if created:
        u = User(telegram_id=tgid, email=placeholder_email(tgid))
        db.add(u)

    _apply_identity(u, identity)
    _apply_overrides(u, overrides)
    if auth_date is not None:
        u.auth_date = dt.datetime.fromtimestamp(auth_date, tz=dt.timezone.utc)

    db.commit()
    db.refresh(u)
    if created:
        logger.info("Created user id=%s for telegram_id=%s", u.id, tgid)
    return u


def update_real_names(db: Session, u: User, overrides: RealNameOverrides) -> User:
    try:
        _apply_overrides(u, overrides)
        db.commit()
        db.refresh(u)
    except SQLAlchemyError as e:
        db.rollback()
        raise UserCreationError(f"Failed to update user {u.id}: {e}") from e
    return u
