# booking/auth/telegram.py
from __future__ import annotations
import hmac
import hashlib
import json
import logging
import time
import urllib.parse
from typing import Dict, Optional

from pydantic import ValidationError

from ..errors import InvalidTelegramData
from ..schemas import UserIdentity, VerifiedInitData

logger = logging.getLogger(__name__)

# initData старше суток считаем протухшей
DEFAULT_MAX_AGE = 60 * 60 * 24
# unix-время в секундах; значения за пределами int32 отбрасываем
MAX_AUTH_DATE = 2 ** 31


def parse_init_data(init_data: str) -> Dict[str, str]:
    """
    Разбирает query-string вида query_id=...&user=%7B...%7D&auth_date=...&hash=...
    в плоский словарь. На кривых полях и повторяющихся ключах — ValueError.
    """
    if not init_data:
        return {}
    params: Dict[str, str] = {}
    pairs = urllib.parse.parse_qsl(
        init_data, keep_blank_values=True, strict_parsing=True, errors="strict"
    )
    for key, value in pairs:
        if key in params:
            raise ValueError(f"duplicate key {key!r}")
        params[key] = value
    return params


def parse_auth_date(raw: str) -> Optional[int]:
    try:
        auth_date = int(raw)
    except ValueError:
        return None
    if not 0 <= auth_date <= MAX_AUTH_DATE:
        return None
    return auth_date


def build_data_check_string(params: Dict[str, str]) -> str:
    # сортируем по ключу и склеиваем "key=value" через \n, исключая hash
    return "\n".join(f"{k}={params[k]}" for k in sorted(params) if k != "hash")


def compute_init_data_hash(bot_token: str, data_check_string: str) -> str:
    """
    ВАЛИДАЦИЯ ДЛЯ TELEGRAM WEB APP:
    secret_key = HMAC_SHA256(key="WebAppData", msg=bot_token)  <-- ВАЖНО: байты, не hex
    hash = HMAC_SHA256(key=secret_key, msg=data_check_string)
    """
    secret_key = hmac.new(b"WebAppData", bot_token.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(secret_key, data_check_string.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_init_data(init_data: str, bot_token: str, max_age_seconds: int = DEFAULT_MAX_AGE) -> bool:
    """Проверяет подпись и свежесть initData. Никогда не бросает исключений."""
    if not init_data or not bot_token:
        return False

    try:
        params = parse_init_data(init_data)
    except ValueError:
        return False

    recv_hash = params.pop("hash", "")
    auth_date_raw = params.get("auth_date", "")
    if not recv_hash or not auth_date_raw:
        return False

    auth_date = parse_auth_date(auth_date_raw)
    if auth_date is None:
        return False
    if time.time() - auth_date > max_age_seconds:
        return False

    calc_hash = compute_init_data_hash(bot_token, build_data_check_string(params))
    return hmac.compare_digest(calc_hash.encode("utf-8"), recv_hash.encode("utf-8"))


def read_init_data(
    init_data: str,
    bot_token: str,
    *,
    max_age_seconds: int = DEFAULT_MAX_AGE,
    allow_unverified_fallback: bool = False,
) -> VerifiedInitData:
    """
    Проверяет initData и собирает из неё VerifiedInitData.

    Без токена бота данные принимаются только при allow_unverified_fallback=True,
    и то лишь по структуре (hash, auth_date, user), без проверки подписи.
    """
    if not init_data:
        raise InvalidTelegramData("initData is empty")

    try:
        params = parse_init_data(init_data)
    except ValueError as e:
        raise InvalidTelegramData(f"malformed initData: {e}") from e

    if not params.get("hash"):
        raise InvalidTelegramData("hash is missing")
    if not params.get("auth_date"):
        raise InvalidTelegramData("auth_date is missing")

    if bot_token:
        if not verify_init_data(init_data, bot_token, max_age_seconds):
            raise InvalidTelegramData("signature is invalid or initData is outdated")
    elif allow_unverified_fallback:
        logger.warning("Bot token is not configured: accepting initData WITHOUT signature check")
    else:
        raise InvalidTelegramData("bot token is not configured")

    auth_date = parse_auth_date(params["auth_date"])
    if auth_date is None:
        raise InvalidTelegramData("auth_date is not a valid timestamp")

    user_raw = params.get("user")
    if not user_raw:
        raise InvalidTelegramData("user is missing")
    try:
        user = UserIdentity.model_validate(json.loads(user_raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise InvalidTelegramData(f"user is not valid: {e}") from e

    return VerifiedInitData(
        query_id=params.get("query_id"),
        user=user,
        auth_date=auth_date,
        hash=params["hash"],
    )


def resolve_identity(
    init_data: str,
    bot_token: str,
    *,
    max_age_seconds: int = DEFAULT_MAX_AGE,
    allow_unverified_fallback: bool = False,
) -> UserIdentity:
    data = read_init_data(
        init_data,
        bot_token,
        max_age_seconds=max_age_seconds,
        allow_unverified_fallback=allow_unverified_fallback,
    )
    return data.user
