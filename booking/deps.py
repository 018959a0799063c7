# booking/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request, Response
from sqlalchemy.orm import Session

from .auth.gate import authenticate
from .config import settings
from .db import get_db
from .errors import RateLimited
from .models.user import User


# ------------------ Client address ------------------

def client_address(request: Request) -> str:
    # X-Forwarded-For доверяем только за своим прокси
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ------------------ Session gate ------------------

def get_current_account(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    u = authenticate(db, authorization, strict=settings.STRICT_SESSION_GATE)
    request.state.account = u
    return u


# ------------------ Rate limiting ------------------

def rate_limit(route_class: str):
    """
    Зависимость-ограничитель для класса маршрутов.
    Сам лимитер создаётся в main.py и лежит в app.state.throttle.
    """

    def _check(request: Request, response: Response) -> None:
        throttle = request.app.state.throttle
        decision = throttle.check(client_address(request), route_class)
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(int(decision.reset_at)),
        }
        if not decision.allowed:
            raise RateLimited(decision.retry_after, headers=headers)
        response.headers.update(headers)

    return _check
