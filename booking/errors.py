# booking/errors.py
from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """
    Базовая ошибка авторизации.
    message: внутренняя причина (только в лог). public_message: то, что уходит клиенту.
    """
    status_code = 500
    error_type = "Unknown"
    public_message = "Unexpected error"
    headers: Optional[dict] = None

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_payload(self) -> dict:
        return {"success": False, "error": self.public_message, "errorType": self.error_type}


class InvalidTelegramData(AuthError):
    status_code = 401
    error_type = "InvalidTelegramData"
    public_message = "Invalid Telegram data"


class UserCreationError(AuthError):
    status_code = 500
    error_type = "UserCreation"
    public_message = "Failed to create user"


class TokenGenerationError(AuthError):
    status_code = 500
    error_type = "TokenGeneration"
    public_message = "Failed to generate tokens"


class Unauthorized(AuthError):
    status_code = 401
    error_type = "Unauthorized"
    public_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message)
        # причина отказа на уровне гейта и так грубая, её можно показать
        self.public_message = self.message


class RateLimited(AuthError):
    status_code = 429
    error_type = "RateLimited"
    public_message = "Too many requests, please try again later"

    def __init__(self, retry_after: int, headers: Optional[dict] = None, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.headers = {**(headers or {}), "Retry-After": str(retry_after)}

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["retryAfter"] = self.retry_after
        return payload


class InvalidRequest(AuthError):
    status_code = 422
    error_type = "InvalidRequest"
    public_message = "Invalid request body"
