from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# Пользователь внутри initData (Telegram присылает JSON внутри строки)
class UserIdentity(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    telegram_id: int = Field(alias="id")
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None


# Разобранный и проверенный initData
class VerifiedInitData(BaseModel):
    query_id: Optional[str] = None
    user: Optional[UserIdentity] = None
    auth_date: int
    hash: str


class RealNameOverrides(BaseModel):
    real_name: Optional[str] = None
    real_last_name: Optional[str] = None
    real_patronymic: Optional[str] = None


# Тело запроса POST /api/auth/telegram
class TelegramAuthRequest(BaseModel):
    initData: str = Field(..., description="Raw query string from Telegram WebApp")
    real_name: Optional[str] = None
    real_lastname: Optional[str] = None
    real_patronymic: Optional[str] = None

    def overrides(self) -> RealNameOverrides:
        return RealNameOverrides(
            real_name=self.real_name,
            real_last_name=self.real_lastname,
            real_patronymic=self.real_patronymic,
        )


# Тело запроса PUT /api/auth/profile
class ProfileUpdateRequest(BaseModel):
    real_name: Optional[str] = None
    real_lastname: Optional[str] = None
    real_patronymic: Optional[str] = None

    def overrides(self) -> RealNameOverrides:
        return RealNameOverrides(
            real_name=self.real_name,
            real_last_name=self.real_lastname,
            real_patronymic=self.real_patronymic,
        )
