from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from ..db import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    # Telegram ID храним строкой: это естественный ключ для поиска
    telegram_id = Column(String(32), unique=True, index=True, nullable=False)

    username = Column(String, nullable=False, default="")
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    photo_url = Column(String, nullable=True)
    email = Column(String, nullable=False)          # заглушка для совместимости схемы

    # Заполняются вручную, пустыми значениями не затираются
    real_name = Column(String, nullable=True)
    real_last_name = Column(String, nullable=True)
    real_patronymic = Column(String, nullable=True)

    auth_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def has_profile(self) -> bool:
        return bool(self.first_name or self.last_name or self.username)

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "username": self.username,
            "photoUrl": self.photo_url,
            "realName": self.real_name,
            "realLastName": self.real_last_name,
            "realPatronymic": self.real_patronymic,
        }
