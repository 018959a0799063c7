from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
from .config import settings

# ---------- Declarative Base ----------
class Base(DeclarativeBase):
    pass

# ---------- Engine / Session ----------
# Строка берётся из настроек (например из .env через booking.config.settings)
DATABASE_URL = settings.DATABASE_URL

# Поддержка SQLite и PostgreSQL (или любой другой, поддерживаемый SQLAlchemy)
if DATABASE_URL.startswith("sqlite"):
    # Для sqlite важно указать check_same_thread=False для многопоточного доступа.
    # In-memory база живёт в одном соединении, иначе каждый коннект видит пустую БД.
    sqlite_kwargs = {"connect_args": {"check_same_thread": False}}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        sqlite_kwargs["poolclass"] = StaticPool
    engine = create_engine(DATABASE_URL, future=True, **sqlite_kwargs)
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        future=True,
    )

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def init_db() -> None:
    # Импорт моделей, чтобы при create_all были зарегистрированы все таблицы
    from booking.models import user, auth  # noqa: F401

    Base.metadata.create_all(bind=engine)


# ---------- Dependency ----------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
