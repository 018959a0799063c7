# booking/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth.throttle import build_throttle
from .config import settings
from .db import init_db
from .errors import AuthError, InvalidRequest, InvalidTelegramData
from .routers import auth as auth_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

TELEGRAM_LOGIN_PATH = f"{auth_router.router.prefix}/telegram"


async def _sweep_rate_limits(app: FastAPI) -> None:
    # периодически выкидываем истёкшие окна, чтобы словарь не рос
    while True:
        await asyncio.sleep(settings.RATE_LIMIT_SWEEP_SEC)
        try:
            app.state.throttle.sweep()
        except Exception:
            logger.exception("Rate limit sweep failed")


# --- FASTAPI LIFESPAN ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    sweeper = asyncio.create_task(_sweep_rate_limits(app))
    logger.info("Startup complete")
    yield
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass


app = FastAPI(title="Booking WebApp API", lifespan=lifespan)

app.state.throttle = build_throttle(
    auth_limit=settings.AUTH_RATE_LIMIT,
    auth_window=settings.AUTH_RATE_WINDOW_SEC,
    profile_limit=settings.PROFILE_RATE_LIMIT,
    profile_window=settings.PROFILE_RATE_WINDOW_SEC,
    max_keys=settings.RATE_LIMIT_MAX_KEYS,
    redis_url=settings.REDIS_URL,
)

# --- CORS ---
allowed_origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


# --- Ошибки ---
@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # в лог только поля и тип ошибки, без самих значений
    detail = "bad request body: " + ", ".join(
        f"{'.'.join(map(str, e['loc']))} ({e['type']})" for e in exc.errors()
    )
    # кривое тело логина равносильно невалидному initData
    if request.url.path == TELEGRAM_LOGIN_PATH:
        err: AuthError = InvalidTelegramData(detail)
    else:
        err = InvalidRequest(detail)
    return await auth_error_handler(request, err)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Unexpected error", "errorType": "Unknown"},
    )


# --- Роутеры ---
app.include_router(auth_router.router)


@app.get("/ping")
def ping():
    return {"status": "ok"}
