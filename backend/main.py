import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import IntegrityError

from core.settlement_manager import settlement_manager
from db import init_db
from routes.auth import router as auth_router
from routes.games import router as games_router
from routes.sports import router as sports_router
from routes.wallet import router as wallet_router
from settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title="Crypto Casino Backend", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="")
app.include_router(wallet_router, prefix="")
app.include_router(games_router, prefix="")
app.include_router(sports_router, prefix="")

app.mount("/metrics", make_asgi_app())


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    # two requests raced on the same unique key (idempotency key, username...)
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"detail": "duplicate request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "internal error"})


@app.on_event("startup")
async def startup():
    for attempt in range(15):
        try:
            await init_db()
            break
        except Exception:
            logger.warning("Database not ready (attempt %s)", attempt + 1)
            await asyncio.sleep(1)
    else:
        await init_db()

    if settings.settlement_sweep_enabled:
        await settlement_manager.start()


@app.on_event("shutdown")
async def shutdown():
    await settlement_manager.stop()


@app.get("/health")
async def health():
    return {"ok": True}
