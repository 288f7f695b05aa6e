from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .db import init_db, dispose_db, async_session_maker
from .core.config import get_settings
from .core.logs import configure_logging
from .core.nats import nats_connect, nats_close, publish_token
from .routers import checkins, sessions
from .services.generator import TokenGenerator
from .services.rotation import TokenRotator
from .services.store import SessionStore
from .services.verifier import AttendanceVerifier

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    scheduler = AsyncIOScheduler()
    scheduler.start()
    store = SessionStore(async_session_maker)
    app.state.rotator = TokenRotator(
        TokenGenerator(store, settings=settings),
        scheduler,
        rotate_seconds=settings.token_rotate_seconds,
        tick_seconds=settings.countdown_tick_seconds,
        publish=publish_token,
    )
    app.state.verifier = AttendanceVerifier(store, settings=settings)

    # best-effort connect; displays and scans work without the event bus
    if settings.enable_nats:
        try:
            await nats_connect()
        except Exception:
            logger.warning("NATS unavailable at startup", exc_info=True)
    yield

    app.state.rotator.stop_all()
    scheduler.shutdown(wait=False)
    await nats_close()
    await dispose_db()

app = FastAPI(title="qr-attendance-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router)
app.include_router(checkins.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "qr-attendance-svc"}

Instrumentator().instrument(app).expose(app)
