"""
main.py — Aplicación FastAPI de MemoryLens.

Lifespan:
  1. init_db() + create_all_tables()
  2. Lee el snapshot persistido y crea el MemoryStore (app.state.store)
  3. Al apagar: espera las escrituras pendientes y cierra el engine

Ejecución:
    uvicorn main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

import db as db_module
from config import settings
from middleware.error_handler import register_error_handlers
from models.responses import HealthResponse, ok
from routers import analyze, memories, upload, voice
from routers import settings as settings_router
from services.memory_store import MemoryStore
from services.persistence import DatabaseSnapshotSink

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_module.init_db(settings.DATABASE_URL)
    await db_module.create_all_tables()

    sink = DatabaseSnapshotSink(settings.SNAPSHOT_NAME)
    app.state.store = MemoryStore.from_snapshot(await sink.load(), sink=sink)
    logger.info(
        "[STARTUP] %s %s listo (%d fotos restauradas)",
        settings.APP_NAME,
        settings.VERSION,
        len(app.state.store.photos),
    )

    yield

    await sink.drain()
    if db_module.engine is not None:
        await db_module.engine.dispose()
    logger.info("[SHUTDOWN] Snapshot '%s' sincronizado", settings.SNAPSHOT_NAME)


app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)

register_error_handlers(app)

app.include_router(analyze.router)
app.include_router(upload.router)
app.include_router(voice.router)
app.include_router(memories.router)
app.include_router(settings_router.router)


@app.get("/api/health", tags=["health"])
async def health():
    return ok(HealthResponse(version=settings.VERSION))
