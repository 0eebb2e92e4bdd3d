"""
ScriptForge — FastAPI application entrypoint.

Start the server:
    uvicorn main:app --reload --port 8000

API Overview:
    POST   /api/workflows                              — Start a generation workflow
    GET    /api/workflows/progress?sessionId=<id>      — Poll workflow progress
    GET    /api/workflows                              — List the caller's workflow runs
    GET    /api/workflows/{session_id}                 — Resume view of a run
    GET    /api/scripts/{id}                           — Script with current content
    GET    /api/scripts/{id}/versions                  — Version history
    POST   /api/scripts/{id}/versions                  — Save a new version
    POST   /api/scripts/{id}/revert/{version_id}       — Revert to an earlier version
    GET    /api/scripts/{id}/stats                     — Length statistics
    GET    /api/health                                 — Health check
    WS     /ws/workflows/{session_id}                  — Real-time progress events
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_orchestrator
from api.error_handlers import register_error_handlers
from api.routes import router
from api.script_routes import script_router
from api.websocket import ws_router
from api.workflow_history_routes import workflow_history_router
from config import settings
from database import init_db, close_db


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    logger.info("ScriptForge API starting up...")
    await init_db()
    logger.info("Database initialized.")
    await get_orchestrator().mark_interrupted_runs()
    yield
    await close_db()
    logger.info("ScriptForge API shutting down...")


app = FastAPI(
    title="ScriptForge API",
    description=(
        "Backend for ScriptForge: generates video scripts through a staged AI "
        "pipeline with live progress, and keeps an append-only version "
        "history for every script."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow all origins in development; tighten in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Mount REST routes under /api prefix. Order matters: /workflows/progress
# must be matched before /workflows/{session_id}.
app.include_router(router, prefix="/api")
app.include_router(workflow_history_router, prefix="/api")
app.include_router(script_router, prefix="/api")

# Mount WebSocket routes (no prefix, path is /ws/workflows/{session_id})
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
