import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.db import create_schema, engine
from app.tracker.errors import TrackerError
from app.tracker.router import router as tracker_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables:
        await create_schema(engine)
        logger.info("Database schema ensured")
    yield
    await engine.dispose()


app = FastAPI(title="DailyTrail", version="0.1.0", lifespan=lifespan)
app.include_router(tracker_router)


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    logger.debug("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.code})


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "api": {
            "goals": "/api/goals",
            "goal": "/api/goals/{id}",
            "goal_target": "/api/goals/{id}/target",
            "goal_completion": "/api/goals/{id}/completion",
            "timeline": "/api/timeline",
            "timeline_events": "/api/timeline/events",
            "timeline_notes": "/api/timeline/notes",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
