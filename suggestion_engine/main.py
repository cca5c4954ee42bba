"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from suggestion_engine.api import router as api_router
from suggestion_engine.core.config import get_settings
from suggestion_engine.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire and initialize the pipeline unless one was attached already."""
    from suggestion_engine.services.suggestion_pipeline import build_pipeline

    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = build_pipeline()
    pipeline = app.state.pipeline
    pipeline.initialize()

    if get_settings().PIPELINE_AUTOSTART:
        pipeline.start()

    yield

    await pipeline.stop()


app = FastAPI(
    title="Suggestion Engine",
    description="LangGraph-based pipeline turning activity observations into deduplicated suggestions",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
