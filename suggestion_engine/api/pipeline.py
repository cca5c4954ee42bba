"""API endpoints for pipeline status and control."""

from fastapi import APIRouter, HTTPException, Request

from suggestion_engine.core.logging import get_logger
from suggestion_engine.services.suggestion_pipeline import PipelineStageError, SuggestionPipeline

logger = get_logger(__name__)

router = APIRouter()


def _get_pipeline(request: Request) -> SuggestionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return pipeline


@router.get("/status")
async def get_pipeline_status(request: Request) -> dict:
    """
    Get pipeline run state, last run report and artifact directories.

    Raises:
        HTTPException 503: If the pipeline is not initialized
    """
    return _get_pipeline(request).get_status().model_dump(mode="json")


@router.post("/trigger")
async def trigger_pipeline(request: Request) -> dict:
    """
    Run the pipeline once, now.

    Returns:
        Dict with ``triggered`` and the run report (null if a run was in flight)

    Raises:
        HTTPException 500: If a stage fails
    """
    pipeline = _get_pipeline(request)
    try:
        report = await pipeline.trigger_pipeline_once()
    except PipelineStageError as e:
        logger.exception(f"Manual pipeline trigger failed at {e.stage}")
        raise HTTPException(status_code=500, detail=f"Pipeline failed at stage {e.stage}")

    return {
        "triggered": report is not None,
        "report": report.model_dump(mode="json") if report else None,
    }


@router.post("/start")
async def start_pipeline(request: Request) -> dict:
    """Schedule recurring runs."""
    pipeline = _get_pipeline(request)
    pipeline.start()
    return {"scheduled": pipeline.is_scheduled}


@router.post("/stop")
async def stop_pipeline(request: Request) -> dict:
    """Cancel recurring runs."""
    pipeline = _get_pipeline(request)
    await pipeline.stop()
    return {"scheduled": pipeline.is_scheduled}
