"""API router for v1 endpoints."""

from fastapi import APIRouter

from suggestion_engine.api import pipeline

router = APIRouter()

router.include_router(pipeline.router, prefix="/pipeline", tags=["pipeline"])
