# /flowcore/routes/public.py

from datetime import datetime, timezone
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from flowcore.config.settings import settings

router = APIRouter()


@router.get("/")
async def root():
    return {"service": "flowcore", "status": "operational", "environment": settings.environment}


@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
