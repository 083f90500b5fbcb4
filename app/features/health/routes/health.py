from fastapi import APIRouter, Depends, status
from fastapi.concurrency import run_in_threadpool

from app.features.analysis.services.pipeline import Pipeline, get_pipeline
from app.platform.config import settings
from app.platform.exceptions import QueueUnavailable
from app.platform.response import api_response


router = APIRouter()

@router.get("/health", tags=["health"])
async def health_check(pipeline: Pipeline = Depends(get_pipeline)):
    try:
        await run_in_threadpool(pipeline.queue.ping)
    except QueueUnavailable as e:
        return api_response(
            error=QueueUnavailable.code,
            message=e.message,
            data={"status": "degraded", "queue": "down"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return api_response(
        data={"status": "ok", "queue": "up", "service": settings.APP_NAME},
        message="Service is healthy",
        status_code=status.HTTP_200_OK,
    )
