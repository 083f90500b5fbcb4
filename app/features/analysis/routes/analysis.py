import asyncio
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.analysis.schemas.analysis import (
    AnalysisStatusResponse,
    AnalyzeMeta,
    AnalyzeRequest,
    AnalyzeResponse,
)
from app.features.analysis.schemas.pipeline import AnalysisRequest, RequestStatus
from app.features.analysis.services.archive import ArchiveService, record_age_hours
from app.features.analysis.services.orchestration.aggregator import project_report
from app.features.analysis.services.pipeline import Pipeline, get_pipeline
from app.platform.config import settings
from app.platform.db.session import get_db
from app.platform.exceptions import (
    AnalysisFailed,
    InvalidUrl,
    RequestNotFound,
    RequestTimeout,
    http_status_for,
)
from app.platform.logger import get_logger
from app.platform.response import api_response
from app.platform.utils.url_validator import validate_url

logger = get_logger(__name__)

router = APIRouter(prefix="/accessibility", tags=["analysis"])


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def wait_for_request(
    pipeline: Pipeline,
    request_id: str,
    max_wait: Optional[float] = None,
    poll_interval: Optional[float] = None,
) -> AnalysisRequest:
    """
    Poll the request store until the request is terminal.

    After ``max_wait`` seconds the request is expired (RequestTimeout) so a
    late result can no longer complete it.
    """
    max_wait = settings.API_MAX_WAIT_SECONDS if max_wait is None else max_wait
    poll_interval = settings.API_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
    deadline = time.monotonic() + max_wait

    while True:
        request = await run_in_threadpool(pipeline.store.get, request_id)
        if request is None:
            raise RequestNotFound(f"Request {request_id} expired before completing")
        if request.is_terminal:
            return request
        if time.monotonic() >= deadline:
            expired = await run_in_threadpool(
                pipeline.master.expire, request_id, f"No result after {max_wait:.0f}s"
            )
            if expired is None:
                raise RequestTimeout(f"No result after {max_wait:.0f}s")
            return expired
        await asyncio.sleep(poll_interval)


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(
    body: AnalyzeRequest,
    use_cache: bool = Query(True, alias="useCache"),
    pipeline: Pipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db),
):
    """
    Analyze a single page for accessibility, SEO and performance.

    Waits for the pipeline to finish (up to API_MAX_WAIT_SECONDS) and
    returns the report shaped for ``reportType``.
    """
    started = time.monotonic()

    is_valid, normalized_url, error_message = validate_url(body.url)
    if not is_valid:
        raise InvalidUrl(error_message)

    archive = ArchiveService(db)

    if settings.CACHE_ENABLED and use_cache:
        record = await archive.find_cached(normalized_url)
        if record is not None:
            record = await archive.mark_accessed(record)
            logger.info(f"Cache hit for {normalized_url} (request {record.request_id}, hits {record.access_count})")
            report = project_report(ArchiveService.to_report(record), body.report_type)
            meta = AnalyzeMeta(
                request_id=record.request_id,
                report_type=body.report_type,
                cached=True,
                analysis_time_ms=_elapsed_ms(started),
                cache_age_hours=round(record_age_hours(record), 2),
            )
            return api_response(
                data=report.to_dict(),
                meta=meta.model_dump(by_alias=True),
                message="Analysis served from cache",
            )

    request = await run_in_threadpool(pipeline.master.submit, body.url, body.report_type)
    logger.info(f"[{request.id}] Submitted {request.normalized_url}")

    request = await wait_for_request(pipeline, request.id)

    if request.status != RequestStatus.completed:
        code = request.error_code or AnalysisFailed.code
        logger.warning(f"[{request.id}] Analysis failed: {code}: {request.error_message}")
        return api_response(
            error=code,
            message=request.error_message or code,
            status_code=http_status_for(code),
        )

    report = await run_in_threadpool(pipeline.store.get_report, request.id)
    if report is None:
        raise RequestNotFound(f"Report for request {request.id} expired")

    analysis_time_ms = _elapsed_ms(started)
    await archive.save(report, analysis_time_ms)

    meta = AnalyzeMeta(
        request_id=request.id,
        report_type=body.report_type,
        cached=False,
        analysis_time_ms=analysis_time_ms,
    )
    return api_response(
        data=project_report(report, body.report_type).to_dict(),
        meta=meta.model_dump(by_alias=True, exclude_none=True),
        message="Analysis completed",
    )


@router.get("/analyses/{request_id}")
async def get_analysis(
    request_id: str,
    pipeline: Pipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db),
):
    """Status of a request and, once completed, its report."""
    request = await run_in_threadpool(pipeline.store.get, request_id)

    if request is None:
        # Gone from Redis; completed requests are still in the archive
        record = await ArchiveService(db).get_by_request_id(request_id)
        if record is None:
            raise RequestNotFound(f"Request {request_id} not found")
        return api_response(
            data={
                "request": {"id": record.request_id, "normalizedUrl": record.url, "status": record.status},
                "report": record.report,
            },
            status_code=status.HTTP_200_OK,
        )

    report = None
    if request.status == RequestStatus.completed:
        stored = await run_in_threadpool(pipeline.store.get_report, request_id)
        report = project_report(stored, request.report_type) if stored else None

    return api_response(data=AnalysisStatusResponse.build(request, report).model_dump())
