from __future__ import annotations

import asyncio
import logging
from threading import Event
from time import perf_counter
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from postsmith.app.dependencies import get_pipeline_service
from postsmith.app.models.job_contracts import (
    CrawlResponse,
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    JobRequest,
    JobResponse,
    PublishRequest,
    PublishResponse,
)
from postsmith.app.services.errors import (
    AuthenticationFailed,
    InvalidRequest,
    PipelineError,
    UrlValidationError,
)
from postsmith.app.services.pipeline_service import PipelineService

LOGGER = logging.getLogger("postsmith.api")

router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.5


class ApiError(Exception):
    """Carries an error body and status code out of a route handler."""

    def __init__(self, status_code: int, body: ErrorResponse) -> None:
        super().__init__(body.message)
        self.status_code = status_code
        self.body = body


def _api_error(
    exc: PipelineError,
    *,
    prefix: str | None = None,
    job_id: str | None = None,
    step: str | None = None,
) -> ApiError:
    message = exc.message if prefix is None else f"{prefix}: {exc.message}"
    return ApiError(
        exc.http_status,
        ErrorResponse(message=message, code=exc.code, job_id=job_id, step=step),
    )


@router.post(
    "/job/crawl",
    response_model=CrawlResponse,
    tags=["jobs"],
    operation_id="job_crawl",
)
def crawl(
    request: JobRequest,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> CrawlResponse:
    started_at = perf_counter()
    try:
        url = request.require_url()
        LOGGER.info("starting crawl url=%s", url)
        document = service.crawl(url)
    except (InvalidRequest, UrlValidationError) as exc:
        prefix = "URL Validation Failed" if isinstance(exc, UrlValidationError) else None
        raise _api_error(exc, prefix=prefix) from exc
    except PipelineError as exc:
        LOGGER.error("crawling failed code=%s message=%s", exc.code, exc.message)
        raise _api_error(exc, prefix="Crawling failed") from exc

    duration = perf_counter() - started_at
    LOGGER.info("crawling completed in %.2fs", duration)
    return CrawlResponse(data=document.to_payload(), duration=duration)


@router.post(
    "/job/generate",
    response_model=GenerateResponse,
    tags=["jobs"],
    operation_id="job_generate",
)
def generate(
    request: GenerateRequest,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> GenerateResponse:
    started_at = perf_counter()
    try:
        document = request.require_document()
        LOGGER.info("starting generation title=%s", document.title)
        article = service.generate(document)
    except InvalidRequest as exc:
        raise _api_error(exc) from exc
    except PipelineError as exc:
        LOGGER.error("generation failed code=%s message=%s", exc.code, exc.message)
        raise _api_error(exc, prefix="AI Generation failed") from exc

    duration = perf_counter() - started_at
    LOGGER.info("generation completed in %.2fs html_chars=%s", duration, len(article.html))
    return GenerateResponse(
        data=article.to_payload(),
        warnings=list(article.warnings),
        duration=duration,
    )


@router.post(
    "/job/publish",
    response_model=PublishResponse,
    tags=["jobs"],
    operation_id="job_publish",
)
def publish(
    request: PublishRequest,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> PublishResponse:
    started_at = perf_counter()
    try:
        article = request.require_article()
        LOGGER.info("publishing draft title=%s", article.title)
        result = service.publish(article)
    except (InvalidRequest, AuthenticationFailed) as exc:
        raise _api_error(exc) from exc
    except PipelineError as exc:
        LOGGER.error("publish failed code=%s message=%s", exc.code, exc.message)
        raise _api_error(exc, prefix="WordPress publish failed") from exc

    duration = perf_counter() - started_at
    LOGGER.info("publish completed in %.2fs post_id=%s", duration, result.post_id)
    return PublishResponse(post_id=result.post_id, post_url=result.post_url, duration=duration)


@router.post(
    "/job",
    response_model=JobResponse,
    tags=["jobs"],
    operation_id="job_run",
)
async def run_job(
    request: JobRequest,
    http_request: Request,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> JobResponse:
    try:
        url = request.require_url()
    except InvalidRequest as exc:
        raise _api_error(exc) from exc

    cancel_event = Event()
    watcher = asyncio.create_task(cancel_on_disconnect(http_request, cancel_event))
    try:
        outcome = await run_in_threadpool(service.run_job, url, cancel_event=cancel_event)
    finally:
        watcher.cancel()
    if outcome.error is not None or outcome.result is None:
        error = outcome.error if outcome.error is not None else PipelineError("Job failed")
        raise _api_error(error, job_id=outcome.job_id, step=outcome.failed_stage)

    return JobResponse(
        job_id=outcome.job_id,
        post_id=outcome.result.post_id,
        post_url=outcome.result.post_url,
        duration=outcome.duration_seconds,
    )


async def cancel_on_disconnect(http_request: Request, cancel_event: Event) -> None:
    """Set `cancel_event` once the client goes away.

    The job stops at its next stage boundary or retry backoff. A urllib call
    already in flight runs until its own timeout.
    """
    while not cancel_event.is_set():
        if await http_request.is_disconnected():
            LOGGER.warning("client disconnected; cancelling job")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)
