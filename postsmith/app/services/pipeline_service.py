from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Event
from time import perf_counter
from typing import Protocol, TypeVar
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from postsmith.app.models.article import ExtractedDocument, GeneratedArticle, PublishResult
from postsmith.app.services.errors import JobCancelled, PipelineError
from postsmith.app.services.url_guard import ensure_valid_url
from postsmith.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("postsmith.pipeline")

STATE_RECEIVED = "received"
STATE_VALIDATED = "validated"
STATE_FETCHED = "fetched"
STATE_EXTRACTED = "extracted"
STATE_GENERATED = "generated"
STATE_PUBLISHED = "published"
STATE_FAILED = "failed"

STAGE_VALIDATE = "validate"
STAGE_FETCH = "fetch"
STAGE_EXTRACT = "extract"
STAGE_GENERATE = "generate"
STAGE_PUBLISH = "publish"

T = TypeVar("T")


class PageFetcher(Protocol):
    def fetch(self, url: str, *, cancel_event: Event | None = None) -> str:
        ...


class DocumentExtractor(Protocol):
    def extract(self, html: str, url: str) -> ExtractedDocument:
        ...


class ArticleWriter(Protocol):
    def generate(
        self,
        document: ExtractedDocument,
        *,
        cancel_event: Event | None = None,
    ) -> GeneratedArticle:
        ...


class DraftPublisher(Protocol):
    def publish(
        self,
        article: GeneratedArticle,
        *,
        cancel_event: Event | None = None,
    ) -> PublishResult:
        ...


@dataclass(frozen=True)
class StageTiming:
    stage: str
    duration_ms: int


@dataclass(frozen=True)
class JobOutcome:
    job_id: str
    state: str
    duration_seconds: float
    result: PublishResult | None = None
    failed_stage: str | None = None
    error: PipelineError | None = None
    stage_timings: tuple[StageTiming, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state == STATE_PUBLISHED


@dataclass
class _JobContext:
    job_id: str
    cancel_event: Event | None
    state: str = STATE_RECEIVED
    stage_timings: list[StageTiming] = field(default_factory=list)


class _StageFailure(Exception):
    def __init__(self, stage: str, error: PipelineError) -> None:
        super().__init__(error.message)
        self.stage = stage
        self.error = error


class PipelineService:
    """Runs validate → fetch → extract → generate → publish for one URL.

    The service holds only stateless collaborators, so one instance serves
    concurrent jobs; everything job-scoped lives in a per-call context.
    Retries happen inside the stages, never across them.
    """

    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        extractor: DocumentExtractor,
        generator: ArticleWriter,
        publisher: DraftPublisher,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._extractor = extractor
        self._generator = generator
        self._publisher = publisher
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def crawl(self, url: str, *, cancel_event: Event | None = None) -> ExtractedDocument:
        url = ensure_valid_url(url)
        _raise_if_cancelled(cancel_event)
        html = self._fetcher.fetch(url, cancel_event=cancel_event)
        _raise_if_cancelled(cancel_event)
        document = self._extractor.extract(html, url)
        LOGGER.info(
            "crawl completed url=%s title=%s chars=%s headings=%s",
            url,
            document.title,
            len(document.content),
            len(document.headings),
        )
        return document

    def generate(
        self,
        document: ExtractedDocument,
        *,
        cancel_event: Event | None = None,
    ) -> GeneratedArticle:
        _raise_if_cancelled(cancel_event)
        return self._generator.generate(document, cancel_event=cancel_event)

    def publish(
        self,
        article: GeneratedArticle,
        *,
        cancel_event: Event | None = None,
    ) -> PublishResult:
        _raise_if_cancelled(cancel_event)
        return self._publisher.publish(article, cancel_event=cancel_event)

    def run_job(self, url: str, *, cancel_event: Event | None = None) -> JobOutcome:
        job = _JobContext(job_id=uuid4().hex, cancel_event=cancel_event)
        context_tokens = bind_contextvars(job_id=job.job_id)
        started_at = perf_counter()
        LOGGER.info("[job %s] received url=%s", job.job_id, url)
        try:
            result = self._run_stages(job, url)
        except _StageFailure as failure:
            duration = perf_counter() - started_at
            job.state = STATE_FAILED
            LOGGER.error(
                "[job %s] failed stage=%s code=%s message=%s",
                job.job_id,
                failure.stage,
                failure.error.code,
                failure.error.message,
            )
            self._telemetry.emit(
                "pipeline.job.failed",
                job_id=job.job_id,
                stage=failure.stage,
                error_code=failure.error.code,
                duration_ms=int(duration * 1000),
            )
            return JobOutcome(
                job_id=job.job_id,
                state=STATE_FAILED,
                duration_seconds=duration,
                failed_stage=failure.stage,
                error=failure.error,
                stage_timings=tuple(job.stage_timings),
            )
        finally:
            reset_contextvars(**context_tokens)

        duration = perf_counter() - started_at
        LOGGER.info(
            "[job %s] completed in %.2fs post_id=%s",
            job.job_id,
            duration,
            result.post_id,
        )
        self._telemetry.emit(
            "pipeline.job.succeeded",
            job_id=job.job_id,
            post_id=result.post_id,
            duration_ms=int(duration * 1000),
        )
        return JobOutcome(
            job_id=job.job_id,
            state=STATE_PUBLISHED,
            duration_seconds=duration,
            result=result,
            stage_timings=tuple(job.stage_timings),
        )

    def _run_stages(self, job: _JobContext, url: str) -> PublishResult:
        cancel_event = job.cancel_event
        url = self._run_stage(
            job,
            STAGE_VALIDATE,
            STATE_VALIDATED,
            lambda: ensure_valid_url(url),
        )
        html = self._run_stage(
            job,
            STAGE_FETCH,
            STATE_FETCHED,
            lambda: self._fetcher.fetch(url, cancel_event=cancel_event),
        )
        document = self._run_stage(
            job,
            STAGE_EXTRACT,
            STATE_EXTRACTED,
            lambda: self._extractor.extract(html, url),
        )
        article = self._run_stage(
            job,
            STAGE_GENERATE,
            STATE_GENERATED,
            lambda: self._generator.generate(document, cancel_event=cancel_event),
        )
        return self._run_stage(
            job,
            STAGE_PUBLISH,
            STATE_PUBLISHED,
            lambda: self._publisher.publish(article, cancel_event=cancel_event),
        )

    def _run_stage(
        self,
        job: _JobContext,
        stage: str,
        next_state: str,
        operation: Callable[[], T],
    ) -> T:
        stage_tokens = bind_contextvars(stage=stage)
        LOGGER.info("[job %s] stage %s started from state=%s", job.job_id, stage, job.state)
        self._telemetry.emit("pipeline.stage.start", job_id=job.job_id, stage=stage)
        started_at = perf_counter()
        try:
            _raise_if_cancelled(job.cancel_event)
            value = operation()
        except PipelineError as exc:
            raise _StageFailure(stage, exc) from exc
        except Exception as exc:
            LOGGER.exception("[job %s] unexpected error in stage %s", job.job_id, stage)
            raise _StageFailure(stage, PipelineError(f"Internal error: {exc}")) from exc
        finally:
            duration_ms = int((perf_counter() - started_at) * 1000)
            job.stage_timings.append(StageTiming(stage=stage, duration_ms=duration_ms))
            reset_contextvars(**stage_tokens)
        job.state = next_state
        self._telemetry.emit(
            "pipeline.stage.finish",
            job_id=job.job_id,
            stage=stage,
            state=next_state,
            duration_ms=duration_ms,
        )
        return value


def _raise_if_cancelled(cancel_event: Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelled()
