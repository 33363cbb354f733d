from __future__ import annotations

from functools import lru_cache

from postsmith.app.config import AppSettings, load_settings
from postsmith.app.services.article_generator import ArticleGenerator, ChatCompletionsBackend
from postsmith.app.services.content_extractor import ContentExtractor
from postsmith.app.services.fetcher import HtmlFetcher
from postsmith.app.services.pipeline_service import PipelineService
from postsmith.app.services.publisher import WordPressPublisher
from postsmith.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_pipeline_service() -> PipelineService:
    return build_pipeline_service(get_settings(), telemetry=get_telemetry())


def build_pipeline_service(
    settings: AppSettings,
    *,
    telemetry: TelemetryClient | None = None,
) -> PipelineService:
    return PipelineService(
        fetcher=HtmlFetcher(
            user_agent=settings.fetch_user_agent,
            timeout_seconds=settings.fetch_timeout_seconds,
            max_redirects=settings.fetch_max_redirects,
            backoff_seconds=settings.retry_backoff_seconds,
        ),
        extractor=ContentExtractor(max_content_chars=settings.content_max_chars),
        generator=ArticleGenerator(
            backend=ChatCompletionsBackend(
                api_key=settings.generation_api_key,
                base_url=settings.generation_base_url,
                model=settings.generation_model,
                timeout_seconds=settings.generation_timeout_seconds,
                max_tokens=settings.generation_max_tokens,
            ),
            max_attempts=settings.generation_max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            audience_language=settings.generation_audience_language,
        ),
        publisher=WordPressPublisher(
            base_url=settings.wordpress_base_url,
            username=settings.wordpress_username,
            app_password=settings.wordpress_app_password,
            timeout_seconds=settings.publish_timeout_seconds,
            max_attempts=settings.publish_max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
        ),
        telemetry=telemetry,
    )


def reset_cached_dependencies() -> None:
    get_pipeline_service.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
