from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from threading import Event
from typing import Any

import pytest
from fastapi.testclient import TestClient

from postsmith.app.dependencies import get_pipeline_service, reset_cached_dependencies
from postsmith.app.main import create_app
from postsmith.app.models.article import GeneratedArticle, PublishResult
from postsmith.app.services.article_generator import ArticleGenerator
from postsmith.app.services.content_extractor import ContentExtractor
from postsmith.app.services.pipeline_service import PipelineService
from postsmith.app.telemetry import TelemetryClient

_PARAGRAPH = (
    "Green tea has been part of daily life in East Asia for centuries, and the way "
    "it is grown, steamed and rolled shapes every cup that reaches the table. "
    "Farmers shade the bushes for weeks before harvest so the leaves keep more "
    "chlorophyll and amino acids, which gives the brew its sweet and savoury depth."
)

ARTICLE_HTML = f"""
<html lang="en">
  <head>
    <title>A Practical Guide to Green Tea</title>
    <meta name="description" content="How green tea is grown, processed and brewed.">
    <meta property="og:site_name" content="Tea Notes">
    <meta name="author" content="Mina Park">
    <meta name="keywords" content="green tea, sencha, brewing">
    <link rel="canonical" href="https://tea.example.com/guides/green-tea">
  </head>
  <body>
    <nav><a href="/">Home</a> <a href="/about">About</a></nav>
    <article>
      <h1>A Practical Guide to Green Tea</h1>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <h2>How the leaves are processed</h2>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <img src="/images/sencha.jpg" alt="Sencha leaves">
      <h2>Brewing at home</h2>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
      <p>{_PARAGRAPH}</p>
    </article>
    <footer>Copyright Tea Notes</footer>
    <script>trackVisit();</script>
  </body>
</html>
"""

GENERATED_HTML = (
    "<h2>Why green tea matters now</h2>"
    + "<p>Green tea is having a moment.</p>" * 60
    + "<h2>FAQ</h2><h3>Is green tea bitter?</h3><p>Only when brewed too hot.</p>"
)


def generated_article_json(**overrides: Any) -> str:
    body: dict[str, Any] = {
        "title": "Green Tea Guide",
        "slug": "green-tea-guide",
        "metaDescription": "Everything you need to brew better green tea.",
        "html": GENERATED_HTML,
    }
    body.update(overrides)
    return json.dumps(body)


class CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class FakeFetcher:
    def __init__(self, html: str = ARTICLE_HTML) -> None:
        self.html = html
        self.error: Exception | None = None
        self.calls: list[str] = []
        self.on_fetch: Any = None

    def fetch(self, url: str, *, cancel_event: Event | None = None) -> str:
        self.calls.append(url)
        if self.on_fetch is not None:
            self.on_fetch()
        if self.error is not None:
            raise self.error
        return self.html


class FakeBackend:
    def __init__(self, responses: list[str | Exception] | None = None) -> None:
        self.responses: list[str | Exception] = (
            responses if responses is not None else [generated_article_json()]
        )
        self.prompts: list[str] = []

    def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append(user_prompt)
        index = min(len(self.prompts), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


class FakePublisher:
    def __init__(self) -> None:
        self.result = PublishResult(post_id=321, post_url="https://blog.example.com/?p=321")
        self.error: Exception | None = None
        self.calls: list[GeneratedArticle] = []

    def publish(
        self,
        article: GeneratedArticle,
        *,
        cancel_event: Event | None = None,
    ) -> PublishResult:
        self.calls.append(article)
        if self.error is not None:
            raise self.error
        return self.result


@dataclass
class PipelineFakes:
    fetcher: FakeFetcher = field(default_factory=FakeFetcher)
    backend: FakeBackend = field(default_factory=FakeBackend)
    publisher: FakePublisher = field(default_factory=FakePublisher)
    sink: CaptureSink = field(default_factory=CaptureSink)

    def build_service(self) -> PipelineService:
        return PipelineService(
            fetcher=self.fetcher,
            extractor=ContentExtractor(),
            generator=ArticleGenerator(backend=self.backend),
            publisher=self.publisher,
            telemetry=TelemetryClient(enabled=True, sink=self.sink),
        )


@pytest.fixture(autouse=True)
def _postsmith_env_defaults(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("POSTSMITH_DATA_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("POSTSMITH_TELEMETRY_SINK", "none")
    for name in (
        "POSTSMITH_LOG_DIR",
        "POSTSMITH_GENERATION_API_KEY",
        "POSTSMITH_WORDPRESS_BASE_URL",
        "POSTSMITH_WORDPRESS_USERNAME",
        "POSTSMITH_WORDPRESS_APP_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fakes() -> PipelineFakes:
    return PipelineFakes()


@pytest.fixture
def client(fakes: PipelineFakes) -> Iterator[TestClient]:
    reset_cached_dependencies()
    service = fakes.build_service()

    app = create_app()
    app.dependency_overrides[get_pipeline_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()


@pytest.fixture
def article_html() -> str:
    return ARTICLE_HTML


@pytest.fixture
def article_json() -> Any:
    return generated_article_json
