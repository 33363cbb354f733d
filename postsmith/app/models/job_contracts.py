from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from postsmith.app.models.article import ExtractedDocument, GeneratedArticle
from postsmith.app.services.errors import InvalidRequest


def _default_strings() -> list[str]:
    return []


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


class ExtractedDocumentPayload(BaseModel):
    """Wire form of an extracted document (camelCase, as returned by crawl)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    url: str | None = None
    title: str | None = None
    content: str | None = None
    headings: list[str] = Field(default_factory=_default_strings)
    meta_description: str | None = Field(default=None, alias="metaDescription")
    author: str | None = None
    published_date: str | None = Field(default=None, alias="publishedDate")
    image_url: str | None = Field(default=None, alias="imageUrl")
    images: list[str] = Field(default_factory=_default_strings)
    language: str | None = None
    keywords: list[str] = Field(default_factory=_default_strings)
    canonical_url: str | None = Field(default=None, alias="canonicalUrl")
    site_name: str | None = Field(default=None, alias="siteName")
    excerpt: str | None = None

    def to_document(self) -> ExtractedDocument:
        title = _normalize_optional_text(self.title)
        if title is None or not self.content or not self.content.strip():
            raise InvalidRequest("Crawled data missing required fields (title, content)")
        return ExtractedDocument(
            source_url=_normalize_optional_text(self.url) or "",
            title=title,
            content=self.content.strip(),
            headings=tuple(self.headings),
            meta_description=_normalize_optional_text(self.meta_description),
            author=_normalize_optional_text(self.author),
            published_date=_normalize_optional_text(self.published_date),
            image_url=_normalize_optional_text(self.image_url),
            images=tuple(self.images),
            language=_normalize_optional_text(self.language),
            keywords=tuple(self.keywords),
            canonical_url=_normalize_optional_text(self.canonical_url),
            site_name=_normalize_optional_text(self.site_name),
            excerpt=_normalize_optional_text(self.excerpt),
        )


class GeneratedArticlePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str | None = None
    slug: str | None = None
    meta_description: str | None = Field(default=None, alias="metaDescription")
    html: str | None = None

    def to_article(self) -> GeneratedArticle:
        title = _normalize_optional_text(self.title)
        slug = _normalize_optional_text(self.slug)
        html = _normalize_optional_text(self.html)
        if title is None or slug is None or html is None:
            raise InvalidRequest("Article missing required fields (title, html, slug)")
        return GeneratedArticle(
            title=title,
            slug=slug,
            meta_description=_normalize_optional_text(self.meta_description) or "",
            html=html,
        )


class JobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str | None = Field(default=None, max_length=2048)

    def require_url(self) -> str:
        url = _normalize_optional_text(self.url)
        if url is None:
            raise InvalidRequest("Invalid URL provided")
        return url


class GenerateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data: ExtractedDocumentPayload | None = Field(
        default=None,
        validation_alias=AliasChoices("data", "crawledData"),
    )

    def require_document(self) -> ExtractedDocument:
        if self.data is None:
            raise InvalidRequest("Invalid crawled data provided")
        return self.data.to_document()


class PublishRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    article: GeneratedArticlePayload | None = None

    def require_article(self) -> GeneratedArticle:
        if self.article is None:
            raise InvalidRequest("Invalid article data provided")
        return self.article.to_article()


class CrawlResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["ok"] = "ok"
    data: dict[str, object]
    duration: float


class GenerateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["ok"] = "ok"
    data: dict[str, object]
    warnings: list[str] = Field(default_factory=_default_strings)
    duration: float


class PublishResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    status: Literal["ok"] = "ok"
    post_id: int = Field(alias="postId")
    post_url: str = Field(alias="postUrl")
    message: str = "Draft created successfully"
    duration: float


class JobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    status: Literal["ok"] = "ok"
    job_id: str = Field(alias="jobId")
    post_id: int = Field(alias="postId")
    post_url: str = Field(alias="postUrl")
    message: str = "Job completed successfully"
    duration: float


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    status: Literal["error"] = "error"
    message: str
    code: str | None = None
    job_id: str | None = Field(default=None, alias="jobId")
    step: str | None = None
