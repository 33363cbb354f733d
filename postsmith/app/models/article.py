from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ExtractedDocument:
    source_url: str
    title: str
    content: str
    headings: tuple[str, ...] = ()
    meta_description: str | None = None
    author: str | None = None
    published_date: str | None = None
    image_url: str | None = None
    images: tuple[str, ...] = ()
    language: str | None = None
    keywords: tuple[str, ...] = ()
    canonical_url: str | None = None
    site_name: str | None = None
    excerpt: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "headings": list(self.headings),
            "content": self.content,
            "url": self.source_url,
        }
        optional: dict[str, Any] = {
            "metaDescription": self.meta_description,
            "author": self.author,
            "publishedDate": self.published_date,
            "imageUrl": self.image_url,
            "images": list(self.images) or None,
            "language": self.language,
            "keywords": list(self.keywords) or None,
            "canonicalUrl": self.canonical_url,
            "siteName": self.site_name,
            "excerpt": self.excerpt,
        }
        payload.update({key: value for key, value in optional.items() if value})
        return payload


@dataclass(frozen=True)
class GeneratedArticle:
    title: str
    slug: str
    meta_description: str
    html: str
    warnings: tuple[str, ...] = field(default=(), compare=False)

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "slug": self.slug,
            "metaDescription": self.meta_description,
            "html": self.html,
        }


@dataclass(frozen=True)
class PublishResult:
    post_id: int
    post_url: str

    def to_payload(self) -> dict[str, Any]:
        return {"postId": self.post_id, "postUrl": self.post_url}
