from __future__ import annotations

import logging
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Protocol
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag
from readability import Document
from readability.readability import Unparseable

from postsmith.app.models.article import ExtractedDocument
from postsmith.app.services.errors import UnextractableContent

LOGGER = logging.getLogger("postsmith.extractor")

MAX_CONTENT_CHARS = 15_000
MIN_CONTENT_CHARS = 50
EXCERPT_CHARS = 200
HEADING_TAGS: tuple[str, ...] = ("h1", "h2", "h3")
NOISE_SELECTORS: tuple[str, ...] = (
    "script",
    "style",
    "iframe",
    "noscript",
    "nav",
    "footer",
    "aside",
    ".header",
    ".footer",
    ".cookie-banner",
    ".newsletter",
    "#sidebar",
    ".sidebar",
    ".ad",
    ".ads",
    ".advertisement",
    '[role="alert"]',
    '[role="banner"]',
    '[role="navigation"]',
)
_BLOCK_TAGS: frozenset[str] = frozenset(
    {
        "address", "article", "blockquote", "dd", "div", "dl", "dt", "figcaption",
        "figure", "h1", "h2", "h3", "h4", "h5", "h6", "header", "hr", "li", "main",
        "ol", "p", "pre", "section", "table", "td", "th", "tr", "ul",
    }
)

# Ordered lookup lists: the first non-empty value wins.
_DESCRIPTION_KEYS: tuple[str, ...] = ("description", "og:description", "twitter:description")
_AUTHOR_KEYS: tuple[str, ...] = ("author", "article:author", "parsely-author", "dc.creator")
_PUBLISHED_KEYS: tuple[str, ...] = (
    "article:published_time",
    "publishdate",
    "pubdate",
    "publish_date",
    "date",
    "parsely-pub-date",
)
_IMAGE_KEYS: tuple[str, ...] = ("og:image", "og:image:url", "twitter:image", "twitter:image:src")
_SITE_NAME_KEYS: tuple[str, ...] = ("og:site_name", "application-name")
_NO_TITLE_MARKER = "[no-title]"


@dataclass(frozen=True)
class MainContent:
    title: str | None
    content_html: str
    text_content: str


class MainContentExtractor(Protocol):
    def extract_main(self, html: str, url: str) -> MainContent | None:
        ...


class ReadabilityMainContentExtractor:
    """Reader-mode main-content scoring backed by readability-lxml."""

    def extract_main(self, html: str, url: str) -> MainContent | None:
        document = Document(html, url=url)
        try:
            summary_html = document.summary(html_partial=True)
            title = document.short_title()
        except Unparseable:
            LOGGER.info("readability could not parse document url=%s", url)
            return None
        text = _readable_text(_parse(summary_html))
        if not text:
            return None
        normalized_title = _normalize_text(title)
        if normalized_title == _NO_TITLE_MARKER:
            normalized_title = None
        return MainContent(title=normalized_title, content_html=summary_html, text_content=text)


class ContentExtractor:
    def __init__(
        self,
        *,
        main_content_extractor: MainContentExtractor | None = None,
        max_content_chars: int = MAX_CONTENT_CHARS,
        min_content_chars: int = MIN_CONTENT_CHARS,
    ) -> None:
        self._main_content_extractor = (
            main_content_extractor
            if main_content_extractor is not None
            else ReadabilityMainContentExtractor()
        )
        self._max_content_chars = max(min_content_chars, max_content_chars)
        self._min_content_chars = min_content_chars

    def extract(self, html: str, url: str) -> ExtractedDocument:
        if not html or not html.strip():
            raise UnextractableContent("Unable to extract meaningful content from page.")

        page = _parse(html)
        _remove_noise(page)
        meta = _collect_meta(page)

        main = self._main_content_extractor.extract_main(str(page), url)
        main_tree: BeautifulSoup | None = None
        title = ""
        content = ""
        if main is not None:
            title = main.title or ""
            main_tree = _parse(main.content_html)
            _drop_title_header(main_tree, title or _document_title(page))
            content = _readable_text(main_tree)
            if len(content) < self._min_content_chars:
                LOGGER.info(
                    "main content too short url=%s chars=%s; discarding",
                    url,
                    len(content),
                )
                main_tree = None
                content = ""

        if not title:
            title = _document_title(page)

        meta_description = _first_meta(meta, _DESCRIPTION_KEYS)
        if not content:
            LOGGER.warning("readability yielded no usable text url=%s; using fallback", url)
            content = _fallback_content(page, meta_description)

        if len(content) < self._min_content_chars:
            raise UnextractableContent("Unable to extract meaningful content from page.")
        content = content[: self._max_content_chars]

        heading_source = main_tree if main_tree is not None else page
        images = _collect_images(main_tree, url) if main_tree is not None else ()
        og_image = _absolute_http_url(_first_meta(meta, _IMAGE_KEYS), url)
        canonical_url = _canonical_url(page, url)

        return ExtractedDocument(
            source_url=url,
            title=title,
            content=content,
            headings=_collect_headings(heading_source),
            meta_description=meta_description,
            author=_first_meta(meta, _AUTHOR_KEYS) or _rel_author(page),
            published_date=_first_meta(meta, _PUBLISHED_KEYS) or _time_datetime(page),
            image_url=og_image or (images[0] if images else None),
            images=images,
            language=_document_language(page, meta),
            keywords=_split_keywords(meta.get("keywords")),
            canonical_url=canonical_url,
            site_name=_first_meta(meta, _SITE_NAME_KEYS),
            excerpt=_excerpt(content),
        )


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _remove_noise(page: BeautifulSoup) -> None:
    for element in page.select(", ".join(NOISE_SELECTORS)):
        # An ancestor removed earlier in the loop already took this element with it.
        if element.decomposed:
            continue
        element.decompose()


def _collect_meta(page: BeautifulSoup) -> dict[str, str]:
    meta: dict[str, str] = {}
    for tag in page.find_all("meta"):
        key = tag.get("property") or tag.get("name") or tag.get("itemprop") or tag.get("http-equiv")
        value = _normalize_text(tag.get("content"))
        normalized_key = _normalize_text(key)
        if normalized_key is None or value is None:
            continue
        meta.setdefault(normalized_key.lower(), value)
    return meta


def _first_meta(meta: dict[str, str], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = meta.get(key)
        if value:
            return value
    return None


def _document_title(page: BeautifulSoup) -> str:
    if page.title is None:
        return ""
    return _normalize_text(page.title.get_text()) or ""


def _drop_title_header(tree: BeautifulSoup, title: str) -> None:
    if not title:
        return
    wanted = title.lower()
    for header in tree.find_all(["h1", "h2"]):
        text = (_normalize_text(header.get_text(" ")) or "").lower()
        if not text:
            continue
        if text == wanted or SequenceMatcher(None, text, wanted).ratio() > 0.75:
            header.decompose()
        return


def _readable_text(root: BeautifulSoup | Tag) -> str:
    for line_break in root.find_all("br"):
        line_break.replace_with("\n")
    for element in root.find_all(_BLOCK_TAGS):
        element.insert_before("\n")
        element.insert_after("\n")
    lines = (" ".join(line.split()) for line in root.get_text().splitlines())
    return "\n\n".join(line for line in lines if line)


def _collect_headings(root: BeautifulSoup) -> tuple[str, ...]:
    headings: list[str] = []
    for heading in root.find_all(HEADING_TAGS):
        text = _normalize_text(heading.get_text(" "))
        if text:
            headings.append(text)
    return tuple(headings)


def _fallback_content(page: BeautifulSoup, meta_description: str | None) -> str:
    parts = [meta_description or "", *_collect_headings(page)]
    return "\n\n".join(part for part in parts if part).strip()


def _collect_images(tree: BeautifulSoup, url: str) -> tuple[str, ...]:
    images: list[str] = []
    for image in tree.find_all("img"):
        source = _normalize_text(image.get("src")) or _normalize_text(image.get("data-src"))
        absolute = _absolute_http_url(source, url)
        if absolute is not None and absolute not in images:
            images.append(absolute)
    return tuple(images)


def _absolute_http_url(value: str | None, base_url: str) -> str | None:
    if value is None:
        return None
    try:
        absolute = urljoin(base_url, value)
        parsed = urlsplit(absolute)
    except ValueError:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return absolute


def _canonical_url(page: BeautifulSoup, url: str) -> str | None:
    link = page.select_one('link[rel~="canonical"][href]')
    if link is None:
        return None
    canonical = _absolute_http_url(_normalize_text(link.get("href")), url)
    if canonical is None or canonical == url:
        return None
    return canonical


def _rel_author(page: BeautifulSoup) -> str | None:
    link = page.select_one('[rel~="author"]')
    if link is None:
        return None
    return _normalize_text(link.get("content")) or _normalize_text(link.get_text(" "))


def _time_datetime(page: BeautifulSoup) -> str | None:
    element = page.select_one("time[datetime]")
    if element is None:
        return None
    return _normalize_text(element.get("datetime"))


def _document_language(page: BeautifulSoup, meta: dict[str, str]) -> str | None:
    root = page.find("html")
    if isinstance(root, Tag):
        lang = _normalize_text(root.get("lang"))
        if lang:
            return lang
    return meta.get("content-language")


def _split_keywords(raw: str | None) -> tuple[str, ...]:
    if raw is None:
        return ()
    keywords: list[str] = []
    for keyword in raw.split(","):
        normalized = _normalize_text(keyword)
        if normalized and normalized not in keywords:
            keywords.append(normalized)
    return tuple(keywords)


def _excerpt(content: str) -> str:
    excerpt = content[:EXCERPT_CHARS].strip()
    if len(content) > EXCERPT_CHARS:
        return f"{excerpt}..."
    return excerpt


def _normalize_text(value: object) -> str | None:
    if isinstance(value, list):
        value = " ".join(str(item) for item in value)
    if not isinstance(value, str):
        return None
    normalized = " ".join(value.split())
    if not normalized:
        return None
    return normalized
