from __future__ import annotations

import json
import logging
import re
from threading import Event
from typing import Any, Protocol, cast
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from postsmith.app.models.article import ExtractedDocument, GeneratedArticle
from postsmith.app.services.errors import (
    ConfigurationMissing,
    GenerationFailed,
    InsufficientSource,
)
from postsmith.app.services.retry_policy import RetryPolicy

LOGGER = logging.getLogger("postsmith.generator")

MIN_SOURCE_CHARS = 100
MAX_SOURCE_CHARS = 15_000
MIN_HTML_CHARS = 2_000
REQUIRED_KEYS: tuple[str, ...] = ("title", "slug", "metaDescription", "html")
SYSTEM_PROMPT = "You are a professional SEO article writer. You output strictly JSON."

_PROMPT_TEMPLATE = """\
You are a senior SEO strategist and professional content writer.
This task is NOT summarization: plan and write a brand-new article that can
realistically rank in search results, using the source only as topical signal.

## Source (reference only)
SOURCE TITLE: {title}
SOURCE LANGUAGE: {language}
SOURCE URL: {source_url}
SOURCE CONTENT:
{content}

The source may be incomplete, promotional or unstructured. Do not rewrite it
sentence by sentence.

## Planning (internal, do not output)
1. Decide the primary search query a reader would type for this topic.
2. Decide the search intent (informational, explanation, problem-solving, trend analysis).
3. Decide the target audience and what they are unsure about.

## Writing requirements
- Language: write for {audience_language} readers.
- Length: at least 1,200 words, no filler or repetition.
- Structure: 5-7 <h2> sections with <h3> subsections where helpful.
- Do NOT use <h1> anywhere in the body; the title is rendered separately.
- Required sections: an introduction explaining why the topic matters now,
  core analysis sections, practical insights or examples, an FAQ section
  headed "FAQ" with at least 3 real search questions, and a closing
  "Key Takeaways" box.
- Calls to action: insert exactly two inline links
  <a href="{cta_url}">...</a>, one as the last sentence of the introduction
  and one immediately before the FAQ section.
- Tone: natural and authoritative; no AI disclaimers, no "In this article, we will".
- Safety: informational, not defamatory, no attacks on individuals, no absolute claims.

## SEO
- 1 primary keyword and 3-5 secondary keywords, used naturally, never stuffed.
- SEO title of at most 60 characters.
- URL slug: lowercase words separated by hyphens.
- Meta description of at most 155 characters.

## Output format (strict)
Return ONLY a JSON object with exactly these keys:
{{"title": "...", "slug": "...", "metaDescription": "...", "html": "..."}}
HTML rules: use only h2, h3, p, ul, ol, li, strong, em, a, table, thead,
tbody, tr, th, td, figure, blockquote. No scripts, no styles, no inline event
handlers, and no html/head/body tags.
"""


class GenerationBackend(Protocol):
    def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        ...


class ChatCompletionsBackend:
    """OpenAI-compatible `/chat/completions` client constrained to JSON output."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        timeout_seconds: float,
        max_tokens: int,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._max_tokens = max_tokens

    def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        if self._api_key is None:
            raise ConfigurationMissing(
                "Generation backend configuration missing (POSTSMITH_GENERATION_API_KEY)."
            )
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": self._max_tokens,
        }
        request = Request(
            f"{self._base_url}/chat/completions",
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                raw = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            raise GenerationFailed(
                f"Generation backend error: {exc.code} {detail[:200]}".strip(),
                cause=exc,
            ) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise GenerationFailed(
                f"Generation backend unreachable: {type(exc).__name__}",
                cause=exc,
            ) from exc

        return _completion_text(raw)


class ArticleGenerator:
    def __init__(
        self,
        *,
        backend: GenerationBackend,
        max_attempts: int = 2,
        backoff_seconds: float = 0.0,
        audience_language: str = "Korean",
    ) -> None:
        self._backend = backend
        self._retry_policy = RetryPolicy(
            name="generation",
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
        )
        self._audience_language = audience_language

    def generate(
        self,
        document: ExtractedDocument,
        *,
        cancel_event: Event | None = None,
    ) -> GeneratedArticle:
        if len(document.content) < MIN_SOURCE_CHARS:
            raise InsufficientSource(
                "Insufficient source content (< 100 chars). Aborting generation."
            )

        LOGGER.info("starting article generation title=%s", document.title)
        prompt = build_prompt(document, audience_language=self._audience_language)
        article = self._retry_policy.run(
            lambda: self._attempt(prompt),
            cancel_event=cancel_event,
        )
        for warning in article.warnings:
            LOGGER.warning("generated article quality warning=%s slug=%s", warning, article.slug)
        return article

    def _attempt(self, prompt: str) -> GeneratedArticle:
        try:
            raw = self._backend.complete(system_prompt=SYSTEM_PROMPT, user_prompt=prompt)
        except (GenerationFailed, ConfigurationMissing):
            raise
        except Exception as exc:
            # Backends are pluggable; any failure they raise counts as one failed attempt.
            raise GenerationFailed(f"Generation backend error: {exc}", cause=exc) from exc
        return parse_generated_article(raw)


def build_prompt(document: ExtractedDocument, *, audience_language: str = "Korean") -> str:
    return _PROMPT_TEMPLATE.format(
        title=document.title or "(untitled)",
        language=document.language or "unknown",
        source_url=document.source_url,
        content=document.content[:MAX_SOURCE_CHARS],
        audience_language=audience_language,
        cta_url=document.canonical_url or document.source_url,
    )


def parse_generated_article(raw: str) -> GeneratedArticle:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GenerationFailed("Generation response is not valid JSON.", cause=exc) from exc
    if not isinstance(parsed, dict):
        raise GenerationFailed("Generation response is not a JSON object.")
    data = cast(dict[str, Any], parsed)

    missing = [key for key in REQUIRED_KEYS if not isinstance(data.get(key), str)]
    if missing:
        raise GenerationFailed(f"Generation response missing keys: {', '.join(missing)}")
    html = data["html"].strip()
    if not html:
        raise GenerationFailed("Generation response has empty html.")

    title = data["title"].strip()
    return GeneratedArticle(
        title=title,
        slug=slugify(data["slug"]) or slugify(title),
        meta_description=data["metaDescription"].strip(),
        html=html,
        warnings=quality_warnings(html),
    )


def quality_warnings(html: str) -> tuple[str, ...]:
    lowered = html.lower()
    warnings: list[str] = []
    if len(html) < MIN_HTML_CHARS:
        warnings.append("html_short")
    if "<h2" not in lowered:
        warnings.append("missing_h2")
    if "faq" not in lowered:
        warnings.append("missing_faq")
    if "<h1" in lowered:
        warnings.append("contains_h1")
    return tuple(warnings)


def slugify(value: str) -> str:
    lowered = value.strip().lower()
    hyphenated = re.sub(r"[^\w]+", "-", lowered)
    return re.sub(r"-{2,}", "-", hyphenated.replace("_", "-")).strip("-")


def _completion_text(raw: str) -> str:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GenerationFailed("Generation backend returned a non-JSON body.", cause=exc) from exc
    if not isinstance(parsed, dict):
        raise GenerationFailed("Generation backend returned an unexpected body.")
    body = cast(dict[str, Any], parsed)

    usage = body.get("usage")
    if isinstance(usage, dict):
        LOGGER.info(
            "generation used approx %s tokens",
            cast(dict[str, Any], usage).get("total_tokens"),
        )

    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise GenerationFailed("No content received from the generation backend.")
    first = cast(list[Any], choices)[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise GenerationFailed("No content received from the generation backend.")
    return content
