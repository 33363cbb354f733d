from __future__ import annotations

import base64
import json
import logging
import re
from threading import Event
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from bs4 import BeautifulSoup, Comment

from postsmith.app.models.article import GeneratedArticle, PublishResult
from postsmith.app.services.errors import (
    AuthenticationFailed,
    ConfigurationMissing,
    PublishFailed,
)
from postsmith.app.services.retry_policy import RetryPolicy

LOGGER = logging.getLogger("postsmith.publisher")

POSTS_ENDPOINT_PATH = "/wp-json/wp/v2/posts"
AUTH_FAILURE_STATUSES: frozenset[int] = frozenset({401, 403})
DANGEROUS_TAGS: tuple[str, ...] = ("script", "style", "iframe", "object", "embed", "form", "head")
UNWRAPPED_TAGS: tuple[str, ...] = ("html", "body")
URL_ATTRIBUTES: frozenset[str] = frozenset(
    {"href", "src", "action", "formaction", "xlink:href", "srcset", "poster"}
)
_URL_NOISE_RE = re.compile(r"[\s\x00-\x1f]+")


def sanitize_html(html: str) -> str:
    """Strip executable markup from generated article HTML.

    Works on the parsed tree: dangerous elements are removed with their
    content, `on*` handlers and script-bearing URLs are dropped, and `h1`
    is demoted to `h2` so the body heading hierarchy starts at h2.
    """
    soup = BeautifulSoup(html, "html.parser")
    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()
    for element in soup.find_all(DANGEROUS_TAGS):
        if element.decomposed:
            continue
        element.decompose()
    for wrapper in soup.find_all(UNWRAPPED_TAGS):
        wrapper.unwrap()

    for element in soup.find_all(True):
        if element.name == "h1":
            element.name = "h2"
        for attribute in list(element.attrs):
            lowered = attribute.lower()
            if lowered.startswith("on"):
                del element.attrs[attribute]
                continue
            if lowered in URL_ATTRIBUTES and _is_unsafe_url(element.attrs[attribute]):
                del element.attrs[attribute]
    return str(soup).strip()


def _is_unsafe_url(value: object) -> bool:
    if isinstance(value, list):
        value = " ".join(str(item) for item in value)
    if not isinstance(value, str):
        return False
    compact = _URL_NOISE_RE.sub("", value).lower()
    if compact.startswith(("javascript:", "vbscript:")):
        return True
    return compact.startswith("data:") and not compact.startswith("data:image/")


class WordPressPublisher:
    def __init__(
        self,
        *,
        base_url: str | None,
        username: str | None,
        app_password: str | None,
        timeout_seconds: float = 30.0,
        max_attempts: int = 2,
        backoff_seconds: float = 0.0,
    ) -> None:
        self._base_url = base_url.rstrip("/") if isinstance(base_url, str) else None
        self._username = username
        self._app_password = app_password
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._retry_policy = RetryPolicy(
            name="publish",
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
        )

    def publish(
        self,
        article: GeneratedArticle,
        *,
        cancel_event: Event | None = None,
    ) -> PublishResult:
        if not (self._base_url and self._username and self._app_password):
            raise ConfigurationMissing(
                "WordPress configuration missing "
                "(POSTSMITH_WORDPRESS_BASE_URL, POSTSMITH_WORDPRESS_USERNAME, "
                "POSTSMITH_WORDPRESS_APP_PASSWORD)"
            )

        payload: dict[str, object] = {
            "title": article.title,
            "content": sanitize_html(article.html),
            "status": "draft",
            "slug": article.slug,
            "excerpt": article.meta_description,
        }
        endpoint = f"{self._base_url}{POSTS_ENDPOINT_PATH}"
        LOGGER.info("publishing draft endpoint=%s slug=%s", endpoint, article.slug)
        result = self._retry_policy.run(
            lambda: self._create_post(endpoint, payload),
            cancel_event=cancel_event,
        )
        LOGGER.info("created draft post_id=%s url=%s", result.post_id, result.post_url)
        return result

    def _create_post(self, endpoint: str, payload: dict[str, object]) -> PublishResult:
        response = self._post_json(endpoint, payload)
        post_id = _to_optional_int(response.get("id"))
        if post_id is None:
            error = PublishFailed("WordPress response missing post id.")
            # The post may exist already; a second POST would create a duplicate draft.
            error.retryable = False
            raise error
        link = response.get("link")
        return PublishResult(post_id=post_id, post_url=link if isinstance(link, str) else "")

    def _post_json(self, endpoint: str, payload: dict[str, object]) -> dict[str, object]:
        credentials = f"{self._username}:{self._app_password}".encode()
        request = Request(
            endpoint,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={
                "Accept": "application/json",
                "Authorization": f"Basic {base64.b64encode(credentials).decode('ascii')}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                raw_body = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            response_body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            message = _extract_error_message(_decode_json_object(response_body)) or str(exc)
            if exc.code in AUTH_FAILURE_STATUSES:
                raise AuthenticationFailed(
                    f"WordPress authentication failed: {message}",
                    status=exc.code,
                ) from exc
            raise PublishFailed(
                f"WordPress API error: {exc.code} {message}",
                status=exc.code,
                cause=exc,
            ) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise PublishFailed(
                f"WordPress request failed: {type(exc).__name__}",
                cause=exc,
            ) from exc
        return _decode_json_object(raw_body)


def _decode_json_object(raw_body: str) -> dict[str, object]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {
        key: value
        for key, value in cast(dict[Any, object], parsed).items()
        if isinstance(key, str)
    }


def _extract_error_message(payload: dict[str, object]) -> str | None:
    for key in ("message", "code", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _to_optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None
