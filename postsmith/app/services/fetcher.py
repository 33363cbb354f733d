from __future__ import annotations

import logging
from email.message import Message
from http.client import HTTPResponse
from threading import Event
from typing import IO, Any
from urllib.error import HTTPError, URLError
from urllib.request import HTTPRedirectHandler, OpenerDirector, Request, build_opener

from postsmith.app.services.errors import FetchHttpError, FetchTimeout, FetchTransportError
from postsmith.app.services.retry_policy import RetryPolicy
from postsmith.app.services.url_guard import validate_url

LOGGER = logging.getLogger("postsmith.fetcher")

DEFAULT_TIMEOUT_SECONDS = 10.0
HTML_ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
MAX_BODY_BYTES = 5 * 1024 * 1024


class _GuardedRedirectHandler(HTTPRedirectHandler):
    """Follows at most `max_redirects` hops and re-validates every target."""

    def __init__(self, max_redirects: int) -> None:
        super().__init__()
        self.max_redirections = max(0, max_redirects)

    def redirect_request(
        self,
        req: Request,
        fp: IO[bytes],
        code: int,
        msg: str,
        headers: Message,
        newurl: str,
    ) -> Request | None:
        if self.max_redirections == 0:
            return None
        error = validate_url(newurl)
        if error is not None:
            LOGGER.warning("redirect target rejected url=%s code=%s", newurl, error.code)
            raise error
        return super().redirect_request(req, fp, code, msg, headers, newurl)


class HtmlFetcher:
    def __init__(
        self,
        *,
        user_agent: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_redirects: int = 5,
        max_attempts: int = 2,
        backoff_seconds: float = 0.0,
    ) -> None:
        self._user_agent = user_agent
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._retry_policy = RetryPolicy(
            name="fetch",
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
        )
        self._opener: OpenerDirector = build_opener(_GuardedRedirectHandler(max_redirects))

    def fetch(
        self,
        url: str,
        *,
        timeout_seconds: float | None = None,
        cancel_event: Event | None = None,
    ) -> str:
        timeout = self._timeout_seconds if timeout_seconds is None else timeout_seconds
        return self._retry_policy.run(
            lambda: self._fetch_once(url, timeout),
            cancel_event=cancel_event,
        )

    def _fetch_once(self, url: str, timeout: float) -> str:
        request = Request(
            url,
            headers={
                "Accept": HTML_ACCEPT_HEADER,
                "Accept-Language": "en-US,en;q=0.9",
                "User-Agent": self._user_agent,
            },
            method="GET",
        )
        try:
            with self._open(request, timeout) as response:
                charset = response.headers.get_content_charset() or "utf-8"
                raw = response.read(MAX_BODY_BYTES)
        except HTTPError as exc:
            status_code = int(exc.code)
            raise FetchHttpError(
                f"Failed to fetch URL: {status_code} {exc.reason}",
                status=status_code,
            ) from exc
        except TimeoutError as exc:
            raise FetchTimeout(f"Fetch timed out after {timeout:g}s") from exc
        except URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise FetchTimeout(f"Fetch timed out after {timeout:g}s") from exc
            raise FetchTransportError(f"Fetch failed: {exc.reason}") from exc
        except OSError as exc:
            raise FetchTransportError(f"Fetch failed: {type(exc).__name__}") from exc

        try:
            body = raw.decode(charset, errors="replace")
        except LookupError:
            body = raw.decode("utf-8", errors="replace")
        LOGGER.debug("fetched url=%s bytes=%s charset=%s", url, len(raw), charset)
        return body

    def _open(self, request: Request, timeout: float) -> Any:
        response: HTTPResponse = self._opener.open(request, timeout=timeout)
        return response
