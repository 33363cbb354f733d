from __future__ import annotations

import pytest

from postsmith.app.services.errors import (
    DisallowedScheme,
    MalformedUrl,
    NonHtmlTarget,
    PrivateNetworkTarget,
    UrlValidationError,
)
from postsmith.app.services.url_guard import ensure_valid_url, validate_url


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/articles/green-tea",
        "http://example.com",
        "https://news.example.co.kr/view?id=42#top",
        "https://8.8.8.8/page.html",
        "https://172.32.0.1/outside-private-range",
        "https://10news.example.com/",
        "https://1.1.1.1/",
    ],
)
def test_validate_url_accepts_public_http_pages(url: str) -> None:
    assert validate_url(url) is None


@pytest.mark.parametrize(
    ("url", "error_type", "message"),
    [
        ("", MalformedUrl, "Invalid URL format."),
        ("not a url", MalformedUrl, "Invalid URL format."),
        ("https://", MalformedUrl, "Invalid URL format."),
        ("https://exa\nmple.com", MalformedUrl, "Invalid URL format."),
        ("ftp://example.com/file", DisallowedScheme, "Invalid protocol. Only HTTP/HTTPS allowed."),
        ("file:///etc/passwd", DisallowedScheme, "Invalid protocol. Only HTTP/HTTPS allowed."),
        ("javascript:alert(1)", DisallowedScheme, "Invalid protocol. Only HTTP/HTTPS allowed."),
        ("http://localhost:3000/", PrivateNetworkTarget, "Localhost not allowed."),
        ("http://127.0.0.1/admin", PrivateNetworkTarget, "Localhost not allowed."),
        ("http://[::1]/", PrivateNetworkTarget, "Localhost not allowed."),
        ("http://10.0.0.5/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://192.168.1.1/router", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://172.16.4.2/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://172.31.255.255/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://10.1/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://192.168.1/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://167772161/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://0xa.0.0.1/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://10.0.0.1.nip.io/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://[::ffff:10.0.0.1]/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://169.254.169.254/latest/", PrivateNetworkTarget, "Private network IPs not allowed."),
        ("http://2130706433/", PrivateNetworkTarget, "Localhost not allowed."),
        ("http://127.1/", PrivateNetworkTarget, "Localhost not allowed."),
        ("http://[::ffff:127.0.0.1]/", PrivateNetworkTarget, "Localhost not allowed."),
        (
            "https://example.com/report.PDF",
            NonHtmlTarget,
            "Non-HTML endpoint detected (file extension).",
        ),
        (
            "https://example.com/photo.jpeg?size=large",
            NonHtmlTarget,
            "Non-HTML endpoint detected (file extension).",
        ),
    ],
)
def test_validate_url_rejects_unsafe_targets(
    url: str,
    error_type: type[UrlValidationError],
    message: str,
) -> None:
    error = validate_url(url)

    assert isinstance(error, error_type)
    assert error.message == message
    assert error.http_status == 400
    assert error.retryable is False


def test_validate_url_is_deterministic() -> None:
    first = validate_url("http://192.168.0.10/")
    second = validate_url("http://192.168.0.10/")

    assert first is not None and second is not None
    assert (type(first), first.message) == (type(second), second.message)


def test_ensure_valid_url_raises_and_strips() -> None:
    assert ensure_valid_url("  https://example.com/post  ") == "https://example.com/post"
    with pytest.raises(PrivateNetworkTarget):
        ensure_valid_url("http://localhost/")
