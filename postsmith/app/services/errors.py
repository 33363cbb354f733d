from __future__ import annotations


class PipelineError(Exception):
    """Base class for every classified stage failure.

    `retryable` drives the in-stage retry policy, `http_status` the status
    code reported by the HTTP entry points. `fatal` marks failures that no
    retry or rerun can fix without operator action.
    """

    code = "pipeline_error"
    http_status = 500
    retryable = False
    fatal = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(PipelineError):
    code = "invalid_request"
    http_status = 400


class UrlValidationError(PipelineError):
    code = "url_validation_failed"
    http_status = 400


class MalformedUrl(UrlValidationError):
    code = "malformed_url"


class DisallowedScheme(UrlValidationError):
    code = "disallowed_scheme"


class PrivateNetworkTarget(UrlValidationError):
    code = "private_network_target"


class NonHtmlTarget(UrlValidationError):
    code = "non_html_target"


class FetchError(PipelineError):
    code = "fetch_failed"
    retryable = True


class FetchTimeout(FetchError):
    code = "fetch_timeout"


class FetchTransportError(FetchError):
    code = "fetch_transport_error"


class FetchHttpError(FetchError):
    code = "fetch_http_error"

    def __init__(self, message: str, *, status: int) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = status in {408, 425, 429, 500, 502, 503, 504}


class UnextractableContent(PipelineError):
    code = "unextractable_content"


class InsufficientSource(PipelineError):
    code = "insufficient_source"


class GenerationFailed(PipelineError):
    code = "generation_failed"
    retryable = True

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConfigurationMissing(PipelineError):
    code = "configuration_missing"
    fatal = True


class AuthenticationFailed(PipelineError):
    code = "authentication_failed"
    http_status = 401
    fatal = True

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class PublishFailed(PipelineError):
    code = "publish_failed"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.cause = cause


class JobCancelled(PipelineError):
    code = "cancelled"

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message)
