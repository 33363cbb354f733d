from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, cast

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".postsmith"
DEFAULT_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
_PATH_FIELDS: tuple[str, ...] = ("data_dir", "log_dir")
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)
_OPTIONAL_TEXT_FIELDS: tuple[str, ...] = (
    "generation_api_key",
    "wordpress_base_url",
    "wordpress_username",
    "wordpress_app_password",
)


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `POSTSMITH_*` environment variables (or `.env`)
    once per process and is immutable afterwards.
    """

    model_config = SettingsConfigDict(
        env_prefix="POSTSMITH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs.",
    )

    # Fetch and extraction.
    fetch_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for the source page fetch (connect + read).",
    )
    fetch_user_agent: str = Field(
        default=DEFAULT_BROWSER_USER_AGENT,
        description="Desktop-browser User-Agent sent with the source page fetch.",
    )
    fetch_max_redirects: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Maximum number of HTTP redirects followed during the source fetch.",
    )
    content_max_chars: int = Field(
        default=15_000,
        ge=50,
        description="Ceiling applied to extracted plain-text content.",
    )

    # Generation backend (OpenAI-compatible chat completions).
    generation_api_key: str | None = Field(
        default=None,
        description="API key for the generation backend.",
    )
    generation_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible generation backend.",
    )
    generation_model: str = Field(
        default="gpt-4.1",
        description="Model name passed to the generation backend.",
    )
    generation_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="HTTP timeout for one generation request.",
    )
    generation_max_tokens: int = Field(
        default=4_000,
        ge=256,
        description="Completion token budget for one generated article.",
    )
    generation_audience_language: str = Field(
        default="Korean",
        description="Language the generated article is written in.",
    )
    generation_max_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Total generation attempts (first call + retries).",
    )

    # WordPress publishing.
    wordpress_base_url: str | None = Field(
        default=None,
        description="WordPress site root, e.g. https://blog.example.com.",
    )
    wordpress_username: str | None = Field(
        default=None,
        description="WordPress user owning the application password.",
    )
    wordpress_app_password: str | None = Field(
        default=None,
        description="WordPress application password used for Basic auth.",
    )
    publish_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for one WordPress request.",
    )
    publish_max_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Total publish attempts for retryable failures.",
    )
    retry_backoff_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Pause between retry attempts of generation and publish calls.",
    )

    # Logging.
    log_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR) / "logs",
        description="Directory for log files. Defaults to `${POSTSMITH_DATA_DIR}/logs`.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("POSTSMITH_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("POSTSMITH_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("generation_base_url", mode="before")
    @classmethod
    def _normalize_generation_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("POSTSMITH_GENERATION_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("POSTSMITH_GENERATION_BASE_URL must not be empty.")
        return normalized

    @field_validator("fetch_user_agent", mode="before")
    @classmethod
    def _normalize_user_agent(cls, value: Any) -> str:
        normalized = _normalize_optional_text(value)
        return normalized or DEFAULT_BROWSER_USER_AGENT

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        default_value = cls.model_fields[cast(str, info.field_name)].default
        return _parse_bool_with_default(value, default=bool(default_value))

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any, info: ValidationInfo) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is not None and info.field_name == "wordpress_base_url":
            return normalized.rstrip("/")
        return normalized

    @property
    def wordpress_configured(self) -> bool:
        return (
            self.wordpress_base_url is not None
            and self.wordpress_username is not None
            and self.wordpress_app_password is not None
        )


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    if "log_dir" in settings.model_fields_set:
        return settings
    return settings.model_copy(update={"log_dir": settings.data_dir / "logs"})


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return settings.model_copy(
        update={
            field_name: _resolve_path(getattr(settings, field_name))
            for field_name in _PATH_FIELDS
        }
    )
