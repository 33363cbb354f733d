from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from postsmith.app.config import DEFAULT_BROWSER_USER_AGENT, load_settings
from postsmith.app.dependencies import (
    build_pipeline_service,
    get_pipeline_service,
    get_settings,
    reset_cached_dependencies,
)
from postsmith.app.logging_config import configure_application_logging


def test_load_settings_defaults(tmp_path: Path) -> None:
    settings = load_settings()

    assert settings.data_dir == (tmp_path / "runtime-data").resolve()
    assert settings.log_dir == (tmp_path / "runtime-data" / "logs").resolve()
    assert settings.fetch_timeout_seconds == 10
    assert settings.fetch_max_redirects == 5
    assert settings.fetch_user_agent == DEFAULT_BROWSER_USER_AGENT
    assert settings.content_max_chars == 15_000
    assert settings.generation_base_url == "https://api.openai.com/v1"
    assert settings.generation_timeout_seconds == 120
    assert settings.generation_max_attempts == 2
    assert settings.publish_timeout_seconds == 30
    assert settings.publish_max_attempts == 2
    assert settings.generation_api_key is None
    assert settings.wordpress_configured is False


def test_load_settings_parses_and_normalizes_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("POSTSMITH_LOG_DIR", str(tmp_path / "elsewhere"))
    monkeypatch.setenv("POSTSMITH_FETCH_TIMEOUT_SECONDS", "4.5")
    monkeypatch.setenv("POSTSMITH_FETCH_USER_AGENT", "   ")
    monkeypatch.setenv("POSTSMITH_GENERATION_API_KEY", "  sk-test  ")
    monkeypatch.setenv("POSTSMITH_GENERATION_BASE_URL", " https://llm.example.com/v1/ ")
    monkeypatch.setenv("POSTSMITH_GENERATION_AUDIENCE_LANGUAGE", "English")
    monkeypatch.setenv("POSTSMITH_WORDPRESS_BASE_URL", " https://blog.example.com/ ")
    monkeypatch.setenv("POSTSMITH_WORDPRESS_USERNAME", "editor")
    monkeypatch.setenv("POSTSMITH_WORDPRESS_APP_PASSWORD", "abcd efgh ijkl mnop/")
    monkeypatch.setenv("POSTSMITH_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("POSTSMITH_TELEMETRY_SINK", " LOG ")

    settings = load_settings()

    assert settings.log_dir == (tmp_path / "elsewhere").resolve()
    assert settings.fetch_timeout_seconds == 4.5
    assert settings.fetch_user_agent == DEFAULT_BROWSER_USER_AGENT
    assert settings.generation_api_key == "sk-test"
    assert settings.generation_base_url == "https://llm.example.com/v1"
    assert settings.generation_audience_language == "English"
    assert settings.wordpress_base_url == "https://blog.example.com"
    assert settings.wordpress_app_password == "abcd efgh ijkl mnop/"
    assert settings.wordpress_configured is True
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "log"


def test_load_settings_reads_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "POSTSMITH_WORDPRESS_BASE_URL=https://dotenv.example.com",
                "POSTSMITH_PUBLISH_MAX_ATTEMPTS=3",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings()

    assert settings.wordpress_base_url == "https://dotenv.example.com"
    assert settings.publish_max_attempts == 3


def test_load_settings_rejects_invalid_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POSTSMITH_TELEMETRY_SINK", "kafka")
    with pytest.raises(ValueError, match="POSTSMITH_TELEMETRY_SINK"):
        load_settings()

    monkeypatch.setenv("POSTSMITH_TELEMETRY_SINK", "none")
    monkeypatch.setenv("POSTSMITH_FETCH_TIMEOUT_SECONDS", "0")
    with pytest.raises(ValidationError):
        load_settings()


def test_settings_are_immutable() -> None:
    settings = load_settings()

    with pytest.raises(ValidationError):
        settings.fetch_timeout_seconds = 99  # type: ignore[misc]


def test_cached_dependencies_are_shared_and_resettable() -> None:
    reset_cached_dependencies()
    try:
        assert get_settings() is get_settings()
        assert get_pipeline_service() is get_pipeline_service()
    finally:
        reset_cached_dependencies()


def test_build_pipeline_service_without_credentials_succeeds() -> None:
    service = build_pipeline_service(load_settings())

    assert service is not None


def test_configure_application_logging_creates_log_files(tmp_path: Path) -> None:
    settings = load_settings()

    log_file = configure_application_logging(settings)

    assert log_file == settings.log_dir / "postsmith.log"
    assert log_file.exists()
    assert (settings.log_dir / "postsmith-telemetry.log").exists()
