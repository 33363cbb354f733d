from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from postsmith.app.services.errors import AuthenticationFailed
from postsmith.cli import main


@pytest.fixture
def runner(fakes: Any, monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    service = fakes.build_service()
    monkeypatch.setattr("postsmith.commands.jobs.get_pipeline_service", lambda: service)
    monkeypatch.setattr("postsmith.commands.jobs.configure_application_logging", lambda _: None)
    return CliRunner()


def test_crawl_writes_document_json(runner: CliRunner, tmp_path: Path) -> None:
    output = tmp_path / "document.json"

    result = runner.invoke(
        main,
        ["crawl", "https://tea.example.com/guides/green-tea", "--output", str(output)],
    )

    assert result.exit_code == 0, result.output
    document = json.loads(output.read_text(encoding="utf-8"))
    assert document["title"] == "A Practical Guide to Green Tea"
    assert document["headings"] == ["How the leaves are processed", "Brewing at home"]
    assert "2 headings" in result.output


def test_crawl_rejected_url_exits_with_error(runner: CliRunner, fakes: Any) -> None:
    result = runner.invoke(main, ["crawl", "http://10.1.2.3/"])

    assert result.exit_code == 1
    assert "private_network_target" in result.output
    assert fakes.fetcher.calls == []


def test_generate_reads_crawl_output(runner: CliRunner, tmp_path: Path) -> None:
    source = tmp_path / "crawl.json"
    source.write_text(
        json.dumps(
            {
                "status": "ok",
                "data": {
                    "url": "https://tea.example.com/guides/green-tea",
                    "title": "A Practical Guide to Green Tea",
                    "content": "Shaded tea leaves are steamed and rolled before drying. " * 4,
                },
                "duration": 1.2,
            }
        ),
        encoding="utf-8",
    )
    output = tmp_path / "article.json"

    result = runner.invoke(main, ["generate", str(source), "-o", str(output)])

    assert result.exit_code == 0, result.output
    article = json.loads(output.read_text(encoding="utf-8"))
    assert article["slug"] == "green-tea-guide"


def test_generate_rejects_incomplete_document(runner: CliRunner, tmp_path: Path) -> None:
    source = tmp_path / "crawl.json"
    source.write_text(json.dumps({"title": "No content"}), encoding="utf-8")

    result = runner.invoke(main, ["generate", str(source)])

    assert result.exit_code == 1
    assert "invalid_request" in result.output


def test_publish_reports_draft(runner: CliRunner, tmp_path: Path) -> None:
    source = tmp_path / "article.json"
    source.write_text(
        json.dumps(
            {
                "title": "Green Tea Guide",
                "slug": "green-tea-guide",
                "metaDescription": "Brew better tea.",
                "html": "<h2>Intro</h2>",
            }
        ),
        encoding="utf-8",
    )

    result = runner.invoke(main, ["publish", str(source)])

    assert result.exit_code == 0, result.output
    assert "id=321" in result.output


def test_run_reports_success_and_failure(runner: CliRunner, fakes: Any) -> None:
    ok = runner.invoke(main, ["run", "https://tea.example.com/guides/green-tea"])
    assert ok.exit_code == 0, ok.output
    assert "completed" in ok.output
    assert "321" in ok.output

    fakes.publisher.error = AuthenticationFailed("WordPress authentication failed", status=401)
    failed = runner.invoke(main, ["run", "https://tea.example.com/guides/green-tea"])
    assert failed.exit_code == 1
    assert "failed at publish" in failed.output


class _InterruptedFuture:
    def __init__(self, call: Callable[[], Any]) -> None:
        self.call = call
        self.waits = 0

    def result(self) -> Any:
        self.waits += 1
        if self.waits == 1:
            raise KeyboardInterrupt
        return self.call()


class _InterruptedExecutor:
    def __init__(self, max_workers: int) -> None:
        self.max_workers = max_workers

    def __enter__(self) -> _InterruptedExecutor:
        return self

    def __exit__(self, *_: object) -> None:
        return None

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> _InterruptedFuture:
        return _InterruptedFuture(lambda: fn(*args, **kwargs))


def test_run_cancels_job_on_keyboard_interrupt(
    runner: CliRunner,
    fakes: Any,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr("postsmith.commands.jobs.ThreadPoolExecutor", _InterruptedExecutor)

    result = runner.invoke(main, ["run", "https://tea.example.com/guides/green-tea"])

    assert result.exit_code == 1
    assert "Cancelling job" in result.output
    assert "cancelled" in result.output
    assert fakes.fetcher.calls == []
