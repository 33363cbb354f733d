"""Pipeline commands for Postsmith CLI."""

import json
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from threading import Event

import click
from pydantic import ValidationError
from rich.console import Console

from postsmith.app.dependencies import get_pipeline_service, get_settings
from postsmith.app.logging_config import configure_application_logging
from postsmith.app.models.job_contracts import ExtractedDocumentPayload, GeneratedArticlePayload
from postsmith.app.services.errors import PipelineError
from postsmith.app.services.pipeline_service import JobOutcome, PipelineService

console = Console()


def _service() -> PipelineService:
    configure_application_logging(get_settings())
    return get_pipeline_service()


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _read_json(path: Path) -> dict:
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        _fail(f"{path} is not valid JSON: {exc}")
    if not isinstance(parsed, dict):
        _fail(f"{path} must contain a JSON object")
    # Accept both a bare object and a full `{status, data}` API response.
    data = parsed.get("data")
    if isinstance(data, dict):
        return data
    return parsed


@click.command()
@click.argument("url")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Write the document JSON here.")
def crawl(url: str, output: Path | None):
    """Fetch URL and print the extracted document."""
    service = _service()
    console.print(f"Crawling [cyan]{url}[/cyan]")
    try:
        document = service.crawl(url)
    except PipelineError as exc:
        _fail(f"Crawling failed ({exc.code}): {exc.message}")
        return

    payload = document.to_payload()
    if output is not None:
        output.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"[green]Saved[/green] {output}")
    else:
        console.print_json(data=payload)
    console.print(
        f"[bold]{document.title}[/bold]: {len(document.content)} chars, "
        f"{len(document.headings)} headings"
    )


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Write the article JSON here.")
def generate(file: Path, output: Path | None):
    """Generate an article from an extracted document JSON FILE."""
    service = _service()
    try:
        document = ExtractedDocumentPayload.model_validate(_read_json(file)).to_document()
        article = service.generate(document)
    except ValidationError as exc:
        _fail(f"{file} is not an extracted document: {exc.error_count()} errors")
        return
    except PipelineError as exc:
        _fail(f"AI Generation failed ({exc.code}): {exc.message}")
        return

    payload = article.to_payload()
    if output is not None:
        output.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"[green]Saved[/green] {output}")
    else:
        console.print_json(data=payload)
    for warning in article.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def publish(file: Path):
    """Create a WordPress draft from a generated article JSON FILE."""
    service = _service()
    try:
        article = GeneratedArticlePayload.model_validate(_read_json(file)).to_article()
        result = service.publish(article)
    except ValidationError as exc:
        _fail(f"{file} is not a generated article: {exc.error_count()} errors")
        return
    except PipelineError as exc:
        _fail(f"WordPress publish failed ({exc.code}): {exc.message}")
        return

    console.print(f"[green]Draft created[/green] id={result.post_id} {result.post_url}")


def _run_cancellable(service: PipelineService, url: str) -> JobOutcome:
    """Run a job on a worker thread so Ctrl-C cancels it instead of killing it."""
    cancel_event = Event()
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(service.run_job, url, cancel_event=cancel_event)
        while True:
            try:
                return future.result()
            except KeyboardInterrupt:
                if cancel_event.is_set():
                    raise
                console.print("[yellow]Cancelling job after the current stage...[/yellow]")
                cancel_event.set()


@click.command()
@click.argument("url")
def run(url: str):
    """Run the full pipeline for URL and create a draft."""
    service = _service()
    console.print(f"Running job for [cyan]{url}[/cyan]")
    outcome = _run_cancellable(service, url)

    for timing in outcome.stage_timings:
        console.print(f"  {timing.stage:<9} {timing.duration_ms} ms")
    if outcome.result is None:
        message = outcome.error.message if outcome.error is not None else "unknown error"
        _fail(f"Job {outcome.job_id} failed at {outcome.failed_stage}: {message}")
        return

    console.print(
        f"[green]Job {outcome.job_id} completed[/green] in {outcome.duration_seconds:.2f}s: "
        f"post {outcome.result.post_id} {outcome.result.post_url}"
    )
