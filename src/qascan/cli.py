"""Typer CLI: ``qascan scan``, ``submit``, ``worker``, ``serve``, ``show`` and ``validate``."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from qascan.config import CONFIG_PATH_ENV, load_config
from qascan.schemas.config import RuntimeConfig
from qascan.schemas.report import ReportRecord, ReportStatus, RequestedAiConfig
from qascan.shared.ai_provider import PROVIDER_LABELS, resolve_ai_provider

# Load .env file from the working directory (if it exists)
load_dotenv()

app = typer.Typer(
    name="qascan",
    help="qascan: scan a website for performance, accessibility, SEO and UX issues.",
    no_args_is_help=True,
)
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to qascan.yml (optional; env vars override it).")
VerboseOption = typer.Option(False, "--verbose", "-v")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every HTTP request at INFO, too noisy for users
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load(config: Optional[Path]) -> RuntimeConfig:
    try:
        return load_config(config)
    except Exception as exc:
        console.print(f"[red]Config validation failed:[/] {exc}")
        raise typer.Exit(code=1)


@app.command()
def validate(
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Validate configuration without running a scan."""
    _setup_logging(verbose)
    cfg = _load(config)

    console.print("[green]Config is valid![/]\n")
    resolution = resolve_ai_provider(None, None, cfg)
    if resolution.ok:
        console.print(
            f"  AI provider:       {PROVIDER_LABELS[resolution.provider]} ({resolution.config.model})"
        )
    else:
        console.print(f"  AI provider:       [yellow]{resolution.error}[/] (AI steps will be skipped)")
    for provider, label in PROVIDER_LABELS.items():
        configured = bool(getattr(cfg.secrets, f"{provider}_api_key"))
        console.print(f"    {label:<18} {'key set' if configured else '-'}")
    console.print(f"  PageSpeed key:     {'set' if cfg.secrets.pagespeed_api_key else '[yellow]missing[/] (audit will fail)'}")
    console.print(f"  WhatCMS key:       {'set' if cfg.secrets.whatcms_api_key else '-'}")
    console.print(f"  Required steps:    {', '.join(cfg.pipeline.required_sections)}")
    console.print(f"  Data directory:    {cfg.storage.data_dir}")
    console.print(f"  Task broker:       {cfg.queue.broker_url} (queue {cfg.queue.queue_name})")


@app.command()
def scan(
    url: str = typer.Argument(..., help="Page to scan (http/https)."),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="AI provider: gemini, openai or anthropic."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name for the chosen provider."),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Stub every LLM call with canned responses."),
) -> None:
    """Run a scan inline and print the report."""
    _setup_logging(verbose)
    cfg = _load(config)

    from qascan.services.intake import validate_provider, validate_url
    from qascan.shared.errors import ScanValidationError

    try:
        url = validate_url(url)
        provider = validate_provider(provider)
    except ScanValidationError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(code=1)

    if dry_run:
        console.print("[yellow]DRY-RUN mode: LLM calls are stubbed.[/]\n")

    console.print(f"[bold]Starting scan for:[/] {url}\n")
    record = asyncio.run(_run_scan(cfg, url, provider, model, dry_run=dry_run))
    _print_report(record)
    if record.status != ReportStatus.COMPLETED:
        raise typer.Exit(code=1)


async def _run_scan(
    cfg: RuntimeConfig,
    url: str,
    provider: Optional[str],
    model: Optional[str],
    *,
    dry_run: bool = False,
) -> ReportRecord:
    from qascan.agents.orchestrator.agent import build_orchestrator
    from qascan.schemas.task import ScanTaskPayload
    from qascan.shared.progress import PipelineProgress
    from qascan.shared.report_store import FileReportStore

    store = FileReportStore(cfg.storage.data_dir)
    record = await store.create(ReportRecord(
        url=url,
        ai_config=RequestedAiConfig(provider=provider, model=model) if provider or model else None,
    ))

    with PipelineProgress() as progress:
        progress.print_phase(f"Report {record.id}")
        orchestrator = build_orchestrator(cfg, store, dry_run=dry_run, on_event=progress.on_event)
        await orchestrator.run(ScanTaskPayload(
            report_id=record.id, url_to_scan=url, ai_provider=provider, ai_model=model,
        ))

    return await store.get(record.id)


@app.command()
def submit(
    url: str = typer.Argument(..., help="Page to scan (http/https)."),
    provider: Optional[str] = typer.Option(None, "--provider", "-p"),
    model: Optional[str] = typer.Option(None, "--model", "-m"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Create a report and enqueue its scan for a worker."""
    _setup_logging(verbose)
    cfg = _load(config)
    _export_config_path(config)

    from qascan.schemas.task import ScanRequest
    from qascan.services.intake import submit_scan
    from qascan.shared.errors import QAScanError
    from qascan.shared.report_store import FileReportStore
    from qascan.worker import enqueue_scan

    store = FileReportStore(cfg.storage.data_dir)
    try:
        accepted = asyncio.run(
            submit_scan(ScanRequest(url=url, ai_provider=provider, ai_model=model), store, enqueue_scan)
        )
    except QAScanError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(code=1)

    console.print(f"[green]Scan queued.[/] Report id: [bold]{accepted.report_id}[/]")


@app.command()
def worker(
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
    concurrency: int = typer.Option(1, "--concurrency", help="Scans to run in parallel."),
) -> None:
    """Start a Celery worker that consumes queued scans."""
    _setup_logging(verbose)
    cfg = _load(config)
    _export_config_path(config)

    import qascan.worker  # noqa: F401  (registers the scan task)
    from qascan.shared.celery_app import celery_app

    console.print(f"[bold]Worker listening on[/] {cfg.queue.queue_name} ({cfg.queue.broker_url})")
    celery_app.worker_main([
        "worker",
        f"--loglevel={'DEBUG' if verbose else 'INFO'}",
        f"--queues={cfg.queue.queue_name}",
        f"--concurrency={concurrency}",
    ])


def _export_config_path(config: Optional[Path]) -> None:
    # The Celery app and its worker processes load their own config from QASCAN_CONFIG.
    if config is not None:
        os.environ[CONFIG_PATH_ENV] = str(config.resolve())


@app.command()
def serve(
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)."),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default from config)."),
) -> None:
    """Serve the HTTP API; scans are queued for ``qascan worker``."""
    _setup_logging(verbose)
    cfg = _load(config)
    _export_config_path(config)

    import uvicorn

    from qascan.api.app import create_app
    from qascan.shared.report_store import FileReportStore
    from qascan.worker import enqueue_scan

    api = create_app(cfg, FileReportStore(cfg.storage.data_dir), enqueue_scan)
    uvicorn.run(api, host=host or cfg.api.host, port=port or cfg.api.port)


@app.command()
def show(
    report_id: str = typer.Argument(..., help="Report id printed by scan/submit."),
    config: Optional[Path] = ConfigOption,
    as_json: bool = typer.Option(False, "--json", help="Print the raw record as JSON."),
) -> None:
    """Print a stored report."""
    cfg = _load(config)

    from qascan.shared.report_store import FileReportStore

    record = asyncio.run(FileReportStore(cfg.storage.data_dir).get(report_id))
    if record is None:
        console.print(f"[red]No report found with id {report_id}[/]")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(record.model_dump_json())
        return
    _print_report(record)


def _section_state(section) -> str:
    if section is None:
        return "[dim]not run[/]"
    if hasattr(section, "success"):
        return "[green]completed[/]" if section.success else f"[red]error[/] {section.error or ''}"
    value = section.status.value
    colour = {"completed": "green", "skipped": "yellow"}.get(value, "red")
    detail = f" {section.error}" if section.error and value != "completed" else ""
    return f"[{colour}]{value}[/]{detail}"


def _print_report(record: ReportRecord) -> None:
    colour = "green" if record.status == ReportStatus.COMPLETED else "red"
    console.print(f"\n[bold]Report {record.id}[/] [{colour}]{record.status.value}[/]")
    console.print(f"URL: {record.url}")
    if record.error_message:
        console.print(f"[red]{record.error_message}[/]")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Section")
    table.add_column("Result")
    table.add_row("Screenshots", _section_state(record.capture_result))
    table.add_row("Audit", _section_state(record.audit_result))
    table.add_row("Tech stack", _section_state(record.tech_result))
    table.add_row("UX suggestions", _section_state(record.vision_suggestions))
    table.add_row("Explanations", _section_state(record.explained_issues))
    table.add_row("Summary", _section_state(record.summary))
    console.print(table)

    audit = record.audit_result
    if audit is not None and audit.success:
        scores = audit.scores.model_dump(exclude_none=True)
        console.print("Scores: " + ", ".join(f"{k.replace('_', ' ')} {v}" for k, v in scores.items()))

    if record.tech_result is not None and record.tech_result.technologies:
        console.print("Tech: " + ", ".join(t.name for t in record.tech_result.technologies))

    if record.summary is not None and record.summary.text:
        console.print("\n[bold]── Summary ──[/]\n")
        console.print(record.summary.text)
