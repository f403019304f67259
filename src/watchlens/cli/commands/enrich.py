"""
Enrich CLI command for watch-history records.

Reads a JSON array of watch records, enriches them through the configured
backend cascade and writes the enriched array back out. Supports a
persistent cache file between runs, a JSON run report, and logging to
file for auditing purposes.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from watchlens.exceptions import (
    EXIT_CODE_CONFIGURATION_ERROR,
    EXIT_CODE_INTERRUPTED,
    EXIT_CODE_INVALID_ARGS,
    EXIT_CODE_PARTIAL_SUCCESS,
    ConfigurationError,
)
from watchlens.models.enrichment_report import EnrichmentReport
from watchlens.models.enums import BackendName
from watchlens.models.video import VideoRecord
from watchlens.services.enrichment.pipeline import EnrichmentRun
from watchlens.services.enrichment.shutdown_handler import get_shutdown_handler

console = Console()

VALID_BACKENDS = {backend.value for backend in BackendName}
MAX_ERROR_ROWS = 20


def validate_backend(value: Optional[str]) -> Optional[str]:
    """
    Validate a backend name.

    Parameters
    ----------
    value : str | None
        Backend name to validate, or None to keep the configured default.

    Returns
    -------
    str | None
        Validated lowercase backend name.

    Raises
    ------
    typer.BadParameter
        If the backend name is invalid.
    """
    if value is None:
        return None
    value_lower = value.lower()
    if value_lower not in VALID_BACKENDS:
        raise typer.BadParameter(
            f"Invalid backend '{value}'. Must be one of: {', '.join(sorted(VALID_BACKENDS))}"
        )
    return value_lower


def _generate_timestamp() -> str:
    """
    Generate timestamp string for file names.

    Returns
    -------
    str
        Timestamp in YYYYMMDD-HHMMSS format
    """
    return datetime.now().strftime("%Y%m%d-%H%M%S")


def _default_output_path(input_file: Path) -> Path:
    """Get the default output path next to the input file."""
    return input_file.with_name(f"{input_file.stem}.enriched.json")


def _setup_enrichment_logging(
    timestamp: Optional[str] = None,
    verbose: bool = False,
    logs_dir: Path = Path("./logs"),
) -> Path:
    """
    Set up file logging for an enrichment run.

    Creates a log file at {logs_dir}/enrichment-{timestamp}.log with INFO
    level logging. Creates the logs directory if it doesn't exist.

    Parameters
    ----------
    timestamp : str, optional
        Timestamp to use for log file name. If None, generates new timestamp.
    verbose : bool, optional
        If True, set logging level to DEBUG and also log to the console.
    logs_dir : Path, optional
        Directory for log files (default: ./logs).

    Returns
    -------
    Path
        Path to the created log file
    """
    if timestamp is None:
        timestamp = _generate_timestamp()

    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"enrichment-{timestamp}.log"

    log_level = logging.DEBUG if verbose else logging.INFO

    file_handler = logging.FileHandler(log_file, mode="w")
    file_handler.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger("watchlens")
    root_logger.addHandler(file_handler)
    root_logger.setLevel(log_level)

    if verbose:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    return log_file


def _load_records(input_file: Path) -> list[VideoRecord]:
    """
    Read watch records from a JSON array.

    Parameters
    ----------
    input_file : Path
        File holding ``[{"url": ...}, ...]``.

    Returns
    -------
    list[VideoRecord]
        Parsed records.

    Raises
    ------
    ValueError
        If the file is not a JSON array of objects with a ``url``.
    """
    try:
        data = json.loads(input_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"{input_file} is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise ValueError(f"{input_file} must contain a JSON array of records")

    records: list[VideoRecord] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"Record {index} is not an object")
        try:
            records.append(VideoRecord.model_validate(item))
        except ValidationError as e:
            raise ValueError(f"Record {index} is invalid: {e.errors()[0]['msg']}") from e
    return records


def _save_records(records: list[VideoRecord], output_path: Path) -> None:
    """
    Write enriched records as a JSON array.

    Keys use the camelCase form of the record fields; caller fields not
    known to the record model are written back unchanged.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = [record.model_dump(mode="json", by_alias=True) for record in records]
    output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _save_report(report: EnrichmentReport, output_path: Path) -> None:
    """
    Save enrichment report to JSON file.

    Creates parent directories if they don't exist.

    Parameters
    ----------
    report : EnrichmentReport
        The enrichment report to save
    output_path : Path
        Path to save the JSON report
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(report.model_dump_json(indent=2))


def _render_results(run: EnrichmentRun, report: EnrichmentReport) -> None:
    """Print the run summary, per-backend metrics and failed records."""
    summary = report.summary

    summary_lines = [
        f"Records Processed: [cyan]{summary.records_processed}[/cyan]",
        f"Records Enriched: [green]{summary.records_enriched}[/green]",
        f"Records Failed: [red]{summary.records_failed}[/red]",
        f"Unique Videos: [cyan]{summary.unique_videos}[/cyan]",
        f"Cache Hits: [cyan]{summary.cache_hits}[/cyan]",
    ]
    for backend, count in sorted(summary.by_backend.items()):
        summary_lines.append(f"Enriched via {backend}: [green]{count}[/green]")
    summary_lines.extend(
        [
            f"LLM Cost: [yellow]${summary.total_cost:.4f}[/yellow] "
            f"({summary.tokens_used} tokens)",
            f"Quota Used: [yellow]{summary.quota_used}[/yellow] units",
        ]
    )
    for halt in summary.halts:
        summary_lines.append(f"Halted: [red]{halt}[/red]")

    status_color = "green" if summary.records_failed == 0 else "yellow"
    console.print(
        Panel(
            "\n".join(summary_lines),
            title="Enrichment Complete",
            border_style=status_color,
        )
    )

    metrics = run.metrics
    if metrics.by_backend:
        metrics_table = Table(title="Backend Metrics", show_header=True)
        metrics_table.add_column("Backend", style="cyan")
        metrics_table.add_column("Requests", justify="right")
        metrics_table.add_column("Succeeded", style="green", justify="right")
        metrics_table.add_column("Failed", style="red", justify="right")
        metrics_table.add_column("Avg Latency", justify="right")
        for name, counters in sorted(metrics.by_backend.items()):
            average = (
                counters.total_latency_seconds / counters.requests if counters.requests else 0.0
            )
            metrics_table.add_row(
                name,
                str(counters.requests),
                str(counters.successes),
                str(counters.failures),
                f"{average:.2f}s",
            )
        console.print(metrics_table)

    failed = [d for d in report.details if d.status in ("failed", "skipped")]
    if failed:
        error_table = Table(title="Errors", show_header=True)
        error_table.add_column("Video ID", style="cyan")
        error_table.add_column("Error", style="red")
        for detail in failed[:MAX_ERROR_ROWS]:
            error_table.add_row(detail.video_id or detail.url, detail.error or "")
        if len(failed) > MAX_ERROR_ROWS:
            error_table.caption = f"... and {len(failed) - MAX_ERROR_ROWS} more"
        console.print(error_table)


def enrich_command(
    input_file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="JSON array of watch records with at least a 'url' field",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Where to write enriched records (default: <input>.enriched.json)",
    ),
    backend: Optional[str] = typer.Option(
        None,
        "--backend",
        "-b",
        help="Preferred backend: llm, api or scraping",
        callback=validate_backend,
    ),
    no_fallback: bool = typer.Option(
        False, "--no-fallback", help="Use only the preferred backend"
    ),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", min=1, help="Identifiers per scheduler chunk"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Maximum concurrent backend requests"
    ),
    cost_limit: Optional[float] = typer.Option(
        None, "--cost-limit", min=0.0, help="LLM spend ceiling for this run (USD)"
    ),
    cache_file: Optional[Path] = typer.Option(
        None, "--cache-file", help="Load and save the enrichment cache at this path"
    ),
    report: Optional[Path] = typer.Option(
        None, "--report", "-r", help="Save a JSON run report to this path"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose (DEBUG) logging"
    ),
) -> None:
    """
    Enrich watch records with video metadata.

    Exit codes:
    - 0: Every record was enriched
    - 2: Invalid input file or options
    - 3: No usable backend (missing API keys, preferred backend unavailable)
    - 4: Partial success (some records could not be enriched)
    - 130: Interrupted by user (SIGINT/SIGTERM); partial output is still written

    Examples:
        watchlens enrich history.json
        watchlens enrich history.json --backend api --no-fallback
        watchlens enrich history.json -o enriched.json --report report.json
        watchlens enrich history.json --cache-file ./cache/videos.json
    """
    import asyncio

    from watchlens.container import container

    timestamp = _generate_timestamp()
    log_file = _setup_enrichment_logging(
        timestamp, verbose=verbose, logs_dir=container.settings.logs_dir
    )
    console.print(f"[dim]Logging to: {log_file}[/dim]")

    try:
        records = _load_records(input_file)
    except ValueError as e:
        console.print(Panel(f"[red]{e}[/red]", title="Invalid Input", border_style="red"))
        raise typer.Exit(EXIT_CODE_INVALID_ARGS)

    overrides: dict[str, Any] = {}
    if backend is not None:
        overrides["preferred_backend"] = backend
    if no_fallback:
        overrides["enable_fallback"] = False
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if concurrency is not None:
        overrides["max_concurrent_requests"] = concurrency
    if cost_limit is not None:
        overrides["cost_limit"] = cost_limit

    try:
        pipeline = container.create_pipeline(overrides)
    except ValidationError as e:
        console.print(Panel(f"[red]{e}[/red]", title="Invalid Options", border_style="red"))
        raise typer.Exit(EXIT_CODE_INVALID_ARGS)

    config = pipeline.config
    config_table = Table(title="Enrichment Configuration", show_header=False)
    config_table.add_column("Setting", style="cyan")
    config_table.add_column("Value", style="green")
    config_table.add_row("Records", str(len(records)))
    config_table.add_row("Preferred Backend", config.preferred_backend.value)
    config_table.add_row("Fallback", "Yes" if config.enable_fallback else "No")
    config_table.add_row("Batch Size", str(config.batch_size))
    config_table.add_row("Concurrency", str(config.max_concurrent_requests))
    config_table.add_row("Cost Limit", f"${config.cost_limit}")
    config_table.add_row("Cache File", str(cache_file) if cache_file else "None")
    console.print(config_table)
    console.print()

    if cache_file is not None:
        loaded = container.context.cache.load(cache_file)
        if loaded:
            console.print(f"[dim]Loaded {loaded} cached videos from {cache_file}[/dim]")

    async def run_enrichment() -> EnrichmentRun:
        shutdown = get_shutdown_handler()
        shutdown.install()
        try:
            return await pipeline.enrich(records)
        finally:
            shutdown.uninstall()
            await container.aclose()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(f"Enriching {len(records)} records...", total=None)
            run = asyncio.run(run_enrichment())
    except ConfigurationError as e:
        console.print(
            Panel(
                f"[red]{e.message}[/red]\n\n"
                "Set [cyan]YOUTUBE_API_KEY[/cyan] and/or [cyan]OPENROUTER_API_KEY[/cyan], "
                "or choose another backend with [cyan]--backend[/cyan].",
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(EXIT_CODE_CONFIGURATION_ERROR)

    output_path = output or _default_output_path(input_file)
    _save_records(run.records, output_path)
    console.print(f"[green]Enriched records saved to:[/green] {output_path}")

    if cache_file is not None:
        saved = container.context.cache.save(cache_file)
        console.print(f"[dim]Saved {saved} cached videos to {cache_file}[/dim]")

    if run.report is not None:
        if report is not None:
            _save_report(run.report, report)
            console.print(f"[green]Report saved to:[/green] {report}")
        _render_results(run, run.report)

    if run.interrupted:
        console.print(
            Panel(
                "[yellow]Shutdown requested[/yellow]\n\n"
                "Unstarted work was skipped; partial results were saved.",
                title="Graceful Shutdown",
                border_style="yellow",
            )
        )
        raise typer.Exit(EXIT_CODE_INTERRUPTED)

    if not run.all_enriched:
        raise typer.Exit(EXIT_CODE_PARTIAL_SUCCESS)
