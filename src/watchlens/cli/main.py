"""
Main CLI entry point for watchlens.
"""

from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from watchlens import __version__
from watchlens.cli.commands.enrich import enrich_command
from watchlens.services.enrichment.estimate import estimate_run
from watchlens.services.identifiers import extract_video_id

console = Console()

app = typer.Typer(
    name="watchlens",
    help="Enrich YouTube watch-history records with video metadata",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command(name="enrich")(enrich_command)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel(
            f"[bold blue]watchlens[/bold blue] v{__version__}",
            title="Version",
            border_style="blue",
        )
    )


@app.command(name="extract-id")
def extract_id(
    urls: List[str] = typer.Argument(..., help="YouTube URLs to parse"),
) -> None:
    """
    Print the video identifier of each URL.

    Examples:
        watchlens extract-id "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        watchlens extract-id https://youtu.be/dQw4w9WgXcQ https://example.com
    """
    for url in urls:
        video_id = extract_video_id(url)
        if video_id is None:
            console.print(f"{url}\t[red]not found[/red]")
        else:
            console.print(f"{url}\t[green]{video_id}[/green]")


@app.command()
def estimate(
    count: int = typer.Argument(..., min=0, help="Number of videos to enrich"),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="LLM model to price (default: configured model)"
    ),
) -> None:
    """
    Estimate API quota and LLM cost for a run.

    Examples:
        watchlens estimate 500
        watchlens estimate 500 --model gpt-4o-mini
    """
    from watchlens.container import container

    settings = container.settings
    result = estimate_run(
        count,
        container.config,
        model=model or settings.llm_model,
        quota_cost_per_call=settings.youtube_quota_cost_per_call,
    )

    table = Table(title="Enrichment Estimate", show_header=False)
    table.add_column("Item", style="cyan")
    table.add_column("Estimate", style="green", justify="right")
    table.add_row("Videos", str(result.video_count))
    table.add_row("API Calls", str(result.api_calls))
    table.add_row("API Quota", f"{result.api_quota_units} units")
    table.add_row("LLM Model", result.llm_model)
    table.add_row("LLM Input Tokens", f"{result.llm_input_tokens:,}")
    table.add_row("LLM Output Tokens", f"{result.llm_output_tokens:,}")
    table.add_row("LLM Cost", f"${result.llm_cost:.4f}")
    table.add_row("Recommended Batch Size", str(result.recommended_batch_size))
    console.print(table)

    if not result.within_cost_limit:
        console.print(
            f"[yellow]Estimated LLM cost exceeds the ${container.config.cost_limit} "
            "limit; the run will stop early unless the limit is raised.[/yellow]"
        )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", help="Show version and exit"
    ),
) -> None:
    """
    watchlens - YouTube watch-history enrichment.

    Fill in titles, channels, durations, counts and tags for watch records
    using the YouTube Data API, the public watch page, or an LLM.
    """
    if version:
        console.print(f"watchlens v{__version__}")
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print("[yellow]Use 'watchlens --help' for available commands[/yellow]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
