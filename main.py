#!/usr/bin/env python3
"""Comment Lens - CLI Entry Point.

Turn the comments on a post into sentiment, themes and a short report.
"""

import asyncio
import json
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from commentlens.config import Config, get_config, reload_config
from commentlens.database import get_database
from commentlens.errors import CommentLensError
from commentlens.log_setup import setup_logging
from commentlens.models import AnalysisResult, Comment, Post
from commentlens.service import AnalysisOptions, AnalysisService, build_service


console = Console()


def _service(config: Config, use_llm: bool = True) -> AnalysisService:
    """Build the service, optionally with the language model switched off."""
    if not use_llm:
        config = replace(config, llm=replace(config.llm, enabled=False))
    return build_service(config)


def _format_time(timestamp: float | None) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def render_result(result: AnalysisResult) -> None:
    """Print an analysis result."""
    quality_style = "green" if result.quality_score >= 0.6 else "yellow"
    subtitle = f"quality [{quality_style}]{result.quality_score:.2f}[/{quality_style}]"
    if result.used_fallback:
        subtitle += " (fallback used)"

    console.print(Panel(
        result.summary,
        title=f"[bold]Post {result.post_id}[/bold]",
        subtitle=subtitle,
        border_style="cyan",
    ))

    breakdown = result.sentiment_breakdown
    console.print(
        f"Comments: {result.total_comments} total, {result.filtered_comments} filtered | "
        f"[green]{breakdown.positive:.0%} positive[/green] "
        f"[red]{breakdown.negative:.0%} negative[/red] "
        f"[dim]{breakdown.neutral:.0%} neutral[/dim]\n"
    )

    if result.themes:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Theme", style="cyan")
        table.add_column("Comments", justify="right")
        table.add_column("Sentiment")
        table.add_column("Coherence", justify="right")
        table.add_column("Keywords", style="dim")
        for theme in result.themes:
            table.add_row(
                theme.name,
                str(theme.frequency),
                theme.sentiment.lower(),
                f"{theme.coherence:.2f}",
                ", ".join(theme.keywords),
            )
        console.print(table)

    if result.emotions:
        console.print("\n[bold]Emotions[/bold]")
        for emotion in result.emotions:
            console.print(f"  {emotion.name}: {emotion.prevalence:.1f}% - {emotion.description}")

    if result.key_insights:
        console.print("\n[bold]Key insights[/bold]")
        for insight in result.key_insights:
            console.print(f"  • {insight}")

    if result.recommendations:
        console.print("\n[bold]Recommendations[/bold]")
        for recommendation in result.recommendations:
            console.print(f"  • {recommendation}")


@click.group()
@click.version_option(version="0.1.0", prog_name="comment-lens")
@click.option("--config", "config_path", default=None, help="Path to a YAML config file")
@click.option("--db", default=None, help="Override the database path")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def cli(config_path: str | None, db: str | None, verbose: bool):
    """Comment Lens - sentiment, themes and summaries for post comments."""
    config = reload_config(config_path)
    if db:
        config.database.path = db
    setup_logging(config.logging, verbose=verbose)


@cli.command()
def init():
    """Initialize Comment Lens (create the database)."""
    console.print("[bold]Initializing Comment Lens...[/bold]\n")

    config = get_config()

    db = get_database()
    db.initialize()
    console.print(f"[green]✓[/green] Initialized database: {config.database.path}")

    if config.llm_credentials.has_key_for_provider(config.llm.provider):
        console.print(f"[green]✓[/green] LLM credentials configured ({config.llm.provider})")
    else:
        console.print(
            f"[yellow]![/yellow] LLM credentials not set for {config.llm.provider} "
            f"(analysis will use heuristics)"
        )

    console.print("\n[bold green]Initialization complete![/bold green]")


@cli.command()
def check():
    """Check configuration and credentials."""
    console.print("\n[bold]Configuration Check[/bold]\n")

    config = get_config()

    provider = config.llm.provider
    if not config.llm.enabled:
        console.print("[yellow]![/yellow] LLM: Disabled (heuristics only)")
    elif config.llm_credentials.has_key_for_provider(provider):
        console.print(f"[green]✓[/green] LLM credentials ({provider}): Configured")
    else:
        console.print(f"[red]✗[/red] LLM credentials ({provider}): Not configured")

    try:
        db = get_database()
        db.initialize()
        console.print(f"[green]✓[/green] Database: {config.database.path}")
    except Exception as e:
        console.print(f"[red]✗[/red] Database: {e}")

    console.print("\n[bold]Current Settings:[/bold]")
    console.print(f"  LLM: {config.llm.provider}/{config.llm.model} (timeout {config.llm.timeout_seconds:.0f}s)")
    console.print(f"  Sentiment batch size: {config.sentiment.batch_size}")
    console.print(f"  Concurrent jobs: {config.jobs.max_concurrent_jobs}")
    console.print(f"  Cache TTL: {config.cache.ttl_seconds}s")


@cli.command("import-comments")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def import_comments(path: str):
    """Import posts and comments from a JSON file.

    The file holds a list of posts (or {"posts": [...]}); each post has
    post_id, user_id, optional title/platform and a list of comments with
    comment_id, text and optional like_count/author/published_at.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    posts_data = data.get("posts", []) if isinstance(data, dict) else data

    db = get_database()
    db.initialize()

    now = time.time()
    post_count = 0
    comment_count = 0
    for item in posts_data:
        post = Post(
            post_id=str(item["post_id"]),
            user_id=str(item["user_id"]),
            platform=item.get("platform", "generic"),
            title=item.get("title", ""),
            created_at=item.get("created_at", now),
        )
        comments = [
            Comment(
                comment_id=str(c["comment_id"]),
                post_id=post.post_id,
                text=c["text"],
                like_count=int(c.get("like_count", 0)),
                author=c.get("author", ""),
                published_at=c.get("published_at", now),
            )
            for c in item.get("comments", [])
        ]
        db.insert_post(post)
        db.insert_comments(comments)
        post_count += 1
        comment_count += len(comments)

    console.print(f"[green]✓[/green] Imported {post_count} posts and {comment_count} comments")


@cli.command()
@click.argument("post_id")
@click.option("--user", "-u", required=True, help="ID of the user who owns the post")
@click.option("--force", "-f", is_flag=True, help="Ignore cached results")
@click.option("--no-llm", is_flag=True, help="Use heuristics only")
@click.option("--timeout", "-t", default=600, type=int, help="Seconds to wait for the job")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def analyze(post_id: str, user: str, force: bool, no_llm: bool, timeout: int, as_json: bool):
    """Analyze the comments of a post."""
    config = get_config()
    service = _service(config, use_llm=not no_llm)

    try:
        result, cache_hit = asyncio.run(_run_analysis(service, post_id, user, force, timeout))
    except CommentLensError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)
    except asyncio.TimeoutError:
        console.print(f"[red]Error:[/red] Analysis did not finish within {timeout}s")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if cache_hit:
        console.print("[dim]Cached result[/dim]")
    render_result(result)
    console.print(f"\n[dim]Job: {result.job_id}[/dim]")


async def _run_analysis(
    service: AnalysisService,
    post_id: str,
    user_id: str,
    force: bool,
    timeout: int,
) -> tuple[AnalysisResult, bool]:
    async with service:
        response = await service.request_analysis(
            post_id, user_id, AnalysisOptions(force_refresh=force)
        )
        if response.cached_result is not None:
            return response.cached_result, True

        job_id = response.job_id
        deadline = time.monotonic() + timeout
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Queued (about {response.estimated_time}s)", total=None)
            while True:
                job = service.get_status(job_id)
                progress.update(task, description=f"[{job.progress:>3}%] {job.step_description}")
                if job.status.is_terminal:
                    break
                if time.monotonic() > deadline:
                    service.cancel(job_id)
                    raise asyncio.TimeoutError()
                await asyncio.sleep(0.2)

        return await service.wait_for_result(job_id), False


@cli.command()
@click.argument("job_id")
def status(job_id: str):
    """Show the status of a job."""
    db = get_database()
    db.initialize()

    job = db.get_job(job_id)
    if job is None:
        console.print(f"[red]Error:[/red] Job not found: {job_id}")
        raise SystemExit(1)

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Job", job.job_id)
    table.add_row("Post", job.post_id)
    table.add_row("Status", job.status.value)
    table.add_row("Progress", f"{job.progress}% (step {job.current_step}/{job.total_steps})")
    table.add_row("Step", job.step_description)
    table.add_row("Attempts", f"{job.attempts}/{job.max_attempts}")
    table.add_row("Created", _format_time(job.created_at))
    table.add_row("Completed", _format_time(job.completed_at))
    if job.error_message:
        table.add_row("Error", f"[red]{job.error_message}[/red]")
    console.print(table)


@cli.command()
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def show(job_id: str, as_json: bool):
    """Show the result of a finished job."""
    db = get_database()
    db.initialize()

    result = db.get_result_by_job(job_id)
    if result is None:
        console.print(f"[red]Error:[/red] No result for job {job_id}")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        render_result(result)


@cli.command()
@click.option("--user", "-u", required=True, help="User ID")
@click.option("--limit", "-n", default=10, type=int, help="Number of results to show")
def history(user: str, limit: int):
    """Show a user's recent analyses."""
    db = get_database()
    db.initialize()

    results = db.list_results(user, limit)
    if not results:
        console.print("[yellow]No analyses found.[/yellow]")
        return

    console.print(f"\n[bold]Recent Analyses for {user}[/bold]\n")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Date", style="cyan")
    table.add_column("Post")
    table.add_column("Comments", justify="right")
    table.add_column("Positive", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("Job ID", style="dim")

    for result in results:
        table.add_row(
            _format_time(result.analyzed_at),
            result.post_id,
            str(result.total_comments),
            f"{result.sentiment_breakdown.positive:.0%}",
            f"{result.quality_score:.2f}",
            result.job_id,
        )

    console.print(table)


@cli.command()
@click.argument("job_ids", nargs=-1, required=True)
def compare(job_ids: tuple[str, ...]):
    """Compare the results of two or more jobs."""
    service = _service(get_config(), use_llm=False)

    try:
        report = asyncio.run(service.compare_results(list(job_ids)))
    except CommentLensError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Date", style="cyan")
    table.add_column("Post")
    table.add_column("Comments", justify="right")
    table.add_column("Positive", justify="right")
    table.add_column("Negative", justify="right")
    table.add_column("Quality", justify="right")

    for entry in report.entries:
        table.add_row(
            _format_time(entry["analyzed_at"]),
            entry["post_id"],
            str(entry["total_comments"]),
            f"{entry['positive']:.0%}",
            f"{entry['negative']:.0%}",
            f"{entry['quality_score']:.2f}",
        )

    console.print(table)
    console.print(
        f"\nAverage: {report.averages['positive']:.0%} positive, "
        f"quality {report.averages['quality_score']:.2f}"
    )
    console.print(f"Sentiment trend: [bold]{report.sentiment_trend}[/bold]")
    console.print(f"Engagement trend: [bold]{report.engagement_trend}[/bold]")


@cli.command()
def stats():
    """Show job, cache and database statistics."""
    service = _service(get_config(), use_llm=False)
    data = asyncio.run(service.system_stats())

    for section, values in data.items():
        table = Table(show_header=True, header_style="bold magenta", title=section.title())
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        for name, value in values.items():
            table.add_row(name, str(value))
        console.print(table)


@cli.command()
def maintenance():
    """Purge expired cache entries, stale job records and old results."""
    service = _service(get_config(), use_llm=False)
    report = asyncio.run(service.maintenance())

    console.print("\n[bold]Maintenance complete[/bold]\n")
    for name, count in report.items():
        console.print(f"  {name.replace('_', ' ')}: {count}")


if __name__ == "__main__":
    cli()
