"""Command-line interface for the AI review worker."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from review_worker import __version__
from review_worker.config import Config, load_config, validate_config
from review_worker.models.job import Job, JobKind, JobState

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_valid_config(config_path: str | None) -> Config:
    """Load configuration, exiting with the errors if it is invalid."""
    config = load_config(Path(config_path) if config_path else None)
    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {error}")
        sys.exit(1)
    return config


config_option = click.option(
    "--config", "config_path", type=click.Path(exists=True), help="Config file path"
)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """AI Review Worker - queued multi-agent pull request reviews."""
    setup_logging(verbose)


@cli.command("worker")
@config_option
def worker(config_path: str | None) -> None:
    """Run the queue worker until interrupted."""
    config = _load_valid_config(config_path)
    console.print(
        f"🚀 Starting worker (concurrency {config.worker.concurrency}, "
        f"queue {config.redis.queue_prefix})"
    )
    asyncio.run(run_worker(config))


async def run_worker(config: Config) -> None:
    """Run a worker on process-wide services; SIGINT and SIGTERM stop it."""
    from review_worker.runtime import Runtime
    from review_worker.worker import Worker

    runtime = Runtime.from_config(config)
    job_worker = Worker(
        runtime.queue,
        runtime.processor,
        cleanup_service=runtime.cleanup_service,
        settings=config.worker,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, job_worker.stop)

    try:
        await job_worker.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await runtime.aclose()


@cli.command("serve")
@click.option("--port", type=int, default=None, help="Port to listen on")
@click.option("--host", default=None, help="Host to bind to")
@config_option
def serve(port: int | None, host: str | None, config_path: str | None) -> None:
    """Start the webhook server."""
    from review_worker.github.webhook import create_webhook_app

    config = _load_valid_config(config_path)
    app = create_webhook_app(config)

    host = host or config.server.host
    port = port or config.server.port
    console.print(f"🚀 Starting webhook server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


@cli.command("review-pr")
@click.argument("repo")
@click.argument("pr_number", type=int)
@click.option("--head-sha", required=True, help="Head commit of the pull request")
@click.option("--installation-id", type=int, default=0, help="GitHub App installation id")
@click.option("--now", is_flag=True, help="Review in this process instead of queueing")
@config_option
def review_pr(
    repo: str,
    pr_number: int,
    head_sha: str,
    installation_id: int,
    now: bool,
    config_path: str | None,
) -> None:
    """Queue (or run) a review of a GitHub pull request."""
    from review_worker.worker import job_defaults

    config = _load_valid_config(config_path)
    job = Job(
        kind=JobKind.REVIEW,
        repository_full_name=repo,
        installation_id=installation_id,
        pr_number=pr_number,
        head_sha=head_sha,
        action="manual",
        **job_defaults(config.worker),
    )

    if now:
        console.print(f"🔍 Reviewing PR #{pr_number} in [bold]{repo}[/bold]...")
        try:
            asyncio.run(_process_now(config, job))
        except Exception as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        console.print(f"✅ Review of {repo}#{pr_number} complete")
        return

    added = asyncio.run(_enqueue(config, job))
    if added:
        console.print(f"📥 Queued job [cyan]{job.id}[/cyan]")
    else:
        console.print(f"[yellow]Job {job.id} is already queued[/yellow]")


async def _process_now(config: Config, job: Job) -> None:
    from review_worker.runtime import Runtime

    runtime = Runtime.from_config(config)
    try:
        await runtime.processor.process(job)
    finally:
        await runtime.aclose()


async def _enqueue(config: Config, job: Job) -> bool:
    from review_worker.queue import JobQueue, create_redis_client

    redis = create_redis_client(config.redis.url)
    try:
        return await JobQueue(redis, prefix=config.redis.queue_prefix).enqueue(job)
    finally:
        await redis.aclose()


@cli.group("config")
def config_group() -> None:
    """Configuration commands."""
    pass


@config_group.command("validate")
@config_option
def config_validate(config_path: str | None) -> None:
    """Validate configuration file."""
    try:
        config = load_config(Path(config_path) if config_path else None)
        errors = validate_config(config)

        if errors:
            console.print("[red]Configuration is invalid:[/red]")
            for error in errors:
                console.print(f"  • {error}")
            sys.exit(1)
        else:
            console.print("[green]✓ Configuration is valid[/green]")
    except Exception as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        sys.exit(1)


@config_group.command("show")
@config_option
def config_show(config_path: str | None) -> None:
    """Show current configuration."""
    config = load_config(Path(config_path) if config_path else None)

    console.print("\n[bold]Current Configuration[/bold]\n")

    providers = [
        name
        for name, key in (
            ("zhipu", config.ai.zhipu_api_key),
            ("openrouter", config.ai.openrouter_api_key),
            ("gemini", config.ai.gemini_api_key),
        )
        if key
    ]
    console.print(f"[bold]AI providers:[/bold] {', '.join(providers) or 'none'}")
    console.print(f"[bold]GitHub auth:[/bold] {'app' if config.github.uses_app else 'token'}")
    console.print(f"[bold]Redis:[/bold] {config.redis.url} ({config.redis.queue_prefix})")
    console.print(
        f"[bold]Worker:[/bold] concurrency {config.worker.concurrency}, "
        f"{config.worker.max_attempts} attempts"
    )
    console.print(f"[bold]Agents:[/bold] {config.orchestrator.execution_mode}")
    console.print(f"[bold]Repository cache:[/bold] {config.repo_cache.base_dir}\n")

    table = Table(title="Repository Overrides")
    table.add_column("Repository")
    table.add_column("Enabled")
    table.add_column("Threshold")
    table.add_column("Model")
    table.add_column("Excluded")

    for name, settings in sorted(config.repositories.items()):
        table.add_row(
            name,
            "default" if settings.enabled is None else str(settings.enabled),
            settings.severity_threshold.value if settings.severity_threshold else "default",
            settings.preferred_model or "default",
            ", ".join(settings.excluded_patterns or []),
        )

    console.print(table)


@cli.group("cache")
def cache_group() -> None:
    """Repository cache commands."""
    pass


@cache_group.command("cleanup")
@config_option
def cache_cleanup(config_path: str | None) -> None:
    """Remove orphaned work trees and stale locks once."""
    from review_worker.repo_cache.cleanup import CleanupService
    from review_worker.repo_cache.lock_manager import LockManager

    config = load_config(Path(config_path) if config_path else None)
    cache_config = config.repo_cache.to_cache_config()
    service = CleanupService(LockManager(cache_config), cache_config)
    result = asyncio.run(service.run_cleanup())

    console.print(
        f"🧹 Removed {result.orphaned_work_trees_cleaned} work trees and "
        f"{result.stale_locks_cleaned} stale locks, freed {result.bytes_freed} bytes"
    )
    for error in result.errors:
        console.print(f"[yellow]⚠️  {error}[/yellow]")


@cli.group("queue")
def queue_group() -> None:
    """Job queue commands."""
    pass


@queue_group.command("retry")
@click.argument("job_id")
@config_option
def queue_retry(job_id: str, config_path: str | None) -> None:
    """Move a failed job back to waiting."""
    config = load_config(Path(config_path) if config_path else None)
    if asyncio.run(_retry(config, job_id)):
        console.print(f"[green]✓ Job {job_id} requeued[/green]")
    else:
        console.print(f"[red]Job {job_id} is not in the failed state[/red]")
        sys.exit(1)


async def _retry(config: Config, job_id: str) -> bool:
    from review_worker.queue import JobQueue, create_redis_client

    redis = create_redis_client(config.redis.url)
    try:
        return await JobQueue(redis, prefix=config.redis.queue_prefix).retry(job_id)
    finally:
        await redis.aclose()


@queue_group.command("stats")
@config_option
def queue_stats(config_path: str | None) -> None:
    """Show the number of jobs in each state."""
    config = load_config(Path(config_path) if config_path else None)
    counts = asyncio.run(_counts(config))

    table = Table(title="Queue")
    table.add_column("State")
    table.add_column("Jobs", justify="right")
    for state in JobState:
        table.add_row(state.value, str(counts.get(state.value, 0)))
    console.print(table)


async def _counts(config: Config) -> dict[str, int]:
    from review_worker.queue import JobQueue, create_redis_client

    redis = create_redis_client(config.redis.url)
    try:
        return await JobQueue(redis, prefix=config.redis.queue_prefix).counts()
    finally:
        await redis.aclose()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
