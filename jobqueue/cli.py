"""
Command-line entry points for operators.

    jobqueue db init
    jobqueue jobs work --min-priority 0 -r myapp.jobs
    jobqueue jobs enqueue -p 10 'Reports.rebuild()'
    jobqueue jobs failures 42
    jobqueue jobs clear
"""

import asyncio

import click

from jobqueue.config import Settings, WorkerConfig, load_settings
from jobqueue.db import close_db, create_schema, get_engine, get_session_context, init_db
from jobqueue.db.connection import create_engine_from_settings
from jobqueue.db.repository import JobRepository
from jobqueue.observability.logging import setup_logging
from jobqueue.errors import ConfigurationError, SerializationError
from jobqueue.payload import AdhocInstruction, PayloadRegistry, load_registry
from jobqueue.producer import enqueue
from jobqueue.worker.main import run_async


async def _open_db(settings: Settings) -> None:
    await init_db(create_engine_from_settings(settings))


def _run(settings: Settings, coro_fn, *args):
    """Run one database command against the configured store."""
    async def runner():
        await _open_db(settings)
        try:
            return await coro_fn(*args)
        finally:
            await close_db()
    return asyncio.run(runner())


@click.group(help="jobqueue: persistent job queue tooling")
def cli():
    pass


# ---------- Database ----------
@cli.group("db", help="Manage the queue schema")
def db_group():
    pass


@db_group.command("init", help="Create the queue tables if missing")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Connection configuration file")
def db_init(env_file):
    settings = load_settings(env_file)
    setup_logging(settings)

    async def create():
        await create_schema(get_engine())

    _run(settings, create)
    click.secho("Schema ready.", fg="green")


# ---------- Jobs ----------
@cli.group("jobs", help="Work with queued jobs")
def jobs_group():
    pass


@jobs_group.command("clear", help="Delete every queued job")
@click.option("--failures", is_flag=True, help="Also delete the failure history")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Connection configuration file")
def jobs_clear(failures, env_file):
    settings = load_settings(env_file)
    setup_logging(settings)

    async def clear():
        async with get_session_context() as session:
            repo = JobRepository(session)
            removed = await repo.clear_jobs()
            history = await repo.clear_failures() if failures else 0
        return removed, history

    removed, history = _run(settings, clear)
    click.echo(f"Deleted {removed} jobs.")
    if failures:
        click.echo(f"Deleted {history} failure entries.")


@jobs_group.command("work", help="Run a worker until interrupted")
@click.option("--min-priority", type=int, default=None, help="Only run jobs at or above this priority")
@click.option("--max-priority", type=int, default=None, help="Only run jobs at or below this priority")
@click.option("--worker-id", default=None, help="Worker identity (default: host and pid)")
@click.option(
    "-r", "--require", "modules", multiple=True, metavar="MODULE[:REGISTRY]",
    help="Import a module that registers job handlers (repeatable)",
)
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Connection configuration file")
def jobs_work(min_priority, max_priority, worker_id, modules, env_file):
    settings = load_settings(env_file)
    try:
        registry = load_registry([*settings.handler_modules, *modules])
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="--require")

    config = WorkerConfig.from_settings(
        settings,
        min_priority=min_priority,
        max_priority=max_priority,
        worker_id=worker_id,
    )
    click.secho(f"Starting worker {config.worker_id}. Press Ctrl+C to stop...", fg="cyan")
    asyncio.run(run_async(config, settings, registry))
    click.secho("Worker stopped.", fg="yellow")


@jobs_group.command("enqueue", help="Queue a snippet of Python source as an ad-hoc job")
@click.option("-p", "--priority", type=int, default=0, show_default=True, help="Job priority (higher runs first)")
@click.option("-e", "--env-file", default=None, type=click.Path(dir_okay=False), help="Connection configuration file")
@click.option("-q", "--quiet", is_flag=True, help="Print nothing on success")
@click.argument("code")
def jobs_enqueue(priority, env_file, quiet, code):
    settings = load_settings(env_file)
    setup_logging(settings, quiet=quiet)

    try:
        instruction = AdhocInstruction(code)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="CODE")

    # Snippets resolve their names when a worker runs them
    registry = PayloadRegistry(max_payload_bytes=settings.max_payload_bytes)

    async def submit():
        async with get_session_context() as session:
            return await enqueue(session, instruction, priority=priority, registry=registry)

    try:
        job_id = _run(settings, submit)
    except SerializationError as e:
        raise click.ClickException(str(e))
    if not quiet:
        click.secho(f"Enqueued job {job_id}: {instruction.display_name} (priority={priority})", fg="green")


@jobs_group.command("failures", help="Show the failure history of a job")
@click.argument("job_id", type=int)
@click.option("--trace", "show_trace", is_flag=True, help="Include tracebacks")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Connection configuration file")
def jobs_failures(job_id, show_trace, env_file):
    settings = load_settings(env_file)
    setup_logging(settings, quiet=True)

    async def load():
        async with get_session_context() as session:
            return await JobRepository(session).list_failures(job_id)

    rows = _run(settings, load)
    if not rows:
        click.echo(f"No failures recorded for job {job_id}.")
        return

    for n, failure in enumerate(rows, start=1):
        click.echo(f"{n:>3} | {failure.created_at.isoformat()} | {failure.message}")
        if show_trace and failure.trace:
            click.echo(failure.trace.rstrip())


def main() -> None:
    cli(prog_name="jobqueue")


if __name__ == "__main__":
    main()
