"""CLI command definitions for taskflow."""
import json
import logging

import click

from taskflow import __version__
from taskflow.config import INTEGER_KEYS, normalize_key
from taskflow.errors import TaskflowError, TaskInputError, TaskNotFound
from taskflow.log import configure_logging
from taskflow.models import FAILED, STATES, WAITING
from taskflow.pool import SIGNALLED, WorkerPool
from taskflow.storage import Store
from taskflow.taskqueue import TaskQueue, parse_payload
from taskflow.worker import Worker


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Show debug output, including command stdout/stderr')
@click.pass_context
def main(ctx, verbose):
    """taskflow - local task queue manager."""
    level = logging.DEBUG if verbose else logging.INFO
    configure_logging(level)
    ctx.obj = {'log_level': level}


@main.command()
def init():
    """Initialize task storage."""
    store = Store()
    if store.init():
        click.echo(f"Database created at {store.path}")
    else:
        click.echo(f"Database already exists at {store.path}")


def _read_payload(job_json, file):
    """Resolve the add payload from --file, '-' (stdin) or the argument."""
    if file:
        try:
            with open(file, 'r', encoding='utf-8-sig') as f:
                return f.read()
        except FileNotFoundError:
            raise TaskInputError(f"File not found: {file}")
        except OSError as e:
            raise TaskInputError(f"Could not read {file}: {e}")
    if job_json == '-':
        return click.get_text_stream('stdin').read()
    if job_json is None:
        raise TaskInputError(
            'No JSON provided. Use --file <path> or pass JSON as argument or "-" to read from stdin.'
        )
    return job_json


@main.command()
@click.argument('job_json', required=False)
@click.option('--file', 'file', type=click.Path(dir_okay=False), help='Read task JSON from file')
def add(job_json, file):
    """Add a new task to the queue.

    JOB_JSON: JSON object, e.g. '{"command":"echo hi","max_retries":2}',
    or '-' to read it from stdin.
    """
    try:
        data = parse_payload(_read_payload(job_json, file))
        task = TaskQueue(Store()).add(data)
    except TaskInputError as e:
        click.echo(f"Add failed: {e}", err=True)
        raise click.Abort()

    click.echo(f"Task added with id {task.id}")
    click.echo(f"  Command: {task.command}")
    click.echo(f"  Max Retries: {task.max_retries}")


@main.group()
def worker():
    """Manage worker processes."""
    pass


@worker.command()
@click.option('--count', default=1, type=int, help='Number of workers to start')
@click.pass_context
def start(ctx, count):
    """Start worker processes in the foreground (Ctrl+C stops them)."""
    if count < 1:
        click.echo("Error: Count must be at least 1", err=True)
        raise click.Abort()

    store = Store()
    store.init()
    click.echo(f"Starting {count} worker(s)... Press Ctrl+C to stop all workers.")
    WorkerPool(store, log_level=ctx.obj['log_level']).start(count)


@worker.command()
def stop():
    """Stop running workers gracefully (using recorded PIDs)."""
    report = WorkerPool(Store()).stop()
    if not report:
        click.echo("No worker metadata found")
        return
    for pid, outcome in report:
        if outcome == SIGNALLED:
            click.echo(f"Sent SIGTERM to pid {pid}")
        else:
            click.echo(f"Could not signal pid {pid}: {outcome}", err=True)


@main.command(name='worker:foreground')
def worker_foreground():
    """Run a single worker in this process."""
    store = Store()
    store.init()
    Worker(worker_id='foreground', store=store).run()
    click.echo("Worker stopped.")


@main.group()
def config():
    """Manage configuration."""
    pass


@config.command(name='set')
@click.argument('key', required=True)
@click.argument('value', required=True)
def config_set(key, value):
    """Set a configuration value.

    Examples:
      taskflow config set max-retries 5
      taskflow config set backoff-base 2
    """
    key = normalize_key(key)
    stored = int(value) if value.isdecimal() else value
    if key in INTEGER_KEYS and not isinstance(stored, int):
        click.echo(f"Error: '{key}' must be a non-negative integer, got '{value}'", err=True)
        raise click.Abort()

    Store().set_config(key, stored)
    click.echo(f"Set {key}={stored}")


@config.command(name='get')
@click.argument('key', required=True)
def config_get(key):
    """Get a configuration value."""
    key = normalize_key(key)
    value = Store().get_config(key)
    if value is None:
        click.echo("Not set")
    else:
        click.echo(str(value))


@main.command()
def status():
    """Show task counts, the data file and recorded workers."""
    store = Store()
    counts = TaskQueue(store).counts()
    total = sum(counts.values())

    click.echo("Task Queue Status")
    click.echo("=" * 50)
    for state in STATES:
        click.echo(f"  {state.capitalize() + ':':<12} {counts[state]:>6}")
    for state in sorted(set(counts) - set(STATES)):
        click.echo(f"  {state + ':':<12} {counts[state]:>6}")
    click.echo("-" * 50)
    click.echo(f"  {'Total:':<12} {total:>6}")
    click.echo(f"\nData file: {store.path}")

    workers = WorkerPool(store).load_registry()
    click.echo(f"\nWorkers: {len(workers)}")
    for w in workers:
        click.echo(f"  pid {w['pid']} started {w.get('started_at', '?')}")
    click.echo("=" * 50)


def _echo_tasks(tasks):
    for task in tasks:
        click.echo(json.dumps(task.to_dict()))


@main.command(name='list')
@click.option('--state', type=click.Choice(STATES), help='Filter tasks by state')
def list_tasks(state):
    """List tasks, optionally filtered by state."""
    _echo_tasks(TaskQueue(Store()).list_tasks(state))


@main.group()
def dead():
    """Manage dead (failed) tasks."""
    pass


@dead.command(name='list')
def dead_list():
    """List tasks whose retries are exhausted."""
    _echo_tasks(TaskQueue(Store()).list_tasks(FAILED))


@dead.command(name='retry')
@click.argument('task_id', required=True)
def dead_retry(task_id):
    """Move a failed task back to waiting with attempts reset to 0."""
    try:
        TaskQueue(Store()).retry_dead(task_id)
    except TaskNotFound as e:
        click.echo(str(e), err=True)
        raise click.Abort()
    click.echo(f"Moved task back to {WAITING}: {task_id}")


@main.command()
def selfcheck():
    """Run a lightweight selfcheck against a throwaway data file."""
    click.echo("Running selfcheck...")
    real = Store()
    store = Store(real.path.with_name(real.path.name + '.selftest.json'))
    scratch = [store.path, store.lock_path, store.backup_path]

    try:
        for path in scratch:
            if path.exists():
                path.unlink()
        store.init()
        queue = TaskQueue(store)
        task = queue.add({'command': 'echo test', 'max_retries': 1})
        click.echo(f"Added test task {task.id}")

        claimed = queue.claim()
        if claimed is None or claimed.id != task.id:
            click.echo("Selfcheck failed: test task was not claimable", err=True)
            raise click.Abort()

        queue.fail(task.id, 1, 'simulate')
        state = store.load().find(task.id).state
        if state != FAILED:
            click.echo(f"Selfcheck failed: {state}", err=True)
            raise click.Abort()
        click.echo("Selfcheck passed")
    except (OSError, TaskflowError) as e:
        click.echo(f"Selfcheck failed: {e}", err=True)
        raise click.Abort()
    finally:
        for path in scratch:
            if path.exists():
                path.unlink()


if __name__ == '__main__':
    main()
