"""todori CLI — a thin JSON front end over the task store.

Installed as the ``todori`` console_script. Results go to stdout as JSON;
logs go to stderr.
"""

from __future__ import annotations

import functools
import json
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import click

from todori import __version__
from todori.config import Config, resolve_project_root
from todori.errors import (
    CycleError,
    FileIOError,
    LockError,
    NotFoundError,
    TodoriError,
    ValidationError,
)
from todori.manager import SubtaskUpdate, TaskManager, TaskUpdate
from todori.query import QueryEngine, QueryOptions, SortField, SortOrder
from todori.repository import TaskRepository
from todori.tasks.io import parse_timestamp, project_fields, task_to_dict
from todori.tasks.model import Assignee, Priority, Task, TaskStatus, utc_now

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

STATUS_CHOICE = click.Choice([s.value for s in TaskStatus])
PRIORITY_CHOICE = click.Choice([p.value for p in Priority])

# Checked in order; subclasses before their bases.
EXIT_CODES: tuple[tuple[type[TodoriError], int], ...] = (
    (NotFoundError, 3),
    (CycleError, 2),
    (ValidationError, 2),
    (LockError, 4),
    (FileIOError, 5),
)


@dataclass
class AppContext:
    root: Path
    config: Config

    @functools.cached_property
    def repository(self) -> TaskRepository:
        return TaskRepository(self.root, config=self.config)

    @functools.cached_property
    def manager(self) -> TaskManager:
        return TaskManager(self.repository)

    @functools.cached_property
    def query(self) -> QueryEngine:
        return QueryEngine(self.manager)


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _exit_code(err: TodoriError) -> int:
    for cls, code in EXIT_CODES:
        if isinstance(err, cls):
            return code
    return 1


def handle_errors(fn: Callable[..., None]) -> Callable[..., None]:
    """Turn domain errors into a JSON error payload and a typed exit code."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        from todori import log as tlog

        try:
            fn(*args, **kwargs)
        except TodoriError as e:
            tlog.error(str(e))
            _emit({"ok": False, "error": e.to_dict()})
            sys.exit(_exit_code(e))

    return wrapper


def _timestamp_option(ctx: click.Context, param: click.Parameter, value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}")


def _parse_custom_fields(values: tuple[str, ...]) -> dict[str, Any] | None:
    if not values:
        return None
    fields: dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--field")
        # JSON scalars (numbers, booleans, null, quoted strings) keep their type.
        try:
            fields[key.strip()] = json.loads(raw)
        except ValueError:
            fields[key.strip()] = raw
    return fields


def _task_payload(task: Task, include_metadata: bool = True) -> dict[str, Any]:
    return task_to_dict(task, include_metadata=include_metadata)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--root", "root", default="", help="Project root (default: detect .git/.todori upwards)")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="todori")
@click.pass_context
def main(ctx: click.Context, root: str, verbose: bool) -> None:
    """todori — dependency-aware task list for coding agents.

    Tasks live in <root>/.todori/tasks.yaml. Every command prints JSON.

    \b
    EXAMPLES:
      todori init
      todori add "Write parser" --priority high
      todori add "Wire CLI" --depends-on <parser-id>
      todori next --session agent-1
      todori list --status pending --sort priority --order desc
    """
    from todori import log as tlog

    tlog.set_verbose(verbose)
    cfg = Config(verbose=verbose)
    ctx.obj = AppContext(root=resolve_project_root(root or None), config=cfg)


@main.command()
@click.pass_obj
@handle_errors
def init(app: AppContext) -> None:
    """Create .todori/tasks.yaml if it does not exist."""
    from todori import log as tlog

    created = app.repository.initialize()
    if created:
        tlog.success(f"Initialized {app.repository.task_file_path}")
    else:
        tlog.info(f"Already initialized: {app.repository.task_file_path}")
    _emit({"ok": True, "created": created, "path": str(app.repository.task_file_path)})


@main.command()
@click.argument("title")
@click.option("--description", "-d", default=None, help="Longer description")
@click.option("--priority", "-p", type=PRIORITY_CHOICE, default=Priority.MEDIUM.value, show_default=True)
@click.option("--status", "-s", type=STATUS_CHOICE, default=TaskStatus.PENDING.value, show_default=True)
@click.option("--depends-on", "depends_on", multiple=True, help="Id of a task this one requires (repeatable)")
@click.option("--field", "custom", multiple=True, help="Custom field as key=value (repeatable)")
@click.pass_obj
@handle_errors
def add(
    app: AppContext,
    title: str,
    description: str | None,
    priority: str,
    status: str,
    depends_on: tuple[str, ...],
    custom: tuple[str, ...],
) -> None:
    """Create a task."""
    task = app.manager.create_task(
        title,
        description=description,
        status=TaskStatus(status),
        priority=Priority(priority),
        dependencies=list(depends_on),
        custom_fields=_parse_custom_fields(custom),
    )
    _emit(_task_payload(task))


@main.command()
@click.argument("task_id")
@click.option("--no-metadata", is_flag=True, help="Omit timestamps")
@click.pass_obj
@handle_errors
def show(app: AppContext, task_id: str, no_metadata: bool) -> None:
    """Print one task."""
    _emit(_task_payload(app.manager.get_task(task_id), include_metadata=not no_metadata))


@main.command()
@click.argument("task_id")
@click.option("--title", default=None)
@click.option("--description", "-d", default=None)
@click.option("--status", "-s", type=STATUS_CHOICE, default=None)
@click.option("--priority", "-p", type=PRIORITY_CHOICE, default=None)
@click.option("--depends-on", "depends_on", multiple=True, help="Replace dependencies (repeatable)")
@click.option("--clear-deps", is_flag=True, help="Remove all dependencies")
@click.option("--field", "custom", multiple=True, help="Replace custom fields with key=value pairs")
@click.option("--assign", "assign", default=None, help="Assign to a session id")
@click.option("--unassign", is_flag=True, help="Clear the assignee")
@click.pass_obj
@handle_errors
def update(
    app: AppContext,
    task_id: str,
    title: str | None,
    description: str | None,
    status: str | None,
    priority: str | None,
    depends_on: tuple[str, ...],
    clear_deps: bool,
    custom: tuple[str, ...],
    assign: str | None,
    unassign: bool,
) -> None:
    """Change fields of a task."""
    if clear_deps and depends_on:
        raise click.UsageError("Use either --depends-on or --clear-deps, not both.")
    if assign and unassign:
        raise click.UsageError("Use either --assign or --unassign, not both.")

    dependencies: list[str] | None = None
    if clear_deps:
        dependencies = []
    elif depends_on:
        dependencies = list(depends_on)

    changes = TaskUpdate(
        title=title,
        description=description,
        status=TaskStatus(status) if status else None,
        priority=Priority(priority) if priority else None,
        dependencies=dependencies,
        custom_fields=_parse_custom_fields(custom),
        assignee=Assignee(session_id=assign, assigned_at=utc_now()) if assign else None,
        clear_assignee=unassign,
    )
    task = app.manager.update_task(task_id, changes)
    _emit(_task_payload(task))


@main.command()
@click.argument("task_id")
@click.pass_obj
@handle_errors
def delete(app: AppContext, task_id: str) -> None:
    """Delete a task and drop it from other tasks' dependencies."""
    app.manager.delete_task(task_id)
    _emit({"ok": True, "deleted": task_id})


# ── Subcommand group: subtask ────────────────────────────────────


@main.group()
def subtask() -> None:
    """Manage subtasks (ids look like <taskId>.<n>)."""


@subtask.command("add")
@click.argument("parent_id")
@click.argument("title")
@click.option("--description", "-d", default=None)
@click.pass_obj
@handle_errors
def subtask_add(app: AppContext, parent_id: str, title: str, description: str | None) -> None:
    """Append a subtask to a task."""
    _emit(_task_payload(app.manager.add_subtask(parent_id, title, description)))


@subtask.command("update")
@click.argument("subtask_id")
@click.option("--title", default=None)
@click.option("--description", "-d", default=None)
@click.option("--status", "-s", type=STATUS_CHOICE, default=None)
@click.pass_obj
@handle_errors
def subtask_update(
    app: AppContext, subtask_id: str, title: str | None, description: str | None, status: str | None
) -> None:
    """Change fields of a subtask."""
    changes = SubtaskUpdate(
        title=title,
        description=description,
        status=TaskStatus(status) if status else None,
    )
    _emit(_task_payload(app.manager.update_subtask(subtask_id, changes)))


@subtask.command("delete")
@click.argument("subtask_id")
@click.pass_obj
@handle_errors
def subtask_delete(app: AppContext, subtask_id: str) -> None:
    """Remove a subtask. Remaining subtasks keep their numbers."""
    _emit(_task_payload(app.manager.delete_subtask(subtask_id)))


# ── Queries ──────────────────────────────────────────────────────


@main.command("list")
@click.option("--status", "-s", "statuses", type=STATUS_CHOICE, multiple=True)
@click.option("--priority", "-p", "priorities", type=PRIORITY_CHOICE, multiple=True)
@click.option("--created-after", callback=_timestamp_option, default=None)
@click.option("--created-before", callback=_timestamp_option, default=None)
@click.option("--updated-after", callback=_timestamp_option, default=None)
@click.option("--updated-before", callback=_timestamp_option, default=None)
@click.option("--offset", type=int, default=None)
@click.option("--limit", type=int, default=None, help="Max tasks (0 = all)")
@click.option("--sort", "sort_field", type=click.Choice([f.value for f in SortField]), default=None)
@click.option("--order", type=click.Choice([o.value for o in SortOrder]), default=SortOrder.ASC.value)
@click.option("--fields", default="", help="Comma-separated fields to keep (e.g. id,title,status)")
@click.option("--no-metadata", is_flag=True, help="Omit timestamps")
@click.pass_obj
@handle_errors
def list_tasks(
    app: AppContext,
    statuses: tuple[str, ...],
    priorities: tuple[str, ...],
    created_after: datetime | None,
    created_before: datetime | None,
    updated_after: datetime | None,
    updated_before: datetime | None,
    offset: int | None,
    limit: int | None,
    sort_field: str | None,
    order: str,
    fields: str,
    no_metadata: bool,
) -> None:
    """List tasks with filters, sorting and pagination."""
    options = QueryOptions(
        status=[TaskStatus(s) for s in statuses] or None,
        priority=[Priority(p) for p in priorities] or None,
        created_after=created_after,
        created_before=created_before,
        updated_after=updated_after,
        updated_before=updated_before,
        offset=offset,
        limit=limit,
    )
    tasks = app.query.query_tasks(options)
    if sort_field:
        tasks = app.query.sort_tasks(tasks, SortField(sort_field), SortOrder(order))
    wanted = [f.strip() for f in fields.split(",") if f.strip()]
    _emit([project_fields(_task_payload(t, not no_metadata), wanted) for t in tasks])


@main.command("next")
@click.option("--status", "-s", "statuses", type=click.Choice(["pending", "in-progress"]), multiple=True)
@click.option("--priority", "-p", "priorities", type=PRIORITY_CHOICE, multiple=True)
@click.option("--session", "session_id", default=None, help="Skip tasks assigned to other sessions")
@click.pass_obj
@handle_errors
def next_task(
    app: AppContext, statuses: tuple[str, ...], priorities: tuple[str, ...], session_id: str | None
) -> None:
    """Recommend the next task to work on."""
    rec = app.query.get_next_task(
        status=[TaskStatus(s) for s in statuses] or None,
        priority=[Priority(p) for p in priorities] or None,
        session_id=session_id,
    )
    _emit({"task": _task_payload(rec.task) if rec.task else None, "rationale": rec.rationale})


@main.command()
@click.pass_obj
@handle_errors
def stats(app: AppContext) -> None:
    """Aggregate counts, blocked tasks and dependency depth."""
    _emit(app.query.get_stats().to_dict())


@main.command()
@click.option("--recent", type=int, default=5, show_default=True, help="Recently updated tasks to include")
@click.pass_obj
@handle_errors
def context(app: AppContext, recent: int) -> None:
    """Summary for resuming a session: counts, next task, recent tasks."""
    ctx = app.query.session_context(recent=recent)
    _emit(
        {
            "statistics": ctx.statistics,
            "nextTask": _task_payload(ctx.next_task) if ctx.next_task else None,
            "recentTasks": [_task_payload(t) for t in ctx.recent_tasks],
            "totalTasks": ctx.total_tasks,
        }
    )
