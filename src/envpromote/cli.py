"""envpromote CLI - plan, promote and drift-check infrastructure environments."""

from __future__ import annotations

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from envpromote import __version__
from envpromote.artifacts import make_run_id, write_json
from envpromote.config import PromoteConfig, load_config, resolve_out_dir, write_default_config
from envpromote.config.types import Environment
from envpromote.detect import ChangeSet, build_filters, changed_files_from_git, detect
from envpromote.drift.reconciler import DriftReconciler, workflow_run_url
from envpromote.engine.base import Engine
from envpromote.engine.terraform import TerraformEngine
from envpromote.errors import EXIT_ENGINE, EXIT_OK, EXIT_VALIDATION, PromoteError, ValidationError
from envpromote.incidents import GitHubIssueStore, IncidentTracker, JsonFileIncidentStore
from envpromote.locks import FileStateLock, NullStateLock, StateLock, hold_lock, retry_on_lock
from envpromote.plan import PlanExecutor, PlanOutcome, render_plan_comment
from envpromote.promotion import Action, PromotionOrchestrator, PromotionRun, RunStatus, StageState
from envpromote.promotion.report import write_run_report

cli = typer.Typer(
    name="envpromote",
    help="envpromote - environment promotion and drift reconciliation",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

DRIFT_REPORT_FILENAME = "DRIFT_REPORT.json"

_STATE_STYLES = {
    StageState.SUCCESS: "green",
    StageState.FAILED: "red",
    StageState.SKIPPED: "yellow",
    StageState.PENDING: "dim",
    StageState.RUNNING: "cyan",
}


class RunAction(str, Enum):
    """Actions allowed for multi-environment runs (destroy is single-environment only)."""

    PLAN = "plan"
    APPLY = "apply"


class TimestampMode(str, Enum):
    DETERMINISTIC = "deterministic"
    WALLCLOCK = "wallclock"


def _version_option_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


@cli.callback()
def _cli_callback(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Config file (default $ENVPROMOTE_CONFIG or <repo-root>/.envpromote/config.yaml)",
    ),
    repo_root: Path = typer.Option(
        Path("."),
        "--repo-root",
        help="Repository root containing the environment configuration roots",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show envpromote version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Plan, promote and drift-check environments in a fixed order."""
    _configure_logging(verbose)
    ctx.obj = {"config": config, "repo_root": repo_root.expanduser().resolve()}


def _load(ctx: typer.Context) -> PromoteConfig:
    try:
        return load_config(ctx.obj["repo_root"], ctx.obj["config"])
    except ValidationError as exc:
        err_console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}", soft_wrap=True)
        raise typer.Exit(EXIT_VALIDATION) from exc


def _make_engine(config: PromoteConfig) -> Engine:
    return TerraformEngine(config.engine.binary, run_init=config.engine.init)


def _make_lock(config: PromoteConfig, repo_root: Path) -> StateLock:
    if config.lock.backend == "file":
        directory = config.lock.directory or (repo_root / ".envpromote" / "locks")
        return FileStateLock(directory)
    return NullStateLock()


def _make_tracker(config: PromoteConfig, repo_root: Path) -> IncidentTracker:
    if config.incidents.store == "file":
        path = config.incidents.path or (repo_root / ".envpromote" / "incidents.json")
        store: Any = JsonFileIncidentStore(path)
    else:
        store = GitHubIssueStore(repo_root)
    return IncidentTracker(store, extra_labels=config.incidents.labels)


def _fail(exc: PromoteError) -> typer.Exit:
    label = "Validation error" if isinstance(exc, ValidationError) else "Error"
    err_console.print(f"[bold red]{label}:[/bold red] {escape(str(exc))}", soft_wrap=True)
    return typer.Exit(exc.exit_code)


def _print_run(run: PromotionRun) -> None:
    table = Table(title=f"{run.action.value} - {run.run_id}")
    table.add_column("#", justify="right")
    table.add_column("Environment")
    table.add_column("State")
    table.add_column("Reason")
    for index, stage in enumerate(run.stages, start=1):
        style = _STATE_STYLES[stage.state]
        table.add_row(str(index), stage.environment, f"[{style}]{stage.state.value}[/{style}]", stage.reason)
    console.print(table)

    failed = run.failed_stage
    if failed is not None:
        err_console.print(f"[red]✗ {failed.environment}: {escape(failed.error or '')}[/red]", soft_wrap=True)
        if failed.payload:
            err_console.print(failed.payload, markup=False, highlight=False, soft_wrap=True)


def _run_promotion(
    ctx: typer.Context,
    config: PromoteConfig,
    action: Action,
    *,
    targets: set[str] | None,
    confirmations: list[str],
    out: Path | None,
    timestamp_mode: TimestampMode,
) -> None:
    repo_root: Path = ctx.obj["repo_root"]
    engine = _make_engine(config)
    orchestrator = PromotionOrchestrator(
        PlanExecutor(engine, archive_dir=config.archive_dir, run_checks=config.engine.checks),
        engine,
        lock=_make_lock(config, repo_root),
        lock_policy=config.lock.policy,
    )
    run_id = make_run_id(f"PROMOTE_{action.value.upper()}", timestamp_mode.value)

    try:
        run = orchestrator.run(
            config.ordered,
            action,
            targets=targets,
            confirmations=confirmations,
            run_id=run_id,
        )
    except PromoteError as exc:
        raise _fail(exc) from exc

    _print_run(run)
    if action is Action.PLAN:
        for stage in run.stages:
            if stage.plan is not None and stage.plan.outcome is not PlanOutcome.FAILED:
                console.rule(f"plan - {stage.environment}")
                console.print(stage.plan.payload, markup=False, highlight=False, soft_wrap=True)

    report_path = write_run_report(run, resolve_out_dir(repo_root, out), timestamp_mode.value)
    console.print(f"[cyan]Report:[/cyan] {report_path}")

    if run.status is RunStatus.FAILED:
        console.print(f"[red]✗ Promotion {run.status.value}[/red]")
        raise typer.Exit(EXIT_ENGINE)
    console.print(f"[green]✓ Promotion {run.status.value}[/green]")
    raise typer.Exit(EXIT_OK)


def _resolve_changeset(repo_root: Path, changed_files: list[str] | None, base: str | None, head: str) -> ChangeSet:
    if changed_files:
        return ChangeSet.from_paths(changed_files)
    if base:
        return changed_files_from_git(repo_root, base, head)
    raise ValidationError("provide --changed-file or --base to describe the change")


@cli.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
) -> None:
    """Write the default dev/staging/prod configuration."""
    try:
        path = write_default_config(ctx.obj["repo_root"], force=force)
    except FileExistsError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/red] (use --force to overwrite)", soft_wrap=True)
        raise typer.Exit(EXIT_VALIDATION) from exc
    console.print(f"[green]✓ Wrote {path}[/green]")


@cli.command(name="detect")
def detect_cmd(
    ctx: typer.Context,
    changed_file: list[str] | None = typer.Option(
        None,
        "--changed-file",
        "-f",
        help="Changed path (repeatable)",
    ),
    base: str | None = typer.Option(None, "--base", help="Base ref for git diff"),
    head: str = typer.Option("HEAD", "--head", help="Head ref for git diff"),
    json_output: bool = typer.Option(False, "--json", help="Print affected environments as JSON"),
) -> None:
    """Print the environments affected by a change."""
    config = _load(ctx)
    try:
        changeset = _resolve_changeset(ctx.obj["repo_root"], changed_file, base, head)
    except PromoteError as exc:
        raise _fail(exc) from exc

    affected = detect(changeset, build_filters(config.ordered, config.shared_paths))
    names = [env.name for env in config.ordered if env.name in affected]
    if json_output:
        typer.echo(json.dumps({"changed": sorted(changeset.paths), "affected": names}))
    else:
        for name in names:
            typer.echo(name)


@cli.command()
def plan(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Environment to plan"),
    comment_file: Path | None = typer.Option(
        None,
        "--comment-file",
        help="Write the pull-request comment markdown to this path",
    ),
) -> None:
    """Dry-run one environment and classify the result."""
    config = _load(ctx)
    repo_root: Path = ctx.obj["repo_root"]
    try:
        env = config.get(environment)
        engine = _make_engine(config)
        executor = PlanExecutor(engine, archive_dir=config.archive_dir, run_checks=config.engine.checks)
        lock = _make_lock(config, repo_root)
        with hold_lock(lock, env.name, config.lock.policy):
            result = retry_on_lock(
                lambda: executor.plan(env),
                environment=env.name,
                policy=config.lock.policy,
            )
    except PromoteError as exc:
        raise _fail(exc) from exc

    console.print(result.payload, markup=False, highlight=False, soft_wrap=True)
    if comment_file is not None:
        comment = render_plan_comment(
            result,
            actor=os.getenv("GITHUB_ACTOR"),
            event=os.getenv("GITHUB_EVENT_NAME"),
        )
        comment_file.parent.mkdir(parents=True, exist_ok=True)
        comment_file.write_text(comment, encoding="utf-8")
        console.print(f"[cyan]Comment:[/cyan] {comment_file}")

    console.print(f"[cyan]{env.name}:[/cyan] {result.outcome.value} (exit {result.exit_code})")
    if result.outcome is PlanOutcome.FAILED:
        raise typer.Exit(EXIT_ENGINE)


@cli.command()
def promote(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Target environment"),
    action: Action = typer.Option(Action.PLAN, "--action", help="plan, apply or destroy"),
    confirm: str | None = typer.Option(
        None,
        "--confirm",
        help="Type the environment name to confirm destroy or a protected apply",
    ),
    out: Path | None = typer.Option(None, "--out", help="Report directory"),
    timestamp_mode: TimestampMode = typer.Option(TimestampMode.WALLCLOCK, "--timestamp-mode"),
) -> None:
    """Plan, apply or destroy a single environment.

    Exit codes: 0 success, 1 validation or confirmation error, 2 engine failure.
    """
    config = _load(ctx)
    _run_promotion(
        ctx,
        config,
        action,
        targets={environment},
        confirmations=[confirm] if confirm else [],
        out=out,
        timestamp_mode=timestamp_mode,
    )


@cli.command()
def run(
    ctx: typer.Context,
    changed_file: list[str] | None = typer.Option(
        None,
        "--changed-file",
        "-f",
        help="Changed path (repeatable)",
    ),
    base: str | None = typer.Option(None, "--base", help="Base ref for git diff"),
    head: str = typer.Option("HEAD", "--head", help="Head ref for git diff"),
    all_environments: bool = typer.Option(
        False,
        "--all",
        help="Target every environment regardless of changes",
    ),
    action: RunAction = typer.Option(RunAction.PLAN, "--action", help="plan or apply"),
    confirm: list[str] | None = typer.Option(
        None,
        "--confirm",
        help="Confirm a protected environment by name (repeatable)",
    ),
    out: Path | None = typer.Option(None, "--out", help="Report directory"),
    timestamp_mode: TimestampMode = typer.Option(TimestampMode.WALLCLOCK, "--timestamp-mode"),
) -> None:
    """Detect affected environments and promote through them in order."""
    config = _load(ctx)
    targets: set[str] | None = None
    if not all_environments:
        try:
            changeset = _resolve_changeset(ctx.obj["repo_root"], changed_file, base, head)
        except PromoteError as exc:
            raise _fail(exc) from exc
        targets = detect(changeset, build_filters(config.ordered, config.shared_paths))
        if not targets:
            console.print("[yellow]No environments affected by this change.[/yellow]")
            raise typer.Exit(EXIT_OK)

    _run_promotion(
        ctx,
        config,
        Action(action.value),
        targets=targets,
        confirmations=confirm or [],
        out=out,
        timestamp_mode=timestamp_mode,
    )


@cli.command()
def drift(
    ctx: typer.Context,
    environment: str | None = typer.Option(
        None,
        "--environment",
        "-e",
        help="Environment to check (default: all)",
    ),
    fail_on_drift: bool = typer.Option(False, "--fail-on-drift", help="Exit 2 when drift is found"),
    out: Path | None = typer.Option(None, "--out", help="Report directory"),
    timestamp_mode: TimestampMode = typer.Option(TimestampMode.WALLCLOCK, "--timestamp-mode"),
) -> None:
    """Re-plan against live state and open one incident per drifted environment."""
    config = _load(ctx)
    repo_root: Path = ctx.obj["repo_root"]
    try:
        environments: list[Environment] = (
            [config.get(environment)] if environment else list(config.ordered)
        )
    except PromoteError as exc:
        raise _fail(exc) from exc

    lock = _make_lock(config, repo_root)
    policy = config.lock.policy

    def guard(env: Environment, fn: Any) -> Any:
        with hold_lock(lock, env.name, policy):
            return retry_on_lock(fn, environment=env.name, policy=policy)

    reconciler = DriftReconciler(
        PlanExecutor(_make_engine(config), archive_dir=config.archive_dir, run_checks=False),
        _make_tracker(config, repo_root),
        timestamp_mode=timestamp_mode.value,
        run_url=workflow_run_url(),
        guard=guard,
    )
    outcomes = reconciler.reconcile_all(environments)

    table = Table(title="drift")
    table.add_column("Environment")
    table.add_column("Status")
    table.add_column("Incident")
    for outcome in outcomes:
        incident = ""
        if outcome.incident is not None:
            verb = "opened" if outcome.incident.newly_opened else "open"
            incident = f"#{outcome.incident.number} ({verb})"
        style = {"clean": "green", "drift": "yellow", "failed": "red"}[outcome.status]
        table.add_row(outcome.environment, f"[{style}]{outcome.status}[/{style}]", incident or outcome.error or "")
    console.print(table)

    out_dir = resolve_out_dir(repo_root, out)
    write_json(out_dir / DRIFT_REPORT_FILENAME, {"outcomes": [o.to_dict() for o in outcomes]})

    if any(o.status == "failed" for o in outcomes):
        raise typer.Exit(EXIT_ENGINE)
    if fail_on_drift and any(o.status == "drift" for o in outcomes):
        raise typer.Exit(EXIT_ENGINE)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
