"""
SCORM Sequencing CLI.

Inspect and exercise activity trees without a run-time environment.

Commands:
- scorm-sn stats TREE          : Show tree shape and the resolved activity tree
- scorm-sn lint TREE           : Static checks on a structure file
- scorm-sn trace TREE STEP...  : Run navigation requests and progress updates

TREE is a JSON or YAML structure file as handed over by the manifest layer.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from loguru import logger
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from config import get_settings
from scorm_sn.core.constants import TrackedField
from scorm_sn.core.errors import SequencingError
from scorm_sn.core.structure import load_structure, read_structure_file
from scorm_sn.core.structure_validator import LintSeverity, lint_structure
from scorm_sn.sequencing.activity_tree import Activity, ActivityTreeManager
from scorm_sn.sequencing.session import SequencingSession

SN_THEME = {
    "primary": "#00D4FF",
    "success": "#00FF88",
    "warning": "#FFA500",
    "error": "#FF4444",
    "dim": "#666666",
}

PROGRESS_FIELDS = {
    TrackedField.COMPLETION_STATUS.value,
    TrackedField.SUCCESS_STATUS.value,
    TrackedField.PROGRESS_MEASURE.value,
    TrackedField.SCORE_SCALED.value,
}
MEASURE_FIELDS = {TrackedField.PROGRESS_MEASURE.value, TrackedField.SCORE_SCALED.value}

console = Console()

app = typer.Typer(
    name="scorm-sn",
    help="SCORM 2004 sequencing and navigation tools",
    no_args_is_help=True,
)


def _fail(message: str) -> None:
    console.print(Panel(message, border_style=Style(color=SN_THEME["error"])))
    raise typer.Exit(1)


def _read_tree(path: Path) -> dict:
    try:
        return read_structure_file(path)
    except (OSError, ValueError) as e:
        _fail(f"[bold red]Cannot read {path}[/bold red]\n{e}")


# ============================================================================
# STATS
# ============================================================================


def _render_activity(activity: Activity, branch: Tree) -> None:
    for child in activity.children:
        label = Text(child.identifier, style="bold" if child.is_launchable else "")
        if child.title:
            label.append(f"  {child.title}", style=Style(color=SN_THEME["dim"]))
        if child.resource_ref:
            label.append(f"  -> {child.resource_ref}", style=Style(color=SN_THEME["primary"]))
        _render_activity(child, branch.add(label))


@app.command("stats")
def stats(
    tree_file: Path = typer.Argument(..., help="Structure file (JSON or YAML)"),
):
    """
    Show activity tree statistics.

    Examples:
        scorm-sn stats course.yaml
    """
    raw = _read_tree(tree_file)
    manager = ActivityTreeManager()
    try:
        root = manager.build_tree(raw)
    except SequencingError as e:
        _fail(f"[bold red]Activity tree could not be built[/bold red]\n{e}")

    tree_stats = manager.get_tree_stats()
    table = Table(title="Activity Tree", box=box.ROUNDED)
    table.add_column("Metric", style=Style(color=SN_THEME["dim"]))
    table.add_column("Value", justify="right")
    for key, value in tree_stats.to_dict().items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)

    rendered = Tree(Text(root.identifier, style="bold cyan"))
    _render_activity(root, rendered)
    console.print(rendered)


# ============================================================================
# LINT
# ============================================================================


@app.command("lint")
def lint(
    tree_file: Path = typer.Argument(..., help="Structure file (JSON or YAML)"),
    strict: bool = typer.Option(
        False,
        "--strict", "-s",
        help="Treat warnings as failures",
    ),
):
    """
    Lint a structure file.

    Exit code is 1 when errors are found (or any warning with --strict).
    """
    try:
        spec = load_structure(tree_file)
    except ValidationError as e:
        _fail(f"[bold red]Invalid structure spec[/bold red]\n{e}")
    except (OSError, ValueError) as e:
        _fail(f"[bold red]Cannot read {tree_file}[/bold red]\n{e}")

    report = lint_structure(spec)

    if report.issues:
        table = Table(title=f"Lint: {tree_file.name}", box=box.ROUNDED)
        table.add_column("Severity")
        table.add_column("Rule")
        table.add_column("Item")
        table.add_column("Issue")
        for issue in report.issues:
            color = SN_THEME["error"] if issue.severity is LintSeverity.ERROR else SN_THEME["warning"]
            table.add_row(
                Text(issue.severity.value, style=Style(color=color)),
                issue.rule,
                issue.identifier or "-",
                issue.message,
            )
        console.print(table)
    else:
        console.print(f"[green]No issues found in {tree_file.name}[/green]")

    stats_line = ", ".join(f"{key}={value}" for key, value in report.stats.items())
    console.print(
        f"{len(report.errors)} error(s), {len(report.warnings)} warning(s) [dim]({stats_line})[/dim]"
    )

    if report.has_errors or (strict and report.warnings):
        raise typer.Exit(1)


# ============================================================================
# TRACE
# ============================================================================


def _parse_progress_step(step: str) -> tuple[str, dict]:
    """Parse "set:ID:field=value[,field=value]"."""
    try:
        _, activity_id, assignments = step.split(":", 2)
    except ValueError:
        raise typer.BadParameter(f"Expected set:ID:field=value, got {step!r}") from None

    values: dict = {}
    for assignment in assignments.split(","):
        name, sep, value = assignment.partition("=")
        name = name.strip()
        if not sep or name not in PROGRESS_FIELDS | {TrackedField.LOCATION.value}:
            raise typer.BadParameter(f"Unknown progress field in {step!r}: {name!r}")
        if name in MEASURE_FIELDS:
            try:
                values[name] = float(value)
            except ValueError:
                raise typer.BadParameter(f"{name} must be a number in {step!r}") from None
        else:
            values[name] = value.strip()
    return activity_id, values


def _run_step(session: SequencingSession, step: str) -> dict:
    if step.startswith("set:"):
        activity_id, values = _parse_progress_step(step)
        location = values.pop(TrackedField.LOCATION.value, None)
        if location is not None:
            session.update_activity_location(activity_id, location)
        rollup = session.update_activity_progress(activity_id, **values)
        activity = session.tree.get_activity(activity_id)
        return {
            "step": step,
            "success": True,
            "current_activity_id": session.handler.current_activity.identifier
            if session.handler.current_activity else None,
            "message": f"{activity_id}: {activity.completion_status.value}/"
                       f"{activity.success_status.value}, rolled up to "
                       f"{', '.join(rollup.changed) or 'nothing'}",
            "rollup": rollup.to_dict(),
        }

    request = step
    if step.startswith("choice:"):
        request = "{target=" + step.split(":", 1)[1] + "}choice"
    result = session.process_navigation_request(request)
    return {"step": step, **result.to_dict()}


@app.command("trace")
def trace(
    tree_file: Path = typer.Argument(..., help="Structure file (JSON or YAML)"),
    steps: list[str] = typer.Argument(
        ...,
        help="Requests (start, continue, choice:ID, ...) or set:ID:field=value updates",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the trace and final state as JSON",
    ),
):
    """
    Run a sequence of navigation requests against a fresh session.

    Examples:
        scorm-sn trace course.yaml start set:lesson1:completion_status=completed continue
        scorm-sn trace course.yaml start choice:lesson3 suspendAll resumeAll --json
    """
    raw = _read_tree(tree_file)
    session = SequencingSession()
    try:
        session.initialize(raw)
    except SequencingError as e:
        _fail(f"[bold red]Activity tree could not be built[/bold red]\n{e}")

    try:
        records = [_run_step(session, step) for step in steps]
    except SequencingError as e:
        _fail(f"[bold red]Trace aborted[/bold red]\n{e}")
    final_state = session.get_sequencing_state()

    if as_json:
        typer.echo(json.dumps({"steps": records, "final_state": final_state.to_dict()}, indent=2))
        return

    table = Table(title=f"Trace: {tree_file.name}", box=box.ROUNDED)
    table.add_column("#", justify="right", style=Style(color=SN_THEME["dim"]))
    table.add_column("Step")
    table.add_column("OK", justify="center")
    table.add_column("Current")
    table.add_column("Detail")
    for index, record in enumerate(records, 1):
        ok = Text("yes", style=Style(color=SN_THEME["success"])) if record["success"] else Text(
            "no", style=Style(color=SN_THEME["error"])
        )
        detail = record.get("reason") or record.get("message", "")
        table.add_row(str(index), record["step"], ok, record["current_activity_id"] or "-", detail)
    console.print(table)

    console.print(
        f"Session: [bold]{final_state.session_state.value}[/bold]  "
        f"current={final_state.current_activity_id or '-'}  "
        f"available={', '.join(r.value for r in final_state.available_navigation) or '-'}"
    )


# =============================================================================
# Entry Point
# =============================================================================

def main() -> None:
    """CLI entry point."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level.upper(),
        format="<level>{level: <8}</level> {message}",
    )

    app()


if __name__ == "__main__":
    main()
