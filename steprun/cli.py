"""CLI entry point for the step runner."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from steprun.models.config import SUPPORTED_BROWSERS, RunnerConfig
from steprun.models.events import BrowserInstallUpdate, RunUpdateEvent
from steprun.models.results import ApiResult
from steprun.orchestrator import Orchestrator

console = Console()

DEFAULT_CONFIG = "steprun.json"

_STATUS_STYLES = {
    "passed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "running": "cyan",
    "pending": "dim",
    "queued": "dim",
}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(path: str) -> RunnerConfig:
    if not Path(path).exists():
        logging.getLogger(__name__).debug("No config at %s, using defaults", path)
        return RunnerConfig()
    return RunnerConfig.load(path)


def _unwrap(result: ApiResult):
    """Return the payload of a successful result, or print the error and exit."""
    if not result.ok:
        console.print(f"[red]{result.error.message}[/red] [dim]({result.error.code})[/dim]")
        sys.exit(1)
    return result.data


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Run plain-language browser test cases."""
    setup_logging(verbose)


@cli.command()
@click.option("--browser", "-b", type=click.Choice(SUPPORTED_BROWSERS), default="chromium",
              help="Default browser engine")
@click.option("--timeout", "-t", default=10, type=int, help="Per-step timeout in seconds")
@click.option("--continue-on-failure", is_flag=True, help="Keep going after a failed step")
@click.option("--sample", is_flag=True, help="Also create a sample project with a login test")
def init(browser: str, timeout: int, continue_on_failure: bool, sample: bool) -> None:
    """Create a default configuration file."""
    config_path = Path(DEFAULT_CONFIG)
    if not config_path.exists() or click.confirm(f"{DEFAULT_CONFIG} already exists. Overwrite?"):
        cfg = RunnerConfig(
            default_browser=browser,
            step_timeout_seconds=timeout,
            continue_on_failure=continue_on_failure,
        )
        cfg.save(config_path)
        console.print(f"[green]Config created:[/green] {config_path}")

    if sample:
        seed = _unwrap(Orchestrator(_load_config(DEFAULT_CONFIG)).seed_sample())
        verb = "Created" if seed.created_test_case else "Found existing"
        console.print(f"{verb} sample test [bold]{seed.test_case.title}[/bold] ({seed.test_case.id}) "
                      f"in project {seed.project.name} ({seed.project.id})")


@cli.command()
@click.argument("text")
def parse(text: str) -> None:
    """Show how a step line is interpreted."""
    from steprun.parser.step_parser import parse_step

    result = parse_step(text)
    if not result.ok:
        console.print(f"[red]{result.error}[/red]")
        sys.exit(1)
    console.print(f"[bold]{result.action.type}[/bold] ({result.source})")
    console.print_json(result.action.model_dump_json(exclude_none=True))


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def browsers(config: str) -> None:
    """Show install state of each browser engine."""
    orchestrator = Orchestrator(_load_config(config))
    states = _unwrap(asyncio.run(orchestrator.run_browser_status()))

    table = Table(title="Browser Engines")
    table.add_column("Browser", style="bold")
    table.add_column("Installed")
    table.add_column("Executable")
    table.add_column("Last Error")
    for state in states:
        table.add_row(
            state.browser,
            "[green]yes[/green]" if state.installed else "[red]no[/red]",
            state.executable_path or "-",
            state.last_error or "",
        )
    console.print(table)


@cli.command()
@click.argument("browser", type=click.Choice(SUPPORTED_BROWSERS))
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def install(browser: str, config: str) -> None:
    """Install a browser engine."""
    orchestrator = Orchestrator(_load_config(config))

    def on_update(update: BrowserInstallUpdate) -> None:
        progress = f"{update.progress:3d}%" if update.progress is not None else "   -"
        console.print(f"[dim]{progress}[/dim] {update.phase}: {update.message}")

    orchestrator.install_events.subscribe(on_update)
    state = _unwrap(asyncio.run(orchestrator.run_install_browser(browser)))
    console.print(f"[green]{state.browser} ready[/green] {state.executable_path or ''}")


# ----------------------------------------------------------------------
# Projects
# ----------------------------------------------------------------------

@cli.group()
def project() -> None:
    """Manage projects."""


@project.command("add")
@click.argument("name")
@click.argument("base_url")
@click.option("--env", "env_label", default="default", help="Environment label")
@click.option("--meta", multiple=True, help="Metadata as key=value (repeatable)")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def project_add(name: str, base_url: str, env_label: str, meta: tuple[str, ...], config: str) -> None:
    """Create a project."""
    metadata = {}
    for item in meta:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected key=value, got '{item}'", param_hint="--meta")
        metadata[key.strip()] = value.strip()

    orchestrator = Orchestrator(_load_config(config))
    created = _unwrap(orchestrator.project_create(name, base_url, env_label, metadata))
    console.print(f"[green]Project created:[/green] {created.id} ({created.name})")


@project.command("list")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def project_list(config: str) -> None:
    """List projects."""
    orchestrator = Orchestrator(_load_config(config))
    projects = _unwrap(orchestrator.project_list())
    if not projects:
        console.print("[dim]No projects.[/dim]")
        return
    table = Table(title="Projects")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Base URL")
    table.add_column("Env")
    for p in projects:
        table.add_row(p.id, p.name, p.base_url, p.env_label)
    console.print(table)


@project.command("delete")
@click.argument("project_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def project_delete(project_id: str, config: str) -> None:
    """Delete a project with its test cases and runs."""
    orchestrator = Orchestrator(_load_config(config))
    _unwrap(orchestrator.project_delete(project_id))
    console.print(f"[green]Project deleted:[/green] {project_id}")


# ----------------------------------------------------------------------
# Test cases
# ----------------------------------------------------------------------

@cli.group()
def test() -> None:
    """Manage test cases."""


@test.command("add")
@click.argument("project_id")
@click.argument("title")
@click.option("--step", "-s", "steps", multiple=True, help="Step line (repeatable)")
@click.option("--steps-file", type=click.Path(exists=True, dir_okay=False),
              help="File with one step per line")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def test_add(project_id: str, title: str, steps: tuple[str, ...], steps_file: str | None,
             config: str) -> None:
    """Create a test case."""
    lines = list(steps)
    if steps_file:
        lines.extend(Path(steps_file).read_text(encoding="utf-8").splitlines())

    orchestrator = Orchestrator(_load_config(config))
    test_case, created = _unwrap(orchestrator.test_case_create(project_id, title, lines))
    console.print(f"[green]Test case created:[/green] {test_case.id} ({len(created)} steps)")


@test.command("list")
@click.argument("project_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def test_list(project_id: str, config: str) -> None:
    """List test cases of a project."""
    orchestrator = Orchestrator(_load_config(config))
    cases = _unwrap(orchestrator.test_case_list(project_id))
    if not cases:
        console.print("[dim]No test cases.[/dim]")
        return
    table = Table(title="Test Cases")
    table.add_column("ID", style="bold")
    table.add_column("Title")
    table.add_column("Updated")
    for tc in cases:
        table.add_row(tc.id, tc.title, tc.updated_at)
    console.print(table)


@test.command("show")
@click.argument("test_case_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def test_show(test_case_id: str, config: str) -> None:
    """Show a test case and its steps."""
    orchestrator = Orchestrator(_load_config(config))
    test_case, steps = _unwrap(orchestrator.test_case_get(test_case_id))
    console.print(f"[bold]{test_case.title}[/bold] [dim]{test_case.id}[/dim]")
    for step in steps:
        console.print(f"  {step.order}. {step.raw_text}")


@test.command("delete")
@click.argument("test_case_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def test_delete(test_case_id: str, config: str) -> None:
    """Delete a test case with its runs."""
    orchestrator = Orchestrator(_load_config(config))
    _unwrap(orchestrator.test_case_delete(test_case_id))
    console.print(f"[green]Test case deleted:[/green] {test_case_id}")


# ----------------------------------------------------------------------
# Runs
# ----------------------------------------------------------------------

def _print_run_event(event: RunUpdateEvent) -> None:
    if event.type == "step-started":
        console.print(f"  [dim]step {event.step_order}...[/dim]")
    elif event.type == "step-finished":
        line = f"  step {event.step_order}: {_styled(event.step_status)}"
        if event.message:
            line += f" [dim]{event.message}[/dim]"
        console.print(line)
    elif event.message:
        console.print(f"[bold]{event.message}[/bold]")


async def _run_and_wait(orchestrator: Orchestrator, test_case_id: str, browser: str | None):
    unsubscribe = orchestrator.run_events.subscribe(_print_run_event)
    try:
        run = _unwrap(await orchestrator.run_start(test_case_id, browser))
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, lambda: orchestrator.run_cancel(run.id))
        except NotImplementedError:
            pass  # no signal handlers on this platform's loop
        try:
            return _unwrap(await orchestrator.run_wait(run.id))
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except NotImplementedError:
                pass
    finally:
        unsubscribe()


@cli.command()
@click.argument("test_case_id")
@click.option("--browser", "-b", type=click.Choice(SUPPORTED_BROWSERS), default=None,
              help="Browser engine (defaults to config)")
@click.option("--headed", is_flag=True, help="Show the browser window")
@click.option("--continue-on-failure", is_flag=True, default=None,
              help="Keep going after a failed step")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def run(test_case_id: str, browser: str | None, headed: bool,
        continue_on_failure: bool | None, config: str) -> None:
    """Run a test case. Ctrl-C requests cancellation."""
    cfg = _load_config(config)
    if headed:
        cfg.headless = False
    if continue_on_failure:
        cfg.continue_on_failure = True

    orchestrator = Orchestrator(cfg)
    final = asyncio.run(_run_and_wait(orchestrator, test_case_id, browser))
    console.print(f"\nRun {final.id}: {_styled(final.status)}")
    if final.status != "passed":
        sys.exit(1)


@cli.command()
@click.argument("test_case_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def history(test_case_id: str, config: str) -> None:
    """Show run history for a test case, newest first."""
    orchestrator = Orchestrator(_load_config(config))
    runs = _unwrap(orchestrator.run_history(test_case_id))
    if not runs:
        console.print("[dim]No runs yet.[/dim]")
        return
    table = Table(title="Run History")
    table.add_column("Run", style="bold")
    table.add_column("Browser")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Ended")
    for r in runs:
        table.add_row(r.id, r.browser, _styled(r.status), r.started_at, r.ended_at or "-")
    console.print(table)


@cli.command()
@click.argument("run_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def results(run_id: str, config: str) -> None:
    """Show per-step results of a run."""
    orchestrator = Orchestrator(_load_config(config))
    run_record = _unwrap(orchestrator.run_status(run_id))
    step_results = _unwrap(orchestrator.step_results(run_id))

    console.print(f"Run {run_record.id}: {_styled(run_record.status)} on {run_record.browser}")
    table = Table()
    table.add_column("#", style="bold")
    table.add_column("Status")
    table.add_column("Error")
    table.add_column("Screenshot")
    for r in step_results:
        table.add_row(str(r.step_order), _styled(r.status), r.error_text or "", r.screenshot_path or "")
    console.print(table)


@cli.command()
@click.argument("project_id")
@click.argument("title")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def suggest(project_id: str, title: str, config: str) -> None:
    """Suggest steps for a test title."""
    orchestrator = Orchestrator(_load_config(config))
    suggestions = _unwrap(orchestrator.suggest_steps(project_id, title))
    for s in suggestions:
        warn = " [red](destructive)[/red]" if s.is_destructive else ""
        console.print(f"{s.raw_text}{warn}")
        console.print(f"  [dim]{s.reason}[/dim]")


@cli.command("bug-report")
@click.argument("run_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def bug_report(run_id: str, config: str) -> None:
    """Draft a bug report for a failed run."""
    orchestrator = Orchestrator(_load_config(config))
    report = _unwrap(orchestrator.bug_report(run_id))
    console.print(f"[bold]{report.title}[/bold]")
    console.print(f"Environment: {report.environment}")
    console.print("Steps to reproduce:")
    for i, step in enumerate(report.steps_to_reproduce, 1):
        console.print(f"  {i}. {step}")
    console.print(f"Expected: {report.expected_result}")
    console.print(f"Actual: {report.actual_result}")
    for path in report.evidence:
        console.print(f"Evidence: [blue]{path}[/blue]")


if __name__ == "__main__":
    cli()
