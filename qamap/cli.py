"""CLI entry point for qamap."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from qamap.models.config import GENERATOR_KINDS, QAMapConfig
from qamap.models.run_result import RunResult
from qamap.pipeline import Pipeline

console = Console()

DEFAULT_CONFIG = "qamap.config.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_pipeline(config: str) -> Pipeline:
    try:
        cfg = QAMapConfig.load(config)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Run 'qamap init' to create a default config.")
        sys.exit(1)
    return Pipeline(cfg)


def _print_run(result: RunResult) -> None:
    summary = result.summary
    table = Table(title="Results Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Run ID", result.run_id)
    table.add_row("Duration", f"{result.duration_ms / 1000:.1f}s")
    table.add_row("Total Tests", str(summary.total))
    table.add_row("Passed", f"[green]{summary.passed}[/green]")
    table.add_row("Flaky", f"[yellow]{summary.flaky}[/yellow]")
    table.add_row("Failed", f"[red]{summary.failed}[/red]")
    table.add_row("Skipped", f"[yellow]{summary.skipped}[/yellow]")
    table.add_row("Pass Rate", f"{summary.pass_rate}%")
    console.print(table)


def _print_failures(pipeline: Pipeline) -> None:
    clusters = pipeline.failure_clusters()
    if not clusters:
        console.print("[green]No unresolved failures recorded[/green]")
        return
    table = Table(title="Failure Clusters")
    table.add_column("Type", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Suggested Fix")
    for cluster in clusters:
        table.add_row(cluster.error_type, str(cluster.count), cluster.suggested_fix)
    console.print(table)


def _print_flaky(pipeline: Pipeline, threshold: Optional[float] = None) -> None:
    flaky = pipeline.flaky_tests(threshold)
    if not flaky:
        console.print("[green]No flaky tests detected[/green]")
        return
    table = Table(title="Flaky Tests")
    table.add_column("Test ID", style="bold")
    table.add_column("Runs", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Flakiness", justify="right")
    for test in flaky:
        table.add_row(test.test_id, str(test.total_runs), str(test.failures), f"{test.flakiness_score:.0%}")
    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Autonomous web-app mapping, test generation and self-healing execution"""
    setup_logging(verbose)


@cli.command()
@click.option("--target", "-t", prompt="Target URL", help="Base URL of the app to test")
@click.option("--name", "-n", default="", help="Application name")
def init(target: str, name: str) -> None:
    """Create a default configuration file."""
    config_path = Path(DEFAULT_CONFIG)
    if config_path.exists():
        if not click.confirm(f"{DEFAULT_CONFIG} already exists. Overwrite?"):
            return

    cfg = QAMapConfig(base_url=target, app_name=name)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nYou can now customize this file and run:")
    console.print("  [blue]qamap map[/blue]")
    console.print("  [blue]qamap generate[/blue]")
    console.print("  [blue]qamap run[/blue]")


@cli.command("map")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--merge", is_flag=True, help="Merge into the previously saved graph")
def map_command(config: str, merge: bool) -> None:
    """Crawl the app and build its graph."""
    pipeline = _load_pipeline(config)
    graph = pipeline.run_map(merge=merge)
    console.print(
        f"[green]Mapping complete:[/green] {len(graph.nodes)} nodes, {len(graph.edges)} edges, "
        f"{graph.metadata.total_forms} forms"
    )
    console.print(f"  Graph: [blue]{pipeline.graph_path}[/blue]")


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option(
    "--type", "-t", "kinds", multiple=True, type=click.Choice(GENERATOR_KINDS),
    help="Generator to run (repeatable); defaults to the configured scenario types",
)
@click.option("--seed", type=int, default=None, help="Seed for deterministic ids and values")
@click.option("--max-tests", type=int, default=None, help="Upper bound on generated tests")
@click.option("--no-coverage", is_flag=True, help="Run each generator once, ignoring coverage targets")
@click.option("--name", default="latest", help="Plan name under test-plans/")
def generate(
    config: str, kinds: tuple[str, ...], seed: Optional[int], max_tests: Optional[int],
    no_coverage: bool, name: str,
) -> None:
    """Generate a test plan from the saved graph."""
    pipeline = _load_pipeline(config)
    try:
        plan = pipeline.run_generate(
            kinds=list(kinds) or None, seed=seed, max_tests=max_tests,
            use_coverage=not no_coverage, name=name,
        )
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"[green]Plan generated:[/green] {plan.test_count} tests in {len(plan.suites)} suites")
    if plan.coverage:
        c = plan.coverage
        table = Table(title="Coverage")
        table.add_column("Dimension", style="bold")
        table.add_column("Covered", justify="right")
        table.add_row("Routes", f"{c.routes.covered}/{c.routes.total} ({c.routes.percentage}%)")
        table.add_row("Elements", f"{c.elements.covered}/{c.elements.total} ({c.elements.percentage}%)")
        table.add_row("Forms", f"{c.forms.covered}/{c.forms.total} ({c.forms.percentage}%)")
        table.add_row("Assertions", str(c.assertions))
        table.add_row("Flows", str(c.flows))
        console.print(table)
    console.print(f"  Plan: [blue]{pipeline.plan_path(name)}[/blue]")


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--plan-file", "-p", default=None, help="Path to test plan JSON (defaults to the latest plan)")
@click.option("--parallel/--sequential", default=None, help="Override the configured execution mode")
@click.option("--workers", "-w", type=int, default=None, help="Parallel worker count")
@click.option("--full", is_flag=True, help="Map and generate first, then execute")
def run(config: str, plan_file: Optional[str], parallel: Optional[bool], workers: Optional[int], full: bool) -> None:
    """Execute a test plan; exits 1 when any test fails."""
    pipeline = _load_pipeline(config)
    try:
        if full:
            result = pipeline.run_full_pipeline(parallel=parallel)
        else:
            plan = pipeline.load_plan(plan_file)
            result = pipeline.run_execute(plan, parallel=parallel, workers=workers)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print("\n[bold green]Run Complete[/bold green]")
    _print_run(result)
    console.print(f"  Report: [blue]{pipeline.report_path(result.run_id)}[/blue]")

    if result.summary.failed:
        if pipeline.config.learning.enabled:
            _print_failures(pipeline)
            _print_flaky(pipeline)
        sys.exit(1)


@cli.group()
def kb() -> None:
    """Inspect the knowledge base."""
    pass


@kb.command("failures")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def kb_failures(config: str) -> None:
    """Show unresolved failures clustered by error type."""
    _print_failures(_load_pipeline(config))


@kb.command("flaky")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--threshold", type=float, default=None, help="Minimum flakiness score (0-1)")
def kb_flaky(config: str, threshold: Optional[float]) -> None:
    """List tests whose failure rate is above the threshold."""
    _print_flaky(_load_pipeline(config), threshold)


if __name__ == "__main__":
    cli()
