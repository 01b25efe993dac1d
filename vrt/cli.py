"""CLI entry point for the visual regression harness."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path

import click
from PIL import Image
from playwright.async_api import async_playwright
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from vrt.compare.local_diff import DEFAULT_THRESHOLD, count_mismatched_pixels, load_rgba
from vrt.compare.store import ScreenshotStore
from vrt.errors import ConfigurationError, HarnessError
from vrt.grid.runner import SERVICE_GRIDS, run_grid_suite
from vrt.grid.session import check_connectivity
from vrt.models.comparison import format_percentage
from vrt.models.config import HarnessConfig
from vrt.tunnel.manager import TunnelManager
from vrt.tunnel.runner import run_with_tunnel

console = Console()

FRAMEWORKS = ("playwright", "selenium")
FUNCTIONAL_SUITE = "e2e/test_app_functional.py"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def visual_suite(framework: str) -> str:
    return f"e2e/test_{framework}_visual.py"


def _load_config() -> HarnessConfig:
    try:
        return HarnessConfig.from_env()
    except (ConfigurationError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression harness: local pixel diffs, Percy and SmartUI."""
    setup_logging(verbose)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option("--update", is_flag=True, help="Promote every actual screenshot to baseline at the end")
@click.option("--framework", "-f", type=click.Choice(FRAMEWORKS), default="playwright", help="Capture backend")
@click.option("--browser", "-b", default=None, help="Browser name (sets GRID_BROWSER)")
@click.argument("pytest_args", nargs=-1, type=click.UNPROCESSED)
def run(update: bool, framework: str, browser: str | None, pytest_args: tuple[str, ...]) -> None:
    """Run the visual suite locally."""
    env = dict(os.environ)
    if update:
        env["UPDATE_SCREENSHOTS"] = "true"
    if browser:
        env["GRID_BROWSER"] = browser

    command = ["pytest", visual_suite(framework), *pytest_args]
    console.print(f"[bold]Running:[/bold] {' '.join(command)}")
    try:
        completed = subprocess.run(command, env=env)
    except OSError as e:
        console.print(f"[red]Could not start pytest: {e}[/red]")
        sys.exit(1)
    sys.exit(0 if completed.returncode == 0 else 1)


@cli.group()
def baselines() -> None:
    """Manage baseline screenshots."""


@baselines.command("update")
@click.argument("name", required=False)
def baselines_update(name: str | None) -> None:
    """Copy actual screenshots over their baselines (one test, or all)."""
    config = _load_config()
    store = ScreenshotStore.from_dirs(config.screenshots)
    updated = store.update_baselines(name)
    if not updated:
        target = f"'{name}'" if name else "any test"
        console.print(f"[yellow]No actual screenshot found for {target}[/yellow]")
        sys.exit(1)
    for path in updated:
        console.print(f"  [green]Updated[/green] {path}")
    console.print(f"[green]{len(updated)} baseline(s) updated[/green]")


@cli.command()
@click.argument("baseline", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("actual", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write the diff image here")
@click.option("--threshold", "-t", type=click.FloatRange(0.0, 1.0), default=DEFAULT_THRESHOLD, show_default=True)
def diff(baseline: Path, actual: Path, output: Path | None, threshold: float) -> None:
    """Compare two PNG files once."""
    img1, img2 = load_rgba(baseline), load_rgba(actual)
    if img1.shape != img2.shape:
        console.print(
            f"[red]Image sizes do not match: {img1.shape[1]}x{img1.shape[0]} "
            f"vs {img2.shape[1]}x{img2.shape[0]}[/red]"
        )
        sys.exit(1)

    count, diff_image = count_mismatched_pixels(img1, img2, threshold)
    total = img1.shape[0] * img1.shape[1]
    percentage = format_percentage(count / total * 100 if total else 0.0)
    if output is not None:
        Image.fromarray(diff_image).save(output)
        console.print(f"Diff image: [blue]{output}[/blue]")

    if count:
        console.print(f"[red]Mismatch:[/red] {count} pixels ({percentage}%)")
        sys.exit(1)
    console.print("[green]Images match[/green]")


@cli.group()
def tunnel() -> None:
    """BrowserStack Local tunnel commands."""


@tunnel.command("check")
def tunnel_check() -> None:
    """Start the tunnel and load the app from a BrowserStack browser through it."""
    config = _load_config()

    async def _check() -> None:
        manager = TunnelManager.from_settings(config.browserstack)
        async with async_playwright() as playwright:
            await check_connectivity(playwright, config, manager)

    try:
        asyncio.run(_check())
    except HarnessError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print("[green]Local tunnel is up and running[/green]")


@tunnel.command("run")
@click.option(
    "--suite", "-s",
    type=click.Choice(["screenshots", "functional", "all"]),
    default="screenshots", show_default=True,
)
@click.option("--framework", "-f", type=click.Choice(FRAMEWORKS), default="playwright", help="Capture backend")
@click.option("--browser", "-b", default=None, help="Grid browser name")
def tunnel_run(suite: str, framework: str, browser: str | None) -> None:
    """Run a suite against BrowserStack with the local tunnel up for its whole lifetime."""
    config = _load_config()
    try:
        config.require_browserstack_credentials()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    commands = []
    if suite in ("screenshots", "all"):
        commands.append(["pytest", visual_suite(framework)])
    if suite in ("functional", "all"):
        commands.append(["pytest", FUNCTIONAL_SUITE])

    manager = TunnelManager.from_settings(config.browserstack)
    sys.exit(run_with_tunnel(manager, commands, browser=browser))


@cli.command()
@click.argument("framework", type=click.Choice(FRAMEWORKS))
@click.argument("service", type=click.Choice(sorted(SERVICE_GRIDS)))
@click.option("--all-browsers", is_flag=True, help="Run once per browser the grid offers")
def grid(framework: str, service: str, all_browsers: bool) -> None:
    """Run the visual suite on a cloud grid, once per browser."""
    results = run_grid_suite(framework, service, all_browsers=all_browsers)

    table = Table(title=f"{framework} / {service} grid results")
    table.add_column("Browser", style="bold")
    table.add_column("Status")
    table.add_column("Duration")
    for r in results:
        status = "[green]PASSED[/green]" if r.success else "[red]FAILED[/red]"
        table.add_row(r.browser, status, f"{r.duration_seconds}s")
    console.print(table)

    passed = sum(1 for r in results if r.success)
    console.print(f"Total: {len(results)}  Passed: {passed}  Failed: {len(results) - passed}")
    if passed != len(results):
        sys.exit(1)


if __name__ == "__main__":
    cli()
