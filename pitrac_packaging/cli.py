"""Thin CLI wrapper for pitrac_packaging.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from pitrac_packaging import __version__
from pitrac_packaging.config import Settings, get_settings, print_settings_json
from pitrac_packaging.types import RunReport

if TYPE_CHECKING:
    from pitrac_packaging.packages.schema import PackageTable

app = typer.Typer(
    name="pitrac-pkg",
    help="PiTrac packaging - incremental Debian package builds for Raspberry Pi 5",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def print_json_text(text: str) -> None:
    """Print JSON verbatim (no wrapping, markup or highlighting)."""
    console.print(text, soft_wrap=True, markup=False, highlight=False)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"pitrac-packaging version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """PiTrac packaging - incremental Debian package builds for Raspberry Pi 5."""
    configure_logging((log_level or get_settings().log_level).upper())


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        print_json_text(print_settings_json(settings))
        return

    timeout_display = (
        str(settings.build_timeout) if settings.build_timeout else "(none)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Project root:        {settings.project_root}")
    console.print(f"  Build directory:     {settings.effective_build_dir}")
    console.print(f"  Fingerprint cache:   {settings.cache_dir}")
    console.print(f"  Artifacts directory: {settings.debs_dir}")
    console.print(f"  Package table:       {settings.packages_file or '(built-in)'}")
    console.print(f"  Database URL:        {settings.effective_db_url}")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Architecture:        {settings.architecture}")
    console.print(f"  Max builds:          {settings.max_concurrent_builds}")
    console.print(f"  Build timeout:       {timeout_display}")
    console.print(f"  Log level:           {settings.log_level}")


def _state_style(state: str) -> str:
    return {
        "built": "green",
        "clean": "dim",
        "dirty": "yellow",
        "failed": "red",
        "cancelled": "red",
    }.get(state, "white")


def _report_to_dict(report: RunReport) -> dict[str, object]:
    return {
        "requested": report.requested,
        "auto_added": report.auto_added,
        "order": report.order,
        "versions": report.versions,
        "states": {k: v.value for k, v in report.states.items()},
        "dry_run": report.dry_run,
    }


def _load_table(settings: Settings) -> "PackageTable":
    """Load the configured package table or exit 1 with the reason."""
    import yaml
    from pydantic import ValidationError

    from pitrac_packaging.packages.io import load_configured_table

    try:
        return load_configured_table(settings)
    except (OSError, ValueError, ValidationError, yaml.YAMLError) as e:
        err_console.print(f"[red]Cannot load package table: {e}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def schedule(
    packages: Annotated[
        list[str] | None,
        typer.Argument(help="Packages to build (default: all changed packages)"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show the build plan without building"),
    ] = False,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, max=8, help="Concurrent builds"),
    ] = None,
    timeout: Annotated[
        int | None,
        typer.Option("--timeout", min=1, help="Per-package build timeout (seconds)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build packages incrementally based on source changes.

    If no packages are given, every changed package is built. Packages
    that changed on disk are added even when not named.
    """
    from pitrac_packaging.builds.artifacts import summarize_artifacts
    from pitrac_packaging.builds.errors import SchedulerError
    from pitrac_packaging.builds.service import run_incremental_build
    from pitrac_packaging.db import open_history

    settings = get_settings()
    table = _load_table(settings)
    session_factory = None if dry_run else open_history(settings.effective_db_url)

    try:
        report = run_incremental_build(
            packages or [],
            settings=settings,
            table=table,
            session_factory=session_factory,
            dry_run=dry_run,
            max_workers=jobs,
            timeout=timeout,
        )
    except SchedulerError as e:
        if json_output and e.report is not None:
            output = _report_to_dict(e.report)
            output["error"] = {"code": e.code, "message": str(e)}
            print_json_text(json.dumps(output, indent=2))
        else:
            err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        print_json_text(json.dumps(_report_to_dict(report), indent=2))
        return

    if report.auto_added:
        console.print(
            f"[yellow]Added due to changes: {', '.join(report.auto_added)}[/yellow]"
        )
    console.print(f"[bold]Build order:[/bold] {' '.join(report.order)}")

    if dry_run:
        console.print("[bold]Plan (dry run):[/bold]")
        for name in report.order:
            state = report.states[name].value
            action = "build" if state == "dirty" else "skip"
            console.print(
                f"  [{_state_style(state)}]{name}[/{_state_style(state)}]"
                f" {report.versions[name]} - {action}"
            )
        return

    console.print("[green]Incremental build completed successfully[/green]")
    console.print()
    console.print("[bold]Build Summary:[/bold]")
    counts = summarize_artifacts(settings.debs_dir, settings.architecture, report.order)
    for name in report.order:
        state = report.states[name].value
        console.print(
            f"  {name}: [{_state_style(state)}]{state}[/{_state_style(state)}],"
            f" {counts[name]} package(s) present"
        )


@app.command()
def status(
    packages: Annotated[
        list[str] | None,
        typer.Argument(help="Packages to inspect (default: all)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show fingerprints and rebuild decisions without building."""
    from pitrac_packaging.builds.errors import SchedulerError
    from pitrac_packaging.builds.service import create_scheduler

    settings = get_settings()
    scheduler = create_scheduler(settings, table=_load_table(settings))
    try:
        decisions = scheduler.status(packages or [])
    except SchedulerError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = [
            {
                "package": d.package,
                "dirty": d.dirty,
                "reason": d.reason.value,
                "fingerprint": d.fingerprint,
                "cached_fingerprint": d.cached_fingerprint,
            }
            for d in decisions
        ]
        print_json_text(json.dumps(output, indent=2))
        return

    for d in decisions:
        marker = "[yellow]rebuild[/yellow]" if d.dirty else "[green]up to date[/green]"
        console.print(f"  [bold]{d.package}[/bold]: {marker} ({d.reason.value})")
        console.print(f"    Current: {d.fingerprint[:16]}")
        cached = d.cached_fingerprint[:16] if d.cached_fingerprint else "(none)"
        console.print(f"    Cached:  {cached}")


packages_app = typer.Typer(help="Inspect the package table")
app.add_typer(packages_app, name="packages")


@packages_app.command("list")
def packages_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List configured packages with resolved versions."""
    table = _load_table(get_settings())

    versions = table.resolve_versions()
    if json_output:
        output = [
            {**spec.model_dump(mode="json"), "resolved_version": versions[spec.name]}
            for spec in table.packages
        ]
        print_json_text(json.dumps(output, indent=2))
        return

    console.print(f"[bold]Found {len(table.packages)} package(s):[/bold]")
    console.print()
    for spec in table.packages:
        console.print(f"  [green]{spec.name}[/green] {versions[spec.name]}")
        if spec.description:
            console.print(f"    {spec.description}")
        console.print(f"    Sources: {', '.join(spec.sources) or '(none)'}")
        if spec.dependencies:
            console.print(f"    Depends on: {', '.join(spec.dependencies)}")
        dependents = table.dependents(spec.name)
        if dependents:
            console.print(f"    Required by: {', '.join(dependents)}")


builds_app = typer.Typer(help="Inspect build history")
app.add_typer(builds_app, name="builds")


@builds_app.command("list")
def builds_list(
    package: Annotated[
        str | None,
        typer.Option("--package", "-p", help="Filter by package"),
    ] = None,
    status_filter: Annotated[
        str | None,
        typer.Option("--status", help="Filter by status (succeeded, failed, timed_out)"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum records to show"),
    ] = 20,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List recorded build attempts, newest first."""
    from pitrac_packaging.builds.service import list_builds
    from pitrac_packaging.db import open_history
    from pitrac_packaging.types import BuildStatus

    status_enum: BuildStatus | None = None
    if status_filter:
        try:
            status_enum = BuildStatus(status_filter)
        except ValueError:
            err_console.print(f"[red]Invalid status: {status_filter}[/red]")
            raise typer.Exit(code=1) from None

    factory = open_history(get_settings().effective_db_url)

    with factory() as session:
        builds = list_builds(session, package=package, status=status_enum, limit=limit)

        if not builds:
            if json_output:
                print_json_text("[]")
            else:
                console.print("[yellow]No build records found[/yellow]")
            return

        if json_output:
            output = [
                {
                    "id": b.id,
                    "run_id": b.run_id,
                    "package": b.package,
                    "architecture": b.architecture,
                    "version": b.version,
                    "status": b.status,
                    "fingerprint": b.fingerprint,
                    "started_at": b.started_at.isoformat() if b.started_at else None,
                    "finished_at": b.finished_at.isoformat() if b.finished_at else None,
                    "log_path": b.log_path,
                    "error_type": b.error_type,
                    "error_message": b.error_message,
                }
                for b in builds
            ]
            print_json_text(json.dumps(output, indent=2))
            return

        console.print(f"[bold]Found {len(builds)} build(s):[/bold]")
        console.print()
        for b in builds:
            style = "green" if b.is_succeeded() else "red"
            console.print(f"  [{style}]#{b.id} {b.package} {b.version}[/{style}]")
            console.print(f"    Status: {b.status}")
            if b.duration_seconds is not None:
                console.print(f"    Duration: {b.duration_seconds:.1f}s")
            if b.error_message:
                console.print(f"    Error: {b.error_message}")
            if b.log_path:
                console.print(f"    Log: {b.log_path}")


if __name__ == "__main__":
    app()
