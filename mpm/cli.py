"""mpm CLI - declarative plugin manager for Minecraft servers."""

import asyncio
import functools
import json

import click
from rich.console import Console
from rich.table import Table
import structlog

from mpm import __version__
from mpm.config import MpmConfig, validate_config
from mpm.core.doctor import HealthReport, Severity, run_doctor
from mpm.core.errors import MpmError, PluginNotInManifest, ResolutionError
from mpm.core.importer import detect_import_runtime, import_plugins
from mpm.core.locker import ChangeKind, LockEngine, LockResult, lock
from mpm.core.lockfile import Lockfile
from mpm.core.manifest import (
    Manifest,
    PluginRequirement,
    default_name_for,
    parse_plugin_spec,
)
from mpm.core.metadata import DEFAULT_RUNTIME_VERSION, detect_runtime_version
from mpm.core.sync import SyncEngine, SyncPlan, SyncReport, sync as run_sync
from mpm.logging import setup_logging
from mpm.sources.http import HttpClient
from mpm.sources.registry import SourceRegistry

log = structlog.get_logger()

console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLES = {
    Severity.ERROR: "[red]✗ error[/red]",
    Severity.WARNING: "[yellow]⚠ warning[/yellow]",
    Severity.INFO: "[cyan]ℹ info[/cyan]",
}


def handle_errors(func):
    """Render MpmError with rich and exit with its code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except MpmError as e:
            err_console.print(f"[red]✗ {e.message}[/red]")
            if e.suggestion:
                err_console.print(f"[dim]{e.suggestion}[/dim]")
            log.debug("command_failed", error=e.message, category=e.category.value)
            raise SystemExit(e.exit_code)

    return wrapper


def _echo_json(data: dict):
    click.echo(json.dumps(data, indent=2, sort_keys=False))


def _build_lock_engine(config: MpmConfig, http: HttpClient) -> LockEngine:
    return LockEngine(SourceRegistry.default(http), http, concurrency=config.concurrency)


@click.group()
@click.version_option(version=__version__, prog_name="mpm")
@click.option(
    "--dir", "base_dir", type=click.Path(file_okay=False),
    help="Base directory holding plugins.toml (env: MPM_DIR)",
)
@click.option(
    "--plugins-dir", "plugins_dir", type=click.Path(),
    help="Plugins directory, relative to the base directory (env: MPM_PLUGINS_DIR)",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
@handle_errors
def cli(ctx, base_dir: str = None, plugins_dir: str = None, debug: bool = False):
    """mpm - deterministic plugin manager for Minecraft servers"""
    config = MpmConfig.load(base_dir=base_dir, plugins_subdir=plugins_dir)
    setup_logging(
        "DEBUG" if debug else config.log_level,
        str(config.log_file) if config.log_file else None,
    )
    for warning in validate_config(config):
        log.warning("config_warning", message=warning)
    ctx.obj = config


@cli.command()
@click.argument("version", required=False)
@click.pass_obj
@handle_errors
def init(config: MpmConfig, version: str = None):
    """Create plugins.toml for Minecraft VERSION (detected if omitted)."""

    if config.manifest_path.exists():
        console.print(f"[yellow]{config.manifest_path} already exists, nothing to do[/yellow]")
        return

    if version is None:
        version = detect_runtime_version(config.base_dir)
        if version:
            console.print(f"[dim]Detected Minecraft {version} from server jar[/dim]")
        else:
            version = DEFAULT_RUNTIME_VERSION

    Manifest(runtime_version=version).save(config.manifest_path)
    console.print(f"[green]✓ Created {config.manifest_path} (Minecraft {version})[/green]")


@cli.command()
@click.argument("spec")
@click.option("--name", "-n", help="Manifest name (default: last segment of the id)")
@click.option("--no-update", is_flag=True, help="Do not update plugins.lock")
@click.pass_obj
@handle_errors
def add(config: MpmConfig, spec: str, name: str = None, no_update: bool = False):
    """Add a plugin: SPEC is [source:]id[@version]."""

    try:
        source, plugin_id, version = parse_plugin_spec(spec)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="SPEC")

    manifest = Manifest.load(config.manifest_path)
    requirement = PluginRequirement(
        name=name or default_name_for(plugin_id),
        id=plugin_id,
        source=source,
        version=version,
    )

    async def execute():
        async with HttpClient(timeout=config.http_timeout) as http:
            engine = _build_lock_engine(config, http)
            try:
                resolution = await engine.registry.resolve(requirement, manifest.runtime_version)
            except MpmError as e:
                raise ResolutionError(requirement.name, e) from e

            replaced = manifest.add(requirement)
            manifest.save(config.manifest_path)
            verb = "Updated" if replaced else "Added"
            console.print(
                f"[green]✓ {verb} {requirement.name}[/green] "
                f"({resolution.source.value} {resolution.candidate.version})"
            )

            if not no_update:
                result = await lock(manifest, config.lockfile_path, engine)
                _print_lock_result(result)

    asyncio.run(execute())


@cli.command()
@click.argument("name")
@click.option("--no-update", is_flag=True, help="Do not update plugins.lock")
@click.pass_obj
@handle_errors
def remove(config: MpmConfig, name: str, no_update: bool = False):
    """Remove plugin NAME from the manifest."""

    manifest = Manifest.load(config.manifest_path)
    if manifest.remove(name) is None:
        raise PluginNotInManifest(name)
    manifest.save(config.manifest_path)
    console.print(f"[green]✓ Removed {name}[/green]")

    if no_update:
        return

    async def execute():
        async with HttpClient(timeout=config.http_timeout) as http:
            return await lock(manifest, config.lockfile_path, _build_lock_engine(config, http))

    _print_lock_result(asyncio.run(execute()))


@cli.command("lock")
@click.option("--dry-run", is_flag=True, help="Show changes without writing plugins.lock")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
@handle_errors
def lock_command(ctx, dry_run: bool = False, as_json: bool = False):
    """Resolve the manifest and write plugins.lock."""

    config: MpmConfig = ctx.obj
    manifest = Manifest.load(config.manifest_path)

    async def execute():
        async with HttpClient(timeout=config.http_timeout) as http:
            return await lock(
                manifest, config.lockfile_path, _build_lock_engine(config, http), dry_run=dry_run
            )

    result = asyncio.run(execute())
    if as_json:
        _echo_json(result.to_dict())
    else:
        _print_lock_result(result, dry_run=dry_run)

    if dry_run:
        ctx.exit(result.exit_code)


@cli.command("sync")
@click.option("--dry-run", is_flag=True, help="Show the plan without touching files")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
@handle_errors
def sync_command(ctx, dry_run: bool = False, as_json: bool = False):
    """Make the plugins directory match plugins.lock."""

    config: MpmConfig = ctx.obj
    lockfile = Lockfile.load(config.lockfile_path)

    async def execute():
        async with HttpClient(timeout=config.http_timeout) as http:
            engine = SyncEngine(config.plugins_dir, http, concurrency=config.concurrency)
            return await run_sync(lockfile, engine, dry_run=dry_run)

    plan, report = asyncio.run(execute())
    if as_json:
        data = plan.to_dict()
        if report is not None:
            data["applied"] = report.to_dict()
        _echo_json(data)
    else:
        _print_sync(plan, report)

    if dry_run:
        ctx.exit(plan.exit_code)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
@handle_errors
def doctor(ctx, as_json: bool = False):
    """Check manifest, lockfile and plugins directory for drift."""

    config: MpmConfig = ctx.obj
    report = run_doctor(config.manifest_path, config.lockfile_path, config.plugins_dir)

    if as_json:
        _echo_json(report.to_dict())
    else:
        _print_report(report)

    ctx.exit(report.exit_code)


@cli.command("import")
@click.option("--version", "version", help="Minecraft version (detected if omitted)")
@click.pass_context
@handle_errors
def import_command(ctx, version: str = None):
    """Create plugins.toml and plugins.lock from existing jars."""

    config: MpmConfig = ctx.obj
    runtime = detect_import_runtime(config.base_dir, version)
    result = import_plugins(
        config.manifest_path, config.lockfile_path, config.plugins_dir, runtime
    )

    console.print(
        f"[green]✓ Imported {result.imported} plugin(s)[/green] for Minecraft {runtime}"
    )
    for plugin in result.lockfile.plugins:
        console.print(f"  • {plugin.name} {plugin.version} [dim]({plugin.file_name})[/dim]")

    if result.partial:
        console.print(f"\n[yellow]⚠ {len(result.failures)} file(s) could not be imported:[/yellow]")
        for failure in result.failures:
            console.print(f"  • {failure.file_name}: [dim]{failure.reason}[/dim]")
        ctx.exit(1)


def _print_lock_result(result: LockResult, dry_run: bool = False):
    """Helper to print lockfile changes."""

    for finding in result.findings:
        console.print(f"[yellow]⚠ {finding.subject}: {finding.message}[/yellow]")

    if not result.changes_pending:
        console.print("[green]✓ plugins.lock is up to date[/green]")
        return

    if not result.changes and not result.existed:
        console.print(f"[dim]No lockfile yet; {len(result.lockfile)} plugin(s) resolved[/dim]")

    for change in result.changes:
        if change.kind is ChangeKind.ADDED:
            console.print(f"  [green]+[/green] {change.name} {change.new.version}")
        elif change.kind is ChangeKind.REMOVED:
            console.print(f"  [red]-[/red] {change.name} {change.old.version}")
        else:
            direction = change.direction()
            suffix = f" [dim]({direction})[/dim]" if direction else ""
            console.print(
                f"  [yellow]~[/yellow] {change.name} {change.old.version} → "
                f"{change.new.version} [dim][{', '.join(change.changed_fields)}][/dim]{suffix}"
            )

    if dry_run:
        console.print("[yellow]Dry run: plugins.lock not written[/yellow]")
    else:
        console.print("[green]✓ Wrote plugins.lock[/green]")


def _print_sync(plan: SyncPlan, report: SyncReport = None):
    """Helper to print a sync plan or its outcome."""

    if not plan.changes_pending:
        console.print("[green]✓ Plugins directory is up to date[/green]")
        return

    for plugin in plan.to_fetch:
        console.print(f"  [green]↓[/green] {plugin.file_name} [dim]({plugin.name} {plugin.version})[/dim]")
    for file_name in plan.to_remove:
        console.print(f"  [red]-[/red] {file_name}")

    if report is None:
        console.print("[yellow]Dry run: no files changed[/yellow]")
    else:
        console.print(
            f"[green]✓ Synced: {len(report.fetched)} fetched, {len(report.removed)} removed, "
            f"{len(report.kept)} unchanged[/green]"
        )


def _print_report(report: HealthReport):
    """Helper to print a health report."""

    console.print("[bold cyan]mpm doctor[/bold cyan]\n")

    if not report.findings:
        console.print("[green]✓ Everything is consistent[/green]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Severity", width=10)
    table.add_column("Code", style="cyan")
    table.add_column("Subject")
    table.add_column("Message")
    for finding in report.findings:
        table.add_row(SEVERITY_STYLES[finding.severity], finding.code, finding.subject, finding.message)
    console.print(table)

    summary = report.summary()
    console.print(
        f"\n{summary['errors']} error(s), {summary['warnings']} warning(s), "
        f"{summary['info']} info - status: [bold]{report.status}[/bold]"
    )


def main():
    cli()


if __name__ == "__main__":
    main()
