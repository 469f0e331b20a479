"""modhub CLI: 模块管理命令

Usage:
    modhub list
    modhub status
    modhub enable <key>
    modhub disable <key>
    modhub install <key> [--name ...] [--settings '{"a": 1}'] [--core]
    modhub uninstall <key> [--yes]
    modhub sync
    modhub clear-cache

所有命令成功时退出码为 0；注册中心报告的任何错误退出码为 1，错误信息写入 stderr。
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from modhub.config.constants import CacheBackend
from modhub.core.exceptions import ModuleException
from modhub.core.modules import ModuleRegistry, build_module_registry

app = typer.Typer(
    name="modhub",
    help="Manage modules through the database.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()
err_console = Console(stderr=True)


@dataclass
class CliContext:
    registry: ModuleRegistry
    session_factory: Callable[[], Session]


def _default_context() -> CliContext:
    from modhub.database import create_session

    # 不自动建表：表结构由 alembic 迁移负责，未迁移时 sync 为 no-op
    return CliContext(registry=build_module_registry(), session_factory=create_session)


@app.callback()
def main_callback(ctx: typer.Context) -> None:
    if ctx.obj is None:
        ctx.obj = _default_context()


def _fail(message: str) -> None:
    err_console.print(f"[red]Error: {escape(message)}[/red]", soft_wrap=True)
    raise typer.Exit(1)


@contextmanager
def _session(ctx: typer.Context) -> Iterator[tuple[ModuleRegistry, Session]]:
    """打开命令级会话，并把注册中心错误 / 存储错误转换为退出码 1"""
    cli: CliContext = ctx.obj
    db: Optional[Session] = None
    try:
        db = cli.session_factory()
        yield cli.registry, db
    except ModuleException as e:
        _fail(e.message)
    except SQLAlchemyError as e:
        _fail(f"Storage failure: {e}")
    finally:
        if db is not None:
            db.close()


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


@app.command("list")
def list_modules(ctx: typer.Context) -> None:
    """List all modules with statistics."""
    with _session(ctx) as (registry, db):
        modules = registry.get_status(db)
        stats = registry.get_statistics(db)

    if not modules:
        console.print("No modules found.")
        return

    table = Table(title="Modules")
    table.add_column("Module Key", style="cyan")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Loaded")
    table.add_column("Integration")
    table.add_column("Version")
    table.add_column("Core")

    for module in modules:
        table.add_row(
            module.key,
            module.name or "N/A",
            "Yes" if module.enabled else "[red]No[/red]",
            _yes_no(module.loaded),
            module.integration_ref or "N/A",
            module.version or "N/A",
            _yes_no(module.is_core),
        )
    console.print(table)

    console.print()
    console.print("[bold]Statistics:[/bold]")
    console.print(f"Total: {stats.total}")
    console.print(f"Enabled: {stats.enabled}")
    console.print(f"Disabled: {stats.disabled}")
    console.print(f"Core: {stats.core}")
    console.print(f"Custom: {stats.custom}")
    console.print(f"Loaded: {stats.loaded}")


@app.command("status")
def show_status(ctx: typer.Context) -> None:
    """Show detailed status of every module."""
    with _session(ctx) as (registry, db):
        modules = registry.get_status(db)

    for module in modules:
        console.print(f"Module: [bold]{module.key}[/bold]")
        console.print(f"  Name: {module.name or 'N/A'}")
        console.print(f"  Enabled: {_yes_no(module.enabled)}")
        console.print(f"  Loaded: {_yes_no(module.loaded)}")
        console.print(f"  Integration: {module.integration_ref or 'N/A'}")
        console.print(f"  Version: {module.version or 'N/A'}")
        console.print(f"  Core: {_yes_no(module.is_core)}")
        if module.dependencies:
            console.print(f"  Dependencies: {', '.join(module.dependencies)}")
        if module.has_unmet_dependencies:
            console.print(
                f"  [yellow]Unmet Dependencies: {', '.join(module.unmet_dependencies)}[/yellow]"
            )
        console.print()


@app.command("enable")
def enable_module(ctx: typer.Context, key: str = typer.Argument(help="Module key.")) -> None:
    """Enable a module."""
    with _session(ctx) as (registry, db):
        changed = registry.enable(db, key)

    if changed:
        console.print(f"[green]Module '{key}' enabled successfully.[/green]")
    else:
        console.print(f"Module '{key}' is already enabled.")


@app.command("disable")
def disable_module(ctx: typer.Context, key: str = typer.Argument(help="Module key.")) -> None:
    """Disable a module."""
    with _session(ctx) as (registry, db):
        changed = registry.disable(db, key)

    if changed:
        console.print(f"[green]Module '{key}' disabled successfully.[/green]")
    else:
        console.print(f"Module '{key}' is already disabled.")


@app.command("sync")
def sync_modules(ctx: typer.Context) -> None:
    """Sync declared modules into the database."""
    from modhub.core.modules.declarations import load_declared_modules

    with _session(ctx) as (registry, db):
        result = registry.sync(db, load_declared_modules())

    if result.skipped:
        console.print("[yellow]Module store is not available, sync skipped.[/yellow]")
        return

    console.print(
        f"Modules synced from config successfully "
        f"(created: {len(result.created)}, updated: {len(result.updated)}, "
        f"failed: {len(result.failed)}).",
        soft_wrap=True,
    )
    if result.failed:
        err_console.print(f"[yellow]Failed: {', '.join(result.failed)}[/yellow]", soft_wrap=True)


@app.command("clear-cache")
def clear_cache(ctx: typer.Context) -> None:
    """Clear module caches."""
    cli: CliContext = ctx.obj
    cli.registry.clear_all_cache()

    backend = cli.registry.cache.backend
    console.print(f"Module caches cleared successfully (backend: {backend}).", soft_wrap=True)
    if backend == CacheBackend.MEMORY:
        err_console.print(
            "[yellow]Warning: the memory backend is local to this process; "
            "running servers keep their own caches until TTL expiry or restart.[/yellow]",
            soft_wrap=True,
        )


@app.command("install")
def install_module(
    ctx: typer.Context,
    key: str = typer.Argument(help="Module key."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name."),
    description: Optional[str] = typer.Option(None, "--description"),
    integration: Optional[str] = typer.Option(
        None, "--integration", help="Integration entry point, e.g. 'pkg.module:attr'."
    ),
    module_version: str = typer.Option("1.0.0", "--module-version"),
    author: Optional[str] = typer.Option(None, "--author"),
    core: bool = typer.Option(False, "--core", help="Mark as core module."),
    settings: Optional[str] = typer.Option(None, "--settings", help="JSON object of settings."),
    dependency: List[str] = typer.Option([], "--dependency", "-d", help="Dependency key."),
    sort_order: int = typer.Option(0, "--sort-order"),
) -> None:
    """Install a new module (disabled by default)."""
    parsed_settings = {}
    if settings:
        try:
            parsed_settings = json.loads(settings)
        except json.JSONDecodeError:
            _fail("Invalid JSON in settings option.")
        if not isinstance(parsed_settings, dict):
            _fail("Settings option must be a JSON object.")

    with _session(ctx) as (registry, db):
        descriptor_data = {
            "key": key,
            "name": name,
            "description": description,
            "integration_ref": integration,
            "version": module_version,
            "author": author,
            "is_core": core,
            "settings": parsed_settings,
            "dependencies": dependency,
            "sort_order": sort_order,
            "enabled": False,
            "auto_register": True,
        }
        registry.install(db, descriptor_data)

    console.print(f"[green]Module '{key}' installed successfully.[/green]")


@app.command("uninstall")
def uninstall_module(
    ctx: typer.Context,
    key: str = typer.Argument(help="Module key."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Permanently remove a module."""
    if not yes and not typer.confirm(f"Are you sure you want to uninstall module '{key}'?"):
        console.print("Uninstall cancelled.")
        return

    with _session(ctx) as (registry, db):
        registry.uninstall(db, key)

    console.print(f"[green]Module '{key}' uninstalled successfully.[/green]")


if __name__ == "__main__":
    app()
