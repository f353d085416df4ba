"""
Command-line interface for AppShelf.

This module provides the command-line entry point for browsing, installing and
curating Windows applications through winget and Chocolatey.
"""

import logging
import sys
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Iterator, List, Optional

import orjson
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from appshelf import __version__
from appshelf.config import AppshelfConfig, default_config_path
from appshelf.errors import AppshelfError, ListNotFoundError
from appshelf.manager import AppManager
from appshelf.models import ALL_SOURCES, AppList, ApplicationRecord, ViewFilter
from appshelf.sources.registry import build_sources
from appshelf.store.sqlite import SqlListStore

# Results go to stdout, logs to stderr
console = Console()
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
)
logger = logging.getLogger("appshelf")

# Create the Typer app
app = typer.Typer(
    help="Search, install and keep lists of Windows applications.",
    add_completion=False,
)


def log_error(message: str) -> None:
    """Log an error message to both logger and console."""
    logger.debug(message)
    console.print(f"[red]{message}[/red]")


def build_manager(config: AppshelfConfig) -> AppManager:
    """Wire the list store and package sources into a started manager."""
    store = SqlListStore.from_path(config.database_path)
    manager = AppManager(store, build_sources(config), config)
    manager.start()
    return manager


@contextmanager
def open_manager(ctx: typer.Context) -> Iterator[AppManager]:
    """
    Yield a started manager and turn AppShelf errors into a red message and
    exit code 1.
    """
    config = ctx.obj["config"]
    manager = None
    try:
        manager = build_manager(config)
        yield manager
    except AppshelfError as e:
        log_error(str(e))
        raise typer.Exit(1)
    finally:
        if manager is not None:
            manager.close()


def resolve_list(manager: AppManager, ref: Optional[str]) -> AppList:
    """
    Find a list by numeric id or by name.

    With no reference the current list is returned. Names are matched exactly
    first, then case-insensitively.
    """
    if ref is None:
        current = manager.current_list
        if current is None:
            raise ListNotFoundError("no list selected")
        return current
    if ref.isdigit():
        return manager.get_list(int(ref))

    lists = manager.lists
    for lst in lists:
        if lst.name == ref:
            return lst
    for lst in lists:
        if lst.name.lower() == ref.lower():
            return lst
    raise ListNotFoundError(f"no list named {ref!r}")


def print_json(data: object) -> None:
    typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


def print_apps(apps: List[ApplicationRecord], title: str, json_output: bool) -> None:
    """Print apps as a table, or as JSON when requested."""
    if json_output:
        print_json([asdict(app) for app in apps])
        return
    if not apps:
        console.print(f"{title}: no applications")
        return

    table = Table(title=title)
    table.add_column("Name")
    table.add_column("Package ID")
    table.add_column("Version")
    table.add_column("Source")
    table.add_column("Installed")
    table.add_column("Saved")
    for app_record in apps:
        table.add_row(
            app_record.name,
            app_record.package_id,
            app_record.version,
            app_record.source,
            "yes" if app_record.is_installed else "",
            "yes" if app_record.is_saved else "",
        )
    console.print(table)


def print_lists(lists: List[AppList], json_output: bool = False) -> None:
    if json_output:
        print_json(
            [
                {
                    "id": lst.id,
                    "name": lst.name,
                    "description": lst.description,
                    "created_at": lst.created_at.isoformat(),
                }
                for lst in lists
            ]
        )
        return

    table = Table(title="Lists")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("Created")
    for lst in lists:
        table.add_row(
            str(lst.id),
            lst.name,
            lst.description,
            lst.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output."
    ),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Output logs in JSON format."
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the config file. Uses APPSHELF_CONFIG or the default location.",
    ),
) -> None:
    """
    AppShelf: find, install and remember the applications you rely on.
    """
    # Configure logging level based on verbosity
    if verbose:
        logger.setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")
    else:
        logger.setLevel(logging.INFO)

    # Configure JSON logging if requested
    if json_logs:
        for handler in list(logging.root.handlers):
            logging.root.removeHandler(handler)
        logging.basicConfig(
            level=logging.INFO if not verbose else logging.DEBUG,
            format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stdout,
        )
        logger.debug("JSON logging enabled")

    path = config_path or default_config_path()
    ctx.obj = {"config": AppshelfConfig.load(path), "config_path": path}


@app.command()
def search(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Text to look for in names and ids.")],
    view: Annotated[
        ViewFilter,
        typer.Option("--view", help="Population to search."),
    ] = ViewFilter.ALL_RESULTS,
    source: Annotated[
        str, typer.Option("--source", "-s", help="Only show one package source.")
    ] = ALL_SOURCES,
    list_ref: Annotated[
        Optional[str],
        typer.Option("--list", "-l", help="List used to mark saved apps."),
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", help="Output results in JSON format.")
    ] = False,
) -> None:
    """
    Search for applications.

    "All Results" queries every enabled package manager; the other views search
    the installed or saved apps.
    """
    with open_manager(ctx) as manager:
        if list_ref is not None:
            manager.set_current_list(resolve_list(manager, list_ref))
        manager.set_view_filter(view)
        manager.filter_by_source(source)
        if view is ViewFilter.INSTALLED_ONLY:
            manager.refresh_installed_apps()
        manager.search(query)
        print_apps(manager.current_apps, f"Results for {query!r}", json_output)


@app.command()
def installed(
    ctx: typer.Context,
    source: Annotated[
        str, typer.Option("--source", "-s", help="Only show one package source.")
    ] = ALL_SOURCES,
    list_ref: Annotated[
        Optional[str],
        typer.Option("--list", "-l", help="List used to mark saved apps."),
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", help="Output results in JSON format.")
    ] = False,
) -> None:
    """
    Show applications installed through the enabled package managers.
    """
    with open_manager(ctx) as manager:
        if list_ref is not None:
            manager.set_current_list(resolve_list(manager, list_ref))
        manager.filter_by_source(source)
        manager.refresh_installed_apps()
        print_apps(manager.current_apps, "Installed applications", json_output)


@app.command()
def install(
    ctx: typer.Context,
    package_id: Annotated[str, typer.Argument(help="Package identifier.")],
    source: Annotated[
        str, typer.Option("--source", "-s", help="Package manager to install with.")
    ],
) -> None:
    """
    Install one package.
    """
    with open_manager(ctx) as manager:
        logger.info(f"Installing {package_id} with {source}...")
        manager.install_app(
            ApplicationRecord(name=package_id, package_id=package_id, source=source)
        )
        console.print(f"[green]Installed {package_id}[/green]")


@app.command(name="install-list")
def install_list(
    ctx: typer.Context,
    list_ref: Annotated[
        Optional[str], typer.Argument(help="List id or name. Defaults to the current list.")
    ] = None,
) -> None:
    """
    Install every application saved in a list.
    """
    with open_manager(ctx) as manager:
        target = resolve_list(manager, list_ref)
        count = manager.install_all_apps_in_list(target.id)
        console.print(f"[green]Installed {count} apps from {target.name}[/green]")


@app.command(name="lists")
def show_lists(
    ctx: typer.Context,
    json_output: Annotated[
        bool, typer.Option("--json", help="Output lists in JSON format.")
    ] = False,
) -> None:
    """
    Show all saved-app lists.
    """
    with open_manager(ctx) as manager:
        print_lists(manager.lists, json_output)


@app.command(name="create-list")
def create_list(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Name of the new list.")],
    description: Annotated[
        str, typer.Option("--description", "-d", help="Description of the list.")
    ] = "",
) -> None:
    """
    Create a new list.
    """
    with open_manager(ctx) as manager:
        created = manager.create_list(name, description)
        console.print(f"[green]Created list {created.name} (id {created.id})[/green]")


@app.command(name="update-list")
def update_list(
    ctx: typer.Context,
    list_ref: Annotated[str, typer.Argument(help="List id or name.")],
    name: Annotated[str, typer.Argument(help="New name.")],
    description: Annotated[
        str, typer.Option("--description", "-d", help="New description.")
    ] = "",
) -> None:
    """
    Rename a list and replace its description.
    """
    with open_manager(ctx) as manager:
        target = resolve_list(manager, list_ref)
        manager.update_list(target.id, name, description)
        console.print(f"[green]Updated list {target.id}[/green]")


@app.command(name="delete-list")
def delete_list(
    ctx: typer.Context,
    list_ref: Annotated[str, typer.Argument(help="List id or name.")],
) -> None:
    """
    Delete a list and everything saved in it.
    """
    with open_manager(ctx) as manager:
        target = resolve_list(manager, list_ref)
        manager.delete_list(target.id)
        console.print(f"[green]Deleted list {target.name}[/green]")


@app.command(name="show-list")
def show_list(
    ctx: typer.Context,
    list_ref: Annotated[
        Optional[str], typer.Argument(help="List id or name. Defaults to the current list.")
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", help="Output apps in JSON format.")
    ] = False,
) -> None:
    """
    Show the applications saved in a list.
    """
    with open_manager(ctx) as manager:
        target = resolve_list(manager, list_ref)
        manager.set_current_list(target)
        print_apps(manager.saved_apps, target.name, json_output)


@app.command()
def save(
    ctx: typer.Context,
    package_id: Annotated[str, typer.Argument(help="Package identifier.")],
    source: Annotated[
        str, typer.Option("--source", "-s", help="Package manager the app comes from.")
    ],
    name: Annotated[
        Optional[str], typer.Option("--name", help="Display name. Defaults to the id.")
    ] = None,
    version: Annotated[str, typer.Option("--version", help="Version.")] = "",
    description: Annotated[
        str, typer.Option("--description", "-d", help="Description.")
    ] = "",
    list_ref: Annotated[
        Optional[str],
        typer.Option("--list", "-l", help="List id or name. Defaults to the current list."),
    ] = None,
) -> None:
    """
    Save an application to a list.
    """
    with open_manager(ctx) as manager:
        target = resolve_list(manager, list_ref)
        record = ApplicationRecord(
            name=name or package_id,
            package_id=package_id,
            version=version,
            source=source,
            description=description,
        )
        manager.save_app_to_list(record, target.id)
        console.print(f"[green]Saved {package_id} to {target.name}[/green]")


@app.command()
def remove(
    ctx: typer.Context,
    package_id: Annotated[str, typer.Argument(help="Package identifier.")],
    list_ref: Annotated[
        Optional[str],
        typer.Option("--list", "-l", help="List id or name. Defaults to the current list."),
    ] = None,
) -> None:
    """
    Remove an application from a list.
    """
    with open_manager(ctx) as manager:
        target = resolve_list(manager, list_ref)
        manager.remove_app_from_list(package_id, target.id)
        console.print(f"[green]Removed {package_id} from {target.name}[/green]")


@app.command()
def containing(
    ctx: typer.Context,
    package_id: Annotated[str, typer.Argument(help="Package identifier.")],
    json_output: Annotated[
        bool, typer.Option("--json", help="Output lists in JSON format.")
    ] = False,
) -> None:
    """
    Show the lists an application is saved in.
    """
    with open_manager(ctx) as manager:
        lists = manager.get_app_lists_containing(package_id)
        if not lists and not json_output:
            console.print(f"{package_id} is not saved in any list")
            return
        print_lists(lists, json_output)


@app.command()
def export(
    ctx: typer.Context,
    list_ref: Annotated[
        Optional[str], typer.Argument(help="List id or name. Defaults to the current list.")
    ] = None,
    all_lists: Annotated[
        bool, typer.Option("--all", help="Export every list.")
    ] = False,
) -> None:
    """
    Export lists to CSV files in the exports directory.
    """
    with open_manager(ctx) as manager:
        if all_lists:
            paths = manager.export_all_lists_to_csv()
        else:
            paths = [manager.export_list_to_csv(resolve_list(manager, list_ref).id)]
        for path in paths:
            console.print(f"Exported {path}")


@app.command(name="import")
def import_lists(
    ctx: typer.Context,
    files: Annotated[List[Path], typer.Argument(help="CSV files to import.")],
) -> None:
    """
    Import lists from CSV files. Each file becomes (or merges into) the list
    named after it.
    """
    with open_manager(ctx) as manager:
        results = manager.import_lists_from_csv(files)

    failed = 0
    for result in results:
        if result.ok:
            console.print(
                f"[green]{result.path}: imported {result.imported_count} apps "
                f"into {result.list_name}[/green]"
            )
        else:
            failed += 1
            log_error(f"{result.path}: {result.error}")
    if failed:
        raise typer.Exit(1)


@app.command()
def sources(ctx: typer.Context) -> None:
    """
    Show the package sources and whether they are enabled.
    """
    config: AppshelfConfig = ctx.obj["config"]
    table = Table(title="Package sources")
    table.add_column("Source")
    table.add_column("Enabled")
    table.add_column("Available")
    for name, source in build_sources(config).items():
        table.add_row(
            name,
            "yes" if config.is_source_enabled(name) else "no",
            "yes" if source.is_available() else "no",
        )
    console.print(table)


def _toggle_source(ctx: typer.Context, name: str, enabled: bool) -> None:
    config: AppshelfConfig = ctx.obj["config"]
    try:
        config.set_source_enabled(name, enabled)
    except AppshelfError as e:
        log_error(str(e))
        raise typer.Exit(1)
    path = config.save(ctx.obj["config_path"])
    state = "enabled" if enabled else "disabled"
    console.print(f"[green]{name} {state}[/green] (saved to {path})")


@app.command(name="enable-source")
def enable_source(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Source name: winget or chocolatey.")],
) -> None:
    """
    Enable a package source.
    """
    _toggle_source(ctx, name, True)


@app.command(name="disable-source")
def disable_source(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Source name: winget or chocolatey.")],
) -> None:
    """
    Disable a package source. At least one source stays enabled.
    """
    _toggle_source(ctx, name, False)


@app.command()
def version() -> None:
    """Show the application version and exit."""
    console.print(f"AppShelf version: {__version__}")


if __name__ == "__main__":
    app()
