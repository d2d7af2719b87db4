"""Main CLI application for devenv."""

import contextlib
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeRemainingColumn

from devenv import __version__
from devenv.config.parser import ConfigError
from devenv.config.schemas import OrganizationConfig
from devenv.core.download import ArchiveDownloadError, ProgressCallback
from devenv.core.environment import Environment, UpdateResult
from devenv.core.installer import ArchiveError
from devenv.core.plugin import InvalidPluginError
from devenv.core.status import FileStatus, StatusItem
from devenv.utils.git import GitError

# Create the main Typer app
app = typer.Typer(
    name="devenv",
    help="Manage platform development environments and their plugins",
    add_completion=False,
    no_args_is_help=True,
)
platform_app = typer.Typer(help="Manage the platform installation", no_args_is_help=True)
plugin_app = typer.Typer(help="Manage plugin repositories", no_args_is_help=True)
app.add_typer(platform_app, name="platform")
app.add_typer(plugin_app, name="plugin")

console = Console()
error_console = Console(stderr=True)

# Set up logger for the devenv package
logger = logging.getLogger("devenv")

# Number of modified files listed under a drifted platform
MAX_FILES_SHOWN = 10

# Errors reported to the user without a traceback
USER_ERRORS = (ConfigError, ArchiveDownloadError, ArchiveError, GitError, InvalidPluginError)

EnvironmentOption = Annotated[
    Path | None,
    typer.Option(
        "--env",
        "--environment",
        "-e",
        help="Environment directory (defaults to searching upwards from cwd)",
    ),
]
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", "-n", help="Show what would change without changing anything"),
]
ForceOption = Annotated[
    bool,
    typer.Option("--force", "-f", help="Proceed even if local changes would be lost"),
]
SourceOption = Annotated[
    str | None,
    typer.Option(
        "--source",
        "-s",
        envvar="DEVENV_SOURCE",
        help="Base URL or directory holding platform archives",
    ),
]


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2+=DEBUG
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def get_environment(path: Path | None = None) -> Environment:
    """Open the environment, exiting with an error if it cannot be loaded."""
    try:
        return Environment.open(path)
    except ConfigError as e:
        print_error(escape(str(e)))
        if e.path is None or not e.path.exists():
            print_error("Run 'devenv init' to create a new environment")
        raise typer.Exit(1) from e


@contextlib.contextmanager
def download_progress(description: str) -> Iterator[ProgressCallback]:
    """Show a progress bar for the duration of a download."""
    with Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=error_console,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=None)

        def report(fraction: float | None) -> None:
            if fraction is None:
                progress.update(task, total=None)
            else:
                progress.update(task, total=1.0, completed=fraction)

        yield report


@contextlib.contextmanager
def handle_errors() -> Iterator[None]:
    """Turn expected failures into an error message and exit code 1."""
    try:
        yield
    except USER_ERRORS as e:
        print_error(escape(str(e)))
        raise typer.Exit(1) from e


def print_results(results: list[UpdateResult]) -> None:
    for result in results:
        line = f"[cyan]{escape(result.name)}[/cyan] {escape(result.message)}"
        if result.success:
            print_success(line)
        else:
            print_error(line)
        for action in result.actions:
            console.print(f"  {escape(action)}")


def print_status_item(item: StatusItem) -> None:
    """Print one line of the status report."""
    color = "green" if item.is_up_to_date else "red"
    line = f"[cyan]{escape(item.name)}[/cyan] [{color}]{escape(item.message)}[/{color}]"

    match item.kind:
        case "platform":
            console.print(line)
            print_file_statuses(list(item.files))
        case "plugin":
            branch = f" [dim]({escape(item.plugin.branch)})[/dim]" if item.plugin.branch else ""
            console.print(f"{line}{branch}")


def print_file_statuses(files: list[FileStatus]) -> None:
    for file in files[:MAX_FILES_SHOWN]:
        console.print(f"  [dim]{escape(file.path)}[/dim] {file.message}")
    if len(files) > MAX_FILES_SHOWN:
        console.print(f"  (and {len(files) - MAX_FILES_SHOWN} more files)")


@app.callback()
def callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug)",
        ),
    ] = 0,
) -> None:
    """devenv - Platform development environment manager."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the devenv version."""
    console.print(f"devenv {__version__}")


@app.command()
def init(
    name: Annotated[
        str | None,
        typer.Option("--name", help="Organization name"),
    ] = None,
    code: Annotated[
        str | None,
        typer.Option("--code", help="Organization code used for generated namespaces"),
    ] = None,
    platform_version: Annotated[
        str | None,
        typer.Option("--platform-version", help="Platform version to install, or 'custom'"),
    ] = None,
    path: Annotated[
        Path | None,
        typer.Option(
            "--env",
            "--environment",
            "-e",
            help="Environment directory (defaults to current directory)",
        ),
    ] = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
) -> None:
    """Initialize a new environment.

    Creates environment.json and a .gitignore that excludes the platform
    installation.
    """
    path = Path.cwd() if path is None else path

    with handle_errors():
        environment = Environment.create(
            path,
            organization=OrganizationConfig(name=name, code=code),
            platform_version=platform_version,
            dry_run=dry_run,
            force=force,
        )

    if dry_run:
        print_warning("Dry run, no files were written")
        console.print(f"  Would create: {environment.descriptor_path}")
        console.print(f"  Would create: {environment.root / '.gitignore'}")
        return

    print_success(f"Initialized environment in {environment.root}")


@app.command()
def status(path: EnvironmentOption = None) -> None:
    """Show how the environment differs from environment.json."""
    environment = get_environment(path)

    with handle_errors():
        report = environment.get_status()

    for item in report.items:
        print_status_item(item)

    if report.is_up_to_date:
        console.print()
        print_success("Environment is up to date")


@app.command()
def update(
    path: EnvironmentOption = None,
    source: SourceOption = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
) -> None:
    """Update the platform and all plugins to match environment.json."""
    environment = get_environment(path)
    if dry_run:
        print_warning("Dry run, nothing will be changed")

    with handle_errors(), download_progress("Downloading platform") as progress:
        summary = environment.update(source=source, dry_run=dry_run, force=force, progress=progress)

    print_results(summary.results)
    if summary.refused:
        console.print("To update anyway, run the command with the '--force' option.")
    if not summary.all_successful:
        raise typer.Exit(1)


@platform_app.command("update")
def platform_update(
    path: EnvironmentOption = None,
    source: SourceOption = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
) -> None:
    """Install the platform version named in environment.json."""
    environment = get_environment(path)
    if dry_run:
        print_warning("Dry run, nothing will be changed")

    with handle_errors(), download_progress("Downloading platform") as progress:
        result = environment.update_platform(
            source=source, dry_run=dry_run, force=force, progress=progress
        )

    print_results([result])
    if not result.success:
        raise typer.Exit(1)


@platform_app.command("remove")
def platform_remove(
    path: EnvironmentOption = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
) -> None:
    """Remove the files installed with the platform."""
    environment = get_environment(path)
    if dry_run:
        print_warning("Dry run, nothing will be changed")

    with handle_errors():
        result = environment.remove_platform(dry_run=dry_run, force=force)

    print_results([result])
    if not result.success:
        raise typer.Exit(1)


@plugin_app.command("add")
def plugin_add(
    plugin_path: Annotated[str, typer.Argument(help="Plugin directory relative to the environment")],
    url: Annotated[str | None, typer.Option("--url", "-u", help="Repository URL")] = None,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Branch to check out")] = None,
    path: EnvironmentOption = None,
    dry_run: DryRunOption = False,
) -> None:
    """Add a plugin to environment.json."""
    environment = get_environment(path)

    with handle_errors():
        entry = environment.add_plugin(plugin_path, url=url, branch=branch)
        environment.save(dry_run)

    if dry_run:
        print_warning(f"Dry run, would add plugin {entry.path}")
        return
    print_success(f"Added plugin {entry.path}")


@plugin_app.command("configure")
def plugin_configure(
    plugin_path: Annotated[str, typer.Argument(help="Plugin directory relative to the environment")],
    url: Annotated[
        str | None, typer.Option("--url", "-u", help="Repository URL (empty to clear)")
    ] = None,
    branch: Annotated[
        str | None, typer.Option("--branch", "-b", help="Branch to check out (empty to clear)")
    ] = None,
    path: EnvironmentOption = None,
    dry_run: DryRunOption = False,
) -> None:
    """Change the repository URL or branch of a plugin."""
    environment = get_environment(path)

    with handle_errors():
        entry = environment.configure_plugin(plugin_path, url=url, branch=branch)
        environment.save(dry_run)

    if dry_run:
        print_warning(f"Dry run, would update plugin {entry.path}")
        return
    print_success(f"Updated plugin {entry.path}")


@plugin_app.command("update")
def plugin_update(
    path: EnvironmentOption = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
) -> None:
    """Clone or update every plugin that is out of date."""
    environment = get_environment(path)
    if dry_run:
        print_warning("Dry run, nothing will be changed")

    with handle_errors():
        summary = environment.update_plugins(dry_run=dry_run, force=force)

    if not summary.results:
        console.print("All plugins are up to date, nothing to do.")
        return

    print_results(summary.results)
    if summary.refused:
        console.print("To update anyway, run the command with the '--force' option.")
    if not summary.all_successful:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
