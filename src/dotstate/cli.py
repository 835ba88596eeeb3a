"""Command-line interface for dotstate."""

from __future__ import annotations

import json
import logging
import signal
import subprocess
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

import tomli_w
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import Config, ConfigError, load_config
from .engine import Reconciler
from .errors import DotstateError
from .filesystem import abs_slash
from .keepassxc import KeePassXC
from .models import ApplyAction, ApplyResult, IncludeSet
from .persistent_state import TOMLPersistentState
from .source import read_source_state
from .system import RealSystem

app = typer.Typer(help="Manage dotfiles by reconciling them against a source state")
state_app = typer.Typer(help="Inspect or reset the persistent state")
secret_app = typer.Typer(help="Query secret managers")
app.add_typer(state_app, name="state")
app.add_typer(secret_app, name="secret")

console = Console()
err_console = Console(stderr=True)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to dotstate.toml")
SourceOption = typer.Option(None, "--source", "-S", help="Source directory")
DestinationOption = typer.Option(None, "--destination", "-D", help="Destination directory")
IncludeOption = typer.Option("all", "--include", "-i", help="Entry types to include, e.g. dirs,files")
RecursiveOption = typer.Option(False, "--recursive", "-r", help="Include the children of directory targets")
TargetsArgument = typer.Argument(None, help="Targets to act on (default: all)")


def _load_config(config: Path | None, source: Path | None = None, destination: Path | None = None) -> Config:
    config_obj = load_config(config)
    return config_obj.with_overrides(
        source_dir=source.expanduser().absolute() if source else None,
        dest_dir=destination.expanduser().absolute() if destination else None,
    )


def _load_reconciler(config_obj: Config) -> Reconciler:
    source_state = read_source_state(config_obj.settings.source_dir)
    return Reconciler(source_state, abs_slash(config_obj.settings.dest_dir))


def _real_system(config_obj: Config) -> RealSystem:
    return RealSystem(TOMLPersistentState.load(config_obj.settings.state_path))


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Re-run the command with elevated privileges (e.g. `sudo`).")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        console.print(f"[red]{escape(str(exc))}[/red]", highlight=False)
        if "does not exist" in str(exc):
            console.print("[yellow]Pass --config with the path to an existing dotstate.toml.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, (DotstateError, OSError)):
        console.print(f"[red]{escape(str(exc))}[/red]", highlight=False)
        raise typer.Exit(code=1)
    raise exc


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn SIGINT into a cancellation request honoured between entries."""

    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def request_cancel(signum: int, frame: object) -> None:
        err_console.print("[yellow]Interrupted; stopping after the current entry.[/yellow]")
        cancel.set()

    previous = signal.signal(signal.SIGINT, request_cancel)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _format_apply_results(results: Iterable[ApplyResult]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Target")
    table.add_column("Type")
    table.add_column("Action")
    table.add_column("Details", overflow="fold")

    action_styles = {
        ApplyAction.UPDATED: "green",
        ApplyAction.UNCHANGED: "white",
        ApplyAction.SKIPPED: "yellow",
        ApplyAction.FAILED: "red",
    }

    for result in results:
        style = action_styles[result.action]
        table.add_row(
            escape(result.target_name),
            result.kind.value,
            f"[{style}]{result.action.value}[/{style}]",
            escape(result.error or ""),
        )

    console.print(table)


def serialize(data: Any, format: str) -> str:
    """Render ``data`` as JSON, TOML, or YAML."""

    if format == "json":
        return json.dumps(data, indent=2, sort_keys=True) + "\n"
    if format == "toml":
        return tomli_w.dumps(data)
    if format == "yaml":
        return yaml.safe_dump(data, sort_keys=True)
    raise DotstateError(f"{format}: unknown format")


@app.callback()
def main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log verbosity"),
) -> None:
    """Manage dotfiles by reconciling them against a source state."""

    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
        force=True,
    )


@app.command()
def apply(
    targets: list[str] = TargetsArgument,
    config: Path | None = ConfigOption,
    source: Path | None = SourceOption,
    destination: Path | None = DestinationOption,
    include: str = IncludeOption,
    recursive: bool = RecursiveOption,
    keep_going: bool = typer.Option(False, "--keep-going", "-k", help="Continue after errors"),
) -> None:
    """Update the destination directory to match the source state."""

    try:
        config_obj = _load_config(config, source, destination)
        reconciler = _load_reconciler(config_obj)
        system = _real_system(config_obj)
        with _cancel_on_interrupt() as cancel:
            results = reconciler.apply(
                system,
                targets or (),
                include=IncludeSet.parse(include),
                recursive=recursive,
                umask=config_obj.settings.umask,
                keep_going=keep_going,
                cancel=cancel,
            )
        _format_apply_results(results)
        if any(result.action is ApplyAction.FAILED for result in results):
            raise typer.Exit(code=1)
    except typer.Exit:
        raise
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def verify(
    targets: list[str] = TargetsArgument,
    config: Path | None = ConfigOption,
    source: Path | None = SourceOption,
    destination: Path | None = DestinationOption,
    include: str = IncludeOption,
    recursive: bool = RecursiveOption,
) -> None:
    """Exit with success if the destination matches the source state, fail otherwise."""

    try:
        config_obj = _load_config(config, source, destination)
        reconciler = _load_reconciler(config_obj)
        in_sync = reconciler.verify(
            _real_system(config_obj),
            targets or (),
            include=IncludeSet.parse(include),
            recursive=recursive,
            umask=config_obj.settings.umask,
        )
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return
    if not in_sync:
        raise typer.Exit(code=1)


@app.command()
def dump(
    targets: list[str] = TargetsArgument,
    config: Path | None = ConfigOption,
    source: Path | None = SourceOption,
    include: str = IncludeOption,
    recursive: bool = RecursiveOption,
    format: str | None = typer.Option(None, "--format", "-f", help="Output format: json, toml, or yaml"),
) -> None:
    """Write the target state to standard output."""

    try:
        config_obj = _load_config(config, source)
        reconciler = _load_reconciler(config_obj)
        data = reconciler.dump(
            targets or (),
            include=IncludeSet.parse(include),
            recursive=recursive,
            umask=config_obj.settings.umask,
        )
        typer.echo(serialize(data, format or config_obj.settings.format), nl=False)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def unmanaged(
    config: Path | None = ConfigOption,
    source: Path | None = SourceOption,
    destination: Path | None = DestinationOption,
) -> None:
    """List the unmanaged files in the destination directory."""

    try:
        config_obj = _load_config(config, source, destination)
        reconciler = _load_reconciler(config_obj)
        for name in reconciler.unmanaged(_real_system(config_obj)):
            typer.echo(name)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@state_app.command("dump")
def state_dump(
    config: Path | None = ConfigOption,
    format: str | None = typer.Option(None, "--format", "-f", help="Output format: json, toml, or yaml"),
) -> None:
    """Write the persistent state to standard output."""

    try:
        config_obj = _load_config(config)
        store = TOMLPersistentState.load(config_obj.settings.state_path)
        data: dict[str, dict[str, Any]] = {}
        for bucket, entries in store.data().items():
            data[bucket] = {}
            for key, value in entries.items():
                try:
                    data[bucket][key.decode()] = json.loads(value)
                except json.JSONDecodeError:
                    data[bucket][key.decode()] = value.decode(errors="replace")
        typer.echo(serialize(data, format or config_obj.settings.format), nl=False)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@state_app.command("reset")
def state_reset(
    config: Path | None = ConfigOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete the persistent state, so run-once scripts run again."""

    try:
        config_obj = _load_config(config)
        state_path = config_obj.settings.state_path
        if not yes and not typer.confirm(f"Delete '{state_path}'?"):
            raise typer.Exit(code=1)
        TOMLPersistentState.load(state_path).reset()
        console.print(f"[green]Removed '{state_path}'.[/green]")
    except typer.Exit:
        raise
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@secret_app.command(
    "keepassxc",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def secret_keepassxc(
    args: list[str] = typer.Argument(None, help="Arguments passed to keepassxc-cli"),
    config: Path | None = ConfigOption,
) -> None:
    """Execute the KeePassXC CLI."""

    try:
        config_obj = _load_config(config)
        completed = subprocess.run([config_obj.keepassxc.command, *(args or [])])
    except FileNotFoundError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]", highlight=False)
        raise typer.Exit(code=1)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return
    raise typer.Exit(code=completed.returncode)


@secret_app.command("keepassxc-show")
def secret_keepassxc_show(
    entry: str = typer.Argument(..., help="Database entry to show"),
    attribute: str | None = typer.Option(None, "--attribute", "-a", help="Show only this attribute"),
    config: Path | None = ConfigOption,
) -> None:
    """Show the fields of a KeePassXC entry."""

    try:
        config_obj = _load_config(config)
        keepassxc = KeePassXC(config_obj.keepassxc, RealSystem(), console=err_console)
        if attribute is not None:
            typer.echo(keepassxc.attribute(entry, attribute))
            return
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Field")
        table.add_column("Value", overflow="fold")
        for name, value in keepassxc.entry(entry).items():
            table.add_row(name, value)
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
