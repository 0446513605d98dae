from __future__ import annotations

import asyncio
import importlib.metadata as md
import logging
import sys
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .config import TripTrackConfig, load_config, resolve_config_path
from .core.controller import TrackingSessionController
from .domain.models import PersistenceError, TrackingPhase, TripState
from .export import trip_summary, write_path_csv, write_summary_csv
from .infrastructure.gps import GpsdPositionSource, MockPositionSource, PositionSource
from .infrastructure.storage import create_persistence

# Typer application: tests import this
app = typer.Typer(no_args_is_help=True, add_completion=False, help="TripTrack CLI")
console = Console()

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _configure_logging(cfg: TripTrackConfig, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, cfg.logging.level)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    log_file = cfg.logging.file_path
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def _load(config: Path | None, verbose: bool = False) -> TripTrackConfig:
    """Load the resolved config, falling back to defaults when none exists."""
    resolved = resolve_config_path(config)
    if resolved.exists():
        try:
            cfg = load_config(resolved)
        except ValueError as exc:
            console.print(f"Config validation failed: {exc}")
            raise typer.Exit(code=1) from exc
    else:
        cfg = TripTrackConfig()
    _configure_logging(cfg, verbose)
    return cfg


def _build_source(cfg: TripTrackConfig, mock: bool) -> PositionSource:
    if mock or cfg.gps.mock_mode:
        return MockPositionSource(cfg.gps.mock_lat, cfg.gps.mock_lon, interval=cfg.gps.mock_interval)
    return GpsdPositionSource(cfg.gps.host, cfg.gps.port)


def _build_controller(
    cfg: TripTrackConfig, mock: bool = False, rate: float | None = None
) -> TrackingSessionController:
    try:
        persistence = create_persistence(cfg.storage)
    except PersistenceError as exc:
        console.print(f"[red]Storage unavailable:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    return TrackingSessionController(
        _build_source(cfg, mock),
        persistence,
        rate_per_km=rate or cfg.tracking.rate_per_km,
        options=cfg.tracking.watch_options(),
        initial_timeout_ms=cfg.tracking.initial_timeout_ms,
    )


def _print_summary(state: TripState) -> None:
    table = Table(title="Trip Summary")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    for key, value in trip_summary(state).items():
        table.add_row(key, value or "-")
    console.print(table)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Entry point for `triptrack` command.

    If no subcommand is provided, show help and exit.
    """
    if ctx.invoked_subcommand is None:
        console.print("TripTrack CLI - use `triptrack --help` to see commands.")
        raise typer.Exit(code=0)


@app.command()
def version() -> None:
    """Print version information."""
    try:
        dist_version = md.version("triptrack")
    except md.PackageNotFoundError:
        from . import __version__

        dist_version = __version__
    console.print(f"triptrack {dist_version}")
    raise typer.Exit(code=0)


@app.command(name="config-validate")
def config_validate(path: Path = typer.Argument(Path("configs/triptrack.yml"))) -> None:
    """Validate and show resolved configuration."""
    resolved = resolve_config_path(path)
    console.print(f"Using config: {resolved}")
    try:
        cfg = load_config(resolved)
    except (OSError, ValueError) as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=1) from exc
    console.print("Config OK.")
    console.print(f"- rate: {cfg.tracking.rate_per_km:.2f}/km")
    console.print(f"- storage: {cfg.storage.backend.value} at {cfg.storage.path} (key {cfg.storage.key})")
    console.print(f"- gps: {'mock' if cfg.gps.mock_mode else f'{cfg.gps.host}:{cfg.gps.port}'}")


@app.command(name="config-which")
def config_which(config: Path = typer.Option(Path("configs/triptrack.yml"), "--config", "-c")) -> None:
    """Print resolved config path by priority rules."""
    console.print(str(resolve_config_path(config)))


async def _run_session(controller: TrackingSessionController, duration: float) -> None:
    await controller.start()
    deadline = time.monotonic() + duration if duration > 0 else None
    try:
        while controller.phase == TrackingPhase.TRACKING:
            if deadline is not None and time.monotonic() >= deadline:
                break
            await asyncio.sleep(0.05)
    finally:
        controller.stop()


@app.command()
def track(
    config: Path = typer.Option(Path("configs/triptrack.yml"), "--config", "-c"),
    mock: bool = typer.Option(False, "--mock", help="Use simulated positions"),
    duration: float = typer.Option(0.0, "--duration", help="Seconds to track, 0 = until Ctrl-C"),
    rate: float | None = typer.Option(None, "--rate", min=0.01, help="Override cost per km"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Track a trip live, continuing any unfinished saved trip."""
    cfg = _load(config, verbose)
    controller = _build_controller(cfg, mock=mock, rate=rate)

    def show(state: TripState, phase: TrackingPhase) -> None:
        if phase == TrackingPhase.TRACKING:
            console.print(
                f"{state.distance_km:8.2f} km  cost {state.cost_amount:8.2f}  points {state.fix_count}"
            )
        else:
            console.print(f"[bold]{phase.value}[/bold]")

    controller.on_change(show)
    try:
        asyncio.run(_run_session(controller, duration))
    except KeyboardInterrupt:
        controller.stop()

    _print_summary(controller.get_state())
    error = controller.last_error
    if controller.phase == TrackingPhase.ERRORED and error is not None:
        console.print(f"[red]Tracking failed ({error.kind.value}):[/red] {error.message}")
        raise typer.Exit(code=1)


@app.command()
def status(config: Path = typer.Option(Path("configs/triptrack.yml"), "--config", "-c")) -> None:
    """Show the saved trip."""
    cfg = _load(config)
    controller = _build_controller(cfg)
    state = controller.get_state()
    if state.is_empty:
        console.print("No saved trip.")
        return
    _print_summary(state)


@app.command()
def reset(
    config: Path = typer.Option(Path("configs/triptrack.yml"), "--config", "-c"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Erase the saved trip."""
    cfg = _load(config)
    if not yes and not typer.confirm("Are you sure you want to reset the current trip?"):
        console.print("Reset cancelled.")
        raise typer.Exit(code=1)
    controller = _build_controller(cfg)
    controller.reset()
    console.print("Trip reset.")


@app.command()
def export(
    out: Path = typer.Argument(..., help="Summary CSV path"),
    path_out: Path | None = typer.Option(None, "--path-out", help="Also write the recorded path"),
    config: Path = typer.Option(Path("configs/triptrack.yml"), "--config", "-c"),
) -> None:
    """Export the saved trip as CSV."""
    cfg = _load(config)
    state = _build_controller(cfg).get_state()
    if state.is_empty:
        console.print("No saved trip to export.")
        raise typer.Exit(code=1)
    write_summary_csv(state, out)
    result: dict[str, object] = {"summary": str(out)}
    if path_out is not None:
        result["points"] = write_path_csv(state, path_out)
        result["path"] = str(path_out)
    console.print(result)


def launch() -> None:
    """Entry point when executed as a module/script."""
    cli()  # use the prepared Click command


cli = typer.main.get_command(app)

__all__ = ["app", "cli"]

if __name__ == "__main__":
    launch()
