"""Typer CLI: segment a video into scenes and inspect the effective configuration."""

import json
import logging
import signal
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from scenescout.core.config import get_config
from scenescout.core.logging import get_flight_logger, setup_logging
from scenescout.models.entities import SegmentationMode, SegmentationResult
from scenescout.video.errors import Cancelled, SegmentationError
from scenescout.video.segmenter import SceneSegmenter

_log = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True, help="Split videos into scenes with thumbnails and a diff timeline.")

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def _parse_mode(value: str) -> SegmentationMode:
    try:
        return SegmentationMode.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def _scene_table(result: SegmentationResult) -> Table:
    table = Table(title=f"{len(result.scenes)} scene(s), {result.duration:.2f}s")
    table.add_column("Id", justify="right")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Length", justify="right")
    table.add_column("Thumbnail")
    for scene in result.scenes:
        if scene.thumbnail_data_url:
            thumb = f"{len(scene.thumbnail_data_url) // 1024} KiB"
        else:
            thumb = "[yellow]placeholder[/yellow]"
        table.add_row(
            str(scene.id),
            f"{scene.start_time:.2f}",
            f"{scene.end_time:.2f}",
            f"{scene.duration:.2f}",
            thumb,
        )
    return table


@contextmanager
def _interrupt_flag() -> Iterator[threading.Event]:
    """
    SIGINT and SIGTERM set the yielded event instead of raising (main thread only).

    The segmenter polls it between samples and raises Cancelled; previous handlers are restored on exit.
    """
    stop = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield stop
        return

    def _handler(_signum: int, _frame: Any) -> None:
        stop.set()

    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    for sig in previous:
        signal.signal(sig, _handler)
    try:
        yield stop
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _dump_flight_log(video: Path) -> None:
    flight = get_flight_logger()
    if flight is None:
        return
    path = flight.dump(uuid.uuid4().hex[:8], video_name=video.stem)
    typer.echo(f"Flight log written to {path}", err=True)


@app.command("segment")
def segment(
    video: Path = typer.Argument(..., exists=True, dir_okay=False, help="Video file to segment"),
    mode: str = typer.Option(
        "adaptive",
        "--mode",
        "-m",
        help="'adaptive' (visual cut detection) or a fixed scene length in seconds, e.g. 5, 8, 10",
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the JSON result to this file"),
    config_path: Path | None = typer.Option(None, "--config", help="YAML config file (default: scenescout.yml)"),
    no_thumbnails: bool = typer.Option(
        False, "--no-thumbnails", help="Omit thumbnailDataUrl from the JSON output"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="No progress bar or scene table"),
    dump_log: bool = typer.Option(False, "--dump-log", help="Write the in-memory flight log on failure"),
) -> None:
    """Segment VIDEO and print (or write) the scenes + diff timeline as JSON."""
    seg_mode = _parse_mode(mode)
    cfg = get_config(config_path) if config_path is not None else get_config()
    setup_logging()
    console = Console(stderr=True, quiet=quiet)
    segmenter = SceneSegmenter(cfg)

    try:
        with _interrupt_flag() as stop, Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as bar:
            task = bar.add_task(f"Segmenting {video.name} ({seg_mode.describe()})", total=100)
            result = segmenter.segment(
                video,
                seg_mode,
                on_progress=lambda p: bar.update(task, completed=p),
                check_interrupt=stop.is_set,
            )
    except Cancelled as e:
        typer.secho(f"Cancelled: {e}", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(EXIT_CANCELLED)
    except SegmentationError as e:
        typer.secho(f"Failed to process video: {e}", fg=typer.colors.RED, err=True)
        if dump_log:
            _dump_flight_log(video)
        raise typer.Exit(EXIT_FAILURE)

    console.print(_scene_table(result))
    missing = sum(1 for s in result.scenes if s.thumbnail_data_url is None)
    if missing:
        typer.secho(f"{missing} scene(s) have no thumbnail.", fg=typer.colors.YELLOW, err=True)

    payload = result.to_json(include_thumbnails=not no_thumbnails)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(payload + "\n")
        typer.secho(f"Wrote {len(result.scenes)} scene(s) to {output}", fg=typer.colors.GREEN, err=True)
    else:
        typer.echo(payload)


@app.command("config")
def show_config(
    config_path: Path | None = typer.Option(None, "--config", help="YAML config file (default: scenescout.yml)"),
) -> None:
    """Print the effective configuration as JSON."""
    try:
        cfg = get_config(config_path) if config_path is not None else get_config()
    except FileNotFoundError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_FAILURE)
    typer.echo(json.dumps(cfg.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    app()
