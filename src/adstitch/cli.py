import click
import json
import sys
from pathlib import Path
from typing import Optional, Tuple

# Lazy load rich to improve startup time
_console = None

def get_console():
    global _console
    if _console is None:
        from rich.console import Console
        _console = Console()
    return _console

ASPECTS = ["9:16", "16:9", "1:1"]


def _fail(message: str) -> None:
    get_console().print(f"[bold red]✗[/] {message}")
    sys.exit(1)


def _print_status(view) -> None:
    from rich.table import Table

    console = get_console()
    color = {"completed": "green", "failed": "red"}.get(view.status.value, "yellow")
    console.print(f"Job [bold]{view.job_id}[/]: [{color}]{view.status.value}[/] ({view.overall_progress}%)")
    table = Table()
    table.add_column("Segment", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Video")
    table.add_column("Voice")
    table.add_column("Error", style="red")
    for seg in view.segments:
        table.add_row(
            str(seg.segment_id), seg.status.value, seg.video_url or "-", seg.voice_url or "-", seg.error or ""
        )
    console.print(table)
    if view.error:
        console.print(f"[red]{view.error}[/]")


@click.group()
def cli():
    """AdStitch - segment generation, continuity and composition for short video ads"""
    pass


@cli.command()
@click.argument("clips", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", required=True, type=click.Path(dir_okay=False), help="Output video path")
@click.option("--smart-stitch/--no-smart-stitch", default=False, help="Cut each transition at the best matching frame")
@click.option("--music", type=click.Path(exists=True, dir_okay=False), help="Background music file")
@click.option("--music-volume", default=30, type=click.IntRange(0, 100), help="Music volume (0-100)")
@click.option("--aspect", default="9:16", type=click.Choice(ASPECTS), help="Output aspect ratio")
def compose(clips: Tuple[str, ...], output: str, smart_stitch: bool, music: Optional[str], music_volume: int, aspect: str):
    """Compose CLIPS (in order) into one video."""
    from rich.progress import Progress, SpinnerColumn, TextColumn
    from rich.table import Table

    from .composer import compose_video
    from .core.models import Clip, CompositionOptions
    from .exceptions import AdStitchError
    from .ffmpeg_config import resolution_for_aspect
    from .stitching import compose_with_smart_stitching
    from .video_metadata import get_duration

    console = get_console()
    width, height = resolution_for_aspect(aspect)
    try:
        timeline = []
        cursor = 0.0
        for path in clips:
            duration = get_duration(path)
            timeline.append(Clip(local_path=path, start_time=cursor, end_time=cursor + duration))
            cursor += duration
        options = CompositionOptions(
            output_path=output,
            background_music_path=music,
            music_volume=music_volume,
            output_width=width,
            output_height=height,
        )
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), transient=True, console=console) as progress:
            progress.add_task(description=f"Composing {len(timeline)} clip(s)...", total=None)
            if smart_stitch:
                result, adjustments = compose_with_smart_stitching(timeline, options)
            else:
                result, adjustments = compose_video(timeline, options), []
    except AdStitchError as e:
        _fail(str(e))

    if adjustments:
        table = Table(title="Stitch points")
        table.add_column("Clip", style="cyan")
        table.add_column("Transition")
        table.add_column("Trimmed (s)", justify="right")
        table.add_column("Similarity", justify="right")
        for adj in adjustments:
            table.add_row(str(adj.clip_index), adj.transition_name, f"{adj.trimmed_seconds:.3f}", f"{adj.similarity:.3f}")
        console.print(table)
    console.print(f"[bold green]✓[/] {result}")


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--format", "fmt", required=True, type=click.Choice(["webm", "gif", "hls"]))
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Output path (default: next to input)")
def export(input_path: str, fmt: str, output: Optional[str]):
    """Re-encode a composed video as webm, gif or HLS."""
    from .composer import export_to_format
    from .exceptions import AdStitchError

    suffix = ".m3u8" if fmt == "hls" else f".{fmt}"
    output = output or str(Path(input_path).with_suffix(suffix))
    try:
        result = export_to_format(input_path, output, fmt)
    except AdStitchError as e:
        _fail(str(e))
    get_console().print(f"[bold green]✓[/] {result}")


@cli.command()
@click.argument("storyboard_file", type=click.File("r"))
def generate(storyboard_file):
    """Generate every segment of a storyboard JSON file and wait for the job."""
    from pydantic import ValidationError
    from rich.progress import Progress, SpinnerColumn, TextColumn

    from .api import get_services
    from .core.models import JobStatusView, Storyboard

    console = get_console()
    try:
        data = json.load(storyboard_file)
        storyboard = Storyboard.model_validate(data.get("storyboard", data))
    except (ValueError, ValidationError) as e:
        _fail(f"Invalid storyboard: {e}")

    orchestrator = get_services().orchestrator
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), transient=True, console=console) as progress:
        progress.add_task(description=f"Generating {len(storyboard.segments)} segment(s)...", total=None)
        job = orchestrator.submit(storyboard, wait=True)
    _print_status(JobStatusView.from_job(job))
    if job.status.value == "failed":
        sys.exit(1)


@cli.command()
@click.argument("job_id")
def status(job_id: str):
    """Show a generation job (requires a shared job store such as Redis)."""
    from .api import get_services
    from .exceptions import JobNotFoundError

    try:
        view = get_services().orchestrator.get_status(job_id)
    except JobNotFoundError as e:
        _fail(str(e))
    _print_status(view)


@cli.command()
@click.argument("job_id")
@click.argument("segment", type=int)
def recut(job_id: str, segment: int):
    """Re-cut SEGMENT of JOB_ID for continuity with the next segment."""
    from .api import get_services
    from .exceptions import AdStitchError

    console = get_console()
    try:
        result = get_services().continuity.optimize(job_id, segment)
    except AdStitchError as e:
        _fail(str(e))
    if result.applied:
        console.print(
            f"[bold green]✓[/] Trimmed at {result.trim_timestamp:.3f}s "
            f"(score {result.similarity_score:.2f}): {result.trimmed_video_url}"
        )
    else:
        console.print(f"[yellow]Kept original cut[/]: {result.error}")


@cli.command()
def costs():
    """Summarize tracked provider costs."""
    from rich.table import Table

    from .cost_tracking import get_cost_tracker

    summary = get_cost_tracker().summary()
    table = Table(title=f"Provider costs ({summary['events']} events)")
    table.add_column("Operation", style="cyan")
    table.add_column("USD", justify="right")
    for operation, amount in sorted(summary["byOperation"].items()):
        table.add_row(operation, f"{amount:.2f}")
    table.add_row("[bold]total[/]", f"[bold]{summary['total']:.2f}[/]")
    get_console().print(table)


@cli.command()
@click.option("--host", default="0.0.0.0")
@click.option("--port", default=None, type=int, help="Port (default: API_PORT or 8000)")
@click.option("--reload/--no-reload", default=False)
def serve(host: str, port: Optional[int], reload: bool):
    """Start the HTTP API."""
    from .api import run

    get_console().print(f"🚀 Starting AdStitch API on {host}:{port or 'API_PORT'}")
    run(host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
