import typer
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional
from rich.console import Console
from rich.table import Table
from mediavault.config.loader import load_config
from mediavault.config.models import AppConfig
from mediavault.domain.events import JobComplete, ProgressEvent
from mediavault.domain.models import GIB
from mediavault.infrastructure.database import CatalogStore
from mediavault.infrastructure.ffmpeg import FFmpegAdapter
from mediavault.infrastructure.ffprobe import FFprobeAdapter
from mediavault.infrastructure.file_scanner import FileScanner
from mediavault.infrastructure.housekeeping import HousekeepingService
from mediavault.infrastructure.logging import setup_logging
from mediavault.infrastructure.paths import PathMapper
from mediavault.infrastructure.storage import StorageAllocator
from mediavault.pipeline.catalog import CatalogReconciler
from mediavault.pipeline.orchestrator import BatchOrchestrator
from mediavault.pipeline.progress import ProgressStream, to_frame
from mediavault.pipeline.registry import CoverMoveRegistry, JobRegistry
from mediavault.pipeline.repair import RepairPipeline

app = typer.Typer(help="mediavault - multi-volume media library and HLS segmenter")
console = Console()

DEFAULT_CONFIG = Path("conf/mediavault.yaml")

EVENT_STYLES = {
    "progress": "cyan",
    "skipped": "yellow",
    "warning": "yellow",
    "error": "red",
    "success": "green",
    "stop": "magenta",
    "complete": "bold white",
    "heartbeat": "dim",
}


@dataclass
class Services:
    """Process-wide components, built once and shared by every command."""

    config: AppConfig
    allocator: StorageAllocator
    mapper: PathMapper
    store: CatalogStore
    reconciler: CatalogReconciler
    scanner: FileScanner
    orchestrator: BatchOrchestrator
    repair: RepairPipeline
    jobs: JobRegistry


def build_services(config: AppConfig, connect_store: bool = True) -> Services:
    allocator = StorageAllocator(config.storage)
    allocator.refresh_usage()
    mapper = PathMapper(config.paths, allocator)
    store = CatalogStore(config.catalog.database_url)
    if connect_store:
        store.connect()
    housekeeping = HousekeepingService()
    reconciler = CatalogReconciler(config, allocator, store, mapper, housekeeping)
    ffmpeg = FFmpegAdapter(config.transcode, manifest_name=config.paths.manifest_name, debug=config.general.debug)
    ffprobe = FFprobeAdapter(config.transcode.ffprobe_path)
    jobs = JobRegistry()
    orchestrator = BatchOrchestrator(
        config=config,
        allocator=allocator,
        mapper=mapper,
        reconciler=reconciler,
        ffmpeg_adapter=ffmpeg,
        job_registry=jobs,
        cover_registry=CoverMoveRegistry(),
        housekeeping=housekeeping,
    )
    repair = RepairPipeline(config, allocator, ffmpeg, ffprobe, jobs, housekeeping, mapper)
    return Services(
        config=config,
        allocator=allocator,
        mapper=mapper,
        store=store,
        reconciler=reconciler,
        scanner=FileScanner(config.transcode.extensions, url_prefix=config.paths.raw_dir),
        orchestrator=orchestrator,
        repair=repair,
        jobs=jobs,
    )


def _init(config_path: Path, debug: bool) -> Services:
    try:
        config = load_config(config_path)
    except FileNotFoundError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except ValueError as e:
        typer.secho(f"Invalid config {config_path}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if debug:
        config.general.debug = True
    log_path = Path(config.general.log_path) if config.general.log_path else None
    setup_logging(Path(config.paths.base_dir) / "logs", debug=config.general.debug, log_path=log_path)
    return build_services(config)


def _print_entries(entries, title: str) -> None:
    table = Table(title=title)
    table.add_column("Title", style="bold")
    table.add_column("Episodes", justify="right")
    table.add_column("Volume")
    table.add_column("Primary video")
    table.add_column("Cover")
    for entry in entries:
        table.add_row(
            entry.title,
            str(entry.episode_count),
            entry.hosting_volume or "-",
            entry.primary_video_ref,
            entry.cover_ref,
        )
    console.print(table)


def _render(event: ProgressEvent) -> str:
    style = EVENT_STYLES.get(event.type, "white")
    parts = [f"[{style}]{event.type:<9}[/{style}]"]
    if event.current is not None and event.total is not None:
        parts.append(f"{event.current}/{event.total}")
    if event.asset:
        parts.append(event.asset)
    if event.message:
        parts.append(f"- {event.message}")
    return " ".join(parts)


def _drain(stream: ProgressStream, services: Services, job_id: str, frames: bool) -> Optional[JobComplete]:
    """Relays events until the stream closes; Ctrl+C turns into a stop request."""
    complete = None
    events: Iterable[ProgressEvent] = stream.iter_with_heartbeat(services.config.stream.heartbeat_interval_s)
    while True:
        try:
            for event in events:
                if isinstance(event, JobComplete):
                    complete = event
                if frames:
                    typer.echo(to_frame(event), nl=False)
                elif event.type != "heartbeat":
                    console.print(_render(event))
            return complete
        except KeyboardInterrupt:
            console.print("[yellow]Stop requested, waiting for running jobs to finish...[/yellow]")
            services.jobs.stop(job_id)
            events = stream.iter_with_heartbeat(services.config.stream.heartbeat_interval_s)


def _print_complete(complete: Optional[JobComplete]) -> None:
    if complete is None:
        return
    console.print(
        f"[bold]Done:[/bold] total={complete.total} success={complete.success} "
        f"failed={complete.failed} skipped={complete.skipped} cancelled={complete.cancelled}"
    )
    for error in complete.errors:
        console.print(f"  [red]{error}[/red]")


ConfigOption = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config")
DebugOption = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")


@app.command()
def scan(
    folders: Optional[List[str]] = typer.Argument(None, help="Title folders to rescan (default: all)"),
    config_path: Path = ConfigOption,
    debug: bool = DebugOption,
):
    """Reconcile the catalog with the output trees on disk."""
    services = _init(config_path, debug)
    entries = services.reconciler.scan_subset(folders) if folders else services.reconciler.scan_all()
    _print_entries(entries, f"Scanned {len(entries)} titles")


@app.command("list")
def list_titles(config_path: Path = ConfigOption, debug: bool = DebugOption):
    """List catalog titles (store first, filesystem when the store is down)."""
    services = _init(config_path, debug)
    entries = services.reconciler.list_entries_from_store()
    _print_entries(entries, f"{len(entries)} titles")


@app.command()
def search(keyword: str, config_path: Path = ConfigOption, debug: bool = DebugOption):
    """Case-insensitive search over titles and folder names."""
    services = _init(config_path, debug)
    entries = services.reconciler.search(keyword)
    _print_entries(entries, f"{len(entries)} titles matching '{keyword}'")


@app.command()
def videos(folder: str, config_path: Path = ConfigOption, debug: bool = DebugOption):
    """List the playable episodes of one title."""
    services = _init(config_path, debug)
    refs = services.reconciler.list_videos(folder)
    if not refs:
        typer.secho(f"No episodes found for {folder}", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    table = Table(title=folder)
    table.add_column("Episode", style="bold")
    table.add_column("Playlist")
    for ref in refs:
        table.add_row(ref.display_name, ref.logical_path)
    console.print(table)


@app.command()
def assets(config_path: Path = ConfigOption, debug: bool = DebugOption):
    """List raw video assets waiting under the raw directory."""
    services = _init(config_path, debug)
    count = 0
    for ref in services.scanner.scan(services.mapper.raw_root):
        console.print(ref.logical_path)
        count += 1
    console.print(f"[bold]{count}[/bold] raw assets")


@app.command()
def generate(
    asset_paths: List[str] = typer.Argument(..., help="Raw asset references, e.g. /static/videos/<title>/<file>"),
    accel: bool = typer.Option(False, "--accel/--no-accel", help="Try hardware acceleration first"),
    frames: bool = typer.Option(False, "--frames", help="Print raw server-push frames instead of text"),
    config_path: Path = ConfigOption,
    debug: bool = DebugOption,
):
    """Segment raw assets into HLS output."""
    services = _init(config_path, debug)
    job_id, stream = services.orchestrator.submit_batch(asset_paths, use_acceleration=accel)
    if not frames:
        console.print(f"Job [bold]{job_id}[/bold] started for {len(asset_paths)} assets")
    complete = _drain(stream, services, job_id, frames)
    services.orchestrator.join_background()
    if not frames:
        _print_complete(complete)
    if complete is None or complete.failed:
        raise typer.Exit(code=1)


@app.command()
def repair(
    frames: bool = typer.Option(False, "--frames", help="Print raw server-push frames instead of text"),
    config_path: Path = ConfigOption,
    debug: bool = DebugOption,
):
    """Re-encode every segmented episode at a constant frame rate."""
    services = _init(config_path, debug)
    job_id, stream = services.repair.submit_repair()
    complete = _drain(stream, services, job_id, frames)
    if not frames:
        _print_complete(complete)
    if complete is None or complete.failed:
        raise typer.Exit(code=1)


@app.command()
def volumes(
    refresh: bool = typer.Option(False, "--refresh", help="Re-measure usage before printing"),
    config_path: Path = ConfigOption,
    debug: bool = DebugOption,
):
    """Show configured storage volumes and their usage."""
    services = _init(config_path, debug)
    if refresh:
        services.allocator.refresh_usage()
    table = Table(title=f"Volumes (strategy: {services.allocator.strategy})")
    table.add_column("Name", style="bold")
    table.add_column("Path")
    table.add_column("Used", justify="right")
    table.add_column("Capacity", justify="right")
    table.add_column("Enabled")
    for volume in services.allocator.all_volumes():
        table.add_row(
            volume.name,
            str(volume.root_path),
            f"{volume.used_bytes / GIB:.2f}GB ({volume.usage_ratio:.0%})",
            f"{volume.capacity_bytes // GIB}GB",
            "yes" if volume.enabled else "no",
        )
    console.print(table)


@app.command()
def delete(
    folder: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    config_path: Path = ConfigOption,
    debug: bool = DebugOption,
):
    """Delete a title: raw folder, every output tree and its catalog row."""
    services = _init(config_path, debug)
    if not yes:
        typer.confirm(f"Delete {folder} from disk and catalog?", abort=True)
    try:
        removed = services.reconciler.delete_title(folder)
    except ValueError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if not removed:
        typer.secho(f"Nothing found for {folder}", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    typer.secho(f"Deleted {folder}", fg=typer.colors.GREEN)


@app.command()
def update(
    folder: str,
    title: Optional[str] = typer.Option(None, "--title", help="New display title"),
    summary: Optional[str] = typer.Option(None, "--summary", help="New summary"),
    config_path: Path = ConfigOption,
    debug: bool = DebugOption,
):
    """Edit the stored title or summary of a catalog entry."""
    services = _init(config_path, debug)
    if not services.reconciler.update_entry(folder, title=title, summary=summary):
        typer.secho(f"Could not update {folder}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(f"Updated {folder}", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
