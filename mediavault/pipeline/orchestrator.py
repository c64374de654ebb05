"""Batch orchestrator: turns raw video assets into segmented streaming output.

Each asset ``/static/videos/<title>/<file>`` becomes
``<output root>/<title>/<episode>/playlist.m3u8`` where the output root is the
title's hosting volume (or the default output directory when no volumes are
configured) and ``<episode>`` is the file name without its extension.

Key responsibilities:
- Resolve the target volume once per title per batch
- Skip assets whose manifest already exists without taking a worker slot
- Dispatch the rest onto a bounded pool (slot semaphore + thread pool)
- Report progress through a ProgressStream and honor cooperative stop requests
- Relocate cover art once per title and fold touched titles back into the catalog
"""

import concurrent.futures
import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from mediavault.config.models import AppConfig
from mediavault.domain.events import (
    ItemFailed,
    ItemProgress,
    ItemSkipped,
    ItemSucceeded,
    JobComplete,
    JobStopped,
)
from mediavault.domain.models import BatchSummary, Volume
from mediavault.infrastructure.ffmpeg import FFmpegAdapter, TranscodeError
from mediavault.infrastructure.housekeeping import HousekeepingService
from mediavault.infrastructure.paths import PathMapper, normalize_url_path
from mediavault.infrastructure.storage import StorageAllocator
from mediavault.pipeline.catalog import COVER_NAMES, CatalogReconciler
from mediavault.pipeline.progress import ProgressStream
from mediavault.pipeline.registry import CoverMoveRegistry, JobRegistry


@dataclass
class _Dispatch:
    index: int
    asset: str
    title: str
    episode: str
    source: Path
    volume: Optional[Volume]
    output_dir: Path


@dataclass
class _Counters:
    total: int
    success: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    errors: List[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


class BatchOrchestrator:
    """Bounded-concurrency transcode engine for batches of raw assets.

    Cancellation is cooperative: the signal is checked before every dispatch.
    Assets not yet dispatched when it is observed count as skipped (and as
    cancelled); transcodes already running are never interrupted.

    Args:
        config: AppConfig (transcode workers, paths, stream buffer size).
        allocator: StorageAllocator deciding which volume hosts a new title.
        mapper: PathMapper translating asset references to filesystem paths.
        reconciler: CatalogReconciler used to fold new output into the catalog.
        ffmpeg_adapter: FFmpegAdapter running the segmentation.
        job_registry: Shared JobRegistry for out-of-band stop requests.
        cover_registry: Shared CoverMoveRegistry (one cover move per title).
        housekeeping: HousekeepingService for partial output cleanup.
    """

    def __init__(
        self,
        config: AppConfig,
        allocator: StorageAllocator,
        mapper: PathMapper,
        reconciler: CatalogReconciler,
        ffmpeg_adapter: FFmpegAdapter,
        job_registry: JobRegistry,
        cover_registry: CoverMoveRegistry,
        housekeeping: Optional[HousekeepingService] = None,
    ):
        self.config = config
        self.allocator = allocator
        self.mapper = mapper
        self.reconciler = reconciler
        self.ffmpeg = ffmpeg_adapter
        self.job_registry = job_registry
        self.cover_registry = cover_registry
        self.housekeeping = housekeeping or HousekeepingService()
        self.manifest_name = config.paths.manifest_name
        self.logger = logging.getLogger(__name__)
        self._background: List[threading.Thread] = []
        self._background_lock = threading.Lock()

    def _resolve_volume(self, title: str, placements: Dict[str, Optional[Volume]]) -> Optional[Volume]:
        if not self.allocator.enabled_volumes():
            return None
        hosting = self.allocator.find_volume_containing(title)
        if hosting is not None:
            return hosting
        if title not in placements:
            placements[title] = self.allocator.resolve_volume_for(title)
        return placements[title]

    def _publish_stop(self, stream: ProgressStream, counters: _Counters, index: int) -> None:
        remaining = counters.total - index
        with counters.lock:
            counters.skipped += remaining
            counters.cancelled += remaining
        self.logger.info(f"BATCH_STOP: stop requested, {remaining} assets not dispatched")
        stream.publish(JobStopped(message="Processing stopped", current=index, total=counters.total))

    def _fail(self, stream: ProgressStream, counters: _Counters, asset: str, message: str) -> None:
        error = f"{asset}: {message}"
        with counters.lock:
            counters.failed += 1
            counters.errors.append(error)
        self.logger.error(f"SEGMENT_FAIL: {error}")
        stream.publish(ItemFailed(asset=asset, message=message))

    def run_batch(
        self,
        asset_paths: Sequence[str],
        use_acceleration: bool,
        stream: ProgressStream,
        cancel_signal: Optional[threading.Event] = None,
    ) -> BatchSummary:
        """Processes a batch synchronously and returns its summary.

        Emits exactly one terminal `complete` event; the stream is left open.
        """
        cancel_signal = cancel_signal or threading.Event()
        counters = _Counters(total=len(asset_paths))
        placements: Dict[str, Optional[Volume]] = {}
        touched: List[str] = []
        workers = self.config.transcode.workers
        slots = threading.BoundedSemaphore(workers)
        self.logger.info(f"BATCH_START: {counters.total} assets (acceleration={'ON' if use_acceleration else 'OFF'})")

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = []
            for index, raw_path in enumerate(asset_paths):
                if cancel_signal.is_set():
                    self._publish_stop(stream, counters, index)
                    break

                asset = normalize_url_path(raw_path)
                title = self.mapper.title_from_asset(asset)
                episode = self.mapper.episode_from_asset(asset)
                if not title or not episode:
                    self._fail(stream, counters, asset, "cannot determine title for asset")
                    continue
                if title not in touched:
                    touched.append(title)

                volume = self._resolve_volume(title, placements)
                output_dir = self.mapper.output_root_for(volume) / title / episode
                if (output_dir / self.manifest_name).exists():
                    with counters.lock:
                        counters.skipped += 1
                    self.logger.info(f"SEGMENT_SKIP: {asset} (output exists)")
                    stream.publish(ItemSkipped(asset=asset, message="Segmented output already exists, skipping"))
                    continue

                slots.acquire()
                if cancel_signal.is_set():
                    slots.release()
                    self._publish_stop(stream, counters, index)
                    break

                task = _Dispatch(
                    index=index,
                    asset=asset,
                    title=title,
                    episode=episode,
                    source=self.mapper.to_physical(asset),
                    volume=volume,
                    output_dir=output_dir,
                )
                futures.append(executor.submit(self._process_asset, task, use_acceleration, stream, counters, slots))

            for future in concurrent.futures.as_completed(futures):
                try:
                    future.result()
                except Exception as e:
                    self.logger.error(f"Batch worker failed with exception: {e}")

        summary = BatchSummary(
            total=counters.total,
            success=counters.success,
            failed=counters.failed,
            skipped=counters.skipped,
            cancelled=counters.cancelled,
            errors=list(counters.errors),
            touched_titles=touched,
        )
        self.logger.info(
            f"BATCH_END: total={summary.total}, success={summary.success}, failed={summary.failed}, "
            f"skipped={summary.skipped}, cancelled={summary.cancelled}"
        )
        stream.publish(JobComplete(
            total=summary.total,
            success=summary.success,
            failed=summary.failed,
            skipped=summary.skipped,
            cancelled=summary.cancelled,
            errors=summary.errors,
            message="Batch finished",
        ))
        return summary

    def _process_asset(
        self,
        task: _Dispatch,
        use_acceleration: bool,
        stream: ProgressStream,
        counters: _Counters,
        slots: threading.BoundedSemaphore,
    ) -> None:
        try:
            stream.publish(ItemProgress(
                asset=task.asset,
                current=task.index + 1,
                total=counters.total,
                status="processing",
            ))
            self.logger.info(f"SEGMENT_START: {task.asset} -> {task.output_dir}")
            try:
                self.ffmpeg.generate_segments(task.source, task.output_dir, accelerate=use_acceleration)
            except (TranscodeError, OSError) as e:
                self.housekeeping.remove_tree(task.output_dir)
                self._fail(stream, counters, task.asset, str(e))
                return

            self.housekeeping.cleanup_temp_files(task.output_dir)
            with counters.lock:
                counters.success += 1
            output_ref = self.mapper.output_ref(task.volume, task.title, task.episode, self.manifest_name)
            self.logger.info(f"SEGMENT_DONE: {task.asset} -> {output_ref}")
            self.relocate_cover(task.title, task.volume)
            if self.config.transcode.delete_source_after_success:
                self._delete_source(task.source)
            stream.publish(ItemSucceeded(asset=task.asset, output=output_ref))
        finally:
            slots.release()

    def _delete_source(self, source: Path) -> None:
        try:
            source.unlink()
            self.logger.info(f"Deleted source after segmentation: {source}")
        except OSError as e:
            self.logger.warning(f"Failed to delete source {source}: {e}")

    def relocate_cover(self, title: str, volume: Optional[Volume]) -> None:
        """Moves the title's cover from the raw folder next to its output; once per title."""
        if not self.cover_registry.claim(title):
            return
        raw_dir = self.mapper.raw_root / title
        if not raw_dir.is_dir():
            self.logger.warning(f"Raw folder {raw_dir} missing, cannot move cover for {title}")
            return
        target_dir = self.mapper.output_root_for(volume) / title
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.warning(f"Cannot create {target_dir} for cover of {title}: {e}")
            return

        for name in COVER_NAMES:
            cover = raw_dir / name
            if not cover.is_file():
                continue
            target = target_dir / name
            try:
                cover.rename(target)
                self.logger.info(f"Cover moved: {cover} -> {target}")
            except OSError as e:
                self.logger.warning(f"Cover rename failed ({e}), copying instead")
                try:
                    shutil.copyfile(cover, target)
                    cover.unlink()
                    self.logger.info(f"Cover copied: {cover} -> {target}")
                except OSError as copy_error:
                    self.logger.warning(f"Cover copy failed for {title}: {copy_error}")
            break

    def _start_background(self, target, name: str) -> threading.Thread:
        thread = threading.Thread(target=target, name=name, daemon=True)
        with self._background_lock:
            self._background = [t for t in self._background if t.is_alive()]
            self._background.append(thread)
        thread.start()
        return thread

    def reconcile_async(self, titles: List[str]) -> threading.Thread:
        def reconcile():
            try:
                entries = self.reconciler.scan_subset(titles)
                self.logger.info(f"Reconciled {len(entries)} of {len(titles)} touched titles")
            except Exception as e:
                self.logger.error(f"Incremental reconciliation failed: {e}")

        return self._start_background(reconcile, "reconcile")

    def submit_batch(self, asset_paths: Sequence[str], use_acceleration: bool) -> Tuple[str, ProgressStream]:
        """Starts a batch in the background; returns its job id and event stream."""
        job = self.job_registry.create()
        stream = ProgressStream(self.config.stream.buffer_size)
        paths = list(asset_paths)

        def run():
            summary = None
            try:
                summary = self.run_batch(paths, use_acceleration, stream, job.cancel_signal)
            except Exception as e:
                self.logger.error(f"Batch {job.id} aborted: {e}")
                stream.publish(ItemFailed(message=f"Batch aborted: {e}"))
            finally:
                self.job_registry.finish(job.id)
                stream.close()
            if summary is not None and summary.touched_titles:
                self.reconcile_async(summary.touched_titles)

        self._start_background(run, f"batch-{job.id}")
        return job.id, stream

    def request_stop(self, job_id: str) -> bool:
        return self.job_registry.stop(job_id)

    def join_background(self, timeout: Optional[float] = None) -> None:
        """Waits for batch and reconcile threads started by this orchestrator."""
        while True:
            with self._background_lock:
                pending = [t for t in self._background if t.is_alive()]
            if not pending:
                return
            for thread in pending:
                thread.join(timeout)
            if timeout is not None:
                return
