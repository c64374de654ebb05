"""Repair of malformed segmented output.

Every episode under the output roots is re-encoded at a constant frame rate
into ``<repair_output_dir>/<title>/<episode>``. A repaired episode replaces
the original, which is deleted; a failed one keeps its original.
"""

import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import List, Optional, Tuple
from mediavault.config.models import AppConfig
from mediavault.domain.events import (
    ItemFailed,
    ItemProgress,
    ItemSucceeded,
    ItemWarning,
    JobComplete,
    JobStopped,
)
from mediavault.domain.models import RepairResult, WorkItem
from mediavault.infrastructure.ffmpeg import FFmpegAdapter, TranscodeError
from mediavault.infrastructure.ffprobe import FFprobeAdapter
from mediavault.infrastructure.housekeeping import HousekeepingService
from mediavault.infrastructure.paths import PathMapper
from mediavault.infrastructure.storage import StorageAllocator
from mediavault.pipeline.progress import ProgressStream
from mediavault.pipeline.registry import JobRegistry

MANIFEST_MISSING = "manifest missing"


class RepairPipeline:
    def __init__(
        self,
        config: AppConfig,
        allocator: StorageAllocator,
        ffmpeg_adapter: FFmpegAdapter,
        ffprobe_adapter: FFprobeAdapter,
        job_registry: JobRegistry,
        housekeeping: Optional[HousekeepingService] = None,
        mapper: Optional[PathMapper] = None,
    ):
        self.config = config
        self.allocator = allocator
        self.ffmpeg = ffmpeg_adapter
        self.ffprobe = ffprobe_adapter
        self.job_registry = job_registry
        self.housekeeping = housekeeping or HousekeepingService()
        self.mapper = mapper or PathMapper(config.paths, allocator)
        self.manifest_name = config.paths.manifest_name
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

    def output_roots(self) -> List[Path]:
        if not self.allocator.enabled_volumes():
            return [self.mapper.default_output_root]
        return [v.root_path for v in self.allocator.enabled_volumes()]

    def collect(self) -> Tuple[List[WorkItem], List[RepairResult]]:
        """Two-level walk (title, episode); episodes without a manifest fail immediately."""
        items: List[WorkItem] = []
        failures: List[RepairResult] = []
        for root in self.output_roots():
            try:
                title_dirs = sorted((p for p in root.iterdir() if p.is_dir()), key=lambda p: p.name)
            except OSError as e:
                self.logger.warning(f"Cannot read output root {root}, nothing to repair there: {e}")
                continue
            for title_dir in title_dirs:
                try:
                    episode_dirs = sorted((p for p in title_dir.iterdir() if p.is_dir()), key=lambda p: p.name)
                except OSError as e:
                    failures.append(RepairResult(
                        group_name=title_dir.name,
                        success=False,
                        message=f"cannot read title directory: {e}",
                    ))
                    continue
                for episode_dir in episode_dirs:
                    manifest = episode_dir / self.manifest_name
                    if not manifest.is_file():
                        failures.append(RepairResult(
                            group_name=title_dir.name,
                            sub_name=episode_dir.name,
                            success=False,
                            message=MANIFEST_MISSING,
                        ))
                        continue
                    items.append(WorkItem(
                        group_name=title_dir.name,
                        sub_name=episode_dir.name,
                        source_playlist_path=manifest,
                    ))
        return items, failures

    def _repair_item(self, item: WorkItem, stream: ProgressStream, total: int) -> RepairResult:
        asset = f"{item.group_name}/{item.sub_name}"
        stream.publish(ItemProgress(asset=asset, total=total, status="processing"))

        fallback = self.config.transcode.fallback_fps
        try:
            fps = self.ffprobe.get_frame_rate(item.source_playlist_path)
        except (RuntimeError, ValueError, OSError) as e:
            self.logger.warning(f"Frame rate probe failed for {asset}, using {fallback}fps: {e}")
            stream.publish(ItemWarning(asset=asset, message=f"Frame rate probe failed, using {fallback}fps"))
            fps = fallback

        output_dir = self.mapper.repair_output_root / item.group_name / item.sub_name
        try:
            manifest = self.ffmpeg.repair_segments(item.source_playlist_path, output_dir, fps)
        except (TranscodeError, OSError) as e:
            self.logger.error(f"REPAIR_FAIL: {asset}: {e}")
            stream.publish(ItemFailed(asset=asset, message=str(e)))
            return RepairResult(group_name=item.group_name, sub_name=item.sub_name, success=False, message=str(e))

        original_dir = item.source_playlist_path.parent
        if not self.housekeeping.remove_tree(original_dir):
            stream.publish(ItemWarning(asset=asset, message=f"Failed to delete original output {original_dir}"))
        self.logger.info(f"REPAIR_DONE: {asset} -> {manifest} ({fps}fps)")
        stream.publish(ItemSucceeded(asset=asset, output=str(manifest)))
        return RepairResult(
            group_name=item.group_name,
            sub_name=item.sub_name,
            success=True,
            message=f"repaired at {fps}fps: {manifest}",
        )

    def repair(self, stream: ProgressStream, cancel_signal: Optional[threading.Event] = None) -> List[RepairResult]:
        cancel_signal = cancel_signal or threading.Event()
        items, results = self.collect()
        total = len(items)
        processed = 0
        cancelled = 0
        self.logger.info(f"REPAIR_START: {total} episodes queued, {len(results)} rejected")

        workers = self.config.transcode.repair_workers
        slots = threading.BoundedSemaphore(workers)

        def run(item: WorkItem) -> None:
            nonlocal processed
            try:
                result = self._repair_item(item, stream, total)
                with self._lock:
                    results.append(result)
                    processed += 1
                    current = processed
                stream.publish(ItemProgress(
                    asset=f"{item.group_name}/{item.sub_name}",
                    current=current,
                    total=total,
                    status="done" if result.success else "failed",
                ))
            finally:
                slots.release()

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = []
            for index, item in enumerate(items):
                slots.acquire()
                if cancel_signal.is_set():
                    slots.release()
                    cancelled = total - index
                    self.logger.info(f"REPAIR_STOP: {cancelled} episodes not dispatched")
                    stream.publish(JobStopped(message="Processing stopped", current=index, total=total))
                    break
                futures.append(executor.submit(run, item))

            for future in concurrent.futures.as_completed(futures):
                try:
                    future.result()
                except Exception as e:
                    self.logger.error(f"Repair worker failed with exception: {e}")

        success = sum(1 for r in results if r.success)
        failed = len(results) - success
        self.logger.info(f"REPAIR_END: success={success}, failed={failed}, cancelled={cancelled}")
        stream.publish(JobComplete(
            total=len(results) + cancelled,
            success=success,
            failed=failed,
            skipped=cancelled,
            cancelled=cancelled,
            errors=[f"{r.group_name}/{r.sub_name}: {r.message}" for r in results if not r.success],
            message="Repair finished",
        ))
        return results

    def submit_repair(self) -> Tuple[str, ProgressStream]:
        """Runs `repair` in the background under a registered, stoppable job."""
        job = self.job_registry.create()
        stream = ProgressStream(self.config.stream.buffer_size)

        def run():
            try:
                self.repair(stream, job.cancel_signal)
            except Exception as e:
                self.logger.error(f"Repair job {job.id} aborted: {e}")
                stream.publish(ItemFailed(message=f"Repair aborted: {e}"))
            finally:
                self.job_registry.finish(job.id)
                stream.close()

        threading.Thread(target=run, name=f"repair-{job.id}", daemon=True).start()
        return job.id, stream
