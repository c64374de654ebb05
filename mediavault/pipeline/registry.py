import logging
import threading
import time
from typing import Dict, List, Optional, Set
from mediavault.domain.models import Job


class JobRegistry:
    """Live batch and repair jobs keyed by id, each with its own cancel signal."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._last_id = 0

    def _next_id(self) -> str:
        # Time-derived; bumped when two jobs land on the same nanosecond
        candidate = time.time_ns()
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return str(candidate)

    def create(self) -> Job:
        with self._lock:
            job = Job(id=self._next_id())
            self._jobs[job.id] = job
        self.logger.info(f"JOB_START: {job.id}")
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def stop(self, job_id: str) -> bool:
        """Signals cancellation and forgets the job; False for unknown ids."""
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is None:
            self.logger.warning(f"Stop requested for unknown job {job_id}")
            return False
        job.cancel_signal.set()
        self.logger.info(f"JOB_STOP: {job_id}")
        return True

    def finish(self, job_id: str) -> None:
        with self._lock:
            removed = self._jobs.pop(job_id, None)
        if removed is not None:
            self.logger.info(f"JOB_END: {job_id}")

    def active(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())


class CoverMoveRegistry:
    """Remembers titles whose cover was already relocated; first claim wins."""

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed: Set[str] = set()

    def claim(self, title: str) -> bool:
        with self._lock:
            if title in self._claimed:
                return False
            self._claimed.add(title)
            return True
