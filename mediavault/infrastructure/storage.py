"""Multi-volume storage allocation.

Owns the configured volumes, their cached usage figures and the placement
policy that decides which volume hosts a new title. Capacity is advisory
metadata: a volume past its `capacity_bytes` is still eligible.
"""

import logging
import os
import random
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from mediavault.config.models import StorageConfig
from mediavault.domain.models import GIB, Volume


class StorageAllocator:
    """Answers "which volume should host asset X" under a placement strategy.

    Strategies (only enabled volumes are considered):
    - least-used: minimum `used_bytes`, first-encountered wins ties
    - round-robin: shared cursor advanced modulo the enabled volume count
    - random: uniform choice
    - default: the configured default volume, else the first enabled one

    All access to the volume list, usage figures and the round-robin cursor is
    serialized by one lock.
    """

    def __init__(self, config: StorageConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.strategy = config.strategy
        self.logger = logging.getLogger(__name__)
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._cursor = 0
        self._volumes: List[Volume] = [
            Volume(
                name=vc.name,
                root_path=Path(vc.path),
                capacity_bytes=vc.max_size_gb * GIB,
                priority=vc.priority,
                enabled=vc.enabled,
            )
            for vc in config.volumes
        ]
        for volume in self._volumes:
            self.logger.info(
                f"Storage: volume {volume.name} at {volume.root_path} "
                f"(capacity={volume.capacity_bytes // GIB}GB, enabled={volume.enabled})"
            )
        self.logger.info(
            f"Storage initialized: {len(self.enabled_volumes())} enabled volumes, strategy={self.strategy}"
        )

    def all_volumes(self) -> List[Volume]:
        with self._lock:
            return list(self._volumes)

    def enabled_volumes(self) -> List[Volume]:
        with self._lock:
            return [v for v in self._volumes if v.enabled]

    def volume_by_name(self, name: str) -> Optional[Volume]:
        with self._lock:
            for volume in self._volumes:
                if volume.name == name:
                    return volume
        return None

    def find_volume_containing(self, asset_key: str) -> Optional[Volume]:
        """Probes each enabled volume's filesystem for `<root>/<asset_key>`."""
        for volume in self.enabled_volumes():
            if (volume.root_path / asset_key).exists():
                return volume
        return None

    def resolve_volume_for(self, asset_key: str) -> Optional[Volume]:
        """Pick a volume for a new asset; None means "use the default directory"."""
        with self._lock:
            enabled = [v for v in self._volumes if v.enabled]
            if not enabled:
                self.logger.warning(f"No enabled storage volume for {asset_key}; using default directory")
                return None

            if self.strategy == "round-robin":
                volume = self._round_robin(enabled)
            elif self.strategy == "random":
                volume = self._rng.choice(enabled)
            elif self.strategy == "default":
                volume = self._pinned(enabled)
            else:
                volume = self._least_used(enabled)

        self.logger.info(
            f"Storage: placing {asset_key} on {volume.name} "
            f"(used={volume.used_bytes / GIB:.2f}GB/{volume.capacity_bytes // GIB}GB)"
        )
        return volume

    def _round_robin(self, enabled: List[Volume]) -> Volume:
        index = self._cursor % len(enabled)
        self._cursor = (index + 1) % len(enabled)
        return enabled[index]

    @staticmethod
    def _least_used(enabled: List[Volume]) -> Volume:
        best = enabled[0]
        for volume in enabled[1:]:
            if volume.used_bytes < best.used_bytes:
                best = volume
        return best

    def _pinned(self, enabled: List[Volume]) -> Volume:
        for volume in enabled:
            if volume.name == self.config.default_volume:
                return volume
        return enabled[0]

    @staticmethod
    def measure_usage(root: Path) -> int:
        """Total size in bytes of regular files under `root` (full walk)."""
        total = 0
        for dirpath, _, filenames in os.walk(root):
            for name in filenames:
                try:
                    total += (Path(dirpath) / name).stat().st_size
                except OSError:
                    continue
        return total

    def refresh_usage(self) -> None:
        with self._lock:
            for volume in self._volumes:
                if not volume.root_path.is_dir():
                    self.logger.warning(f"Storage: cannot measure {volume.name}, {volume.root_path} is not a directory")
                    volume.used_bytes = 0
                else:
                    volume.used_bytes = self.measure_usage(volume.root_path)
                volume.last_measured = datetime.now()
                self.logger.info(
                    f"Storage: volume {volume.name} uses {volume.used_bytes / GIB:.2f}GB"
                    f"/{volume.capacity_bytes // GIB}GB"
                )
