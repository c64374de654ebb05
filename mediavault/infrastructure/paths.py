"""Mapping between client-addressable references and filesystem locations.

Logical references are URL-shaped:
- ``/storage/<volume>/<title>/...`` lives under a configured volume root
- ``<default_output_url>/<title>/...`` lives under the default output directory
- anything else (``/static/videos/...``) resolves relative to `base_dir`
"""

from pathlib import Path, PurePosixPath
from typing import Optional
from mediavault.config.models import PathsConfig
from mediavault.domain.models import Volume
from mediavault.infrastructure.storage import StorageAllocator

STORAGE_PREFIX = "/storage/"


def normalize_url_path(path: str) -> str:
    """Forward slashes only, no empty segments, exactly one leading slash."""
    parts = [p for p in str(path).replace("\\", "/").split("/") if p]
    if not parts:
        return "/"
    return "/" + "/".join(parts)


class PathMapper:
    def __init__(self, paths: PathsConfig, allocator: StorageAllocator):
        self.paths = paths
        self.allocator = allocator
        self.base_dir = Path(paths.base_dir)
        self.output_url = normalize_url_path(paths.default_output_url)

    @property
    def raw_root(self) -> Path:
        return self.base_dir / self.paths.raw_dir

    @property
    def default_output_root(self) -> Path:
        return self.base_dir / self.paths.default_output_dir

    @property
    def repair_output_root(self) -> Path:
        return self.base_dir / self.paths.repair_output_dir

    def _raw_url_prefix(self) -> str:
        return normalize_url_path(self.paths.raw_dir) + "/"

    def title_from_asset(self, asset_path: str) -> str:
        """First path component below the raw, output or volume prefix.

        Empty when no file sits beneath that component.
        """
        normalized = normalize_url_path(asset_path)
        if normalized.startswith(STORAGE_PREFIX):
            parts = normalized[len(STORAGE_PREFIX):].split("/")
            return parts[1] if len(parts) > 2 and parts[1] else ""
        for prefix in (self._raw_url_prefix(), self.output_url + "/"):
            if normalized.startswith(prefix):
                parts = normalized[len(prefix):].split("/")
                return parts[0] if len(parts) > 1 and parts[0] else ""
        return ""

    def episode_from_asset(self, asset_path: str) -> str:
        return PurePosixPath(normalize_url_path(asset_path)).stem

    def to_physical(self, logical_ref: str) -> Path:
        normalized = normalize_url_path(logical_ref)
        if normalized.startswith(STORAGE_PREFIX):
            parts = normalized[len(STORAGE_PREFIX):].split("/")
            volume = self.allocator.volume_by_name(parts[0])
            if volume is not None and len(parts) >= 2:
                return volume.root_path.joinpath(*parts[1:])
        elif normalized == self.output_url or normalized.startswith(self.output_url + "/"):
            rest = normalized[len(self.output_url):].strip("/")
            return self.default_output_root.joinpath(*rest.split("/")) if rest else self.default_output_root
        return self.base_dir.joinpath(*normalized.strip("/").split("/"))

    def output_root_for(self, volume: Optional[Volume]) -> Path:
        return volume.root_path if volume is not None else self.default_output_root

    def output_ref(self, volume: Optional[Volume], *parts: str) -> str:
        if volume is not None:
            return normalize_url_path("/".join([STORAGE_PREFIX, volume.name, *parts]))
        return normalize_url_path("/".join([self.output_url, *parts]))
