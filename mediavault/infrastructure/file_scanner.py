import os
from pathlib import Path
from typing import List, Generator
from mediavault.domain.models import VideoRef
from mediavault.infrastructure.paths import normalize_url_path

class FileScanner:
    """Lists raw video assets laid out as `<raw_root>/<title>/<file>`."""

    def __init__(self, extensions: List[str], url_prefix: str = "/static/videos"):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.url_prefix = normalize_url_path(url_prefix)

    def is_video(self, name: str) -> bool:
        return Path(name).suffix.lower() in self.extensions

    def scan(self, raw_root: Path) -> Generator[VideoRef, None, None]:
        """Scans one level of title folders and yields their video files."""
        try:
            titles = sorted((e for e in os.scandir(raw_root) if e.is_dir()), key=lambda e: e.name)
        except OSError:
            return
        for title_entry in titles:
            try:
                # Ensure deterministic order
                files = sorted(e.name for e in os.scandir(title_entry.path) if e.is_file())
            except OSError:
                # Skip folders we can't access
                continue

            for file_name in files:
                if not self.is_video(file_name):
                    continue
                yield VideoRef(
                    logical_path=normalize_url_path(f"{self.url_prefix}/{title_entry.name}/{file_name}"),
                    display_name=file_name,
                    physical_path=Path(title_entry.path) / file_name,
                )
