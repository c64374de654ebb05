import threading
from pathlib import Path
from typing import List, Optional, Set
from mediavault.infrastructure.ffmpeg import TranscodeError
from mediavault.pipeline.progress import ProgressStream


def make_episode(root: Path, title: str, episode: str, manifest: bool = True) -> Path:
    """Creates <root>/<title>/<episode>/ with an optional playlist."""
    episode_dir = root / title / episode
    episode_dir.mkdir(parents=True, exist_ok=True)
    if manifest:
        (episode_dir / "playlist.m3u8").write_text("#EXTM3U\n")
        (episode_dir / "segment_000.ts").write_bytes(b"\x47" * 188)
    return episode_dir


def make_raw_asset(base_dir: Path, title: str, file_name: str) -> str:
    """Creates static/videos/<title>/<file> and returns its asset reference."""
    raw_dir = base_dir / "static" / "videos" / title
    raw_dir.mkdir(parents=True, exist_ok=True)
    (raw_dir / file_name).write_bytes(b"dummy video content " * 10)
    return f"/static/videos/{title}/{file_name}"


def drain(stream: ProgressStream) -> list:
    """Closes the stream and returns every buffered event."""
    stream.close()
    return list(stream)


class FakeFFmpeg:
    """Stands in for FFmpegAdapter; writes a manifest unless the input is listed in `fail`.

    `fail` holds source file names for segmentation and episode directory
    names for repair.
    """

    def __init__(self, fail: Optional[Set[str]] = None, gate: Optional[threading.Event] = None):
        self.fail = fail or set()
        self.gate = gate
        self.started = threading.Event()
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def generate_segments(self, source: Path, output_dir: Path, accelerate: bool = False) -> Path:
        with self._lock:
            self.calls.append((source, output_dir, accelerate))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        output_dir.mkdir(parents=True, exist_ok=True)
        if source.name in self.fail:
            (output_dir / "segment_000.ts").write_bytes(b"partial")
            raise TranscodeError(f"ffmpeg exited with code 1: {source.name} is corrupt", returncode=1)
        manifest = output_dir / "playlist.m3u8"
        manifest.write_text("#EXTM3U\n")
        return manifest

    def repair_segments(self, playlist: Path, output_dir: Path, fps: int) -> Path:
        with self._lock:
            self.calls.append((playlist, output_dir, fps))
        if playlist.parent.name in self.fail:
            raise TranscodeError("ffmpeg exited with code 1: broken stream", returncode=1)
        output_dir.mkdir(parents=True, exist_ok=True)
        manifest = output_dir / "playlist.m3u8"
        manifest.write_text("#EXTM3U\n")
        return manifest
