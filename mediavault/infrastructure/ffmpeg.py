import logging
import subprocess
import time
from pathlib import Path
from typing import List, Optional
from mediavault.config.models import TranscodeConfig

SEGMENT_TEMPLATE = "segment_%03d.ts"


class TranscodeError(RuntimeError):
    """ffmpeg exited non-zero (or could not be started)."""

    def __init__(self, message: str, returncode: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


def _tail(text: str, lines: int = 20) -> str:
    return "\n".join((text or "").strip().splitlines()[-lines:])


class FFmpegAdapter:
    """Wrapper around ffmpeg for HLS segmentation and repair re-encodes."""

    def __init__(self, config: TranscodeConfig, manifest_name: str = "playlist.m3u8", debug: bool = False):
        self.config = config
        self.manifest_name = manifest_name
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def build_segment_command(self, source: Path, output_dir: Path, accelerate: bool) -> List[str]:
        """Constructs the ffmpeg command that cuts `source` into an HLS playlist."""
        cmd = [
            self.config.ffmpeg_path,
            "-y",
            "-err_detect", "ignore_err",
        ]
        if accelerate:
            cmd.extend(["-hwaccel", "auto"])
        cmd.extend(["-i", str(source)])

        if self.config.copy_streams:
            cmd.extend(["-c:v", "copy", "-c:a", "copy"])
        elif accelerate:
            cmd.extend([
                "-c:v", "h264_nvenc",
                "-preset", "p5",
                "-cq", "23",
                "-c:a", "aac", "-b:a", "128k",
            ])
        else:
            cmd.extend([
                "-c:v", "libx264",
                "-preset", "veryfast",
                "-crf", "23",
                "-c:a", "aac", "-b:a", "128k",
            ])

        cmd.extend([
            "-hls_time", str(self.config.segment_seconds),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(output_dir / SEGMENT_TEMPLATE),
            "-hls_flags", "discont_start+temp_file+independent_segments",
            "-avoid_negative_ts", "make_zero",
            "-fflags", "+genpts+igndts",
            "-reset_timestamps", "1",
            "-loglevel", "error",
            str(output_dir / self.manifest_name),
        ])
        return cmd

    def build_repair_command(self, playlist: Path, output_dir: Path, fps: int) -> List[str]:
        """Forced constant-frame-rate, timestamp-rebuilding, accelerated re-encode."""
        return [
            self.config.ffmpeg_path,
            "-protocol_whitelist", "file,http,https,tcp,tls",
            "-allowed_extensions", "ALL",
            "-fflags", "+genpts+igndts+discardcorrupt",
            "-err_detect", "aggressive",
            "-i", str(playlist),
            "-bsf:a", "aac_adtstoasc",
            "-fps_mode", "cfr",
            "-r", str(fps),
            "-async", "1",
            "-shortest",
            "-avoid_negative_ts", "make_zero",
            "-reset_timestamps", "1",
            "-c:v", "h264_nvenc",
            "-preset", "p7",
            "-cq", "28",
            "-tune", "hq",
            "-profile:v", "high",
            "-level", "4.1",
            "-c:a", "aac",
            "-b:a", "128k",
            "-ac", "2",
            "-ar", "48000",
            "-hls_time", str(self.config.repair_segment_seconds),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(output_dir / SEGMENT_TEMPLATE),
            "-hls_flags", "split_by_time+independent_segments",
            "-hls_segment_type", "mpegts",
            "-hls_base_url", "./",
            "-y",
            str(output_dir / self.manifest_name),
        ]

    def _run(self, cmd: List[str], label: str) -> None:
        start_time = time.monotonic()
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise TranscodeError(f"Failed to start ffmpeg for {label}: {e}") from e

        elapsed = time.monotonic() - start_time
        if result.returncode != 0:
            output = _tail(result.stderr or result.stdout)
            self.logger.info(f"FFMPEG_END: {label} status=failed code={result.returncode} elapsed={elapsed:.2f}s")
            raise TranscodeError(
                f"ffmpeg exited with code {result.returncode}: {output}",
                returncode=result.returncode,
                output=output,
            )
        self.logger.info(f"FFMPEG_END: {label} status=completed elapsed={elapsed:.2f}s")

    def generate_segments(self, source: Path, output_dir: Path, accelerate: bool = False) -> Path:
        """Segments `source` into `output_dir` and returns the manifest path.

        With `accelerate`, a hardware-assisted attempt runs first; its failure is
        logged and the same job is retried on the software path. Only a failure
        of the software path raises TranscodeError.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        label = source.name
        if accelerate:
            try:
                self._run(self.build_segment_command(source, output_dir, accelerate=True), f"{label} (accelerated)")
                return output_dir / self.manifest_name
            except TranscodeError as e:
                self.logger.warning(f"Accelerated segmentation failed for {label}, retrying in software: {e}")

        self._run(self.build_segment_command(source, output_dir, accelerate=False), label)
        return output_dir / self.manifest_name

    def repair_segments(self, playlist: Path, output_dir: Path, fps: int) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        self._run(self.build_repair_command(playlist, output_dir, fps), f"{playlist.parent.name} (repair)")
        return output_dir / self.manifest_name
