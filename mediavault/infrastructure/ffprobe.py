import subprocess
from pathlib import Path


class FFprobeAdapter:
    """Wrapper around ffprobe to read stream frame rates."""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    @staticmethod
    def parse_frame_rate(text: str) -> int:
        """Parses ffprobe's rational ``num/den`` rate into whole frames per second.

        Raises ValueError for empty output, ``0/0``, anything non-numeric and
        rates that round down to zero.
        """
        stripped = (text or "").strip()
        rate = stripped.splitlines()[0].strip() if stripped else ""
        if not rate or rate == "0/0":
            raise ValueError(f"Empty or degenerate frame rate: {text!r}")
        if "/" in rate:
            num_text, den_text = rate.split("/", 1)
            try:
                num = int(num_text)
                den = int(den_text)
            except ValueError:
                raise ValueError(f"Unparseable frame rate: {rate!r}")
            if den <= 0 or num <= 0:
                raise ValueError(f"Degenerate frame rate: {rate!r}")
            fps = int(round(num / den))
        else:
            try:
                fps = int(round(float(rate)))
            except (ValueError, OverflowError):
                raise ValueError(f"Unparseable frame rate: {rate!r}")
        if fps <= 0:
            raise ValueError(f"Degenerate frame rate: {rate!r}")
        return fps

    def get_frame_rate(self, file_path: Path) -> int:
        """Executes ffprobe for the first video stream's average frame rate."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-select_streams", "v:0",
            "-show_entries", "stream=avg_frame_rate",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(file_path),
        ]

        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")

        return self.parse_frame_rate(result.stdout)
