import subprocess
import pytest
from pathlib import Path
from unittest.mock import patch
from mediavault.config.models import TranscodeConfig
from mediavault.infrastructure.ffmpeg import FFmpegAdapter, TranscodeError


def _completed(returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr=stderr)


def test_segment_command_copy_streams(tmp_path):
    adapter = FFmpegAdapter(TranscodeConfig())
    cmd = adapter.build_segment_command(Path("/v/Show/ep1.mp4"), tmp_path, accelerate=False)

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "/v/Show/ep1.mp4"
    assert cmd[cmd.index("-c:v") + 1] == "copy"
    assert cmd[cmd.index("-c:a") + 1] == "copy"
    assert cmd[cmd.index("-hls_time") + 1] == "8"
    assert cmd[cmd.index("-hls_list_size") + 1] == "0"
    assert cmd[cmd.index("-hls_segment_filename") + 1] == str(tmp_path / "segment_%03d.ts")
    assert "independent_segments" in cmd[cmd.index("-hls_flags") + 1]
    assert cmd[-1] == str(tmp_path / "playlist.m3u8")
    assert "-hwaccel" not in cmd


def test_segment_command_accelerated_encode(tmp_path):
    adapter = FFmpegAdapter(TranscodeConfig(copy_streams=False))
    accelerated = adapter.build_segment_command(Path("in.mp4"), tmp_path, accelerate=True)
    software = adapter.build_segment_command(Path("in.mp4"), tmp_path, accelerate=False)

    assert "-hwaccel" in accelerated
    assert accelerated[accelerated.index("-c:v") + 1] == "h264_nvenc"
    assert software[software.index("-c:v") + 1] == "libx264"


def test_repair_command(tmp_path):
    adapter = FFmpegAdapter(TranscodeConfig())
    cmd = adapter.build_repair_command(Path("/hls/S/e/playlist.m3u8"), tmp_path, fps=24)

    assert cmd[cmd.index("-r") + 1] == "24"
    assert cmd[cmd.index("-fps_mode") + 1] == "cfr"
    assert cmd[cmd.index("-c:v") + 1] == "h264_nvenc"
    assert cmd[cmd.index("-hls_time") + 1] == "3"
    assert "split_by_time" in cmd[cmd.index("-hls_flags") + 1]
    assert cmd[-1] == str(tmp_path / "playlist.m3u8")


def test_generate_segments_success(tmp_path):
    out = tmp_path / "Show" / "ep1"
    with patch("subprocess.run", return_value=_completed()) as mock_run:
        manifest = FFmpegAdapter(TranscodeConfig()).generate_segments(Path("in.mp4"), out)

    assert manifest == out / "playlist.m3u8"
    assert out.is_dir()
    assert mock_run.call_count == 1


def test_accelerated_failure_falls_back_to_software(tmp_path):
    runs = [_completed(1, "no device"), _completed(0)]
    with patch("subprocess.run", side_effect=runs) as mock_run:
        FFmpegAdapter(TranscodeConfig()).generate_segments(Path("in.mp4"), tmp_path, accelerate=True)

    assert mock_run.call_count == 2
    first_cmd = mock_run.call_args_list[0][0][0]
    second_cmd = mock_run.call_args_list[1][0][0]
    assert "-hwaccel" in first_cmd
    assert "-hwaccel" not in second_cmd


def test_software_failure_raises(tmp_path):
    runs = [_completed(1, "no device"), _completed(1, "Invalid data found\nfatal")]
    with patch("subprocess.run", side_effect=runs):
        with pytest.raises(TranscodeError) as exc_info:
            FFmpegAdapter(TranscodeConfig()).generate_segments(Path("in.mp4"), tmp_path, accelerate=True)

    assert exc_info.value.returncode == 1
    assert "fatal" in exc_info.value.output


def test_missing_binary_raises_transcode_error(tmp_path):
    with patch("subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(TranscodeError):
            FFmpegAdapter(TranscodeConfig()).generate_segments(Path("in.mp4"), tmp_path)


def test_repair_segments_runs_once(tmp_path):
    out = tmp_path / "fixed" / "Show" / "ep1"
    with patch("subprocess.run", return_value=_completed()) as mock_run:
        manifest = FFmpegAdapter(TranscodeConfig()).repair_segments(Path("p.m3u8"), out, 25)
    assert manifest == out / "playlist.m3u8"
    assert mock_run.call_count == 1
