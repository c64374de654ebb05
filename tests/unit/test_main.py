import pytest
import yaml
from unittest.mock import patch
from typer.testing import CliRunner
from mediavault.main import app, build_services
from mediavault.config.models import AppConfig
from tests.helpers import FakeFFmpeg, make_episode, make_raw_asset

runner = CliRunner()


@pytest.fixture
def cli_config(tmp_path):
    conf = tmp_path / "mediavault.yaml"
    conf.write_text(yaml.dump({
        "paths": {"base_dir": str(tmp_path)},
        "transcode": {"workers": 2},
        "catalog": {"database_url": f"sqlite:///{tmp_path / 'catalog.db'}"},
        "stream": {"heartbeat_interval_s": 0.2},
    }))
    return conf


def test_build_services_filesystem_mode(tmp_path):
    config = AppConfig(paths={"base_dir": str(tmp_path)}, catalog={"database_url": None})
    services = build_services(config)
    assert services.store.available is False
    assert services.orchestrator.job_registry is services.jobs
    assert services.repair.job_registry is services.jobs


def test_missing_config_exits():
    result = runner.invoke(app, ["list", "--config", "/nonexistent/mediavault.yaml"])
    assert result.exit_code == 1


def test_scan_and_list(cli_config, tmp_path):
    make_episode(tmp_path / "static" / "hls", "Show", "ep1")

    result = runner.invoke(app, ["scan", "--config", str(cli_config)])
    assert result.exit_code == 0
    assert "Show" in result.output

    result = runner.invoke(app, ["list", "--config", str(cli_config)])
    assert result.exit_code == 0
    assert "Show" in result.output
    assert "1 titles" in result.output


def test_search(cli_config, tmp_path):
    make_episode(tmp_path / "static" / "hls", "Show", "ep1")
    runner.invoke(app, ["scan", "--config", str(cli_config)])

    result = runner.invoke(app, ["search", "sho", "--config", str(cli_config)])
    assert result.exit_code == 0
    assert "Show" in result.output


def test_videos(cli_config, tmp_path):
    make_episode(tmp_path / "static" / "hls", "Show", "ep1")

    result = runner.invoke(app, ["videos", "Show", "--config", str(cli_config)])
    assert result.exit_code == 0
    assert "ep1" in result.output

    result = runner.invoke(app, ["videos", "Nothing", "--config", str(cli_config)])
    assert result.exit_code == 1


def test_assets(cli_config, tmp_path):
    make_raw_asset(tmp_path, "Show", "ep1.mp4")
    result = runner.invoke(app, ["assets", "--config", str(cli_config)])
    assert result.exit_code == 0
    assert "/static/videos/Show/ep1.mp4" in result.output


def test_generate(cli_config, tmp_path):
    asset = make_raw_asset(tmp_path, "Show", "ep1.mp4")
    fake = FakeFFmpeg()

    with patch("mediavault.main.FFmpegAdapter", return_value=fake):
        result = runner.invoke(app, ["generate", asset, "--no-accel", "--config", str(cli_config)])

    assert result.exit_code == 0
    assert "success=1" in result.output
    assert (tmp_path / "static" / "hls" / "Show" / "ep1" / "playlist.m3u8").exists()


def test_generate_frames(cli_config, tmp_path):
    asset = make_raw_asset(tmp_path, "Show", "ep1.mp4")

    with patch("mediavault.main.FFmpegAdapter", return_value=FakeFFmpeg()):
        result = runner.invoke(app, ["generate", asset, "--frames", "--config", str(cli_config)])

    assert result.exit_code == 0
    frames = [line for line in result.output.split("\n\n") if line.strip()]
    assert all(frame.startswith("data: ") for frame in frames)
    assert '"type": "complete"' in frames[-1]


def test_generate_failure_exit_code(cli_config, tmp_path):
    asset = make_raw_asset(tmp_path, "Show", "bad.mp4")

    with patch("mediavault.main.FFmpegAdapter", return_value=FakeFFmpeg(fail={"bad.mp4"})):
        result = runner.invoke(app, ["generate", asset, "--config", str(cli_config)])

    assert result.exit_code == 1
    assert "failed=1" in result.output


def test_repair(cli_config, tmp_path):
    make_episode(tmp_path / "static" / "hls", "Show", "ep1")

    with patch("mediavault.main.FFmpegAdapter", return_value=FakeFFmpeg()), \
            patch("mediavault.main.FFprobeAdapter") as probe_cls:
        probe_cls.return_value.get_frame_rate.return_value = 25
        result = runner.invoke(app, ["repair", "--config", str(cli_config)])

    assert result.exit_code == 0
    assert (tmp_path / "static" / "fixed_videos" / "Show" / "ep1" / "playlist.m3u8").exists()


def test_volumes(tmp_path):
    (tmp_path / "d1").mkdir()
    conf = tmp_path / "mediavault.yaml"
    conf.write_text(yaml.dump({
        "storage": {"disks": [{"name": "d1", "path": str(tmp_path / "d1"), "maxSizeGB": 10}]},
        "paths": {"base_dir": str(tmp_path)},
        "catalog": {"database_url": None},
    }))

    result = runner.invoke(app, ["volumes", "--refresh", "--config", str(conf)])

    assert result.exit_code == 0
    assert "d1" in result.output
    assert "least-used" in result.output


def test_delete(cli_config, tmp_path):
    make_episode(tmp_path / "static" / "hls", "Show", "ep1")
    runner.invoke(app, ["scan", "--config", str(cli_config)])

    result = runner.invoke(app, ["delete", "Show", "--yes", "--config", str(cli_config)])
    assert result.exit_code == 0
    assert not (tmp_path / "static" / "hls" / "Show").exists()

    result = runner.invoke(app, ["delete", "Show", "--yes", "--config", str(cli_config)])
    assert result.exit_code == 1


def test_delete_aborts_without_confirmation(cli_config, tmp_path):
    make_episode(tmp_path / "static" / "hls", "Show", "ep1")
    result = runner.invoke(app, ["delete", "Show", "--config", str(cli_config)], input="n\n")
    assert result.exit_code != 0
    assert (tmp_path / "static" / "hls" / "Show").exists()


def test_update(cli_config, tmp_path):
    make_episode(tmp_path / "static" / "hls", "Show", "ep1")
    runner.invoke(app, ["scan", "--config", str(cli_config)])

    result = runner.invoke(app, ["update", "Show", "--title", "Renamed", "--config", str(cli_config)])
    assert result.exit_code == 0

    result = runner.invoke(app, ["list", "--config", str(cli_config)])
    assert "Renamed" in result.output
