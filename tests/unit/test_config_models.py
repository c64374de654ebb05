import pytest
from pathlib import Path
from pydantic import ValidationError
from mediavault.config.loader import load_config
from mediavault.config.models import AppConfig, StorageConfig, VolumeConfig


def test_defaults():
    config = AppConfig()
    assert config.storage.strategy == "least-used"
    assert config.storage.volumes == []
    assert config.paths.raw_dir == "static/videos"
    assert config.paths.default_output_dir == "static/hls"
    assert config.paths.manifest_name == "playlist.m3u8"
    assert config.transcode.workers == 5
    assert config.transcode.repair_workers == 4
    assert config.transcode.fallback_fps == 30
    assert config.transcode.delete_source_after_success is False
    assert config.stream.heartbeat_interval_s == 30.0


def test_volume_aliases():
    volume = VolumeConfig(name="disk1", path="/mnt/a", maxSizeGB=250)
    assert volume.max_size_gb == 250
    assert VolumeConfig(name="disk1", path="/mnt/a", max_size_gb=10).max_size_gb == 10


def test_storage_disks_alias_and_default_volume():
    storage = StorageConfig(
        defaultVolume="d1",
        disks=[{"name": "d1", "path": "/a"}, {"name": "d2", "path": "/b"}],
    )
    assert storage.default_volume == "d1"
    assert [v.name for v in storage.volumes] == ["d1", "d2"]


@pytest.mark.parametrize("value,expected", [
    ("least-used", "least-used"),
    ("Round-Robin", "round-robin"),
    (" random ", "random"),
    ("default", "default"),
])
def test_strategy_normalized(value, expected):
    assert StorageConfig(strategy=value).strategy == expected


def test_unknown_strategy_rejected():
    with pytest.raises(ValidationError):
        StorageConfig(strategy="fastest")


def test_duplicate_volume_names_rejected():
    with pytest.raises(ValidationError):
        StorageConfig(disks=[{"name": "d1", "path": "/a"}, {"name": "d1", "path": "/b"}])


def test_invalid_worker_count_rejected():
    with pytest.raises(ValidationError):
        AppConfig(transcode={"workers": 0})


def test_load_config(config_yaml_path):
    config = load_config(config_yaml_path)
    assert config.storage.strategy == "round-robin"
    assert config.storage.default_volume == "disk1"
    assert len(config.storage.volumes) == 2
    assert config.storage.volumes[1].enabled is False
    assert config.storage.volumes[1].max_size_gb == 200
    assert config.transcode.workers == 3
    assert config.catalog.database_url.startswith("sqlite:///")


def test_load_config_root_level_disks(tmp_path):
    conf = tmp_path / "legacy.yaml"
    conf.write_text(
        "disks:\n"
        "  - name: old\n"
        "    path: /srv/old\n"
        "storage:\n"
        "  strategy: random\n"
    )
    config = load_config(conf)
    assert config.storage.strategy == "random"
    assert [v.name for v in config.storage.volumes] == ["old"]


def test_load_empty_config(tmp_path):
    conf = tmp_path / "empty.yaml"
    conf.write_text("")
    assert load_config(conf) == AppConfig()


def test_load_missing_config():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/mediavault.yaml"))
