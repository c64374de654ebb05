import pytest
import yaml
from mediavault.config.models import AppConfig
from tests.helpers import FakeFFmpeg

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def app_config(tmp_path):
    """AppConfig rooted in tmp_path, no volumes, filesystem mode."""
    return AppConfig(
        paths={"base_dir": str(tmp_path)},
        transcode={"workers": 2, "repair_workers": 2},
        catalog={"database_url": None, "scan_workers": 4},
        stream={"buffer_size": 256, "heartbeat_interval_s": 0.2},
    )


@pytest.fixture
def volume_config(tmp_path):
    """AppConfig with two enabled volumes A and B under tmp_path."""
    (tmp_path / "volA").mkdir()
    (tmp_path / "volB").mkdir()
    return AppConfig(
        storage={
            "strategy": "least-used",
            "disks": [
                {"name": "A", "path": str(tmp_path / "volA"), "maxSizeGB": 500},
                {"name": "B", "path": str(tmp_path / "volB"), "maxSizeGB": 500},
            ],
        },
        paths={"base_dir": str(tmp_path)},
        transcode={"workers": 2, "repair_workers": 2},
        catalog={"database_url": None, "scan_workers": 4},
        stream={"buffer_size": 256, "heartbeat_interval_s": 0.2},
    )


@pytest.fixture
def disabled_volume_config(tmp_path):
    """AppConfig whose only volume is disabled, so output lands in the default dir."""
    (tmp_path / "volA").mkdir()
    return AppConfig(
        storage={"disks": [{"name": "A", "path": str(tmp_path / "volA"), "enabled": False}]},
        paths={"base_dir": str(tmp_path)},
        transcode={"workers": 2, "repair_workers": 2},
        catalog={"database_url": None, "scan_workers": 4},
        stream={"buffer_size": 256, "heartbeat_interval_s": 0.2},
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "mediavault.yaml"

    content = {
        'general': {'debug': False},
        'storage': {
            'defaultVolume': 'disk1',
            'strategy': 'round-robin',
            'disks': [
                {'name': 'disk1', 'path': str(tmp_path / 'disk1'), 'maxSizeGB': 100},
                {'name': 'disk2', 'path': str(tmp_path / 'disk2'), 'maxSizeGB': 200, 'enabled': False},
            ],
        },
        'paths': {'base_dir': str(tmp_path)},
        'transcode': {'workers': 3, 'extensions': ['mp4', '.mkv']},
        'catalog': {'database_url': f"sqlite:///{tmp_path / 'catalog.db'}"},
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# Adapter Fixtures
# ============================================================================

@pytest.fixture
def fake_ffmpeg():
    """FFmpeg stand-in that writes manifests instead of running ffmpeg."""
    return FakeFFmpeg()

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
