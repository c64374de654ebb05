import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Older configs list volumes at the root next to 'storage'
    disks = data.pop("disks", None)
    if disks is not None:
        storage = data.setdefault("storage", {})
        if isinstance(storage, dict) and "volumes" not in storage and "disks" not in storage:
            storage["volumes"] = disks

    return AppConfig(**data)
