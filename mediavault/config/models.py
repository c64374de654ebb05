from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PLACEMENT_STRATEGIES = ("least-used", "round-robin", "random", "default")


class VolumeConfig(BaseModel):
    """One configured storage root."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    path: str
    max_size_gb: int = Field(default=500, ge=0, alias="maxSizeGB")
    priority: int = 1
    enabled: bool = True


class StorageConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    default_volume: Optional[str] = Field(default=None, alias="defaultVolume")
    strategy: str = "least-used"
    volumes: List[VolumeConfig] = Field(default_factory=list, alias="disks")

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        value = (v or "").strip().lower()
        if value not in PLACEMENT_STRATEGIES:
            raise ValueError(
                f"Unsupported placement strategy: {v}. Use one of {list(PLACEMENT_STRATEGIES)}"
            )
        return value

    @model_validator(mode="after")
    def validate_unique_names(self):
        seen = set()
        for volume in self.volumes:
            if volume.name in seen:
                raise ValueError(f"Duplicate volume name: {volume.name}")
            seen.add(volume.name)
        return self


class PathsConfig(BaseModel):
    base_dir: str = "."
    raw_dir: str = "static/videos"
    default_output_dir: str = "static/hls"
    default_output_url: str = "/hls"
    repair_output_dir: str = "static/fixed_videos"
    default_cover: str = "/static/css/default-cover.jpg"
    manifest_name: str = "playlist.m3u8"


class TranscodeConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    workers: int = Field(default=5, gt=0)
    repair_workers: int = Field(default=4, gt=0)
    segment_seconds: int = Field(default=8, gt=0)
    repair_segment_seconds: int = Field(default=3, gt=0)
    fallback_fps: int = Field(default=30, gt=0)
    copy_streams: bool = True
    delete_source_after_success: bool = False
    extensions: List[str] = Field(default_factory=lambda: [".mp4", ".flv", ".mkv", ".avi"])


class CatalogConfig(BaseModel):
    database_url: Optional[str] = "sqlite:///mediavault.db"
    scan_workers: int = Field(default=16, gt=0)
    summary_template: str = "A title named {title}"


class StreamConfig(BaseModel):
    buffer_size: int = Field(default=1024, ge=1)
    heartbeat_interval_s: float = Field(default=30.0, gt=0)


class GeneralConfig(BaseModel):
    debug: bool = False
    log_path: Optional[str] = None


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
