import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field

GIB = 1024 ** 3

class Volume(BaseModel):
    name: str
    root_path: Path
    capacity_bytes: int = 0
    priority: int = 1
    enabled: bool = True
    used_bytes: int = 0
    last_measured: Optional[datetime] = None

    @property
    def usage_ratio(self) -> float:
        if self.capacity_bytes <= 0:
            return 0.0
        return self.used_bytes / self.capacity_bytes

class VideoRef(BaseModel):
    logical_path: str
    display_name: str
    physical_path: Optional[Path] = None

class CatalogEntry(BaseModel):
    title: str
    folder_name: str
    summary: str = ""
    cover_ref: str = ""
    primary_video_ref: str = ""
    episode_count: int = 0
    physical_root_path: Optional[str] = None
    hosting_volume: Optional[str] = None

class WorkItem(BaseModel):
    group_name: str
    sub_name: str
    source_playlist_path: Path

class RepairResult(BaseModel):
    group_name: str
    sub_name: str = ""
    success: bool
    message: str

class BatchSummary(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    errors: List[str] = Field(default_factory=list)
    touched_titles: List[str] = Field(default_factory=list)

@dataclass
class Job:
    """A live batch tracked by the job registry."""

    id: str
    cancel_signal: threading.Event = field(default_factory=threading.Event)
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def cancelled(self) -> bool:
        return self.cancel_signal.is_set()
