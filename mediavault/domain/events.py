"""Progress events emitted by the batch and repair pipelines.

Events are transient: they flow from worker threads through a
`ProgressStream` (see `pipeline/progress.py`) to a single consumer which relays
them onward, typically as server-push frames. Nothing here is persisted.
"""

import json
from datetime import datetime, timezone
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


def _rfc3339_now() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


class ProgressEvent(BaseModel):
    """Base class for all progress events.

    `asset` is the asset reference the event is about (an asset path for
    batch jobs, ``title/episode`` for repair jobs).
    """

    model_config = ConfigDict(frozen=True)

    type: str
    asset: Optional[str] = None
    current: Optional[int] = None
    total: Optional[int] = None
    message: Optional[str] = None
    timestamp: str = Field(default_factory=_rfc3339_now)

    def to_wire(self) -> dict:
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


class ItemProgress(ProgressEvent):
    """Emitted when a worker picks up an item, and as overall counters advance."""

    type: Literal["progress"] = "progress"
    status: Optional[str] = None


class ItemSkipped(ProgressEvent):
    """Emitted when output already exists for an asset; no worker slot is used."""

    type: Literal["skipped"] = "skipped"


class ItemWarning(ProgressEvent):
    type: Literal["warning"] = "warning"


class ItemFailed(ProgressEvent):
    type: Literal["error"] = "error"


class ItemSucceeded(ProgressEvent):
    type: Literal["success"] = "success"
    output: Optional[str] = None


class JobStopped(ProgressEvent):
    """Emitted once when a stop request is observed before dispatching an item."""

    type: Literal["stop"] = "stop"


class JobComplete(ProgressEvent):
    """Terminal summary of a batch or repair job."""

    type: Literal["complete"] = "complete"
    success: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    errors: List[str] = Field(default_factory=list)


class Heartbeat(ProgressEvent):
    """Keep-alive emitted by the consumer side, never by workers."""

    type: Literal["heartbeat"] = "heartbeat"
