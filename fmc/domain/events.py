"""Domain events for the conversion pipeline.

Runners publish job lifecycle events, the Scheduler publishes queue changes,
and the UI layer only listens. Every component receives the same EventBus
instance from `main`.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from .models import Job


class Event(BaseModel):
    """Base class for all domain events."""

    pass

class JobEvent(Event):
    """Base class for events about one job."""

    job: Job


class JobStarted(JobEvent):
    """Emitted once the ffmpeg process has been spawned."""

    threads: int
    command: List[str] = Field(default_factory=list)


class JobProgressUpdated(JobEvent):
    """Emitted for every parsed progress line, ratio in [0, 1]."""

    progress: float


class JobCompleted(JobEvent):
    """Emitted when ffmpeg exits with code 0."""

    size_before: int
    size_after: int


class JobFailed(JobEvent):
    """Emitted when ffmpeg exits non-zero or the runner hits an internal error.

    The destination has been restored or removed and the error log written.
    """

    exit_code: int
    log_path: Optional[Path] = None


class JobAborted(JobEvent):
    """Emitted when the diagnostic stream could not be parsed.

    Terminal like JobFailed, but reports a runner-side parse error instead
    of an ffmpeg exit code.
    """

    error: str
    log_path: Optional[Path] = None


class QueueUpdated(Event):
    """Emitted by the Scheduler whenever the running set or the queue changes."""

    running: List[Job] = Field(default_factory=list)
    queued: int = 0


class ProcessingFinished(Event):
    """Emitted when no job is running or queued anymore."""

    cancelled: bool = False
