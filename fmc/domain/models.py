from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

class RunnerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"  # cancel() while running, no outcome reported

class ConflictPolicy(str, Enum):
    ASK = "ask"
    OVERWRITE = "overwrite"
    BACKUP = "backup"
    EXIT = "exit"

class Job(BaseModel):
    """One source -> destination conversion. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    source: Path
    destination: Path
    presets: Tuple[str, ...]
    backup_path: Optional[Path] = None
    delete_source_on_success: bool = False
    copy_timestamps_on_success: bool = False
    discard_backup_on_success: bool = False

    @field_validator("presets")
    @classmethod
    def validate_presets(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if not v:
            raise ValueError("A job needs at least one preset")
        return v

    @field_validator("source", "destination")
    @classmethod
    def validate_absolute(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError(f"Path must be absolute: {v}")
        return v

class ResolvedPreset(BaseModel):
    token: str
    args: List[str] = Field(default_factory=list)
    extension: Optional[str] = None
