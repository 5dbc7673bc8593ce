import os
from typing import List, Optional
from pydantic import BaseModel, Field

from fmc.config.presets import Preset
from fmc.domain.models import ConflictPolicy


def default_thread_budget() -> int:
    """All cores but one, never less than one."""
    return max(1, (os.cpu_count() or 2) - 1)


class GeneralConfig(BaseModel):
    ffmpeg: str = "ffmpeg"
    threads: Optional[int] = Field(default=None, gt=0)
    output: str = "[name].[ext]"
    on_conflict: ConflictPolicy = ConflictPolicy.ASK
    copy_timestamps: bool = False
    log_path: Optional[str] = None
    debug: bool = False

    @property
    def thread_budget(self) -> int:
        return self.threads if self.threads is not None else default_thread_budget()

class UiConfig(BaseModel):
    """Terminal view configuration."""
    refresh_per_second: int = Field(default=4, ge=1, le=30)
    max_name_width: int = Field(default=40, ge=10, le=200)

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    ui: UiConfig = Field(default_factory=UiConfig)
    presets: List[Preset] = Field(default_factory=list)
