"""Preset catalog.

A preset token on the command line maps to a fragment of ffmpeg arguments and,
optionally, the output extension it implies. Literal presets match by name;
pattern presets match a regex and substitute its groups into `{placeholder}`
tokens of their args (e.g. `1280x720` -> `-vf scale=1280:720`).
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence
from pydantic import BaseModel, Field, field_validator, model_validator

from fmc.domain.errors import UnknownPresetError
from fmc.domain.models import ResolvedPreset

_PLACEHOLDER_RE = re.compile(r"\{[a-zA-Z0-9_.-]+\}")


class Preset(BaseModel):
    names: List[str] = Field(default_factory=list)
    pattern: Optional[str] = None
    params: List[str] = Field(default_factory=list)
    display: Optional[str] = None
    desc: str = ""
    extension: Optional[str] = None
    args: List[str] = Field(default_factory=list)

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"Invalid preset pattern {v!r}: {exc}")
        return v

    @field_validator("extension")
    @classmethod
    def strip_dot(cls, v: Optional[str]) -> Optional[str]:
        return v.lstrip(".") if v else v

    @model_validator(mode="after")
    def validate_naming(self):
        if not self.names and not self.pattern:
            raise ValueError("A preset needs at least one name or a pattern")
        if self.pattern and len(self.params) != re.compile(self.pattern).groups:
            raise ValueError(f"Pattern {self.pattern!r} must have one group per param {self.params}")
        return self

    @property
    def label(self) -> str:
        if self.display:
            return self.display
        return ", ".join(self.names)

    def match(self, token: str) -> Optional[ResolvedPreset]:
        if token in self.names:
            return ResolvedPreset(token=token, args=list(self.args), extension=self.extension)
        if not self.pattern:
            return None
        m = re.match(self.pattern, token)
        if not m:
            return None
        values = dict(zip(self.params, m.groups()))

        def substitute(placeholder: re.Match) -> str:
            return values.get(placeholder.group(0)[1:-1], placeholder.group(0))

        args = [_PLACEHOLDER_RE.sub(substitute, arg) for arg in self.args]
        return ResolvedPreset(token=token, args=args, extension=self.extension)


def _default_presets() -> List[Preset]:
    x264 = ["-c:v", "libx264", "-crf", "20", "-pix_fmt", "yuv420p", "-c:a", "aac", "-strict", "experimental"]
    return [
        Preset(
            names=["mp4"],
            desc="Highly Optimized MP4 video with very small file size, however it is VERY SLOW.",
            extension="mp4",
            args=x264[:2] + ["-preset", "veryslow"] + x264[2:],
        ),
        Preset(
            names=["mp4-fast"],
            desc="Optimized MP4 video. Faster than the default mp4 preset, but larger file size.",
            extension="mp4",
            args=x264[:2] + ["-preset", "veryfast"] + x264[2:],
        ),
        Preset(names=["mp3"], desc="MP3 Audio", extension="mp3", args=["-ab", "320k"]),
        Preset(names=["png"], desc="PNG Image", extension="png"),
        Preset(names=["jpeg"], desc="JPEG Image", extension="jpeg"),
        Preset(names=["4k"], desc="Resizes video to 3840x2160 (keeps source aspect ratio)", args=["-vf", "scale=3840:-2"]),
        Preset(names=["1080p"], desc="Resizes video to 1920x1080 (keeps source aspect ratio)", args=["-vf", "scale=1920:-2"]),
        Preset(names=["720p"], desc="Resizes video to 1280x720 (keeps source aspect ratio)", args=["-vf", "scale=1280:-2"]),
        Preset(
            pattern=r"^(\d*\.?\d+)x$",
            params=["scale"],
            display="{scale}x",
            desc="Resizes video to be {scale} times the size of the original.",
            args=["-vf", "scale=iw*{scale}:-2"],
        ),
        Preset(
            pattern=r"^(\d+)w$",
            params=["width"],
            display="{width}w",
            desc="Resizes video to be {width} pixels wide.",
            args=["-vf", "scale={width}:-2"],
        ),
        Preset(
            pattern=r"^(\d+)h$",
            params=["height"],
            display="{height}h",
            desc="Resizes video to be {height} pixels tall.",
            args=["-vf", "scale=-2:{height}"],
        ),
        Preset(
            pattern=r"^(\d+)x(\d+)$",
            params=["width", "height"],
            display="{width}x{height}",
            desc="Resizes video to custom resolution {width}x{height}.",
            args=["-vf", "scale={width}:{height}"],
        ),
        Preset(names=["crash"], desc="Causes an ffmpeg error.", args=["-c:v", "crash_ok_thanks"]),
    ]


class PresetCatalog:
    """Ordered preset lookup. Later presets win on literal name clashes."""

    def __init__(self, presets: Iterable[Preset] = ()):
        self._presets: List[Preset] = []
        self._by_name: Dict[str, Preset] = {}
        self.extend(presets)

    @classmethod
    def default(cls) -> "PresetCatalog":
        return cls(_default_presets())

    @property
    def presets(self) -> List[Preset]:
        return list(self._presets)

    def extend(self, presets: Iterable[Preset]) -> None:
        for preset in presets:
            self._presets.append(preset)
            for name in preset.names:
                self._by_name[name] = preset

    def resolve(self, token: str) -> Optional[ResolvedPreset]:
        preset = self._by_name.get(token)
        if preset is not None:
            return preset.match(token)
        for preset in self._presets:
            if preset.pattern:
                resolved = preset.match(token)
                if resolved is not None:
                    return resolved
        return None

    def is_preset(self, token: str) -> bool:
        return self.resolve(token) is not None

    def resolve_args(self, token: str) -> List[str]:
        resolved = self.resolve(token)
        if resolved is None:
            raise UnknownPresetError(token)
        return resolved.args

    def extension_for(self, tokens: Sequence[str]) -> Optional[str]:
        """Last extension declared along the chain, if any."""
        extension = None
        for token in tokens:
            resolved = self.resolve(token)
            if resolved is not None and resolved.extension:
                extension = resolved.extension
        return extension
