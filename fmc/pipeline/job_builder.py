"""Turns command-line arguments into validated, immutable Jobs.

Positional arguments mix files and preset tokens. A run of files followed by
a run of presets (or the other way round) forms one group; every file in the
group is converted with the whole preset chain:

    fmc a.mov b.mov mp4-fast 720p  c.wav mp3

Destination conflicts are resolved here, before anything is scheduled, by
moving the existing file aside (see pipeline/backup.py).
"""

import glob
import logging
import os
from collections import Counter
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from fmc.config.presets import PresetCatalog
from fmc.domain.errors import (
    ArgumentError, ChainedOutputError, ConflictAbort, DuplicateDestinationError,
    ExtensionMismatchError, MissingSourceError,
)
from fmc.domain.models import ConflictPolicy, Job
from fmc.pipeline.backup import move_aside, restore

logger = logging.getLogger(__name__)

Group = Tuple[List[str], List[str]]
# (destination, in_place) -> "exit" | "overwrite" | "backup" | "overwrite-all" | "backup-all"
ConflictPrompt = Callable[[Path, bool], str]

_GLOB_CHARS = set("*?[")


def expand_globs(args: Iterable[str]) -> List[str]:
    """Replaces glob patterns by their sorted matches; unmatched patterns stay literal."""
    expanded: List[str] = []
    for arg in args:
        if _GLOB_CHARS & set(arg):
            matches = sorted(glob.glob(arg))
            if matches:
                expanded.extend(matches)
                continue
        expanded.append(arg)
    return expanded


def group_arguments(args: Sequence[str], catalog: PresetCatalog) -> List[Group]:
    groups: List[Group] = []
    files: List[str] = []
    presets: List[str] = []
    last_kind = None

    for arg in args:
        kind = "preset" if catalog.is_preset(arg) else "file"
        if files and presets and kind != last_kind:
            groups.append((files, presets))
            files, presets = [], []
        (presets if kind == "preset" else files).append(arg)
        last_kind = kind

    if files or presets:
        if not presets:
            raise ArgumentError(f"Presets not specified! (files: {', '.join(files)})", files)
        if not files:
            raise ArgumentError(f"Files not specified! (presets: {', '.join(presets)})", presets)
        groups.append((files, presets))
    return groups


def render_output(template: str, source: Path, extension: str, cwd: Path) -> Path:
    """Fills [name] (source relative to cwd, minus extension) and [ext]."""
    relative = os.path.relpath(source, cwd)
    if source.suffix:
        relative = relative[: -len(source.suffix)]
    output = template.replace("[name]", relative).replace("[ext]", extension)
    return Path(os.path.normpath(os.path.join(cwd, output)))


def validate_jobs(jobs: Sequence[Job]) -> None:
    """Rejects duplicate destinations and missing sources before scheduling."""
    seen = set()
    for job in jobs:
        if job.destination in seen:
            raise DuplicateDestinationError(job.destination)
        seen.add(job.destination)
        if not job.source.exists():
            raise MissingSourceError(job.source)


class JobBuilder:
    def __init__(
        self,
        catalog: PresetCatalog,
        output_template: str = "[name].[ext]",
        conflict_policy: ConflictPolicy = ConflictPolicy.ASK,
        prompt: Optional[ConflictPrompt] = None,
        cwd: Optional[Path] = None,
        copy_timestamps: bool = False,
    ):
        self.catalog = catalog
        self.output_template = output_template
        self.conflict_policy = conflict_policy
        self.prompt = prompt
        self.cwd = cwd or Path.cwd()
        self.copy_timestamps = copy_timestamps

    def plan(self, groups: Sequence[Group]) -> List[Tuple[Path, Path, Tuple[str, ...]]]:
        """(source, destination, presets) for every file, checked but not yet touching disk."""
        planned = []
        for files, presets in groups:
            chain = tuple(presets)
            for token in chain:
                self.catalog.resolve_args(token)
            for file in files:
                source = Path(os.path.normpath(os.path.join(self.cwd, file)))
                if not source.is_file():
                    raise MissingSourceError(source)
                extension = self.catalog.extension_for(chain) or source.suffix.lstrip(".")
                destination = render_output(self.output_template, source, extension, self.cwd)
                if not destination.name.endswith(f".{extension}"):
                    raise ExtensionMismatchError(destination, extension)
                planned.append((source, destination, chain))

        seen = set()
        for _, destination, _ in planned:
            if destination in seen:
                raise DuplicateDestinationError(destination)
            seen.add(destination)

        # A destination moved aside must not be what another job reads
        readers = Counter(source for source, _, _ in planned)
        for source, destination, _ in planned:
            if readers[destination] - (source == destination) > 0:
                raise ChainedOutputError(destination)
        return planned

    def build(self, groups: Sequence[Group]) -> List[Job]:
        """Plans, asks about every conflict, then moves existing destinations aside.

        Nothing is moved until every answer is known. If building fails after
        a move, every moved file is put back before the error propagates.
        """
        decided = [
            (source, destination, chain, self._decide(source, destination))
            for source, destination, chain in self.plan(groups)
        ]

        jobs: List[Job] = []
        try:
            for source, destination, chain, choice in decided:
                jobs.append(self._make_job(source, destination, chain, choice))
            validate_jobs(jobs)
        except Exception:
            self._rollback(jobs)
            raise
        return jobs

    def _decide(self, source: Path, destination: Path) -> Optional[ConflictPolicy]:
        if not destination.exists():
            return None
        choice = self._choose(destination, source == destination)
        if choice == ConflictPolicy.EXIT:
            raise ConflictAbort(destination)
        return choice

    def _make_job(
        self,
        source: Path,
        destination: Path,
        presets: Tuple[str, ...],
        choice: Optional[ConflictPolicy],
    ) -> Job:
        if choice is None:
            return Job(
                source=source,
                destination=destination,
                presets=presets,
                copy_timestamps_on_success=self.copy_timestamps,
            )

        in_place = source == destination
        backup = move_aside(destination, in_place=in_place)
        overwrite = choice == ConflictPolicy.OVERWRITE
        if in_place:
            # The original now lives at the backup path and is read from there
            return Job(
                source=backup,
                destination=destination,
                presets=presets,
                backup_path=backup,
                delete_source_on_success=overwrite,
                copy_timestamps_on_success=self.copy_timestamps,
            )
        return Job(
            source=source,
            destination=destination,
            presets=presets,
            backup_path=backup,
            discard_backup_on_success=overwrite,
            copy_timestamps_on_success=self.copy_timestamps,
        )

    def _rollback(self, jobs: Sequence[Job]) -> None:
        for job in reversed(jobs):
            if job.backup_path is not None and job.backup_path.exists():
                restore(job.backup_path, job.destination)
                logger.info(f"CONFLICT_ROLLBACK: {job.destination.name} restored")

    def _choose(self, destination: Path, in_place: bool) -> ConflictPolicy:
        if self.conflict_policy != ConflictPolicy.ASK:
            return self.conflict_policy
        if self.prompt is None:
            return ConflictPolicy.EXIT
        answer = self.prompt(destination, in_place)
        if answer.endswith("-all"):
            answer = answer[: -len("-all")]
            self.conflict_policy = ConflictPolicy(answer)
        logger.info(f"CONFLICT: {destination.name} -> {answer}")
        return ConflictPolicy(answer)
