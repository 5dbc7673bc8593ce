"""Runner: one ffmpeg invocation for one Job.

The Runner owns the process handle while the job runs, turns the process'
stderr into progress events, and on exit either finalizes the output or puts
the destination back the way it was (restoring a backup or removing the
partial file) and writes `<destination>.error-log`.

Lifecycle:
    IDLE --start()--> RUNNING --exit 0--> SUCCEEDED
                         |----exit != 0 / internal error / parse error--> FAILED
                         `----cancel()--> CANCELLED (no outcome event)

All events are published on the Runner's watcher thread, in the order the
stderr lines were parsed.
"""

import codecs
import logging
import os
import shlex
import subprocess
import threading
import time
import traceback
from pathlib import Path
from typing import Callable, List, Optional

from fmc.domain.errors import DurationParseError
from fmc.domain.events import (
    Event, JobAborted, JobCompleted, JobFailed, JobProgressUpdated, JobStarted,
)
from fmc.domain.models import Job, RunnerState
from fmc.infrastructure.event_bus import EventBus
from fmc.infrastructure.ffmpeg import ProgressParser, build_command
from fmc.pipeline.backup import restore

INTERNAL_ERROR_CODE = 1000
READ_CHUNK_SIZE = 65536
TERMINATE_TIMEOUT_S = 5.0
LOG_HEADER = "fmc media converter log"


def error_log_path(destination: Path) -> Path:
    return destination.with_name(destination.name + ".error-log")


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


class Runner:
    """Runs and supervises a single ffmpeg process.

    Args:
        job: The job to run.
        event_bus: Receives JobStarted/JobProgressUpdated and exactly one of
            JobCompleted/JobFailed/JobAborted (unless cancelled).
        ffmpeg: ffmpeg executable.
        preset_resolver: Maps a preset token to its ffmpeg argument fragment.
    """

    def __init__(
        self,
        job: Job,
        event_bus: EventBus,
        ffmpeg: str = "ffmpeg",
        preset_resolver: Optional[Callable[[str], List[str]]] = None,
    ):
        if preset_resolver is None:
            from fmc.config.presets import PresetCatalog
            preset_resolver = PresetCatalog.default().resolve_args

        self.job = job
        self.event_bus = event_bus
        self.ffmpeg = ffmpeg
        self.preset_resolver = preset_resolver
        self.logger = logging.getLogger(__name__)

        self.state = RunnerState.IDLE
        self.progress = 0.0
        self.size_before = _file_size(job.source)
        self.size_after = 0
        self.threads = 0
        self.command: List[str] = []
        self.exit_code: Optional[int] = None
        self.error: Optional[BaseException] = None

        self._process: Optional[subprocess.Popen] = None
        self._watcher: Optional[threading.Thread] = None
        self._log_parts: List[str] = []
        self._lock = threading.Lock()
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self.state == RunnerState.RUNNING

    @property
    def log_path(self) -> Path:
        return error_log_path(self.job.destination)

    @property
    def name(self) -> str:
        return self.job.destination.name

    # --- Lifecycle ---

    def start(self, threads: int) -> None:
        """Spawns ffmpeg with the given thread allocation. No-op unless IDLE."""
        if threads < 1:
            raise ValueError(f"threads must be >= 1, got {threads}")
        with self._lock:
            if self.state != RunnerState.IDLE:
                return
            self.state = RunnerState.RUNNING

        self.threads = threads
        self._started_at = time.monotonic()
        self.size_before = _file_size(self.job.source)

        try:
            self.job.destination.parent.mkdir(parents=True, exist_ok=True)
            self.command = build_command(
                self.ffmpeg,
                self.job.source,
                self.job.destination,
                self.job.presets,
                threads,
                self.preset_resolver,
            )
            self._log_parts = [self._log_header()]
            self.logger.info(f"RUNNER_START: {self.name} (threads={threads})")
            self.logger.debug(f"RUNNER_CMD: {shlex.join(self.command)}")
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except Exception as e:
            self.logger.error(f"RUNNER_SPAWN_FAILED: {self.name} - {e}")
            if not self._log_parts:
                self._log_parts = [self._log_header()]
            self._publish_terminal(self._internal_error(e))
            return

        self.event_bus.publish(JobStarted(job=self.job, threads=threads, command=self.command))

        self._watcher = threading.Thread(
            target=self._watch, name=f"runner-{self.name}", daemon=True
        )
        self._watcher.start()

    def cancel(self) -> None:
        """Best-effort abort. Terminates ffmpeg; no success/failure event follows."""
        with self._lock:
            if self.state != RunnerState.RUNNING:
                return
            self.state = RunnerState.CANCELLED
            process = self._process
        self.logger.info(f"RUNNER_CANCEL: {self.name}")
        if process is not None and process.poll() is None:
            process.terminate()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Joins the watcher thread. Returns False if it is still running.

        Re-raises the DurationParseError of an aborted runner.
        """
        if self._watcher is not None:
            self._watcher.join(timeout)
            if self._watcher.is_alive():
                return False
        if isinstance(self.error, DurationParseError):
            raise self.error
        return True

    # --- Watcher thread ---

    def _watch(self) -> None:
        process = self._process
        parser = ProgressParser()
        try:
            try:
                self._pump(process.stderr, parser)
            except DurationParseError as e:
                self._publish_terminal(self._abort(process, e))
                return
            code = process.wait()
        except Exception as e:
            self.logger.error(f"RUNNER_WATCH_ERROR: {self.name} - {e}")
            self._stop_process(process)
            self._publish_terminal(self._internal_error(e))
            return
        self._finish(code)

    def _pump(self, stream, parser: ProgressParser) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = stream.read1(READ_CHUNK_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            self._log_parts.append(text)
            self._publish_progress(parser.feed(text))
        tail = decoder.decode(b"", final=True)
        if tail:
            self._log_parts.append(tail)
            self._publish_progress(parser.feed(tail))
        self._publish_progress(parser.flush())

    def _publish_progress(self, values: List[float]) -> None:
        for value in values:
            if self.state != RunnerState.RUNNING:
                return
            self.progress = value
            self.event_bus.publish(JobProgressUpdated(job=self.job, progress=value))

    def _finish(self, code: int) -> None:
        self.exit_code = code
        with self._lock:
            cancelled = self.state == RunnerState.CANCELLED

        if cancelled:
            self._cleanup_after_cancel()
            return

        try:
            event = self._complete() if code == 0 else self._fail(code)
        except Exception as e:
            self.logger.error(f"RUNNER_INTERNAL_ERROR: {self.name} - {e}")
            event = self._internal_error(e)
        self._publish_terminal(event)

    # --- Outcomes ---

    def _complete(self) -> JobCompleted:
        job = self.job
        self.progress = 1.0
        self.size_after = job.destination.stat().st_size
        if job.copy_timestamps_on_success:
            source_stat = job.source.stat()
            os.utime(job.destination, (time.time(), source_stat.st_mtime))
        if job.delete_source_on_success:
            job.source.unlink()
        if job.discard_backup_on_success and job.backup_path and job.backup_path.exists():
            job.backup_path.unlink()
        self.state = RunnerState.SUCCEEDED
        self.logger.info(
            f"RUNNER_END: {self.name} status=succeeded size={self.size_before}->{self.size_after} "
            f"elapsed={self._elapsed():.2f}s"
        )
        return JobCompleted(job=job, size_before=self.size_before, size_after=self.size_after)

    def _fail(self, code: int) -> JobFailed:
        self._recover_destination()
        log_path = self._write_log()
        self.state = RunnerState.FAILED
        self.logger.info(f"RUNNER_END: {self.name} status=failed code={code} elapsed={self._elapsed():.2f}s")
        return JobFailed(job=self.job, exit_code=code, log_path=log_path)

    def _abort(self, process: subprocess.Popen, error: DurationParseError) -> JobAborted:
        self.error = error
        self.logger.error(f"RUNNER_PARSE_ERROR: {self.name} - {error}")
        self._stop_process(process)
        self.exit_code = process.returncode
        notes = f"Parse error: {error}"
        try:
            self._recover_destination()
        except Exception as e:
            self.logger.error(f"BACKUP_RESTORE_FAILED: {self.name} - {e}")
            notes += f"\n\nRecovery error:\n{traceback.format_exc()}"
        log_path = self._write_log_safely(notes)
        self.state = RunnerState.FAILED
        return JobAborted(job=self.job, error=str(error), log_path=log_path)

    def _internal_error(self, error: BaseException) -> JobFailed:
        """Failure path that must not raise: restore, log, report code 1000."""
        self.error = error
        notes = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        try:
            self._recover_destination()
        except Exception as e:
            self.logger.error(f"BACKUP_RESTORE_FAILED: {self.name} - {e}")
            notes += f"\nRecovery error:\n{traceback.format_exc()}"
        log_path = self._write_log_safely(f"Internal error:\n{notes}")
        self.state = RunnerState.FAILED
        self.logger.info(f"RUNNER_END: {self.name} status=internal_error code={INTERNAL_ERROR_CODE}")
        return JobFailed(job=self.job, exit_code=INTERNAL_ERROR_CODE, log_path=log_path)

    def _cleanup_after_cancel(self) -> None:
        try:
            self._recover_destination()
        except Exception as e:
            self.logger.error(f"BACKUP_RESTORE_FAILED: {self.name} - {e}")
        self._write_log_safely("Cancelled")
        self._process = None
        self.logger.info(f"RUNNER_END: {self.name} status=cancelled elapsed={self._elapsed():.2f}s")

    def _publish_terminal(self, event: Event) -> None:
        self._process = None
        self.event_bus.publish(event)

    # --- Destination recovery and error log ---

    def _recover_destination(self) -> None:
        """Restores the backup over the destination, or removes the partial output."""
        destination = self.job.destination
        backup = self.job.backup_path
        if backup is not None and backup.exists():
            restore(backup, destination)
        elif destination.exists():
            destination.unlink()

    def _log_header(self) -> str:
        command = shlex.join(self.command) if self.command else "(not built)"
        return (
            f"{LOG_HEADER}\n"
            f"job:\n{self.job.model_dump_json(indent=2)}\n"
            f"command line:\n{command}\n\n"
        )

    def _write_log(self, notes: Optional[str] = None) -> Path:
        text = "".join(self._log_parts)
        if notes:
            text += f"\n\n{notes}\n"
        path = self.log_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def _write_log_safely(self, notes: Optional[str] = None) -> Optional[Path]:
        try:
            return self._write_log(notes)
        except OSError as e:
            self.logger.error(f"ERROR_LOG_WRITE_FAILED: {self.name} - {e}")
            return None

    def _stop_process(self, process: Optional[subprocess.Popen]) -> None:
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=TERMINATE_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at
