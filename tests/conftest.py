import threading
import pytest
from collections import deque
from pathlib import Path
from unittest.mock import patch

from fmc.config.presets import PresetCatalog
from fmc.domain.events import (
    JobStarted, JobProgressUpdated, JobCompleted, JobFailed, JobAborted,
    QueueUpdated, ProcessingFinished,
)
from fmc.domain.models import Job
from fmc.infrastructure.event_bus import EventBus

# ============================================================================
# Fake ffmpeg process
# ============================================================================

class ChunkStream:
    """stderr stand-in: hands out scripted byte chunks, then EOF.

    When a gate is given, EOF is held back until the gate is set (the process
    was released or terminated), which keeps a job "running".
    """

    def __init__(self, chunks, gate=None):
        self._chunks = deque(chunks)
        self._gate = gate

    def read1(self, size=-1):
        if self._chunks:
            return self._chunks.popleft()
        if self._gate is not None:
            self._gate.wait(5.0)
        return b""


class FakeProcess:
    """Stands in for subprocess.Popen running ffmpeg.

    Writes `output` to the destination (last argv entry) on spawn, as ffmpeg
    would create its output file early.
    """

    def __init__(self, cmd, chunks=(), returncode=0, output=b"converted", hold=False):
        self.args = list(cmd)
        self.destination = Path(cmd[-1])
        self.pid = 4242
        self.returncode = None
        self.terminated = False
        self._exit_code = returncode
        self.released = threading.Event()
        if not hold:
            self.released.set()
        self.stderr = ChunkStream(chunks, self.released)
        if output is not None:
            self.destination.write_bytes(output)

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self.released.wait(timeout if timeout is not None else 5.0)
        if self.returncode is None:
            self.returncode = -15 if self.terminated else self._exit_code
        return self.returncode

    def release(self):
        self.released.set()

    def terminate(self):
        self.terminated = True
        self.released.set()

    def kill(self):
        self.terminate()


@pytest.fixture
def fake_ffmpeg():
    """Patches subprocess.Popen with FakeProcess.

    Per-destination behaviour goes in `fake_ffmpeg.scripts[<file name>]` as
    FakeProcess keyword arguments; spawned processes are collected in
    `fake_ffmpeg.processes`.
    """
    scripts = {}
    processes = []

    def spawn(cmd, **kwargs):
        proc = FakeProcess(cmd, **scripts.get(Path(cmd[-1]).name, {}))
        processes.append(proc)
        return proc

    with patch("subprocess.Popen", side_effect=spawn) as popen:
        popen.scripts = scripts
        popen.processes = processes
        yield popen


@pytest.fixture
def stderr_script():
    """Builds ffmpeg-like stderr bytes: banner, Duration line, progress lines."""

    def build(duration="00:00:10.00", times=("00:00:05.00", "00:00:10.00")):
        text = (
            "ffmpeg version 6.0 Copyright (c) 2000-2023 the FFmpeg developers\n"
            "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'in.mov':\n"
            f"  Duration: {duration}, start: 0.000000, bitrate: 1205 kb/s\n"
        )
        for i, t in enumerate(times):
            text += f"frame={(i + 1) * 120:5d} fps= 30 q=28.0 size=    256kB time={t} bitrate= 209.7kbits/s speed=1.2x\r"
        text += "\nvideo:200kB audio:50kB subtitle:0kB\n"
        return [text.encode("utf-8")]

    return build

# ============================================================================
# Domain fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def catalog():
    return PresetCatalog.default()


@pytest.fixture
def make_job(tmp_path):
    """Factory creating a source file and the Job converting it."""

    def factory(name="clip", presets=("mp4",), content=b"0123456789" * 10, **kwargs):
        source = tmp_path / f"{name}.mov"
        source.write_bytes(content)
        destination = kwargs.pop("destination", tmp_path / "out" / f"{name}.mp4")
        return Job(source=source, destination=destination, presets=tuple(presets), **kwargs)

    return factory


class EventRecorder:
    def __init__(self, bus):
        self.events = []
        self._lock = threading.Lock()
        for event_type in (JobStarted, JobProgressUpdated, JobCompleted, JobFailed,
                           JobAborted, QueueUpdated, ProcessingFinished):
            bus.subscribe(event_type, self._record)

    def _record(self, event):
        with self._lock:
            self.events.append(event)

    def of(self, event_type):
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]

    def types(self):
        with self._lock:
            return [type(e) for e in self.events]


@pytest.fixture
def recorder(event_bus):
    """Records every event published on the event_bus fixture."""
    return EventRecorder(event_bus)
