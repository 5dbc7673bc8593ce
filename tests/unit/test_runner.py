import os
import pytest
from pathlib import Path
from fmc.domain.errors import DurationParseError
from fmc.domain.events import (
    JobAborted, JobCompleted, JobFailed, JobProgressUpdated, JobStarted,
)
from fmc.domain.models import RunnerState
from fmc.pipeline.runner import INTERNAL_ERROR_CODE, LOG_HEADER, Runner, error_log_path

def _run(runner, threads=2):
    runner.start(threads)
    assert runner.wait(5.0)
    return runner

def test_success(make_job, event_bus, recorder, fake_ffmpeg, stderr_script):
    job = make_job()
    fake_ffmpeg.scripts["clip.mp4"] = {"chunks": stderr_script(), "output": b"small"}

    runner = _run(Runner(job, event_bus))

    assert runner.state == RunnerState.SUCCEEDED
    assert recorder.types()[0] is JobStarted
    assert [e.progress for e in recorder.of(JobProgressUpdated)] == [0.5, 1.0]
    completed = recorder.of(JobCompleted)
    assert len(completed) == 1
    assert completed[0].size_before == 100
    assert completed[0].size_after == 5
    assert runner.progress == 1.0
    assert not error_log_path(job.destination).exists()

def test_command_line(make_job, event_bus, fake_ffmpeg):
    job = make_job(presets=("mp4-fast", "720p"))
    _run(Runner(job, event_bus, ffmpeg="/opt/ffmpeg"), threads=3)

    cmd = fake_ffmpeg.processes[0].args
    assert cmd[:5] == ["/opt/ffmpeg", "-threads", "3", "-i", str(job.source)]
    assert cmd[-3:] == ["-vf", "scale=1280:-2", str(job.destination)]
    kwargs = fake_ffmpeg.call_args.kwargs
    assert kwargs["stderr"] is not None

def test_injected_preset_resolver(make_job, event_bus, fake_ffmpeg):
    job = make_job(presets=("custom",))
    _run(Runner(job, event_bus, preset_resolver=lambda token: ["-an"]))
    assert "-an" in fake_ffmpeg.processes[0].args

def test_progress_is_monotonic_for_monotonic_time(make_job, event_bus, recorder, fake_ffmpeg, stderr_script):
    job = make_job()
    times = ("00:00:01.00", "00:00:03.00", "00:00:03.00", "00:00:09.00")
    fake_ffmpeg.scripts["clip.mp4"] = {"chunks": stderr_script(times=times)}

    _run(Runner(job, event_bus))

    values = [e.progress for e in recorder.of(JobProgressUpdated)]
    assert values == sorted(values)
    assert all(0.0 <= v <= 1.0 for v in values)

def test_chunk_boundaries_inside_utf8_and_lines(make_job, event_bus, recorder, fake_ffmpeg):
    job = make_job()
    text = "Input #0 from 'żółw.mov':\n  Duration: 00:00:10.00, start: 0\nframe=120 time=00:00:05.00\n".encode("utf-8")
    chunks = [text[i:i + 7] for i in range(0, len(text), 7)]
    fake_ffmpeg.scripts["clip.mp4"] = {"chunks": chunks, "returncode": 1}

    runner = _run(Runner(job, event_bus))

    assert [e.progress for e in recorder.of(JobProgressUpdated)] == [0.5]
    assert "żółw.mov" in runner.log_path.read_text(encoding="utf-8")

def test_failure_removes_partial_output_and_writes_log(make_job, event_bus, recorder, fake_ffmpeg, stderr_script):
    job = make_job()
    fake_ffmpeg.scripts["clip.mp4"] = {
        "chunks": stderr_script() + [b"Error while encoding\n"],
        "returncode": 1,
        "output": b"partial",
    }

    runner = _run(Runner(job, event_bus))

    assert runner.state == RunnerState.FAILED
    failed = recorder.of(JobFailed)
    assert len(failed) == 1
    assert failed[0].exit_code == 1
    assert failed[0].log_path == error_log_path(job.destination)
    assert not job.destination.exists()
    assert recorder.of(JobCompleted) == []

    log = runner.log_path.read_text(encoding="utf-8")
    assert log.startswith(f"{LOG_HEADER}\njob:\n")
    assert "command line:\n" in log
    assert str(job.destination) in log
    assert "Error while encoding" in log

def test_failure_restores_backup(make_job, tmp_path, event_bus, recorder, fake_ffmpeg):
    backup = tmp_path / "out" / "clip.backup.mp4"
    backup.parent.mkdir(parents=True)
    backup.write_bytes(b"previous version")
    job = make_job(backup_path=backup, discard_backup_on_success=True)
    fake_ffmpeg.scripts["clip.mp4"] = {"returncode": 1, "output": b"partial"}

    _run(Runner(job, event_bus))

    assert job.destination.read_bytes() == b"previous version"
    assert not backup.exists()

def test_success_keeps_backup(make_job, tmp_path, event_bus, fake_ffmpeg):
    backup = tmp_path / "out" / "clip.backup.mp4"
    backup.parent.mkdir(parents=True)
    backup.write_bytes(b"previous version")
    job = make_job(backup_path=backup)

    _run(Runner(job, event_bus))

    assert backup.read_bytes() == b"previous version"
    assert job.destination.read_bytes() == b"converted"

def test_success_discards_backup_in_overwrite_mode(make_job, tmp_path, event_bus, fake_ffmpeg):
    backup = tmp_path / "out" / "clip.backup.mp4"
    backup.parent.mkdir(parents=True)
    backup.write_bytes(b"previous version")
    job = make_job(backup_path=backup, discard_backup_on_success=True)

    _run(Runner(job, event_bus))

    assert not backup.exists()

def test_success_deletes_source_and_copies_mtime(make_job, event_bus, fake_ffmpeg):
    job = make_job(delete_source_on_success=True, copy_timestamps_on_success=True)
    os.utime(job.source, (1_000_000, 1_000_000))

    _run(Runner(job, event_bus))

    assert not job.source.exists()
    assert job.destination.stat().st_mtime == 1_000_000

def test_missing_output_is_internal_error(make_job, event_bus, recorder, fake_ffmpeg):
    job = make_job()
    fake_ffmpeg.scripts["clip.mp4"] = {"output": None}

    runner = _run(Runner(job, event_bus))

    assert runner.state == RunnerState.FAILED
    assert [e.exit_code for e in recorder.of(JobFailed)] == [INTERNAL_ERROR_CODE]
    assert "Internal error" in runner.log_path.read_text(encoding="utf-8")

def test_spawn_failure_is_internal_error(make_job, event_bus, recorder, fake_ffmpeg):
    job = make_job()
    fake_ffmpeg.side_effect = FileNotFoundError("ffmpeg not found")

    runner = Runner(job, event_bus)
    runner.start(1)

    assert runner.state == RunnerState.FAILED
    assert recorder.types() == [JobFailed]
    assert recorder.of(JobFailed)[0].exit_code == INTERNAL_ERROR_CODE
    assert "ffmpeg not found" in runner.log_path.read_text(encoding="utf-8")
    assert runner.wait(1.0)

def test_unknown_preset_is_internal_error(make_job, event_bus, recorder, fake_ffmpeg):
    job = make_job(presets=("bogus",))

    runner = Runner(job, event_bus)
    runner.start(1)

    failed = recorder.of(JobFailed)[0]
    assert failed.exit_code == INTERNAL_ERROR_CODE
    assert failed.log_path == error_log_path(job.destination)
    assert not fake_ffmpeg.called
    assert "(not built)" in runner.log_path.read_text(encoding="utf-8")

def test_internal_error_log_written_into_missing_directory(make_job, tmp_path, event_bus, recorder):
    job = make_job(presets=("bogus",), destination=tmp_path / "new" / "deeper" / "clip.mp4")

    runner = Runner(job, event_bus)
    runner.start(1)

    assert recorder.of(JobFailed)[0].log_path == runner.log_path
    assert runner.log_path.exists()
    assert "Unknown preset: bogus" in runner.log_path.read_text(encoding="utf-8")

def test_unparsable_duration_aborts(make_job, event_bus, recorder, fake_ffmpeg):
    job = make_job()
    fake_ffmpeg.scripts["clip.mp4"] = {
        "chunks": [b"  Duration: soon\n", b"frame=1 time=00:00:01.00\n"],
        "hold": True,
    }

    runner = Runner(job, event_bus)
    runner.start(2)
    with pytest.raises(DurationParseError):
        runner.wait(5.0)

    assert runner.state == RunnerState.FAILED
    assert fake_ffmpeg.processes[0].terminated
    aborted = recorder.of(JobAborted)
    assert len(aborted) == 1
    assert "Duration: soon" in aborted[0].error
    assert recorder.of(JobFailed) == []
    assert recorder.of(JobProgressUpdated) == []
    assert not job.destination.exists()
    assert "Parse error" in runner.log_path.read_text(encoding="utf-8")

def test_start_is_idempotent(make_job, event_bus, recorder, fake_ffmpeg):
    runner = _run(Runner(make_job(), event_bus))
    runner.start(2)

    assert fake_ffmpeg.call_count == 1
    assert len(recorder.of(JobStarted)) == 1

def test_start_rejects_zero_threads(make_job, event_bus):
    with pytest.raises(ValueError):
        Runner(make_job(), event_bus).start(0)

def test_cancel_terminates_without_outcome(make_job, event_bus, recorder, fake_ffmpeg):
    job = make_job()
    fake_ffmpeg.scripts["clip.mp4"] = {"hold": True, "output": b"partial"}

    runner = Runner(job, event_bus)
    runner.start(1)
    assert runner.running
    runner.cancel()
    assert runner.wait(5.0)

    assert runner.state == RunnerState.CANCELLED
    assert fake_ffmpeg.processes[0].terminated
    assert recorder.of(JobCompleted) == []
    assert recorder.of(JobFailed) == []
    assert not job.destination.exists()
    assert runner.log_path.exists()

def test_cancel_idle_runner_is_noop(make_job, event_bus):
    runner = Runner(make_job(), event_bus)
    runner.cancel()
    assert runner.state == RunnerState.IDLE
