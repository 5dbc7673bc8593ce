"""Scheduler: spreads a fixed thread budget over a queue of Runners.

Admission is decided once, at start:

- more jobs than threads (n > T): start T runners with 1 thread each and keep
  the rest queued; every finished runner is replaced by the next queued one,
  again with 1 thread.
- otherwise (n <= T): start every runner at once with T // n threads, the
  first one also taking the remainder. Nothing is ever refilled.

Completion handling runs on the finishing Runner's watcher thread and is
serialized by a single re-entrant lock, so at most one admission decision
happens at a time.
"""

import logging
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence

from fmc.domain.events import (
    JobAborted, JobCompleted, JobEvent, JobFailed, ProcessingFinished, QueueUpdated,
)
from fmc.domain.models import Job, RunnerState
from fmc.infrastructure.event_bus import EventBus
from fmc.pipeline.job_builder import validate_jobs
from fmc.pipeline.runner import Runner


def plan(job_count: int, threads: int) -> List[int]:
    """Thread allocation for the runners started at admission, in queue order."""
    if threads < 1:
        raise ValueError(f"Thread budget must be >= 1, got {threads}")
    if job_count <= 0:
        return []
    if job_count > threads:
        return [1] * threads
    per_job = threads // job_count
    remainder = threads - per_job * job_count
    return [per_job + remainder] + [per_job] * (job_count - 1)


class Scheduler:
    """Drives every job to a terminal state exactly once.

    Args:
        jobs: Jobs in queue order. Validated on construction (distinct
            destinations, existing sources).
        threads: Thread budget T.
        event_bus: Bus the runners publish on; the scheduler listens for
            terminal events and publishes QueueUpdated/ProcessingFinished.
        runner_factory: Builds the Runner for a Job.
    """

    def __init__(
        self,
        jobs: Sequence[Job],
        threads: int,
        event_bus: EventBus,
        runner_factory: Callable[[Job], Runner],
    ):
        if threads < 1:
            raise ValueError(f"Thread budget must be >= 1, got {threads}")
        validate_jobs(jobs)

        self.threads = threads
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

        self._runners: List[Runner] = [runner_factory(job) for job in jobs]
        self._by_destination: Dict[Path, Runner] = {r.job.destination: r for r in self._runners}
        self._queue: Deque[Runner] = deque(self._runners)
        self._running: List[Runner] = []
        self._allocations: Dict[Path, int] = {}
        self._finished: Dict[Path, RunnerState] = {}
        self._refill = False
        self._started = False
        self._cancelled = False
        self._lock = threading.RLock()
        self._done = threading.Event()

        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.event_bus.subscribe(JobCompleted, self._on_terminal)
        self.event_bus.subscribe(JobFailed, self._on_terminal)
        self.event_bus.subscribe(JobAborted, self._on_terminal)

    # --- Presentation ---

    @property
    def runners(self) -> List[Runner]:
        return list(self._runners)

    @property
    def running(self) -> List[Runner]:
        with self._lock:
            return list(self._running)

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def allocated_threads(self) -> int:
        with self._lock:
            return sum(self._allocations.values())

    @property
    def results(self) -> Dict[Path, RunnerState]:
        with self._lock:
            return dict(self._finished)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    # --- Control ---

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
            allocation = plan(len(self._queue), self.threads)
            self._refill = len(self._queue) > self.threads
            self.logger.info(
                f"SCHEDULER_PLAN: jobs={len(self._queue)} threads={self.threads} "
                f"mode={'refill' if self._refill else 'split'} allocation={allocation}"
            )
            if not allocation:
                self._finish()
                return
            for count in allocation:
                # A runner that fails inside start() is refilled re-entrantly
                if not self._queue:
                    break
                self._admit(self._queue.popleft(), count)
            self._publish_queue()
            self._check_finished()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def run(self, timeout: Optional[float] = None) -> bool:
        self.start()
        return self.wait(timeout)

    def cancel(self) -> List[Runner]:
        """Drops the queue and cancels running jobs. Returns the cancelled runners."""
        with self._lock:
            if self._done.is_set():
                return []
            self._cancelled = True
            self._queue.clear()
            cancelled = list(self._running)
            self._running.clear()
            self._allocations.clear()
        self.logger.info(f"SCHEDULER_CANCEL: cancelling {len(cancelled)} running job(s)")
        for runner in cancelled:
            runner.cancel()
        self.event_bus.publish(ProcessingFinished(cancelled=True))
        self._done.set()
        return cancelled

    # --- Internals ---

    def _admit(self, runner: Runner, threads: int) -> None:
        self._running.append(runner)
        self._allocations[runner.job.destination] = threads
        self.logger.info(f"SCHEDULER_ADMIT: {runner.name} threads={threads} queued={len(self._queue)}")
        runner.start(threads)

    def _on_terminal(self, event: JobEvent) -> None:
        with self._lock:
            runner = self._by_destination.get(event.job.destination)
            if runner is None or runner not in self._running:
                return
            self._running.remove(runner)
            self._allocations.pop(runner.job.destination, None)
            self._finished[runner.job.destination] = runner.state

            if self._refill and self._queue and not self._cancelled:
                next_runner = self._queue.popleft()
                self.logger.info(f"SCHEDULER_REFILL: {runner.name} done, starting {next_runner.name}")
                self._admit(next_runner, 1)

            if self._cancelled:
                return
            self._publish_queue()
            self._check_finished()

    def _publish_queue(self) -> None:
        self.event_bus.publish(QueueUpdated(
            running=[r.job for r in self._running],
            queued=len(self._queue),
        ))

    def _check_finished(self) -> None:
        if not self._running and not self._queue and not self._done.is_set():
            self._finish()

    def _finish(self) -> None:
        self.logger.info(f"SCHEDULER_END: finished={len(self._finished)}")
        self.event_bus.publish(ProcessingFinished())
        self._done.set()
