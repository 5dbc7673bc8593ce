import threading
from pathlib import Path
from typing import Dict, List
from fmc.domain.models import Job

class UIState:
    """Thread-safe state shared by the UIManager (writer) and the Dashboard (reader)."""

    def __init__(self):
        self._lock = threading.RLock()

        # Counters
        self.completed_count = 0
        self.failed_count = 0
        self.queued_count = 0

        # Bytes tracking
        self.total_input_bytes = 0
        self.total_output_bytes = 0

        # Running jobs, keyed by destination
        self.active_jobs: List[Job] = []
        self.progress: Dict[Path, float] = {}
        self.threads: Dict[Path, int] = {}

    @property
    def compression_ratio(self) -> float:
        with self._lock:
            if self.total_input_bytes == 0:
                return 0.0
            return self.total_output_bytes / self.total_input_bytes

    def add_active_job(self, job: Job, threads: int):
        with self._lock:
            if job not in self.active_jobs:
                self.active_jobs.append(job)
            self.threads[job.destination] = threads
            self.progress.setdefault(job.destination, 0.0)

    def remove_active_job(self, job: Job):
        with self._lock:
            if job in self.active_jobs:
                self.active_jobs.remove(job)
            self.progress.pop(job.destination, None)
            self.threads.pop(job.destination, None)

    def set_progress(self, job: Job, progress: float):
        with self._lock:
            if job.destination in self.progress:
                self.progress[job.destination] = progress

    def add_completed_job(self, job: Job, size_before: int, size_after: int):
        with self._lock:
            self.completed_count += 1
            self.total_input_bytes += size_before
            self.total_output_bytes += size_after
            self.remove_active_job(job)

    def add_failed_job(self, job: Job):
        with self._lock:
            self.failed_count += 1
            self.remove_active_job(job)

    def snapshot(self) -> List[tuple]:
        """(job, progress, threads) for every running job, in start order."""
        with self._lock:
            return [
                (job, self.progress.get(job.destination, 0.0), self.threads.get(job.destination, 0))
                for job in self.active_jobs
            ]
