import logging
from typing import Optional
from rich.console import Console
from fmc.infrastructure.event_bus import EventBus
from fmc.ui.state import UIState
from fmc.ui.dashboard import aborted_line, failed_line, finished_line, summary_line
from fmc.domain.events import (
    JobStarted, JobProgressUpdated, JobCompleted, JobFailed, JobAborted,
    QueueUpdated, ProcessingFinished,
)

class UIManager:
    """Subscribes to EventBus and updates UIState.

    Finished and failed jobs are printed once, above the live view.
    Must subscribe before the Scheduler so a job's result line is printed
    before its replacement shows up.
    """

    def __init__(self, bus: EventBus, state: UIState, console: Optional[Console] = None):
        self.bus = bus
        self.state = state
        self.console = console or Console()
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobAborted, self.on_job_aborted)
        self.bus.subscribe(QueueUpdated, self.on_queue_updated)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)

    def on_job_started(self, event: JobStarted):
        self.state.add_active_job(event.job, event.threads)

    def on_job_progress(self, event: JobProgressUpdated):
        self.state.set_progress(event.job, event.progress)

    def on_job_completed(self, event: JobCompleted):
        self.state.add_completed_job(event.job, event.size_before, event.size_after)
        self.console.print(finished_line(event.job.destination.name, event.size_before, event.size_after))

    def on_job_failed(self, event: JobFailed):
        self.state.add_failed_job(event.job)
        self.console.print(failed_line(event.job.destination.name, event.exit_code))
        if event.log_path:
            self.logger.info(f"UI: error log for {event.job.destination.name} at {event.log_path}")

    def on_job_aborted(self, event: JobAborted):
        self.state.add_failed_job(event.job)
        self.console.print(aborted_line(event.job.destination.name, event.error))

    def on_queue_updated(self, event: QueueUpdated):
        with self.state._lock:
            self.state.queued_count = event.queued

    def on_processing_finished(self, event: ProcessingFinished):
        self.console.print(summary_line(self.state, event.cancelled))
