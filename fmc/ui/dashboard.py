import threading
from typing import Optional
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text
from fmc.ui.state import UIState


def format_size(size: int) -> str:
    """Format size: 123B, 1.2KB, 45.1MB, 3.2GB."""
    if size == 0:
        return "0B"
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    idx = 0
    val = float(size)
    while val >= 1024.0 and idx < len(units) - 1:
        val /= 1024.0
        idx += 1
    if idx == 0:
        return f"{int(val)}B"
    return f"{val:.1f}{units[idx]}"


def progress_color(progress: float) -> str:
    """Red at 0%, through yellow, to green at 100%."""
    progress = min(1.0, max(0.0, progress))
    red = int(255 * min(1.0, 2 * (1 - progress)))
    green = int(255 * min(1.0, 2 * progress))
    return f"rgb({red},{green},0)"


def finished_line(name: str, size_before: int, size_after: int) -> Text:
    line = Text()
    line.append(f"{name} DONE! ", style="bold green")
    line.append(f"{format_size(size_before)} --> {format_size(size_after)} ", style="green")
    if size_before > 0:
        pct = size_after / size_before * 100
        larger = ", larger!!!" if size_after > size_before else ""
        line.append(f"({pct:.1f}% size of original{larger})", style="white")
    return line


def failed_line(name: str, exit_code: int) -> Text:
    line = Text()
    line.append(f"{name} FAILED! ", style="bold red")
    line.append(f"FFmpeg exited with error code {exit_code}.", style="red")
    return line


def aborted_line(name: str, error: str) -> Text:
    line = Text()
    line.append(f"{name} FAILED! ", style="bold red")
    line.append(f"Could not read ffmpeg output: {error}", style="red")
    return line


def summary_line(state: UIState, cancelled: bool = False) -> Text:
    """Totals for the whole run, printed once when processing ends."""
    with state._lock:
        completed, failed = state.completed_count, state.failed_count
        before, after = state.total_input_bytes, state.total_output_bytes
        ratio = state.compression_ratio
    line = Text()
    if cancelled:
        line.append("Stopped: ", style="bold yellow")
    else:
        line.append("Finished: ", style="bold")
    line.append(f"{completed} done, {failed} failed", style="white")
    if before > 0:
        line.append(f", {format_size(before)} --> {format_size(after)} ", style="white")
        line.append(f"({ratio * 100:.1f}% size of original)", style="white")
    return line


class Dashboard:
    """Live view of running jobs: name, percentage and a progress bar each."""

    def __init__(self, state: UIState, console: Optional[Console] = None,
                 refresh_per_second: int = 4, max_name_width: int = 40):
        self.state = state
        self.console = console or Console()
        self.refresh_per_second = refresh_per_second
        self.max_name_width = max_name_width
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    def _sanitize_filename(self, filename: str) -> str:
        """Truncate long names as prefix…suffix."""
        if len(filename) <= self.max_name_width:
            return filename
        part_len = (self.max_name_width - 1) // 2
        return f"{filename[:part_len]}…{filename[-part_len:]}"

    def create_display(self) -> RenderableType:
        rows = self.state.snapshot()
        with self.state._lock:
            queued = self.state.queued_count

        names = [self._sanitize_filename(job.destination.name) for job, _, _ in rows]
        name_w = max((len(n) for n in names), default=0)
        bar_w = max(10, self.console.size.width - name_w - 12)

        table = Table.grid(padding=(0, 1))
        table.add_column(style="magenta", no_wrap=True)
        table.add_column(style="blue", justify="right", width=6)
        table.add_column()
        for name, (job, progress, _) in zip(names, rows):
            table.add_row(
                name,
                f"{progress * 100:.1f}%",
                ProgressBar(
                    total=1.0,
                    completed=progress,
                    width=bar_w,
                    complete_style=progress_color(progress),
                    finished_style=progress_color(1.0),
                ),
            )

        if queued:
            return Group(table, Text(f"and {queued} more files in queue.", style="dim"))
        return table

    def _refresh_loop(self):
        interval = 1.0 / self.refresh_per_second
        while not self._stop_refresh.wait(interval):
            if self._live:
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)

    def start(self):
        self._live = Live(
            self.create_display(),
            console=self.console,
            refresh_per_second=self.refresh_per_second,
            transient=True,
        )
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            self._live.stop()
            self._live = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
