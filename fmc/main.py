import traceback
import typer
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.text import Text

from fmc.config.loader import load_config_or_default
from fmc.config.presets import PresetCatalog
from fmc.domain.errors import ConfigurationError, DurationParseError
from fmc.domain.models import ConflictPolicy, RunnerState
from fmc.infrastructure.event_bus import EventBus
from fmc.infrastructure.logging import setup_logging
from fmc.pipeline.job_builder import JobBuilder, expand_globs, group_arguments
from fmc.pipeline.runner import Runner
from fmc.pipeline.scheduler import Scheduler
from fmc.ui.dashboard import Dashboard
from fmc.ui.manager import UIManager
from fmc.ui.state import UIState

CANCEL_JOIN_TIMEOUT_S = 10.0

app = typer.Typer(help="fmc - convert media files with ffmpeg presets, several at a time")

_CONFLICT_CHOICES = ["exit", "overwrite", "backup", "overwrite-all", "backup-all"]


def prompt_conflict(destination: Path, in_place: bool) -> str:
    """Asks what to do with an existing destination."""
    what = "is also the source" if in_place else "already exists"
    typer.secho(f"{destination} {what}.", fg=typer.colors.YELLOW)
    while True:
        answer = typer.prompt(
            f"What to do? [{'/'.join(_CONFLICT_CHOICES)}]", default="exit"
        ).strip().lower()
        if answer in _CONFLICT_CHOICES:
            return answer
        typer.secho(f"Unknown answer: {answer}", fg=typer.colors.RED, err=True)


def print_presets(catalog: PresetCatalog, console: Console) -> None:
    console.print("Presets:", style="bold")
    for preset in catalog.presets:
        line = Text("  ")
        line.append(preset.label, style="cyan")
        if preset.extension:
            line.append(f" (.{preset.extension})", style="magenta")
        line.append(f"  {preset.desc}")
        console.print(line)
        if preset.args:
            console.print(Text(f"      ffmpeg {' '.join(preset.args)}", style="dim"))


@app.command()
def convert(
    args: Optional[List[str]] = typer.Argument(
        None,
        help="Files and presets, e.g. 'a.mov b.mov mp4-fast 720p c.wav mp3'"
    ),
    ffmpeg: Optional[str] = typer.Option(None, "--ffmpeg", "-f", help="ffmpeg command to run"),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output path template using [name] and [ext]"
    ),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Thread budget (also max jobs at once)"),
    on_conflict: Optional[ConflictPolicy] = typer.Option(
        None, "--on-conflict", help="What to do with existing destinations"
    ),
    keep_times: bool = typer.Option(False, "--keep-times", help="Copy source modification times onto outputs"),
    config_path: Optional[Path] = typer.Option(Path("conf/fmc.yaml"), "--config", "-c", help="Path to YAML config"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
    list_presets: bool = typer.Option(False, "--list-presets", help="Print the preset catalog and exit"),
):
    """Convert files with a chain of ffmpeg presets, running jobs in parallel."""
    try:
        config = load_config_or_default(config_path)
        # Apply CLI overrides
        if ffmpeg: config.general.ffmpeg = ffmpeg
        if output: config.general.output = output
        if threads is not None:
            if threads < 1:
                typer.secho("Error: --threads must be at least 1.", fg=typer.colors.RED, err=True)
                raise typer.Exit(code=1)
            config.general.threads = threads
        if on_conflict is not None: config.general.on_conflict = on_conflict
        if keep_times: config.general.copy_timestamps = True
        if log_path is not None: config.general.log_path = str(log_path)
        if debug: config.general.debug = True

        catalog = PresetCatalog.default()
        catalog.extend(config.presets)
        console = Console()

        if list_presets:
            print_presets(catalog, console)
            return

        logger = setup_logging(
            Path(config.general.log_path) if config.general.log_path else None,
            debug=config.general.debug,
        )

        if not args:
            typer.secho("Error: No files or presets given.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        try:
            groups = group_arguments(expand_globs(args), catalog)
            builder = JobBuilder(
                catalog,
                output_template=config.general.output,
                conflict_policy=config.general.on_conflict,
                prompt=prompt_conflict,
                copy_timestamps=config.general.copy_timestamps,
            )
            jobs = builder.build(groups)
        except ConfigurationError as e:
            logger.error(f"CONFIG_ERROR: {e}")
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        budget = config.general.thread_budget
        logger.info(f"fmc started: {len(jobs)} job(s), threads={budget}, ffmpeg={config.general.ffmpeg}")
        console.print(f"fmc media converter, {len(jobs)} job(s) queued.")

        bus = EventBus()
        ui_state = UIState()
        # UIManager subscribes first so a result line prints before the refill
        UIManager(bus, ui_state, console=console)
        scheduler = Scheduler(
            jobs,
            budget,
            bus,
            runner_factory=lambda job: Runner(job, bus, config.general.ffmpeg, catalog.resolve_args),
        )

        dashboard = Dashboard(
            ui_state,
            console=console,
            refresh_per_second=config.ui.refresh_per_second,
            max_name_width=config.ui.max_name_width,
        )
        try:
            with dashboard:
                scheduler.start()
                while not scheduler.wait(0.5):
                    pass
        except KeyboardInterrupt:
            cancelled = scheduler.cancel()
            for runner in cancelled:
                try:
                    runner.wait(CANCEL_JOIN_TIMEOUT_S)
                except DurationParseError:
                    pass  # already reported through JobAborted
            logger.info(f"fmc cancelled by user, {len(cancelled)} job(s) stopped")
            typer.secho("\nConversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
            raise typer.Exit(code=130)

        failed = [r for r in scheduler.runners if r.state == RunnerState.FAILED]
        logger.info(
            f"fmc finished: {ui_state.completed_count} done, {len(failed)} failed"
        )
        if failed:
            typer.secho(f"{len(failed)} job(s) failed.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    except typer.Exit:
        raise

    except Exception as e:
        with open("error.log", "a", encoding="utf-8") as f:
            traceback.print_exc(file=f)
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
