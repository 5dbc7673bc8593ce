import logging
from pathlib import Path
from typing import Optional

DEFAULT_LOG_NAME = "fmc.log"

def setup_logging(log_path: Optional[Path] = None, debug: bool = False) -> logging.Logger:
    """
    Setup logging configuration for fmc.

    Logs go to a file only; the terminal belongs to the live job view.

    Args:
        log_path: Path to the log file (defaults to ./fmc.log)
        debug: If True, enable DEBUG level logging including full command lines
    """
    log_file = Path(log_path) if log_path else Path.cwd() / DEFAULT_LOG_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger("fmc")
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
