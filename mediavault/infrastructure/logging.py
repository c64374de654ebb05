import logging
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler

def setup_logging(
    log_dir: Path,
    debug: bool = False,
    log_path: Optional[Path] = None,
    console: bool = False,
) -> logging.Logger:
    """
    Setup logging configuration for mediavault.

    Creates the log directory and mediavault.log file.
    Returns configured logger instance.

    Args:
        log_dir: Directory where the log file is written
        debug: If True, enable DEBUG level logging
        log_path: Optional path to log file (overrides log_dir)
        console: If True, also render log records on the terminal via rich
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (log_dir / "mediavault.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handlers: list = [logging.FileHandler(log_file)]
    if console:
        handlers.append(RichHandler(show_path=False, rich_tracebacks=False))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )
    for name in ("sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
