import logging
import os
import time
from pathlib import Path
from typing import Optional, Union

DEFAULT_LOG_DIR = Path("/tmp/threatlens_logs")
LOG_FILE_LIFESPAN_SECONDS = 2 * 24 * 60 * 60  # 2 days

_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Union[int, str] = logging.INFO):
    """Console logging for the CLI and scripts."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=_FORMAT, handlers=[logging.StreamHandler()])

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def cleanup_old_logs(log_dir: Path, lifespan: int = LOG_FILE_LIFESPAN_SECONDS) -> int:
    """Deletes audit log files older than the lifespan. Returns how many were removed."""
    if not log_dir.is_dir():
        return 0

    removed = 0
    cutoff = time.time() - lifespan
    for log_file in log_dir.glob("audit_*.log"):
        try:
            if log_file.stat().st_mtime < cutoff:
                log_file.unlink()
                removed += 1
        except OSError as e:
            logging.getLogger(__name__).warning(f"Error deleting log {log_file.name}: {e}")
    return removed


def get_audit_logger(name: str, log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Logger writing one line per analysed file to a dated file.

    - Lives in its own directory (default /tmp/threatlens_logs).
    - Logs older than 2 days are removed on initialization.
    - A later call with another directory moves the logger there.
    """
    directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    cleanup_old_logs(directory)

    log_file = os.path.abspath(directory / f"audit_{time.strftime('%Y%m%d')}.log")
    logger = logging.getLogger(f"threatlens.audit.{name}")
    for existing in list(logger.handlers):
        if getattr(existing, "baseFilename", None) == log_file:
            return logger  # Avoid adding duplicate handlers
        # Another directory or an earlier day
        existing.close()
        logger.removeHandler(existing)

    logger.setLevel(logging.INFO)
    logger.propagate = False
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    logger.addHandler(handler)
    return logger
