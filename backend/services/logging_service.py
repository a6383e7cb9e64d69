"""
Logging and retention helper service.
"""
from __future__ import annotations

from pathlib import Path
from datetime import datetime, timedelta
import logging


_FILE_HANDLER_TAG = "quantpilot_file_handler"
LOG_FILE_NAME = "quantpilot.log"


def configure_file_logging(log_directory: str, formatter: logging.Formatter | None = None) -> Path:
    """Attach (or replace) the backend log file handler on the root logger."""
    log_dir = Path(log_directory).expanduser().resolve()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    existing = next((h for h in root_logger.handlers if getattr(h, "name", "") == _FILE_HANDLER_TAG), None)
    if existing:
        root_logger.removeHandler(existing)
        existing.close()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.name = _FILE_HANDLER_TAG
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter or logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root_logger.addHandler(file_handler)
    if root_logger.level > logging.INFO:
        root_logger.setLevel(logging.INFO)
    return log_file


def cleanup_old_logs(directory: str, retention_days: int) -> int:
    """Delete rotated log files older than retention_days. Returns deleted file count."""
    target_dir = Path(directory).expanduser().resolve()
    if not target_dir.exists() or retention_days <= 0:
        return 0

    cutoff = datetime.now() - timedelta(days=retention_days)
    deleted = 0
    for path in target_dir.glob("*.log*"):
        if not path.is_file() or path.name == LOG_FILE_NAME:
            continue
        try:
            if datetime.fromtimestamp(path.stat().st_mtime) < cutoff:
                path.unlink(missing_ok=True)
                deleted += 1
        except OSError:
            continue
    return deleted
