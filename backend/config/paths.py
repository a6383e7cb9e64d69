"""
Where the backend keeps its local files: the SQLite entity store and logs.

QUANTPILOT_APP_DATA_DIR overrides the per-platform default. When the chosen
directory cannot be written (read-only home, sandboxed CI) the backend falls
back to ./.quantpilot-data and then to the system temp directory.
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path


APP_IDENTIFIER = "com.quantpilot.backend"
DATA_DIR_ENV = "QUANTPILOT_APP_DATA_DIR"
DATABASE_FILE_NAME = "quantpilot.db"


def _platform_data_root() -> Path:
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    if os.name == "nt":
        appdata = os.getenv("APPDATA", "").strip()
        return Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    xdg = os.getenv("XDG_DATA_HOME", "").strip()
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


def _is_writable(directory: Path) -> bool:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        marker = directory / ".quantpilot_write_test"
        marker.write_text("ok", encoding="utf-8")
        marker.unlink()
    except OSError:
        return False
    return True


def resolve_app_data_dir() -> Path:
    """Return the first writable data directory among the candidates."""
    override = os.getenv(DATA_DIR_ENV, "").strip()
    preferred = Path(override) if override else _platform_data_root() / APP_IDENTIFIER

    candidates = [
        preferred.expanduser().resolve(),
        (Path.cwd() / ".quantpilot-data").resolve(),
    ]
    for candidate in candidates:
        if _is_writable(candidate):
            return candidate

    last_resort = (Path(tempfile.gettempdir()) / "quantpilot-data").resolve()
    last_resort.mkdir(parents=True, exist_ok=True)
    return last_resort


def default_database_url() -> str:
    # sqlite URLs take three slashes before an absolute path
    return f"sqlite:///{resolve_app_data_dir() / DATABASE_FILE_NAME}"


def default_log_directory() -> str:
    return str(resolve_app_data_dir() / "logs")
