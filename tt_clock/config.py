"""Process configuration: data directory and logging."""

from __future__ import annotations

import logging
from pathlib import Path

DATA_DIR_ENV = "TT_CLOCK_DIR"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "tt-clock"
DB_FILENAME = "entries.db"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def resolve_data_dir(override: Path | None = None) -> Path:
    """Return the data directory, creating it if needed."""
    data_dir = (override or DEFAULT_DATA_DIR).expanduser()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def db_path(data_dir: Path) -> Path:
    return data_dir / DB_FILENAME


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )
