"""Logging setup and FlightLogger circular-buffer handler for forensic dumps after a failed run."""

import logging
import sys
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from scenescout.core.config import get_config

FLIGHT_LOG_CAPACITY = 50_000
# Relative to cwd when no config is provided.
DEFAULT_FORENSICS_DIR = Path.cwd() / "logs" / "forensics"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


_flight_logger: "FlightLogger | None" = None


class FlightLogger(logging.Handler):
    """
    Circular buffer handler: keeps the last 50,000 log records (all levels) in memory.
    dump(run_id, video_name=None) writes the buffer to logs/forensics/{run_id}_{timestamp}.log.
    """

    def __init__(
        self,
        capacity: int = FLIGHT_LOG_CAPACITY,
        forensics_dir: str | Path | None = None,
    ) -> None:
        super().__init__(level=logging.DEBUG)
        self._buffer: deque[logging.LogRecord] = deque(maxlen=capacity)
        self._forensics_dir = Path(forensics_dir if forensics_dir is not None else DEFAULT_FORENSICS_DIR)

    def emit(self, record: logging.LogRecord) -> None:
        self._buffer.append(record)

    def dump(
        self,
        run_id: str,
        video_name: str | None = None,
    ) -> str:
        """Write buffer to forensics dir; return path to the written file."""
        self._forensics_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        if video_name is not None:
            name = f"{run_id}_{video_name}_{timestamp}.log"
        else:
            name = f"{run_id}_{timestamp}.log"
        filepath = self._forensics_dir / name
        formatter = self.formatter or logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
        with open(filepath, "w") as f:
            for record in self._buffer:
                f.write(formatter.format(record) + "\n")
        return str(filepath)

    def __len__(self) -> int:
        return len(self._buffer)


def get_flight_logger() -> FlightLogger | None:
    """Return the global FlightLogger handler created by setup_logging(), if any."""
    return _flight_logger


def setup_logging(level: str | None = None) -> None:
    """
    Configure application logging.

    Invariants:
    - The root logger is set to DEBUG so that all records reach handlers.
    - Console handler (stderr) logs at the configured log_level (WARNING by default) so
      progress output on stdout stays clean.
    - A FlightLogger handler captures all levels at DEBUG into an in-memory circular buffer.
    """
    global _flight_logger
    cfg = get_config()
    console_level = logging.getLevelName((level or cfg.log_level).upper())
    if not isinstance(console_level, int):
        console_level = logging.WARNING

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    # Remove existing handlers so we don't duplicate when called again
    for h in root.handlers[:]:
        root.removeHandler(h)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)
    root.addHandler(console)

    flight = FlightLogger(
        capacity=FLIGHT_LOG_CAPACITY,
        forensics_dir=cfg.forensics_dir,
    )
    flight.setLevel(logging.DEBUG)
    flight.setFormatter(formatter)
    root.addHandler(flight)
    _flight_logger = flight
