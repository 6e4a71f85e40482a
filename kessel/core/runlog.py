"""Append-only audit log for a single pipeline run.

One ``RunLogger`` is created per run and handed to the sequencer and to every
task that records decisions. Entries written before the project directory
exists are buffered and flushed once the log is opened. Entries written after
``close()`` are dropped silently so late cleanup code cannot crash shutdown.
"""
from __future__ import annotations
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Callable, List, Optional

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_fields(fields: dict[str, Any]) -> str:
    parts = []
    for key, value in fields.items():
        if value is None:
            continue
        text = str(value)
        if not text or any(c.isspace() for c in text) or '"' in text:
            text = json.dumps(text)
        parts.append(f"{key}={text}")
    return " ".join(parts)


class RunLogger:
    def __init__(self, log_dir_name: str = ".kessel", clock: Callable[[], datetime] = _utcnow):
        self.log_dir_name = log_dir_name
        self._clock = clock
        self._file: Optional[IO[str]] = None
        self._pending: List[str] = []
        self.path: Optional[Path] = None
        self.closed = False

    def fresh(self) -> "RunLogger":
        """An unopened logger with the same directory name and clock."""
        return RunLogger(self.log_dir_name, clock=self._clock)

    @property
    def is_open(self) -> bool:
        return self._file is not None and not self.closed

    def open(self, project_path: Path, project_name: str) -> Path:
        if self.path is not None:
            return self.path
        logs_dir = Path(project_path) / self.log_dir_name
        logs_dir.mkdir(parents=True, exist_ok=True)
        stamp = self._clock().isoformat().replace(":", "-").replace(".", "-")
        self.path = logs_dir / f"creation-{stamp}.log"
        self._file = self.path.open("a", encoding="utf-8")
        self._file.write("# Kessel CLI - project creation log\n")
        self._file.write(f"# Project: {project_name}\n")
        self._file.write(f"# Created: {self._clock().isoformat()}\n")
        self._file.write("# ================================================\n\n")
        for line in self._pending:
            self._file.write(line)
        self._pending.clear()
        self._file.flush()
        log.debug(f"Run log opened at {self.path}")
        return self.path

    def write(self, message: str, level: str = "INFO", **fields: Any) -> None:
        if self.closed:
            return
        line = f"[{self._clock().isoformat()}] [{level}] {message}"
        extra = _format_fields(fields)
        if extra:
            line = f"{line} {extra}"
        line += "\n"
        if self._file is None:
            self._pending.append(line)
            return
        try:
            self._file.write(line)
            self._file.flush()
        except (OSError, ValueError) as e:
            log.warning(f"Could not write run log entry: {e}")

    def info(self, message: str, **fields: Any) -> None:
        self.write(message, "INFO", **fields)

    def debug(self, message: str, **fields: Any) -> None:
        self.write(message, "DEBUG", **fields)

    def task(self, message: str, **fields: Any) -> None:
        self.write(message, "TASK", **fields)

    def ok(self, message: str, **fields: Any) -> None:
        self.write(message, "OK", **fields)

    def skip(self, message: str, **fields: Any) -> None:
        self.write(message, "SKIP", **fields)

    def warn(self, message: str, **fields: Any) -> None:
        self.write(message, "WARN", **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.write(message, "ERROR", **fields)

    def close(self) -> Optional[Path]:
        if self.closed:
            return self.path
        if self._file is not None:
            try:
                self._file.write(f"[{self._clock().isoformat()}] [INFO] Log closed\n")
                self._file.close()
            except (OSError, ValueError) as e:
                log.warning(f"Could not close run log: {e}")
        self._pending.clear()
        self.closed = True
        return self.path
