"""Append-only submission log.

One line per submission: ``<ISO-8601 timestamp> <OUTCOME>``. The file is
created readable by the service identity only and is never rewritten by
the running system.
"""

from __future__ import annotations

import os
import threading
from datetime import datetime, timezone
from pathlib import Path

from captivegate.session.models import SubmissionRecord


_FILE_MODE = 0o640


def format_record(record: SubmissionRecord) -> str:
    stamp = datetime.fromtimestamp(record.timestamp, tz=timezone.utc).isoformat(
        timespec="seconds"
    )
    return f"{stamp} {record.outcome.value}\n"


class SubmissionLog:
    """Appends submission records to a flat file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: SubmissionRecord) -> None:
        line = format_record(record).encode("utf-8")
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, _FILE_MODE)
            try:
                os.write(fd, line)
            finally:
                os.close(fd)
